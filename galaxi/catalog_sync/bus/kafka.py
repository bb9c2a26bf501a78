"""
Kafka event bus implementation.

This module provides the production transport between the command side and
the query side. It works with:
- Apache Kafka
- Amazon MSK
- Redpanda
- Any Kafka API-compatible system

Invariants:
    - Producer uses acks=all and the idempotent producer
    - Records are keyed by movie id, so one id always maps to one partition
    - Consumers commit manually, only after a record was handled
    - One consumer per consumer group; groups never share a consumer

How to change safely:
    - Test with an actual Kafka/Redpanda cluster before deploying
    - Never enable auto commit, it breaks redelivery on handler failure
    - Monitor consumer lag per group in production
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from typing import Any

from aiokafka import AIOKafkaConsumer, AIOKafkaProducer
from aiokafka.errors import KafkaConnectionError, KafkaError, KafkaTimeoutError
from aiokafka.structs import OffsetAndMetadata, TopicPartition

from .base import (
    BusConnectionError,
    BusError,
    BusTimeoutError,
    StreamPos,
    StreamRecord,
)

logger = logging.getLogger(__name__)


class KafkaEventBus:
    """Kafka implementation of the EventBus protocol.

    Uses aiokafka for async producer/consumer operations.

    Attributes:
        config: Kafka configuration

    Durability configuration:
        - acks='all': Wait for all in-sync replicas
        - enable_idempotence=True: Prevent duplicates on producer retry

    Example:
        >>> config = KafkaConfig(brokers="localhost:9092")
        >>> bus = KafkaEventBus(config)
        >>> await bus.connect()
        >>> pos = await bus.publish("movie-mutations", movie_id, payload)
    """

    def __init__(self, config: Any) -> None:
        """Initialize Kafka event bus.

        Args:
            config: KafkaConfig instance with connection settings
        """
        self.config = config
        self._producer: AIOKafkaProducer | None = None
        self._consumers: dict[str, AIOKafkaConsumer] = {}
        self._connected = False

    @property
    def is_connected(self) -> bool:
        """Whether connected to Kafka."""
        return self._connected and self._producer is not None

    def _security_options(self) -> dict[str, Any]:
        options: dict[str, Any] = {}
        if self.config.security_protocol != "PLAINTEXT":
            options["security_protocol"] = self.config.security_protocol

        if self.config.sasl_mechanism:
            options["sasl_mechanism"] = self.config.sasl_mechanism
            options["sasl_plain_username"] = self.config.sasl_username
            options["sasl_plain_password"] = self.config.sasl_password

        if self.config.ssl_cafile:
            options["ssl_cafile"] = self.config.ssl_cafile
        return options

    async def connect(self) -> None:
        """Connect to the Kafka cluster.

        Creates the producer with durability settings.

        Raises:
            BusConnectionError: If connection fails
        """
        if self._connected:
            return

        try:
            self._producer = AIOKafkaProducer(
                bootstrap_servers=self.config.brokers,
                client_id=self.config.client_id,
                acks=self.config.acks,
                enable_idempotence=self.config.enable_idempotence,
                linger_ms=5,
                request_timeout_ms=self.config.request_timeout_ms,
                retry_backoff_ms=100,
                **self._security_options(),
            )
            await self._producer.start()
            self._connected = True

            logger.info(
                "Connected to Kafka",
                extra={
                    "brokers": self.config.brokers,
                    "acks": self.config.acks,
                    "idempotent": self.config.enable_idempotence,
                },
            )

        except Exception as e:
            self._connected = False
            raise BusConnectionError(f"Failed to connect to Kafka: {e}") from e

    async def close(self) -> None:
        """Close Kafka connections, flushing pending publishes."""
        for group_id, consumer in list(self._consumers.items()):
            try:
                await consumer.stop()
            except KafkaError as e:
                logger.warning(f"Error closing consumer {group_id}: {e}")
        self._consumers.clear()

        if self._producer:
            try:
                await self._producer.stop()
            except KafkaError as e:
                logger.warning(f"Error closing producer: {e}")
            self._producer = None

        self._connected = False
        logger.info("Kafka connections closed")

    async def publish(
        self,
        topic: str,
        key: str,
        value: bytes,
        headers: dict[str, bytes] | None = None,
    ) -> StreamPos:
        """Publish a record and wait for the broker acknowledgment.

        Raises:
            BusConnectionError: If not connected
            BusTimeoutError: If send times out
            BusError: For other Kafka errors
        """
        if not self._producer:
            raise BusConnectionError("Not connected to Kafka")

        try:
            kafka_headers = list(headers.items()) if headers else None

            metadata = await self._producer.send_and_wait(
                topic,
                value=value,
                key=key.encode("utf-8"),
                headers=kafka_headers,
            )

            pos = StreamPos(
                topic=metadata.topic,
                partition=metadata.partition,
                offset=metadata.offset,
                timestamp_ms=metadata.timestamp or int(time.time() * 1000),
            )

            logger.debug(
                "Record published to Kafka",
                extra={
                    "topic": topic,
                    "key": key,
                    "partition": pos.partition,
                    "offset": pos.offset,
                },
            )

            return pos

        except KafkaTimeoutError as e:
            raise BusTimeoutError(f"Kafka send timed out: {e}") from e
        except KafkaConnectionError as e:
            self._connected = False
            raise BusConnectionError(f"Kafka connection lost: {e}") from e
        except KafkaError as e:
            raise BusError(f"Kafka send failed: {e}") from e

    async def subscribe(
        self,
        topic: str,
        group_id: str,
        start_position: StreamPos | None = None,
    ) -> AsyncIterator[StreamRecord]:
        """Subscribe to a Kafka topic as a member of ``group_id``.

        Raises:
            BusConnectionError: If subscription fails
            BusError: For other consumer errors
        """
        previous = self._consumers.pop(group_id, None)
        if previous:
            await previous.stop()

        consumer = AIOKafkaConsumer(
            topic,
            bootstrap_servers=self.config.brokers,
            client_id=self.config.client_id,
            group_id=group_id,
            auto_offset_reset=self.config.auto_offset_reset,
            enable_auto_commit=False,
            max_poll_records=self.config.max_poll_records,
            session_timeout_ms=30000,
            heartbeat_interval_ms=10000,
            **self._security_options(),
        )

        try:
            await consumer.start()
            self._consumers[group_id] = consumer

            logger.info("Subscribed to Kafka topic", extra={"topic": topic, "group_id": group_id})

            if start_position and start_position.topic == topic:
                consumer.seek(
                    TopicPartition(topic, start_position.partition),
                    start_position.offset + 1,
                )

            async for msg in consumer:
                yield StreamRecord(
                    key=msg.key.decode("utf-8") if msg.key else "",
                    value=msg.value,
                    position=StreamPos(
                        topic=msg.topic,
                        partition=msg.partition,
                        offset=msg.offset,
                        timestamp_ms=msg.timestamp or int(time.time() * 1000),
                    ),
                    headers=dict(msg.headers) if msg.headers else {},
                )

        except KafkaConnectionError as e:
            raise BusConnectionError(f"Failed to subscribe: {e}") from e
        except KafkaError as e:
            raise BusError(f"Consumer error: {e}") from e
        finally:
            if self._consumers.get(group_id) is consumer:
                del self._consumers[group_id]
                await consumer.stop()

    async def commit(self, record: StreamRecord, group_id: str) -> None:
        """Commit a consumed record for the group's consumer.

        Raises:
            BusError: If the group has no consumer or the commit fails
        """
        consumer = self._consumers.get(group_id)
        if not consumer:
            raise BusError(f"No active consumer for group {group_id}")

        try:
            # Commit offset + 1 (next message to consume)
            await consumer.commit({
                TopicPartition(record.position.topic, record.position.partition): OffsetAndMetadata(
                    record.position.offset + 1, ""
                )
            })

            logger.debug(
                "Committed offset",
                extra={
                    "group_id": group_id,
                    "topic": record.position.topic,
                    "partition": record.position.partition,
                    "offset": record.position.offset,
                },
            )

        except KafkaError as e:
            raise BusError(f"Failed to commit: {e}") from e

    async def get_positions(self, topic: str, group_id: str) -> dict[int, StreamPos]:
        """Get committed positions for a consumer group."""
        consumer = AIOKafkaConsumer(
            bootstrap_servers=self.config.brokers,
            group_id=group_id,
            enable_auto_commit=False,
            **self._security_options(),
        )
        positions: dict[int, StreamPos] = {}
        try:
            await consumer.start()
            for partition in consumer.partitions_for_topic(topic) or set():
                committed = await consumer.committed(TopicPartition(topic, partition))
                if committed is not None:
                    positions[partition] = StreamPos(
                        topic=topic,
                        partition=partition,
                        offset=committed,
                        timestamp_ms=int(time.time() * 1000),
                    )
        except KafkaError as e:
            logger.warning(f"Failed to get positions: {e}")
        finally:
            await consumer.stop()
        return positions

