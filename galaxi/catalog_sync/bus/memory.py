"""
In-memory event bus implementation for testing.

This module provides a simple in-memory transport for:
- Unit tests
- Integration tests
- Local development without a broker

Invariants:
    - All data is lost on process exit
    - Provides the same per-key ordering as the Kafka transport
    - Committed positions are tracked per consumer group, so a new
      subscription of the same group resumes after the last commit
      (uncommitted records are redelivered)

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with the EventBus protocol
    - Add features to help with testing scenarios
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, List, Optional, Set

from .base import (
    BusConnectionError,
    StreamPos,
    StreamRecord,
)

logger = logging.getLogger(__name__)


@dataclass
class InMemoryPartition:
    """In-memory partition storage."""
    records: List[StreamRecord] = field(default_factory=list)
    next_offset: int = 0


class InMemoryEventBus:
    """In-memory implementation of EventBus for testing.

    Attributes:
        num_partitions: Number of partitions to simulate per topic
        poll_interval: Maximum idle wait before a subscriber re-checks

    Thread safety:
        Uses an asyncio lock around partition storage. Safe to use from
        multiple coroutines; records are yielded outside the lock so a
        subscriber may publish while iterating.

    Example:
        >>> bus = InMemoryEventBus()
        >>> await bus.connect()
        >>> await bus.publish("test", "key1", b"value1")
        >>> async for record in bus.subscribe("test", "group1"):
        ...     print(record.value)
    """

    def __init__(self, num_partitions: int = 4, poll_interval: float = 1.0) -> None:
        """Initialize in-memory bus.

        Args:
            num_partitions: Number of partitions per topic
            poll_interval: Idle wait in seconds between checks for new records
        """
        self.num_partitions = num_partitions
        self.poll_interval = poll_interval
        self._topics: Dict[str, Dict[int, InMemoryPartition]] = defaultdict(
            lambda: {i: InMemoryPartition() for i in range(self.num_partitions)}
        )
        # group_id -> topic -> partition -> next offset to deliver
        self._committed: Dict[str, Dict[str, Dict[int, int]]] = defaultdict(
            lambda: defaultdict(dict)
        )
        self._connected = False
        self._lock = asyncio.Lock()
        self._waiters: Dict[str, Set[asyncio.Event]] = defaultdict(set)
        self._subscriptions: Set[int] = set()
        self._next_subscription = 0
        self._publish_failure: Optional[Exception] = None

    @property
    def is_connected(self) -> bool:
        """Whether connected (always true after connect())."""
        return self._connected

    async def connect(self) -> None:
        """Connect (no-op for in-memory)."""
        self._connected = True
        logger.debug("InMemoryEventBus connected")

    async def close(self) -> None:
        """Close and clear all data."""
        self._connected = False
        self._subscriptions.clear()
        self._wake_all()
        self._topics.clear()
        self._committed.clear()
        logger.debug("InMemoryEventBus closed")

    async def publish(
        self,
        topic: str,
        key: str,
        value: bytes,
        headers: Optional[Dict[str, bytes]] = None,
    ) -> StreamPos:
        """Publish a record to the in-memory topic.

        Returns:
            StreamPos with partition and offset
        """
        if not self._connected:
            raise BusConnectionError("Not connected")

        if self._publish_failure is not None:
            raise self._publish_failure

        # Consistent partitioning based on key hash
        partition = self.partition_for_key(key)

        async with self._lock:
            part = self._topics[topic][partition]
            offset = part.next_offset

            pos = StreamPos(
                topic=topic,
                partition=partition,
                offset=offset,
                timestamp_ms=int(time.time() * 1000),
            )
            part.records.append(
                StreamRecord(key=key, value=value, position=pos, headers=dict(headers or {}))
            )
            part.next_offset += 1

        self._wake(topic)

        logger.debug(
            "Record published to in-memory bus",
            extra={"topic": topic, "key": key, "partition": partition, "offset": offset},
        )

        return pos

    async def subscribe(
        self,
        topic: str,
        group_id: str,
        start_position: Optional[StreamPos] = None,
    ) -> AsyncIterator[StreamRecord]:
        """Subscribe to an in-memory topic.

        Args:
            topic: Topic to subscribe to
            group_id: Consumer group ID
            start_position: Optional position to resume after

        Yields:
            StreamRecord for each record, in order within each partition
        """
        if not self._connected:
            raise BusConnectionError("Not connected")

        subscription = self._next_subscription
        self._next_subscription += 1
        self._subscriptions.add(subscription)

        wakeup = asyncio.Event()
        self._waiters[topic].add(wakeup)

        committed = self._committed[group_id][topic]
        positions = {}
        for partition in range(self.num_partitions):
            if (
                start_position
                and start_position.topic == topic
                and start_position.partition == partition
            ):
                positions[partition] = start_position.offset + 1
            else:
                positions[partition] = committed.get(partition, 0)

        try:
            while subscription in self._subscriptions and self._connected:
                wakeup.clear()

                async with self._lock:
                    pending: List[StreamRecord] = []
                    partitions = self._topics.get(topic, {})
                    for partition, part in sorted(partitions.items()):
                        pending.extend(part.records[positions[partition]:])

                for record in pending:
                    positions[record.position.partition] = record.position.offset + 1
                    yield record
                    if subscription not in self._subscriptions:
                        break

                if not pending:
                    try:
                        await asyncio.wait_for(wakeup.wait(), timeout=self.poll_interval)
                    except asyncio.TimeoutError:
                        pass

        finally:
            self._subscriptions.discard(subscription)
            self._waiters[topic].discard(wakeup)

    async def commit(self, record: StreamRecord, group_id: str) -> None:
        """Commit a consumed record for a consumer group."""
        pos = record.position
        committed = self._committed[group_id][pos.topic]
        committed[pos.partition] = max(committed.get(pos.partition, 0), pos.offset + 1)

    async def get_positions(self, topic: str, group_id: str) -> Dict[int, StreamPos]:
        """Get committed positions (next offset to deliver) per partition."""
        positions = {}
        for partition, offset in self._committed.get(group_id, {}).get(topic, {}).items():
            positions[partition] = StreamPos(
                topic=topic,
                partition=partition,
                offset=offset,
                timestamp_ms=int(time.time() * 1000),
            )
        return positions

    def partition_for_key(self, key: str) -> int:
        """Get partition number for a key using consistent hashing."""
        hash_bytes = hashlib.md5(key.encode("utf-8")).digest()
        hash_int = int.from_bytes(hash_bytes[:4], "big")
        return hash_int % self.num_partitions

    def _wake(self, topic: str) -> None:
        for waiter in self._waiters.get(topic, ()):
            waiter.set()

    def _wake_all(self) -> None:
        for waiters in self._waiters.values():
            for waiter in waiters:
                waiter.set()

    # Testing helpers

    def get_all_records(self, topic: str) -> List[StreamRecord]:
        """Get all records for a topic across all partitions (testing helper)."""
        records = []
        if topic in self._topics:
            for partition in sorted(self._topics[topic].keys()):
                records.extend(self._topics[topic][partition].records)
        return records

    def get_record_count(self, topic: str) -> int:
        """Get total record count for a topic (testing helper)."""
        if topic not in self._topics:
            return 0
        return sum(len(part.records) for part in self._topics[topic].values())

    def fail_publishes(self, exception: Optional[Exception] = None) -> None:
        """Make every publish raise until cleared (testing helper).

        Args:
            exception: Exception to raise, or None to restore normal behaviour
        """
        self._publish_failure = exception

    async def wait_for_records(
        self,
        topic: str,
        count: int,
        timeout: float = 5.0,
    ) -> bool:
        """Wait for a specific number of records (testing helper).

        Returns:
            True if count reached, False if timeout
        """
        start = time.time()
        while time.time() - start < timeout:
            if self.get_record_count(topic) >= count:
                return True
            await asyncio.sleep(0.01)
        return False

    async def wait_for_commit(
        self,
        topic: str,
        group_id: str,
        count: int,
        timeout: float = 5.0,
    ) -> bool:
        """Wait until a group has committed ``count`` records of a topic (testing helper)."""
        start = time.time()
        while time.time() - start < timeout:
            committed = self._committed.get(group_id, {}).get(topic, {})
            if sum(committed.values()) >= count:
                return True
            await asyncio.sleep(0.01)
        return False

