"""
Base protocol and types for the event bus abstraction.

This module defines the EventBus protocol that all transports must
implement, along with common types for stream positions, records and errors.

Invariants:
    - StreamPos uniquely identifies a position in a topic
    - Records published with the same key are delivered in publish order
    - Delivery is at-least-once: a record is redelivered until committed

How to change safely:
    - Protocol changes require updating all implementations
    - Add new methods as optional with default implementations
    - Keep header names stable, other services read them
"""

from __future__ import annotations

import logging
from abc import abstractmethod
from dataclasses import dataclass, field
from typing import (
    TYPE_CHECKING,
    AsyncIterator,
    Dict,
    Optional,
    Protocol,
    runtime_checkable,
)

if TYPE_CHECKING:
    from ..config import ServerConfig

logger = logging.getLogger(__name__)

# Record header names
HEADER_MESSAGE_TYPE = "message-type"
HEADER_CORRELATION_ID = "correlation-id"
HEADER_REPLY_TO = "reply-to"


class BusError(Exception):
    """Base exception for event bus operations."""
    pass


class BusConnectionError(BusError):
    """Connection to the bus backend failed."""
    pass


class BusTimeoutError(BusError):
    """Bus operation timed out."""
    pass


class BusSerializationError(BusError):
    """Failed to serialize/deserialize a bus record."""
    pass


@dataclass(frozen=True)
class StreamPos:
    """Position in a topic.

    Attributes:
        topic: Topic name
        partition: Partition number
        offset: Offset within partition
        timestamp_ms: Timestamp when the record was written (milliseconds)
    """
    topic: str
    partition: int
    offset: int
    timestamp_ms: int

    def __str__(self) -> str:
        return f"{self.topic}:{self.partition}:{self.offset}"


@dataclass
class StreamRecord:
    """A record delivered from the bus.

    Attributes:
        key: Partition key (the movie id for mutation events)
        value: Message payload (JSON-encoded bytes)
        position: Position in the topic
        headers: Record headers (message type, correlation id, reply topic)

    Example:
        >>> async for record in bus.subscribe("movie-mutations", "synchronizer"):
        ...     message = decode_message(record)
        ...     await handle(message)
        ...     await bus.commit(record, "synchronizer")
    """
    key: str
    value: bytes
    position: StreamPos
    headers: Dict[str, bytes] = field(default_factory=dict)

    def header(self, name: str) -> Optional[str]:
        """Get a header decoded as UTF-8, or None if absent."""
        raw = self.headers.get(name)
        if raw is None:
            return None
        return raw.decode("utf-8")

    def __str__(self) -> str:
        return f"StreamRecord(key={self.key}, pos={self.position})"


@runtime_checkable
class EventBus(Protocol):
    """Protocol for event bus transports.

    Ordering contract:
        - Records with the same key land on the same partition
        - A subscriber receives records of one partition in order

    Delivery contract:
        - At-least-once: records are redelivered after a restart
          until commit() has been called for them

    Example:
        >>> bus = KafkaEventBus(config)
        >>> await bus.connect()
        >>> pos = await bus.publish("movie-mutations", movie_id, payload)
    """

    @abstractmethod
    async def connect(self) -> None:
        """Connect to the bus backend.

        Raises:
            BusConnectionError: If connection fails
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the connection, flushing pending publishes."""
        ...

    @abstractmethod
    async def publish(
        self,
        topic: str,
        key: str,
        value: bytes,
        headers: Optional[Dict[str, bytes]] = None,
    ) -> StreamPos:
        """Publish a record.

        Returns only after the backend acknowledged the write.

        Args:
            topic: Topic name
            key: Partition key
            value: Payload bytes
            headers: Optional record headers

        Returns:
            StreamPos where the record was written

        Raises:
            BusConnectionError: If not connected
            BusTimeoutError: If the write times out
            BusError: For other failures
        """
        ...

    @abstractmethod
    def subscribe(
        self,
        topic: str,
        group_id: str,
        start_position: Optional[StreamPos] = None,
    ) -> AsyncIterator[StreamRecord]:
        """Subscribe to a topic as a member of a consumer group.

        Resumes from the group's committed positions unless start_position
        is given.

        Yields:
            StreamRecord objects in order within partitions

        Note:
            The caller must call commit() to acknowledge processed records.
        """
        ...

    @abstractmethod
    async def commit(self, record: StreamRecord, group_id: str) -> None:
        """Acknowledge a record for a consumer group.

        Raises:
            BusError: If commit fails
        """
        ...

    @abstractmethod
    async def get_positions(self, topic: str, group_id: str) -> Dict[int, StreamPos]:
        """Get committed positions (next offset to read) for a consumer group."""
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether currently connected to the backend."""
        ...


def create_event_bus(config: "ServerConfig") -> EventBus:
    """Create an event bus from configuration.

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import BusBackend
    from .kafka import KafkaEventBus
    from .memory import InMemoryEventBus

    if config.bus_backend == BusBackend.KAFKA:
        return KafkaEventBus(config.kafka)
    elif config.bus_backend == BusBackend.MEMORY:
        return InMemoryEventBus(num_partitions=config.sync.memory_partitions)
    else:
        raise ValueError(f"Unsupported bus backend: {config.bus_backend}")
