"""
Event bus abstraction for the catalog.

This module provides a pluggable transport interface supporting:
- Kafka/Redpanda (production)
- In-memory (tests and local development)

The bus is the only link between the command side and the query side.

Invariants:
    - publish() returns only after the backend acknowledged the write
    - Records are keyed by movie id, so events for one movie stay ordered
    - Delivery is at-least-once, consumers must be idempotent

How to change safely:
    - New transports must implement the EventBus protocol
    - Keep per-key ordering, the synchronizer relies on it
"""

from .base import (
    HEADER_CORRELATION_ID,
    HEADER_MESSAGE_TYPE,
    HEADER_REPLY_TO,
    BusConnectionError,
    BusError,
    BusSerializationError,
    BusTimeoutError,
    EventBus,
    StreamPos,
    StreamRecord,
    create_event_bus,
)
from .kafka import KafkaEventBus
from .memory import InMemoryEventBus

__all__ = [
    # Protocol and types
    "EventBus",
    "StreamRecord",
    "StreamPos",
    "BusError",
    "BusConnectionError",
    "BusTimeoutError",
    "BusSerializationError",
    "HEADER_MESSAGE_TYPE",
    "HEADER_CORRELATION_ID",
    "HEADER_REPLY_TO",
    # Factory
    "create_event_bus",
    # Implementations
    "KafkaEventBus",
    "InMemoryEventBus",
]
