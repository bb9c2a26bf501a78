"""
Event consumer loop.

An EventConsumer subscribes to one topic as a member of a consumer group and
routes every decoded message to the handler registered for its type. It
ensures:
- Ordered processing per partition (hence per movie id)
- Parallel processing across partitions
- At-least-once delivery (offsets are committed only after success)

Invariants:
    - A record is committed only after its handler returned
    - Records of one partition are handled strictly one at a time, in order
    - A handler failure is retried locally; after max_retries the consumer
      stops with SyncError and leaves the record uncommitted, so the next
      subscription redelivers it
    - Undecodable records and message types without a handler are logged,
      counted and committed (they would fail forever otherwise)

How to change safely:
    - Handlers must stay idempotent, every record may be seen twice
    - Never commit from a handler
    - Test new handlers with duplicate record injection
"""

from __future__ import annotations

import asyncio
import logging
from abc import abstractmethod
from typing import Any, Protocol

from ..bus.base import BusSerializationError, EventBus, StreamPos, StreamRecord
from ..errors import SyncError
from ..messages import BusMessage, decode_message

logger = logging.getLogger(__name__)


class MessageHandler(Protocol):
    """Handles one message kind. Raising fails (and retries) the record."""

    @abstractmethod
    async def handle(self, message: Any, record: StreamRecord) -> None:
        ...


class EventConsumer:
    """Consumes a topic and applies its messages through typed handlers.

    Thread safety:
        Runs as a single task that owns one worker task per partition.
        Several consumers may share one bus.

    Example:
        >>> consumer = EventConsumer(
        ...     bus, "movie-mutations", "movie-synchronizer",
        ...     handlers={MovieCreated: CreatedMovieHandler(index, cache)},
        ... )
        >>> await consumer.start()  # Runs until stopped or a record fails for good
    """

    def __init__(
        self,
        bus: EventBus,
        topic: str,
        group_id: str,
        handlers: dict[type[BusMessage], MessageHandler],
        max_retries: int = 3,
        retry_delay_ms: int = 100,
        queue_size: int = 100,
    ) -> None:
        """Initialize the consumer.

        Args:
            bus: Event bus to consume from
            topic: Topic name
            group_id: Consumer group ID
            handlers: Handler per message class
            max_retries: Local retries before giving up on a record
            retry_delay_ms: Delay between local retries
            queue_size: Records buffered per partition worker
        """
        self.bus = bus
        self.topic = topic
        self.group_id = group_id
        self.handlers = handlers
        self.max_retries = max_retries
        self.retry_delay_ms = retry_delay_ms
        self.queue_size = queue_size

        self._running = False
        self._stop_event = asyncio.Event()
        self._failed_event = asyncio.Event()
        self._failure: BaseException | None = None
        self._workers: dict[int, asyncio.Task] = {}
        self._queues: dict[int, asyncio.Queue[StreamRecord]] = {}
        self._processed_count = 0
        self._error_count = 0
        self._skipped_count = 0
        self._last_position: StreamPos | None = None

    @property
    def name(self) -> str:
        return type(self).__name__

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Run the consumer until stop() is called.

        Raises:
            SyncError: If a record could not be handled after retries
        """
        if self._running:
            logger.warning(f"{self.name} already running")
            return

        self._running = True
        self._failure = None
        self._failed_event = asyncio.Event()
        logger.info(
            f"Starting {self.name}", extra={"topic": self.topic, "group_id": self.group_id}
        )

        reader = asyncio.create_task(self._read(), name=f"{self.name}-reader")
        stopped = asyncio.create_task(self._stop_event.wait())
        failed = asyncio.create_task(self._failed_event.wait())
        try:
            await asyncio.wait({reader, stopped, failed}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            logger.info(f"{self.name} cancelled")
            raise
        finally:
            tasks = [reader, stopped, failed, *self._workers.values()]
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            self._workers.clear()
            self._queues.clear()
            self._running = False

        if self._failure is not None:
            raise self._failure
        if not reader.cancelled() and reader.exception() is not None:
            logger.error(f"{self.name} subscription failed: {reader.exception()}")
            raise reader.exception()

    async def stop(self) -> None:
        """Stop the consumer loop for good. Records in flight are not committed."""
        if self._running:
            logger.info(f"Stopping {self.name}")
        self._stop_event.set()

    async def _read(self) -> None:
        async for record in self.bus.subscribe(self.topic, self.group_id):
            if self._stop_event.is_set():
                break
            queue = self._queue_for(record.position.partition)
            await queue.put(record)

    def _queue_for(self, partition: int) -> asyncio.Queue[StreamRecord]:
        queue = self._queues.get(partition)
        if queue is None:
            queue = asyncio.Queue(maxsize=self.queue_size)
            self._queues[partition] = queue
            self._workers[partition] = asyncio.create_task(
                self._work(queue), name=f"{self.name}-p{partition}"
            )
        return queue

    async def _work(self, queue: asyncio.Queue[StreamRecord]) -> None:
        while True:
            record = await queue.get()
            try:
                await self.process_record(record)
                await self.bus.commit(record, self.group_id)
                self._last_position = record.position
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # First failure wins, the rest of the group shuts down with it
                if self._failure is None:
                    self._failure = e
                self._failed_event.set()
                return

    async def process_record(self, record: StreamRecord) -> None:
        """Decode a record and run its handler with local retries.

        Separate from the consumption loop for testability.

        Raises:
            SyncError: If the handler still fails after max_retries retries
        """
        try:
            message = decode_message(record)
        except BusSerializationError as e:
            self._skipped_count += 1
            logger.error(
                "Skipping undecodable record",
                extra={"consumer": self.name, "position": str(record.position), "error": str(e)},
            )
            return

        handler = self.handlers.get(type(message))
        if handler is None:
            self._skipped_count += 1
            logger.warning(
                f"No handler for {message.message_type}, skipping",
                extra={"consumer": self.name, "position": str(record.position)},
            )
            return

        attempt = 0
        while True:
            try:
                await handler.handle(message, record)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                attempt += 1
                self._error_count += 1
                if attempt > self.max_retries:
                    logger.error(
                        f"Giving up on {message.message_type}",
                        extra={
                            "consumer": self.name,
                            "key": record.key,
                            "position": str(record.position),
                            "attempts": attempt,
                            "error": str(e),
                        },
                    )
                    raise SyncError(
                        f"{self.name} failed to handle {message.message_type} at {record.position}: {e}",
                        details={"key": record.key, "attempts": attempt},
                    ) from e
                logger.warning(
                    f"Handler failed, retrying ({attempt}/{self.max_retries}): {e}",
                    extra={"consumer": self.name, "key": record.key},
                )
                await asyncio.sleep(self.retry_delay_ms / 1000.0)
            else:
                self._processed_count += 1
                logger.debug(
                    f"Handled {message.message_type}",
                    extra={"consumer": self.name, "key": record.key},
                )
                return

    @property
    def stats(self) -> dict[str, Any]:
        """Consumer statistics."""
        return {
            "running": self._running,
            "processed_count": self._processed_count,
            "error_count": self._error_count,
            "skipped_count": self._skipped_count,
            "last_position": str(self._last_position) if self._last_position else None,
        }
