"""
Availability request/reply over the bus.

The responder answers CheckAvailableMovie with MovieStatus{exist}, reading
only the search index: it reports what the query side currently believes,
which may lag the command side. It never touches the cache or the
authoritative store.

Replies go to the topic named in the request's ``reply-to`` header (or the
configured default reply topic) and carry the request's ``correlation-id``.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from uuid import UUID

from ..bus.base import (
    HEADER_CORRELATION_ID,
    HEADER_REPLY_TO,
    BusError,
    BusSerializationError,
    BusTimeoutError,
    EventBus,
    StreamRecord,
)
from ..index.base import SearchIndex
from ..messages import CheckAvailableMovie, MovieStatus, decode_message
from .consumer import EventConsumer

logger = logging.getLogger(__name__)


class CheckAvailableMovieHandler:
    def __init__(self, bus: EventBus, index: SearchIndex, reply_topic: str) -> None:
        self.bus = bus
        self.index = index
        self.reply_topic = reply_topic

    async def handle(self, message: CheckAvailableMovie, record: StreamRecord) -> None:
        movie_id = str(message.movie_id)
        exist = await self.index.exists(movie_id)

        reply = MovieStatus(exist=exist)
        correlation_id = record.header(HEADER_CORRELATION_ID)
        extra = {HEADER_CORRELATION_ID: correlation_id} if correlation_id else {}
        await self.bus.publish(
            record.header(HEADER_REPLY_TO) or self.reply_topic,
            correlation_id or movie_id,
            reply.encode(),
            reply.headers(**extra),
        )
        logger.debug(
            "Answered availability check",
            extra={"movie_id": movie_id, "exist": exist, "correlation_id": correlation_id},
        )


class AvailabilityResponder(EventConsumer):
    """Serves CheckAvailableMovie requests from the search index."""

    def __init__(
        self,
        bus: EventBus,
        index: SearchIndex,
        topic: str = "check-available-movie",
        reply_topic: str = "movie-status",
        group_id: str = "movie-availability",
        max_retries: int = 3,
        retry_delay_ms: int = 100,
    ) -> None:
        super().__init__(
            bus,
            topic,
            group_id,
            handlers={CheckAvailableMovie: CheckAvailableMovieHandler(bus, index, reply_topic)},
            max_retries=max_retries,
            retry_delay_ms=retry_delay_ms,
        )


class AvailabilityClient:
    """Asks the query side whether a movie exists.

    Each client listens on the reply topic with its own consumer group and
    matches replies to requests by correlation id.

    Example:
        >>> client = AvailabilityClient(bus)
        >>> await client.start()
        >>> await client.check("9f0c...")
        True
        >>> await client.close()
    """

    def __init__(
        self,
        bus: EventBus,
        request_topic: str = "check-available-movie",
        reply_topic: str = "movie-status",
        timeout: float = 5.0,
    ) -> None:
        self.bus = bus
        self.request_topic = request_topic
        self.reply_topic = reply_topic
        self.timeout = timeout
        self.group_id = f"availability-client-{uuid.uuid4().hex[:12]}"
        self._pending: dict[str, asyncio.Future[bool]] = {}
        self._reader: asyncio.Task | None = None

    async def start(self) -> None:
        """Start the reply reader, or restart it if it has stopped."""
        if self._reader is None or self._reader.done():
            self._reader = asyncio.create_task(self._read_replies(), name="availability-replies")
            self._reader.add_done_callback(self._reader_stopped)

    async def close(self) -> None:
        if self._reader is not None:
            self._reader.cancel()
            await asyncio.gather(self._reader, return_exceptions=True)
            self._reader = None
        for future in self._pending.values():
            future.cancel()
        self._pending.clear()

    async def check(self, movie_id: str) -> bool:
        """Request the availability of a movie and wait for the reply.

        Raises:
            ValueError: If movie_id is not a UUID
            BusTimeoutError: If no reply arrives within the timeout
            BusError: If the reply reader stopped while the request was pending
        """
        await self.start()

        request = CheckAvailableMovie(movie_id=UUID(movie_id))
        correlation_id = uuid.uuid4().hex
        future: asyncio.Future[bool] = asyncio.get_running_loop().create_future()
        self._pending[correlation_id] = future
        try:
            await self.bus.publish(
                self.request_topic,
                movie_id,
                request.encode(),
                request.headers(
                    **{HEADER_CORRELATION_ID: correlation_id, HEADER_REPLY_TO: self.reply_topic}
                ),
            )
            return await asyncio.wait_for(future, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise BusTimeoutError(f"No availability reply for {movie_id} within {self.timeout}s") from e
        finally:
            self._pending.pop(correlation_id, None)

    async def _read_replies(self) -> None:
        async for record in self.bus.subscribe(self.reply_topic, self.group_id):
            future = self._pending.get(record.header(HEADER_CORRELATION_ID) or "")
            if future is not None and not future.done():
                try:
                    reply = decode_message(record)
                except BusSerializationError as e:
                    logger.warning(f"Skipping undecodable availability reply at {record.position}: {e}")
                else:
                    if isinstance(reply, MovieStatus):
                        future.set_result(reply.exist)
            await self.bus.commit(record, self.group_id)

    def _reader_stopped(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception() or BusError("Availability reply stream ended")
        logger.error(f"Availability reply reader stopped: {error}")
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
