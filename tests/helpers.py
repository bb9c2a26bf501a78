"""Shared helpers for the async tests."""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

from galaxi.catalog_sync.bus import StreamPos, StreamRecord
from galaxi.catalog_sync.messages import BusMessage
from galaxi.catalog_sync.sync import EventConsumer


@asynccontextmanager
async def running(consumer: EventConsumer) -> AsyncIterator[asyncio.Task]:
    """Run a consumer in the background for the duration of the block."""
    task = asyncio.create_task(consumer.start())
    try:
        yield task
    finally:
        await consumer.stop()
        await asyncio.gather(task, return_exceptions=True)


async def eventually(
    predicate: Callable[[], Awaitable[bool]],
    timeout: float = 5.0,
    interval: float = 0.02,
) -> bool:
    """Poll an async predicate until it holds or the timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if await predicate():
            return True
        await asyncio.sleep(interval)
    return False


def record_for(message: BusMessage, key: str = "key", **headers: str) -> StreamRecord:
    """Wrap a message in a stream record, as a subscriber would receive it."""
    return StreamRecord(
        key=key,
        value=message.encode(),
        position=StreamPos(topic="test", partition=0, offset=0, timestamp_ms=0),
        headers=message.headers(**headers),
    )
