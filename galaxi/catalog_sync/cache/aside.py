"""
Cache-aside read path.

Reads check the cache first, fall back to a loader (the index or the
store) on a miss and repopulate the cache in a detached background task.
The read never waits for the cache write, and a failed write never affects
the read's result.

Invariants:
    - read_through() returns the loader's value whenever the cache misses
      or fails
    - Background writes are tracked so shutdown can drain or abandon them
    - Mutation-path invalidation is awaited (see invalidate_movie)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from .base import CacheResult, SafeCache
from .keys import movie_keys

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CacheAside:
    """Cache-aside helper with tracked fire-and-forget population.

    Example:
        >>> aside = CacheAside(cache, ttl_seconds=600)
        >>> movies = await aside.read_through(
        ...     "movies_all",
        ...     loader=lambda: index.get_all(1000),
        ...     encode=lambda ms: [m.to_document() for m in ms],
        ...     decode=lambda docs: [Movie.from_document(d) for d in docs],
        ... )
    """

    def __init__(self, cache: SafeCache, ttl_seconds: int = 600) -> None:
        self.cache = cache
        self.ttl_seconds = ttl_seconds
        self._pending: set[asyncio.Task] = set()

    async def read_through(
        self,
        key: str,
        loader: Callable[[], Awaitable[T]],
        encode: Callable[[T], Any],
        decode: Callable[[Any], T],
    ) -> T:
        """Return the cached value, or load it and repopulate in the background.

        Falsy loader results (None, empty list) are returned but not cached.
        Loader errors propagate to the caller.
        """
        result = await self.cache.get(key)
        if result.hit:
            try:
                return decode(result.value)
            except (ValueError, TypeError) as e:
                logger.warning(f"Ignoring undecodable cache entry {key}: {e}")

        value = await loader()
        if value:
            self.schedule_set(key, encode(value))
        return value

    def schedule_set(self, key: str, value: Any) -> asyncio.Task:
        """Write a value to the cache without waiting for completion."""
        task = asyncio.create_task(self._set(key, value), name=f"cache-set:{key}")
        self._pending.add(task)
        task.add_done_callback(self._on_set_done)
        return task

    async def _set(self, key: str, value: Any) -> CacheResult:
        return await self.cache.set(key, value, self.ttl_seconds)

    def _on_set_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning(f"Background cache write failed: {error}")

    async def invalidate_movie(self, movie_id: str) -> None:
        """Invalidate the per-movie key and the all-movies key."""
        failures = await self.cache.invalidate(*movie_keys(movie_id))
        if failures:
            logger.warning(
                "Cache invalidation incomplete, entries expire by TTL",
                extra={"movie_id": movie_id, "keys": sorted(failures)},
            )

    @property
    def pending_writes(self) -> int:
        return len(self._pending)

    async def drain(self, timeout: float = 5.0) -> None:
        """Wait for background writes, cancelling whatever is still running at timeout."""
        if not self._pending:
            return

        pending = list(self._pending)
        _, not_done = await asyncio.wait(pending, timeout=timeout)
        for task in not_done:
            task.cancel()
        if not_done:
            await asyncio.gather(*not_done, return_exceptions=True)
            logger.info(f"Abandoned {len(not_done)} background cache writes at shutdown")
