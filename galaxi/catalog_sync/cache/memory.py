"""
In-memory cache backend for testing and local development.

Entries carry an absolute expiry computed at write time. The clock is
injectable so tests can move time forward without sleeping.
"""

from __future__ import annotations

import time
from collections.abc import Callable


class InMemoryCacheBackend:
    """Dictionary-backed CacheBackend with TTL.

    Example:
        >>> backend = InMemoryCacheBackend()
        >>> await backend.set("movies_all", "[]", ttl_seconds=600)
        >>> await backend.get("movies_all")
        '[]'
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}
        self._failure: Exception | None = None

    async def get(self, key: str) -> str | None:
        self._raise_if_failing()
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._raise_if_failing()
        self._entries[key] = (value, self._clock() + ttl_seconds)

    async def delete(self, key: str) -> None:
        self._raise_if_failing()
        self._entries.pop(key, None)

    async def close(self) -> None:
        self._entries.clear()

    def _raise_if_failing(self) -> None:
        if self._failure is not None:
            raise self._failure

    # Testing helpers

    def fail_with(self, exception: Exception | None) -> None:
        """Make every operation raise ``exception`` until cleared with None."""
        self._failure = exception

    def contains(self, key: str) -> bool:
        """Whether a live (unexpired) entry exists, bypassing failure injection."""
        entry = self._entries.get(key)
        return entry is not None and self._clock() < entry[1]

    def keys(self) -> list[str]:
        return [key for key in self._entries if self.contains(key)]
