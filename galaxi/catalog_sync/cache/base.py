"""
Cache contract for the catalog.

The cache is a pure read accelerator. It holds no authority: any entry may
be absent or stale up to its TTL. Failures of the backing store must never
turn into read failures, so every operation reports its outcome as a
CacheResult instead of raising.

Layering:
    - CacheBackend: raw key/value operations, allowed to raise
    - SafeCache: wraps any backend and enforces the no-raise contract
      uniformly for get, set and invalidate

Invariants:
    - SafeCache.get/set/invalidate never raise (cancellation excepted)
    - A backend failure on get is reported exactly like a miss
    - invalidate() attempts every key even when some removals fail
    - Values are JSON documents; a corrupt entry is treated as a miss

How to change safely:
    - New backends implement CacheBackend only, never the contract logic
    - Keep the TTL mandatory on set, it bounds staleness when
      invalidation fails
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import abstractmethod
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from ..errors import CacheError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheResult:
    """Outcome of a cache operation.

    Attributes:
        hit: Whether a value was found (get only)
        value: Decoded value on a hit
        error: Backend error, if the operation failed
    """

    hit: bool = False
    value: Any = None
    error: CacheError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def found(cls, value: Any) -> CacheResult:
        return cls(hit=True, value=value)

    @classmethod
    def miss(cls) -> CacheResult:
        return cls()

    @classmethod
    def failed(cls, error: CacheError) -> CacheResult:
        return cls(error=error)


@runtime_checkable
class CacheBackend(Protocol):
    """Raw cache operations. Implementations may raise on any failure."""

    @abstractmethod
    async def get(self, key: str) -> str | None:
        ...

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove a key. Removing an absent key is not an error."""
        ...

    @abstractmethod
    async def close(self) -> None:
        ...


class SafeCache:
    """Cache facade that never lets a backend failure escape.

    Example:
        >>> cache = SafeCache(RedisCacheBackend(config.redis), default_ttl_seconds=600)
        >>> result = await cache.get("movies_all")
        >>> if result.hit:
        ...     return result.value
    """

    def __init__(self, backend: CacheBackend, default_ttl_seconds: int = 600) -> None:
        self.backend = backend
        self.default_ttl_seconds = default_ttl_seconds

    async def get(self, key: str) -> CacheResult:
        """Read and decode a value; failures and corrupt entries read as a miss."""
        try:
            raw = await self.backend.get(key)
        except Exception as e:
            logger.warning(f"Failed to read cache for key {key}: {e}")
            return CacheResult.failed(CacheError(str(e), key=key))

        if raw is None:
            return CacheResult.miss()

        try:
            return CacheResult.found(json.loads(raw))
        except ValueError as e:
            logger.warning(f"Discarding corrupt cache entry for key {key}: {e}")
            return CacheResult.failed(CacheError(str(e), key=key))

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> CacheResult:
        """Encode and store a value with an absolute expiry."""
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        try:
            payload = json.dumps(value)
            await self.backend.set(key, payload, ttl)
        except Exception as e:
            logger.warning(f"Failed to set cache for key {key}: {e}")
            return CacheResult.failed(CacheError(str(e), key=key))
        return CacheResult()

    async def invalidate(self, *keys: str) -> dict[str, CacheError]:
        """Remove every listed key.

        All removals are attempted concurrently; one failure does not stop
        the others.

        Returns:
            Mapping of key to error for the removals that failed
        """
        outcomes = await asyncio.gather(
            *(self.backend.delete(key) for key in keys),
            return_exceptions=True,
        )

        failures: dict[str, CacheError] = {}
        for key, outcome in zip(keys, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                logger.warning(f"Failed to remove cache key {key}: {outcome}")
                failures[key] = CacheError(str(outcome), key=key)
        return failures

    async def close(self) -> None:
        try:
            await self.backend.close()
        except Exception as e:
            logger.warning(f"Error closing cache backend: {e}")
