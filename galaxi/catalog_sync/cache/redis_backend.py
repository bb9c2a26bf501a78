"""
Redis cache backend.

Uses redis-py's asyncio client. Every value is written with SET ... EX so
the entry expires at write time + TTL even when a later invalidation is
lost. Errors are raised as-is; SafeCache turns them into cache misses.
"""

from __future__ import annotations

import logging

import redis.asyncio as redis
from redis.exceptions import RedisError

from ..config import RedisConfig

logger = logging.getLogger(__name__)


class RedisCacheBackend:
    """CacheBackend on top of a Redis server.

    Example:
        >>> backend = RedisCacheBackend(RedisConfig(url="redis://cache:6379/0"))
        >>> await backend.set("movie_42", '{"id": "42"}', ttl_seconds=600)
    """

    def __init__(self, config: RedisConfig, client: redis.Redis | None = None) -> None:
        self.config = config
        self._client = client or redis.Redis.from_url(
            config.url,
            decode_responses=True,
            socket_timeout=config.socket_timeout,
            socket_connect_timeout=config.socket_connect_timeout,
            max_connections=config.max_connections,
        )

    async def get(self, key: str) -> str | None:
        return await self._client.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._client.set(key, value, ex=ttl_seconds)

    async def delete(self, key: str) -> None:
        await self._client.delete(key)

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    async def close(self) -> None:
        await self._client.aclose()
