"""
Read-through cache for the catalog.

This module provides:
- SafeCache: the no-raise cache contract over a pluggable backend
- Backends: Redis (production) and in-memory (tests)
- CacheAside: cache-aside reads with background repopulation
- The persisted key layout (movie_{id}, movies_all, Movie_query_{term})
"""

from .aside import CacheAside
from .base import CacheBackend, CacheResult, SafeCache
from .keys import ALL_MOVIES_KEY, movie_key, movie_keys, query_key
from .memory import InMemoryCacheBackend
from .redis_backend import RedisCacheBackend

__all__ = [
    "CacheAside",
    "CacheBackend",
    "CacheResult",
    "SafeCache",
    "InMemoryCacheBackend",
    "RedisCacheBackend",
    "ALL_MOVIES_KEY",
    "movie_key",
    "movie_keys",
    "query_key",
]
