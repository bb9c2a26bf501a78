"""Shared fixtures: in-memory bus, cache, index and store."""

import pytest
import pytest_asyncio

from galaxi.catalog_sync.bus import InMemoryEventBus
from galaxi.catalog_sync.cache import CacheAside, InMemoryCacheBackend, SafeCache
from galaxi.catalog_sync.index import InMemorySearchIndex
from galaxi.catalog_sync.store import InMemoryMovieStore


@pytest_asyncio.fixture
async def bus():
    """Connected in-memory bus."""
    bus = InMemoryEventBus(num_partitions=4, poll_interval=0.05)
    await bus.connect()
    yield bus
    await bus.close()


@pytest.fixture
def cache_backend():
    return InMemoryCacheBackend()


@pytest.fixture
def cache(cache_backend):
    """Cache-aside helper over the in-memory backend."""
    return CacheAside(SafeCache(cache_backend, default_ttl_seconds=600), ttl_seconds=600)


@pytest.fixture
def index():
    return InMemorySearchIndex("movies", page_size=1000)


@pytest.fixture
def store():
    return InMemoryMovieStore()
