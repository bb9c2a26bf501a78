"""
Unit tests for the cache contract.

Tests cover:
- Hits, misses and absolute TTL expiry
- Backend failures reported as results, never raised
- All-attempted invalidation with per-key failure reporting
- The persisted key layout
"""

import pytest

from galaxi.catalog_sync.cache import (
    ALL_MOVIES_KEY,
    InMemoryCacheBackend,
    SafeCache,
    movie_key,
    movie_keys,
    query_key,
)


class FlakyDeleteBackend(InMemoryCacheBackend):
    """Fails deletes of selected keys only."""

    def __init__(self, failing_keys):
        super().__init__()
        self.failing_keys = set(failing_keys)
        self.deleted = []

    async def delete(self, key):
        if key in self.failing_keys:
            raise ConnectionError(f"cannot delete {key}")
        self.deleted.append(key)
        await super().delete(key)


class TestKeyLayout:
    """Exact key strings are shared across deployments."""

    def test_keys(self):
        assert movie_key("42") == "movie_42"
        assert ALL_MOVIES_KEY == "movies_all"
        assert query_key("dune") == "Movie_query_dune"
        assert movie_keys("42") == ("movie_42", "movies_all")


class TestSafeCache:
    """Tests for SafeCache over the in-memory backend."""

    @pytest.fixture
    def clock(self):
        return [1000.0]

    @pytest.fixture
    def backend(self, clock):
        return InMemoryCacheBackend(clock=lambda: clock[0])

    @pytest.fixture
    def cache(self, backend):
        return SafeCache(backend, default_ttl_seconds=600)

    @pytest.mark.asyncio
    async def test_miss(self, cache):
        result = await cache.get("movie_1")

        assert not result.hit
        assert result.ok

    @pytest.mark.asyncio
    async def test_set_then_get(self, cache):
        await cache.set("movie_1", {"id": "1", "title": "Dune"})

        result = await cache.get("movie_1")

        assert result.hit
        assert result.value == {"id": "1", "title": "Dune"}

    @pytest.mark.asyncio
    async def test_entry_expires_at_absolute_ttl(self, cache, clock):
        await cache.set("movies_all", [], ttl_seconds=10)

        clock[0] += 9.9
        assert (await cache.get("movies_all")).hit

        clock[0] += 0.1
        assert not (await cache.get("movies_all")).hit

    @pytest.mark.asyncio
    async def test_default_ttl(self, cache, backend, clock):
        await cache.set("movie_1", "x")

        clock[0] += 599
        assert backend.contains("movie_1")
        clock[0] += 1
        assert not backend.contains("movie_1")

    @pytest.mark.asyncio
    async def test_zero_ttl_is_not_replaced_by_default(self, cache, backend):
        await cache.set("movie_1", "x", ttl_seconds=0)

        assert not backend.contains("movie_1")

    @pytest.mark.asyncio
    async def test_get_failure_reads_as_miss(self, cache, backend):
        await cache.set("movie_1", "x")
        backend.fail_with(ConnectionError("redis down"))

        result = await cache.get("movie_1")

        assert not result.hit
        assert not result.ok
        assert result.error.key == "movie_1"

    @pytest.mark.asyncio
    async def test_set_failure_is_reported_not_raised(self, cache, backend):
        backend.fail_with(TimeoutError("slow"))

        result = await cache.set("movie_1", "x")

        assert not result.ok

    @pytest.mark.asyncio
    async def test_unserializable_value_is_reported(self, cache):
        result = await cache.set("movie_1", object())

        assert not result.ok

    @pytest.mark.asyncio
    async def test_corrupt_entry_reads_as_miss(self, cache, backend):
        await backend.set("movie_1", "{not json", ttl_seconds=60)

        result = await cache.get("movie_1")

        assert not result.hit
        assert not result.ok

    @pytest.mark.asyncio
    async def test_invalidate_removes_all_keys(self, cache, backend):
        await cache.set("movie_1", "a")
        await cache.set("movies_all", "b")

        failures = await cache.invalidate("movie_1", "movies_all")

        assert failures == {}
        assert backend.keys() == []

    @pytest.mark.asyncio
    async def test_invalidate_absent_keys_is_noop(self, cache):
        assert await cache.invalidate("movie_missing", "movies_all") == {}

    @pytest.mark.asyncio
    async def test_invalidate_attempts_every_key(self):
        backend = FlakyDeleteBackend(failing_keys={"movie_1"})
        cache = SafeCache(backend)
        await cache.set("movie_1", "a")
        await cache.set("movies_all", "b")
        await cache.set("movie_2", "c")

        failures = await cache.invalidate("movie_1", "movies_all", "movie_2")

        assert set(failures) == {"movie_1"}
        assert sorted(backend.deleted) == ["movie_2", "movies_all"]
        assert backend.keys() == ["movie_1"]

    @pytest.mark.asyncio
    async def test_invalidate_with_backend_down(self, cache, backend):
        backend.fail_with(ConnectionError("redis down"))

        failures = await cache.invalidate(*movie_keys("1"))

        assert set(failures) == {"movie_1", "movies_all"}
