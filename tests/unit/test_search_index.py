"""
Unit tests for the search index backends.

Every behavioural test runs against both SqliteSearchIndex and
InMemorySearchIndex, which must agree.

Tests cover:
- Round trip, full-document replace and idempotent remove
- Bounded scans
- Weighted, AND-combined, wildcard-tolerant search
- Bulk upsert id assignment and idempotency
"""

import tempfile

import pytest
import pytest_asyncio

from galaxi.catalog_sync.errors import SearchIndexError
from galaxi.catalog_sync.index import (
    InMemorySearchIndex,
    SqliteSearchIndex,
    tokenize,
)
from galaxi.catalog_sync.models import Movie


@pytest.fixture(params=["sqlite", "memory"])
def index(request):
    """Fresh index of each backend."""
    if request.param == "memory":
        yield InMemorySearchIndex("movies", page_size=1000)
        return
    with tempfile.TemporaryDirectory() as tmpdir:
        yield SqliteSearchIndex(tmpdir, "movies", page_size=1000)


class TestTokenize:
    def test_wildcards_are_stripped(self):
        assert tokenize("dun* ?lien") == ["dun", "lien"]

    def test_lone_wildcards_vanish(self):
        assert tokenize("  * ? ") == []


class TestDocuments:
    """Point reads and writes."""

    @pytest.mark.asyncio
    async def test_round_trip(self, index):
        movie = Movie(id="m1", title="Dune", genre="Sci-Fi", showtimes=["18:00", "21:00"])

        await index.upsert(movie)

        assert await index.get_by_id("m1") == movie

    @pytest.mark.asyncio
    async def test_missing_movie(self, index):
        assert await index.get_by_id("nope") is None
        assert not await index.exists("nope")

    @pytest.mark.asyncio
    async def test_upsert_twice_keeps_one_document(self, index):
        movie = Movie(id="m1", title="Dune")

        await index.upsert(movie)
        await index.upsert(movie)

        assert await index.get_all(1000) == [movie]

    @pytest.mark.asyncio
    async def test_upsert_replaces_whole_document(self, index):
        await index.upsert(Movie(id="m1", title="Dune", rating=8))

        await index.upsert(Movie(id="m1", title="Dune: Part One"))

        stored = await index.get_by_id("m1")
        assert stored.title == "Dune: Part One"
        assert stored.attributes == {}

    @pytest.mark.asyncio
    async def test_upsert_requires_id(self, index):
        with pytest.raises(SearchIndexError):
            await index.upsert(Movie(title="Nameless"))

    @pytest.mark.asyncio
    async def test_remove_is_idempotent(self, index):
        await index.upsert(Movie(id="m1", title="Dune"))

        await index.remove("m1")
        await index.remove("m1")

        assert not await index.exists("m1")

    @pytest.mark.asyncio
    async def test_get_all_is_bounded(self, index):
        for i in range(5):
            await index.upsert(Movie(id=f"m{i}", title=f"Movie {i}"))

        assert len(await index.get_all(3)) == 3
        assert len(await index.get_all(1000)) == 5

    @pytest.mark.asyncio
    async def test_ensure_index_is_idempotent(self, index):
        await index.ensure_index()
        await index.ensure_index()

        assert await index.get_all(10) == []


class TestSearch:
    """Free-text search semantics."""

    @pytest.fixture
    def movies(self):
        return [
            Movie(id="m1", title="Lost in Space", genre="Drama", description="Family adrift"),
            Movie(id="m2", title="Star Wars", genre="Space Opera", description="Rebels"),
            Movie(id="m3", title="Apollo 13", genre="History", description="A trip through space"),
            Movie(id="m4", title="Heat", genre="Crime", description="Heist in Los Angeles"),
            Movie(id="m5", title="Amélie", genre="Romance", description="A Montmartre café"),
        ]

    @pytest_asyncio.fixture
    async def loaded(self, index, movies):
        for movie in movies:
            await index.upsert(movie)
        return index

    @pytest.mark.asyncio
    async def test_title_weighs_most(self, loaded):
        results = await loaded.search("space")

        assert [m.id for m in results] == ["m1", "m2", "m3"]

    @pytest.mark.asyncio
    async def test_case_insensitive_substring(self, loaded):
        results = await loaded.search("HEIS")

        assert [m.id for m in results] == ["m4"]

    @pytest.mark.asyncio
    async def test_case_folding_covers_non_ascii(self, loaded):
        assert [m.id for m in await loaded.search("AMÉLIE")] == ["m5"]
        assert [m.id for m in await loaded.search("CAFÉ")] == ["m5"]

    @pytest.mark.asyncio
    async def test_tokens_are_anded(self, loaded):
        assert [m.id for m in await loaded.search("space rebels")] == ["m2"]
        assert await loaded.search("space heist") == []

    @pytest.mark.asyncio
    async def test_wildcards_are_tolerated(self, loaded):
        results = await loaded.search("apol*")

        assert [m.id for m in results] == ["m3"]

    @pytest.mark.asyncio
    async def test_blank_term(self, loaded):
        assert await loaded.search("   ") == []

    @pytest.mark.asyncio
    async def test_like_metacharacters_are_literal(self, index):
        await index.upsert(Movie(id="a", title="100% Wolf"))
        await index.upsert(Movie(id="b", title="1000 Wolves"))

        assert [m.id for m in await index.search("100%")] == ["a"]
        assert await index.search("_") == []


class TestBulkUpsert:
    """Bulk seeding."""

    @pytest.mark.asyncio
    async def test_assigns_unique_ids(self, index):
        batch = [Movie(title="Alien"), Movie(title="Aliens"), Movie(id="m3", title="Heat")]

        result = await index.bulk_upsert(batch)

        ids = [m.id for m in result.succeeded]
        assert all(ids)
        assert len(set(ids)) == 3
        assert "m3" in ids
        assert result.ok
        assert len(await index.get_all(1000)) == 3

    @pytest.mark.asyncio
    async def test_rerun_does_not_duplicate(self, index):
        first = await index.bulk_upsert([Movie(title="Alien"), Movie(title="Heat")])

        second = await index.bulk_upsert(first.succeeded)

        assert {m.id for m in second.succeeded} == {m.id for m in first.succeeded}
        assert len(await index.get_all(1000)) == 2

    @pytest.mark.asyncio
    async def test_empty_batch_creates_index(self, index):
        result = await index.bulk_upsert([])

        assert result.total == 0
        assert await index.get_all(10) == []


class TestInMemoryFailures:
    """Failure injection used by the redelivery tests."""

    @pytest.mark.asyncio
    async def test_unavailable_index_raises(self):
        index = InMemorySearchIndex()
        index.fail_with(ConnectionError("cluster down"))

        with pytest.raises(SearchIndexError):
            await index.upsert(Movie(id="m1"))
        with pytest.raises(SearchIndexError):
            await index.bulk_upsert([Movie(id="m1")])

    @pytest.mark.asyncio
    async def test_partial_bulk_failure_is_reported(self):
        index = InMemorySearchIndex()
        index.reject_ids("bad")

        result = await index.bulk_upsert([Movie(id="good"), Movie(id="bad")])

        assert [m.id for m in result.succeeded] == ["good"]
        assert list(result.failed) == ["bad"]
        assert await index.exists("good")
        assert not await index.exists("bad")


class TestSqliteSearchIndex:
    """SQLite specifics."""

    @pytest.mark.asyncio
    async def test_one_file_per_index_name(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            movies = SqliteSearchIndex(tmpdir, "movies")
            archive = SqliteSearchIndex(tmpdir, "archive")

            await movies.upsert(Movie(id="m1", title="Dune"))

            assert movies.db_path != archive.db_path
            assert await movies.exists("m1")
            assert not await archive.exists("m1")

    @pytest.mark.asyncio
    async def test_documents_survive_reopen(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            await SqliteSearchIndex(tmpdir, "movies").upsert(Movie(id="m1", title="Dune"))

            reopened = SqliteSearchIndex(tmpdir, "movies")

            assert (await reopened.get_by_id("m1")).title == "Dune"
