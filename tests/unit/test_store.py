"""
Unit tests for the authoritative movie store.

Tests cover:
- Unit-of-work semantics (stage, then save)
- save() reporting whether any row changed
- Schema migrations (SQLite)
- Error wrapping
"""

import tempfile
from pathlib import Path

import pytest
import pytest_asyncio

from galaxi.catalog_sync.errors import PersistenceError
from galaxi.catalog_sync.models import Movie, new_movie_id
from galaxi.catalog_sync.store import InMemoryMovieStore, SqliteMovieStore
from galaxi.catalog_sync.store.sqlite_store import MIGRATIONS


@pytest_asyncio.fixture(params=["sqlite", "memory"])
async def store(request):
    """Migrated store of each backend."""
    if request.param == "memory":
        store = InMemoryMovieStore()
        await store.migrate()
        yield store
        return
    with tempfile.TemporaryDirectory() as tmpdir:
        store = SqliteMovieStore(str(Path(tmpdir) / "movies.db"))
        await store.migrate()
        yield store


class TestUnitOfWork:
    """Staging and committing changes."""

    @pytest.mark.asyncio
    async def test_add_is_invisible_until_saved(self, store):
        movie = Movie(id=new_movie_id(), title="Dune")

        await store.add(movie)
        assert await store.get_by_id(movie.id) is None

        assert await store.save() is True
        assert await store.get_by_id(movie.id) == movie

    @pytest.mark.asyncio
    async def test_attributes_round_trip(self, store):
        movie = Movie(id="m1", title="Dune", genre="Sci-Fi", runtime_minutes=155, tags=["epic"])

        await store.add(movie)
        await store.save()

        assert await store.get_by_id("m1") == movie

    @pytest.mark.asyncio
    async def test_update(self, store):
        await store.add(Movie(id="m1", title="Dune"))
        await store.save()

        await store.update(Movie(id="m1", title="Dune: Part One"))

        assert await store.save() is True
        assert (await store.get_by_id("m1")).title == "Dune: Part One"

    @pytest.mark.asyncio
    async def test_delete(self, store):
        movie = Movie(id="m1", title="Dune")
        await store.add(movie)
        await store.save()

        await store.delete(movie)

        assert await store.save() is True
        assert await store.get_by_id("m1") is None

    @pytest.mark.asyncio
    async def test_save_without_changes_reports_false(self, store):
        assert await store.save() is False

    @pytest.mark.asyncio
    async def test_update_of_missing_movie_changes_nothing(self, store):
        await store.update(Movie(id="ghost", title="Nobody"))

        assert await store.save() is False

    @pytest.mark.asyncio
    async def test_duplicate_add_fails(self, store):
        await store.add(Movie(id="m1", title="Dune"))
        await store.save()

        await store.add(Movie(id="m1", title="Dune again"))

        with pytest.raises(PersistenceError):
            await store.save()
        assert (await store.get_by_id("m1")).title == "Dune"

    @pytest.mark.asyncio
    async def test_failed_save_discards_the_batch(self, store):
        await store.add(Movie(id="m1", title="Dune"))
        await store.save()

        await store.add(Movie(id="m2", title="Heat"))
        await store.add(Movie(id="m1", title="Duplicate"))
        with pytest.raises(PersistenceError):
            await store.save()

        assert await store.get_by_id("m2") is None
        assert await store.save() is False

    @pytest.mark.asyncio
    async def test_get_all(self, store):
        for title in ("Alien", "Heat", "Dune"):
            await store.add(Movie(id=new_movie_id(), title=title))
        await store.save()

        assert sorted(m.title for m in await store.get_all()) == ["Alien", "Dune", "Heat"]


class TestSqliteMovieStore:
    """SQLite specifics."""

    @pytest.fixture
    def db_path(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            yield str(Path(tmpdir) / "data" / "movies.db")

    @pytest.mark.asyncio
    async def test_migrate_reports_latest_version(self, db_path):
        store = SqliteMovieStore(db_path)

        assert await store.migrate() == MIGRATIONS[-1][0]

    @pytest.mark.asyncio
    async def test_migrate_is_idempotent(self, db_path):
        store = SqliteMovieStore(db_path)
        await store.migrate()
        await store.add(Movie(id="m1", title="Dune"))
        await store.save()

        assert await store.migrate() == MIGRATIONS[-1][0]
        assert await store.get_by_id("m1") is not None

    @pytest.mark.asyncio
    async def test_reads_before_migrate_fail(self, db_path):
        store = SqliteMovieStore(db_path)

        with pytest.raises(PersistenceError):
            await store.get_all()

    @pytest.mark.asyncio
    async def test_data_survives_reopen(self, db_path):
        store = SqliteMovieStore(db_path)
        await store.migrate()
        await store.add(Movie(id="m1", title="Dune"))
        await store.save()

        reopened = SqliteMovieStore(db_path)

        assert (await reopened.get_by_id("m1")).title == "Dune"


class TestInMemoryMovieStore:
    @pytest.mark.asyncio
    async def test_injected_save_failure(self):
        store = InMemoryMovieStore()
        store.fail_saves(RuntimeError("disk full"))
        await store.add(Movie(id="m1"))

        with pytest.raises(PersistenceError):
            await store.save()
        assert await store.get_by_id("m1") is None
