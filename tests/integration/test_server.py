"""
Integration tests for the Server orchestrator with in-memory backends.

Tests cover:
- Startup of the configured consumers
- Command to query propagation through a running server
- Restart of a consumer that gave up on a record
- Graceful shutdown
"""

import pytest
import pytest_asyncio

from galaxi.catalog_sync.config import (
    BusBackend,
    CacheBackend,
    ServerConfig,
    StorageConfig,
    StoreBackend,
    SyncConfig,
)
from galaxi.catalog_sync.errors import NotFoundError
from galaxi.catalog_sync.main import Server
from galaxi.catalog_sync.models import Movie
from tests.helpers import eventually


def memory_config(tmp_path, run_command_side=True, **sync):
    return ServerConfig(
        bus_backend=BusBackend.MEMORY,
        cache_backend=CacheBackend.MEMORY,
        store_backend=StoreBackend.MEMORY,
        storage=StorageConfig(data_dir=str(tmp_path)),
        sync=SyncConfig(**sync),
        run_command_side=run_command_side,
    )


class TestServer:
    @pytest_asyncio.fixture
    async def server(self, tmp_path):
        server = Server(memory_config(tmp_path, max_retries=0, restart_delay_ms=50))
        await server.start(wait=False)
        yield server
        await server.stop()

    @pytest.mark.asyncio
    async def test_starts_all_consumers(self, server):
        assert server.is_running
        assert [c.name for c in server.consumers] == [
            "MovieSynchronizer",
            "MigrationConsumer",
            "AvailabilityResponder",
            "TicketNotifier",
        ]

    @pytest.mark.asyncio
    async def test_query_side_only(self, tmp_path):
        server = Server(memory_config(tmp_path, run_command_side=False))
        await server.start(wait=False)
        try:
            assert "TicketNotifier" not in [c.name for c in server.consumers]
        finally:
            await server.stop()

    @pytest.mark.asyncio
    async def test_created_movie_becomes_queryable(self, server):
        await server.store.migrate()

        movie = await server.commands.create_movie(Movie(title="Dune"))

        async def visible():
            try:
                return await server.queries.get_movie_by_id(movie.id) == movie
            except NotFoundError:
                return False

        assert await eventually(visible)

    @pytest.mark.asyncio
    async def test_consumer_is_restarted_after_giving_up(self, server):
        server.index.fail_with(ConnectionError("index down"))
        movie = await server.commands.create_movie(Movie(title="Dune"))
        synchronizer = server.consumers[0]

        assert await eventually(lambda: _errors_at_least(synchronizer, 2))
        server.index.fail_with(None)

        assert await eventually(lambda: _exists(server.index, movie.id))

    @pytest.mark.asyncio
    async def test_stop_shuts_everything_down(self, tmp_path):
        server = Server(memory_config(tmp_path))
        await server.start(wait=False)
        consumers = list(server.consumers)

        await server.stop()

        assert not server.is_running
        assert not server.bus.is_connected
        assert all(not c.is_running for c in consumers)


async def _errors_at_least(consumer, count):
    return consumer.stats["error_count"] >= count


async def _exists(index, movie_id):
    return await index.exists(movie_id)
