"""
Administrative migrations.

Two distinct operations, both explicit and never run at startup:

- migrate_schema(): apply schema migrations to the authoritative store
- migrate_movies(): copy every movie from the authoritative store into the
  search index, either by publishing one MigrationMovies batch for the
  query side to consume or by bulk-indexing directly

Re-running migrate_movies() is idempotent: documents that already have ids
are replaced in place. Partial batch failures are logged and reported, not
rolled back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..bus.base import EventBus, StreamPos
from ..cache.aside import CacheAside
from ..index.base import BulkResult, SearchIndex
from ..messages import MigrationMovies
from ..store.base import MovieStore
from .consumers import apply_bulk

logger = logging.getLogger(__name__)

MIGRATION_KEY = "migration"


@dataclass
class MigrationReport:
    """Outcome of a data migration.

    Attributes:
        movies: Number of movies read from the store
        position: Where the batch was published (publish mode)
        result: Bulk index outcome (direct mode)
    """

    movies: int
    position: StreamPos | None = None
    result: BulkResult | None = None


class MigrationCoordinator:
    """Runs schema and data migrations on demand.

    Example:
        >>> coordinator = MigrationCoordinator(store, bus, index, cache)
        >>> await coordinator.migrate_schema()
        2
        >>> report = await coordinator.migrate_movies()
    """

    def __init__(
        self,
        store: MovieStore,
        bus: EventBus | None = None,
        index: SearchIndex | None = None,
        cache: CacheAside | None = None,
        topic: str = "migration-movies",
    ) -> None:
        self.store = store
        self.bus = bus
        self.index = index
        self.cache = cache
        self.topic = topic

    async def migrate_schema(self) -> int:
        """Apply pending schema migrations to the authoritative store."""
        version = await self.store.migrate()
        logger.info(f"Store schema at version {version}")
        return version

    async def migrate_movies(self, publish: bool = True) -> MigrationReport:
        """Copy all movies from the authoritative store to the search index.

        Args:
            publish: Publish a MigrationMovies batch (True) or bulk-index
                directly through the configured index and cache (False)

        Raises:
            ValueError: If the collaborators for the chosen mode are missing
        """
        if publish and self.bus is None:
            raise ValueError("Publishing a migration requires an event bus")
        if not publish and (self.index is None or self.cache is None):
            raise ValueError("Direct migration requires a search index and a cache")

        movies = await self.store.get_all()
        if not movies:
            logger.info("No movies to migrate")
            return MigrationReport(movies=0)

        if publish:
            message = MigrationMovies(movies=movies)
            position = await self.bus.publish(
                self.topic, MIGRATION_KEY, message.encode(), message.headers()
            )
            logger.info(
                f"Published migration batch of {len(movies)} movies",
                extra={"position": str(position)},
            )
            return MigrationReport(movies=len(movies), position=position)

        result = await apply_bulk(self.index, self.cache, movies)
        logger.info(
            "Direct migration finished",
            extra={"succeeded": len(result.succeeded), "failed": len(result.failed)},
        )
        return MigrationReport(movies=len(movies), result=result)
