"""
Synchronizer: projects command-side mutations onto the query side.

One handler per mutation kind:
    MovieCreated / MovieUpdated -> index.upsert(movie), then invalidate
    MovieDeleted                -> index.remove(id), then invalidate
    MigrationMovies             -> index.bulk_upsert(movies), then invalidate

Invariants:
    - Invalidation always follows the index write, never precedes it
    - The index write is the correctness boundary: its errors propagate so
      the record is redelivered; cache errors never fail a handler
    - Every handler is idempotent (full-document upsert, no-op remove,
      invalidation of an absent key)
"""

from __future__ import annotations

import logging

from ..bus.base import EventBus, StreamRecord
from ..cache.aside import CacheAside
from ..cache.keys import ALL_MOVIES_KEY, movie_key
from ..index.base import BulkResult, SearchIndex
from ..messages import MigrationMovies, MovieCreated, MovieDeleted, MovieUpdated
from ..models import Movie
from .consumer import EventConsumer

logger = logging.getLogger(__name__)


class CreatedMovieHandler:
    def __init__(self, index: SearchIndex, cache: CacheAside) -> None:
        self.index = index
        self.cache = cache

    async def handle(self, message: MovieCreated, record: StreamRecord) -> None:
        await self.index.upsert(message.movie)
        await self.cache.invalidate_movie(message.movie.id)
        logger.info("Indexed created movie", extra={"movie_id": message.movie.id})


class UpdatedMovieHandler:
    def __init__(self, index: SearchIndex, cache: CacheAside) -> None:
        self.index = index
        self.cache = cache

    async def handle(self, message: MovieUpdated, record: StreamRecord) -> None:
        await self.index.upsert(message.movie)
        await self.cache.invalidate_movie(message.movie.id)
        logger.info("Indexed updated movie", extra={"movie_id": message.movie.id})


class DeletedMovieHandler:
    def __init__(self, index: SearchIndex, cache: CacheAside) -> None:
        self.index = index
        self.cache = cache

    async def handle(self, message: MovieDeleted, record: StreamRecord) -> None:
        await self.index.remove(message.movie_id)
        await self.cache.invalidate_movie(message.movie_id)
        logger.info("Removed deleted movie from index", extra={"movie_id": message.movie_id})


async def apply_bulk(index: SearchIndex, cache: CacheAside, movies: list[Movie]) -> BulkResult:
    """Bulk-index movies, then invalidate every cache key they may be held under.

    Partial failures are logged by the index and reported in the result;
    only an unreachable index raises.
    """
    result = await index.bulk_upsert(movies)

    keys = [ALL_MOVIES_KEY, *(movie_key(m.id) for m in result.succeeded)]
    failures = await cache.cache.invalidate(*keys)
    if failures:
        logger.warning(
            "Cache invalidation after migration incomplete, entries expire by TTL",
            extra={"failed_keys": len(failures)},
        )
    return result


class MigrationMoviesHandler:
    def __init__(self, index: SearchIndex, cache: CacheAside) -> None:
        self.index = index
        self.cache = cache

    async def handle(self, message: MigrationMovies, record: StreamRecord) -> None:
        result = await apply_bulk(self.index, self.cache, message.movies)
        logger.info(
            "Applied movie migration batch",
            extra={"succeeded": len(result.succeeded), "failed": len(result.failed)},
        )


class MovieSynchronizer(EventConsumer):
    """Consumes the mutation topic (keyed by movie id) and keeps the index in sync.

    Example:
        >>> sync = MovieSynchronizer(bus, index, cache)
        >>> task = asyncio.create_task(sync.start())
    """

    def __init__(
        self,
        bus: EventBus,
        index: SearchIndex,
        cache: CacheAside,
        topic: str = "movie-mutations",
        group_id: str = "movie-synchronizer",
        max_retries: int = 3,
        retry_delay_ms: int = 100,
    ) -> None:
        super().__init__(
            bus,
            topic,
            group_id,
            handlers={
                MovieCreated: CreatedMovieHandler(index, cache),
                MovieUpdated: UpdatedMovieHandler(index, cache),
                MovieDeleted: DeletedMovieHandler(index, cache),
            },
            max_retries=max_retries,
            retry_delay_ms=retry_delay_ms,
        )


class MigrationConsumer(EventConsumer):
    """Consumes bulk migration batches published by the MigrationCoordinator."""

    def __init__(
        self,
        bus: EventBus,
        index: SearchIndex,
        cache: CacheAside,
        topic: str = "migration-movies",
        group_id: str = "movie-migration",
        max_retries: int = 3,
        retry_delay_ms: int = 100,
    ) -> None:
        super().__init__(
            bus,
            topic,
            group_id,
            handlers={MigrationMovies: MigrationMoviesHandler(index, cache)},
            max_retries=max_retries,
            retry_delay_ms=retry_delay_ms,
        )
