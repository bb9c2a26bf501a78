"""
Command side: writes against the authoritative store.

Every mutation follows the same sequence:

    1. Stage the change and save() it (False -> PersistenceError)
    2. Invalidate movie_{id} and movies_all (best-effort)
    3. Publish the mutation event on the topic keyed by movie id

Invariants:
    - Nothing is published unless the store committed a change
    - Cache failures never fail a request
    - A publish failure propagates (BusError); the store keeps the change
      and the index catches up on the next mutation or migration
"""

from __future__ import annotations

import logging
from typing import Any

from ..bus.base import EventBus, StreamPos
from ..cache.aside import CacheAside
from ..errors import NotFoundError, PersistenceError
from ..messages import BusMessage, MovieCreated, MovieDeleted, MovieUpdated
from ..models import Movie, new_movie_id
from ..store.base import MovieStore

logger = logging.getLogger(__name__)


class MovieCommandService:
    """Create, update and delete movies; read them back from the store.

    Example:
        >>> service = MovieCommandService(store, bus, cache)
        >>> movie = await service.create_movie(Movie(title="Dune", genre="Sci-Fi"))
        >>> movie.has_id
        True
    """

    def __init__(
        self,
        store: MovieStore,
        bus: EventBus,
        cache: CacheAside,
        topic: str = "movie-mutations",
    ) -> None:
        self.store = store
        self.bus = bus
        self.cache = cache
        self.topic = topic

    async def migrate(self) -> int:
        """Apply schema migrations to the authoritative store."""
        return await self.store.migrate()

    async def get_all_movies(self) -> list[Movie]:
        """All movies in the authoritative store.

        Raises:
            NotFoundError: If the store holds no movies
        """
        movies = await self.store.get_all()
        if not movies:
            raise NotFoundError(message="No movies found")
        return movies

    async def get_movie_by_id(self, movie_id: str) -> Movie:
        movie = await self.store.get_by_id(movie_id)
        if movie is None:
            raise NotFoundError(movie_id)
        return movie

    async def create_movie(self, movie: Movie) -> Movie:
        if not movie.has_id:
            movie = movie.with_id(new_movie_id())

        await self.store.add(movie)
        await self._save(movie.id, "create")
        await self.cache.invalidate_movie(movie.id)
        await self._publish(movie.id, MovieCreated(movie=movie))

        logger.info("Movie created", extra={"movie_id": movie.id})
        return movie

    async def update_movie(self, movie_id: str, changes: dict[str, Any]) -> Movie:
        """Apply changes to a movie. The id itself can never change.

        Raises:
            NotFoundError: If the movie does not exist
            PersistenceError: If the store did not commit the change
        """
        existing = await self.get_movie_by_id(movie_id)
        movie = existing.with_changes(changes)

        await self.store.update(movie)
        await self._save(movie_id, "update")
        await self.cache.invalidate_movie(movie_id)
        await self._publish(movie_id, MovieUpdated(movie=movie))

        logger.info("Movie updated", extra={"movie_id": movie_id})
        return movie

    async def delete_movie(self, movie_id: str) -> None:
        existing = await self.get_movie_by_id(movie_id)

        await self.store.delete(existing)
        await self._save(movie_id, "delete")
        await self.cache.invalidate_movie(movie_id)
        await self._publish(movie_id, MovieDeleted(movie_id=movie_id))

        logger.info("Movie deleted", extra={"movie_id": movie_id})

    async def _save(self, movie_id: str, action: str) -> None:
        if not await self.store.save():
            raise PersistenceError(
                f"Failed to persist {action} of movie {movie_id}",
                details={"movie_id": movie_id, "action": action},
            )

    async def _publish(self, movie_id: str, message: BusMessage) -> StreamPos:
        return await self.bus.publish(self.topic, movie_id, message.encode(), message.headers())
