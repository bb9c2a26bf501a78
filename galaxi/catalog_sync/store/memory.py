"""In-memory MovieStore for tests and local development."""

from __future__ import annotations

from ..errors import PersistenceError
from ..models import Movie


class InMemoryMovieStore:
    """Dictionary-backed MovieStore with the same unit-of-work semantics as SQLite."""

    SCHEMA_VERSION = 2

    def __init__(self) -> None:
        self._movies: dict[str, Movie] = {}
        self._pending: list[tuple[str, Movie]] = []
        self._version = 0
        self._save_failure: Exception | None = None

    async def migrate(self) -> int:
        self._version = self.SCHEMA_VERSION
        return self._version

    async def add(self, movie: Movie) -> None:
        self._pending.append(("add", movie))

    async def update(self, movie: Movie) -> None:
        self._pending.append(("update", movie))

    async def delete(self, movie: Movie) -> None:
        self._pending.append(("delete", movie))

    async def save(self) -> bool:
        pending, self._pending = self._pending, []
        if self._save_failure is not None:
            raise PersistenceError(f"Failed to save changes: {self._save_failure}")

        staged = dict(self._movies)
        changed = 0
        for op, movie in pending:
            if op == "add":
                if movie.id in staged:
                    raise PersistenceError(f"Duplicate movie id: {movie.id}")
                staged[movie.id] = movie
                changed += 1
            elif op == "update":
                if movie.id in staged:
                    staged[movie.id] = movie
                    changed += 1
            elif staged.pop(movie.id, None) is not None:
                changed += 1

        self._movies = staged
        return changed > 0

    async def get_by_id(self, movie_id: str) -> Movie | None:
        return self._movies.get(movie_id)

    async def get_all(self) -> list[Movie]:
        return list(self._movies.values())

    # Testing helpers

    def fail_saves(self, exception: Exception | None) -> None:
        """Make save() fail until cleared with None."""
        self._save_failure = exception
