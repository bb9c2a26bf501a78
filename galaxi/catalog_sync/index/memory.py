"""In-memory search index for tests and local development."""

from __future__ import annotations

import logging

from ..errors import SearchIndexError
from ..models import Movie, new_movie_id
from .base import (
    DESCRIPTION_WEIGHT,
    GENRE_WEIGHT,
    TITLE_WEIGHT,
    BulkResult,
    tokenize,
)

logger = logging.getLogger(__name__)


def _score(movie: Movie, tokens: list[str]) -> int | None:
    """Weighted hit score, or None if any token fails to match."""
    title = movie.title.lower()
    genre = movie.genre.lower()
    description = movie.description.lower()

    total = 0
    for token in tokens:
        token = token.lower()
        score = (
            (TITLE_WEIGHT if token in title else 0)
            + (GENRE_WEIGHT if token in genre else 0)
            + (DESCRIPTION_WEIGHT if token in description else 0)
        )
        if score == 0:
            return None
        total += score
    return total


class InMemorySearchIndex:
    """Dictionary-backed SearchIndex with the same semantics as SqliteSearchIndex.

    Testing helpers allow injecting failures to exercise redelivery paths.
    """

    def __init__(self, index_name: str = "movies", page_size: int = 1000) -> None:
        self.index_name = index_name
        self.page_size = page_size
        self._documents: dict[str, dict] = {}
        self._created = False
        self._failure: Exception | None = None
        self._failing_ids: set[str] = set()
        self.ensure_calls = 0

    def _check(self) -> None:
        if self._failure is not None:
            raise SearchIndexError(f"Index {self.index_name} unavailable: {self._failure}")

    async def ensure_index(self) -> None:
        self._check()
        self.ensure_calls += 1
        self._created = True

    async def upsert(self, movie: Movie) -> None:
        self._check()
        if not movie.has_id:
            raise SearchIndexError("Cannot index a movie without an id")
        self._created = True
        self._documents[movie.id] = movie.to_document()

    async def remove(self, movie_id: str) -> None:
        self._check()
        self._documents.pop(movie_id, None)

    async def get_by_id(self, movie_id: str) -> Movie | None:
        self._check()
        document = self._documents.get(movie_id)
        return Movie.from_document(document) if document is not None else None

    async def exists(self, movie_id: str) -> bool:
        self._check()
        return movie_id in self._documents

    def _sorted(self) -> list[Movie]:
        movies = [Movie.from_document(d) for d in self._documents.values()]
        return sorted(movies, key=lambda m: (m.title, m.id))

    async def get_all(self, limit: int) -> list[Movie]:
        self._check()
        return self._sorted()[:limit]

    async def search(self, term: str) -> list[Movie]:
        self._check()
        tokens = tokenize(term)
        if not tokens:
            return []

        scored = []
        for movie in self._sorted():
            score = _score(movie, tokens)
            if score is not None:
                scored.append((score, movie))
        # sorted() is stable, so ties keep title/id order
        scored.sort(key=lambda pair: -pair[0])
        return [movie for _, movie in scored[: self.page_size]]

    async def bulk_upsert(self, movies: list[Movie]) -> BulkResult:
        await self.ensure_index()

        result = BulkResult()
        for movie in movies:
            if not movie.has_id:
                movie = movie.with_id(new_movie_id())
            if movie.id in self._failing_ids:
                result.failed[movie.id] = "document rejected"
                continue
            self._documents[movie.id] = movie.to_document()
            result.succeeded.append(movie)

        if result.failed:
            logger.error(
                "Bulk index partially failed",
                extra={
                    "index": self.index_name,
                    "succeeded": len(result.succeeded),
                    "failed": len(result.failed),
                },
            )
        return result

    async def close(self) -> None:
        pass

    # Testing helpers

    @property
    def created(self) -> bool:
        return self._created

    def count(self) -> int:
        return len(self._documents)

    def fail_with(self, exception: Exception | None) -> None:
        """Make every operation raise SearchIndexError until cleared with None."""
        self._failure = exception

    def reject_ids(self, *movie_ids: str) -> None:
        """Make bulk_upsert reject the given documents."""
        self._failing_ids = set(movie_ids)
