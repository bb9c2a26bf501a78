"""
Query side: cache-aside reads over the search index.

Reads consult the cache first and fall back to the index on a miss or a
cache failure; the cache is repopulated in the background. Index errors
propagate to the caller as SearchIndexError.
"""

from __future__ import annotations

import logging
from typing import Any

from ..cache.aside import CacheAside
from ..cache.keys import ALL_MOVIES_KEY, movie_key, query_key
from ..errors import NotFoundError
from ..index.base import SearchIndex
from ..models import Movie

logger = logging.getLogger(__name__)


def _encode_movies(movies: list[Movie]) -> list[dict[str, Any]]:
    return [m.to_document() for m in movies]


def _decode_movies(documents: list[dict[str, Any]]) -> list[Movie]:
    return [Movie.from_document(d) for d in documents]


class MovieQueryService:
    """Read movies from the query side."""

    def __init__(self, index: SearchIndex, cache: CacheAside, page_size: int = 1000) -> None:
        self.index = index
        self.cache = cache
        self.page_size = page_size

    async def get_movie_by_id(self, movie_id: str) -> Movie:
        movie = await self.cache.read_through(
            movie_key(movie_id),
            loader=lambda: self.index.get_by_id(movie_id),
            encode=Movie.to_document,
            decode=Movie.from_document,
        )
        if movie is None:
            raise NotFoundError(movie_id)
        return movie

    async def get_all_movies(self) -> list[Movie]:
        """Up to page_size movies. Not paginated."""
        return await self.cache.read_through(
            ALL_MOVIES_KEY,
            loader=lambda: self.index.get_all(self.page_size),
            encode=_encode_movies,
            decode=_decode_movies,
        )

    async def search_movies(self, term: str) -> list[Movie]:
        term = term.strip()
        if not term:
            return []
        return await self.cache.read_through(
            query_key(term),
            loader=lambda: self.index.search(term),
            encode=_encode_movies,
            decode=_decode_movies,
        )
