"""Persisted cache key layout.

These exact strings are shared by every deployment using the same cache,
so they are part of the compatibility surface.
"""

from __future__ import annotations

ALL_MOVIES_KEY = "movies_all"


def movie_key(movie_id: str) -> str:
    return f"movie_{movie_id}"


def query_key(term: str) -> str:
    return f"Movie_query_{term}"


def movie_keys(movie_id: str) -> tuple[str, str]:
    """Keys to invalidate after a mutation of one movie."""
    return movie_key(movie_id), ALL_MOVIES_KEY
