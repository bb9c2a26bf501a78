"""
Search index contract (query side system of record).

The index holds denormalized movie documents projected from mutation
events. Every write is idempotent so that at-least-once delivery never
produces duplicates:

    - upsert() replaces the whole document (last write wins, no merge)
    - remove() of an absent id is a no-op
    - bulk_upsert() assigns ids to id-less movies, then upserts the batch

Search semantics (shared by every backend):
    - The term is split on whitespace; all tokens must match (AND)
    - A token matches a document when it is a case-insensitive substring
      of title, genre or description; '*' and '?' are stripped
    - Results are ranked by weighted field hits (title 3, genre 2,
      description 1), ties broken by title then id
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from ..models import Movie

TITLE_WEIGHT = 3
GENRE_WEIGHT = 2
DESCRIPTION_WEIGHT = 1

_STRIP_WILDCARDS = str.maketrans("", "", "*?")


def tokenize(term: str) -> list[str]:
    """Split a search term into match tokens, dropping wildcard characters."""
    tokens = (raw.translate(_STRIP_WILDCARDS) for raw in term.split())
    return [token for token in tokens if token]


@dataclass
class BulkResult:
    """Outcome of a bulk upsert.

    Attributes:
        succeeded: Movies written, with their (possibly newly assigned) ids
        failed: Movie id -> error message for documents that were not written
    """

    succeeded: list[Movie] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed)


@runtime_checkable
class SearchIndex(Protocol):
    """Capability interface implemented by every search index backend.

    All operations raise SearchIndexError when the backing index cannot be
    reached.
    """

    @abstractmethod
    async def ensure_index(self) -> None:
        """Create the backing index if it does not exist (idempotent)."""
        ...

    @abstractmethod
    async def upsert(self, movie: Movie) -> None:
        ...

    @abstractmethod
    async def remove(self, movie_id: str) -> None:
        ...

    @abstractmethod
    async def get_by_id(self, movie_id: str) -> Movie | None:
        ...

    @abstractmethod
    async def exists(self, movie_id: str) -> bool:
        ...

    @abstractmethod
    async def get_all(self, limit: int) -> list[Movie]:
        """Bounded scan, at most ``limit`` documents. Not paginated."""
        ...

    @abstractmethod
    async def search(self, term: str) -> list[Movie]:
        ...

    @abstractmethod
    async def bulk_upsert(self, movies: list[Movie]) -> BulkResult:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...
