"""
Error types for the catalog sync service.

Taxonomy:
    - NotFoundError: entity absent on a read/update/delete path
    - PersistenceError: authoritative store failed to commit
    - CacheError: any cache operation error (always recovered locally)
    - SearchIndexError: search index operation failed
    - SyncError: a consumer gave up on a message after retries

Transport errors live with the bus (see bus.base.BusError).

Invariants:
    - CacheError never crosses the cache layer boundary
    - SearchIndexError raised inside a consumer causes redelivery
    - All errors inherit from CatalogError
"""

from __future__ import annotations

from typing import Any


class CatalogError(Exception):
    """Base exception for catalog sync errors.

    Attributes:
        message: Error message
        details: Additional error context
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NotFoundError(CatalogError):
    """Movie does not exist in the store or index."""

    def __init__(self, movie_id: str | None = None, message: str | None = None) -> None:
        super().__init__(
            message or f"Movie not found: {movie_id}",
            details={"movie_id": movie_id},
        )
        self.movie_id = movie_id


class PersistenceError(CatalogError):
    """Failed to persist changes to the authoritative store.

    Raised when:
    - The store client raises while committing
    - A commit reports that no row changed
    """

    pass


class CacheError(CatalogError):
    """Cache backend operation failed."""

    def __init__(self, message: str, key: str | None = None) -> None:
        super().__init__(message, details={"key": key})
        self.key = key


class SearchIndexError(CatalogError):
    """Search index operation failed."""

    pass


class SyncError(CatalogError):
    """A consumer could not process a message after exhausting retries.

    The message offset is left uncommitted so the transport redelivers it.
    """

    pass
