"""
Authoritative movie store contract (command side).

The store follows a unit-of-work shape: add/update/delete stage changes and
save() commits them, reporting whether any row changed. Callers treat a
save() that changed nothing as a persistence failure.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Protocol, runtime_checkable

from ..models import Movie


@runtime_checkable
class MovieStore(Protocol):
    """Capability interface implemented by every authoritative store backend."""

    @abstractmethod
    async def add(self, movie: Movie) -> None:
        ...

    @abstractmethod
    async def update(self, movie: Movie) -> None:
        ...

    @abstractmethod
    async def delete(self, movie: Movie) -> None:
        ...

    @abstractmethod
    async def save(self) -> bool:
        """Commit staged changes.

        Returns:
            True if at least one row changed

        Raises:
            PersistenceError: If the commit fails
        """
        ...

    @abstractmethod
    async def get_by_id(self, movie_id: str) -> Movie | None:
        ...

    @abstractmethod
    async def get_all(self) -> list[Movie]:
        ...

    @abstractmethod
    async def migrate(self) -> int:
        """Apply pending schema migrations.

        Returns:
            Schema version after migrating
        """
        ...
