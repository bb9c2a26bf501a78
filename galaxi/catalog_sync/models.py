"""
Movie data model shared by the command and query sides.

The authoritative record and the projected search document have the same
shape. Only ``id``, ``title``, ``genre`` and ``description`` are interpreted;
every other attribute (scheduling, operational data) is opaque payload that
is carried through unmodified.

Invariants:
    - ``id`` is immutable once assigned and is the key on both sides
    - An empty ``id`` means "not assigned yet" (bulk seeding assigns one)
    - Extra attributes survive every round trip (store, index, cache, bus)
"""

from __future__ import annotations

import uuid
from typing import Any

from pydantic import BaseModel, ConfigDict

CORE_FIELDS = ("id", "title", "genre", "description")


class Movie(BaseModel):
    """A movie in the catalog.

    Attributes:
        id: Globally unique identifier (UUID string), empty until assigned
        title: Movie title
        genre: Genre label
        description: Free-text synopsis

    Example:
        >>> movie = Movie(title="Dune", genre="Sci-Fi", runtime_minutes=155)
        >>> movie = movie.with_id(new_movie_id())
        >>> movie.attributes
        {'runtime_minutes': 155}
    """

    model_config = ConfigDict(extra="allow")

    id: str = ""
    title: str = ""
    genre: str = ""
    description: str = ""

    @property
    def attributes(self) -> dict[str, Any]:
        """Opaque attributes outside the core fields."""
        return dict(self.model_extra or {})

    @property
    def has_id(self) -> bool:
        return bool(self.id)

    def with_id(self, movie_id: str) -> Movie:
        """Return a copy carrying the given id."""
        return self.model_copy(update={"id": movie_id})

    def with_changes(self, changes: dict[str, Any]) -> Movie:
        """Return a copy with fields replaced; the id never changes."""
        data = self.to_document()
        data.update({k: v for k, v in changes.items() if k != "id"})
        return Movie.from_document(data)

    def to_document(self) -> dict[str, Any]:
        """Full document representation (core fields plus attributes)."""
        return self.model_dump()

    @classmethod
    def from_document(cls, data: dict[str, Any]) -> Movie:
        return cls.model_validate(data)


def new_movie_id() -> str:
    """Generate a new movie identifier."""
    return str(uuid.uuid4())
