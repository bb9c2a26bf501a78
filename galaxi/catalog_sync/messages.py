"""
Message contracts carried on the event bus.

These are the stable wire shapes other services depend on. Field names on
the wire are camelCase (``functionId``, ``movieId``); Python code uses the
snake_case attribute names.

Each record carries its message type in the ``message-type`` header so a
single topic can hold several kinds (the mutation topic carries created,
updated and deleted events for one movie id in publish order).

Invariants:
    - Wire field names never change; new fields are added as optional
    - decode_message() rejects unknown types and malformed payloads with
      BusSerializationError, never with a pydantic error
"""

from __future__ import annotations

from typing import ClassVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from .bus.base import HEADER_MESSAGE_TYPE, BusSerializationError, StreamRecord
from .models import Movie


class BusMessage(BaseModel):
    """Base class for bus messages."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    message_type: ClassVar[str] = ""

    def encode(self) -> bytes:
        """Serialize to the JSON wire form."""
        return self.model_dump_json(by_alias=True).encode("utf-8")

    def headers(self, **extra: str) -> dict[str, bytes]:
        """Record headers for this message, plus any extra string headers."""
        headers = {HEADER_MESSAGE_TYPE: self.message_type.encode("utf-8")}
        headers.update({k: v.encode("utf-8") for k, v in extra.items()})
        return headers


# Mutation events (command side -> query side)


class MovieCreated(BusMessage):
    message_type: ClassVar[str] = "MovieCreated"

    movie: Movie


class MovieUpdated(BusMessage):
    message_type: ClassVar[str] = "MovieUpdated"

    movie: Movie


class MovieDeleted(BusMessage):
    message_type: ClassVar[str] = "MovieDeleted"

    movie_id: str


class MigrationMovies(BusMessage):
    """Bulk seed payload for the query side index."""

    message_type: ClassVar[str] = "MigrationMovies"

    movies: list[Movie]


# Availability request/reply


class CheckAvailableMovie(BusMessage):
    message_type: ClassVar[str] = "CheckAvailableMovie"

    movie_id: UUID


class MovieStatus(BusMessage):
    message_type: ClassVar[str] = "MovieStatus"

    exist: bool


# Ticketing


class TickedCreated(BusMessage):
    """A ticket reservation was created (inbound to the command side)."""

    message_type: ClassVar[str] = "TickedCreated"

    function_id: int
    num_seat: int
    email: str


class MovieDetails(BusMessage):
    """Notification payload sent after a ticket reservation."""

    message_type: ClassVar[str] = "MovieDetails"

    function_id: int
    num_seat: int
    email: str


MESSAGE_TYPES: dict[str, type[BusMessage]] = {
    cls.message_type: cls
    for cls in (
        MovieCreated,
        MovieUpdated,
        MovieDeleted,
        MigrationMovies,
        CheckAvailableMovie,
        MovieStatus,
        TickedCreated,
        MovieDetails,
    )
}


def decode_message(record: StreamRecord) -> BusMessage:
    """Decode a bus record into its message contract.

    Args:
        record: Record with a ``message-type`` header

    Returns:
        The decoded message

    Raises:
        BusSerializationError: If the type is unknown or the payload is invalid
    """
    message_type = record.header(HEADER_MESSAGE_TYPE)
    cls = MESSAGE_TYPES.get(message_type or "")
    if cls is None:
        raise BusSerializationError(f"Unknown message type: {message_type!r}")

    try:
        return cls.model_validate_json(record.value)
    except ValidationError as e:
        raise BusSerializationError(f"Invalid {message_type} payload: {e}") from e
