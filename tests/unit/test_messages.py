"""
Unit tests for bus message contracts.

Tests cover:
- Wire field names (camelCase) of the public contracts
- Message type headers and decoding
- Pass-through of opaque movie attributes
- Rejection of unknown or malformed records
"""

import json
import uuid

import pytest

from galaxi.catalog_sync.bus import BusSerializationError, StreamPos, StreamRecord
from galaxi.catalog_sync.messages import (
    CheckAvailableMovie,
    MigrationMovies,
    MovieCreated,
    MovieDeleted,
    MovieStatus,
    TickedCreated,
    decode_message,
)
from galaxi.catalog_sync.models import Movie
from tests.helpers import record_for


class TestWireShapes:
    """The field names other services depend on."""

    def test_ticket_created_fields(self):
        message = TickedCreated(function_id=7, num_seat=2, email="a@example.com")

        assert json.loads(message.encode()) == {
            "functionId": 7,
            "numSeat": 2,
            "email": "a@example.com",
        }

    def test_check_available_movie_fields(self):
        movie_id = uuid.uuid4()

        wire = json.loads(CheckAvailableMovie(movie_id=movie_id).encode())

        assert wire == {"movieId": str(movie_id)}

    def test_movie_status_fields(self):
        assert json.loads(MovieStatus(exist=True).encode()) == {"exist": True}

    def test_decode_accepts_wire_names(self):
        record = StreamRecord(
            key="1",
            value=b'{"functionId": 1, "numSeat": 3, "email": "b@example.com"}',
            position=StreamPos("ticket-created", 0, 0, 0),
            headers={"message-type": b"TickedCreated"},
        )

        message = decode_message(record)

        assert isinstance(message, TickedCreated)
        assert message.num_seat == 3


class TestDecoding:
    """Tests for decode_message."""

    def test_headers_carry_message_type(self):
        headers = MovieDeleted(movie_id="m1").headers(**{"correlation-id": "c1"})

        assert headers == {"message-type": b"MovieDeleted", "correlation-id": b"c1"}

    def test_movie_attributes_pass_through(self):
        movie = Movie(id="m1", title="Dune", genre="Sci-Fi", runtime_minutes=155)

        decoded = decode_message(record_for(MovieCreated(movie=movie)))

        assert decoded.movie == movie
        assert decoded.movie.attributes == {"runtime_minutes": 155}

    def test_migration_batch(self):
        movies = [Movie(title="Alien"), Movie(id="m2", title="Heat")]

        decoded = decode_message(record_for(MigrationMovies(movies=movies)))

        assert [m.title for m in decoded.movies] == ["Alien", "Heat"]
        assert decoded.movies[0].id == ""

    def test_unknown_type_rejected(self):
        record = record_for(MovieDeleted(movie_id="m1"))
        record.headers["message-type"] = b"Nope"

        with pytest.raises(BusSerializationError):
            decode_message(record)

    def test_missing_type_rejected(self):
        record = record_for(MovieDeleted(movie_id="m1"))
        del record.headers["message-type"]

        with pytest.raises(BusSerializationError):
            decode_message(record)

    def test_malformed_payload_rejected(self):
        record = record_for(CheckAvailableMovie(movie_id=uuid.uuid4()))
        record.value = b'{"movieId": "not-a-uuid"}'

        with pytest.raises(BusSerializationError):
            decode_message(record)

    def test_invalid_json_rejected(self):
        record = record_for(MovieDeleted(movie_id="m1"))
        record.value = b"{not json"

        with pytest.raises(BusSerializationError):
            decode_message(record)


class TestMovie:
    """Tests for the Movie model."""

    def test_with_changes_never_changes_id(self):
        movie = Movie(id="m1", title="Dune")

        changed = movie.with_changes({"id": "other", "title": "Dune: Part Two", "year": 2024})

        assert changed.id == "m1"
        assert changed.title == "Dune: Part Two"
        assert changed.attributes == {"year": 2024}

    def test_document_round_trip(self):
        movie = Movie(id="m1", title="Dune", rating=8.1)

        assert Movie.from_document(movie.to_document()) == movie
