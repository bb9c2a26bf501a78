"""
SQLite authoritative store for the command side.

This module manages the command side's system of record: one SQLite file
holding every movie. Schema changes are applied by migrate(), an explicit
administrative operation; nothing migrates on startup.

Invariants:
    - movie_id is the primary key and never changes
    - save() applies all staged changes in one transaction
    - save() returns False when no row changed (e.g. update of a
      concurrently deleted movie); callers treat that as a failure
    - Opaque attributes are stored verbatim as JSON

How to change safely:
    - Append new entries to MIGRATIONS, never edit applied ones
    - Keep migrations idempotent (IF NOT EXISTS)
    - Use transactions for all write operations

Table schema:
    movies:
        - movie_id TEXT PRIMARY KEY
        - title TEXT
        - genre TEXT
        - description TEXT
        - attributes_json TEXT
        - created_at INTEGER (Unix ms)
        - updated_at INTEGER (Unix ms)

    schema_version:
        - version INTEGER PRIMARY KEY
        - applied_at INTEGER (Unix ms)
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from ..errors import PersistenceError
from ..models import Movie

logger = logging.getLogger(__name__)


MIGRATIONS: list[tuple[int, str]] = [
    (
        1,
        """
        CREATE TABLE IF NOT EXISTS movies (
            movie_id TEXT PRIMARY KEY,
            title TEXT NOT NULL DEFAULT '',
            genre TEXT NOT NULL DEFAULT '',
            description TEXT NOT NULL DEFAULT '',
            attributes_json TEXT NOT NULL DEFAULT '{}',
            created_at INTEGER NOT NULL,
            updated_at INTEGER NOT NULL
        );
        """,
    ),
    (
        2,
        """
        CREATE INDEX IF NOT EXISTS idx_movies_updated ON movies(updated_at DESC);
        """,
    ),
]


@dataclass
class _PendingChange:
    op: str  # "add" | "update" | "delete"
    movie: Movie


class SqliteMovieStore:
    """SQLite-backed MovieStore.

    Thread safety:
        Each operation opens its own connection.
        SQLite handles concurrent access via WAL mode.

    Example:
        >>> store = SqliteMovieStore("/var/lib/galaxi/movies.db")
        >>> await store.migrate()
        >>> await store.add(Movie(id=new_movie_id(), title="Dune"))
        >>> await store.save()
        True
    """

    def __init__(
        self,
        db_path: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        """Initialize the store.

        Args:
            db_path: Path of the SQLite database file
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
        """
        self.db_path = Path(db_path)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self._pending: list[_PendingChange] = []

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            yield conn
        finally:
            conn.close()

    async def migrate(self) -> int:
        """Apply schema migrations that have not been applied yet."""
        try:
            with self._get_connection() as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS schema_version (
                        version INTEGER PRIMARY KEY,
                        applied_at INTEGER NOT NULL
                    )
                    """
                )
                row = conn.execute("SELECT MAX(version) AS v FROM schema_version").fetchone()
                current = row["v"] or 0

                for version, script in MIGRATIONS:
                    if version <= current:
                        continue
                    conn.execute("BEGIN IMMEDIATE")
                    try:
                        for statement in script.split(";"):
                            if statement.strip():
                                conn.execute(statement)
                        conn.execute(
                            "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                            (version, int(time.time() * 1000)),
                        )
                        conn.execute("COMMIT")
                    except sqlite3.Error:
                        conn.execute("ROLLBACK")
                        raise
                    current = version
                    logger.info(f"Applied store migration {version}")

                return current
        except sqlite3.Error as e:
            raise PersistenceError(f"Schema migration failed: {e}") from e

    async def add(self, movie: Movie) -> None:
        self._pending.append(_PendingChange("add", movie))

    async def update(self, movie: Movie) -> None:
        self._pending.append(_PendingChange("update", movie))

    async def delete(self, movie: Movie) -> None:
        self._pending.append(_PendingChange("delete", movie))

    async def save(self) -> bool:
        """Commit staged changes in one transaction."""
        pending, self._pending = self._pending, []
        if not pending:
            return False

        now = int(time.time() * 1000)
        changed = 0
        try:
            with self._get_connection() as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    for change in pending:
                        changed += self._apply(conn, change, now)
                    conn.execute("COMMIT")
                except sqlite3.Error:
                    conn.execute("ROLLBACK")
                    raise
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to save changes: {e}") from e

        logger.debug("Saved store changes", extra={"changes": len(pending), "rows": changed})
        return changed > 0

    def _apply(self, conn: sqlite3.Connection, change: _PendingChange, now: int) -> int:
        movie = change.movie
        if change.op == "add":
            cursor = conn.execute(
                """
                INSERT INTO movies
                (movie_id, title, genre, description, attributes_json, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    movie.id,
                    movie.title,
                    movie.genre,
                    movie.description,
                    json.dumps(movie.attributes),
                    now,
                    now,
                ),
            )
        elif change.op == "update":
            cursor = conn.execute(
                """
                UPDATE movies
                SET title = ?, genre = ?, description = ?, attributes_json = ?, updated_at = ?
                WHERE movie_id = ?
                """,
                (
                    movie.title,
                    movie.genre,
                    movie.description,
                    json.dumps(movie.attributes),
                    now,
                    movie.id,
                ),
            )
        else:
            cursor = conn.execute("DELETE FROM movies WHERE movie_id = ?", (movie.id,))
        return cursor.rowcount

    async def get_by_id(self, movie_id: str) -> Movie | None:
        try:
            with self._get_connection() as conn:
                row = conn.execute(
                    "SELECT * FROM movies WHERE movie_id = ?", (movie_id,)
                ).fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to read movie {movie_id}: {e}") from e
        return self._row_to_movie(row) if row else None

    async def get_all(self) -> list[Movie]:
        try:
            with self._get_connection() as conn:
                rows = conn.execute("SELECT * FROM movies ORDER BY created_at, movie_id").fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to read movies: {e}") from e
        return [self._row_to_movie(row) for row in rows]

    def _row_to_movie(self, row: sqlite3.Row) -> Movie:
        document = json.loads(row["attributes_json"])
        document.update(
            id=row["movie_id"],
            title=row["title"],
            genre=row["genre"],
            description=row["description"],
        )
        return Movie.from_document(document)
