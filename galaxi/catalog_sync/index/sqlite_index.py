"""
SQLite-backed search index.

One SQLite file per index name under the data directory. Documents are
stored whole (JSON) next to the three searchable columns, so an upsert is a
single-statement full replace.

Invariants:
    - movie_id is the primary key; upsert never creates a second row
    - The stored document is exactly the last upserted movie
    - Search ranking is computed in SQL with the weights from index.base
    - Matching folds case with Python str.lower, so non-ASCII titles match
      the same way as in InMemorySearchIndex

How to change safely:
    - Keep the searchable columns in sync with document_json on every write
    - Never return partially written documents (bulk uses savepoints)

Table schema:
    movie_documents:
        - movie_id TEXT PRIMARY KEY
        - title TEXT
        - genre TEXT
        - description TEXT
        - document_json TEXT (full document)
        - indexed_at INTEGER (Unix ms)
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

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


def _like_pattern(token: str) -> str:
    escaped = token.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class SqliteSearchIndex:
    """Search index stored in ``{data_dir}/{index_name}.index.db``.

    Example:
        >>> index = SqliteSearchIndex("/var/lib/galaxi", "movies")
        >>> await index.ensure_index()
        >>> await index.upsert(movie)
        >>> await index.search("dune")
        [Movie(id='...', title='Dune', ...)]
    """

    def __init__(
        self,
        data_dir: str,
        index_name: str,
        page_size: int = 1000,
        busy_timeout_ms: int = 5000,
    ) -> None:
        self.data_dir = Path(data_dir)
        self.index_name = index_name
        self.page_size = page_size
        self.busy_timeout_ms = busy_timeout_ms
        self._ready = False

    @property
    def db_path(self) -> Path:
        return self.data_dir / f"{self.index_name}.index.db"

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        self.data_dir.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,
        )
        conn.row_factory = sqlite3.Row
        # SQLite LIKE only folds ASCII case
        conn.create_function("unicode_lower", 1, str.lower, deterministic=True)

        try:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            if not self._ready:
                self._create_schema(conn)
                self._ready = True
            yield conn
        finally:
            conn.close()

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS movie_documents (
                movie_id TEXT PRIMARY KEY,
                title TEXT NOT NULL DEFAULT '',
                genre TEXT NOT NULL DEFAULT '',
                description TEXT NOT NULL DEFAULT '',
                document_json TEXT NOT NULL,
                indexed_at INTEGER NOT NULL
            )
            """
        )

    async def ensure_index(self) -> None:
        try:
            with self._get_connection() as conn:
                self._create_schema(conn)
        except sqlite3.Error as e:
            raise SearchIndexError(f"Failed to create index {self.index_name}: {e}") from e
        logger.debug(f"Index {self.index_name} ready")

    def _write(self, conn: sqlite3.Connection, movie: Movie, now: int) -> None:
        conn.execute(
            """
            INSERT INTO movie_documents
            (movie_id, title, genre, description, document_json, indexed_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(movie_id) DO UPDATE SET
                title = excluded.title,
                genre = excluded.genre,
                description = excluded.description,
                document_json = excluded.document_json,
                indexed_at = excluded.indexed_at
            """,
            (
                movie.id,
                movie.title,
                movie.genre,
                movie.description,
                json.dumps(movie.to_document()),
                now,
            ),
        )

    async def upsert(self, movie: Movie) -> None:
        if not movie.has_id:
            raise SearchIndexError("Cannot index a movie without an id")
        try:
            with self._get_connection() as conn:
                self._write(conn, movie, int(time.time() * 1000))
        except sqlite3.Error as e:
            raise SearchIndexError(f"Failed to index movie {movie.id}: {e}") from e

    async def remove(self, movie_id: str) -> None:
        try:
            with self._get_connection() as conn:
                conn.execute("DELETE FROM movie_documents WHERE movie_id = ?", (movie_id,))
        except sqlite3.Error as e:
            raise SearchIndexError(f"Failed to remove movie {movie_id}: {e}") from e

    async def get_by_id(self, movie_id: str) -> Movie | None:
        try:
            with self._get_connection() as conn:
                row = conn.execute(
                    "SELECT document_json FROM movie_documents WHERE movie_id = ?",
                    (movie_id,),
                ).fetchone()
        except sqlite3.Error as e:
            raise SearchIndexError(f"Failed to read movie {movie_id}: {e}") from e
        return Movie.from_document(json.loads(row["document_json"])) if row else None

    async def exists(self, movie_id: str) -> bool:
        try:
            with self._get_connection() as conn:
                row = conn.execute(
                    "SELECT 1 FROM movie_documents WHERE movie_id = ?", (movie_id,)
                ).fetchone()
        except sqlite3.Error as e:
            raise SearchIndexError(f"Failed to check movie {movie_id}: {e}") from e
        return row is not None

    async def get_all(self, limit: int) -> list[Movie]:
        try:
            with self._get_connection() as conn:
                rows = conn.execute(
                    "SELECT document_json FROM movie_documents ORDER BY title, movie_id LIMIT ?",
                    (limit,),
                ).fetchall()
        except sqlite3.Error as e:
            raise SearchIndexError(f"Failed to scan index {self.index_name}: {e}") from e
        return [Movie.from_document(json.loads(row["document_json"])) for row in rows]

    async def search(self, term: str) -> list[Movie]:
        tokens = tokenize(term)
        if not tokens:
            return []

        score_parts: list[str] = []
        score_params: list[str] = []
        where_parts: list[str] = []
        where_params: list[str] = []
        for token in tokens:
            pattern = _like_pattern(token.lower())
            score_parts.append(
                f"(CASE WHEN unicode_lower(title) LIKE ? ESCAPE '\\' THEN {TITLE_WEIGHT} ELSE 0 END"
                f" + CASE WHEN unicode_lower(genre) LIKE ? ESCAPE '\\' THEN {GENRE_WEIGHT} ELSE 0 END"
                f" + CASE WHEN unicode_lower(description) LIKE ? ESCAPE '\\' THEN {DESCRIPTION_WEIGHT} ELSE 0 END)"
            )
            score_params.extend([pattern, pattern, pattern])
            where_parts.append(
                "(unicode_lower(title) LIKE ? ESCAPE '\\' OR unicode_lower(genre) LIKE ? ESCAPE '\\'"
                " OR unicode_lower(description) LIKE ? ESCAPE '\\')"
            )
            where_params.extend([pattern, pattern, pattern])

        sql = (
            f"SELECT document_json, ({' + '.join(score_parts)}) AS score "
            f"FROM movie_documents WHERE {' AND '.join(where_parts)} "
            "ORDER BY score DESC, title, movie_id LIMIT ?"
        )
        try:
            with self._get_connection() as conn:
                rows = conn.execute(sql, [*score_params, *where_params, self.page_size]).fetchall()
        except sqlite3.Error as e:
            raise SearchIndexError(f"Search failed for {term!r}: {e}") from e
        return [Movie.from_document(json.loads(row["document_json"])) for row in rows]

    async def bulk_upsert(self, movies: list[Movie]) -> BulkResult:
        """Index a batch in one transaction, isolating per-document failures.

        Each document is written under its own savepoint so a failing
        document is rolled back alone while the rest of the batch commits.
        """
        await self.ensure_index()

        result = BulkResult()
        batch = [m if m.has_id else m.with_id(new_movie_id()) for m in movies]
        now = int(time.time() * 1000)

        try:
            with self._get_connection() as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    for movie in batch:
                        conn.execute("SAVEPOINT doc")
                        try:
                            self._write(conn, movie, now)
                        except sqlite3.Error as e:
                            conn.execute("ROLLBACK TO SAVEPOINT doc")
                            result.failed[movie.id] = str(e)
                        else:
                            result.succeeded.append(movie)
                        finally:
                            conn.execute("RELEASE SAVEPOINT doc")
                    conn.execute("COMMIT")
                except sqlite3.Error:
                    conn.execute("ROLLBACK")
                    raise
        except sqlite3.Error as e:
            raise SearchIndexError(f"Bulk index into {self.index_name} failed: {e}") from e

        if result.failed:
            logger.error(
                "Bulk index partially failed",
                extra={
                    "index": self.index_name,
                    "succeeded": len(result.succeeded),
                    "failed": len(result.failed),
                },
            )
        else:
            logger.info(f"Bulk indexed {len(result.succeeded)} movies into {self.index_name}")
        return result

    async def close(self) -> None:
        # Connections are per-operation
        pass
