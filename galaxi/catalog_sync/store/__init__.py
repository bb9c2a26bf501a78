"""
Authoritative movie store (command side system of record).

Two backends implement the same MovieStore capability interface:
- SqliteMovieStore (deployments)
- InMemoryMovieStore (tests and local development)
"""

from .base import MovieStore
from .memory import InMemoryMovieStore
from .sqlite_store import SqliteMovieStore

__all__ = ["MovieStore", "SqliteMovieStore", "InMemoryMovieStore"]
