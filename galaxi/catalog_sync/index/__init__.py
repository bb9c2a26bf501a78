"""
Search index (query side system of record).

Backends implementing the SearchIndex capability interface:
- SqliteSearchIndex (deployments)
- InMemorySearchIndex (tests and local development)
"""

from .base import BulkResult, SearchIndex, tokenize
from .memory import InMemorySearchIndex
from .sqlite_index import SqliteSearchIndex

__all__ = [
    "BulkResult",
    "SearchIndex",
    "tokenize",
    "InMemorySearchIndex",
    "SqliteSearchIndex",
]
