"""
Command and query services.

These are the callers of the store, index, cache and bus contracts; an
HTTP layer (out of scope here) would bind them to routes.
"""

from .command import MovieCommandService
from .query import MovieQueryService

__all__ = ["MovieCommandService", "MovieQueryService"]
