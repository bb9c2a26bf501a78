"""
Synchronization between the command side and the query side.

This module provides:
- EventConsumer: per-partition consumer loop with retries and commits
- MovieSynchronizer / MigrationConsumer: project mutations onto the index
- MigrationCoordinator: administrative schema and data migrations
- AvailabilityResponder / AvailabilityClient: existence checks over the bus
- TicketNotifier: ticket notifications on the command side
"""

from .availability import AvailabilityClient, AvailabilityResponder
from .consumer import EventConsumer, MessageHandler
from .consumers import (
    CreatedMovieHandler,
    DeletedMovieHandler,
    MigrationConsumer,
    MigrationMoviesHandler,
    MovieSynchronizer,
    UpdatedMovieHandler,
    apply_bulk,
)
from .migration import MigrationCoordinator, MigrationReport
from .tickets import TicketNotifier

__all__ = [
    "EventConsumer",
    "MessageHandler",
    "CreatedMovieHandler",
    "UpdatedMovieHandler",
    "DeletedMovieHandler",
    "MigrationMoviesHandler",
    "MovieSynchronizer",
    "MigrationConsumer",
    "apply_bulk",
    "MigrationCoordinator",
    "MigrationReport",
    "AvailabilityResponder",
    "AvailabilityClient",
    "TicketNotifier",
]
