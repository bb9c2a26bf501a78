"""
Galaxi catalog sync - Main entry point.

This module starts the catalog sync service with all components:
- Event bus connection (Kafka or in-memory)
- Query side consumers: synchronizer, migration consumer, availability responder
- Command side consumer: ticket notifier

The command and query services are built here too so that an API layer
(outside this package) can be attached to a running Server.

Usage:
    python -m galaxi.catalog_sync.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - Consumers start only after the bus is connected
    - A consumer that gives up on a record (SyncError) is restarted after
      restart_delay_ms and resumes from its last committed offset
    - Schema and data migrations are never run here (see tools/admin_cli.py)
    - Shutdown drains background cache writes before closing the cache

How to change safely:
    - Add new consumers with enable/disable flags
    - Test shutdown sequence thoroughly
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from pathlib import Path

import json_log_formatter

from .bus import EventBus, create_event_bus
from .cache import CacheAside, InMemoryCacheBackend, RedisCacheBackend, SafeCache
from .config import CacheBackend, ServerConfig, StoreBackend
from .errors import SyncError
from .index import InMemorySearchIndex, SearchIndex, SqliteSearchIndex
from .services import MovieCommandService, MovieQueryService
from .store import InMemoryMovieStore, MovieStore, SqliteMovieStore
from .sync import (
    AvailabilityResponder,
    EventConsumer,
    MigrationConsumer,
    MovieSynchronizer,
    TicketNotifier,
)

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("aiokafka").setLevel(logging.WARNING)
    logging.getLogger("redis").setLevel(logging.WARNING)


def create_cache(config: ServerConfig) -> SafeCache:
    """Create the no-raise cache over the configured backend."""
    if config.cache_backend == CacheBackend.REDIS:
        backend = RedisCacheBackend(config.redis)
    else:
        backend = InMemoryCacheBackend()
    return SafeCache(backend, default_ttl_seconds=config.sync.cache_ttl_seconds)


def create_store(config: ServerConfig) -> MovieStore:
    """Create the authoritative store."""
    if config.store_backend == StoreBackend.SQLITE:
        return SqliteMovieStore(
            str(Path(config.storage.data_dir) / config.storage.store_db),
            wal_mode=config.storage.wal_mode,
            busy_timeout_ms=config.storage.busy_timeout_ms,
        )
    return InMemoryMovieStore()


def create_index(config: ServerConfig) -> SearchIndex:
    """Create the search index."""
    if config.store_backend == StoreBackend.SQLITE:
        return SqliteSearchIndex(
            config.storage.data_dir,
            config.sync.index_name,
            page_size=config.sync.page_size,
            busy_timeout_ms=config.storage.busy_timeout_ms,
        )
    return InMemorySearchIndex(config.sync.index_name, page_size=config.sync.page_size)


class Server:
    """Catalog sync orchestrator.

    Manages the lifecycle of all components:
    - Event bus connection
    - Cache, search index and authoritative store
    - Background consumers (supervised, restarted after SyncError)

    Attributes:
        config: Server configuration
        bus: Event bus instance
        cache: Cache-aside helper over the configured cache
        index: Search index
        store: Authoritative store
        commands: Command side service
        queries: Query side service
        consumers: Running consumers

    Example:
        >>> server = Server()
        >>> await server.start()
        >>> # Server is running
        >>> await server.stop()
    """

    def __init__(self, config: ServerConfig | None = None) -> None:
        """Initialize the server.

        Args:
            config: Optional server configuration (loaded from env if not provided)
        """
        self.config = config or ServerConfig.from_env()
        self._running = False
        self._shutdown_event = asyncio.Event()

        # Components (initialized in start())
        self.bus: EventBus | None = None
        self.cache: CacheAside | None = None
        self.index: SearchIndex | None = None
        self.store: MovieStore | None = None
        self.commands: MovieCommandService | None = None
        self.queries: MovieQueryService | None = None
        self.consumers: list[EventConsumer] = []

        # Background tasks
        self._tasks: list[asyncio.Task] = []

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self, wait: bool = True) -> None:
        """Start the server and all components.

        Args:
            wait: Block until shutdown is requested
        """
        if self._running:
            logger.warning("Server already running")
            return

        logger.info("Starting catalog sync server")
        self.config.log_config()

        try:
            Path(self.config.storage.data_dir).mkdir(parents=True, exist_ok=True)

            self.bus = create_event_bus(self.config)
            await self.bus.connect()
            logger.info("Event bus connected")

            sync = self.config.sync
            topics = self.config.topics
            self.cache = CacheAside(create_cache(self.config), ttl_seconds=sync.cache_ttl_seconds)
            self.index = create_index(self.config)
            self.store = create_store(self.config)

            self.commands = MovieCommandService(
                self.store, self.bus, self.cache, topic=topics.mutations
            )
            self.queries = MovieQueryService(self.index, self.cache, page_size=sync.page_size)

            retry = {"max_retries": sync.max_retries, "retry_delay_ms": sync.retry_delay_ms}
            if self.config.run_query_side:
                self.consumers.extend(
                    [
                        MovieSynchronizer(
                            self.bus, self.index, self.cache, topic=topics.mutations, **retry
                        ),
                        MigrationConsumer(
                            self.bus, self.index, self.cache, topic=topics.migration, **retry
                        ),
                        AvailabilityResponder(
                            self.bus,
                            self.index,
                            topic=topics.availability,
                            reply_topic=topics.availability_reply,
                            **retry,
                        ),
                    ]
                )
            if self.config.run_command_side:
                self.consumers.append(
                    TicketNotifier(
                        self.bus,
                        topic=topics.tickets,
                        details_topic=topics.movie_details,
                        **retry,
                    )
                )

            for consumer in self.consumers:
                self._tasks.append(
                    asyncio.create_task(self._supervise(consumer), name=consumer.name)
                )

            self._running = True
            logger.info(
                "Catalog sync server started",
                extra={"consumers": [c.name for c in self.consumers]},
            )

            if wait:
                await self._shutdown_event.wait()

        except Exception as e:
            logger.error(f"Server startup failed: {e}", exc_info=True)
            await self._teardown()
            raise

    async def _supervise(self, consumer: EventConsumer) -> None:
        """Run a consumer, restarting it whenever it gives up on a record."""
        delay = self.config.sync.restart_delay_ms / 1000.0
        while not self._shutdown_event.is_set():
            try:
                await consumer.start()
                return
            except SyncError as e:
                logger.error(
                    f"{consumer.name} stopped, restarting in {delay}s: {e}",
                    extra={"consumer": consumer.name},
                )
            except Exception as e:
                logger.error(
                    f"{consumer.name} failed, restarting in {delay}s: {e}",
                    exc_info=True,
                )
            await asyncio.sleep(delay)

    async def stop(self) -> None:
        """Stop the server gracefully."""
        if not self._running:
            return

        logger.info("Stopping catalog sync server")
        await self._teardown()
        logger.info("Catalog sync server stopped")

    async def _teardown(self) -> None:
        self._shutdown_event.set()

        for consumer in self.consumers:
            await consumer.stop()

        for task in self._tasks:
            task.cancel()

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        self.consumers.clear()

        if self.cache:
            await self.cache.drain(self.config.sync.drain_timeout_seconds)
            await self.cache.cache.close()

        if self.index:
            await self.index.close()

        if self.bus:
            await self.bus.close()

        self._running = False

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def main() -> None:
    """Main entry point."""
    # Load configuration
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    # Setup logging
    setup_logging(config)

    # Create server
    server = Server(config)

    # Setup signal handlers
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        server.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    # Run server
    try:
        loop.run_until_complete(server.start())
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(server.stop())
        loop.close()


if __name__ == "__main__":
    main()
