"""
Configuration management for the catalog sync service.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Production deployments MUST set explicit values for broker and cache URLs
    - Secrets are never logged or exposed in error messages
    - Components receive their section at construction; nothing reads
      module-level mutable settings

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Deprecate settings by logging warnings but continuing to support them
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class BusBackend(Enum):
    """Supported event bus transports."""

    KAFKA = "kafka"
    MEMORY = "memory"


class CacheBackend(Enum):
    """Supported cache backends."""

    REDIS = "redis"
    MEMORY = "memory"


class StoreBackend(Enum):
    """Supported storage backends for the authoritative store and the index."""

    SQLITE = "sqlite"
    MEMORY = "memory"


@dataclass(frozen=True)
class KafkaConfig:
    """Kafka/Redpanda transport configuration.

    Attributes:
        brokers: Comma-separated list of broker addresses
        client_id: Client identifier reported to the brokers
        sasl_mechanism: SASL authentication mechanism (PLAIN, SCRAM-SHA-256, etc.)
        sasl_username: SASL username (if authentication enabled)
        sasl_password: SASL password (if authentication enabled)
        security_protocol: Security protocol (PLAINTEXT, SSL, SASL_PLAINTEXT, SASL_SSL)
        ssl_cafile: Path to CA certificate file
        acks: Producer acknowledgment level ('all' for strongest durability)
        enable_idempotence: Enable idempotent producer
        request_timeout_ms: Producer request timeout
        auto_offset_reset: Where a new consumer group starts
        max_poll_records: Maximum records returned by one poll
    """

    brokers: str = "localhost:9092"
    client_id: str = "galaxi-catalog"
    sasl_mechanism: str | None = None
    sasl_username: str | None = None
    sasl_password: str | None = None
    security_protocol: str = "PLAINTEXT"
    ssl_cafile: str | None = None
    # Producer durability settings
    acks: str = "all"
    enable_idempotence: bool = True
    request_timeout_ms: int = 30000
    # Consumer settings
    auto_offset_reset: str = "earliest"
    max_poll_records: int = 100

    @classmethod
    def from_env(cls) -> KafkaConfig:
        """Load configuration from environment variables."""
        return cls(
            brokers=os.getenv("KAFKA_BROKERS", "localhost:9092"),
            client_id=os.getenv("KAFKA_CLIENT_ID", "galaxi-catalog"),
            sasl_mechanism=os.getenv("KAFKA_SASL_MECHANISM"),
            sasl_username=os.getenv("KAFKA_SASL_USERNAME"),
            sasl_password=os.getenv("KAFKA_SASL_PASSWORD"),
            security_protocol=os.getenv("KAFKA_SECURITY_PROTOCOL", "PLAINTEXT"),
            ssl_cafile=os.getenv("KAFKA_SSL_CAFILE"),
            acks=os.getenv("KAFKA_ACKS", "all"),
            enable_idempotence=_env_bool("KAFKA_ENABLE_IDEMPOTENCE", "true"),
            request_timeout_ms=int(os.getenv("KAFKA_REQUEST_TIMEOUT_MS", "30000")),
            auto_offset_reset=os.getenv("KAFKA_AUTO_OFFSET_RESET", "earliest"),
            max_poll_records=int(os.getenv("KAFKA_MAX_POLL_RECORDS", "100")),
        )


@dataclass(frozen=True)
class RedisConfig:
    """Redis cache backend configuration.

    Attributes:
        url: Redis connection URL (may contain a password)
        socket_timeout: Per-command socket timeout in seconds
        socket_connect_timeout: Connect timeout in seconds
        max_connections: Connection pool size
    """

    url: str = "redis://localhost:6379/0"
    socket_timeout: float = 2.0
    socket_connect_timeout: float = 1.0
    max_connections: int = 50

    @classmethod
    def from_env(cls) -> RedisConfig:
        """Load configuration from environment variables."""
        return cls(
            url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
            socket_timeout=float(os.getenv("REDIS_SOCKET_TIMEOUT", "2.0")),
            socket_connect_timeout=float(os.getenv("REDIS_CONNECT_TIMEOUT", "1.0")),
            max_connections=int(os.getenv("REDIS_MAX_CONNECTIONS", "50")),
        )


@dataclass(frozen=True)
class StorageConfig:
    """Local storage configuration.

    Attributes:
        data_dir: Directory for SQLite databases
        store_db: File name of the authoritative movie database
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
    """

    data_dir: str = "/var/lib/galaxi"
    store_db: str = "movies.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            data_dir=os.getenv("DATA_DIR", "/var/lib/galaxi"),
            store_db=os.getenv("STORE_DB", "movies.db"),
            wal_mode=_env_bool("SQLITE_WAL_MODE", "true"),
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
        )


@dataclass(frozen=True)
class TopicConfig:
    """Topic names used on the bus."""

    mutations: str = "movie-mutations"
    migration: str = "migration-movies"
    availability: str = "check-available-movie"
    availability_reply: str = "movie-status"
    tickets: str = "ticket-created"
    movie_details: str = "movie-details"

    @classmethod
    def from_env(cls) -> TopicConfig:
        """Load configuration from environment variables."""
        return cls(
            mutations=os.getenv("TOPIC_MUTATIONS", "movie-mutations"),
            migration=os.getenv("TOPIC_MIGRATION", "migration-movies"),
            availability=os.getenv("TOPIC_AVAILABILITY", "check-available-movie"),
            availability_reply=os.getenv("TOPIC_AVAILABILITY_REPLY", "movie-status"),
            tickets=os.getenv("TOPIC_TICKETS", "ticket-created"),
            movie_details=os.getenv("TOPIC_MOVIE_DETAILS", "movie-details"),
        )


@dataclass(frozen=True)
class SyncConfig:
    """Synchronization protocol configuration.

    Attributes:
        cache_ttl_seconds: Lifetime of a cache entry from write time
        index_name: Backing search index identifier
        page_size: Cap on bounded full scans of the index
        max_retries: Local retries of a failed handler before giving up
        retry_delay_ms: Delay between local retries
        restart_delay_ms: Delay before a stopped consumer resubscribes
        memory_partitions: Partition count of the in-memory bus
        drain_timeout_seconds: Time allowed for background cache writes at shutdown
    """

    cache_ttl_seconds: int = 600
    index_name: str = "movies"
    page_size: int = 1000
    max_retries: int = 3
    retry_delay_ms: int = 100
    restart_delay_ms: int = 1000
    memory_partitions: int = 4
    drain_timeout_seconds: float = 5.0

    @classmethod
    def from_env(cls) -> SyncConfig:
        """Load configuration from environment variables."""
        return cls(
            cache_ttl_seconds=int(os.getenv("CACHE_TTL_SECONDS", "600")),
            index_name=os.getenv("INDEX_NAME", "movies"),
            page_size=int(os.getenv("PAGE_SIZE", "1000")),
            max_retries=int(os.getenv("SYNC_MAX_RETRIES", "3")),
            retry_delay_ms=int(os.getenv("SYNC_RETRY_DELAY_MS", "100")),
            restart_delay_ms=int(os.getenv("SYNC_RESTART_DELAY_MS", "1000")),
            memory_partitions=int(os.getenv("MEMORY_BUS_PARTITIONS", "4")),
            drain_timeout_seconds=float(os.getenv("CACHE_DRAIN_TIMEOUT_SECONDS", "5.0")),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ServerConfig:
    """Complete service configuration.

    Attributes:
        bus_backend: Which event bus transport to use
        cache_backend: Which cache backend to use
        store_backend: Which backend holds the store and the index
        kafka: Kafka configuration (if bus_backend is KAFKA)
        redis: Redis configuration (if cache_backend is REDIS)
        storage: Local storage configuration
        topics: Topic names
        sync: Synchronization protocol settings
        observability: Logging settings
        run_query_side: Run the synchronizer and availability consumers
        run_command_side: Run the command-side ticket notifier
    """

    bus_backend: BusBackend = BusBackend.KAFKA
    cache_backend: CacheBackend = CacheBackend.REDIS
    store_backend: StoreBackend = StoreBackend.SQLITE
    kafka: KafkaConfig = field(default_factory=KafkaConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    topics: TopicConfig = field(default_factory=TopicConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)
    run_query_side: bool = True
    run_command_side: bool = True

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        config = cls(
            bus_backend=_parse_enum(BusBackend, "BUS_BACKEND", "kafka"),
            cache_backend=_parse_enum(CacheBackend, "CACHE_BACKEND", "redis"),
            store_backend=_parse_enum(StoreBackend, "STORE_BACKEND", "sqlite"),
            kafka=KafkaConfig.from_env(),
            redis=RedisConfig.from_env(),
            storage=StorageConfig.from_env(),
            topics=TopicConfig.from_env(),
            sync=SyncConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
            run_query_side=_env_bool("RUN_QUERY_SIDE", "true"),
            run_command_side=_env_bool("RUN_COMMAND_SIDE", "true"),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.bus_backend == BusBackend.KAFKA and not self.kafka.brokers:
            raise ValueError("KAFKA_BROKERS is required when BUS_BACKEND=kafka")

        if self.cache_backend == CacheBackend.REDIS and not self.redis.url:
            raise ValueError("REDIS_URL is required when CACHE_BACKEND=redis")

        if self.sync.cache_ttl_seconds <= 0:
            raise ValueError("CACHE_TTL_SECONDS must be positive")
        if self.sync.page_size <= 0:
            raise ValueError("PAGE_SIZE must be positive")
        if not self.sync.index_name or not self.sync.index_name.replace("_", "").isalnum():
            raise ValueError(
                f"INDEX_NAME must be alphanumeric (underscores allowed): {self.sync.index_name!r}"
            )
        if self.sync.max_retries < 0:
            raise ValueError("SYNC_MAX_RETRIES must not be negative")

        if not os.path.exists(self.storage.data_dir):
            logger.warning(
                f"Data directory does not exist: {self.storage.data_dir}. "
                "It will be created on startup."
            )

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Server configuration loaded",
            extra={
                "bus_backend": self.bus_backend.value,
                "cache_backend": self.cache_backend.value,
                "store_backend": self.store_backend.value,
                "kafka_brokers": self.kafka.brokers
                if self.bus_backend == BusBackend.KAFKA
                else None,
                "redis_host": self.redis.url.rsplit("@", 1)[-1]
                if self.cache_backend == CacheBackend.REDIS
                else None,
                "data_dir": self.storage.data_dir,
                "index_name": self.sync.index_name,
                "cache_ttl_seconds": self.sync.cache_ttl_seconds,
                "page_size": self.sync.page_size,
                "query_side": self.run_query_side,
                "command_side": self.run_command_side,
                "log_level": self.observability.log_level,
            },
        )


def _parse_enum(enum_cls: type[Enum], env_name: str, default: str) -> Enum:
    raw = os.getenv(env_name, default).lower()
    try:
        return enum_cls(raw)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValueError(f"Invalid {env_name} '{raw}'. Must be one of: {allowed}")
