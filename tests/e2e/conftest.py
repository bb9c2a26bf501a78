"""
E2E test fixtures for the catalog sync service.

These tests need a running Kafka broker and Redis server, located through
the same environment variables the service reads (KAFKA_BROKERS, REDIS_URL).
"""

import socket
import time
import uuid

import pytest
import pytest_asyncio

from galaxi.catalog_sync.bus import KafkaEventBus
from galaxi.catalog_sync.cache import CacheAside, RedisCacheBackend, SafeCache
from galaxi.catalog_sync.config import KafkaConfig, RedisConfig


def wait_for_service(host: str, port: int, timeout: int = 60) -> bool:
    """Wait for a service to become available."""
    start = time.time()
    while time.time() - start < timeout:
        try:
            with socket.create_connection((host, port), timeout=1):
                return True
        except OSError:
            time.sleep(1)
    return False


@pytest.fixture(scope="session")
def kafka_config() -> KafkaConfig:
    config = KafkaConfig.from_env()
    host, _, port = config.brokers.split(",")[0].partition(":")
    assert wait_for_service(host, int(port or 9092)), "Kafka not ready"
    return config


@pytest.fixture(scope="session")
def redis_config() -> RedisConfig:
    return RedisConfig.from_env()


@pytest.fixture
def topic_suffix() -> str:
    """Unique suffix so runs never see each other's records."""
    return uuid.uuid4().hex[:8]


@pytest_asyncio.fixture
async def kafka_bus(kafka_config):
    bus = KafkaEventBus(kafka_config)
    await bus.connect()
    yield bus
    await bus.close()


@pytest_asyncio.fixture
async def redis_cache(redis_config):
    backend = RedisCacheBackend(redis_config)
    if not await backend.ping():
        pytest.skip("Redis not reachable")
    aside = CacheAside(SafeCache(backend, default_ttl_seconds=60), ttl_seconds=60)
    yield aside
    await aside.drain()
    await backend.close()
