"""
kvcache — Test Configuration and Shared Fixtures

Provides pytest configuration and shared fixtures for unit and integration tests.
Async tests run under pytest-asyncio in auto mode.
"""

import os
from collections.abc import AsyncGenerator, Generator
from pathlib import Path
from typing import Any

import fakeredis.aioredis
import pytest
import pytest_asyncio

from kvcache.cache.backends.file import FileEngine
from kvcache.cache.backends.redis import RedisEngine
from kvcache.config import FileEngineConfig, RedisEngineConfig

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["LOG_LEVEL"] = "DEBUG"


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    """Create a temporary directory for file cache testing."""
    path = tmp_path / "cache"
    path.mkdir()
    return path


@pytest.fixture
def file_config(cache_dir: Path) -> FileEngineConfig:
    """File engine configuration rooted in a temporary directory."""
    return FileEngineConfig(path=str(cache_dir), prefix="test_", duration=3600)


@pytest_asyncio.fixture
async def file_engine(file_config: FileEngineConfig) -> FileEngine:
    """An initialized file engine."""
    engine = FileEngine(file_config)
    assert await engine.initialize() is True
    return engine


@pytest_asyncio.fixture
async def redis_client() -> AsyncGenerator[fakeredis.aioredis.FakeRedis, None]:
    """
    In-memory Redis emulation.

    Each test gets its own server so no state leaks between tests.
    """
    client = fakeredis.aioredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=False)
    yield client
    await client.flushall()
    await client.aclose()


@pytest_asyncio.fixture
async def redis_engine(redis_client: fakeredis.aioredis.FakeRedis) -> RedisEngine:
    """An initialized Redis engine backed by fakeredis."""
    engine = RedisEngine(RedisEngineConfig(prefix="test_", duration=3600), client=redis_client)
    assert await engine.initialize() is True
    return engine


@pytest.fixture
def sample_cache_data() -> dict[str, Any]:
    """Sample data for cache testing."""
    return {
        "simple_string": "hello",
        "simple_int": 42,
        "negative_int": -7,
        "simple_float": 3.14,
        "simple_bool": True,
        "complex_dict": {
            "nested": {
                "key": "value",
                "number": 123,
                "list": [1, 2, 3],
            }
        },
        "complex_list": [
            {"id": 1, "name": "Alice"},
            {"id": 2, "name": "Bob"},
        ],
    }


@pytest.fixture(autouse=True)
def reset_engine_registry() -> Generator[None, None, None]:
    """Reset the engine registry after each test to prevent state leakage."""
    yield
    from kvcache.cache.factory import reset_engine_registry

    reset_engine_registry()
