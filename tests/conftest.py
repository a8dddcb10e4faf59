"""Shared test fixtures: testcontainers for Redis and settings helpers.

Integration tests use a real Redis container managed by
testcontainers-python.  The container is session-scoped (started once per
test run) and each test function gets a flushed Redis client.

Requires Docker to be available.  Tests needing the container should be
marked with ``@pytest.mark.integration``.
"""

from __future__ import annotations

import os
from collections.abc import AsyncIterator, Iterator

import pytest
import redis.asyncio as aioredis
from testcontainers.redis import RedisContainer

from tabspaces.overlay.settings import _get_settings_cached


def _set_env(key: str, value: str) -> None:
    """Set an env var and invalidate the settings cache."""
    os.environ[key] = value
    _get_settings_cached.cache_clear()


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture
def settings_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[pytest.MonkeyPatch]:
    """Monkeypatch for TABSPACES_* env vars; the settings cache is reset around the test."""
    _get_settings_cached.cache_clear()
    yield monkeypatch
    _get_settings_cached.cache_clear()


# ---------------------------------------------------------------------------
# Session-scoped: Redis container
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def redis_container() -> Iterator[RedisContainer]:
    """Start a Redis 7 container for the test session."""
    with RedisContainer(image="redis:7") as r:
        yield r


@pytest.fixture(scope="session")
def redis_url(redis_container: RedisContainer) -> str:
    """Redis connection URL."""
    host = redis_container.get_container_host_ip()
    port = redis_container.get_exposed_port(6379)
    url = f"redis://{host}:{port}/0"
    _set_env("TABSPACES_REDIS_URL", url)
    return url


# ---------------------------------------------------------------------------
# Function-scoped: Redis client with flush
# ---------------------------------------------------------------------------


@pytest.fixture
async def redis_client(redis_url: str) -> AsyncIterator[aioredis.Redis]:
    """Async Redis client; database flushed after each test."""
    client = aioredis.from_url(redis_url)
    yield client
    await client.flushdb()
    await client.aclose()
