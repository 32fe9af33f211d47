"""Integration test fixtures backed by a real Redis 6+ server.

``TRACKING_CACHE_TEST_REDIS_URL`` (for example ``redis://localhost:6379/15``)
selects an existing server. Without it a Redis container is started through
Docker for the test session; if Docker is unavailable too, the tests are
skipped. The database is flushed before each test.
"""

from __future__ import annotations

import asyncio
import os
import time
from collections.abc import AsyncIterator, Iterator

import pytest
import pytest_asyncio
from redis.asyncio import Redis

from tests.integration.docker_utils import get_docker_client, run_redis
from tracking_cache.client import connect_primary


@pytest.fixture(scope="session")
def redis_url() -> Iterator[str]:
    """URL of the server under test, from the environment or a container."""
    url = os.environ.get("TRACKING_CACHE_TEST_REDIS_URL")
    if url:
        yield url
        return

    try:
        client = get_docker_client()
        client.ping()
    except Exception as exc:
        pytest.skip(f"TRACKING_CACHE_TEST_REDIS_URL not set and Docker not available: {exc}")

    with run_redis(client) as redis:
        yield redis.url
    client.close()


async def _wait_for_redis(client: Redis, timeout: float = 30.0) -> None:
    """Wait for Redis to accept connections."""
    deadline = time.monotonic() + timeout
    while True:
        try:
            await client.ping()
            return
        except Exception:
            if time.monotonic() >= deadline:
                raise
            await asyncio.sleep(0.5)


@pytest_asyncio.fixture
async def primary(redis_url: str) -> AsyncIterator[Redis]:
    """Single-connection client owned by the test."""
    client = await connect_primary(redis_url)
    await _wait_for_redis(client)
    await client.flushdb()
    yield client
    await client.aclose()


@pytest_asyncio.fixture
async def writer(redis_url: str) -> AsyncIterator[Redis]:
    """Independent client standing in for another application instance."""
    client = Redis.from_url(redis_url, decode_responses=True)
    yield client
    await client.aclose()
