"""Global pytest fixtures.

Unit tests run against the in-memory Redis stand-ins in ``tests.fakes``.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
import pytest_asyncio

from tests.fakes import FakeClock, FakeRedis, FakeRedisServer, FakeSubscriber
from tracking_cache.client import ClientSideCache

TRACKED_PREFIX = "p:"


@pytest.fixture
def server() -> FakeRedisServer:
    return FakeRedisServer()


@pytest.fixture
def primary(server: FakeRedisServer) -> FakeRedis:
    return FakeRedis(server)


@pytest.fixture
def writer(server: FakeRedisServer) -> FakeRedis:
    """Another client writing to the same server, untracked."""
    return FakeRedis(server)


@pytest.fixture
def subscriber(server: FakeRedisServer) -> FakeSubscriber:
    return FakeSubscriber(server)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def cache(
    primary: FakeRedis, subscriber: FakeSubscriber, clock: FakeClock
) -> AsyncIterator[ClientSideCache]:
    """Cache tracking ``p:`` with a 300s local TTL."""
    cache = await ClientSideCache.create(
        primary,
        [TRACKED_PREFIX],
        local_ttl=300,
        subscriber_factory=lambda client: subscriber,
        clock=clock,
    )
    yield cache
    await cache.close()
