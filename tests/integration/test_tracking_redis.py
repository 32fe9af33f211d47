"""Integration tests for broadcast invalidation against a real Redis."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

import pytest
import pytest_asyncio
from redis.asyncio import Redis

from tracking_cache.cache.context import SessionState
from tracking_cache.client import CacheResult, ClientSideCache

pytestmark = pytest.mark.integration


async def wait_for_eviction(cache: ClientSideCache, key: str, timeout: float = 2.0) -> bool:
    """Poll until ``key`` leaves the local store; invalidations arrive asynchronously."""
    deadline = asyncio.get_running_loop().time() + timeout
    while asyncio.get_running_loop().time() < deadline:
        if cache.peek_local(key) is None:
            return True
        await asyncio.sleep(0.02)
    return False


@pytest_asyncio.fixture
async def cache(primary: Redis) -> AsyncIterator[ClientSideCache]:
    cache = await ClientSideCache.create(primary, ["it:"], default_expiry=60, local_ttl=30)
    yield cache
    await cache.close()


class TestTracking:
    """Tests for tracking registration on a live server."""

    @pytest.mark.asyncio
    async def test_registers_broadcast_tracking(
        self, cache: ClientSideCache, primary: Redis
    ) -> None:
        info = await primary.execute_command("CLIENT", "TRACKINGINFO")
        info = dict(zip(info[::2], info[1::2])) if isinstance(info, list) else info

        assert cache.state is SessionState.ACTIVE
        assert "bcast" in info["flags"]
        assert "noloop" in info["flags"]
        assert info["redirect"] == cache.session.client_id

    @pytest.mark.asyncio
    async def test_close_disables_tracking(
        self, cache: ClientSideCache, primary: Redis
    ) -> None:
        await cache.close()

        info = await primary.execute_command("CLIENT", "TRACKINGINFO")
        info = dict(zip(info[::2], info[1::2])) if isinstance(info, list) else info

        assert "off" in info["flags"]
        assert await primary.ping()


class TestCoherence:
    """Tests for local coherence with foreign writes."""

    @pytest.mark.asyncio
    async def test_foreign_write_evicts(self, cache: ClientSideCache, writer: Redis) -> None:
        await writer.set("it:a", "old")
        assert await cache.get("it:a") == CacheResult(data="old", hits=0, misses=1)
        assert (await cache.get("it:a")).hits == 1

        await writer.set("it:a", "new")

        assert await wait_for_eviction(cache, "it:a")
        assert (await cache.get("it:a")).data == "new"

    @pytest.mark.asyncio
    async def test_own_write_is_not_evicted(self, cache: ClientSideCache) -> None:
        await cache.set("it:a", "1")
        await cache.mset({"it:b": "2"})

        # Give a stray notification time to arrive
        await asyncio.sleep(0.2)

        assert cache.peek_local("it:a") == "1"
        assert cache.peek_local("it:b") == "2"

    @pytest.mark.asyncio
    async def test_untracked_prefix_is_never_cached(
        self, cache: ClientSideCache, writer: Redis
    ) -> None:
        await writer.set("other:a", "1")

        await cache.get("other:a")

        assert cache.stats().size == 0

    @pytest.mark.asyncio
    async def test_set_applies_remote_expiry(
        self, cache: ClientSideCache, writer: Redis
    ) -> None:
        await cache.set("it:a", "1")
        await cache.mset({"it:b": "2", "it:c": "3"}, expiry=120)

        assert 0 < await writer.ttl("it:a") <= 60
        assert 60 < await writer.ttl("it:b") <= 120
        assert 60 < await writer.ttl("it:c") <= 120

    @pytest.mark.asyncio
    async def test_delete_reaches_redis(self, cache: ClientSideCache, writer: Redis) -> None:
        await cache.mset({"it:a": "1", "it:b": "2"})

        assert await cache.delete(["it:a", "it:b", "it:missing"]) == 2
        assert await writer.exists("it:a", "it:b") == 0
