"""Tests for invalidation message parsing and the listener."""

import pytest

from tracking_cache.cache.context import CacheContext
from tracking_cache.cache.prefixes import PrefixMatcher
from tracking_cache.cache.store import LocalCacheStore
from tracking_cache.tracking.invalidation import (
    INVALIDATION_CHANNEL,
    InvalidationListener,
    InvalidationMessage,
)


class TestInvalidationMessage:
    """Tests for payload parsing."""

    def test_comma_separated_string(self) -> None:
        message = InvalidationMessage.from_payload("p:1,p:2,p:3")
        assert message.keys == ("p:1", "p:2", "p:3")

    def test_bytes_payload(self) -> None:
        message = InvalidationMessage.from_payload(b"p:1,p:2")
        assert message.keys == ("p:1", "p:2")

    def test_list_payload(self) -> None:
        """redis-py delivers RESP2 invalidations as a list of keys."""
        message = InvalidationMessage.from_payload([b"p:1", "p:2"])
        assert message.keys == ("p:1", "p:2")

    @pytest.mark.parametrize("payload", [None, "", b"", []])
    def test_empty_payloads(self, payload: object) -> None:
        assert not InvalidationMessage.from_payload(payload)

    def test_order_is_preserved(self) -> None:
        message = InvalidationMessage.from_payload("p:b,p:a,p:c")
        assert message.keys == ("p:b", "p:a", "p:c")


class TestInvalidationListener:
    """Tests for evicting invalidated keys."""

    @pytest.fixture
    def context(self) -> CacheContext:
        store = LocalCacheStore(local_ttl=60)
        for key in ("p:1", "p:2", "q:1"):
            store.put(key, "v")
        return CacheContext(store=store, matcher=PrefixMatcher(["p:"]))

    @pytest.fixture
    def listener(self, context: CacheContext) -> InvalidationListener:
        return InvalidationListener(context)

    def test_evicts_listed_keys(
        self, listener: InvalidationListener, context: CacheContext
    ) -> None:
        evicted = listener.on_message(INVALIDATION_CHANNEL, "p:1")

        assert evicted == 1
        assert context.store.get("p:1") is None
        assert context.store.get("p:2") == "v"

    def test_evicts_keys_from_list_payload(
        self, listener: InvalidationListener, context: CacheContext
    ) -> None:
        assert listener.on_message(INVALIDATION_CHANNEL, [b"p:1", b"p:2"]) == 2
        assert context.store.stats().keys == ["q:1"]

    def test_ignores_other_channels(
        self, listener: InvalidationListener, context: CacheContext
    ) -> None:
        assert listener.on_message("some:channel", "p:1") == 0
        assert context.store.get("p:1") == "v"

    def test_ignores_empty_payload(
        self, listener: InvalidationListener, context: CacheContext
    ) -> None:
        """A null payload (server flush) leaves the store untouched."""
        assert listener.on_message(INVALIDATION_CHANNEL, None) == 0
        assert listener.on_message(INVALIDATION_CHANNEL, "") == 0
        assert context.store.stats().size == 3

    def test_ignores_unqualified_keys(
        self, listener: InvalidationListener, context: CacheContext
    ) -> None:
        """Keys outside the tracked prefixes are never evicted by notifications."""
        assert listener.on_message(INVALIDATION_CHANNEL, "q:1") == 0
        assert context.store.get("q:1") == "v"

    def test_skips_empty_segments(
        self, listener: InvalidationListener, context: CacheContext
    ) -> None:
        assert listener.on_message(INVALIDATION_CHANNEL, "p:1,,p:2,") == 2

    def test_unknown_keys_are_harmless(self, listener: InvalidationListener) -> None:
        assert listener.on_message(INVALIDATION_CHANNEL, "p:unknown") == 0
