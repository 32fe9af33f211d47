"""Client-side cache facade over a caller-owned redis-py client.

Reads consult the local store first and fall back to Redis; values of keys
under a tracked prefix are then kept locally until Redis announces a change
or the local TTL runs out. Writes go to Redis first and are mirrored locally
only once Redis acknowledged them.

Example:
    client = await connect_primary("redis://localhost:6379/0")
    cache = await ClientSideCache.create(client, ["user:", "product:"])

    await cache.set("user:1", "alice")
    result = await cache.get("user:1")     # CacheResult(data="alice", hits=1, misses=0)

    batch = await cache.mget(["user:1", "user:2"])
    await cache.close()                    # client itself stays open
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import redis.asyncio as redis
from redis.exceptions import RedisError

from tracking_cache.cache.context import CacheContext, SessionState
from tracking_cache.cache.prefixes import PrefixMatcher
from tracking_cache.cache.store import Clock, LocalCacheStats, LocalCacheStore
from tracking_cache.config import settings
from tracking_cache.exceptions import (
    ConfigurationError,
    InputValidationError,
    OperationError,
)
from tracking_cache.observability.logging import LogContext
from tracking_cache.tracking.connection import SubscriberConnection, SubscriberFactory
from tracking_cache.tracking.session import TrackingSession

logger = logging.getLogger(__name__)

# Commands the facade and the tracking session issue on the primary client
REQUIRED_COMMANDS = (
    "execute_command",
    "ping",
    "get",
    "set",
    "mget",
    "mset",
    "delete",
    "expire",
    "pexpire",
)

InvalidationCallback = Callable[[list[str]], Any]


@dataclass(frozen=True)
class CacheResult:
    """Value of a single read with its local hit/miss accounting."""

    data: str | None
    hits: int
    misses: int


@dataclass(frozen=True)
class BatchResult:
    """Values of a batched read; every requested key is present in ``data``."""

    data: dict[str, str | None]
    hits: int
    misses: int


def _is_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def _to_str(value: Any) -> str:
    """Canonical string form of a value written to Redis."""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8")
    return str(value)


def _decode(raw: Any) -> str | None:
    if raw is None:
        return None
    return _to_str(raw)


def _require_key(key: Any, name: str = "key") -> None:
    if not isinstance(key, str):
        raise InputValidationError(f"Input '{name}' must be a string.")


def _validate_client(client: Any) -> None:
    missing = [name for name in REQUIRED_COMMANDS if not callable(getattr(client, name, None))]
    if missing:
        raise ConfigurationError(
            "Provided client does not appear to be a valid redis.asyncio client "
            f"(missing: {', '.join(missing)})"
        )


async def connect_primary(url: str | None = None, **kwargs: Any) -> redis.Redis:
    """Create a single-connection client suitable as the primary connection.

    Tracking and NOLOOP are per server-side connection, so all commands of a
    cache should travel over one connection.
    """
    kwargs.setdefault("decode_responses", True)
    return redis.from_url(  # type: ignore[no-untyped-call]
        url or settings.redis_url,
        single_connection_client=True,
        **kwargs,
    )


class ClientSideCache:
    """Local read-through cache kept coherent through Redis invalidations.

    Use ``create`` to build an instance; it registers tracking before
    returning. The primary client is never closed by this class.
    """

    def __init__(
        self,
        client: Any,
        context: CacheContext,
        session: TrackingSession,
        default_expiry: float,
        invalidation_callback: InvalidationCallback | None = None,
    ):
        self._client = client
        self._context = context
        self._session = session
        self._default_expiry = default_expiry
        # Accepted for API compatibility; invalidations are not forwarded to it
        self._invalidation_callback = invalidation_callback

    @classmethod
    async def create(
        cls,
        client: Any,
        prefixes: Sequence[str],
        default_expiry: float | None = None,
        listener: InvalidationCallback | None = None,
        ready_timeout_ms: int | None = None,
        local_ttl: float | None = None,
        *,
        subscriber_factory: SubscriberFactory | None = None,
        clock: Clock | None = None,
    ) -> ClientSideCache:
        """Create a cache and register broadcast tracking for ``prefixes``.

        Args:
            client: Primary redis.asyncio client, owned by the caller
            prefixes: Key prefixes to cache locally; empty disables tracking
            default_expiry: Remote expiry in seconds for set/mset (0 = none)
            listener: Invalidation observer, stored but never called
            ready_timeout_ms: Readiness wait for both connections
            local_ttl: Ceiling on local residency, in seconds
            subscriber_factory: Builds the subscriber connection from ``client``
            clock: Monotonic time source for the local store

        Raises:
            ConfigurationError: Invalid client or prefix list.
            ConnectionTimeoutError: A connection was not ready in time.
            ConnectionFailureError: A connection failed during setup.
            RegistrationError: Redis rejected CLIENT TRACKING.
        """
        _validate_client(client)
        matcher = PrefixMatcher(prefixes)

        if default_expiry is None:
            default_expiry = settings.default_expiry
        elif not _is_number(default_expiry) or default_expiry < 0:
            logger.warning(
                f"Invalid default_expiry {default_expiry!r}, using {settings.default_expiry}s"
            )
            default_expiry = settings.default_expiry

        if local_ttl is None:
            local_ttl = settings.local_ttl
        elif not _is_number(local_ttl) or local_ttl <= 0:
            logger.warning(f"Invalid local_ttl {local_ttl!r}, using {settings.local_ttl}s")
            local_ttl = settings.local_ttl

        if ready_timeout_ms is None or not _is_number(ready_timeout_ms) or ready_timeout_ms < 0:
            ready_timeout_ms = settings.ready_timeout_ms

        if not getattr(client, "single_connection_client", False):
            logger.warning(
                "Primary client uses a connection pool; CLIENT TRACKING and NOLOOP only "
                "apply to one pooled connection, so own writes may invalidate local entries"
            )

        context = CacheContext(
            store=LocalCacheStore(local_ttl, clock=clock or time.monotonic),
            matcher=matcher,
        )

        factory = subscriber_factory or SubscriberConnection.duplicate_of
        try:
            subscriber = factory(client)
        except (AttributeError, TypeError, RedisError) as e:
            raise ConfigurationError(f"Cannot create subscriber connection: {e}") from e

        session = TrackingSession(client, context, subscriber, int(ready_timeout_ms))
        cache = cls(client, context, session, default_expiry, listener)

        try:
            await session.register()
        except BaseException as e:
            logger.error(f"Failed to initialize client-side cache: {e}")
            # Only the subscriber connection is ours to release
            await session.close()
            raise

        logger.info(f"Client-side cache ready for prefixes {list(matcher.prefixes)}")
        return cache

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    @property
    def context(self) -> CacheContext:
        return self._context

    @property
    def session(self) -> TrackingSession:
        return self._session

    @property
    def state(self) -> SessionState:
        return self._context.state

    @property
    def prefixes(self) -> tuple[str, ...]:
        return self._context.matcher.prefixes

    @property
    def default_expiry(self) -> float:
        return self._default_expiry

    @property
    def local_ttl(self) -> float:
        return self._context.store.local_ttl

    @property
    def invalidation_callback(self) -> InvalidationCallback | None:
        return self._invalidation_callback

    def stats(self) -> LocalCacheStats:
        """Size and keys of the local store, not counting lazy expiry."""
        return self._context.store.stats()

    def peek_local(self, key: str) -> str | None:
        """Local value of ``key`` without touching Redis or checking prefixes."""
        if not isinstance(key, str):
            return None
        return self._context.store.get(key)

    def clear_local(self) -> None:
        """Empty the local store. Redis is not touched."""
        self._context.store.clear()

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _ensure_open(self) -> None:
        if self._context.state is SessionState.CLOSED:
            raise OperationError("Client-side cache is closed")

    def _effective_expiry(self, expiry: Any) -> float:
        if _is_number(expiry) and expiry >= 0:
            return expiry
        return self._default_expiry

    def _populate(self, key: str, value: str | None, ttl_hint: float | None = None) -> None:
        if value is None or not self._context.matcher.qualifies(key):
            return
        self._context.store.put(key, value, ttl_hint)

    @staticmethod
    def _whole_seconds(expiry: float) -> bool:
        return isinstance(expiry, int) or float(expiry).is_integer()

    async def _expire_many(self, keys: list[str], expiry: float) -> None:
        """Set a remote expiry per key; failures are logged, not raised."""
        if self._whole_seconds(expiry):
            calls = [self._client.expire(key, int(expiry)) for key in keys]
        else:
            millis = max(1, round(expiry * 1000))
            calls = [self._client.pexpire(key, millis) for key in keys]

        results = await asyncio.gather(*calls, return_exceptions=True)
        for key, result in zip(keys, results):
            if isinstance(result, Exception):
                logger.warning(f"Error setting expiry for key '{key}': {result}")

    # -------------------------------------------------------------------------
    # Cache operations
    # -------------------------------------------------------------------------

    async def get(self, key: str) -> CacheResult:
        """Read a key, locally if possible.

        Raises:
            InputValidationError: ``key`` is not a string.
            OperationError: Redis GET failed.
        """
        _require_key(key)
        self._ensure_open()

        value = self._context.store.get(key)
        if value is not None:
            return CacheResult(data=value, hits=1, misses=0)

        try:
            raw = await self._client.get(key)
        except RedisError as e:
            logger.error(f"Error fetching key from Redis in get: {e}")
            raise OperationError(f"Failed to fetch key from Redis: {e}") from e

        value = _decode(raw)
        self._populate(key, value)
        return CacheResult(data=value, hits=0, misses=1)

    async def set(self, key: str, value: Any, expiry: float | None = None) -> Any:
        """Write a key to Redis, then locally if its prefix is tracked.

        ``expiry`` is in seconds; a negative or non-numeric value means the
        default expiry, and an effective expiry of 0 writes without one.
        Returns the Redis acknowledgement.

        Raises:
            InputValidationError: ``key`` is not a string or ``value`` is None.
            OperationError: Redis SET failed; nothing changed locally.
        """
        _require_key(key)
        if value is None:
            raise InputValidationError("Input 'value' must not be None.")
        self._ensure_open()

        string_value = _to_str(value)
        expire_secs = self._effective_expiry(expiry)

        try:
            if expire_secs > 0:
                if self._whole_seconds(expire_secs):
                    reply = await self._client.set(key, string_value, ex=int(expire_secs))
                else:
                    reply = await self._client.set(
                        key, string_value, px=max(1, round(expire_secs * 1000))
                    )
            else:
                reply = await self._client.set(key, string_value)
        except RedisError as e:
            logger.error(f"Error setting key in Redis in set: {e}")
            raise OperationError(f"Failed to set key in Redis: {e}") from e

        self._populate(key, string_value, expire_secs)
        return reply

    async def mget(self, keys: Sequence[str]) -> BatchResult:
        """Read many keys with one MGET for those not held locally.

        Duplicate keys are looked up once.

        Raises:
            InputValidationError: ``keys`` is not a list of strings.
            OperationError: Redis MGET failed.
        """
        if not isinstance(keys, (list, tuple)):
            raise InputValidationError("Input 'keys' must be a list of strings.")
        for key in keys:
            _require_key(key, "keys")
        self._ensure_open()

        results: dict[str, str | None] = {}
        to_fetch: list[str] = []
        hits = 0

        for key in dict.fromkeys(keys):
            value = self._context.store.get(key)
            if value is not None:
                results[key] = value
                hits += 1
            else:
                results[key] = None
                to_fetch.append(key)

        if to_fetch:
            try:
                raw_values = await self._client.mget(to_fetch)
            except RedisError as e:
                logger.error(f"Error fetching keys from Redis in mget: {e}")
                raise OperationError(f"Failed to fetch keys from Redis: {e}") from e

            for key, raw in zip(to_fetch, raw_values):
                value = _decode(raw)
                results[key] = value
                self._populate(key, value)

        return BatchResult(data=results, hits=hits, misses=len(to_fetch))

    async def mset(self, data: Mapping[str, Any], expiry: float | None = None) -> Any:
        """Write many keys with one MSET, then set their expiry per key.

        None values are skipped; when none remain, "OK" is returned without a
        round trip. Expiry follows the same rules as ``set``;
        failing to expire a key is logged and does not fail the call.

        Raises:
            InputValidationError: ``data`` is not a mapping of string keys.
            OperationError: Redis MSET failed; attempted keys under a tracked
                prefix are dropped locally.
        """
        if not isinstance(data, Mapping):
            raise InputValidationError(
                "Invalid data argument. Must be a mapping of key-value pairs."
            )
        for key in data:
            _require_key(key, "data")
        self._ensure_open()

        with LogContext(operation="mset"):
            payload: dict[str, str] = {}
            for key, value in data.items():
                if value is None:
                    logger.warning(f"Skipping key '{key}' in mset due to None value")
                    continue
                payload[key] = _to_str(value)

            if not payload:
                return "OK"

            expire_secs = self._effective_expiry(expiry)

            try:
                reply = await self._client.mset(payload)
            except RedisError as e:
                logger.error(f"Error setting keys in Redis in mset: {e}")
                for key in payload:
                    if self._context.matcher.qualifies(key):
                        self._context.store.remove(key)
                raise OperationError(f"Failed to set keys in Redis: {e}") from e

            for key, value in payload.items():
                self._populate(key, value, expire_secs)

            if expire_secs > 0:
                await self._expire_many(list(payload), expire_secs)

            return reply

    async def delete(self, keys: str | Sequence[str]) -> int:
        """Delete keys locally and in Redis.

        Local entries are removed whatever their prefix, and stay removed if
        Redis fails. Returns the number of keys Redis deleted.

        Raises:
            InputValidationError: ``keys`` is not a string or list of strings.
            OperationError: Redis DEL failed.
        """
        keys_to_delete = [keys] if isinstance(keys, str) else keys
        if not isinstance(keys_to_delete, (list, tuple)) or not all(
            isinstance(k, str) for k in keys_to_delete
        ):
            raise InputValidationError(
                "Invalid keys argument. Must be a string or a list of strings."
            )
        if not keys_to_delete:
            return 0
        self._ensure_open()

        removed = sum(1 for key in keys_to_delete if self._context.store.remove(key))
        logger.debug(f"Removed {removed} keys locally")

        try:
            deleted = await self._client.delete(*keys_to_delete)
        except RedisError as e:
            logger.error(f"Error deleting keys from Redis in delete: {e}")
            raise OperationError(f"Failed to delete keys from Redis: {e}") from e
        return int(deleted)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def close(self) -> None:
        """Disable tracking, close the subscriber connection, clear the local store.

        The primary client stays open. Safe to call more than once.
        """
        await self._session.close()

    async def __aenter__(self) -> ClientSideCache:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
