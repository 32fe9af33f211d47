"""Connections used by the tracking session.

The primary connection belongs to the caller. The subscriber connection is a
dedicated connection created from the primary's connection parameters; it
receives the redirected invalidation messages and is owned, and closed, by
the tracking session.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, Protocol, cast

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from tracking_cache.exceptions import ConnectionFailureError, ConnectionTimeoutError

if TYPE_CHECKING:
    from redis.asyncio.client import PubSub

logger = logging.getLogger(__name__)

# Seconds get_message waits before the listen loop re-checks for shutdown
LISTEN_POLL_TIMEOUT = 1.0

MessageHandler = Callable[[str, Any], object]


class InvalidationSubscriber(Protocol):
    """Secondary connection the tracking session drives.

    ``SubscriberConnection`` is the redis-py implementation; tests supply
    in-memory doubles.
    """

    async def wait_until_ready(self, timeout_ms: int) -> None: ...

    async def client_id(self) -> int: ...

    def bind(self, handler: MessageHandler) -> None: ...

    def unbind(self) -> None: ...

    async def subscribe(self, channel: str) -> None: ...

    async def unsubscribe(self, channel: str) -> None: ...

    async def close(self) -> None: ...

    async def force_close(self) -> None: ...


SubscriberFactory = Callable[[Any], InvalidationSubscriber]


async def wait_until_ready(ping: Callable[[], Awaitable[Any]], timeout_ms: int) -> None:
    """Wait for ``ping`` to succeed within ``timeout_ms``.

    Raises:
        ConnectionTimeoutError: No reply before the timeout.
        ConnectionFailureError: The connection errored or was closed.
    """
    try:
        await asyncio.wait_for(ping(), timeout=timeout_ms / 1000)
    except (asyncio.TimeoutError, RedisTimeoutError) as e:
        raise ConnectionTimeoutError(
            f"Timeout ({timeout_ms}ms) waiting for Redis connection to become ready"
        ) from e
    except (RedisError, OSError) as e:
        raise ConnectionFailureError(
            f"Redis connection error while waiting for ready: {e}"
        ) from e


def is_reachable(client: Any) -> bool:
    """Best guess whether a command can be sent on ``client`` right now.

    Single-connection clients expose their connection; pooled clients
    reconnect on demand and are assumed reachable.
    """
    connection = getattr(client, "connection", None)
    if connection is None:
        return True
    return bool(getattr(connection, "is_connected", True))


class SubscriberConnection:
    """Dedicated pub/sub connection receiving redirected invalidations.

    Owns a single-connection pool built from the primary's connection
    parameters. Messages are read by a background task and passed to the
    bound handler as ``(channel, data)``.

    Example:
        subscriber = SubscriberConnection.duplicate_of(primary)
        await subscriber.wait_until_ready(5000)
        client_id = await subscriber.client_id()
        subscriber.bind(listener.on_message)
        await subscriber.subscribe("__redis__:invalidate")
        ...
        await subscriber.close()
    """

    def __init__(self, pool: ConnectionPool):
        self._pool = pool
        self._client = Redis(connection_pool=pool)
        self._pubsub: PubSub = self._client.pubsub()
        self._handler: MessageHandler | None = None
        self._task: asyncio.Task[None] | None = None

    @classmethod
    def duplicate_of(cls, primary: Redis) -> SubscriberConnection:
        """Create a subscriber with the same connection parameters as ``primary``."""
        source = primary.connection_pool
        pool = ConnectionPool(
            connection_class=source.connection_class,
            max_connections=1,
            **source.connection_kwargs,
        )
        return cls(pool)

    async def _command(self, *args: Any) -> Any:
        """Run a plain command on the pub/sub connection before subscribing."""
        await self._pubsub.connect()
        connection = self._pubsub.connection
        assert connection is not None
        await connection.send_command(*args)
        return await connection.read_response()

    async def wait_until_ready(self, timeout_ms: int) -> None:
        await wait_until_ready(lambda: self._command("PING"), timeout_ms)

    async def client_id(self) -> int:
        """Server-side id of this connection, the CLIENT TRACKING redirect target."""
        return int(cast(int, await self._command("CLIENT", "ID")))

    def bind(self, handler: MessageHandler) -> None:
        self._handler = handler

    def unbind(self) -> None:
        self._handler = None

    @property
    def is_bound(self) -> bool:
        return self._handler is not None

    async def subscribe(self, channel: str) -> None:
        await self._pubsub.subscribe(channel)
        if self._task is None:
            self._task = asyncio.create_task(self._listen_loop())

    async def unsubscribe(self, channel: str) -> None:
        await self._pubsub.unsubscribe(channel)

    async def _listen_loop(self) -> None:
        """Main loop for receiving invalidation messages."""
        while True:
            try:
                message = await self._pubsub.get_message(
                    ignore_subscribe_messages=True,
                    timeout=LISTEN_POLL_TIMEOUT,
                )

                if message is None:
                    continue

                if message["type"] == "message":
                    self._dispatch(message["channel"], message["data"])

            except asyncio.CancelledError:
                break
            except RedisConnectionError as e:
                logger.error(f"Subscriber connection lost: {e}")
                await asyncio.sleep(LISTEN_POLL_TIMEOUT)
            except RedisError as e:
                logger.error(f"Error in invalidation listener: {e}")
                await asyncio.sleep(LISTEN_POLL_TIMEOUT)

    def _dispatch(self, channel: Any, data: Any) -> None:
        handler = self._handler
        if handler is None:
            return
        if isinstance(channel, bytes):
            channel = channel.decode("utf-8", errors="replace")
        try:
            handler(channel, data)
        except Exception as e:
            logger.error(f"Invalidation handler failed: {e}")

    async def _stop_listening(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def close(self) -> None:
        """Stop the listen task and close the connection gracefully."""
        await self._stop_listening()
        await self._pubsub.aclose()
        await self._client.aclose()
        await self._pool.disconnect()

    async def force_close(self) -> None:
        """Drop every connection of the pool without waiting for replies."""
        await self._stop_listening()
        await self._pool.disconnect(inuse_connections=True)
