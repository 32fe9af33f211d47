"""Tracking session: registers broadcast invalidation and tears it down.

Setup, in order:
1. Wait for the primary and subscriber connections to answer PING
2. Read the subscriber's CLIENT ID
3. On the primary: CLIENT TRACKING ON REDIRECT <id> BCAST PREFIX ... NOLOOP
4. Bind the invalidation listener to the subscriber
5. SUBSCRIBE the subscriber to __redis__:invalidate

NOLOOP keeps Redis from notifying the primary about its own writes, so
values this instance writes are not evicted by their own invalidation.

Teardown runs every step independently, logging failures and carrying on.
CLIENT TRACKING OFF is only sent once tracking was enabled, and remote
teardown steps are bounded by the readiness timeout.
The primary connection is never closed here.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from redis.exceptions import RedisError

from tracking_cache.cache.context import CacheContext, SessionState
from tracking_cache.exceptions import (
    ConnectionFailureError,
    RegistrationError,
)
from tracking_cache.observability.logging import LogContext
from tracking_cache.tracking.connection import (
    InvalidationSubscriber,
    is_reachable,
    wait_until_ready,
)
from tracking_cache.tracking.invalidation import INVALIDATION_CHANNEL, InvalidationListener

logger = logging.getLogger(__name__)


def _is_ok(reply: Any) -> bool:
    """redis-py returns OK as True, b"OK" or "OK" depending on callbacks/decoding."""
    if reply is True:
        return True
    if isinstance(reply, bytes):
        reply = reply.decode("utf-8", errors="replace")
    return reply == "OK"


def tracking_arguments(client_id: int, prefixes: tuple[str, ...]) -> list[str]:
    """Build CLIENT TRACKING ON arguments for broadcast mode."""
    args = ["ON", "REDIRECT", str(client_id), "BCAST"]
    for prefix in prefixes:
        args.extend(["PREFIX", prefix])
    args.append("NOLOOP")
    return args


class TrackingSession:
    """Owns the subscriber connection and the tracking registration.

    Args:
        primary: Caller-owned redis-py client that issues CLIENT TRACKING
        context: Shared store, prefixes and session state
        subscriber: Dedicated connection receiving invalidations (owned)
        ready_timeout_ms: Readiness wait for both connections
    """

    def __init__(
        self,
        primary: Any,
        context: CacheContext,
        subscriber: InvalidationSubscriber,
        ready_timeout_ms: int,
    ):
        self._primary = primary
        self._context = context
        self._subscriber = subscriber
        self._ready_timeout_ms = ready_timeout_ms
        # Remote teardown steps get the same bound as the readiness wait
        self._teardown_timeout = ready_timeout_ms / 1000
        self._listener = InvalidationListener(context)
        self._client_id: int | None = None
        self._tracking_enabled = False
        self._subscribe_attempted = False

    @property
    def state(self) -> SessionState:
        return self._context.state

    @property
    def client_id(self) -> int | None:
        """Id of the subscriber connection, once known."""
        return self._client_id

    @property
    def tracking_enabled(self) -> bool:
        return self._tracking_enabled

    @property
    def listener(self) -> InvalidationListener:
        return self._listener

    async def register(self) -> None:
        """Register broadcast tracking and start receiving invalidations.

        A repeated call on an active session is a no-op. On failure, anything
        attached so far is detached and the session is left UNINITIALIZED.

        Raises:
            ConnectionTimeoutError: A connection was not ready in time.
            ConnectionFailureError: A connection errored during setup.
            RegistrationError: Redis rejected tracking, or the session is
                closed or already registering.
        """
        state = self._context.state
        if state is SessionState.ACTIVE:
            logger.warning("Client tracking setup already done. Skipping.")
            return
        if state is not SessionState.UNINITIALIZED:
            raise RegistrationError(f"Cannot register tracking in state {state.value}")

        self._context.transition(SessionState.REGISTERING)
        try:
            await self._setup()
        except BaseException:
            await self._rollback_setup()
            self._context.transition(SessionState.UNINITIALIZED)
            raise

        self._context.transition(SessionState.ACTIVE)

    async def _setup(self) -> None:
        await wait_until_ready(self._primary.ping, self._ready_timeout_ms)
        logger.debug("Primary connection is ready")
        await self._subscriber.wait_until_ready(self._ready_timeout_ms)
        logger.debug("Subscriber connection is ready")

        try:
            self._client_id = await self._subscriber.client_id()
        except RedisError as e:
            raise RegistrationError(f"Failed to get subscriber client id: {e}") from e
        if not self._client_id:
            raise RegistrationError("Failed to get subscriber client id")

        with LogContext(session_id=self._client_id):
            prefixes = self._context.matcher.prefixes
            if not prefixes:
                logger.warning("No prefixes specified, broadcast tracking not registered")
                return

            args = tracking_arguments(self._client_id, prefixes)
            logger.debug(f"Sending CLIENT TRACKING {' '.join(args)}")
            try:
                reply = await self._primary.execute_command("CLIENT", "TRACKING", *args)
            except RedisError as e:
                raise RegistrationError(f"CLIENT TRACKING failed: {e}") from e
            if not _is_ok(reply):
                raise RegistrationError(f"CLIENT TRACKING command failed. Result: {reply!r}")
            self._tracking_enabled = True

            self._subscriber.bind(self._listener.on_message)
            self._subscribe_attempted = True
            try:
                await self._subscriber.subscribe(INVALIDATION_CHANNEL)
            except RedisError as e:
                raise ConnectionFailureError(
                    f"Failed to subscribe to {INVALIDATION_CHANNEL}: {e}"
                ) from e
            logger.info(
                f"Tracking {len(prefixes)} prefixes, invalidations on {INVALIDATION_CHANNEL}"
            )

    async def _rollback_setup(self) -> None:
        logger.error("Failed to set up client tracking, detaching listener")
        self._unbind_handler()
        await self._unsubscribe()

    # -------------------------------------------------------------------------
    # Teardown steps, each independent of the others' outcome
    # -------------------------------------------------------------------------

    async def _disable_tracking(self) -> None:
        if not self._tracking_enabled:
            return
        if not is_reachable(self._primary):
            logger.warning(
                "Skipping CLIENT TRACKING OFF, primary connection is not connected. "
                "Tracking might remain active on the server."
            )
            return
        try:
            reply = await asyncio.wait_for(
                self._primary.execute_command("CLIENT", "TRACKING", "OFF"),
                timeout=self._teardown_timeout,
            )
            if not _is_ok(reply):
                logger.warning(f"CLIENT TRACKING OFF did not return OK. Result: {reply!r}")
        except asyncio.TimeoutError:
            logger.warning(
                f"Timeout ({self._ready_timeout_ms}ms) sending CLIENT TRACKING OFF. "
                "Tracking might remain active on the server."
            )
        except Exception as e:
            logger.warning(f"Error sending CLIENT TRACKING OFF: {e}")
        self._tracking_enabled = False

    def _unbind_handler(self) -> None:
        try:
            self._subscriber.unbind()
        except Exception as e:
            logger.warning(f"Error removing invalidation handler: {e}")

    async def _unsubscribe(self) -> None:
        if not self._subscribe_attempted:
            return
        try:
            await self._subscriber.unsubscribe(INVALIDATION_CHANNEL)
        except Exception as e:
            logger.warning(f"Error unsubscribing from {INVALIDATION_CHANNEL}: {e}")

    async def _close_subscriber(self) -> None:
        try:
            await asyncio.wait_for(self._subscriber.close(), timeout=self._teardown_timeout)
            return
        except asyncio.TimeoutError:
            logger.warning(
                f"Timeout ({self._ready_timeout_ms}ms) closing subscriber connection"
            )
        except Exception as e:
            logger.warning(f"Error closing subscriber connection: {e}")
        try:
            await self._subscriber.force_close()
        except Exception as e:
            logger.warning(f"Error force-closing subscriber connection: {e}")

    async def close(self) -> None:
        """Disable tracking and release the subscriber connection.

        Safe to call repeatedly; later calls only clear the local store.
        """
        if self._context.state is SessionState.CLOSED:
            self._context.store.clear()
            return

        with LogContext(session_id=self._client_id or "", operation="close"):
            await self._disable_tracking()
            self._unbind_handler()
            await self._unsubscribe()
            await self._close_subscriber()

            self._context.transition(SessionState.CLOSED)
            self._context.store.clear()
            logger.info("Tracking session closed")
