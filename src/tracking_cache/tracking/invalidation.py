"""Invalidation messages delivered by Redis server-assisted client caching.

With ``CLIENT TRACKING ... REDIRECT <id> BCAST``, Redis publishes the keys
touched by any write to a tracked prefix on the ``__redis__:invalidate``
channel of the redirect connection. The listener evicts those keys from the
local store.

Notifications are not ordered with respect to cache population: a read that
fetched a value before an invalidation arrived may still write that stale
value afterwards. The entry then lives until the next invalidation or the
local TTL ceiling.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from tracking_cache.cache.context import CacheContext

logger = logging.getLogger(__name__)

# Fixed channel Redis uses for redirected tracking notifications
INVALIDATION_CHANNEL = "__redis__:invalidate"

# Keys within a string payload are comma separated, without escaping
KEY_DELIMITER = ","


def _decode(raw: Any) -> str:
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    return str(raw)


@dataclass(frozen=True)
class InvalidationMessage:
    """Ordered raw keys carried by a single notification."""

    keys: tuple[str, ...]

    @classmethod
    def from_payload(cls, payload: Any) -> "InvalidationMessage":
        """Parse a notification payload.

        Accepts a comma separated ``str``/``bytes`` payload or a list of
        keys, which is how redis-py delivers RESP2 invalidation arrays.
        ``None`` (sent on FLUSHALL/FLUSHDB) parses to an empty message.
        """
        if payload is None:
            return cls(keys=())
        if isinstance(payload, (list, tuple)):
            return cls(keys=tuple(_decode(item) for item in payload if item is not None))
        text = _decode(payload)
        if not text:
            return cls(keys=())
        return cls(keys=tuple(text.split(KEY_DELIMITER)))

    def __bool__(self) -> bool:
        return bool(self.keys)


class InvalidationListener:
    """Evicts invalidated keys from the local store.

    Bound to the subscriber connection by the tracking session. Each call
    is handled synchronously.
    """

    def __init__(self, context: CacheContext, channel: str = INVALIDATION_CHANNEL):
        self._context = context
        self.channel = channel

    def on_message(self, channel: str, payload: Any) -> int:
        """Handle one notification. Returns the number of keys evicted."""
        if channel != self.channel:
            return 0

        message = InvalidationMessage.from_payload(payload)
        if not message:
            return 0

        matcher = self._context.matcher
        store = self._context.store
        evicted = 0
        for key in message.keys:
            # Registration only emits tracked prefixes; filter anyway
            if key and matcher.qualifies(key):
                if store.remove(key):
                    evicted += 1

        logger.debug(f"Invalidation for {len(message.keys)} keys, evicted {evicted} locally")
        return evicted
