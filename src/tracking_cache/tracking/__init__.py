"""Server-assisted invalidation for the local cache.

Uses Redis CLIENT TRACKING in broadcast mode with a dedicated subscriber
connection. Any write to a tracked prefix by another client is announced on
``__redis__:invalidate`` and evicted from the local store.
"""

from tracking_cache.tracking.connection import (
    InvalidationSubscriber,
    SubscriberConnection,
    wait_until_ready,
)
from tracking_cache.tracking.invalidation import (
    INVALIDATION_CHANNEL,
    InvalidationListener,
    InvalidationMessage,
)
from tracking_cache.tracking.session import TrackingSession

__all__ = [
    "INVALIDATION_CHANNEL",
    "InvalidationListener",
    "InvalidationMessage",
    "InvalidationSubscriber",
    "SubscriberConnection",
    "TrackingSession",
    "wait_until_ready",
]
