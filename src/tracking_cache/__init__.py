"""Local read-through cache kept coherent with Redis via client tracking.

Keys under configured prefixes are cached in process. Redis 6+ broadcast
tracking (CLIENT TRACKING BCAST, redirected to a dedicated subscriber
connection) evicts them when any other client writes them.
"""

from tracking_cache.cache import (
    CacheContext,
    CacheEntry,
    LocalCacheStats,
    LocalCacheStore,
    PrefixMatcher,
    SessionState,
)
from tracking_cache.client import (
    BatchResult,
    CacheResult,
    ClientSideCache,
    connect_primary,
)
from tracking_cache.config import Settings, settings
from tracking_cache.exceptions import (
    CacheError,
    ConfigurationError,
    ConnectionFailureError,
    ConnectionTimeoutError,
    InputValidationError,
    OperationError,
    RegistrationError,
    SessionStateError,
)
from tracking_cache.tracking import (
    INVALIDATION_CHANNEL,
    InvalidationListener,
    InvalidationMessage,
    SubscriberConnection,
    TrackingSession,
)

__all__ = [
    # Facade
    "ClientSideCache",
    "CacheResult",
    "BatchResult",
    "connect_primary",
    # Local cache
    "CacheContext",
    "CacheEntry",
    "LocalCacheStats",
    "LocalCacheStore",
    "PrefixMatcher",
    "SessionState",
    # Tracking
    "INVALIDATION_CHANNEL",
    "InvalidationListener",
    "InvalidationMessage",
    "SubscriberConnection",
    "TrackingSession",
    # Config
    "Settings",
    "settings",
    # Errors
    "CacheError",
    "ConfigurationError",
    "ConnectionFailureError",
    "ConnectionTimeoutError",
    "InputValidationError",
    "OperationError",
    "RegistrationError",
    "SessionStateError",
]
