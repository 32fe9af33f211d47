"""Local cache layer.

- LocalCacheStore holds values with lazy TTL expiry and a local TTL ceiling
- PrefixMatcher decides which keys may be cached locally
- CacheContext owns both plus the tracking session state
"""

from tracking_cache.cache.context import CacheContext, SessionState
from tracking_cache.cache.prefixes import PrefixMatcher
from tracking_cache.cache.store import CacheEntry, LocalCacheStats, LocalCacheStore

__all__ = [
    "CacheContext",
    "CacheEntry",
    "LocalCacheStats",
    "LocalCacheStore",
    "PrefixMatcher",
    "SessionState",
]
