"""In-process key/value store with lazy TTL expiry.

Entries are never swept proactively. An expired entry is removed only when
it is read, so ``stats()`` may still count entries whose time has passed.

The configured local TTL is a ceiling: an entry never lives locally longer
than ``local_ttl`` seconds, whatever remote expiry it was written with.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field

Clock = Callable[[], float]


@dataclass
class CacheEntry:
    """A locally cached value and its monotonic expiry timestamp."""

    value: str
    expires_at: float


@dataclass(frozen=True)
class LocalCacheStats:
    """Snapshot of the local store."""

    size: int
    keys: list[str] = field(default_factory=list)


class LocalCacheStore:
    """Mapping of key to CacheEntry, owned by a single cache instance.

    Args:
        local_ttl: Maximum local residency in seconds
        clock: Monotonic time source, injectable for tests
    """

    def __init__(self, local_ttl: float, clock: Clock = time.monotonic):
        if local_ttl <= 0:
            raise ValueError("local_ttl must be positive")
        self.local_ttl = local_ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    def put(self, key: str, value: str, ttl_hint: float | None = None) -> None:
        """Store a value, capping its residency at the local TTL.

        A positive ``ttl_hint`` (seconds) shortens residency below the local
        TTL; it never extends it.
        """
        duration = ttl_hint if ttl_hint is not None and ttl_hint > 0 else self.local_ttl
        self._entries[key] = CacheEntry(
            value=value,
            expires_at=self._clock() + min(duration, self.local_ttl),
        )

    def get(self, key: str) -> str | None:
        """Return the live value, evicting it first if it has expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry.value

    def remove(self, key: str) -> bool:
        """Remove a key. Returns True if an entry was present."""
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> LocalCacheStats:
        keys = list(self._entries)
        return LocalCacheStats(size=len(keys), keys=keys)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries
