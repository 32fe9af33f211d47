"""Prefix admission control for the local cache.

A key is "qualified" for local caching iff it starts with one of the
configured prefixes. The same prefixes are registered with the server for
broadcast invalidation, so only qualified keys ever receive notifications.
"""

from __future__ import annotations

from collections.abc import Sequence

from tracking_cache.exceptions import ConfigurationError


class PrefixMatcher:
    """Immutable, ordered set of tracked key prefixes."""

    def __init__(self, prefixes: Sequence[str]):
        if not isinstance(prefixes, (list, tuple)):
            raise ConfigurationError("prefixes must be a list of strings")
        for prefix in prefixes:
            if not isinstance(prefix, str):
                raise ConfigurationError(f"prefix {prefix!r} is not a string")
            if not prefix:
                # An empty prefix would admit every key without being tracked
                raise ConfigurationError("prefixes must not contain an empty string")
        self._prefixes: tuple[str, ...] = tuple(prefixes)

    @property
    def prefixes(self) -> tuple[str, ...]:
        return self._prefixes

    def __bool__(self) -> bool:
        return bool(self._prefixes)

    def __len__(self) -> int:
        return len(self._prefixes)

    def qualifies(self, key: object) -> bool:
        """Check whether a key may be stored locally."""
        if not isinstance(key, str) or not self._prefixes:
            return False
        return key.startswith(self._prefixes)

    def __repr__(self) -> str:
        return f"PrefixMatcher({list(self._prefixes)!r})"
