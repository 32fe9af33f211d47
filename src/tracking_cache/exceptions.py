"""Error taxonomy for the tracking cache.

Construction errors (configuration, connection, registration) are fatal to
``ClientSideCache.create``. Input and operation errors fail a single call and
leave the session usable.
"""

from __future__ import annotations


class CacheError(Exception):
    """Base exception for tracking cache errors."""

    pass


class ConfigurationError(CacheError):
    """Invalid connection handle or malformed prefix list."""

    pass


class ConnectionTimeoutError(CacheError):
    """A connection did not become ready within the configured timeout."""

    pass


class ConnectionFailureError(CacheError):
    """A connection errored or terminated while being set up."""

    pass


class RegistrationError(CacheError):
    """The server rejected tracking registration or the session cannot register."""

    pass


class InputValidationError(CacheError, ValueError):
    """Wrong argument type or shape passed to a public operation."""

    pass


class OperationError(CacheError):
    """A remote get/set/delete/batch command failed."""

    pass


class SessionStateError(CacheError):
    """Invalid tracking session state transition."""

    def __init__(self, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Invalid session transition: {current} -> {target}")
