"""Owned state shared by the facade, the session and the listener."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from tracking_cache.cache.prefixes import PrefixMatcher
from tracking_cache.cache.store import LocalCacheStore
from tracking_cache.exceptions import SessionStateError

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    """Tracking session lifecycle."""

    UNINITIALIZED = "uninitialized"
    REGISTERING = "registering"
    ACTIVE = "active"
    CLOSED = "closed"  # Terminal


_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.UNINITIALIZED: frozenset({SessionState.REGISTERING, SessionState.CLOSED}),
    SessionState.REGISTERING: frozenset(
        {SessionState.ACTIVE, SessionState.UNINITIALIZED, SessionState.CLOSED}
    ),
    SessionState.ACTIVE: frozenset({SessionState.CLOSED}),
    SessionState.CLOSED: frozenset(),
}


@dataclass
class CacheContext:
    """Local store, prefix set and session state of one cache instance."""

    store: LocalCacheStore
    matcher: PrefixMatcher
    state: SessionState = field(default=SessionState.UNINITIALIZED)

    def can_transition(self, target: SessionState) -> bool:
        return target in _TRANSITIONS[self.state]

    def transition(self, target: SessionState) -> None:
        """Move to ``target``, raising SessionStateError if not allowed."""
        if not self.can_transition(target):
            raise SessionStateError(self.state.value, target.value)
        logger.debug(f"Session state {self.state.value} -> {target.value}")
        self.state = target
