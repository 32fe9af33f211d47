"""Tests for the session state machine held by CacheContext."""

import pytest

from tracking_cache.cache.context import CacheContext, SessionState
from tracking_cache.cache.prefixes import PrefixMatcher
from tracking_cache.cache.store import LocalCacheStore
from tracking_cache.exceptions import SessionStateError


@pytest.fixture
def context() -> CacheContext:
    return CacheContext(store=LocalCacheStore(local_ttl=60), matcher=PrefixMatcher(["p:"]))


class TestSessionState:
    """Test session state transitions."""

    def test_starts_uninitialized(self, context: CacheContext) -> None:
        assert context.state is SessionState.UNINITIALIZED

    def test_happy_path(self, context: CacheContext) -> None:
        context.transition(SessionState.REGISTERING)
        context.transition(SessionState.ACTIVE)
        context.transition(SessionState.CLOSED)
        assert context.state is SessionState.CLOSED

    def test_failed_registration_returns_to_uninitialized(self, context: CacheContext) -> None:
        context.transition(SessionState.REGISTERING)
        context.transition(SessionState.UNINITIALIZED)
        assert context.state is SessionState.UNINITIALIZED

    @pytest.mark.parametrize(
        "path",
        [
            [SessionState.ACTIVE],
            [SessionState.REGISTERING, SessionState.REGISTERING],
            [SessionState.REGISTERING, SessionState.ACTIVE, SessionState.REGISTERING],
            [SessionState.CLOSED, SessionState.UNINITIALIZED],
            [SessionState.CLOSED, SessionState.CLOSED],
        ],
    )
    def test_invalid_transitions_raise(
        self, context: CacheContext, path: list[SessionState]
    ) -> None:
        with pytest.raises(SessionStateError):
            for target in path:
                context.transition(target)

    def test_rejected_transition_keeps_state(self, context: CacheContext) -> None:
        with pytest.raises(SessionStateError) as exc_info:
            context.transition(SessionState.ACTIVE)

        assert context.state is SessionState.UNINITIALIZED
        assert exc_info.value.current == "uninitialized"
        assert exc_info.value.target == "active"

    def test_status_from_string(self) -> None:
        assert SessionState("active") is SessionState.ACTIVE
