"""
Lockout Policy Tests

Transitions of the per-account failed-login state machine.
"""

from datetime import timedelta

import pytest

from warden.models.base import utc_now
from warden.security.lockout import LockoutPolicy, LockoutState


@pytest.fixture
def policy():
    return LockoutPolicy(max_attempts=5, lock_duration=timedelta(minutes=15))


class TestLockoutPolicy:

    def test_failures_below_threshold_count_up(self, policy):
        now = utc_now()
        state = LockoutState()
        for expected in range(1, 5):
            state = policy.next_failure_state(state, now)
            assert state.failed_attempts == expected
            assert state.locked_until is None

    def test_threshold_failure_locks(self, policy):
        now = utc_now()
        state = policy.next_failure_state(LockoutState(failed_attempts=4), now)

        assert state.failed_attempts == 5
        assert state.locked_until == now + timedelta(minutes=15)
        assert policy.is_locked(state.locked_until, now)

    def test_failure_while_locked_keeps_lock(self, policy):
        now = utc_now()
        locked = LockoutState(failed_attempts=5, locked_until=now + timedelta(minutes=10))
        state = policy.next_failure_state(locked, now)

        assert state.failed_attempts == 6
        assert state.locked_until == locked.locked_until

    def test_lapsed_lock_restarts_count(self, policy):
        now = utc_now()
        lapsed = LockoutState(failed_attempts=5, locked_until=now - timedelta(seconds=1))
        state = policy.next_failure_state(lapsed, now)

        assert state == LockoutState(failed_attempts=1, locked_until=None)

    def test_lock_expiry_boundary(self, policy):
        now = utc_now()
        assert policy.is_locked(now + timedelta(microseconds=1), now)
        assert not policy.is_locked(now, now)
        assert not policy.is_locked(None, now)

    def test_success_resets(self, policy):
        assert policy.success_state() == LockoutState(0, None)

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_attempts": 0},
            {"lock_duration": timedelta(0)},
        ],
    )
    def test_invalid_policy(self, kwargs):
        with pytest.raises(ValueError):
            LockoutPolicy(**kwargs)

    def test_from_settings(self, settings):
        policy = LockoutPolicy.from_settings(settings)

        assert policy.max_attempts == settings.login_max_attempts
        assert policy.lock_duration == timedelta(minutes=settings.login_lockout_minutes)
