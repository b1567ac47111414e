"""
Brute-force Lockout Policy

Per-account state machine over ``failed_attempts`` and ``locked_until``:

    Unlocked(attempts)  --failure, attempts+1 < max-->  Unlocked(attempts+1)
    Unlocked(attempts)  --failure, attempts+1 >= max->  Locked(now + duration)
    Locked(until <= now) --failure-->                   Unlocked(1)
    any                 --success-->                    Unlocked(0)

Expiry is evaluated lazily when the account is read. Stores persist each
transition as a single atomic update; ``next_failure_state`` is the reference
transition they implement.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta


@dataclass(frozen=True)
class LockoutState:
    failed_attempts: int = 0
    locked_until: datetime | None = None


@dataclass(frozen=True)
class LockoutPolicy:
    """Threshold and duration for temporary login suspension."""

    max_attempts: int = 5
    lock_duration: timedelta = timedelta(minutes=15)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.lock_duration <= timedelta(0):
            raise ValueError("lock_duration must be positive")

    @classmethod
    def from_settings(cls, settings) -> "LockoutPolicy":
        return cls(
            max_attempts=settings.login_max_attempts,
            lock_duration=timedelta(minutes=settings.login_lockout_minutes),
        )

    def is_locked(self, locked_until: datetime | None, now: datetime) -> bool:
        return locked_until is not None and locked_until > now

    def next_failure_state(self, current: LockoutState, now: datetime) -> LockoutState:
        """State after one more failed credential check."""
        if current.locked_until is not None and current.locked_until <= now:
            # The lock has lapsed; this failure starts a fresh count
            return LockoutState(failed_attempts=1, locked_until=None)

        attempts = current.failed_attempts + 1
        locked_until = current.locked_until
        if locked_until is None and attempts >= self.max_attempts:
            locked_until = now + self.lock_duration
        return LockoutState(failed_attempts=attempts, locked_until=locked_until)

    def success_state(self) -> LockoutState:
        return LockoutState(failed_attempts=0, locked_until=None)
