"""
Account Store

Abstract persistence contract for the Account entity. Every security-relevant
read-modify-write (lockout bookkeeping, secret consume-and-clear, refresh
rotation) is a single atomic store operation; the service layer never reads
then writes.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any

from warden.models.account import (
    AccountInDB,
    AccountProfile,
    AccountRole,
    AccountStatistics,
    SecretPurpose,
)
from warden.security.lockout import LockoutPolicy, LockoutState


class DuplicateEmailError(Exception):
    """An account with this email already exists."""

    def __init__(self, email: str):
        super().__init__(f"Account already exists for {email}")
        self.email = email


class AccountStore(ABC):
    """Owns the durable Account record."""

    # =========================================================================
    # Lookup
    # =========================================================================

    @abstractmethod
    async def get_by_id(self, account_id: str) -> AccountInDB | None:
        ...

    @abstractmethod
    async def get_by_email(self, email: str) -> AccountInDB | None:
        """Case-insensitive lookup."""

    @abstractmethod
    async def email_exists(self, email: str) -> bool:
        ...

    @abstractmethod
    async def list_accounts(
        self,
        role: AccountRole | None = None,
        is_active: bool | None = None,
        is_verified: bool | None = None,
        search: str | None = None,
        skip: int = 0,
        limit: int = 50,
    ) -> tuple[list[AccountInDB], int]:
        """Newest first. Returns the page and the total matching count."""

    @abstractmethod
    async def statistics(self, since: datetime) -> AccountStatistics:
        """Counts by status and role; ``since`` bounds the recent-signups count."""

    # =========================================================================
    # Create / profile / delete
    # =========================================================================

    @abstractmethod
    async def create(
        self,
        email: str,
        password_hash: str,
        profile: AccountProfile | None = None,
        role: AccountRole = AccountRole.USER,
    ) -> AccountInDB:
        """
        Create an account with ``is_verified=False``.

        Raises:
            DuplicateEmailError: If the email is taken
        """

    @abstractmethod
    async def update_profile(self, account_id: str, changes: dict[str, Any]) -> AccountInDB | None:
        """Apply profile-only changes. Security sub-state is never touched here."""

    @abstractmethod
    async def set_role(self, account_id: str, role: AccountRole) -> AccountInDB | None:
        ...

    @abstractmethod
    async def set_active(self, account_id: str, active: bool) -> AccountInDB | None:
        ...

    @abstractmethod
    async def set_verified(self, account_id: str, verified: bool = True) -> AccountInDB | None:
        ...

    @abstractmethod
    async def delete(self, account_id: str) -> bool:
        ...

    # =========================================================================
    # Lockout bookkeeping
    # =========================================================================

    @abstractmethod
    async def record_failed_login(
        self,
        account_id: str,
        now: datetime,
        policy: LockoutPolicy,
    ) -> LockoutState | None:
        """
        Atomically apply ``policy.next_failure_state`` and persist it.

        Returns the new state, or None if the account does not exist.
        """

    @abstractmethod
    async def record_successful_login(self, account_id: str, now: datetime) -> AccountInDB | None:
        """Reset the lockout state, bump ``login_count``, stamp ``last_login_at``."""

    # =========================================================================
    # Credentials and tokens
    # =========================================================================

    @abstractmethod
    async def set_password(
        self,
        account_id: str,
        password_hash: str,
        changed_at: datetime,
    ) -> AccountInDB | None:
        """
        Replace the password hash.

        Also sets ``password_changed_at`` (strictly increasing) and bumps both
        the password version and the refresh generation, so every token
        issued earlier stops working.
        """

    @abstractmethod
    async def store_secret(
        self,
        account_id: str,
        purpose: SecretPurpose,
        digest: str,
        expires_at: datetime,
    ) -> bool:
        """Overwrite the single slot for ``purpose``."""

    @abstractmethod
    async def clear_secret(self, account_id: str, purpose: SecretPurpose, digest: str) -> bool:
        """
        Empty the slot for ``purpose`` only if it still holds ``digest``.

        A slot already overwritten by a newer token is left alone. Returns
        whether the slot was cleared.
        """

    @abstractmethod
    async def consume_secret(
        self,
        purpose: SecretPurpose,
        digest: str,
        now: datetime,
    ) -> AccountInDB | None:
        """
        Match-and-clear as one conditional update.

        Returns the account (slot already cleared) if an unexpired slot held
        ``digest``; otherwise None. Two concurrent calls with the same digest
        never both succeed.
        """

    @abstractmethod
    async def rotate_refresh_generation(self, account_id: str, expected: int) -> int | None:
        """
        Compare-and-increment the refresh generation.

        Returns the new generation, or None if ``expected`` is no longer current.
        """


def strictly_after(candidate: datetime, previous: datetime | None) -> datetime:
    """Keep ``password_changed_at`` strictly increasing under clock ties."""
    if previous is not None and candidate <= previous:
        return previous + timedelta(microseconds=1)
    return candidate
