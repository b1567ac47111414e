"""
In-memory Account Store

Dictionary-backed AccountStore for tests and local development. A single
asyncio lock serializes every operation, which makes each conditional update
atomic within the process. Records are copied on the way in and out so
callers never alias stored state.
"""

import asyncio
from datetime import datetime
from typing import Any

import structlog

from warden.models.account import (
    AccountInDB,
    AccountProfile,
    AccountRole,
    AccountStatistics,
    SecretPurpose,
    normalize_email,
)
from warden.models.base import generate_id, utc_now
from warden.repositories.account_store import AccountStore, DuplicateEmailError, strictly_after
from warden.security.lockout import LockoutPolicy, LockoutState
from warden.security.secret_tokens import digest_matches

logger = structlog.get_logger(__name__)

_SECRET_SLOTS = {
    SecretPurpose.PASSWORD_RESET: ("reset_token_hash", "reset_expires_at"),
    SecretPurpose.EMAIL_VERIFICATION: ("verify_token_hash", "verify_expires_at"),
}


class InMemoryAccountStore(AccountStore):
    """Process-local AccountStore."""

    def __init__(self) -> None:
        self._accounts: dict[str, AccountInDB] = {}
        self._ids_by_email: dict[str, str] = {}
        self._lock = asyncio.Lock()

    def _copy(self, account: AccountInDB | None) -> AccountInDB | None:
        return account.model_copy(deep=True) if account is not None else None

    def _update(self, account_id: str, **fields: Any) -> AccountInDB | None:
        current = self._accounts.get(account_id)
        if current is None:
            return None
        data = current.model_dump()
        data.update(fields)
        data["updated_at"] = utc_now()
        updated = AccountInDB.model_validate(data)
        self._accounts[account_id] = updated
        return self._copy(updated)

    # =========================================================================
    # Lookup
    # =========================================================================

    async def get_by_id(self, account_id: str) -> AccountInDB | None:
        async with self._lock:
            return self._copy(self._accounts.get(account_id))

    async def get_by_email(self, email: str) -> AccountInDB | None:
        async with self._lock:
            account_id = self._ids_by_email.get(normalize_email(email))
            return self._copy(self._accounts.get(account_id)) if account_id else None

    async def email_exists(self, email: str) -> bool:
        async with self._lock:
            return normalize_email(email) in self._ids_by_email

    async def list_accounts(
        self,
        role: AccountRole | None = None,
        is_active: bool | None = None,
        is_verified: bool | None = None,
        search: str | None = None,
        skip: int = 0,
        limit: int = 50,
    ) -> tuple[list[AccountInDB], int]:
        async with self._lock:
            matches = list(self._accounts.values())
        if role is not None:
            matches = [a for a in matches if a.role == role]
        if is_active is not None:
            matches = [a for a in matches if a.is_active == is_active]
        if is_verified is not None:
            matches = [a for a in matches if a.is_verified == is_verified]
        if search:
            needle = search.lower()
            matches = [
                a
                for a in matches
                if needle in a.email
                or needle in (a.first_name or "").lower()
                or needle in (a.last_name or "").lower()
            ]
        matches.sort(key=lambda a: a.created_at, reverse=True)
        page = matches[skip : skip + limit]
        return [self._copy(a) for a in page], len(matches)

    async def statistics(self, since: datetime) -> AccountStatistics:
        async with self._lock:
            accounts = list(self._accounts.values())
        by_role: dict[str, int] = {}
        for account in accounts:
            by_role[account.role] = by_role.get(account.role, 0) + 1
        return AccountStatistics(
            total=len(accounts),
            active=sum(1 for a in accounts if a.is_active),
            verified=sum(1 for a in accounts if a.is_verified),
            by_role=by_role,
            created_last_30_days=sum(1 for a in accounts if a.created_at >= since),
        )

    # =========================================================================
    # Create / profile / delete
    # =========================================================================

    async def create(
        self,
        email: str,
        password_hash: str,
        profile: AccountProfile | None = None,
        role: AccountRole = AccountRole.USER,
    ) -> AccountInDB:
        email = normalize_email(email)
        profile_data = (profile or AccountProfile()).model_dump()
        async with self._lock:
            if email in self._ids_by_email:
                raise DuplicateEmailError(email)
            now = utc_now()
            account = AccountInDB(
                **profile_data,
                id=generate_id(),
                email=email,
                password_hash=password_hash,
                role=role,
                is_active=True,
                is_verified=False,
                created_at=now,
                updated_at=now,
            )
            self._accounts[account.id] = account
            self._ids_by_email[email] = account.id
        logger.info("account_created", account_id=account.id)
        return self._copy(account)

    async def update_profile(self, account_id: str, changes: dict[str, Any]) -> AccountInDB | None:
        allowed = {k: v for k, v in changes.items() if k in AccountProfile.model_fields}
        async with self._lock:
            return self._update(account_id, **allowed)

    async def set_role(self, account_id: str, role: AccountRole) -> AccountInDB | None:
        async with self._lock:
            return self._update(account_id, role=role)

    async def set_active(self, account_id: str, active: bool) -> AccountInDB | None:
        async with self._lock:
            return self._update(account_id, is_active=active)

    async def set_verified(self, account_id: str, verified: bool = True) -> AccountInDB | None:
        async with self._lock:
            return self._update(account_id, is_verified=verified)

    async def delete(self, account_id: str) -> bool:
        async with self._lock:
            account = self._accounts.pop(account_id, None)
            if account is None:
                return False
            self._ids_by_email.pop(account.email, None)
            return True

    # =========================================================================
    # Lockout bookkeeping
    # =========================================================================

    async def record_failed_login(
        self,
        account_id: str,
        now: datetime,
        policy: LockoutPolicy,
    ) -> LockoutState | None:
        async with self._lock:
            account = self._accounts.get(account_id)
            if account is None:
                return None
            state = policy.next_failure_state(
                LockoutState(account.failed_attempts, account.locked_until), now
            )
            self._update(
                account_id,
                failed_attempts=state.failed_attempts,
                locked_until=state.locked_until,
            )
            return state

    async def record_successful_login(self, account_id: str, now: datetime) -> AccountInDB | None:
        async with self._lock:
            account = self._accounts.get(account_id)
            if account is None:
                return None
            return self._update(
                account_id,
                failed_attempts=0,
                locked_until=None,
                login_count=account.login_count + 1,
                last_login_at=now,
            )

    # =========================================================================
    # Credentials and tokens
    # =========================================================================

    async def set_password(
        self,
        account_id: str,
        password_hash: str,
        changed_at: datetime,
    ) -> AccountInDB | None:
        async with self._lock:
            account = self._accounts.get(account_id)
            if account is None:
                return None
            return self._update(
                account_id,
                password_hash=password_hash,
                password_changed_at=strictly_after(changed_at, account.password_changed_at),
                password_version=account.password_version + 1,
                refresh_generation=account.refresh_generation + 1,
            )

    async def store_secret(
        self,
        account_id: str,
        purpose: SecretPurpose,
        digest: str,
        expires_at: datetime,
    ) -> bool:
        hash_field, expiry_field = _SECRET_SLOTS[SecretPurpose(purpose)]
        async with self._lock:
            updated = self._update(account_id, **{hash_field: digest, expiry_field: expires_at})
            return updated is not None

    async def clear_secret(self, account_id: str, purpose: SecretPurpose, digest: str) -> bool:
        hash_field, expiry_field = _SECRET_SLOTS[SecretPurpose(purpose)]
        async with self._lock:
            account = self._accounts.get(account_id)
            if account is None or getattr(account, hash_field) != digest:
                return False
            self._update(account_id, **{hash_field: None, expiry_field: None})
            return True

    async def consume_secret(
        self,
        purpose: SecretPurpose,
        digest: str,
        now: datetime,
    ) -> AccountInDB | None:
        hash_field, expiry_field = _SECRET_SLOTS[SecretPurpose(purpose)]
        async with self._lock:
            for account in self._accounts.values():
                if digest_matches(
                    digest,
                    getattr(account, hash_field),
                    getattr(account, expiry_field),
                    now,
                ):
                    return self._update(account.id, **{hash_field: None, expiry_field: None})
            return None

    async def rotate_refresh_generation(self, account_id: str, expected: int) -> int | None:
        async with self._lock:
            account = self._accounts.get(account_id)
            if account is None or account.refresh_generation != expected:
                return None
            new_generation = expected + 1
            self._update(account_id, refresh_generation=new_generation)
            return new_generation
