"""
Neo4j Account Store

AccountStore backed by ``(:Account)`` nodes. Conditional updates take the
node's write lock first (``SET a._lock = true``) and only then read the
fields they branch on, so concurrent transactions on the same account
serialize and each sees the other's committed result.
"""

from datetime import datetime
from typing import Any

import structlog
from neo4j.exceptions import ConstraintError

from warden.database.client import Neo4jClient
from warden.models.account import (
    PROFILE_FIELDS,
    AccountInDB,
    AccountProfile,
    AccountRole,
    AccountStatistics,
    SecretPurpose,
    normalize_email,
)
from warden.models.base import generate_id, utc_now
from warden.repositories.account_store import AccountStore, DuplicateEmailError
from warden.security.lockout import LockoutPolicy, LockoutState

_SECRET_SLOTS = {
    SecretPurpose.PASSWORD_RESET: ("reset_token_hash", "reset_expires_at"),
    SecretPurpose.EMAIL_VERIFICATION: ("verify_token_hash", "verify_expires_at"),
}


class Neo4jAccountStore(AccountStore):
    """Account persistence in Neo4j."""

    def __init__(self, client: Neo4jClient):
        self.client = client
        self.logger = structlog.get_logger(self.__class__.__name__)

    def _to_model(self, record: dict[str, Any] | None) -> AccountInDB | None:
        if not record or not record.get("account"):
            return None
        return AccountInDB.model_validate(record["account"])

    async def _single_account(self, query: str, params: dict[str, Any]) -> AccountInDB | None:
        return self._to_model(await self.client.execute_single(query, params))

    async def _conditional_account(self, query: str, params: dict[str, Any]) -> AccountInDB | None:
        return self._to_model(await self.client.execute_conditional(query, params))

    # =========================================================================
    # Lookup
    # =========================================================================

    async def get_by_id(self, account_id: str) -> AccountInDB | None:
        query = """
        MATCH (a:Account {id: $id})
        RETURN a {.*} AS account
        """
        return await self._single_account(query, {"id": account_id})

    async def get_by_email(self, email: str) -> AccountInDB | None:
        query = """
        MATCH (a:Account {email: $email})
        RETURN a {.*} AS account
        """
        return await self._single_account(query, {"email": normalize_email(email)})

    async def email_exists(self, email: str) -> bool:
        query = """
        MATCH (a:Account {email: $email})
        RETURN count(a) > 0 AS exists
        """
        result = await self.client.execute_single(query, {"email": normalize_email(email)})
        return bool(result and result.get("exists"))

    async def list_accounts(
        self,
        role: AccountRole | None = None,
        is_active: bool | None = None,
        is_verified: bool | None = None,
        search: str | None = None,
        skip: int = 0,
        limit: int = 50,
    ) -> tuple[list[AccountInDB], int]:
        conditions: list[str] = []
        params: dict[str, Any] = {"skip": skip, "limit": limit}

        if role is not None:
            conditions.append("a.role = $role")
            params["role"] = AccountRole(role).value
        if is_active is not None:
            conditions.append("a.is_active = $is_active")
            params["is_active"] = is_active
        if is_verified is not None:
            conditions.append("a.is_verified = $is_verified")
            params["is_verified"] = is_verified
        if search:
            conditions.append(
                "(a.email CONTAINS $search "
                "OR toLower(coalesce(a.first_name, '')) CONTAINS $search "
                "OR toLower(coalesce(a.last_name, '')) CONTAINS $search)"
            )
            params["search"] = search.lower()

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        count_result = await self.client.execute_single(
            f"MATCH (a:Account) {where} RETURN count(a) AS total", params
        )
        total = int(count_result["total"]) if count_result else 0

        records = await self.client.execute(
            f"""
            MATCH (a:Account)
            {where}
            RETURN a {{.*}} AS account
            ORDER BY a.created_at DESC
            SKIP $skip
            LIMIT $limit
            """,
            params,
        )
        accounts = [a for a in (self._to_model(r) for r in records) if a is not None]
        return accounts, total

    async def statistics(self, since: datetime) -> AccountStatistics:
        totals = await self.client.execute_single(
            """
            MATCH (a:Account)
            RETURN count(a) AS total,
                   sum(CASE WHEN a.is_active THEN 1 ELSE 0 END) AS active,
                   sum(CASE WHEN a.is_verified THEN 1 ELSE 0 END) AS verified,
                   sum(CASE WHEN a.created_at >= $since THEN 1 ELSE 0 END) AS recent
            """,
            {"since": since},
        ) or {}
        roles = await self.client.execute(
            "MATCH (a:Account) RETURN a.role AS role, count(a) AS count"
        )
        return AccountStatistics(
            total=totals.get("total") or 0,
            active=totals.get("active") or 0,
            verified=totals.get("verified") or 0,
            by_role={r["role"]: r["count"] for r in roles if r.get("role")},
            created_last_30_days=totals.get("recent") or 0,
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
        account_id = generate_id()
        now = utc_now()
        email = normalize_email(email)

        props: dict[str, Any] = (profile or AccountProfile()).model_dump(mode="json")
        props.update(
            {
                "id": account_id,
                "email": email,
                "password_hash": password_hash,
                "role": AccountRole(role).value,
                "is_active": True,
                "is_verified": False,
                "login_count": 0,
                "failed_attempts": 0,
                "password_version": 0,
                "refresh_generation": 0,
                "created_at": now,
                "updated_at": now,
            }
        )

        query = """
        CREATE (a:Account $props)
        RETURN a {.*} AS account
        """
        try:
            account = await self._conditional_account(query, {"props": props})
        except ConstraintError:
            raise DuplicateEmailError(email)

        if account is None:
            raise RuntimeError(f"Failed to create account: no record returned for {account_id}")

        self.logger.info("account_created", account_id=account_id)
        return account

    async def update_profile(self, account_id: str, changes: dict[str, Any]) -> AccountInDB | None:
        allowed = {k: v for k, v in changes.items() if k in PROFILE_FIELDS}
        query = """
        MATCH (a:Account {id: $id})
        SET a += $changes, a.updated_at = $now
        RETURN a {.*} AS account
        """
        return await self._single_account(
            query, {"id": account_id, "changes": allowed, "now": utc_now()}
        )

    async def _set_field(self, account_id: str, field: str, value: Any) -> AccountInDB | None:
        query = f"""
        MATCH (a:Account {{id: $id}})
        SET a.{field} = $value, a.updated_at = $now
        RETURN a {{.*}} AS account
        """
        return await self._single_account(
            query, {"id": account_id, "value": value, "now": utc_now()}
        )

    async def set_role(self, account_id: str, role: AccountRole) -> AccountInDB | None:
        return await self._set_field(account_id, "role", AccountRole(role).value)

    async def set_active(self, account_id: str, active: bool) -> AccountInDB | None:
        return await self._set_field(account_id, "is_active", active)

    async def set_verified(self, account_id: str, verified: bool = True) -> AccountInDB | None:
        return await self._set_field(account_id, "is_verified", verified)

    async def delete(self, account_id: str) -> bool:
        query = """
        MATCH (a:Account {id: $id})
        DETACH DELETE a
        RETURN count(a) AS deleted
        """
        result = await self.client.execute_single(query, {"id": account_id})
        deleted = result.get("deleted", 0) if result else 0
        if deleted:
            self.logger.info("account_deleted", account_id=account_id)
        return deleted > 0

    # =========================================================================
    # Lockout bookkeeping
    # =========================================================================

    async def record_failed_login(
        self,
        account_id: str,
        now: datetime,
        policy: LockoutPolicy,
    ) -> LockoutState | None:
        query = """
        MATCH (a:Account {id: $id})
        SET a._lock = true
        WITH a, (a.locked_until IS NOT NULL AND a.locked_until <= $now) AS lapsed
        WITH a, lapsed,
             CASE WHEN lapsed THEN 1 ELSE coalesce(a.failed_attempts, 0) + 1 END AS attempts
        SET a.failed_attempts = attempts,
            a.locked_until = CASE
                WHEN lapsed THEN null
                WHEN a.locked_until IS NULL AND attempts >= $max_attempts THEN $lock_until
                ELSE a.locked_until
            END,
            a.updated_at = $updated_at
        REMOVE a._lock
        RETURN a.failed_attempts AS failed_attempts, a.locked_until AS locked_until
        """
        result = await self.client.execute_conditional(
            query,
            {
                "id": account_id,
                "now": now,
                "max_attempts": policy.max_attempts,
                "lock_until": now + policy.lock_duration,
                "updated_at": utc_now(),
            },
        )
        if not result:
            return None

        locked_until = result.get("locked_until")
        if locked_until is not None and hasattr(locked_until, "to_native"):
            locked_until = locked_until.to_native()
        return LockoutState(
            failed_attempts=result["failed_attempts"],
            locked_until=locked_until,
        )

    async def record_successful_login(self, account_id: str, now: datetime) -> AccountInDB | None:
        query = """
        MATCH (a:Account {id: $id})
        SET a.failed_attempts = 0,
            a.locked_until = null,
            a.login_count = coalesce(a.login_count, 0) + 1,
            a.last_login_at = $now,
            a.updated_at = $updated_at
        RETURN a {.*} AS account
        """
        return await self._conditional_account(
            query, {"id": account_id, "now": now, "updated_at": utc_now()}
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
        query = """
        MATCH (a:Account {id: $id})
        SET a._lock = true
        WITH a,
             CASE
                 WHEN a.password_changed_at IS NOT NULL AND $changed_at <= a.password_changed_at
                 THEN a.password_changed_at + duration({microseconds: 1})
                 ELSE $changed_at
             END AS changed_at
        SET a.password_hash = $password_hash,
            a.password_changed_at = changed_at,
            a.password_version = coalesce(a.password_version, 0) + 1,
            a.refresh_generation = coalesce(a.refresh_generation, 0) + 1,
            a.updated_at = $updated_at
        REMOVE a._lock
        RETURN a {.*} AS account
        """
        account = await self._conditional_account(
            query,
            {
                "id": account_id,
                "password_hash": password_hash,
                "changed_at": changed_at,
                "updated_at": utc_now(),
            },
        )
        if account is not None:
            self.logger.info("password_hash_replaced", account_id=account_id)
        return account

    async def store_secret(
        self,
        account_id: str,
        purpose: SecretPurpose,
        digest: str,
        expires_at: datetime,
    ) -> bool:
        hash_field, expiry_field = _SECRET_SLOTS[SecretPurpose(purpose)]
        query = f"""
        MATCH (a:Account {{id: $id}})
        SET a.{hash_field} = $digest, a.{expiry_field} = $expires_at, a.updated_at = $now
        RETURN a.id AS id
        """
        result = await self.client.execute_single(
            query,
            {"id": account_id, "digest": digest, "expires_at": expires_at, "now": utc_now()},
        )
        return bool(result)

    async def clear_secret(self, account_id: str, purpose: SecretPurpose, digest: str) -> bool:
        hash_field, expiry_field = _SECRET_SLOTS[SecretPurpose(purpose)]
        query = f"""
        MATCH (a:Account {{id: $id}})
        WHERE a.{hash_field} = $digest
        SET a.{hash_field} = null, a.{expiry_field} = null, a.updated_at = $now
        RETURN a.id AS id
        """
        result = await self.client.execute_single(
            query, {"id": account_id, "digest": digest, "now": utc_now()}
        )
        return bool(result)

    async def consume_secret(
        self,
        purpose: SecretPurpose,
        digest: str,
        now: datetime,
    ) -> AccountInDB | None:
        hash_field, expiry_field = _SECRET_SLOTS[SecretPurpose(purpose)]
        # Re-check the digest after taking the lock: a concurrent consumer
        # that committed first has already nulled the slot.
        query = f"""
        MATCH (a:Account)
        WHERE a.{hash_field} = $digest AND a.{expiry_field} >= $now
        SET a._lock = true
        WITH a
        WHERE a.{hash_field} = $digest AND a.{expiry_field} >= $now
        SET a.{hash_field} = null, a.{expiry_field} = null, a.updated_at = $updated_at
        REMOVE a._lock
        RETURN a {{.*}} AS account
        """
        return await self._conditional_account(
            query, {"digest": digest, "now": now, "updated_at": utc_now()}
        )

    async def rotate_refresh_generation(self, account_id: str, expected: int) -> int | None:
        query = """
        MATCH (a:Account {id: $id})
        SET a._lock = true
        WITH a, coalesce(a.refresh_generation, 0) AS current
        SET a.refresh_generation = CASE WHEN current = $expected THEN current + 1 ELSE current END
        REMOVE a._lock
        RETURN current = $expected AS rotated, a.refresh_generation AS generation
        """
        result = await self.client.execute_conditional(
            query, {"id": account_id, "expected": expected}
        )
        if not result or not result.get("rotated"):
            return None
        return int(result["generation"])
