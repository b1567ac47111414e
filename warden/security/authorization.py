"""
Access Control for Warden

Maps a verified token identity and a required role to an authorization
decision. Roles are flat: ``admin`` does not satisfy a ``moderator``
requirement, and vice versa.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

import structlog

from warden.models.account import Account, AccountInDB, AccountRole
from warden.repositories.account_store import AccountStore
from warden.security.auth_service import AccountDisabledError
from warden.security.tokens import TokenError, TokenExpiredError, TokenIssuer, is_stale

logger = structlog.get_logger(__name__)


class AuthorizationError(Exception):
    """Base exception for authorization failures."""

    pass


class UnauthenticatedError(AuthorizationError):
    """No token, or the token does not identify a live account."""

    pass


class ForbiddenError(AuthorizationError):
    """Valid identity, insufficient role."""

    pass


class AccessDecision(str, Enum):
    ALLOW = "allow"
    DISABLED = "account_disabled"
    FORBIDDEN = "forbidden"


def normalize_role(role: Any) -> AccountRole:
    """Accept an AccountRole or its string value."""
    if isinstance(role, AccountRole):
        return role
    return AccountRole(str(role).lower())


def decide(account: Account, required_role: AccountRole | str | None = None) -> AccessDecision:
    """Allow iff the account is active and holds exactly the required role, if any."""
    if not account.is_active:
        return AccessDecision.DISABLED
    if required_role is not None and normalize_role(account.role) != normalize_role(required_role):
        return AccessDecision.FORBIDDEN
    return AccessDecision.ALLOW


@dataclass(frozen=True)
class AuthorizationContext:
    """The authenticated caller of one request."""

    account: AccountInDB

    @property
    def account_id(self) -> str:
        return self.account.id

    @property
    def role(self) -> AccountRole:
        return normalize_role(self.account.role)


class AccessControl:
    """
    Authenticates access tokens and applies role requirements.

    Verification order: signature and expiry, account existence,
    staleness against the last password change, active flag, role.
    """

    def __init__(self, store: AccountStore, issuer: TokenIssuer):
        self.store = store
        self.issuer = issuer

    async def authenticate(
        self,
        token: str | None,
        required_role: AccountRole | None = None,
    ) -> AuthorizationContext:
        """
        Resolve an access token to an authorized caller.

        Raises:
            UnauthenticatedError: Missing, invalid, expired or stale token, or unknown account
            AccountDisabledError: The account is inactive
            ForbiddenError: The account lacks the required role
        """
        if not token:
            raise UnauthenticatedError("Authentication required")

        try:
            payload = self.issuer.verify_access_token(token)
        except TokenExpiredError:
            raise UnauthenticatedError("Token has expired")
        except TokenError as e:
            logger.info("token_validation_failed", error_type=type(e).__name__)
            raise UnauthenticatedError("Invalid authentication token")

        account = await self.store.get_by_id(payload.sub)
        if account is None:
            raise UnauthenticatedError("Invalid authentication token")

        if is_stale(payload, account):
            logger.info("stale_token_rejected", account_id=account.id)
            raise UnauthenticatedError("Token was issued before the last password change")

        decision = decide(account, required_role)
        if decision is AccessDecision.DISABLED:
            raise AccountDisabledError("Account has been deactivated")
        if decision is AccessDecision.FORBIDDEN:
            logger.info(
                "access_forbidden",
                account_id=account.id,
                required_role=normalize_role(required_role).value,
            )
            raise ForbiddenError(f"Requires {normalize_role(required_role).value} role")

        return AuthorizationContext(account=account)
