"""
Access Control Tests for Warden

- Role decisions (flat roles, no hierarchy)
- Token authentication against the account store
"""

from datetime import timedelta

import pytest

from warden.models.account import AccountInDB, AccountRole
from warden.security.auth_service import AccountDisabledError
from warden.security.authorization import (
    AccessControl,
    AccessDecision,
    AuthorizationContext,
    ForbiddenError,
    UnauthenticatedError,
    decide,
    normalize_role,
)
from warden.security.tokens import TokenIssuer


def _account(role=AccountRole.USER, active=True) -> AccountInDB:
    return AccountInDB(
        id="acct-1",
        email="a@x.com",
        password_hash="hash",
        role=role,
        is_active=active,
    )


# =============================================================================
# Decisions
# =============================================================================


class TestDecide:

    def test_allow_without_requirement(self):
        assert decide(_account()) is AccessDecision.ALLOW

    def test_exact_role_allowed(self):
        assert decide(_account(AccountRole.ADMIN), AccountRole.ADMIN) is AccessDecision.ALLOW

    @pytest.mark.parametrize(
        "role,required",
        [
            (AccountRole.USER, AccountRole.ADMIN),
            (AccountRole.ADMIN, AccountRole.MODERATOR),
            (AccountRole.MODERATOR, AccountRole.ADMIN),
        ],
    )
    def test_roles_are_flat(self, role, required):
        assert decide(_account(role), required) is AccessDecision.FORBIDDEN

    def test_inactive_checked_before_role(self):
        account = _account(AccountRole.USER, active=False)
        assert decide(account, AccountRole.ADMIN) is AccessDecision.DISABLED

    def test_normalize_role(self):
        assert normalize_role("ADMIN") is AccountRole.ADMIN
        assert normalize_role(AccountRole.USER) is AccountRole.USER
        with pytest.raises(ValueError):
            normalize_role("root")


class TestAuthorizationContext:

    def test_properties(self):
        context = AuthorizationContext(account=_account(AccountRole.ADMIN))

        assert context.account_id == "acct-1"
        assert context.role is AccountRole.ADMIN


# =============================================================================
# Authentication
# =============================================================================


class TestAccessControl:

    @pytest.fixture
    def access_control(self, store, issuer):
        return AccessControl(store, issuer)

    @pytest.fixture
    async def account(self, store):
        return await store.create("a@x.com", "hash")

    @pytest.mark.asyncio
    async def test_valid_token(self, access_control, issuer, account):
        token = issuer.create_access_token(account.id)

        context = await access_control.authenticate(token)

        assert context.account_id == account.id
        assert context.role is AccountRole.USER

    @pytest.mark.asyncio
    @pytest.mark.parametrize("token", [None, "", "garbage"])
    async def test_missing_or_invalid_token(self, access_control, token):
        with pytest.raises(UnauthenticatedError):
            await access_control.authenticate(token)

    @pytest.mark.asyncio
    async def test_refresh_token_not_accepted(self, access_control, issuer, account):
        token = issuer.create_refresh_token(account.id, generation=0)
        with pytest.raises(UnauthenticatedError):
            await access_control.authenticate(token)

    @pytest.mark.asyncio
    async def test_expired_token(self, store, settings, account):
        issuer = TokenIssuer.from_settings(settings)
        token = issuer.create_access_token(
            account.id, issued_at=issuer._clock() - timedelta(days=8)
        )
        with pytest.raises(UnauthenticatedError, match="expired"):
            await AccessControl(store, issuer).authenticate(token)

    @pytest.mark.asyncio
    async def test_unknown_account(self, access_control, issuer):
        with pytest.raises(UnauthenticatedError):
            await access_control.authenticate(issuer.create_access_token("ghost"))

    @pytest.mark.asyncio
    async def test_stale_token(self, access_control, issuer, store, account, clock):
        token = issuer.create_access_token(account.id)
        clock.advance(seconds=1)
        await store.set_password(account.id, "new-hash", clock())

        with pytest.raises(UnauthenticatedError):
            await access_control.authenticate(token)

    @pytest.mark.asyncio
    async def test_token_from_change_instant_is_stale(
        self, access_control, issuer, store, account, clock
    ):
        token = issuer.create_access_token(account.id, issued_at=clock())
        changed = await store.set_password(account.id, "new-hash", clock())

        with pytest.raises(UnauthenticatedError):
            await access_control.authenticate(token)

        fresh = issuer.create_access_token(
            account.id, issued_at=clock(), password_version=changed.password_version
        )
        assert (await access_control.authenticate(fresh)).account_id == account.id

    @pytest.mark.asyncio
    async def test_inactive_account(self, access_control, issuer, store, account):
        await store.set_active(account.id, False)
        with pytest.raises(AccountDisabledError):
            await access_control.authenticate(issuer.create_access_token(account.id))

    @pytest.mark.asyncio
    async def test_role_requirement(self, access_control, issuer, store, account):
        token = issuer.create_access_token(account.id)

        with pytest.raises(ForbiddenError):
            await access_control.authenticate(token, required_role=AccountRole.ADMIN)

        await store.set_role(account.id, AccountRole.ADMIN)
        context = await access_control.authenticate(token, required_role=AccountRole.ADMIN)
        assert context.role is AccountRole.ADMIN
