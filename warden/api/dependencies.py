"""
Warden - FastAPI Dependencies

Dependency injection for API routes:
- Settings and the application container
- Service instances
- Bearer token extraction and authenticated callers
- Role requirements
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from warden.config import Settings
from warden.models.account import AccountRole
from warden.security.auth_service import AuthService
from warden.security.authorization import AccessControl, AuthorizationContext
from warden.services.accounts import AccountService

if TYPE_CHECKING:
    from warden.api.app import WardenApp

# Security scheme
security = HTTPBearer(auto_error=False)


# =============================================================================
# Container
# =============================================================================

def get_warden_app(request: Request) -> WardenApp:
    """Get the initialized WardenApp from application state."""
    warden = getattr(request.app.state, "warden", None)
    if warden is None or not warden.is_ready:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Warden application not initialized",
        )
    return warden


def get_app_settings(request: Request) -> Settings:
    return get_warden_app(request).settings


SettingsDep = Annotated[Settings, Depends(get_app_settings)]


# =============================================================================
# Services
# =============================================================================

def get_auth_service(request: Request) -> AuthService:
    return get_warden_app(request).auth_service


def get_account_service(request: Request) -> AccountService:
    return get_warden_app(request).account_service


def get_access_control(request: Request) -> AccessControl:
    return get_warden_app(request).access_control


AuthServiceDep = Annotated[AuthService, Depends(get_auth_service)]
AccountServiceDep = Annotated[AccountService, Depends(get_account_service)]
AccessControlDep = Annotated[AccessControl, Depends(get_access_control)]


# =============================================================================
# Authentication
# =============================================================================

async def get_token(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> str | None:
    """Extract bearer token from request."""
    if credentials is None:
        return None
    return credentials.credentials


async def get_auth_context(
    token: Annotated[str | None, Depends(get_token)],
    access_control: AccessControlDep,
) -> AuthorizationContext:
    """Authenticated caller, any role. Domain errors map to 401/403."""
    return await access_control.authenticate(token)


CurrentAccount = Annotated[AuthorizationContext, Depends(get_auth_context)]


def require_role_dep(required_role: AccountRole):
    """
    Create a dependency that requires exactly ``required_role``.

    Usage:
        @router.delete("/{account_id}")
        async def delete_account(auth: RequireAdmin, ...):
            ...
    """

    async def dependency(
        token: Annotated[str | None, Depends(get_token)],
        access_control: AccessControlDep,
    ) -> AuthorizationContext:
        return await access_control.authenticate(token, required_role=required_role)

    return dependency


RequireAdmin = Annotated[AuthorizationContext, Depends(require_role_dep(AccountRole.ADMIN))]
RequireModerator = Annotated[
    AuthorizationContext, Depends(require_role_dep(AccountRole.MODERATOR))
]

