"""
Warden - User Routes

Self-service profile endpoints for any authenticated account, and
administration endpoints restricted to the admin role.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, File, Query, Response, UploadFile, status
from pydantic import BaseModel

from warden.api.dependencies import (
    AccountServiceDep,
    CurrentAccount,
    RequireAdmin,
    SettingsDep,
)
from warden.api.routes.auth import AccountResponse
from warden.models.account import (
    AccountProfileUpdate,
    AccountRole,
    AccountStatistics,
    to_public_account,
)
from warden.services.accounts import AccountPage

router = APIRouter()


class RoleUpdateRequest(BaseModel):
    role: AccountRole


class AccountListResponse(BaseModel):
    status: str = "success"
    results: int
    page: AccountPage


class StatisticsResponse(BaseModel):
    status: str = "success"
    statistics: AccountStatistics


# =============================================================================
# Self-service
# =============================================================================

@router.patch("/profile", response_model=AccountResponse)
async def update_profile(
    payload: AccountProfileUpdate,
    auth: CurrentAccount,
    account_service: AccountServiceDep,
) -> AccountResponse:
    """Update the caller's own profile fields."""
    account = await account_service.update_profile(auth.account_id, payload)
    return AccountResponse(account=to_public_account(account))


@router.patch("/profile/image", response_model=AccountResponse)
async def update_profile_image(
    image: Annotated[UploadFile, File(description="Profile image")],
    auth: CurrentAccount,
    account_service: AccountServiceDep,
    settings: SettingsDep,
) -> AccountResponse:
    """Replace the caller's profile image (multipart field ``image``)."""
    # One byte past the limit is enough to reject an oversized upload
    content = await image.read(settings.image_max_bytes + 1)
    account = await account_service.update_profile_image(
        auth.account_id, content, image.content_type
    )
    return AccountResponse(account=to_public_account(account))


@router.patch("/deactivate", response_model=AccountResponse)
async def deactivate(auth: CurrentAccount, account_service: AccountServiceDep) -> AccountResponse:
    """Soft-disable the caller's own account."""
    account = await account_service.deactivate(auth.account_id)
    return AccountResponse(account=to_public_account(account))


# =============================================================================
# Administration
# =============================================================================

@router.get("/", response_model=AccountListResponse)
async def list_accounts(
    auth: RequireAdmin,
    account_service: AccountServiceDep,
    page: int = Query(default=1, ge=1),
    limit: int | None = Query(default=None, ge=1, le=100),
    role: AccountRole | None = None,
    is_active: bool | None = None,
    is_verified: bool | None = None,
    search: str | None = Query(default=None, max_length=100),
) -> AccountListResponse:
    result = await account_service.list_accounts(
        page=page,
        limit=limit,
        role=role,
        is_active=is_active,
        is_verified=is_verified,
        search=search,
    )
    return AccountListResponse(results=len(result.accounts), page=result)


@router.get("/statistics", response_model=StatisticsResponse)
async def statistics(auth: RequireAdmin, account_service: AccountServiceDep) -> StatisticsResponse:
    return StatisticsResponse(statistics=await account_service.statistics())


@router.get("/{account_id}", response_model=AccountResponse)
async def get_account(
    account_id: str,
    auth: RequireAdmin,
    account_service: AccountServiceDep,
) -> AccountResponse:
    account = await account_service.get_account(account_id)
    return AccountResponse(account=to_public_account(account))


@router.patch("/{account_id}/role", response_model=AccountResponse)
async def set_role(
    account_id: str,
    payload: RoleUpdateRequest,
    auth: RequireAdmin,
    account_service: AccountServiceDep,
) -> AccountResponse:
    account = await account_service.set_role(account_id, payload.role)
    return AccountResponse(account=to_public_account(account))


@router.patch("/{account_id}/activate", response_model=AccountResponse)
async def activate(
    account_id: str,
    auth: RequireAdmin,
    account_service: AccountServiceDep,
) -> AccountResponse:
    account = await account_service.activate(account_id)
    return AccountResponse(account=to_public_account(account))


@router.delete("/{account_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_account(
    account_id: str,
    auth: RequireAdmin,
    account_service: AccountServiceDep,
) -> Response:
    """Hard delete."""
    await account_service.delete(account_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
