"""
Account Management Service

Self-service profile operations and administrator account management.
Nothing here touches credential, lockout or secret-token state; those
belong to AuthService.
"""

import math
from collections.abc import Callable
from datetime import datetime, timedelta

import structlog

from warden.models.account import (
    Account,
    AccountInDB,
    AccountProfileUpdate,
    AccountRole,
    AccountStatistics,
    to_public_account,
)
from warden.models.base import WardenModel, utc_now
from warden.repositories.account_store import AccountStore
from warden.security.auth_service import AccountNotFoundError
from warden.services.images import (
    ImageStorageError,
    ImageStore,
    InvalidImageError,
    LoggingImageStore,
)

logger = structlog.get_logger(__name__)

RECENT_SIGNUP_WINDOW = timedelta(days=30)
DEFAULT_MAX_IMAGE_BYTES = 10 * 1024 * 1024


class AccountPage(WardenModel):
    """One page of accounts with pagination metadata."""

    accounts: list[Account]
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool


class AccountService:
    """Profile and administrative operations on accounts."""

    def __init__(
        self,
        store: AccountStore,
        default_page_size: int = 50,
        clock: Callable[[], datetime] = utc_now,
        image_store: ImageStore | None = None,
        max_image_bytes: int = DEFAULT_MAX_IMAGE_BYTES,
    ):
        self.store = store
        self.default_page_size = default_page_size
        self.image_store = image_store or LoggingImageStore()
        self.max_image_bytes = max_image_bytes
        self._clock = clock

    async def _require(self, account: AccountInDB | None) -> AccountInDB:
        if account is None:
            raise AccountNotFoundError("Account not found")
        return account

    # =========================================================================
    # Self-service
    # =========================================================================

    async def update_profile(self, account_id: str, update: AccountProfileUpdate) -> AccountInDB:
        changes = update.changes()
        if not changes:
            return await self._require(await self.store.get_by_id(account_id))

        account = await self._require(await self.store.update_profile(account_id, changes))
        logger.info("profile_updated", account_id=account_id, fields=sorted(changes))
        return account

    async def update_profile_image(
        self,
        account_id: str,
        content: bytes,
        content_type: str | None,
    ) -> AccountInDB:
        """
        Store a new profile image and point the profile at its URL.

        The previous image, if any, is removed from the store afterwards;
        a failed removal is logged and does not fail the update.

        Raises:
            InvalidImageError: Empty upload, over the size limit, or not an image
            ImageStorageError: The image store rejected the upload
            AccountNotFoundError: No such account
        """
        if not content:
            raise InvalidImageError("Please upload an image")
        if len(content) > self.max_image_bytes:
            limit_mb = self.max_image_bytes / (1024 * 1024)
            raise InvalidImageError(f"Image must be smaller than {limit_mb:g}MB")
        if not content_type or not content_type.lower().startswith("image/"):
            raise InvalidImageError("Please upload an image file")

        account = await self._require(await self.store.get_by_id(account_id))
        previous = account.profile_image

        url = await self.image_store.store(account_id, content, content_type.lower())
        if url is None:
            raise ImageStorageError("Image upload failed, please try again later")

        updated = await self._require(
            await self.store.update_profile(account_id, {"profile_image": url})
        )
        logger.info("profile_image_updated", account_id=account_id, size_bytes=len(content))

        if previous and previous != url:
            if not await self.image_store.delete(previous):
                logger.warning("previous_profile_image_not_removed", account_id=account_id)
        return updated

    async def deactivate(self, account_id: str) -> AccountInDB:
        account = await self._require(await self.store.set_active(account_id, False))
        logger.info("account_deactivated", account_id=account_id)
        return account

    # =========================================================================
    # Administration
    # =========================================================================

    async def list_accounts(
        self,
        page: int = 1,
        limit: int | None = None,
        role: AccountRole | None = None,
        is_active: bool | None = None,
        is_verified: bool | None = None,
        search: str | None = None,
    ) -> AccountPage:
        """Newest first, filtered, one page at a time (pages start at 1)."""
        page = max(page, 1)
        limit = limit or self.default_page_size
        accounts, total = await self.store.list_accounts(
            role=role,
            is_active=is_active,
            is_verified=is_verified,
            search=search,
            skip=(page - 1) * limit,
            limit=limit,
        )
        total_pages = math.ceil(total / limit) if total else 0
        return AccountPage(
            accounts=[to_public_account(a) for a in accounts],
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_prev=page > 1,
        )

    async def get_account(self, account_id: str) -> AccountInDB:
        return await self._require(await self.store.get_by_id(account_id))

    async def set_role(self, account_id: str, role: AccountRole) -> AccountInDB:
        account = await self._require(await self.store.set_role(account_id, role))
        logger.info("account_role_changed", account_id=account_id, role=AccountRole(role).value)
        return account

    async def activate(self, account_id: str) -> AccountInDB:
        account = await self._require(await self.store.set_active(account_id, True))
        logger.info("account_activated", account_id=account_id)
        return account

    async def delete(self, account_id: str) -> None:
        if not await self.store.delete(account_id):
            raise AccountNotFoundError("Account not found")
        logger.info("account_hard_deleted", account_id=account_id)

    async def statistics(self) -> AccountStatistics:
        return await self.store.statistics(since=self._clock() - RECENT_SIGNUP_WINDOW)
