"""
Account Management Service Tests

- Self-service profile updates and deactivation
- Profile image upload against a recording image store
- Admin listing, role changes, activation, deletion, statistics
"""

import pytest

from warden.models.account import AccountProfileUpdate, AccountRole, full_name
from warden.security.auth_service import AccountNotFoundError
from warden.services.images import ImageStorageError, InvalidImageError

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


@pytest.fixture
async def account(store):
    return await store.create("alice@example.com", "hash")


class TestSelfService:

    @pytest.mark.asyncio
    async def test_update_profile(self, account_service, account):
        updated = await account_service.update_profile(
            account.id, AccountProfileUpdate(first_name="Alice", bio="Hello")
        )

        assert updated.first_name == "Alice"
        assert updated.bio == "Hello"
        assert full_name(updated) == "Alice"

    @pytest.mark.asyncio
    async def test_only_supplied_fields_change(self, account_service, account):
        await account_service.update_profile(
            account.id, AccountProfileUpdate(first_name="Alice", last_name="Smith")
        )
        updated = await account_service.update_profile(
            account.id, AccountProfileUpdate(last_name="Jones")
        )

        assert updated.first_name == "Alice"
        assert updated.last_name == "Jones"

    @pytest.mark.asyncio
    async def test_explicit_null_clears_optional_field(self, account_service, account):
        await account_service.update_profile(account.id, AccountProfileUpdate(bio="Hello"))

        update = AccountProfileUpdate.model_validate({"bio": None, "language": None})
        updated = await account_service.update_profile(account.id, update)

        assert updated.bio is None
        # Non-nullable fields keep their value
        assert updated.language == "en"

    @pytest.mark.asyncio
    async def test_empty_update_returns_current(self, account_service, account):
        updated = await account_service.update_profile(account.id, AccountProfileUpdate())
        assert updated.id == account.id

    @pytest.mark.asyncio
    async def test_update_missing_account(self, account_service):
        with pytest.raises(AccountNotFoundError):
            await account_service.update_profile("missing", AccountProfileUpdate(bio="x"))

    @pytest.mark.asyncio
    async def test_deactivate(self, account_service, account):
        updated = await account_service.deactivate(account.id)
        assert updated.is_active is False


class TestProfileImage:

    @pytest.mark.asyncio
    async def test_sets_permanent_url(self, account_service, account, image_store, store):
        updated = await account_service.update_profile_image(account.id, PNG_BYTES, "image/png")

        assert updated.profile_image in image_store.uploads
        assert image_store.uploads[updated.profile_image] == PNG_BYTES
        assert (await store.get_by_id(account.id)).profile_image == updated.profile_image

    @pytest.mark.asyncio
    async def test_replacing_removes_previous(self, account_service, account, image_store):
        first = await account_service.update_profile_image(account.id, PNG_BYTES, "image/png")
        second = await account_service.update_profile_image(account.id, b"jpeg", "image/jpeg")

        assert second.profile_image != first.profile_image
        assert image_store.deleted == [first.profile_image]
        assert list(image_store.uploads) == [second.profile_image]

    @pytest.mark.asyncio
    async def test_failed_removal_keeps_update(self, account_service, account, image_store, store):
        previous = "https://elsewhere.example.com/a.png"
        await store.update_profile(account.id, {"profile_image": previous})

        updated = await account_service.update_profile_image(account.id, PNG_BYTES, "image/png")

        assert updated.profile_image in image_store.uploads
        assert image_store.deleted == [previous]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "content,content_type",
        [
            (b"", "image/png"),
            (b"x" * 1025, "image/png"),
            (PNG_BYTES, "application/pdf"),
            (PNG_BYTES, None),
        ],
    )
    async def test_invalid_upload(
        self, account_service, account, image_store, content, content_type
    ):
        with pytest.raises(InvalidImageError):
            await account_service.update_profile_image(account.id, content, content_type)

        assert image_store.uploads == {}

    @pytest.mark.asyncio
    async def test_size_limit_is_inclusive(self, account_service, account):
        updated = await account_service.update_profile_image(account.id, b"x" * 1024, "image/png")
        assert updated.profile_image is not None

    @pytest.mark.asyncio
    async def test_store_failure(self, account_service, account, image_store, store):
        image_store.fail = True

        with pytest.raises(ImageStorageError):
            await account_service.update_profile_image(account.id, PNG_BYTES, "image/png")

        assert (await store.get_by_id(account.id)).profile_image is None

    @pytest.mark.asyncio
    async def test_missing_account(self, account_service, image_store):
        with pytest.raises(AccountNotFoundError):
            await account_service.update_profile_image("missing", PNG_BYTES, "image/png")

        assert image_store.uploads == {}


class TestAdministration:

    @pytest.mark.asyncio
    async def test_list_accounts_pagination(self, account_service, store):
        for i in range(5):
            await store.create(f"user{i}@example.com", "hash")

        page = await account_service.list_accounts(page=2, limit=2)

        assert page.total == 5
        assert page.total_pages == 3
        assert len(page.accounts) == 2
        assert page.has_next is True
        assert page.has_prev is True

    @pytest.mark.asyncio
    async def test_listed_accounts_are_public(self, account_service, account):
        page = await account_service.list_accounts()

        dumped = page.accounts[0].model_dump()
        assert "password_hash" not in dumped
        assert "failed_attempts" not in dumped

    @pytest.mark.asyncio
    async def test_list_empty(self, account_service):
        page = await account_service.list_accounts()

        assert page.total == 0
        assert page.total_pages == 0
        assert page.has_next is False

    @pytest.mark.asyncio
    async def test_set_role_and_activate(self, account_service, account):
        assert (await account_service.set_role(account.id, AccountRole.ADMIN)).role == "admin"
        await account_service.deactivate(account.id)
        assert (await account_service.activate(account.id)).is_active is True

    @pytest.mark.asyncio
    async def test_delete(self, account_service, account, store):
        await account_service.delete(account.id)

        assert await store.get_by_id(account.id) is None
        with pytest.raises(AccountNotFoundError):
            await account_service.delete(account.id)

    @pytest.mark.asyncio
    async def test_missing_account(self, account_service):
        with pytest.raises(AccountNotFoundError):
            await account_service.get_account("missing")
        with pytest.raises(AccountNotFoundError):
            await account_service.set_role("missing", AccountRole.ADMIN)

    @pytest.mark.asyncio
    async def test_statistics(self, account_service, account, store):
        await store.set_verified(account.id)

        stats = await account_service.statistics()

        assert stats.total == 1
        assert stats.verified == 1
        assert stats.by_role == {"user": 1}
        assert stats.created_last_30_days == 1
