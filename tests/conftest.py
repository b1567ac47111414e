"""
Warden - Test Fixtures

Shared pytest fixtures for all test modules.
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

# =============================================================================
# TEST ENVIRONMENT SETUP
# =============================================================================
# TEST-ONLY credentials. Set before anything imports warden.config.

if os.environ.get("APP_ENV", "") == "production":
    raise RuntimeError("Test fixtures cannot be loaded in a production environment")

os.environ["APP_ENV"] = "testing"
os.environ.setdefault(
    "JWT_ACCESS_SECRET_KEY", "test-access-secret-at-least-32-characters-long-0123"
)
os.environ.setdefault(
    "JWT_REFRESH_SECRET_KEY", "test-refresh-secret-at-least-32-characters-long-4567"
)
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("EMAIL_BACKEND", "log")
os.environ.setdefault("PASSWORD_BCRYPT_ROUNDS", "4")

from warden.api.app import WardenApp, create_app  # noqa: E402
from warden.config import Settings  # noqa: E402
from warden.models.base import utc_now  # noqa: E402
from warden.repositories.memory_store import InMemoryAccountStore  # noqa: E402
from warden.security.auth_service import AuthService  # noqa: E402
from warden.security.lockout import LockoutPolicy  # noqa: E402
from warden.security.password import CredentialHasher  # noqa: E402
from warden.security.secret_tokens import SecretTokenFactory  # noqa: E402
from warden.security.tokens import TokenIssuer  # noqa: E402
from warden.services.accounts import AccountService  # noqa: E402
from warden.services.email import EmailSender  # noqa: E402
from warden.services.images import ImageStore  # noqa: E402

STRONG_PASSWORD = "Sup3rSecret!"
OTHER_PASSWORD = "An0therSecret!"


# =============================================================================
# Time, Email and Image Doubles
# =============================================================================


class FakeClock:
    """
    Manually advanced clock.

    Starts a few days in the past: issued JWTs carry this time as ``iat``
    and PyJWT rejects tokens issued in the future, so there must be room
    to advance.
    """

    def __init__(self, start: datetime | None = None):
        self.now = start or (utc_now() - timedelta(days=3))

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingEmailSender(EmailSender):
    """Keeps every message; ``fail`` makes delivery report failure."""

    def __init__(self) -> None:
        self.sent: list[dict[str, str]] = []
        self.fail = False

    async def send(self, recipient: str, subject: str, body: str) -> bool:
        if self.fail:
            return False
        self.sent.append({"recipient": recipient, "subject": subject, "body": body})
        return True

    @property
    def last(self) -> dict[str, str]:
        return self.sent[-1]

    def last_token(self) -> str:
        """The secret token embedded in the last message's link."""
        for line in self.last["body"].splitlines():
            if "/verify-email/" in line or "/reset-password/" in line:
                return line.rstrip("/").rsplit("/", 1)[-1]
        raise AssertionError("No token link in the last message")


class RecordingImageStore(ImageStore):
    """Keeps every upload in memory; ``fail`` makes uploads report failure."""

    def __init__(self) -> None:
        self.uploads: dict[str, bytes] = {}
        self.deleted: list[str] = []
        self.fail = False
        self._count = 0

    async def store(self, account_id: str, content: bytes, content_type: str) -> str | None:
        if self.fail:
            return None
        self._count += 1
        url = f"https://images.example.com/{account_id}/{self._count}.png"
        self.uploads[url] = content
        return url

    async def delete(self, url: str) -> bool:
        self.deleted.append(url)
        return self.uploads.pop(url, None) is not None


# =============================================================================
# Core Fixtures
# =============================================================================


@pytest.fixture
def settings() -> Settings:
    return Settings(
        app_env="testing",
        store_backend="memory",
        email_backend="log",
        password_bcrypt_rounds=4,
        cors_origins="http://localhost:3000",
        image_max_bytes=1024,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryAccountStore:
    return InMemoryAccountStore()


@pytest.fixture
def email_sender() -> RecordingEmailSender:
    return RecordingEmailSender()


@pytest.fixture
def image_store() -> RecordingImageStore:
    return RecordingImageStore()


@pytest.fixture
def hasher() -> CredentialHasher:
    return CredentialHasher(rounds=4)


@pytest.fixture
def issuer(settings, clock) -> TokenIssuer:
    return TokenIssuer.from_settings(settings, clock=clock)


@pytest.fixture
def lockout() -> LockoutPolicy:
    return LockoutPolicy(max_attempts=5, lock_duration=timedelta(minutes=15))


@pytest.fixture
def auth_service(store, hasher, issuer, lockout, email_sender, clock) -> AuthService:
    return AuthService(
        store=store,
        hasher=hasher,
        issuer=issuer,
        secrets=SecretTokenFactory(clock=clock),
        lockout=lockout,
        email_sender=email_sender,
        frontend_url="https://app.example.com",
        reset_ttl=timedelta(minutes=10),
        verify_ttl=timedelta(hours=24),
        clock=clock,
    )


@pytest.fixture
def account_service(store, clock, image_store) -> AccountService:
    return AccountService(
        store,
        default_page_size=50,
        clock=clock,
        image_store=image_store,
        max_image_bytes=1024,
    )


# =============================================================================
# API Fixtures
# =============================================================================


@pytest.fixture
def warden_app(settings, store, email_sender, image_store, clock) -> WardenApp:
    return WardenApp(
        settings,
        store=store,
        email_sender=email_sender,
        image_store=image_store,
        clock=clock,
    )


@pytest.fixture
def app(warden_app):
    return create_app(warden_app=warden_app)


@pytest.fixture
def client(app) -> Iterator[TestClient]:
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def register_account(client):
    """Register through the API and return the response body."""

    def _register(email: str = "alice@example.com", password: str = STRONG_PASSWORD, **profile):
        response = client.post(
            "/api/v1/auth/register",
            json={"email": email, "password": password, **profile},
        )
        assert response.status_code == 201, response.text
        return response.json()

    return _register


def auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
