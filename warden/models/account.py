"""
Account Models

Account entity with credential, lockout and secret-token state, plus the
public projection that is safe to hand to external callers.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import Field, field_validator

from warden.models.base import TimestampMixin, WardenModel, convert_neo4j_datetime


class AccountRole(str, Enum):
    """Account roles for authorization. No implicit hierarchy."""

    USER = "user"
    MODERATOR = "moderator"
    ADMIN = "admin"


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"
    UNDISCLOSED = "prefer-not-to-say"


class Language(str, Enum):
    EN = "en"
    FR = "fr"
    ES = "es"
    DE = "de"


class SecretPurpose(str, Enum):
    """Single-slot secret token kinds stored on an account."""

    PASSWORD_RESET = "password_reset"
    EMAIL_VERIFICATION = "email_verification"


def normalize_email(email: str) -> str:
    """Emails are unique case-insensitively; store and look up lower-cased."""
    return email.strip().lower()


# ═══════════════════════════════════════════════════════════════
# PROFILE
# ═══════════════════════════════════════════════════════════════


class AccountProfile(WardenModel):
    """Profile payload owned by the account but opaque to the security core."""

    first_name: str | None = Field(default=None, min_length=2, max_length=50)
    last_name: str | None = Field(default=None, min_length=2, max_length=50)
    phone: str | None = Field(default=None, max_length=32, pattern=r"^\+?[0-9 ()\-]{6,32}$")
    bio: str | None = Field(default=None, max_length=500)
    gender: Gender | None = None
    date_of_birth: date | None = None
    profile_image: str | None = Field(default=None, max_length=500)
    language: Language = Language.EN
    timezone: str = Field(default="UTC", max_length=64)
    email_notifications: bool = True
    push_notifications: bool = True

    @field_validator("profile_image")
    @classmethod
    def validate_profile_image(cls, v: str | None) -> str | None:
        if v is None:
            return v
        if not v.lower().startswith(("http://", "https://")):
            raise ValueError("Profile image URL must use http or https scheme")
        return v


PROFILE_FIELDS = tuple(AccountProfile.model_fields)

_NON_NULLABLE_PROFILE_FIELDS = frozenset(
    {"language", "timezone", "email_notifications", "push_notifications"}
)


class AccountProfileUpdate(WardenModel):
    """Partial profile update. Only fields explicitly set are applied."""

    first_name: str | None = Field(default=None, min_length=2, max_length=50)
    last_name: str | None = Field(default=None, min_length=2, max_length=50)
    phone: str | None = Field(default=None, max_length=32, pattern=r"^\+?[0-9 ()\-]{6,32}$")
    bio: str | None = Field(default=None, max_length=500)
    gender: Gender | None = None
    date_of_birth: date | None = None
    language: Language | None = None
    timezone: str | None = Field(default=None, max_length=64)
    email_notifications: bool | None = None
    push_notifications: bool | None = None

    def changes(self) -> dict[str, Any]:
        """Fields the caller actually supplied, JSON-compatible."""
        data = self.model_dump(mode="json", exclude_unset=True)
        # Explicit null clears optional fields but cannot clear these
        return {k: v for k, v in data.items() if v is not None or k not in _NON_NULLABLE_PROFILE_FIELDS}


# ═══════════════════════════════════════════════════════════════
# ACCOUNT
# ═══════════════════════════════════════════════════════════════


class Account(AccountProfile, TimestampMixin):
    """Public account snapshot. Never carries credential or lockout state."""

    id: str = Field(description="Immutable identifier")
    email: str = Field(description="Lower-cased email address")
    role: AccountRole = AccountRole.USER
    is_active: bool = True
    is_verified: bool = False
    login_count: int = Field(default=0, ge=0)
    last_login_at: datetime | None = None

    @field_validator("last_login_at", mode="before")
    @classmethod
    def convert_last_login(cls, v: Any) -> datetime | None:
        return convert_neo4j_datetime(v)


class AccountInDB(Account):
    """Account with credential, lockout and secret-token state."""

    password_hash: str
    failed_attempts: int = Field(default=0, ge=0)
    locked_until: datetime | None = None
    password_changed_at: datetime | None = None
    password_version: int = Field(default=0, ge=0)
    refresh_generation: int = Field(default=0, ge=0)
    reset_token_hash: str | None = None
    reset_expires_at: datetime | None = None
    verify_token_hash: str | None = None
    verify_expires_at: datetime | None = None

    @field_validator(
        "locked_until",
        "password_changed_at",
        "reset_expires_at",
        "verify_expires_at",
        mode="before",
    )
    @classmethod
    def convert_timestamps(cls, v: Any) -> datetime | None:
        return convert_neo4j_datetime(v)


# Stripped at the serialization boundary, unconditionally.
SENSITIVE_ACCOUNT_FIELDS = frozenset(AccountInDB.model_fields) - frozenset(Account.model_fields)


def to_public_account(account: Account) -> Account:
    """Project any account record onto the public model."""
    return Account.model_validate(account.model_dump(exclude=SENSITIVE_ACCOUNT_FIELDS))


def full_name(account: AccountProfile) -> str | None:
    """Display name derived from the profile, if any part is set."""
    parts = [p for p in (account.first_name, account.last_name) if p]
    return " ".join(parts) if parts else None


class AccountStatistics(WardenModel):
    """Aggregate account counts for administrators."""

    total: int
    active: int
    verified: int
    by_role: dict[str, int]
    created_last_30_days: int


# ═══════════════════════════════════════════════════════════════
# TOKENS
# ═══════════════════════════════════════════════════════════════


class TokenKind(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


class Token(WardenModel):
    """Access/refresh token pair."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int = Field(description="Access token expiry in seconds")


class TokenPayload(WardenModel):
    """Verified JWT claims."""

    sub: str = Field(description="Subject (account ID)")
    iat: datetime = Field(description="Issued at, microsecond precision")
    exp: datetime | None = None
    jti: str | None = None
    type: TokenKind
    gen: int | None = Field(default=None, description="Refresh generation (refresh tokens)")
    pwv: int = Field(default=0, ge=0, description="Password version at issue time")
