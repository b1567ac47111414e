"""
Warden Models

Pydantic models for accounts and tokens.
"""

from warden.models.account import (
    Account,
    AccountInDB,
    AccountProfile,
    AccountProfileUpdate,
    AccountRole,
    AccountStatistics,
    SecretPurpose,
    Token,
    TokenKind,
    TokenPayload,
    full_name,
    normalize_email,
    to_public_account,
)
from warden.models.base import TimestampMixin, WardenModel, generate_id, utc_now

__all__ = [
    "Account",
    "AccountInDB",
    "AccountProfile",
    "AccountProfileUpdate",
    "AccountRole",
    "AccountStatistics",
    "SecretPurpose",
    "TimestampMixin",
    "Token",
    "TokenKind",
    "TokenPayload",
    "WardenModel",
    "full_name",
    "generate_id",
    "normalize_email",
    "to_public_account",
    "utc_now",
]
