"""
JWT Token Management for Warden

Mints and verifies signed access and refresh tokens.

- Access and refresh tokens are signed with separate secrets, so a leaked
  access-signing key cannot mint refresh tokens.
- ``iat`` is encoded with microsecond precision and every token carries
  the account's password version (``pwv``), so a password change makes
  all earlier tokens stale even within the same clock reading.
- Verification never consults the account store; callers combine it with
  ``is_stale`` and an existence/active check.
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import uuid4

import jwt as pyjwt
import structlog
from jwt.exceptions import DecodeError, ExpiredSignatureError, InvalidTokenError
from pydantic import ValidationError

from warden.config import ALLOWED_JWT_ALGORITHMS
from warden.models.account import AccountInDB, Token, TokenKind, TokenPayload
from warden.models.base import utc_now

logger = structlog.get_logger(__name__)

# A typical token here is well under 1KB
MAX_TOKEN_SIZE_BYTES = 8 * 1024

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
_ONE_MICROSECOND = timedelta(microseconds=1)


class TokenError(Exception):
    """Base exception for token-related errors."""

    pass


class TokenExpiredError(TokenError):
    """Token has expired."""

    pass


class TokenInvalidError(TokenError):
    """Token is invalid, malformed, of the wrong kind or signed with the wrong key."""

    pass


class TokenTooLargeError(TokenInvalidError):
    """Token exceeds maximum allowed size."""

    pass


def to_microseconds(moment: datetime) -> int:
    """Exact integer microseconds since the epoch."""
    return (moment - _EPOCH) // _ONE_MICROSECOND


def _encode_timestamp(moment: datetime) -> float:
    return to_microseconds(moment) / 1_000_000


def _decode_timestamp(value: float | int) -> datetime:
    return _EPOCH + timedelta(microseconds=round(float(value) * 1_000_000))


def validate_token_size(token: str) -> None:
    """
    Reject oversized tokens before any decoding work.

    Raises:
        TokenTooLargeError: If token exceeds maximum size
    """
    token_size = len(token.encode("utf-8"))
    if token_size > MAX_TOKEN_SIZE_BYTES:
        logger.warning("token_too_large", size=token_size, max_size=MAX_TOKEN_SIZE_BYTES)
        raise TokenTooLargeError(
            f"Token size ({token_size} bytes) exceeds maximum allowed ({MAX_TOKEN_SIZE_BYTES} bytes)"
        )


def is_stale(payload: TokenPayload, account: AccountInDB) -> bool:
    """True if the token predates the account's last password change."""
    if payload.pwv != account.password_version:
        return True
    if account.password_changed_at is None:
        return False
    return to_microseconds(payload.iat) < to_microseconds(account.password_changed_at)


class TokenIssuer:
    """
    Mints and verifies access/refresh tokens.

    Args:
        access_secret: Signing secret for access tokens
        refresh_secret: Signing secret for refresh tokens (must differ)
        algorithm: HMAC algorithm from ALLOWED_JWT_ALGORITHMS
        access_ttl: Access token lifetime
        refresh_ttl: Refresh token lifetime
        issuer: ``iss`` claim written and required on verification
        clock: Source of the current time when no issue time is given
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        algorithm: str = "HS256",
        access_ttl: timedelta = timedelta(days=7),
        refresh_ttl: timedelta = timedelta(days=30),
        issuer: str = "warden",
        clock: Callable[[], datetime] = utc_now,
    ):
        if algorithm not in ALLOWED_JWT_ALGORITHMS:
            raise ValueError(f"Disallowed algorithm: {algorithm}")
        if access_secret == refresh_secret:
            raise ValueError("Access and refresh tokens require separate signing secrets")
        self._secrets = {
            TokenKind.ACCESS: access_secret,
            TokenKind.REFRESH: refresh_secret,
        }
        self._ttls = {
            TokenKind.ACCESS: access_ttl,
            TokenKind.REFRESH: refresh_ttl,
        }
        self._algorithm = algorithm
        self._issuer = issuer
        self._clock = clock

    @classmethod
    def from_settings(cls, settings, clock: Callable[[], datetime] = utc_now) -> "TokenIssuer":
        return cls(
            access_secret=settings.jwt_access_secret_key,
            refresh_secret=settings.jwt_refresh_secret_key,
            algorithm=settings.jwt_algorithm,
            access_ttl=settings.access_token_ttl,
            refresh_ttl=settings.refresh_token_ttl,
            issuer=settings.jwt_issuer,
            clock=clock,
        )

    @property
    def access_ttl(self) -> timedelta:
        return self._ttls[TokenKind.ACCESS]

    @property
    def refresh_ttl(self) -> timedelta:
        return self._ttls[TokenKind.REFRESH]

    # =========================================================================
    # Minting
    # =========================================================================

    def _encode(
        self,
        kind: TokenKind,
        account_id: str,
        issued_at: datetime | None,
        extra_claims: dict[str, Any] | None = None,
    ) -> str:
        now = issued_at or self._clock()
        payload: dict[str, Any] = {
            "sub": account_id,
            "iat": _encode_timestamp(now),
            "exp": now + self._ttls[kind],
            "iss": self._issuer,
            "jti": str(uuid4()),
            "type": kind.value,
        }
        if extra_claims:
            payload.update(extra_claims)
        encoded: str = pyjwt.encode(payload, self._secrets[kind], algorithm=self._algorithm)
        return encoded

    def create_access_token(
        self,
        account_id: str,
        issued_at: datetime | None = None,
        password_version: int = 0,
    ) -> str:
        """Create a JWT access token."""
        return self._encode(TokenKind.ACCESS, account_id, issued_at, {"pwv": password_version})

    def create_refresh_token(
        self,
        account_id: str,
        generation: int,
        issued_at: datetime | None = None,
        password_version: int = 0,
    ) -> str:
        """Create a JWT refresh token bound to the account's refresh generation."""
        return self._encode(
            TokenKind.REFRESH,
            account_id,
            issued_at,
            {"gen": generation, "pwv": password_version},
        )

    def create_token_pair(
        self,
        account: AccountInDB,
        issued_at: datetime | None = None,
        generation: int | None = None,
    ) -> Token:
        """
        Create both access and refresh tokens for an account.

        Args:
            account: Account the tokens identify
            issued_at: Issue time (defaults to the issuer's clock)
            generation: Refresh generation to embed (defaults to the account's)
        """
        now = issued_at or self._clock()
        gen = account.refresh_generation if generation is None else generation
        return Token(
            access_token=self.create_access_token(
                account.id, issued_at=now, password_version=account.password_version
            ),
            refresh_token=self.create_refresh_token(
                account.id, gen, issued_at=now, password_version=account.password_version
            ),
            token_type="bearer",
            expires_in=int(self.access_ttl.total_seconds()),
        )

    # =========================================================================
    # Verification
    # =========================================================================

    def verify(self, token: str, expected_kind: TokenKind) -> TokenPayload:
        """
        Verify a token of the expected kind.

        Returns:
            TokenPayload with decoded claims

        Raises:
            TokenExpiredError: If token has expired
            TokenInvalidError: Bad signature, wrong key, malformed, wrong kind
        """
        validate_token_size(token)
        try:
            claims = pyjwt.decode(
                token,
                self._secrets[expected_kind],
                algorithms=[self._algorithm],
                issuer=self._issuer,
                options={"require": ["sub", "iat", "exp", "type", "pwv"]},
            )
        except ExpiredSignatureError:
            raise TokenExpiredError("Token has expired")
        except (InvalidTokenError, DecodeError) as e:
            raise TokenInvalidError(f"Invalid token: {e}")

        if claims.get("type") != expected_kind.value:
            raise TokenInvalidError(f"Expected {expected_kind.value} token")
        if expected_kind is TokenKind.REFRESH and not isinstance(claims.get("gen"), int):
            raise TokenInvalidError("Refresh token missing generation claim")
        if not isinstance(claims.get("pwv"), int):
            raise TokenInvalidError("Token missing password version claim")

        try:
            return TokenPayload(
                sub=claims["sub"],
                iat=_decode_timestamp(claims["iat"]),
                exp=datetime.fromtimestamp(claims["exp"], UTC),
                jti=claims.get("jti"),
                type=claims["type"],
                gen=claims.get("gen"),
                pwv=claims["pwv"],
            )
        except (ValidationError, TypeError, ValueError) as e:
            raise TokenInvalidError(f"Token payload validation failed: {e}")

    def verify_access_token(self, token: str) -> TokenPayload:
        return self.verify(token, TokenKind.ACCESS)

    def verify_refresh_token(self, token: str) -> TokenPayload:
        return self.verify(token, TokenKind.REFRESH)
