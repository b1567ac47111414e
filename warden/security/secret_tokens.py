"""
Single-use Secret Tokens

Opaque tokens for out-of-band flows (password reset, email verification).
The plaintext goes to the user exactly once; only its SHA-256 digest and an
expiry are stored.
"""

import hashlib
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from warden.models.base import utc_now

# 32 random bytes, 256 bits of entropy
SECRET_TOKEN_BYTES = 32


@dataclass(frozen=True)
class IssuedSecret:
    """A freshly minted secret: hand out ``plaintext``, store the rest."""

    plaintext: str
    digest: str
    expires_at: datetime


def digest_secret(plaintext: str) -> str:
    """Deterministic one-way digest of a plaintext secret."""
    return hashlib.sha256(plaintext.encode("utf-8")).hexdigest()


def digest_matches(
    candidate_digest: str,
    stored_digest: str | None,
    expires_at: datetime | None,
    now: datetime,
) -> bool:
    """True iff the digests are equal and now is at or before the expiry."""
    if not stored_digest or expires_at is None:
        return False
    same = secrets.compare_digest(candidate_digest, stored_digest)
    return same and now <= expires_at


class SecretTokenFactory:
    """Issues and checks single-use secret tokens."""

    def __init__(
        self,
        token_bytes: int = SECRET_TOKEN_BYTES,
        clock: Callable[[], datetime] = utc_now,
    ):
        if token_bytes < SECRET_TOKEN_BYTES:
            raise ValueError("Secret tokens need at least 256 bits of entropy")
        self._token_bytes = token_bytes
        self._clock = clock

    def issue(self, ttl: timedelta, now: datetime | None = None) -> IssuedSecret:
        """Mint a new secret valid for ``ttl`` from ``now``."""
        issued_at = now or self._clock()
        plaintext = secrets.token_urlsafe(self._token_bytes)
        return IssuedSecret(
            plaintext=plaintext,
            digest=digest_secret(plaintext),
            expires_at=issued_at + ttl,
        )

    def digest(self, plaintext: str) -> str:
        return digest_secret(plaintext)

    def matches(
        self,
        candidate: str,
        stored_digest: str | None,
        expires_at: datetime | None,
        now: datetime | None = None,
    ) -> bool:
        """True iff digest(candidate) equals the stored digest and now <= expires_at."""
        return digest_matches(
            digest_secret(candidate),
            stored_digest,
            expires_at,
            now or self._clock(),
        )
