"""
Password Hashing for Warden

Secure password hashing using bcrypt with configurable rounds.
Includes:
- Secure password hashing
- Timing-safe password verification that never raises on a malformed hash
- Password strength validation
- Async wrappers that keep bcrypt off the event loop
"""

import asyncio
import hmac
import unicodedata

import bcrypt
import structlog

logger = structlog.get_logger(__name__)

DEFAULT_BCRYPT_ROUNDS = 12

PASSWORD_MIN_LENGTH = 8
# bcrypt silently truncates anything past 72 bytes
PASSWORD_MAX_BYTES = 72

COMMON_WEAK_PASSWORDS = frozenset({
    "password", "password1", "password123", "passw0rd", "p@ssw0rd",
    "12345678", "123456789", "1234567890", "qwerty123", "qwertyuiop",
    "letmein1", "welcome1", "admin123", "iloveyou1", "sunshine1",
    "abc12345", "abcd1234", "changeme1", "trustno1", "football1",
})


class PasswordValidationError(ValueError):
    """Password does not meet strength requirements."""


def _normalize(password: str) -> bytes:
    # NFKC so visually identical input hashes identically
    return unicodedata.normalize("NFKC", password).encode("utf-8")


def validate_password_strength(password: str, email: str | None = None) -> None:
    """
    Validate password strength.

    Requires at least 8 characters, at most 72 bytes after NFKC
    normalization, and at least one upper case letter, one lower case
    letter and one digit.

    Raises:
        PasswordValidationError: If password doesn't meet requirements
    """
    if len(password) < PASSWORD_MIN_LENGTH:
        raise PasswordValidationError(
            f"Password must be at least {PASSWORD_MIN_LENGTH} characters"
        )
    if len(_normalize(password)) > PASSWORD_MAX_BYTES:
        raise PasswordValidationError(
            f"Password must be at most {PASSWORD_MAX_BYTES} bytes"
        )
    if not any(c.isupper() for c in password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")
    if not any(c.islower() for c in password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")
    if not any(c.isdigit() for c in password):
        raise PasswordValidationError("Password must contain at least one digit")
    if password.lower() in COMMON_WEAK_PASSWORDS:
        raise PasswordValidationError("Password is too common")
    if email:
        local_part = email.split("@", 1)[0].lower()
        if len(local_part) >= 4 and local_part in password.lower():
            raise PasswordValidationError("Password must not contain your email address")


def hash_password(password: str, rounds: int = DEFAULT_BCRYPT_ROUNDS) -> str:
    """
    Hash a password using bcrypt.

    Args:
        password: Plain text password
        rounds: bcrypt cost factor

    Returns:
        Bcrypt hash of the password

    Raises:
        PasswordValidationError: If the normalized password exceeds 72 bytes
    """
    normalized = _normalize(password)
    if len(normalized) > PASSWORD_MAX_BYTES:
        raise PasswordValidationError(
            f"Password must be at most {PASSWORD_MAX_BYTES} bytes"
        )
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(normalized, salt).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str | None) -> bool:
    """
    Verify a password against its hash using timing-safe comparison.

    Returns False, never raises, for empty input or a malformed hash.
    """
    if not plain_password or not hashed_password:
        hmac.compare_digest("dummy", "dummy")
        return False

    try:
        return bcrypt.checkpw(_normalize(plain_password), hashed_password.encode("utf-8"))
    except (ValueError, TypeError):
        hmac.compare_digest("dummy", "dummy")
        return False


class CredentialHasher:
    """
    One-way password hashing with a fixed work factor.

    The async variants run bcrypt in the default thread pool so concurrent
    logins stay serviceable.
    """

    def __init__(self, rounds: int = DEFAULT_BCRYPT_ROUNDS):
        self.rounds = rounds

    def hash(self, password: str) -> str:
        return hash_password(password, rounds=self.rounds)

    def verify(self, password: str, hashed_password: str | None) -> bool:
        return verify_password(password, hashed_password)

    async def hash_async(self, password: str) -> str:
        return await asyncio.to_thread(self.hash, password)

    async def verify_async(self, password: str, hashed_password: str | None) -> bool:
        return await asyncio.to_thread(self.verify, password, hashed_password)
