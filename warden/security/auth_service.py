"""
Authentication Service for Warden

Orchestrates the account security state machine: registration, login with
brute-force lockout, refresh-token rotation, password change and reset,
and email verification.

Every security-relevant read-modify-write is delegated to a single atomic
AccountStore operation. Password hashing runs in a worker thread.

Known limitation: logout is a client-side signal only. Access tokens stay
valid until they expire or a password change makes them stale; refresh
tokens are invalidated by rotation and by password changes.
"""

import hashlib
from collections.abc import Callable
from datetime import datetime, timedelta

import structlog

from warden.models.account import (
    AccountInDB,
    AccountProfile,
    SecretPurpose,
    Token,
    normalize_email,
)
from warden.models.base import utc_now
from warden.repositories.account_store import AccountStore, DuplicateEmailError
from warden.security.lockout import LockoutPolicy
from warden.security.password import CredentialHasher
from warden.security.secret_tokens import IssuedSecret, SecretTokenFactory
from warden.security.tokens import TokenError, TokenIssuer, is_stale
from warden.services.email import (
    EmailMessage,
    EmailSender,
    build_password_reset_message,
    build_verification_message,
)

logger = structlog.get_logger(__name__)


class AuthenticationError(Exception):
    """Base exception for authentication failures."""

    pass


class DuplicateAccountError(AuthenticationError):
    """An account with this email already exists."""

    pass


class AccountNotFoundError(AuthenticationError):
    """No account with this identifier."""

    pass


class InvalidCredentialsError(AuthenticationError):
    """Email or password is incorrect."""

    pass


class AccountLockedError(AuthenticationError):
    """Account is locked due to too many failed attempts."""

    def __init__(self, message: str, locked_until: datetime | None = None):
        super().__init__(message)
        self.locked_until = locked_until


class AccountDisabledError(AuthenticationError):
    """Account has been deactivated."""

    pass


class InvalidTokenError(AuthenticationError):
    """Token failed verification, names a missing account, or was already rotated."""

    pass


class InvalidOrExpiredTokenError(AuthenticationError):
    """Secret token does not match a stored slot or has expired."""

    pass


class StaleTokenError(AuthenticationError):
    """Token was issued before the account's last password change."""

    pass


class DeliveryFailedError(AuthenticationError):
    """The email carrying a secret token could not be delivered."""

    pass


def _email_fingerprint(email: str) -> str:
    # Correlatable in logs without recording the address
    return hashlib.sha256(normalize_email(email).encode()).hexdigest()[:16]


class AuthService:
    """
    Authentication service providing registration, login and token management.

    Args:
        store: Account persistence
        hasher: Password hashing
        issuer: Access/refresh token minting and verification
        secrets: Single-use secret token minting
        lockout: Failed-login threshold and lock duration
        email_sender: Outbound email collaborator
        frontend_url: Base URL for links embedded in emails
        reset_ttl: Password reset token lifetime
        verify_ttl: Email verification token lifetime
        clock: Source of the current time
    """

    def __init__(
        self,
        store: AccountStore,
        hasher: CredentialHasher,
        issuer: TokenIssuer,
        secrets: SecretTokenFactory,
        lockout: LockoutPolicy,
        email_sender: EmailSender,
        frontend_url: str = "http://localhost:3000",
        reset_ttl: timedelta = timedelta(minutes=10),
        verify_ttl: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.hasher = hasher
        self.issuer = issuer
        self.secrets = secrets
        self.lockout = lockout
        self.email_sender = email_sender
        self.frontend_url = frontend_url
        self.reset_ttl = reset_ttl
        self.verify_ttl = verify_ttl
        self._clock = clock
        self._dummy_hash: str | None = None

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _burn_hash_time(self, password: str) -> None:
        """Spend one verification's worth of work when no account matched."""
        if self._dummy_hash is None:
            self._dummy_hash = await self.hasher.hash_async("warden-dummy-Passw0rd")
        await self.hasher.verify_async(password, self._dummy_hash)

    def _issue_tokens(self, account: AccountInDB, now: datetime, generation: int | None = None) -> Token:
        # Never mint a token that is already stale under clock skew
        issued_at = now
        if account.password_changed_at is not None and account.password_changed_at > now:
            issued_at = account.password_changed_at
        return self.issuer.create_token_pair(account, issued_at=issued_at, generation=generation)

    async def _deliver(self, recipient: str, message: EmailMessage) -> bool:
        try:
            return await self.email_sender.send_message(recipient, message)
        except Exception as e:
            logger.error("email_delivery_error", error=str(e), error_type=type(e).__name__)
            return False

    async def _issue_secret(
        self,
        account: AccountInDB,
        purpose: SecretPurpose,
        ttl: timedelta,
        now: datetime,
    ) -> IssuedSecret | None:
        issued = self.secrets.issue(ttl, now=now)
        stored = await self.store.store_secret(account.id, purpose, issued.digest, issued.expires_at)
        return issued if stored else None

    # =========================================================================
    # Registration
    # =========================================================================

    async def register(
        self,
        email: str,
        password: str,
        profile: AccountProfile | None = None,
    ) -> tuple[AccountInDB, Token]:
        """
        Register a new account and log it in.

        A verification email is sent; if delivery fails the verification
        token is withdrawn but registration still succeeds.

        Raises:
            DuplicateAccountError: If the email is already registered
            PasswordValidationError: The password cannot be hashed
        """
        email = normalize_email(email)
        if await self.store.email_exists(email):
            raise DuplicateAccountError("An account with this email already exists")

        password_hash = await self.hasher.hash_async(password)

        try:
            account = await self.store.create(email, password_hash, profile=profile)
        except DuplicateEmailError:
            # Lost a race with a concurrent registration
            raise DuplicateAccountError("An account with this email already exists")

        now = self._clock()
        issued = await self._issue_secret(
            account, SecretPurpose.EMAIL_VERIFICATION, self.verify_ttl, now
        )
        if issued is not None:
            message = build_verification_message(self.frontend_url, issued.plaintext, self.verify_ttl)
            if not await self._deliver(account.email, message):
                await self.store.clear_secret(
                    account.id, SecretPurpose.EMAIL_VERIFICATION, issued.digest
                )
                logger.warning("verification_email_failed", account_id=account.id)

        refreshed = await self.store.get_by_id(account.id) or account
        token = self._issue_tokens(refreshed, now)

        logger.info("account_registered", account_id=account.id)
        return refreshed, token

    # =========================================================================
    # Login
    # =========================================================================

    async def login(self, email: str, password: str) -> tuple[AccountInDB, Token]:
        """
        Authenticate by email and password.

        The failed-attempt record is persisted before the failure is
        reported, and is never rolled back.

        Raises:
            InvalidCredentialsError: Unknown email or wrong password
            AccountLockedError: Account is locked, whatever the password
            AccountDisabledError: Correct password but the account is inactive
        """
        now = self._clock()
        account = await self.store.get_by_email(email)

        if account is None:
            await self._burn_hash_time(password)
            logger.info(
                "login_failed",
                reason="unknown_email",
                email_hash=_email_fingerprint(email),
            )
            raise InvalidCredentialsError("Invalid email or password")

        if self.lockout.is_locked(account.locked_until, now):
            logger.warning("login_blocked", account_id=account.id, reason="account_locked")
            raise AccountLockedError(
                "Account is temporarily locked due to too many failed login attempts. "
                "Please try again later.",
                locked_until=account.locked_until,
            )

        if not await self.hasher.verify_async(password, account.password_hash):
            state = await self.store.record_failed_login(account.id, now, self.lockout)
            if state is not None and state.locked_until is not None and state.locked_until > now:
                logger.warning(
                    "account_locked",
                    account_id=account.id,
                    failed_attempts=state.failed_attempts,
                    locked_until=state.locked_until.isoformat(),
                )
            logger.info(
                "login_failed",
                reason="invalid_password",
                account_id=account.id,
                failed_attempts=state.failed_attempts if state else None,
            )
            raise InvalidCredentialsError("Invalid email or password")

        if not account.is_active:
            logger.info("login_failed", reason="account_disabled", account_id=account.id)
            raise AccountDisabledError("Account has been deactivated")

        updated = await self.store.record_successful_login(account.id, now)
        if updated is None:
            raise InvalidCredentialsError("Invalid email or password")

        token = self._issue_tokens(updated, now)
        logger.info("login_succeeded", account_id=updated.id, login_count=updated.login_count)
        return updated, token

    # =========================================================================
    # Token Operations
    # =========================================================================

    async def refresh(self, refresh_token: str) -> tuple[AccountInDB, Token]:
        """
        Exchange a refresh token for a new pair, rotating the generation.

        Raises:
            InvalidTokenError: Bad token, unknown account, or already rotated
            StaleTokenError: Issued before the last password change
            AccountDisabledError: Account is inactive
        """
        try:
            payload = self.issuer.verify_refresh_token(refresh_token)
        except TokenError as e:
            logger.info("refresh_rejected", reason=type(e).__name__)
            raise InvalidTokenError("Invalid refresh token")

        account = await self.store.get_by_id(payload.sub)
        if account is None:
            raise InvalidTokenError("Invalid refresh token")

        if is_stale(payload, account):
            logger.info("refresh_rejected", reason="stale", account_id=account.id)
            raise StaleTokenError("Token was issued before the last password change")

        if not account.is_active:
            raise AccountDisabledError("Account has been deactivated")

        generation = await self.store.rotate_refresh_generation(account.id, payload.gen)
        if generation is None:
            logger.warning(
                "refresh_token_reuse_detected",
                account_id=account.id,
                presented_generation=payload.gen,
            )
            raise InvalidTokenError("Refresh token has already been used")

        token = self._issue_tokens(account, self._clock(), generation=generation)
        logger.debug("tokens_refreshed", account_id=account.id, generation=generation)
        return account, token

    async def logout(self, account_id: str) -> None:
        """Client-side signal only; no server state changes."""
        logger.info("logout", account_id=account_id)

    # =========================================================================
    # Password Management
    # =========================================================================

    async def change_password(
        self,
        account_id: str,
        current_password: str,
        new_password: str,
    ) -> tuple[AccountInDB, Token]:
        """
        Replace the password after re-verifying the current one.

        Every previously issued token becomes stale. A fresh pair is
        returned so the caller stays signed in.

        Raises:
            AccountNotFoundError: Unknown account
            InvalidCredentialsError: Current password is incorrect
            PasswordValidationError: The new password cannot be hashed
        """
        account = await self.store.get_by_id(account_id)
        if account is None:
            raise AccountNotFoundError("Account not found")

        if not await self.hasher.verify_async(current_password, account.password_hash):
            logger.info("password_change_failed", account_id=account_id, reason="invalid_current_password")
            raise InvalidCredentialsError("Current password is incorrect")

        new_hash = await self.hasher.hash_async(new_password)
        updated = await self.store.set_password(account_id, new_hash, self._clock())
        if updated is None:
            raise AccountNotFoundError("Account not found")

        logger.info("password_changed", account_id=account_id)
        return updated, self._issue_tokens(updated, updated.password_changed_at)

    async def forgot_password(self, email: str) -> None:
        """
        Issue a password reset token and email it.

        Silent for unknown emails, so the response never reveals whether an
        account exists.

        Raises:
            DeliveryFailedError: The email could not be sent (the undelivered token is withdrawn)
        """
        account = await self.store.get_by_email(email)
        if account is None:
            logger.info("password_reset_requested_unknown_email", email_hash=_email_fingerprint(email))
            return

        issued = await self._issue_secret(
            account, SecretPurpose.PASSWORD_RESET, self.reset_ttl, self._clock()
        )
        if issued is None:
            return

        message = build_password_reset_message(self.frontend_url, issued.plaintext, self.reset_ttl)
        if not await self._deliver(account.email, message):
            # A newer request may have replaced the slot; leave its token intact
            await self.store.clear_secret(account.id, SecretPurpose.PASSWORD_RESET, issued.digest)
            logger.error("password_reset_email_failed", account_id=account.id)
            raise DeliveryFailedError("Password reset email could not be sent")

        logger.info("password_reset_requested", account_id=account.id)

    async def reset_password(self, reset_token: str, new_password: str) -> tuple[AccountInDB, Token]:
        """
        Consume a reset token, set the new password and sign the account in.

        Raises:
            InvalidOrExpiredTokenError: No unexpired slot holds this token
            PasswordValidationError: The new password cannot be hashed
        """
        # An unhashable password must not consume the token
        new_hash = await self.hasher.hash_async(new_password)

        now = self._clock()
        account = await self.store.consume_secret(
            SecretPurpose.PASSWORD_RESET, self.secrets.digest(reset_token), now
        )
        if account is None:
            logger.info("password_reset_failed", reason="invalid_or_expired_token")
            raise InvalidOrExpiredTokenError("Password reset token is invalid or has expired")

        updated = await self.store.set_password(account.id, new_hash, now)
        if updated is None:
            raise InvalidOrExpiredTokenError("Password reset token is invalid or has expired")

        logger.info("password_reset", account_id=updated.id)
        return updated, self._issue_tokens(updated, updated.password_changed_at)

    # =========================================================================
    # Email Verification
    # =========================================================================

    async def verify_email(self, verification_token: str) -> AccountInDB:
        """
        Consume a verification token and mark the account verified.

        Raises:
            InvalidOrExpiredTokenError: No unexpired slot holds this token
        """
        account = await self.store.consume_secret(
            SecretPurpose.EMAIL_VERIFICATION,
            self.secrets.digest(verification_token),
            self._clock(),
        )
        if account is None:
            logger.info("email_verification_failed", reason="invalid_or_expired_token")
            raise InvalidOrExpiredTokenError("Verification token is invalid or has expired")

        updated = await self.store.set_verified(account.id, True)
        if updated is None:
            raise InvalidOrExpiredTokenError("Verification token is invalid or has expired")

        logger.info("email_verified", account_id=updated.id)
        return updated

    async def resend_verification(self, email: str) -> None:
        """
        Reissue the verification token, overwriting any previous one.

        Silent for unknown emails and for accounts that are already verified.

        Raises:
            DeliveryFailedError: The email could not be sent (the undelivered token is withdrawn)
        """
        account = await self.store.get_by_email(email)
        if account is None or account.is_verified:
            logger.info(
                "verification_resend_skipped",
                email_hash=_email_fingerprint(email),
                reason="unknown_email" if account is None else "already_verified",
            )
            return

        issued = await self._issue_secret(
            account, SecretPurpose.EMAIL_VERIFICATION, self.verify_ttl, self._clock()
        )
        if issued is None:
            return

        message = build_verification_message(
            self.frontend_url, issued.plaintext, self.verify_ttl, resend=True
        )
        if not await self._deliver(account.email, message):
            await self.store.clear_secret(
                account.id, SecretPurpose.EMAIL_VERIFICATION, issued.digest
            )
            logger.error("verification_email_failed", account_id=account.id)
            raise DeliveryFailedError("Verification email could not be sent")

        logger.info("verification_resent", account_id=account.id)

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_account(self, account_id: str) -> AccountInDB:
        account = await self.store.get_by_id(account_id)
        if account is None:
            raise AccountNotFoundError("Account not found")
        return account
