"""
Outbound Email

Delivery is best-effort: every sender returns ``True`` on acceptance and
``False`` on failure, and never raises for transport problems. Callers
decide what a failed delivery means for the flow that triggered it.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import timedelta

import httpx
import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class EmailMessage:
    subject: str
    body: str


def _describe_window(ttl: timedelta) -> str:
    minutes = int(ttl.total_seconds() // 60)
    if minutes % 60 == 0 and minutes >= 60:
        hours = minutes // 60
        return f"{hours} hour" if hours == 1 else f"{hours} hours"
    return f"{minutes} minute" if minutes == 1 else f"{minutes} minutes"


def build_verification_message(
    frontend_url: str,
    token: str,
    ttl: timedelta,
    resend: bool = False,
) -> EmailMessage:
    """Email asking the recipient to confirm their address."""
    link = f"{frontend_url.rstrip('/')}/verify-email/{token}"
    subject = "Resend: Email Verification" if resend else "Email Verification"
    body = (
        "Please verify your email address by opening the link below:\n\n"
        f"{link}\n\n"
        f"This link expires in {_describe_window(ttl)}. "
        "If you did not create an account, you can ignore this email."
    )
    return EmailMessage(subject=subject, body=body)


def build_password_reset_message(frontend_url: str, token: str, ttl: timedelta) -> EmailMessage:
    """Email carrying a single-use password reset link."""
    link = f"{frontend_url.rstrip('/')}/reset-password/{token}"
    body = (
        "You requested a password reset. Open the link below to choose a new password:\n\n"
        f"{link}\n\n"
        f"This link expires in {_describe_window(ttl)}. "
        "If you did not request a reset, you can ignore this email."
    )
    return EmailMessage(subject="Password Reset Request", body=body)


class EmailSender(ABC):
    """Outbound email collaborator."""

    @abstractmethod
    async def send(self, recipient: str, subject: str, body: str) -> bool:
        """Deliver one message. Returns False if it was not accepted."""

    async def send_message(self, recipient: str, message: EmailMessage) -> bool:
        return await self.send(recipient, message.subject, message.body)

    async def close(self) -> None:
        return None


class LoggingEmailSender(EmailSender):
    """Development backend: logs the message metadata instead of sending it."""

    async def send(self, recipient: str, subject: str, body: str) -> bool:
        logger.info(
            "email_logged",
            recipient_domain=recipient.rsplit("@", 1)[-1],
            subject=subject,
            body_length=len(body),
        )
        return True


class HttpEmailSender(EmailSender):
    """
    Transactional email over an HTTP JSON API.

    Args:
        api_url: Endpoint accepting ``POST`` of the message as JSON
        api_key: Bearer token for the API, if it needs one
        sender: From address
        sender_name: From display name
        timeout: Request timeout in seconds
        client: Pre-built client (tests inject one with a mock transport)
    """

    def __init__(
        self,
        api_url: str,
        api_key: str | None = None,
        sender: str = "no-reply@localhost",
        sender_name: str = "Warden",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_url = api_url
        self.sender = sender
        self.sender_name = sender_name
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))
        self._headers = headers

    @classmethod
    def from_settings(cls, settings) -> "HttpEmailSender":
        return cls(
            api_url=settings.email_api_url,
            api_key=settings.email_api_key,
            sender=settings.email_from,
            sender_name=settings.email_from_name,
            timeout=settings.email_timeout_seconds,
        )

    async def send(self, recipient: str, subject: str, body: str) -> bool:
        payload = {
            "from": {"email": self.sender, "name": self.sender_name},
            "to": [{"email": recipient}],
            "subject": subject,
            "text": body,
        }
        try:
            response = await self._client.post(self.api_url, json=payload, headers=self._headers)
        except httpx.HTTPError as e:
            logger.error("email_send_failed", error=str(e), error_type=type(e).__name__)
            return False

        if not 200 <= response.status_code < 300:
            logger.error("email_send_rejected", status_code=response.status_code)
            return False

        logger.info("email_sent", subject=subject)
        return True

    async def close(self) -> None:
        await self._client.aclose()


def create_email_sender(settings) -> EmailSender:
    """Build the configured backend."""
    if settings.email_backend == "http":
        return HttpEmailSender.from_settings(settings)
    return LoggingEmailSender()
