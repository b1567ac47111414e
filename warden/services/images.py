"""
Profile Image Storage

Uploaded images are handed to an external store that returns a permanent
public URL. Like email delivery, stores report failure through their
return value rather than raising for transport problems.
"""

from abc import ABC, abstractmethod
from uuid import uuid4

import httpx
import structlog

logger = structlog.get_logger(__name__)

IMAGE_FOLDER = "user-profiles"

_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
}


class ImageError(Exception):
    """Base exception for profile image errors."""

    pass


class InvalidImageError(ImageError):
    """Upload is missing, too large or not an image."""

    pass


class ImageStorageError(ImageError):
    """The image store did not accept the upload."""

    pass


def extension_for(content_type: str) -> str:
    return _EXTENSIONS.get(content_type.lower(), "")


class ImageStore(ABC):
    """External image storage collaborator."""

    @abstractmethod
    async def store(self, account_id: str, content: bytes, content_type: str) -> str | None:
        """Upload one image. Returns its permanent URL, or None if it was not accepted."""

    async def delete(self, url: str) -> bool:
        return True

    async def close(self) -> None:
        return None


class LoggingImageStore(ImageStore):
    """Development backend: logs the upload and returns a URL under ``base_url``."""

    def __init__(self, base_url: str = "http://localhost:8000/media"):
        self.base_url = base_url.rstrip("/")

    async def store(self, account_id: str, content: bytes, content_type: str) -> str | None:
        url = f"{self.base_url}/{IMAGE_FOLDER}/{account_id}-{uuid4().hex}{extension_for(content_type)}"
        logger.info(
            "image_logged",
            account_id=account_id,
            content_type=content_type,
            size_bytes=len(content),
        )
        return url

    async def delete(self, url: str) -> bool:
        logger.info("image_delete_logged", url=url)
        return True


class HttpImageStore(ImageStore):
    """
    Image hosting over an HTTP API.

    Uploads are ``POST``ed as multipart form data and the API answers with
    JSON carrying the stored image's ``url`` (or ``secure_url``). Deletion
    sends ``DELETE`` with the URL to remove.

    Args:
        api_url: Upload endpoint
        api_key: Bearer token for the API, if it needs one
        timeout: Request timeout in seconds
        client: Pre-built client (tests inject one with a mock transport)
    """

    def __init__(
        self,
        api_url: str,
        api_key: str | None = None,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_url = api_url
        headers = {}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))
        self._headers = headers

    @classmethod
    def from_settings(cls, settings) -> "HttpImageStore":
        return cls(
            api_url=settings.image_api_url,
            api_key=settings.image_api_key,
            timeout=settings.image_timeout_seconds,
        )

    async def store(self, account_id: str, content: bytes, content_type: str) -> str | None:
        filename = f"{account_id}{extension_for(content_type)}"
        try:
            response = await self._client.post(
                self.api_url,
                data={"folder": IMAGE_FOLDER},
                files={"file": (filename, content, content_type)},
                headers=self._headers,
            )
        except httpx.HTTPError as e:
            logger.error("image_upload_failed", error=str(e), error_type=type(e).__name__)
            return None

        if not 200 <= response.status_code < 300:
            logger.error("image_upload_rejected", status_code=response.status_code)
            return None

        try:
            body = response.json()
        except ValueError:
            logger.error("image_upload_unreadable_response")
            return None

        url = (body.get("secure_url") or body.get("url")) if isinstance(body, dict) else None
        if not isinstance(url, str) or not url.lower().startswith(("http://", "https://")):
            logger.error("image_upload_missing_url")
            return None

        logger.info("image_uploaded", account_id=account_id, size_bytes=len(content))
        return url

    async def delete(self, url: str) -> bool:
        try:
            response = await self._client.request(
                "DELETE", self.api_url, json={"url": url}, headers=self._headers
            )
        except httpx.HTTPError as e:
            logger.warning("image_delete_failed", error=str(e), error_type=type(e).__name__)
            return False

        if not 200 <= response.status_code < 300:
            logger.warning("image_delete_rejected", status_code=response.status_code)
            return False
        return True

    async def close(self) -> None:
        await self._client.aclose()


def create_image_store(settings) -> ImageStore:
    """Build the configured backend."""
    if settings.image_backend == "http":
        return HttpImageStore.from_settings(settings)
    return LoggingImageStore(base_url=settings.image_public_base_url)
