"""
Profile Image Storage Tests

- Logging backend
- HTTP backend against an httpx mock transport
- Backend selection from settings
"""

import httpx
import pytest

from warden.services.images import (
    IMAGE_FOLDER,
    HttpImageStore,
    LoggingImageStore,
    create_image_store,
    extension_for,
)

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


class TestLoggingImageStore:

    @pytest.mark.asyncio
    async def test_returns_url_under_base(self):
        store = LoggingImageStore(base_url="https://media.example.com/")

        url = await store.store("acct-1", PNG_BYTES, "image/png")

        assert url.startswith(f"https://media.example.com/{IMAGE_FOLDER}/acct-1-")
        assert url.endswith(".png")
        assert await store.delete(url) is True
        await store.close()

    @pytest.mark.asyncio
    async def test_urls_are_unique(self):
        store = LoggingImageStore()
        first = await store.store("acct-1", PNG_BYTES, "image/png")
        second = await store.store("acct-1", PNG_BYTES, "image/png")
        assert first != second

    def test_extension_for(self):
        assert extension_for("IMAGE/JPEG") == ".jpg"
        assert extension_for("image/x-unknown") == ""


class TestHttpImageStore:

    def _store(self, handler):
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return HttpImageStore(
            api_url="https://images.example.com/upload",
            api_key="key-123",
            client=client,
        )

    @pytest.mark.asyncio
    async def test_uploads_multipart(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"secure_url": "https://cdn.example.com/a.png"})

        store = self._store(handler)

        assert await store.store("acct-1", PNG_BYTES, "image/png") == "https://cdn.example.com/a.png"
        request = seen[0]
        assert request.method == "POST"
        assert request.headers["authorization"] == "Bearer key-123"
        assert request.headers["content-type"].startswith("multipart/form-data")
        body = request.read()
        assert IMAGE_FOLDER.encode() in body
        assert b'filename="acct-1.png"' in body
        assert PNG_BYTES in body
        await store.close()

    @pytest.mark.asyncio
    async def test_plain_url_field_accepted(self):
        store = self._store(lambda request: httpx.Response(201, json={"url": "https://cdn/x.jpg"}))
        assert await store.store("acct-1", b"jpeg", "image/jpeg") == "https://cdn/x.jpg"

    @pytest.mark.asyncio
    async def test_rejected_upload(self):
        store = self._store(lambda request: httpx.Response(413))
        assert await store.store("acct-1", PNG_BYTES, "image/png") is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(200, text="not json"),
            httpx.Response(200, json={"id": "abc"}),
            httpx.Response(200, json={"url": "ftp://cdn/x.png"}),
            httpx.Response(200, json=["https://cdn/x.png"]),
        ],
    )
    async def test_unusable_response(self, response):
        store = self._store(lambda request: response)
        assert await store.store("acct-1", PNG_BYTES, "image/png") is None

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        store = self._store(handler)
        assert await store.store("acct-1", PNG_BYTES, "image/png") is None
        assert await store.delete("https://cdn/x.png") is False

    @pytest.mark.asyncio
    async def test_delete(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(204)

        store = self._store(handler)

        assert await store.delete("https://cdn.example.com/old.png") is True
        assert seen[0].method == "DELETE"
        assert b"https://cdn.example.com/old.png" in seen[0].read()

    @pytest.mark.asyncio
    async def test_delete_rejected(self):
        store = self._store(lambda request: httpx.Response(404))
        assert await store.delete("https://cdn/x.png") is False


class TestCreateImageStore:

    def test_log_backend(self, settings):
        store = create_image_store(settings)

        assert isinstance(store, LoggingImageStore)
        assert store.base_url == settings.image_public_base_url.rstrip("/")

    @pytest.mark.asyncio
    async def test_http_backend(self, settings):
        configured = settings.model_copy(
            update={"image_backend": "http", "image_api_url": "https://images.example.com/upload"}
        )
        store = create_image_store(configured)

        assert isinstance(store, HttpImageStore)
        assert store.api_url == "https://images.example.com/upload"
        await store.close()
