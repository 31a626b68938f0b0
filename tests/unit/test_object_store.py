"""Tests for the HTTP object storage client using httpx's mock transport."""

import httpx
import pytest

from shared.domain.exceptions import ExternalServiceError
from shared.storage.object_store import HttpObjectStorageClient


def make_client(handler) -> HttpObjectStorageClient:
    return HttpObjectStorageClient(
        base_url="https://storage.test/",
        bucket="submissions",
        api_key="secret",
        timeout=5,
        transport=httpx.MockTransport(handler),
    )


class TestHttpObjectStorageClient:
    """Tests for uploads, deletes, and error mapping."""

    @pytest.mark.asyncio
    async def test_upload_puts_object_under_bucket(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200)

        client = make_client(handler)
        url = await client.upload_file("assignments/a/b/c.pdf", b"%PDF", "application/pdf")

        assert url == "https://storage.test/submissions/assignments/a/b/c.pdf"
        assert len(seen) == 1
        request = seen[0]
        assert request.method == "PUT"
        assert str(request.url) == url
        assert request.content == b"%PDF"
        assert request.headers["Content-Type"] == "application/pdf"
        assert request.headers["Authorization"] == "Bearer secret"

    @pytest.mark.asyncio
    async def test_delete(self):
        methods: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            methods.append(request.method)
            return httpx.Response(204)

        await make_client(handler).delete_file("assignments/a/b/c.pdf")

        assert methods == ["DELETE"]

    @pytest.mark.asyncio
    async def test_error_status_becomes_external_service_error(self):
        client = make_client(lambda request: httpx.Response(507))

        with pytest.raises(ExternalServiceError) as exc_info:
            await client.upload_file("k.pdf", b"x", "application/pdf")

        assert exc_info.value.service_name == "object_storage"
        assert not exc_info.value.timeout
        assert "507" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_timeout_is_flagged(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(ExternalServiceError) as exc_info:
            await make_client(handler).upload_file("k.pdf", b"x", "application/pdf")

        assert exc_info.value.timeout

    @pytest.mark.asyncio
    async def test_connection_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(ExternalServiceError) as exc_info:
            await make_client(handler).delete_file("k.pdf")

        assert not exc_info.value.timeout
