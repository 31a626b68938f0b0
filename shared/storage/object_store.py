"""
Object Storage Client

Contract the assignment engine uses to store submission files, plus an
httpx implementation against an S3-style HTTP gateway. Every transport
failure surfaces as ExternalServiceError.
"""

from abc import ABC, abstractmethod
from typing import Any

import httpx
import structlog

from shared.config import get_settings
from shared.domain.exceptions import ExternalServiceError

logger = structlog.get_logger(__name__)


class ObjectStorageClient(ABC):
    """Stores and removes opaque objects by key."""

    @abstractmethod
    async def upload_file(self, key: str, content: bytes, content_type: str) -> str:
        """
        Store an object.

        Args:
            key: Object key
            content: Raw bytes
            content_type: MIME type

        Returns:
            str: Public URL of the stored object

        Raises:
            ExternalServiceError: If the store rejects or cannot be reached
        """

    @abstractmethod
    async def delete_file(self, key: str) -> None:
        """Remove an object; used to compensate a failed submission."""


class HttpObjectStorageClient(ObjectStorageClient):
    """
    Object storage over HTTP PUT/DELETE.

    Objects live at ``{base_url}/{bucket}/{key}``.
    """

    SERVICE_NAME = "object_storage"

    def __init__(
        self,
        base_url: str | None = None,
        bucket: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: Storage gateway URL (defaults to settings)
            bucket: Bucket name (defaults to settings)
            api_key: Bearer token (defaults to settings)
            timeout: Request timeout in seconds (defaults to settings)
            transport: Optional httpx transport, e.g. ``httpx.MockTransport``
        """
        settings = get_settings()
        self.base_url = (base_url or settings.object_storage_base_url).rstrip("/")
        self.bucket = bucket or settings.object_storage_bucket
        self.api_key = api_key if api_key is not None else settings.object_storage_api_key
        self.timeout = timeout if timeout is not None else settings.object_storage_timeout_seconds
        self._transport = transport

    def object_url(self, key: str) -> str:
        return f"{self.base_url}/{self.bucket}/{key.lstrip('/')}"

    def _headers(self, content_type: str | None = None) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        if content_type:
            headers["Content-Type"] = content_type
        return headers

    async def _request(self, method: str, key: str, **kwargs: Any) -> httpx.Response:
        url = self.object_url(key)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(method, url, **kwargs)
                response.raise_for_status()
                return response

        except (httpx.TimeoutException, httpx.ConnectError) as e:
            logger.warning(
                "Object storage request failed (timeout/connection)",
                method=method,
                key=key,
                error=str(e),
            )
            raise ExternalServiceError(
                service_name=self.SERVICE_NAME,
                message=f"{method} {key} failed: {e}",
                timeout=isinstance(e, httpx.TimeoutException),
                cause=e,
            ) from e

        except httpx.HTTPStatusError as e:
            logger.warning(
                "Object storage returned error status",
                method=method,
                key=key,
                status_code=e.response.status_code,
            )
            raise ExternalServiceError(
                service_name=self.SERVICE_NAME,
                message=f"Object storage returned {e.response.status_code}",
                cause=e,
            ) from e

        except httpx.HTTPError as e:
            logger.error(
                "Unexpected object storage error",
                method=method,
                key=key,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise ExternalServiceError(
                service_name=self.SERVICE_NAME,
                message=f"Unexpected error: {e}",
                cause=e,
            ) from e

    async def upload_file(self, key: str, content: bytes, content_type: str) -> str:
        await self._request("PUT", key, content=content, headers=self._headers(content_type))
        url = self.object_url(key)
        logger.info("Object uploaded", key=key, size_bytes=len(content))
        return url

    async def delete_file(self, key: str) -> None:
        await self._request("DELETE", key, headers=self._headers())
        logger.info("Object deleted", key=key)
