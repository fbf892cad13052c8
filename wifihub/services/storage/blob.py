from __future__ import annotations

import asyncio
import logging
import mimetypes
import re
from typing import Protocol

import aiohttp

from wifihub.core.config import settings
from wifihub.core.errors import UploadFailed

log = logging.getLogger(__name__)

_SAFE_NAME_RE = re.compile(r"[^A-Za-z0-9._\-]")


def safe_filename(name: str | None) -> str:
    name = _SAFE_NAME_RE.sub("_", (name or "").strip())[:80]
    return name or "receipt"


class BlobStore(Protocol):
    async def upload(self, path: str, data: bytes) -> str:
        ...


class MockBlobStore:
    """Keeps uploads in memory. Dev/test only."""

    def __init__(self, *, base_url: str = "mock://blobs") -> None:
        self._base_url = base_url.rstrip("/")
        self.objects: dict[str, bytes] = {}

    async def upload(self, path: str, data: bytes) -> str:
        self.objects[path] = bytes(data)
        return f"{self._base_url}/{path}"


class HttpBlobStore:
    """PUTs objects to an S3/GCS-style HTTP endpoint.

    PUT {base_url}/{path}; the object is then readable at {public_url}/{path}.
    """

    def __init__(
        self,
        *,
        base_url: str,
        public_url: str | None = None,
        auth_token: str | None = None,
        timeout_seconds: int = 20,
    ) -> None:
        if not base_url:
            raise RuntimeError("BLOB_BASE_URL is missing")
        self._base_url = base_url.rstrip("/")
        self._public_url = (public_url or base_url).rstrip("/")
        self._auth_token = auth_token
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    def _headers(self, path: str) -> dict[str, str]:
        headers = {"Content-Type": mimetypes.guess_type(path)[0] or "application/octet-stream"}
        if self._auth_token:
            headers["Authorization"] = f"Bearer {self._auth_token}"
        return headers

    async def upload(self, path: str, data: bytes) -> str:
        url = f"{self._base_url}/{path}"
        try:
            async with aiohttp.ClientSession(timeout=self._timeout) as session:
                async with session.put(url, data=data, headers=self._headers(path)) as resp:
                    if resp.status >= 400:
                        body = await _read_text_best_effort(resp)
                        raise UploadFailed(f"blob upload failed: HTTP {resp.status}: {body[:200]}")
        except UploadFailed:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise UploadFailed(f"blob upload failed: {e.__class__.__name__}") from e
        return f"{self._public_url}/{path}"


async def _read_text_best_effort(resp: aiohttp.ClientResponse) -> str:
    try:
        return await resp.text()
    except Exception:
        return ""


def build_blob_store() -> BlobStore:
    if settings.blob_provider == "http":
        return HttpBlobStore(
            base_url=settings.blob_base_url,
            public_url=settings.blob_public_url or None,
            auth_token=settings.blob_auth_token,
            timeout_seconds=settings.blob_timeout_seconds,
        )
    if settings.blob_provider != "mock":
        log.warning("unknown_blob_provider provider=%s falling back to mock", settings.blob_provider)
    return MockBlobStore()
