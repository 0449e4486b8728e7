"""Blob cache storage for mirrored images.

This module provides:
- BlobStore: abstract interface (list by prefix, upload by key, delete by key)
- LocalBlobStore: files under a public directory, for development and tests
- VercelBlobStore: Vercel Blob REST API, for production
"""

from __future__ import annotations

import logging
import mimetypes
import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import httpx

from backend.exceptions import BlobNotFoundError, BlobStoreError

if TYPE_CHECKING:
    from backend.config import Settings

logger = logging.getLogger(__name__)

VERCEL_BLOB_API_VERSION = "7"
_LIST_PAGE_LIMIT = 1000


@dataclass(frozen=True)
class CachedBlob:
    """A stored copy of a remote file: its path key and public URL."""

    pathname: str
    url: str


def guess_content_type(pathname: str) -> str:
    """Guess a MIME type from a path key, defaulting to a binary stream."""
    content_type, _ = mimetypes.guess_type(pathname)
    return content_type or "application/octet-stream"


class BlobStore(ABC):
    """Abstract interface for the image cache."""

    @property
    @abstractmethod
    def location(self) -> str:
        """Return a human-readable description of where blobs are stored."""

    @abstractmethod
    async def list(self, prefix: str) -> list[CachedBlob]:
        """List all blobs whose pathname starts with ``prefix``."""

    @abstractmethod
    async def upload(
        self, data: bytes, pathname: str, content_type: str | None = None
    ) -> CachedBlob:
        """Write or overwrite ``data`` at an exact pathname.

        Returns:
            The stored blob with its public URL.
        """

    @abstractmethod
    async def delete(self, pathname: str) -> None:
        """Delete the blob at ``pathname``.

        Raises:
            BlobNotFoundError: If no blob exists at ``pathname``.
        """

    async def aclose(self) -> None:
        """Release any held resources."""


class LocalBlobStore(BlobStore):
    """Blob cache backed by a local directory (e.g. the site's ``public/`` folder)."""

    def __init__(self, root: Path | str, public_base_url: str = "/") -> None:
        self._root = Path(root).resolve()
        self._root.mkdir(parents=True, exist_ok=True)
        self._base_url = public_base_url.rstrip("/")

    @property
    def location(self) -> str:
        """Return the local storage path."""
        return f"Local filesystem: {self._root}"

    def _path(self, pathname: str) -> Path:
        """Resolve a pathname within the root, raising ValueError on traversal."""
        target = (self._root / pathname.lstrip("/")).resolve()
        if target == self._root or not target.is_relative_to(self._root):
            msg = f"Invalid blob pathname: {pathname}"
            raise ValueError(msg)
        return target

    def _url(self, pathname: str) -> str:
        return f"{self._base_url}/{pathname}"

    async def list(self, prefix: str) -> list[CachedBlob]:
        """List files under the root whose relative path starts with ``prefix``."""
        blobs: list[CachedBlob] = []
        for root, dirs, files in os.walk(self._root):
            dirs[:] = [d for d in dirs if not d.startswith(".")]
            for filename in files:
                if filename.startswith("."):
                    continue
                rel = (Path(root) / filename).relative_to(self._root).as_posix()
                if rel.startswith(prefix):
                    blobs.append(CachedBlob(pathname=rel, url=self._url(rel)))
        blobs.sort(key=lambda b: b.pathname)
        return blobs

    async def upload(
        self, data: bytes, pathname: str, content_type: str | None = None
    ) -> CachedBlob:
        """Write atomically via a temp file in the target directory."""
        target = self._path(pathname)
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=".upload-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, target)
        except OSError as exc:
            Path(tmp_name).unlink(missing_ok=True)
            raise BlobStoreError(f"Failed to write blob {pathname}: {exc}") from exc
        return CachedBlob(pathname=pathname, url=self._url(pathname))

    async def delete(self, pathname: str) -> None:
        """Remove a file; missing files raise BlobNotFoundError."""
        target = self._path(pathname)
        try:
            target.unlink()
        except FileNotFoundError as exc:
            raise BlobNotFoundError(pathname) from exc
        except OSError as exc:
            raise BlobStoreError(f"Failed to delete blob {pathname}: {exc}") from exc


class VercelBlobStore(BlobStore):
    """Vercel Blob storage accessed through its REST API."""

    def __init__(
        self,
        token: str,
        *,
        api_url: str = "https://blob.vercel-storage.com",
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 60.0,
    ) -> None:
        if not token:
            msg = "BLOB_READ_WRITE_TOKEN is required for Vercel Blob storage"
            raise ValueError(msg)
        self._token = token
        self._api_url = api_url.rstrip("/")
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    @property
    def location(self) -> str:
        """Return the Blob API endpoint."""
        return f"Vercel Blob: {self._api_url}"

    def _headers(self, **extra: str) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self._token}",
            "x-api-version": VERCEL_BLOB_API_VERSION,
        }
        headers.update(extra)
        return headers

    async def _send(self, method: str, url: str, label: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise BlobStoreError(f"{label}: {exc}") from exc
        if response.status_code >= 400:
            raise BlobStoreError(
                f"{label}: HTTP {response.status_code}: {response.text[:200]}"
            )
        return response

    @staticmethod
    def _payload(response: httpx.Response, label: str) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as exc:
            raise BlobStoreError(f"{label}: malformed JSON response") from exc
        if not isinstance(data, dict):
            raise BlobStoreError(f"{label}: unexpected response payload")
        return data

    async def list(self, prefix: str) -> list[CachedBlob]:
        """List blobs under ``prefix``, following the API's cursor pagination."""
        blobs: list[CachedBlob] = []
        cursor: str | None = None
        while True:
            params: dict[str, str | int] = {"prefix": prefix, "limit": _LIST_PAGE_LIMIT}
            if cursor:
                params["cursor"] = cursor
            response = await self._send(
                "GET", self._api_url, f"list {prefix}", params=params, headers=self._headers()
            )
            data = self._payload(response, f"list {prefix}")
            for item in data.get("blobs", []) or []:
                if isinstance(item, dict) and item.get("pathname") and item.get("url"):
                    blobs.append(CachedBlob(pathname=str(item["pathname"]), url=str(item["url"])))
            cursor = data.get("cursor") if data.get("hasMore") else None
            if not cursor:
                return blobs

    async def upload(
        self, data: bytes, pathname: str, content_type: str | None = None
    ) -> CachedBlob:
        """PUT content at an exact pathname with overwrite allowed."""
        headers = self._headers(
            **{
                "x-content-type": content_type or guess_content_type(pathname),
                "x-add-random-suffix": "0",
                "x-allow-overwrite": "1",
            }
        )
        response = await self._send(
            "PUT",
            f"{self._api_url}/{pathname.lstrip('/')}",
            f"upload {pathname}",
            content=data,
            headers=headers,
        )
        payload = self._payload(response, f"upload {pathname}")
        url = payload.get("url")
        if not isinstance(url, str) or not url:
            raise BlobStoreError(f"upload {pathname}: response missing url")
        return CachedBlob(pathname=str(payload.get("pathname") or pathname), url=url)

    async def delete(self, pathname: str) -> None:
        """Delete by pathname; the API addresses blobs by URL so the URL is looked up first."""
        matches = [b for b in await self.list(pathname) if b.pathname == pathname]
        if not matches:
            raise BlobNotFoundError(pathname)
        await self._send(
            "POST",
            f"{self._api_url}/delete",
            f"delete {pathname}",
            json={"urls": [b.url for b in matches]},
            headers=self._headers(),
        )

    async def aclose(self) -> None:
        """Close the HTTP client if this store created it."""
        if self._owns_client:
            await self._client.aclose()


def create_blob_store(settings: Settings) -> BlobStore:
    """Pick Vercel Blob when a token is configured, otherwise the local directory."""
    if settings.blob_read_write_token:
        logger.info("Using Vercel Blob storage at %s", settings.blob_api_url)
        return VercelBlobStore(settings.blob_read_write_token, api_url=settings.blob_api_url)
    logger.info("Using local blob storage at %s", settings.local_blob_dir)
    return LocalBlobStore(settings.local_blob_dir, settings.local_blob_base_url)
