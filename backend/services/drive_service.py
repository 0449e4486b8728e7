"""Google Drive content source: folder resolution, image listing, downloads."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import httpx
import jwt

from backend.exceptions import (
    FetchError,
    PermanentApiError,
    RemoteSourceError,
    RetryableTransportError,
    SyncConfigurationError,
)
from backend.services.retry_service import (
    DEFAULT_INITIAL_DELAY,
    DEFAULT_MAX_ATTEMPTS,
    RETRYABLE_STATUS_CODES,
    with_retry,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from backend.config import Settings

logger = logging.getLogger(__name__)

DRIVE_API_URL = "https://www.googleapis.com/drive/v3"
TOKEN_URL = "https://oauth2.googleapis.com/token"
DRIVE_READONLY_SCOPE = "https://www.googleapis.com/auth/drive.readonly"
FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
_TOKEN_LIFETIME = 3600
_TOKEN_REFRESH_MARGIN = 300
_PAGE_SIZE = 1000


@dataclass(frozen=True)
class RemoteFile:
    """A file in the remote content source."""

    id: str
    name: str
    md5_checksum: str | None = None


@dataclass(frozen=True)
class RemoteFolder:
    """A folder in the remote content source."""

    id: str
    name: str


@runtime_checkable
class RemoteSource(Protocol):
    """Read-only view of the remote folder tree used by the sync services."""

    async def find_folder(self, name: str, parent_id: str | None = None) -> RemoteFolder | None:
        """Resolve a folder by name under ``parent_id`` (the portfolio root by default)."""
        ...

    async def list_subfolders(self, folder_id: str | None = None) -> list[RemoteFolder]:
        """List folders directly inside ``folder_id`` (the portfolio root by default)."""
        ...

    async def list_images(self, folder_id: str) -> list[RemoteFile]:
        """List image files directly inside a folder."""
        ...

    async def list_hero_files(self) -> list[RemoteFile]:
        """List image files in the hero folder."""
        ...

    async def fetch_remote_file_bytes(self, file_id: str) -> bytes:
        """Download one file's full content."""
        ...


def escape_query_literal(value: str) -> str:
    """Escape a value for use inside a single-quoted Drive query literal."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


def _raise_for_status(response: httpx.Response, label: str) -> None:
    status = response.status_code
    if status < 400:
        return
    detail = response.text[:200]
    if status in RETRYABLE_STATUS_CODES:
        raise RetryableTransportError(f"{label}: HTTP {status}: {detail}", status_code=status)
    raise PermanentApiError(f"{label}: HTTP {status}: {detail}", status_code=status)


class GoogleDriveSource:
    """Drive v3 REST client authenticated as a service account."""

    def __init__(
        self,
        *,
        service_account_email: str,
        private_key: str,
        root_folder_id: str = "",
        hero_folder_id: str = "",
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        initial_delay: float = DEFAULT_INITIAL_DELAY,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self._email = service_account_email
        self._private_key = private_key
        self.root_folder_id = root_folder_id
        self.hero_folder_id = hero_folder_id
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None
        self._max_attempts = max_attempts
        self._initial_delay = initial_delay
        self._sleep = sleep
        self._access_token: str | None = None
        self._token_expires_at = 0.0
        self._token_lock = asyncio.Lock()

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this source created it."""
        if self._owns_client:
            await self._client.aclose()

    # ── Auth ─────────────────────────────────────────

    def _build_assertion(self, now: int) -> str:
        payload = {
            "iss": self._email,
            "scope": DRIVE_READONLY_SCOPE,
            "aud": TOKEN_URL,
            "iat": now,
            "exp": now + _TOKEN_LIFETIME,
        }
        return jwt.encode(payload, self._private_key, algorithm="RS256")

    async def _get_access_token(self) -> str:
        if not self._email or not self._private_key:
            msg = "Google service account credentials are not configured"
            raise SyncConfigurationError(msg)

        async with self._token_lock:
            if self._access_token and time.time() < self._token_expires_at:
                return self._access_token

            now = int(time.time())
            try:
                assertion = self._build_assertion(now)
            except (ValueError, TypeError, jwt.PyJWTError) as exc:
                msg = f"Invalid service account private key: {exc}"
                raise SyncConfigurationError(msg) from exc

            try:
                response = await self._client.post(
                    TOKEN_URL,
                    data={
                        "grant_type": "urn:ietf:params:oauth:grant-type:jwt-bearer",
                        "assertion": assertion,
                    },
                )
            except httpx.TransportError as exc:
                raise RetryableTransportError(f"token exchange: {exc}") from exc
            _raise_for_status(response, "token exchange")

            data = self._json(response, "token exchange")
            token = data.get("access_token")
            if not isinstance(token, str) or not token:
                msg = "token exchange: response missing access_token"
                raise PermanentApiError(msg)
            expires_in = int(data.get("expires_in", _TOKEN_LIFETIME))
            self._access_token = token
            self._token_expires_at = now + max(expires_in - _TOKEN_REFRESH_MARGIN, 60)
            return token

    # ── HTTP helpers ─────────────────────────────────

    @staticmethod
    def _json(response: httpx.Response, label: str) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as exc:
            raise PermanentApiError(f"{label}: malformed JSON response") from exc
        if not isinstance(data, dict):
            raise PermanentApiError(f"{label}: unexpected response payload")
        return data

    async def _get(self, path: str, label: str, params: dict[str, Any]) -> httpx.Response:
        async def send() -> httpx.Response:
            token = await self._get_access_token()
            try:
                return await self._client.get(
                    f"{DRIVE_API_URL}{path}",
                    params=params,
                    headers={"Authorization": f"Bearer {token}"},
                )
            except httpx.TransportError as exc:
                raise RetryableTransportError(f"{label}: {exc}") from exc

        async def attempt() -> httpx.Response:
            response = await send()
            if response.status_code == 401:
                # Token revoked or expired early: refresh once before giving up.
                logger.info("%s: access token rejected; refreshing", label)
                self._access_token = None
                response = await send()
                if response.status_code == 401:
                    self._access_token = None
            _raise_for_status(response, label)
            return response

        return await with_retry(
            attempt,
            label,
            max_attempts=self._max_attempts,
            initial_delay=self._initial_delay,
            sleep=self._sleep,
        )

    async def _list_files(self, query: str, label: str) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        page_token: str | None = None
        while True:
            params: dict[str, Any] = {
                "q": query,
                "fields": "nextPageToken, files(id, name, mimeType, md5Checksum)",
                "pageSize": _PAGE_SIZE,
                "supportsAllDrives": "true",
                "includeItemsFromAllDrives": "true",
            }
            if page_token:
                params["pageToken"] = page_token
            response = await self._get("/files", label, params)
            data = self._json(response, label)
            files = data.get("files", [])
            if isinstance(files, list):
                items.extend(f for f in files if isinstance(f, dict))
            next_token = data.get("nextPageToken")
            page_token = str(next_token) if next_token else None
            if not page_token:
                return items

    # ── Listing ──────────────────────────────────────

    def _require_root(self, parent_id: str | None) -> str:
        folder_id = parent_id or self.root_folder_id
        if not folder_id:
            msg = "GOOGLE_DRIVE_FOLDER_ID is not set"
            raise SyncConfigurationError(msg)
        return folder_id

    async def list_subfolders(self, folder_id: str | None = None) -> list[RemoteFolder]:
        """List non-trashed folders directly inside ``folder_id``."""
        parent = self._require_root(folder_id)
        query = (
            f"'{escape_query_literal(parent)}' in parents "
            f"and mimeType = '{FOLDER_MIME_TYPE}' and trashed = false"
        )
        files = await self._list_files(query, f"list_subfolders_{parent}")
        folders: list[RemoteFolder] = []
        for item in files:
            if item.get("id") and item.get("name"):
                folders.append(RemoteFolder(id=str(item["id"]), name=str(item["name"])))
            else:
                logger.warning("Skipping subfolder with missing id or name in %s", parent)
        return folders

    async def find_folder(self, name: str, parent_id: str | None = None) -> RemoteFolder | None:
        """Resolve a folder by exact name, falling back to a case-insensitive match."""
        parent = self._require_root(parent_id)
        query = (
            f"'{escape_query_literal(parent)}' in parents "
            f"and mimeType = '{FOLDER_MIME_TYPE}' "
            f"and name = '{escape_query_literal(name)}' and trashed = false"
        )
        exact = await self._list_files(query, f"find_folder_exact_{name}")
        for item in exact:
            if item.get("id") and item.get("name"):
                return RemoteFolder(id=str(item["id"]), name=str(item["name"]))

        wanted = name.lower()
        for folder in await self.list_subfolders(parent):
            if folder.name.lower() == wanted:
                return folder
        return None

    async def list_images(self, folder_id: str) -> list[RemoteFile]:
        """List non-trashed image files directly inside a folder."""
        query = (
            f"'{escape_query_literal(folder_id)}' in parents "
            "and mimeType contains 'image/' and trashed = false"
        )
        files = await self._list_files(query, f"list_images_{folder_id}")
        return [
            RemoteFile(
                id=str(item["id"]),
                name=str(item["name"]),
                md5_checksum=item.get("md5Checksum") or None,
            )
            for item in files
            if item.get("id") and item.get("name")
        ]

    async def list_remote_files(self, folder_name: str) -> list[RemoteFile]:
        """List images in the named folder under the root; empty if the folder is absent."""
        folder = await self.find_folder(folder_name)
        if folder is None:
            logger.info("Remote folder %r not found under root", folder_name)
            return []
        return await self.list_images(folder.id)

    async def list_hero_files(self) -> list[RemoteFile]:
        """List images in the configured hero folder."""
        if not self.hero_folder_id:
            msg = "GOOGLE_DRIVE_HERO_FOLDER_ID is not set"
            raise SyncConfigurationError(msg)
        return await self.list_images(self.hero_folder_id)

    # ── Download ─────────────────────────────────────

    async def fetch_remote_file_bytes(self, file_id: str) -> bytes:
        """Download a file's full content into memory."""
        try:
            response = await self._get(
                f"/files/{file_id}",
                f"fetch_{file_id}",
                {"alt": "media", "supportsAllDrives": "true"},
            )
        except RemoteSourceError as exc:
            raise FetchError(file_id, str(exc)) from exc
        return response.content


def create_drive_source(settings: Settings) -> GoogleDriveSource:
    """Build the Drive source from application settings."""
    return GoogleDriveSource(
        service_account_email=settings.google_service_account_email,
        private_key=settings.google_private_key,
        root_folder_id=settings.google_drive_folder_id,
        hero_folder_id=settings.google_drive_hero_folder_id,
        timeout=settings.google_drive_timeout_seconds,
        max_attempts=settings.retry_max_attempts,
        initial_delay=settings.retry_initial_delay_seconds,
    )
