"""Application-level exception types.

Convention:
- ``InternalServerError``: for errors whose details must never reach clients
  (config validation, infrastructure failures, etc.). The global handler logs
  the full message at ERROR and returns a generic "Internal server error" (500).
- ``RemoteSourceError`` and its subclasses: failures talking to the remote
  content source. The retry wrapper decides on retries by type:
  ``RetryableTransportError`` is retried, ``PermanentApiError`` is not.
- ``SyncConfigurationError`` / ``RemoteFolderNotFoundError``: structural
  errors that abort a whole sync run for a domain.
- ``BlobStoreError``: failures of the blob cache; callers isolate them per file.
"""

from __future__ import annotations


class InternalServerError(Exception):
    """Raised for internal errors whose details must not be exposed to clients.

    The global exception handler in ``backend/main.py`` catches this, logs
    the full message server-side, and returns HTTP 500 with a generic
    ``"Internal server error"`` detail.
    """


class RemoteSourceError(Exception):
    """Base class for errors raised by the remote content source."""


class RetryableTransportError(RemoteSourceError):
    """Transient failure: timeout, connection reset, or a 5xx response."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PermanentApiError(RemoteSourceError):
    """Non-transient failure: 4xx response or a malformed payload."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class FetchError(RemoteSourceError):
    """A single remote file could not be downloaded."""

    def __init__(self, file_id: str, message: str) -> None:
        super().__init__(f"Failed to fetch remote file {file_id}: {message}")
        self.file_id = file_id


class SyncConfigurationError(Exception):
    """Required remote-source configuration (folder ids, credentials) is missing."""


class RemoteFolderNotFoundError(Exception):
    """A named remote folder could not be resolved."""

    def __init__(self, folder_name: str) -> None:
        super().__init__(f"Remote folder not found: {folder_name}")
        self.folder_name = folder_name


class BlobStoreError(Exception):
    """The blob cache rejected or failed an operation."""


class BlobNotFoundError(BlobStoreError):
    """The requested blob pathname does not exist."""

    def __init__(self, pathname: str) -> None:
        super().__init__(f"Blob not found: {pathname}")
        self.pathname = pathname
