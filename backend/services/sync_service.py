"""Sync service: mirror remote image folders into the blob cache.

Each sync domain (``hero`` or ``portfolio:<category>``) is reconciled
independently:

1. The run gate refuses to start while the domain is already running or
   still inside its cooldown window.
2. The remote listing and the cached blobs are compared file by file
   against the domain's ledger; new or changed files are fetched and
   uploaded, stale blobs are deleted.
3. Per-file failures are logged and isolated. Structural failures (missing
   configuration, missing folder, failed listing) and unexpected errors
   abort the run with False without touching the persisted ledger.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from backend.exceptions import (
    BlobNotFoundError,
    BlobStoreError,
    RemoteFolderNotFoundError,
    RemoteSourceError,
    SyncConfigurationError,
)
from backend.services.blob_service import guess_content_type
from backend.services.hash_service import content_fingerprint

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from backend.config import Settings
    from backend.services.blob_service import BlobStore, CachedBlob
    from backend.services.drive_service import RemoteFile, RemoteSource
    from backend.services.ledger_service import LedgerStore, SyncLedger

logger = logging.getLogger(__name__)

PORTFOLIO_PREFIX = "portfolio_images"
HERO_PREFIX = "hero_images"
HERO_DOMAIN = "hero"
DEFAULT_EXTENSION = "jpg"

# Errors that abort a whole domain run.
_STRUCTURAL_ERRORS = (
    SyncConfigurationError,
    RemoteFolderNotFoundError,
    RemoteSourceError,
    BlobStoreError,
)
# Errors isolated to a single file.
_FILE_ERRORS = (RemoteSourceError, BlobStoreError, OSError, ValueError)


# ── Path keys ────────────────────────────────────


def file_extension(name: str) -> str:
    """Return the lower-cased extension of ``name``, or ``jpg`` if it has none."""
    stem, dot, suffix = name.rpartition(".")
    if not dot or not stem or not suffix or not suffix.isalnum():
        return DEFAULT_EXTENSION
    return suffix.lower()


def cache_path_key(prefix: str, remote_file: RemoteFile, category: str | None = None) -> str:
    """Derive the deterministic cache key for a remote file.

    ``<prefix>/<category>/<id>.<ext>`` for categorized files and
    ``<prefix>/<id>.<ext>`` otherwise. The id is stable across renames, so
    renaming a file without changing its extension keeps its key.
    """
    filename = f"{remote_file.id}.{file_extension(remote_file.name)}"
    if category:
        return f"{prefix}/{category.lower()}/{filename}"
    return f"{prefix}/{filename}"


def normalize_category(name: str) -> str:
    """Lower-case and validate a category name used in keys and domains."""
    category = name.strip().lower()
    if not category or "/" in category or "\\" in category or category in (".", ".."):
        msg = f"Invalid category name: {name!r}"
        raise ValueError(msg)
    return category


def portfolio_domain(category: str) -> str:
    return f"portfolio:{category.lower()}"


# ── Run gate ─────────────────────────────────────


@dataclass
class SyncRunState:
    """In-memory run state of one sync domain."""

    is_running: bool = False
    last_attempt_timestamp: float | None = None


class SyncRunRegistry:
    """Per-domain run gate enforcing mutual exclusion and a cooldown.

    The check and the state change in ``try_begin`` happen without an
    await in between, so they are atomic under a single event loop.
    """

    def __init__(self) -> None:
        self._states: dict[str, SyncRunState] = {}

    def state(self, domain: str) -> SyncRunState:
        return self._states.setdefault(domain, SyncRunState())

    def skip_reason(self, domain: str, cooldown_seconds: float, now: float) -> str | None:
        """Return why a run of ``domain`` may not start now, or None if it may."""
        state = self.state(domain)
        if state.is_running:
            return "already running"
        last = state.last_attempt_timestamp
        if last is not None and now - last < cooldown_seconds:
            remaining = cooldown_seconds - (now - last)
            return f"cooldown active ({remaining:.0f}s remaining)"
        return None

    def try_begin(self, domain: str, cooldown_seconds: float, now: float) -> bool:
        """Enter the running state if the domain is idle and out of cooldown."""
        if self.skip_reason(domain, cooldown_seconds, now) is not None:
            return False
        state = self.state(domain)
        state.is_running = True
        state.last_attempt_timestamp = now
        return True

    def finish(self, domain: str) -> None:
        self.state(domain).is_running = False

    def domains(self) -> list[str]:
        return sorted(self._states)


# ── Reconciliation ───────────────────────────────


@dataclass
class SyncReport:
    """Outcome of one reconciliation pass."""

    uploaded: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped_unchanged: list[str] = field(default_factory=list)

    def summary(self) -> str:
        return (
            f"{len(self.uploaded)} uploaded, {len(self.deleted)} deleted, "
            f"{len(self.failed)} failed, {len(self.skipped_unchanged)} unchanged"
        )


def needs_upload(
    key: str,
    remote_file: RemoteFile,
    ledger: SyncLedger,
    existing: dict[str, CachedBlob],
) -> bool:
    """Decide whether a remote file must be (re-)uploaded to ``key``."""
    entry = ledger.get(key)
    if entry is None or entry.remote_id != remote_file.id:
        return True
    if key not in existing:
        return True
    return bool(remote_file.md5_checksum) and remote_file.md5_checksum != entry.content_hash


async def reconcile(
    *,
    label: str,
    prefix: str,
    remote_map: dict[str, RemoteFile],
    ledger: SyncLedger,
    source: RemoteSource,
    blob_store: BlobStore,
    max_parallel: int = 4,
) -> SyncReport:
    """Bring the cache under ``prefix`` in line with ``remote_map``.

    Mutates ``ledger`` in place; the caller persists it. Listing the cache
    raises ``BlobStoreError``; per-file transfer errors are only logged.
    Any other transfer error cancels the remaining transfers and surfaces
    as an ``ExceptionGroup``.
    """
    report = SyncReport()
    existing = {blob.pathname: blob for blob in await blob_store.list(f"{prefix}/")}
    semaphore = asyncio.Semaphore(max_parallel)

    async def upload_one(key: str, remote_file: RemoteFile) -> None:
        async with semaphore:
            try:
                data = await source.fetch_remote_file_bytes(remote_file.id)
                await blob_store.upload(data, key, guess_content_type(key))
            except _FILE_ERRORS as exc:
                logger.error("[%s] Failed to sync %s (%s): %s", label, remote_file.name, key, exc)
                ledger.remove(key)
                report.failed.append(key)
                return
        ledger.set(key, remote_file.id, content_fingerprint(data))
        report.uploaded.append(key)
        logger.info("[%s] Uploaded %s -> %s", label, remote_file.name, key)

    async def delete_one(key: str) -> None:
        async with semaphore:
            try:
                await blob_store.delete(key)
            except BlobNotFoundError:
                logger.info("[%s] Stale blob %s already gone", label, key)
            except (BlobStoreError, OSError, ValueError) as exc:
                logger.error("[%s] Failed to delete stale blob %s: %s", label, key, exc)
                report.failed.append(key)
                return
        report.deleted.append(key)
        logger.info("[%s] Deleted stale blob %s", label, key)

    # An unexpected error in one transfer cancels the others before it propagates.
    async with asyncio.TaskGroup() as tg:
        for key, remote_file in sorted(remote_map.items()):
            if needs_upload(key, remote_file, ledger, existing):
                tg.create_task(upload_one(key, remote_file))
            else:
                report.skipped_unchanged.append(key)
        for key in sorted(existing):
            if key not in remote_map:
                tg.create_task(delete_one(key))

    for key in list(ledger.entries):
        if key not in remote_map:
            ledger.remove(key)
    return report


# ── Orchestrators ────────────────────────────────


@dataclass(frozen=True)
class DomainStatus:
    """Run state and last completed sync of one domain."""

    domain: str
    is_running: bool
    last_attempt_timestamp: datetime | None
    last_sync_timestamp: datetime | None


def _to_datetime(timestamp: float | None) -> datetime | None:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


class _BaseSyncService:
    def __init__(
        self,
        settings: Settings,
        source: RemoteSource,
        blob_store: BlobStore,
        ledger_store: LedgerStore,
        registry: SyncRunRegistry | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings
        self._source = source
        self._blob_store = blob_store
        self._ledger_store = ledger_store
        self.registry = registry if registry is not None else SyncRunRegistry()
        self._clock = clock

    async def _run_domain(
        self,
        domain: str,
        cooldown_seconds: float,
        list_remote: Callable[[], Awaitable[list[RemoteFile]]],
        key_prefix: str,
        category: str | None = None,
    ) -> bool:
        now = self._clock()
        if not self.registry.try_begin(domain, cooldown_seconds, now):
            reason = self.registry.skip_reason(domain, cooldown_seconds, now)
            logger.info("[%s] Sync skipped: %s", domain, reason)
            return False

        logger.info("[%s] Sync started", domain)
        try:
            ledger = await self._ledger_store.load(domain)
            remote_files = await list_remote()
            remote_map = {cache_path_key(key_prefix, f, category): f for f in remote_files}
            report = await reconcile(
                label=domain,
                prefix=f"{key_prefix}/{category}" if category else key_prefix,
                remote_map=remote_map,
                ledger=ledger,
                source=self._source,
                blob_store=self._blob_store,
                max_parallel=self._settings.sync_max_parallel_transfers,
            )
            ledger.last_sync_timestamp = _to_datetime(self._clock())
            await self._ledger_store.save(ledger)
        except _STRUCTURAL_ERRORS as exc:
            logger.error("[%s] Sync aborted: %s", domain, exc)
            return False
        except Exception:
            logger.exception("[%s] Sync failed unexpectedly", domain)
            return False
        finally:
            self.registry.finish(domain)

        logger.info("[%s] Sync finished: %s", domain, report.summary())
        return True

    async def _domain_status(self, domain: str) -> DomainStatus:
        state = self.registry.state(domain)
        ledger = await self._ledger_store.load(domain)
        return DomainStatus(
            domain=domain,
            is_running=state.is_running,
            last_attempt_timestamp=_to_datetime(state.last_attempt_timestamp),
            last_sync_timestamp=ledger.last_sync_timestamp,
        )


class PortfolioSyncService(_BaseSyncService):
    """Mirror portfolio category folders into ``portfolio_images/<category>``."""

    def _cooldown(self, force: bool) -> float:
        return 0 if force else self._settings.portfolio_sync_cooldown_seconds

    async def sync_portfolio(self, category: str | None = None, *, force: bool = False) -> bool:
        """Sync one category, or every category folder under the root.

        Returns True when every attempted category completed; False when a
        run was skipped by the gate or failed. Only an invalid ``category``
        argument raises (``ValueError``).
        """
        if self._settings.build_environment:
            logger.info("Build environment detected; skipping portfolio sync")
            return True

        if category is not None:
            return await self._sync_category(normalize_category(category), force=force)

        try:
            folders = await self._source.list_subfolders()
        except _STRUCTURAL_ERRORS as exc:
            logger.error("[portfolio] Could not enumerate categories: %s", exc)
            return False
        except Exception:
            logger.exception("[portfolio] Category enumeration failed unexpectedly")
            return False

        results: list[bool] = []
        for folder in folders:
            try:
                name = normalize_category(folder.name)
            except ValueError:
                logger.warning("[portfolio] Skipping folder with unusable name %r", folder.name)
                continue
            results.append(await self._sync_category(name, force=force))
        return all(results)

    async def _sync_category(self, category: str, *, force: bool) -> bool:
        async def list_remote() -> list[RemoteFile]:
            folder = await self._source.find_folder(category)
            if folder is None:
                raise RemoteFolderNotFoundError(category)
            return await self._source.list_images(folder.id)

        return await self._run_domain(
            portfolio_domain(category),
            self._cooldown(force),
            list_remote,
            PORTFOLIO_PREFIX,
            category,
        )

    async def status(self) -> list[DomainStatus]:
        """Status of every configured category plus any category seen at runtime."""
        domains = {portfolio_domain(c) for c in self._settings.portfolio_categories}
        domains.update(d for d in self.registry.domains() if d.startswith("portfolio:"))
        return [await self._domain_status(d) for d in sorted(domains)]


class HeroSyncService(_BaseSyncService):
    """Mirror the hero folder into ``hero_images``."""

    async def sync_hero_images(self, *, force: bool = False) -> bool:
        """Sync the hero folder; False when skipped or aborted."""
        if self._settings.build_environment:
            logger.info("Build environment detected; skipping hero sync")
            return True

        cooldown = 0 if force else self._settings.hero_sync_cooldown_seconds
        return await self._run_domain(
            HERO_DOMAIN, cooldown, self._source.list_hero_files, HERO_PREFIX
        )

    async def status(self) -> list[DomainStatus]:
        return [await self._domain_status(HERO_DOMAIN)]
