"""Sync ledger: what the last completed run of each domain mirrored.

The ledger maps cache path keys to the remote file id and the fingerprint
of the bytes uploaded for it. It is loaded at the start of a run and
replaced wholesale at the end. Losing it is harmless: the next run
re-uploads everything and rebuilds it.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from sqlalchemy import delete, select

from backend.models.sync import SyncLedgerEntryRow, SyncLedgerStateRow
from backend.services.datetime_service import format_iso, now_utc, parse_timestamp

if TYPE_CHECKING:
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from backend.config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncLedgerEntry:
    """Ledger record for one cached blob."""

    pathname: str
    remote_id: str
    content_hash: str


@dataclass
class SyncLedger:
    """Ledger of one sync domain (``hero`` or ``portfolio:<category>``)."""

    domain: str
    last_sync_timestamp: datetime | None = None
    entries: dict[str, SyncLedgerEntry] = field(default_factory=dict)

    def get(self, pathname: str) -> SyncLedgerEntry | None:
        return self.entries.get(pathname)

    def set(self, pathname: str, remote_id: str, content_hash: str) -> None:
        self.entries[pathname] = SyncLedgerEntry(
            pathname=pathname, remote_id=remote_id, content_hash=content_hash
        )

    def remove(self, pathname: str) -> None:
        self.entries.pop(pathname, None)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the on-disk JSON form."""
        return {
            "domain": self.domain,
            "lastSyncTimestamp": (
                format_iso(self.last_sync_timestamp) if self.last_sync_timestamp else None
            ),
            "files": {
                path: {"remoteId": e.remote_id, "contentHash": e.content_hash}
                for path, e in sorted(self.entries.items())
            },
        }

    @classmethod
    def from_dict(cls, domain: str, data: dict[str, Any]) -> SyncLedger:
        """Parse the on-disk JSON form, skipping malformed entries."""
        ledger = cls(domain=domain)
        raw_ts = data.get("lastSyncTimestamp")
        ledger.last_sync_timestamp = parse_timestamp(raw_ts if isinstance(raw_ts, str) else None)
        files = data.get("files")
        if not isinstance(files, dict):
            return ledger
        for path, item in files.items():
            if not isinstance(item, dict):
                continue
            remote_id = item.get("remoteId")
            content_hash = item.get("contentHash")
            if isinstance(remote_id, str) and isinstance(content_hash, str):
                ledger.set(str(path), remote_id, content_hash)
        return ledger


class LedgerStore(ABC):
    """Persistence for sync ledgers."""

    @abstractmethod
    async def load(self, domain: str) -> SyncLedger:
        """Load a domain's ledger; an empty ledger when none is persisted."""

    @abstractmethod
    async def save(self, ledger: SyncLedger) -> None:
        """Replace the persisted ledger for ``ledger.domain``."""


class SqlLedgerStore(LedgerStore):
    """Ledger persisted in the application database."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def load(self, domain: str) -> SyncLedger:
        ledger = SyncLedger(domain=domain)
        async with self._session_factory() as session:
            state = await session.get(SyncLedgerStateRow, domain)
            if state is not None:
                ledger.last_sync_timestamp = parse_timestamp(state.last_sync_timestamp)
            stmt = select(SyncLedgerEntryRow).where(SyncLedgerEntryRow.domain == domain)
            result = await session.execute(stmt)
            for row in result.scalars().all():
                ledger.set(row.pathname, row.remote_id, row.content_hash)
        return ledger

    async def save(self, ledger: SyncLedger) -> None:
        synced_at = format_iso(now_utc())
        timestamp = (
            format_iso(ledger.last_sync_timestamp) if ledger.last_sync_timestamp else None
        )
        async with self._session_factory() as session:
            await session.execute(
                delete(SyncLedgerEntryRow).where(SyncLedgerEntryRow.domain == ledger.domain)
            )
            for entry in ledger.entries.values():
                session.add(
                    SyncLedgerEntryRow(
                        domain=ledger.domain,
                        pathname=entry.pathname,
                        remote_id=entry.remote_id,
                        content_hash=entry.content_hash,
                        synced_at=synced_at,
                    )
                )
            state = await session.get(SyncLedgerStateRow, ledger.domain)
            if state is None:
                session.add(
                    SyncLedgerStateRow(domain=ledger.domain, last_sync_timestamp=timestamp)
                )
            else:
                state.last_sync_timestamp = timestamp
            await session.commit()


def _ledger_filename(domain: str) -> str:
    return f"{quote(domain, safe='')}.sync-cache.json"


class JsonLedgerStore(LedgerStore):
    """Ledger persisted as one JSON file per domain."""

    def __init__(self, directory: Path | str) -> None:
        self._directory = Path(directory)

    def path_for(self, domain: str) -> Path:
        return self._directory / _ledger_filename(domain)

    async def load(self, domain: str) -> SyncLedger:
        path = self.path_for(domain)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return SyncLedger(domain=domain)
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Corrupt sync ledger at %s; starting from an empty ledger", path)
            return SyncLedger(domain=domain)
        if not isinstance(data, dict):
            logger.warning("Unexpected sync ledger format at %s; ignoring it", path)
            return SyncLedger(domain=domain)
        return SyncLedger.from_dict(domain, data)

    async def save(self, ledger: SyncLedger) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
        target = self.path_for(ledger.domain)
        fd, tmp_name = tempfile.mkstemp(dir=self._directory, prefix=".ledger-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(ledger.to_dict(), f, indent=2)
            os.replace(tmp_name, target)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise


def create_ledger_store(
    settings: Settings, session_factory: async_sessionmaker[AsyncSession] | None = None
) -> LedgerStore:
    """Build the configured ledger store."""
    if settings.ledger_backend == "json":
        return JsonLedgerStore(settings.ledger_dir)
    if session_factory is None:
        msg = "The database ledger backend requires a session factory"
        raise ValueError(msg)
    return SqlLedgerStore(session_factory)
