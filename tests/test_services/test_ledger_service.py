"""Tests for sync ledger persistence."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import select

from backend.config import Settings
from backend.models.sync import SyncLedgerEntryRow
from backend.services.ledger_service import (
    JsonLedgerStore,
    SqlLedgerStore,
    SyncLedger,
    create_ledger_store,
)

if TYPE_CHECKING:
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

SYNCED_AT = datetime(2026, 5, 4, 3, 2, 1, tzinfo=timezone.utc)


def _ledger(domain: str = "hero") -> SyncLedger:
    ledger = SyncLedger(domain=domain, last_sync_timestamp=SYNCED_AT)
    ledger.set("hero_images/a.jpg", "a", "hash-a")
    ledger.set("hero_images/b.jpg", "b", "hash-b")
    return ledger


class TestSyncLedger:
    def test_set_get_remove(self) -> None:
        ledger = SyncLedger(domain="hero")
        ledger.set("k", "id", "h")
        assert ledger.get("k") is not None
        ledger.remove("k")
        ledger.remove("k")
        assert ledger.get("k") is None

    def test_from_dict_skips_malformed_entries(self) -> None:
        ledger = SyncLedger.from_dict(
            "hero",
            {
                "lastSyncTimestamp": "2026-05-04T03:02:01+00:00",
                "files": {
                    "good": {"remoteId": "g", "contentHash": "h"},
                    "no-hash": {"remoteId": "x"},
                    "not-a-dict": "oops",
                },
            },
        )
        assert list(ledger.entries) == ["good"]
        assert ledger.last_sync_timestamp is not None
        assert ledger.last_sync_timestamp.timestamp() == SYNCED_AT.timestamp()


class TestJsonLedgerStore:
    @pytest.mark.asyncio
    async def test_missing_file_is_empty(self, tmp_path: Path) -> None:
        ledger = await JsonLedgerStore(tmp_path).load("hero")
        assert ledger.entries == {}
        assert ledger.last_sync_timestamp is None

    @pytest.mark.asyncio
    async def test_save_then_load(self, tmp_path: Path) -> None:
        store = JsonLedgerStore(tmp_path / "ledger")
        await store.save(_ledger())

        loaded = await store.load("hero")

        assert loaded.entries == _ledger().entries
        assert loaded.last_sync_timestamp is not None
        assert loaded.last_sync_timestamp.timestamp() == SYNCED_AT.timestamp()
        data = json.loads(store.path_for("hero").read_text(encoding="utf-8"))
        assert data["files"]["hero_images/a.jpg"] == {"remoteId": "a", "contentHash": "hash-a"}

    @pytest.mark.asyncio
    async def test_domains_use_separate_files(self, tmp_path: Path) -> None:
        store = JsonLedgerStore(tmp_path)
        await store.save(_ledger("portfolio:wedding"))

        assert store.path_for("portfolio:wedding").name == "portfolio%3Awedding.sync-cache.json"
        assert (await store.load("portfolio:portrait")).entries == {}

    @pytest.mark.asyncio
    async def test_similar_category_names_do_not_share_a_file(self, tmp_path: Path) -> None:
        store = JsonLedgerStore(tmp_path)
        spaced = SyncLedger(domain="portfolio:a b")
        spaced.set("portfolio_images/a b/x.jpg", "x", "hash-x")
        underscored = SyncLedger(domain="portfolio:a_b")
        underscored.set("portfolio_images/a_b/y.jpg", "y", "hash-y")

        await store.save(spaced)
        await store.save(underscored)

        assert store.path_for("portfolio:a b") != store.path_for("portfolio:a_b")
        assert set((await store.load("portfolio:a b")).entries) == {"portfolio_images/a b/x.jpg"}
        assert set((await store.load("portfolio:a_b")).entries) == {"portfolio_images/a_b/y.jpg"}

    @pytest.mark.asyncio
    async def test_corrupt_file_is_treated_as_empty(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        store = JsonLedgerStore(tmp_path)
        store.path_for("hero").write_text("{truncated", encoding="utf-8")

        ledger = await store.load("hero")

        assert ledger.entries == {}
        assert "Corrupt sync ledger" in caplog.text


class TestSqlLedgerStore:
    @pytest.mark.asyncio
    async def test_save_then_load(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        store = SqlLedgerStore(session_factory)
        await store.save(_ledger())

        loaded = await store.load("hero")

        assert loaded.entries == _ledger().entries
        assert loaded.last_sync_timestamp is not None
        assert loaded.last_sync_timestamp.timestamp() == SYNCED_AT.timestamp()

    @pytest.mark.asyncio
    async def test_save_replaces_only_its_domain(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        db_session: AsyncSession,
    ) -> None:
        store = SqlLedgerStore(session_factory)
        await store.save(_ledger("hero"))
        other = SyncLedger(domain="portfolio:wedding")
        other.set("portfolio_images/wedding/w.jpg", "w", "hash-w")
        await store.save(other)

        shrunk = _ledger("hero")
        shrunk.remove("hero_images/b.jpg")
        await store.save(shrunk)

        result = await db_session.execute(
            select(SyncLedgerEntryRow.domain, SyncLedgerEntryRow.pathname).order_by(
                SyncLedgerEntryRow.pathname
            )
        )
        assert result.all() == [
            ("hero", "hero_images/a.jpg"),
            ("portfolio:wedding", "portfolio_images/wedding/w.jpg"),
        ]

    @pytest.mark.asyncio
    async def test_unknown_domain_is_empty(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        ledger = await SqlLedgerStore(session_factory).load("portfolio:none")
        assert ledger.entries == {}
        assert ledger.last_sync_timestamp is None


class TestFactory:
    def test_json_backend(self, tmp_path: Path) -> None:
        settings = Settings(_env_file=None, ledger_backend="json", ledger_dir=tmp_path)
        assert isinstance(create_ledger_store(settings), JsonLedgerStore)

    def test_database_backend_needs_session_factory(self) -> None:
        settings = Settings(_env_file=None, ledger_backend="database")
        with pytest.raises(ValueError, match="session factory"):
            create_ledger_store(settings)
