"""Sync ledger models."""

from __future__ import annotations

from sqlalchemy import Index, Text
from sqlalchemy.orm import Mapped, mapped_column

from backend.models.base import Base


class SyncLedgerEntryRow(Base):
    """One cached blob recorded by the last completed sync of a domain."""

    __tablename__ = "sync_ledger_entries"
    __table_args__ = (Index("ix_sync_ledger_entries_domain", "domain"),)

    domain: Mapped[str] = mapped_column(Text, primary_key=True)
    pathname: Mapped[str] = mapped_column(Text, primary_key=True)
    remote_id: Mapped[str] = mapped_column(Text, nullable=False)
    content_hash: Mapped[str] = mapped_column(Text, nullable=False)
    synced_at: Mapped[str] = mapped_column(Text, nullable=False)


class SyncLedgerStateRow(Base):
    """Per-domain timestamp of the last completed sync."""

    __tablename__ = "sync_ledger_state"

    domain: Mapped[str] = mapped_column(Text, primary_key=True)
    last_sync_timestamp: Mapped[str | None] = mapped_column(Text, nullable=True)
