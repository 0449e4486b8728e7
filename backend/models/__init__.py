"""SQLAlchemy ORM models for the studio gallery backend."""

from backend.models.base import Base
from backend.models.sync import SyncLedgerEntryRow, SyncLedgerStateRow

__all__ = [
    "Base",
    "SyncLedgerEntryRow",
    "SyncLedgerStateRow",
]
