"""Sync trigger and status request/response schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class CronSyncResponse(BaseModel):
    """Outcome of a cron-triggered hero sync."""

    success: bool
    message: str


class CategorySyncResult(BaseModel):
    """Outcome of one category within a multi-category sync."""

    category: str
    status: Literal["success", "failed_or_skipped", "error"]
    reason: str | None = None


class CronPortfolioSyncResponse(BaseModel):
    """Outcome of the cron-triggered sync of all portfolio categories."""

    success: bool
    message: str
    results: list[CategorySyncResult]


class AdminSyncRequest(BaseModel):
    """Request to trigger a sync on demand."""

    type: Literal["hero", "portfolio", "all"]
    category: str | None = Field(default=None, min_length=1, max_length=100)
    force: bool = False


class AdminSyncResponse(BaseModel):
    """Outcome of an on-demand sync."""

    success: bool
    message: str
    results: dict[str, bool] = Field(default_factory=dict)


class DomainStatusResponse(BaseModel):
    """Run state and last completed sync of one sync domain."""

    domain: str
    is_running: bool
    last_attempt_timestamp: datetime | None = None
    last_sync_timestamp: datetime | None = None


class SyncStatusResponse(BaseModel):
    """Status of every known sync domain."""

    domains: list[DomainStatusResponse]
