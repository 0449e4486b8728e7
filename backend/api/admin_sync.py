"""Admin-triggered sync endpoints."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException

from backend.api.deps import (
    get_hero_sync_service,
    get_portfolio_sync_service,
    require_admin_token,
)
from backend.schemas.sync import (
    AdminSyncRequest,
    AdminSyncResponse,
    DomainStatusResponse,
    SyncStatusResponse,
)
from backend.services.sync_service import (
    HERO_DOMAIN,
    HeroSyncService,
    PortfolioSyncService,
    normalize_category,
    portfolio_domain,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/admin/sync",
    tags=["admin"],
    dependencies=[Depends(require_admin_token)],
)


@router.post("", response_model=AdminSyncResponse)
async def trigger_sync(
    body: AdminSyncRequest,
    hero_service: Annotated[HeroSyncService, Depends(get_hero_sync_service)],
    portfolio_service: Annotated[PortfolioSyncService, Depends(get_portfolio_sync_service)],
) -> AdminSyncResponse:
    """Run a hero and/or portfolio sync now."""
    category: str | None = None
    if body.category is not None:
        if body.type == "hero":
            raise HTTPException(status_code=400, detail="Hero sync does not take a category")
        try:
            category = normalize_category(body.category)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="Invalid category") from exc

    logger.info("Admin sync requested: type=%s category=%s force=%s", body.type, category, body.force)
    results: dict[str, bool] = {}
    if body.type in ("hero", "all"):
        results[HERO_DOMAIN] = await hero_service.sync_hero_images(force=body.force)
    if body.type in ("portfolio", "all"):
        key = portfolio_domain(category) if category else "portfolio"
        results[key] = await portfolio_service.sync_portfolio(category, force=body.force)

    success = all(results.values())
    message = (
        "Sync completed successfully"
        if success
        else "Sync executed; some domains failed or were skipped. Check logs."
    )
    return AdminSyncResponse(success=success, message=message, results=results)


@router.get("/status", response_model=SyncStatusResponse)
async def sync_status(
    hero_service: Annotated[HeroSyncService, Depends(get_hero_sync_service)],
    portfolio_service: Annotated[PortfolioSyncService, Depends(get_portfolio_sync_service)],
) -> SyncStatusResponse:
    """Report run state and last completed sync for every known domain."""
    statuses = [*await hero_service.status(), *await portfolio_service.status()]
    return SyncStatusResponse(
        domains=[
            DomainStatusResponse(
                domain=s.domain,
                is_running=s.is_running,
                last_attempt_timestamp=s.last_attempt_timestamp,
                last_sync_timestamp=s.last_sync_timestamp,
            )
            for s in statuses
        ]
    )
