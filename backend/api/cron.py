"""Cron-triggered sync endpoints for external schedulers."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Annotated

from fastapi import APIRouter, Depends

from backend.api.deps import (
    get_hero_sync_service,
    get_portfolio_sync_service,
    get_settings,
    verify_cron_secret,
)
from backend.config import Settings
from backend.exceptions import InternalServerError
from backend.schemas.sync import CategorySyncResult, CronPortfolioSyncResponse, CronSyncResponse
from backend.services.sync_service import HeroSyncService, PortfolioSyncService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/cron",
    tags=["cron"],
    dependencies=[Depends(verify_cron_secret)],
)


@router.get("/sync-hero", response_model=CronSyncResponse)
async def cron_sync_hero(
    service: Annotated[HeroSyncService, Depends(get_hero_sync_service)],
) -> CronSyncResponse:
    """Run the hero sync. Skipped or failed runs still answer 200; see logs."""
    started = time.monotonic()
    try:
        success = await service.sync_hero_images()
    except Exception as exc:
        raise InternalServerError(f"Hero sync crashed: {exc}") from exc
    duration_ms = (time.monotonic() - started) * 1000

    if success:
        logger.info("Cron hero sync completed in %.0fms", duration_ms)
        return CronSyncResponse(success=True, message="Hero images sync completed successfully")
    logger.warning("Cron hero sync failed or was skipped after %.0fms", duration_ms)
    return CronSyncResponse(
        success=False,
        message="Hero images sync process executed; outcome logged (may be skipped or failed).",
    )


@router.get("/sync-all-portfolio", response_model=CronPortfolioSyncResponse)
async def cron_sync_all_portfolio(
    service: Annotated[PortfolioSyncService, Depends(get_portfolio_sync_service)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> CronPortfolioSyncResponse:
    """Sync every configured category concurrently; each category has its own gate."""
    categories = settings.portfolio_categories
    started = time.monotonic()
    outcomes = await asyncio.gather(
        *(service.sync_portfolio(category) for category in categories),
        return_exceptions=True,
    )

    results: list[CategorySyncResult] = []
    for category, outcome in zip(categories, outcomes, strict=True):
        if isinstance(outcome, BaseException):
            if not isinstance(outcome, Exception):
                raise outcome
            logger.error("Cron sync of category %s crashed: %s", category, outcome, exc_info=outcome)
            results.append(CategorySyncResult(category=category, status="error", reason=str(outcome)))
        elif outcome:
            results.append(CategorySyncResult(category=category, status="success"))
        else:
            results.append(
                CategorySyncResult(
                    category=category,
                    status="failed_or_skipped",
                    reason="See service logs for details",
                )
            )

    all_succeeded = all(r.status == "success" for r in results)
    duration_ms = (time.monotonic() - started) * 1000
    if all_succeeded:
        logger.info("Cron portfolio sync of %d categories completed in %.0fms", len(results), duration_ms)
        message = "All portfolio categories synced successfully or were up-to-date."
    else:
        logger.warning(
            "Cron portfolio sync finished with failures or skips in %.0fms: %s",
            duration_ms,
            [r.category for r in results if r.status != "success"],
        )
        message = (
            "Portfolio sync process executed; some categories may have failed or been skipped."
        )
    return CronPortfolioSyncResponse(success=all_succeeded, message=message, results=results)
