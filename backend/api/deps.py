"""Shared API dependencies: settings, DB session, sync services, trigger auth."""

from __future__ import annotations

import secrets
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, HTTPException, Query, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from backend.config import Settings
from backend.services.blob_service import BlobStore
from backend.services.sync_service import HeroSyncService, PortfolioSyncService

security = HTTPBearer(auto_error=False)


def get_settings(request: Request) -> Settings:
    """Get application settings from app state."""
    settings: Settings = request.app.state.settings
    return settings


async def get_session(request: Request) -> AsyncGenerator[AsyncSession]:
    """Get a database session."""
    session_factory = request.app.state.session_factory
    async with session_factory() as session:
        yield session


def get_blob_store(request: Request) -> BlobStore:
    """Get the blob cache from app state."""
    store: BlobStore = request.app.state.blob_store
    return store


def get_hero_sync_service(request: Request) -> HeroSyncService:
    """Get the hero sync orchestrator from app state."""
    service: HeroSyncService = request.app.state.hero_sync_service
    return service


def get_portfolio_sync_service(request: Request) -> PortfolioSyncService:
    """Get the portfolio sync orchestrator from app state."""
    service: PortfolioSyncService = request.app.state.portfolio_sync_service
    return service


def _matches(provided: str | None, expected: str) -> bool:
    if not provided or not expected:
        return False
    return secrets.compare_digest(provided.encode(), expected.encode())


async def verify_cron_secret(
    settings: Annotated[Settings, Depends(get_settings)],
    secret: Annotated[str | None, Query()] = None,
) -> None:
    """Reject cron calls whose ``secret`` query parameter does not match. Raises 401."""
    if not _matches(secret, settings.cron_secret):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )


async def require_admin_token(
    settings: Annotated[Settings, Depends(get_settings)],
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)] = None,
) -> None:
    """Require the admin bearer token. Raises 401 when missing, 403 when wrong."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not _matches(credentials.credentials, settings.admin_token):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
