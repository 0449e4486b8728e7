"""FastAPI application entry point."""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError
from starlette.middleware.trustedhost import TrustedHostMiddleware

from backend.api.admin_sync import router as admin_sync_router
from backend.api.cron import router as cron_router
from backend.api.health import router as health_router
from backend.api.images import router as images_router
from backend.config import Settings
from backend.database import create_engine, create_schema
from backend.exceptions import (
    BlobStoreError,
    InternalServerError,
    RemoteSourceError,
    SyncConfigurationError,
)
from backend.services.blob_service import create_blob_store
from backend.services.drive_service import create_drive_source
from backend.services.ledger_service import create_ledger_store
from backend.services.sync_service import HeroSyncService, PortfolioSyncService, SyncRunRegistry

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool) -> None:
    """Configure application logging."""
    level = logging.DEBUG if debug else logging.INFO
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        stream=sys.stdout,
        force=True,
    )
    # Quiet noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.INFO if debug else logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if debug else logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan: startup and shutdown."""
    settings: Settings = app.state.settings
    settings.validate_runtime_security()
    _configure_logging(settings.debug)
    logger.info("Starting studio gallery backend (debug=%s)", settings.debug)

    try:
        engine, session_factory = create_engine(settings)
        app.state.engine = engine
        app.state.session_factory = session_factory
    except Exception as exc:
        logger.critical(
            "Failed to initialize database: %s. Check database path and permissions.", exc
        )
        raise

    try:
        await create_schema(engine)
    except Exception as exc:
        logger.critical("Failed to create database schema: %s.", exc)
        raise

    if not settings.drive_configured:
        logger.warning("Google service account credentials are not set; syncs will fail")

    try:
        blob_store = create_blob_store(settings)
    except Exception as exc:
        logger.critical("Failed to initialize blob storage: %s.", exc)
        raise
    drive_source = create_drive_source(settings)
    ledger_store = create_ledger_store(settings, session_factory)
    registry = SyncRunRegistry()

    app.state.blob_store = blob_store
    app.state.drive_source = drive_source
    app.state.ledger_store = ledger_store
    app.state.sync_registry = registry
    app.state.hero_sync_service = HeroSyncService(
        settings, drive_source, blob_store, ledger_store, registry
    )
    app.state.portfolio_sync_service = PortfolioSyncService(
        settings, drive_source, blob_store, ledger_store, registry
    )
    logger.info("Blob cache: %s; ledger backend: %s", blob_store.location, settings.ledger_backend)

    yield

    try:
        await drive_source.aclose()
    except Exception as exc:
        logger.error("Error during Drive client shutdown: %s", exc, exc_info=True)

    try:
        await blob_store.aclose()
    except Exception as exc:
        logger.error("Error during blob store shutdown: %s", exc, exc_info=True)

    try:
        await engine.dispose()
    except Exception as exc:
        logger.error("Error during engine disposal: %s", exc, exc_info=True)

    logger.info("Studio gallery backend stopped")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = Settings()

    docs_enabled = settings.debug or settings.expose_docs

    app = FastAPI(
        title="Studio Gallery",
        description="Google Drive to blob cache image sync for a photography site",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
        openapi_url="/openapi.json" if docs_enabled else None,
    )
    app.state.settings = settings

    app.add_middleware(GZipMiddleware, minimum_size=500)

    trusted_hosts = settings.trusted_hosts or (
        ["localhost", "127.0.0.1", "::1", "test", "testserver"] if settings.debug else []
    )
    if trusted_hosts:
        app.add_middleware(TrustedHostMiddleware, allowed_hosts=trusted_hosts)

    app.include_router(health_router)
    app.include_router(cron_router)
    app.include_router(admin_sync_router)
    app.include_router(images_router)

    # Global exception handlers: safety net for unhandled exceptions

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = []
        for err in exc.errors():
            loc = err.get("loc", ())
            field = str(loc[-1]) if loc else "unknown"
            errors.append({"field": field, "message": err.get("msg", "Invalid value")})
        logger.warning(
            "RequestValidationError in %s %s: %s",
            request.method,
            request.url.path,
            errors,
        )
        return JSONResponse(status_code=422, content={"detail": errors})

    @app.exception_handler(InternalServerError)
    async def internal_server_error_handler(
        request: Request, exc: InternalServerError
    ) -> JSONResponse:
        logger.error(
            "InternalServerError in %s %s: %s",
            request.method,
            request.url.path,
            exc,
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    @app.exception_handler(SyncConfigurationError)
    async def sync_configuration_error_handler(
        request: Request, exc: SyncConfigurationError
    ) -> JSONResponse:
        logger.error(
            "SyncConfigurationError in %s %s: %s", request.method, request.url.path, exc
        )
        return JSONResponse(
            status_code=503,
            content={"detail": "Sync is not configured"},
        )

    @app.exception_handler(RemoteSourceError)
    async def remote_source_error_handler(
        request: Request, exc: RemoteSourceError
    ) -> JSONResponse:
        logger.error(
            "RemoteSourceError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc
        )
        return JSONResponse(
            status_code=502,
            content={"detail": "Remote content source unavailable"},
        )

    @app.exception_handler(BlobStoreError)
    async def blob_store_error_handler(request: Request, exc: BlobStoreError) -> JSONResponse:
        logger.error(
            "BlobStoreError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc
        )
        return JSONResponse(
            status_code=502,
            content={"detail": "Image storage unavailable"},
        )

    @app.exception_handler(OSError)
    async def os_error_handler(request: Request, exc: OSError) -> JSONResponse:
        if isinstance(exc, (ConnectionError, TimeoutError)):
            raise exc
        logger.error("OSError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={"detail": "Storage operation failed"},
        )

    @app.exception_handler(OperationalError)
    async def operational_error_handler(request: Request, exc: OperationalError) -> JSONResponse:
        logger.error(
            "OperationalError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc
        )
        return JSONResponse(
            status_code=503,
            content={"detail": "Database temporarily unavailable"},
        )

    return app


app = create_app()


def cli_entry() -> None:
    """CLI entry point for running the server."""
    import uvicorn

    settings: Settings = app.state.settings
    uvicorn.run(
        "backend.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
