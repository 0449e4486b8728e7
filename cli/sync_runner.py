"""One-shot sync runner for external schedulers (cron, systemd timers, CI)."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from backend.config import Settings
from backend.database import create_engine, create_schema
from backend.services.blob_service import create_blob_store
from backend.services.drive_service import create_drive_source
from backend.services.ledger_service import create_ledger_store
from backend.services.sync_service import HeroSyncService, PortfolioSyncService, SyncRunRegistry

logger = logging.getLogger("cli.sync_runner")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sync_runner",
        description="Mirror Google Drive image folders into the blob cache",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("hero", help="Sync the hero images folder").add_argument(
        "--force", action="store_true", help="Ignore the cooldown window"
    )
    portfolio = subparsers.add_parser("portfolio", help="Sync portfolio categories")
    portfolio.add_argument(
        "--category", "-c", help="Single category to sync (default: every category folder)"
    )
    portfolio.add_argument("--force", action="store_true", help="Ignore the cooldown window")
    return parser


async def run(args: argparse.Namespace, settings: Settings) -> bool:
    """Build the sync stack from settings, run one sync, and tear it down."""
    session_factory = None
    engine = None
    if settings.ledger_backend == "database":
        engine, session_factory = create_engine(settings)
        await create_schema(engine)

    drive_source = create_drive_source(settings)
    blob_store = create_blob_store(settings)
    ledger_store = create_ledger_store(settings, session_factory)
    registry = SyncRunRegistry()
    try:
        if args.command == "hero":
            service = HeroSyncService(settings, drive_source, blob_store, ledger_store, registry)
            return await service.sync_hero_images(force=args.force)
        portfolio = PortfolioSyncService(
            settings, drive_source, blob_store, ledger_store, registry
        )
        return await portfolio.sync_portfolio(args.category, force=args.force)
    finally:
        await drive_source.aclose()
        await blob_store.aclose()
        if engine is not None:
            await engine.dispose()


def main(argv: list[str] | None = None) -> None:
    """CLI entry point. Exits 0 when the sync completed, 1 otherwise."""
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        ok = asyncio.run(run(args, Settings()))
    except ValueError as exc:
        logger.error("Sync could not start: %s", exc)
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)

    if ok:
        print(f"{args.command} sync completed")
        sys.exit(0)
    print(f"{args.command} sync failed or was skipped; see log output", file=sys.stderr)
    sys.exit(1)


if __name__ == "__main__":
    main()
