"""Shared test fixtures for the studio gallery backend."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from backend.config import Settings
from backend.exceptions import (
    BlobNotFoundError,
    BlobStoreError,
    FetchError,
    RetryableTransportError,
)
from backend.database import create_engine as create_db_engine
from backend.database import create_schema
from backend.main import create_app
from backend.services.blob_service import BlobStore, CachedBlob
from backend.services.drive_service import RemoteFile, RemoteFolder
from backend.services.hash_service import content_fingerprint
from backend.services.ledger_service import SqlLedgerStore
from backend.services.sync_service import HeroSyncService, PortfolioSyncService, SyncRunRegistry

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from pathlib import Path

TEST_CRON_SECRET = "test-cron-secret-0123456789"
TEST_ADMIN_TOKEN = "test-admin-token-with-at-least-32-characters"
ROOT_FOLDER_ID = "root-folder"
HERO_FOLDER_ID = "hero-folder"


class FakeRemoteSource:
    """In-memory remote folder tree implementing the RemoteSource protocol."""

    def __init__(self) -> None:
        self.folders: dict[str, RemoteFolder] = {}
        self.files: dict[str, list[RemoteFile]] = {}
        self.contents: dict[str, bytes] = {}
        self.failing_ids: set[str] = set()
        self.fail_listing = False
        self.fetch_calls: list[str] = []

    def add_folder(self, name: str) -> RemoteFolder:
        folder = RemoteFolder(id=f"folder-{name}", name=name)
        self.folders[name] = folder
        self.files.setdefault(folder.id, [])
        return folder

    def put_file(
        self, folder_id: str, file_id: str, name: str, data: bytes, *, with_md5: bool = True
    ) -> RemoteFile:
        """Add or replace a file; replacing keeps the id, like an in-place Drive update."""
        remote = RemoteFile(
            id=file_id, name=name, md5_checksum=content_fingerprint(data) if with_md5 else None
        )
        listing = [f for f in self.files.setdefault(folder_id, []) if f.id != file_id]
        listing.append(remote)
        self.files[folder_id] = listing
        self.contents[file_id] = data
        return remote

    def remove_file(self, folder_id: str, file_id: str) -> None:
        self.files[folder_id] = [f for f in self.files.get(folder_id, []) if f.id != file_id]
        self.contents.pop(file_id, None)

    def _check_listing(self) -> None:
        if self.fail_listing:
            raise RetryableTransportError("listing unavailable", status_code=503)

    async def find_folder(self, name: str, parent_id: str | None = None) -> RemoteFolder | None:
        self._check_listing()
        if name in self.folders:
            return self.folders[name]
        for folder_name, folder in self.folders.items():
            if folder_name.lower() == name.lower():
                return folder
        return None

    async def list_subfolders(self, folder_id: str | None = None) -> list[RemoteFolder]:
        self._check_listing()
        return list(self.folders.values())

    async def list_images(self, folder_id: str) -> list[RemoteFile]:
        self._check_listing()
        return list(self.files.get(folder_id, []))

    async def list_hero_files(self) -> list[RemoteFile]:
        return await self.list_images(HERO_FOLDER_ID)

    async def fetch_remote_file_bytes(self, file_id: str) -> bytes:
        self.fetch_calls.append(file_id)
        if file_id in self.failing_ids or file_id not in self.contents:
            raise FetchError(file_id, "simulated failure")
        return self.contents[file_id]


class MemoryBlobStore(BlobStore):
    """Blob cache kept in a dict, with upload/delete counters and failure injection."""

    def __init__(self) -> None:
        self.blobs: dict[str, bytes] = {}
        self.uploads: list[str] = []
        self.deletes: list[str] = []
        self.failing_uploads: set[str] = set()

    @property
    def location(self) -> str:
        return "memory"

    async def list(self, prefix: str) -> list[CachedBlob]:
        return [
            CachedBlob(pathname=p, url=f"https://blob.test/{p}")
            for p in sorted(self.blobs)
            if p.startswith(prefix)
        ]

    async def upload(
        self, data: bytes, pathname: str, content_type: str | None = None
    ) -> CachedBlob:
        if pathname in self.failing_uploads:
            raise BlobStoreError(f"simulated upload failure for {pathname}")
        self.blobs[pathname] = data
        self.uploads.append(pathname)
        return CachedBlob(pathname=pathname, url=f"https://blob.test/{pathname}")

    async def delete(self, pathname: str) -> None:
        if pathname not in self.blobs:
            raise BlobNotFoundError(pathname)
        del self.blobs[pathname]
        self.deletes.append(pathname)


class FakeClock:
    """Manually advanced clock returning epoch seconds."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@asynccontextmanager
async def create_test_client(
    settings: Settings,
    source: FakeRemoteSource,
    blob_store: BlobStore,
) -> AsyncGenerator[AsyncClient]:
    """Create an HTTP test client with a fully initialized app.

    Manually performs the work of the application lifespan (DB schema,
    stores, sync services) because ASGITransport does not trigger it.
    The remote source and blob store are the supplied fakes.
    """

    app = create_app(settings)
    settings.validate_runtime_security()

    engine, session_factory = create_db_engine(settings)
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.settings = settings

    await create_schema(engine)

    ledger_store = SqlLedgerStore(session_factory)
    registry = SyncRunRegistry()
    app.state.blob_store = blob_store
    app.state.drive_source = source
    app.state.ledger_store = ledger_store
    app.state.sync_registry = registry
    app.state.hero_sync_service = HeroSyncService(
        settings, source, blob_store, ledger_store, registry
    )
    app.state.portfolio_sync_service = PortfolioSyncService(
        settings, source, blob_store, ledger_store, registry
    )

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    await engine.dispose()


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings with temporary paths and no cooldown."""
    db_path = tmp_path / "test.db"
    return Settings(
        debug=True,
        database_url=f"sqlite+aiosqlite:///{db_path}",
        cron_secret=TEST_CRON_SECRET,
        admin_token=TEST_ADMIN_TOKEN,
        google_drive_folder_id=ROOT_FOLDER_ID,
        google_drive_hero_folder_id=HERO_FOLDER_ID,
        local_blob_dir=tmp_path / "public",
        ledger_dir=tmp_path / "ledger",
        hero_sync_cooldown_seconds=0,
        portfolio_sync_cooldown_seconds=0,
        retry_initial_delay_seconds=0,
        portfolio_categories=["wedding", "portrait"],
    )


@pytest.fixture
def fake_source() -> FakeRemoteSource:
    return FakeRemoteSource()


@pytest.fixture
def memory_blob_store() -> MemoryBlobStore:
    return MemoryBlobStore()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def db_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine]:
    """Create a test database engine with the schema in place."""
    engine = create_async_engine(
        test_settings.database_url,
        echo=False,
    )
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session
