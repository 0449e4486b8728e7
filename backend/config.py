"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_PORTFOLIO_CATEGORIES = [
    "wedding",
    "portrait",
    "lifestyle",
    "landscape",
    "animals",
    "sport",
]


class Settings(BaseSettings):
    """Studio gallery application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    debug: bool = False
    expose_docs: bool = False

    # Database
    database_url: str = "sqlite+aiosqlite:///data/db/studio.db"

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)
    trusted_hosts: list[str] = Field(default_factory=list)

    # Trigger secrets
    cron_secret: str = ""
    admin_token: str = ""

    # Google Drive
    google_service_account_email: str = ""
    google_private_key: str = ""
    google_drive_folder_id: str = ""
    google_drive_hero_folder_id: str = ""
    google_drive_timeout_seconds: float = Field(default=30.0, gt=0)

    # Blob cache
    blob_read_write_token: str = ""
    blob_api_url: str = "https://blob.vercel-storage.com"
    local_blob_dir: Path = Path("./public")
    local_blob_base_url: str = "/"

    # Sync
    build_environment: bool = False
    hero_sync_cooldown_seconds: int = Field(default=86400, ge=0)
    portfolio_sync_cooldown_seconds: int = Field(default=86400, ge=0)
    sync_max_parallel_transfers: int = Field(default=4, ge=1, le=32)
    retry_max_attempts: int = Field(default=3, ge=1, le=10)
    retry_initial_delay_seconds: float = Field(default=2.0, ge=0)
    ledger_backend: Literal["database", "json"] = "database"
    ledger_dir: Path = Path("./data/ledger")
    portfolio_categories: list[str] = Field(
        default_factory=lambda: list(DEFAULT_PORTFOLIO_CATEGORIES)
    )

    @field_validator("google_private_key")
    @classmethod
    def _unescape_private_key(cls, value: str) -> str:
        # Keys pasted into single-line env vars carry literal "\n" sequences.
        return value.replace("\\n", "\n")

    @field_validator("portfolio_categories")
    @classmethod
    def _normalize_categories(cls, value: list[str]) -> list[str]:
        seen: list[str] = []
        for raw in value:
            name = raw.strip().lower()
            if name and name not in seen:
                seen.append(name)
        return seen

    @property
    def drive_configured(self) -> bool:
        """Return True when service account credentials are present."""
        return bool(self.google_service_account_email and self.google_private_key)

    def validate_runtime_security(self) -> None:
        """Validate security-critical production settings."""
        if self.debug:
            return

        violations: list[str] = []
        if len(self.cron_secret) < 16:
            violations.append("CRON_SECRET must be set to a high-entropy value (>=16 chars)")
        if len(self.admin_token) < 32:
            violations.append("ADMIN_TOKEN must be set to a high-entropy value (>=32 chars)")
        if not self.trusted_hosts:
            violations.append("TRUSTED_HOSTS must be configured in production")

        if violations:
            joined = "; ".join(violations)
            raise ValueError(f"Insecure production configuration: {joined}")
