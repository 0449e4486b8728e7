"""Tests for application configuration."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from backend.config import DEFAULT_PORTFOLIO_CATEGORIES, Settings


class TestSettings:
    def test_default_settings(self) -> None:
        s = Settings(_env_file=None)
        assert s.debug is False
        assert s.port == 8000
        assert s.hero_sync_cooldown_seconds == 86400
        assert s.portfolio_sync_cooldown_seconds == 86400
        assert s.retry_max_attempts == 3
        assert s.retry_initial_delay_seconds == 2.0
        assert s.ledger_backend == "database"
        assert s.portfolio_categories == DEFAULT_PORTFOLIO_CATEGORIES
        assert s.build_environment is False

    def test_settings_from_fixture(self, test_settings: Settings) -> None:
        assert test_settings.debug is True
        assert test_settings.hero_sync_cooldown_seconds == 0

    def test_private_key_newlines_are_unescaped(self) -> None:
        s = Settings(_env_file=None, google_private_key="-----BEGIN-----\\nabc\\n-----END-----")
        assert s.google_private_key == "-----BEGIN-----\nabc\n-----END-----"

    def test_categories_are_normalized(self) -> None:
        s = Settings(_env_file=None, portfolio_categories=[" Wedding", "wedding", "", "SPORT"])
        assert s.portfolio_categories == ["wedding", "sport"]

    def test_environment_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BUILD_ENVIRONMENT", "true")
        monkeypatch.setenv("HERO_SYNC_COOLDOWN_SECONDS", "60")
        monkeypatch.setenv("PORTFOLIO_CATEGORIES", '["wedding", "baby"]')
        s = Settings(_env_file=None)
        assert s.build_environment is True
        assert s.hero_sync_cooldown_seconds == 60
        assert s.portfolio_categories == ["wedding", "baby"]

    def test_drive_configured(self) -> None:
        assert Settings(_env_file=None).drive_configured is False
        s = Settings(
            _env_file=None,
            google_service_account_email="a@b.iam.gserviceaccount.com",
            google_private_key="key",
        )
        assert s.drive_configured is True


class TestRuntimeSecurity:
    def test_debug_skips_validation(self) -> None:
        Settings(_env_file=None, debug=True).validate_runtime_security()

    def test_production_requires_secrets(self) -> None:
        s = Settings(_env_file=None, debug=False)
        with pytest.raises(ValueError, match="CRON_SECRET") as exc_info:
            s.validate_runtime_security()
        assert "ADMIN_TOKEN" in str(exc_info.value)
        assert "TRUSTED_HOSTS" in str(exc_info.value)

    def test_production_accepts_strong_settings(self) -> None:
        Settings(
            _env_file=None,
            debug=False,
            cron_secret="c" * 16,
            admin_token="a" * 32,
            trusted_hosts=["studio.example.com"],
        ).validate_runtime_security()


class TestCliEntry:
    def test_cli_entry_uses_app_settings(self) -> None:
        """cli_entry() should use the global app's settings, not create a new Settings()."""
        from backend.main import app, cli_entry

        original_settings = getattr(app.state, "settings", None)
        app.state.settings = Settings(_env_file=None, host="127.0.0.1", port=9999, debug=True)

        try:
            with patch("uvicorn.run") as mock_run:
                cli_entry()

            mock_run.assert_called_once_with(
                "backend.main:app",
                host="127.0.0.1",
                port=9999,
                reload=True,
            )
        finally:
            app.state.settings = original_settings
