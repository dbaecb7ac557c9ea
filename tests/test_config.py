"""Tests for configuration management."""

import logging
from pathlib import Path

import pytest

from work_item_sync.config import DATABASE_URL_ENV, Config


class TestConfig:
    """Test Config functionality."""

    def test_defaults(self, config: Config, temp_config_dir: Path) -> None:
        """Test defaults when no settings file exists."""
        assert config.max_concurrent_syncs == 3
        assert config.run_timeout_seconds == 3600.0
        assert config.mapping_cache_ttl == 300.0
        assert config.log_level == logging.INFO
        assert config.database_url == f"sqlite:///{temp_config_dir / 'work-item-sync.db'}"

    def test_update_setting_persists(self, config: Config, temp_config_dir: Path) -> None:
        """Test that updated settings survive a reload."""
        config.update_setting("max_concurrent_syncs", 8)
        config.update_setting("log_level", "debug")

        reloaded = Config(temp_config_dir)
        assert reloaded.max_concurrent_syncs == 8
        assert reloaded.log_level == logging.DEBUG
        assert reloaded.get("mapping_cache_ttl") == 300

    def test_zero_timeout_disables_it(self, config: Config) -> None:
        """Test that a zero run timeout means no timeout."""
        config.update_setting("run_timeout_seconds", 0)

        assert config.run_timeout_seconds is None

    def test_unknown_log_level_falls_back(self, config: Config) -> None:
        """Test that an unknown log level falls back to INFO."""
        config.update_setting("log_level", "chatty")

        assert config.log_level == logging.INFO

    def test_database_url_from_settings(self, config: Config) -> None:
        """Test database URL from settings.yaml."""
        config.update_setting("database_url", "postgresql://localhost/sync")

        assert config.database_url == "postgresql://localhost/sync"

    def test_database_url_environment_wins(self, config: Config, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that the environment variable overrides settings."""
        config.update_setting("database_url", "postgresql://localhost/sync")
        monkeypatch.setenv(DATABASE_URL_ENV, "sqlite:///override.db")

        assert config.database_url == "sqlite:///override.db"

    def test_get_settings_returns_copy(self, config: Config) -> None:
        """Test that callers cannot mutate settings through get_settings."""
        settings = config.get_settings()
        settings["max_concurrent_syncs"] = 99

        assert config.max_concurrent_syncs == 3
