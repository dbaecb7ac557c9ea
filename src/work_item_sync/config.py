"""Configuration management for work item synchronizer."""

import logging
import os
from pathlib import Path
from typing import Any

from work_item_sync.utils.storage import StorageManager

DEFAULT_SETTINGS: dict[str, Any] = {
    "max_concurrent_syncs": 3,
    "run_timeout_seconds": 3600,
    "mapping_cache_ttl": 300,
    "log_level": "INFO",
}

DATABASE_URL_ENV = "WORK_ITEM_SYNC_DATABASE_URL"


class Config:
    """Manages application settings."""

    def __init__(self, config_dir: Path | None = None) -> None:
        """Initialize configuration.

        Args:
            config_dir: Directory for storing configuration.
        """
        self.storage = StorageManager(config_dir)
        self._settings = {**DEFAULT_SETTINGS, **self.storage.load_settings()}

    def get_settings(self) -> dict[str, Any]:
        """Get all settings, defaults included."""
        return dict(self._settings)

    def get(self, key: str, default: Any = None) -> Any:
        return self._settings.get(key, default)

    def update_setting(self, key: str, value: Any) -> None:
        """Persist a single setting.

        Args:
            key: Setting name.
            value: New value.
        """
        self._settings[key] = value
        stored = self.storage.load_settings()
        stored[key] = value
        self.storage.save_settings(stored)

    @property
    def database_url(self) -> str:
        """Database URL; the environment wins over settings.yaml."""
        url = os.environ.get(DATABASE_URL_ENV, "").strip()
        if url:
            return url
        if self._settings.get("database_url"):
            return self._settings["database_url"]
        return f"sqlite:///{self.storage.config_dir / 'work-item-sync.db'}"

    @property
    def max_concurrent_syncs(self) -> int:
        return int(self._settings["max_concurrent_syncs"])

    @property
    def run_timeout_seconds(self) -> float | None:
        """Wall-clock limit per run; 0 or empty disables the timeout."""
        value = self._settings.get("run_timeout_seconds")
        return float(value) if value else None

    @property
    def mapping_cache_ttl(self) -> float:
        return float(self._settings["mapping_cache_ttl"])

    @property
    def log_level(self) -> int:
        level = logging.getLevelName(str(self._settings["log_level"]).upper())
        return level if isinstance(level, int) else logging.INFO
