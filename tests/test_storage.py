"""Tests for storage manager."""

from pathlib import Path

import pytest

from work_item_sync.utils import StorageManager


class TestStorageManager:
    """Test StorageManager functionality."""

    def test_init_creates_directory(self, temp_config_dir: Path) -> None:
        """Test that initialization creates the config directory."""
        nested = temp_config_dir / "nested" / "dir"
        storage = StorageManager(nested)

        assert nested.exists()
        assert storage.settings_file == nested / "settings.yaml"

    def test_settings_persistence(self, storage_manager: StorageManager) -> None:
        """Test saving and loading settings."""
        settings = {"max_concurrent_syncs": 5, "log_level": "DEBUG"}

        storage_manager.save_settings(settings)

        assert storage_manager.load_settings() == settings

    def test_empty_settings_default(self, storage_manager: StorageManager) -> None:
        """Test that loading non-existent settings returns empty dict."""
        assert storage_manager.load_settings() == {}

    def test_mapping_definition_relative_to_config_dir(self, storage_manager: StorageManager) -> None:
        """Test that relative definition paths resolve against the config directory."""
        definition = {
            "type_mappings": [
                {
                    "source_type": "Bug",
                    "target_type": "Issue",
                    "fields": [{"source_field": "Title", "target_field": "summary"}],
                    "statuses": {"Active": "In Progress"},
                }
            ]
        }
        storage_manager.save_mapping_definition(storage_manager.config_dir / "bugs.yaml", definition)

        assert storage_manager.load_mapping_definition(Path("bugs.yaml")) == definition

    def test_missing_mapping_definition(self, storage_manager: StorageManager) -> None:
        """Test that a missing definition file raises."""
        with pytest.raises(FileNotFoundError):
            storage_manager.load_mapping_definition(Path("missing.yaml"))

    def test_token_persistence(self, storage_manager: StorageManager) -> None:
        """Test saving and loading tokens."""
        tokens = {"azure-devops": "pat-123", "tracker": "key-456"}

        storage_manager.save_tokens(tokens)

        assert storage_manager.load_tokens() == tokens
        assert storage_manager.tokens_file.stat().st_mode & 0o777 == 0o600

    def test_get_set_token(self, storage_manager: StorageManager) -> None:
        """Test getting and setting individual tokens."""
        storage_manager.set_token("tracker", "my_api_key")
        storage_manager.set_token("azure-devops", "pat")

        assert storage_manager.get_token("tracker") == "my_api_key"
        assert storage_manager.get_token("azure-devops") == "pat"

    def test_get_nonexistent_token(self, storage_manager: StorageManager) -> None:
        """Test getting a token that doesn't exist."""
        assert storage_manager.get_token("nonexistent") is None
