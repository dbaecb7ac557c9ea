"""Storage and configuration management for work item synchronizer."""

import json
from pathlib import Path
from typing import Any

import yaml


class StorageManager:
    """Manages settings, mapping definitions, and token storage."""

    def __init__(self, config_dir: Path | None = None) -> None:
        """Initialize storage manager.

        Args:
            config_dir: Directory to store configuration. Defaults to ~/.work-item-sync/
        """
        self.config_dir = config_dir or Path.home() / ".work-item-sync"
        self.config_dir.mkdir(parents=True, exist_ok=True)

        self.settings_file = self.config_dir / "settings.yaml"
        self.tokens_file = self.config_dir / "tokens.json"

    def load_settings(self) -> dict[str, Any]:
        """Load application settings.

        Returns:
            Settings dictionary.
        """
        if self.settings_file.exists():
            with open(self.settings_file) as f:
                return yaml.safe_load(f) or {}
        return {}

    def save_settings(self, settings: dict[str, Any]) -> None:
        """Save application settings.

        Args:
            settings: Settings to save.
        """
        with open(self.settings_file, "w") as f:
            yaml.dump(settings, f, default_flow_style=False, sort_keys=False)

    def load_mapping_definition(self, path: Path) -> dict[str, Any]:
        """Load a type/field/status mapping definition file.

        Args:
            path: YAML file, absolute or relative to the config directory.

        Returns:
            Mapping definition dictionary.

        Raises:
            FileNotFoundError: If the file does not exist.
        """
        if not path.is_absolute() and not path.exists():
            path = self.config_dir / path
        with open(path) as f:
            return yaml.safe_load(f) or {}

    def save_mapping_definition(self, path: Path, definition: dict[str, Any]) -> None:
        """Write a mapping definition file.

        Args:
            path: Destination YAML file.
            definition: Mapping definition to write.
        """
        with open(path, "w") as f:
            yaml.dump(definition, f, default_flow_style=False, sort_keys=False)

    def load_tokens(self) -> dict[str, str]:
        """Load cached connector tokens.

        Returns:
            Dictionary of connector names to tokens.
        """
        if self.tokens_file.exists():
            with open(self.tokens_file) as f:
                return json.load(f)
        return {}

    def save_tokens(self, tokens: dict[str, str]) -> None:
        """Save connector tokens.

        Args:
            tokens: Dictionary of connector names to tokens.
        """
        self.tokens_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.tokens_file, "w") as f:
            json.dump(tokens, f)
        # user read/write only
        self.tokens_file.chmod(0o600)

    def get_token(self, connector: str) -> str | None:
        """Get cached token for a connector.

        Args:
            connector: Connector name.

        Returns:
            Token if available, None otherwise.
        """
        tokens = self.load_tokens()
        return tokens.get(connector)

    def set_token(self, connector: str, token: str) -> None:
        """Save token for a connector.

        Args:
            connector: Connector name.
            token: API token.
        """
        tokens = self.load_tokens()
        tokens[connector] = token
        self.save_tokens(tokens)
