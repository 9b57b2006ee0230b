"""Configuration management for arkive-sync.

This module handles loading and saving application configuration to/from
a JSON file. The config directory can be customized via CLI argument.
"""

from __future__ import annotations

import copy
import json
import logging
import socket
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

__all__ = ["Config", "DEFAULT_SYNC_CONFIG", "DEFAULT_SERVER_CONFIG"]

DEFAULT_CONFIG_DIR = Path.home() / ".config" / "arkive-sync"

DEFAULT_SYNC_CONFIG: Dict[str, Any] = {
    "remote_url": None,
    "drain_interval_seconds": 10,
    "max_retries": 3,
    "max_operation_attempts": 10,
    "poll_interval_seconds": 2,
    "request_timeout": 30,
    "resubscribe": "replace",
    "sort_field": None,
}

DEFAULT_SERVER_CONFIG: Dict[str, Any] = {
    "host": "127.0.0.1",
    "port": 8384,
    "data_file": None,
}


class Config:
    """Manages application configuration stored in JSON format.

    Attributes:
        config_dir: Path to the configuration directory
        config_file: Path to config.json
        config_data: The loaded configuration
    """

    def __init__(self, config_dir: Optional[Path] = None) -> None:
        """Initialize configuration manager.

        Args:
            config_dir: Custom config directory path. If None, uses ~/.config/arkive-sync/
        """
        self.config_dir = Path(config_dir) if config_dir else DEFAULT_CONFIG_DIR
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.config_file = self.config_dir / "config.json"
        self.config_data = self.load_config()

    def _default_config(self) -> Dict[str, Any]:
        return {
            "database_file": str(self.config_dir / "local.db"),
            "device_name": socket.gethostname(),
            "sync": copy.deepcopy(DEFAULT_SYNC_CONFIG),
            "server": copy.deepcopy(DEFAULT_SERVER_CONFIG),
        }

    def load_config(self) -> Dict[str, Any]:
        """Load configuration from file, creating it with defaults if missing.

        Unknown keys are kept. Missing keys are filled from the defaults.
        Invalid JSON falls back to the defaults without overwriting the file.
        """
        config = self._default_config()
        if not self.config_file.exists():
            self.save_config(config)
            return config

        try:
            with open(self.config_file, "r", encoding="utf-8") as f:
                loaded = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Invalid config file {self.config_file}, using defaults: {e}")
            return config

        if not isinstance(loaded, dict):
            logger.warning(f"Config file {self.config_file} is not an object, using defaults")
            return config

        for key, value in loaded.items():
            if key in ("sync", "server") and isinstance(value, dict):
                config[key].update(value)
            else:
                config[key] = value
        return config

    def save_config(self, config: Optional[Dict[str, Any]] = None) -> None:
        """Write configuration to file."""
        if config is not None:
            self.config_data = config
        with open(self.config_file, "w", encoding="utf-8") as f:
            json.dump(self.config_data, f, indent=2)

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value."""
        value = self.config_data.get(key)
        return value if value is not None else default

    def set(self, key: str, value: Any) -> None:
        """Set a configuration value and save to file."""
        self.config_data[key] = value
        self.save_config()

    def get_config_dir(self) -> Path:
        """Get the configuration directory path."""
        return self.config_dir

    def get_database_file(self) -> Path:
        """Get the path of the local storage database."""
        return Path(self.get("database_file", str(self.config_dir / "local.db")))

    def get_device_name(self) -> str:
        """Get the human-readable device name."""
        return str(self.get("device_name", socket.gethostname()))

    def set_device_name(self, name: str) -> None:
        """Set the device name."""
        self.set("device_name", name)

    # ===== Sync Configuration Methods =====

    def get_sync_config(self) -> Dict[str, Any]:
        """Get sync configuration merged over the defaults."""
        merged = copy.deepcopy(DEFAULT_SYNC_CONFIG)
        merged.update(self.config_data.get("sync") or {})
        return merged

    def set_sync_value(self, key: str, value: Any) -> None:
        """Set one key of the sync section."""
        sync = self.config_data.setdefault("sync", {})
        sync[key] = value
        self.save_config()

    def get_remote_url(self) -> Optional[str]:
        """Get the URL of the remote store server (None for none)."""
        return self.get_sync_config().get("remote_url")

    def get_server_config(self) -> Dict[str, Any]:
        """Get store server configuration merged over the defaults."""
        merged = copy.deepcopy(DEFAULT_SERVER_CONFIG)
        merged.update(self.config_data.get("server") or {})
        if not merged.get("data_file"):
            merged["data_file"] = str(self.config_dir / "store.json")
        return merged
