"""Configuration management for SnipSync.

This module handles loading and saving server configuration to/from a JSON
file. The config directory can be customized via CLI argument. Environment
variables override the file for deployment:

    SNIPSYNC_DATABASE_FILE  path of the SQLite database
    SNIPSYNC_HOST           bind address
    SNIPSYNC_PORT           bind port
    SNIPSYNC_API_KEYS       comma-separated API keys
    SNIPSYNC_LOG_LEVEL      logging level name

CRITICAL: This module must have NO Flask dependencies.
"""

from __future__ import annotations

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from .validation import ValidationError

logger = logging.getLogger(__name__)

__all__ = ["Config", "DEFAULT_PORT"]

DEFAULT_PORT = 8384
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

ENV_DATABASE_FILE = "SNIPSYNC_DATABASE_FILE"
ENV_HOST = "SNIPSYNC_HOST"
ENV_PORT = "SNIPSYNC_PORT"
ENV_API_KEYS = "SNIPSYNC_API_KEYS"
ENV_LOG_LEVEL = "SNIPSYNC_LOG_LEVEL"


class Config:
    """Manages server configuration stored in JSON format.

    Attributes:
        config_dir: Path to the configuration directory
        config_file: Path to config.json
        config_data: Parsed configuration (without environment overrides)
    """

    def __init__(self, config_dir: Optional[Path] = None) -> None:
        """Initialize configuration manager.

        Args:
            config_dir: Custom config directory path. If None, uses ~/.config/snipsync/
        """
        if config_dir is None:
            config_dir = Path.home() / ".config" / "snipsync"
        self.config_dir = Path(config_dir)
        self.config_file = self.config_dir / "config.json"
        self.config_data = self.load_config()

    def _defaults(self) -> Dict[str, Any]:
        return {
            "database_file": str(self.config_dir / "snipsync.sqlite"),
            "server": {"host": "127.0.0.1", "port": DEFAULT_PORT},
            "api_keys": [],
            "cors_origins": "*",
            "log_level": "INFO",
        }

    def load_config(self) -> Dict[str, Any]:
        """Load configuration from file, creating it with defaults if missing.

        Keys missing from an existing file are filled from the defaults.

        Raises:
            ValidationError: If the file is not a JSON object
        """
        defaults = self._defaults()
        if not self.config_file.exists():
            self.save_config(defaults)
            logger.info(f"Created default config at {self.config_file}")
            return defaults

        try:
            with open(self.config_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValidationError("config", f"{self.config_file} is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ValidationError("config", f"{self.config_file} must contain a JSON object")

        merged = copy.deepcopy(defaults)
        for key, value in data.items():
            if isinstance(value, dict) and isinstance(merged.get(key), dict):
                merged[key].update(value)
            else:
                merged[key] = value
        return merged

    def save_config(self, config: Dict[str, Any]) -> None:
        """Write configuration to file."""
        self.config_dir.mkdir(parents=True, exist_ok=True)
        with open(self.config_file, "w", encoding="utf-8") as f:
            json.dump(config, f, indent=2)
            f.write("\n")

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value. Dotted keys address nested values."""
        node: Any = self.config_data
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def set(self, key: str, value: Any) -> None:
        """Set a configuration value and save to file."""
        parts = key.split(".")
        node = self.config_data
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[parts[-1]] = value
        self.save_config(self.config_data)

    def get_config_dir(self) -> Path:
        """Get the configuration directory path."""
        return self.config_dir

    # ===== Server settings =====

    def get_database_file(self) -> str:
        """Get the database path. Relative paths resolve against the config dir."""
        value = os.environ.get(ENV_DATABASE_FILE) or self.get("database_file")
        if not isinstance(value, str) or not value:
            raise ValidationError("database_file", "must be a non-empty string")
        if value == ":memory:":
            return value
        path = Path(value).expanduser()
        if not path.is_absolute():
            path = self.config_dir / path
        return str(path)

    def get_server_host(self) -> str:
        """Get the bind address."""
        value = os.environ.get(ENV_HOST) or self.get("server.host", "127.0.0.1")
        if not isinstance(value, str) or not value:
            raise ValidationError("server.host", "must be a non-empty string")
        return value

    def get_server_port(self) -> int:
        """Get the bind port."""
        raw = os.environ.get(ENV_PORT)
        if raw:
            try:
                value: Any = int(raw)
            except ValueError:
                raise ValidationError(ENV_PORT, f"must be an integer, got '{raw}'")
        else:
            value = self.get("server.port", DEFAULT_PORT)
        if isinstance(value, bool) or not isinstance(value, int) or not 0 < value < 65536:
            raise ValidationError("server.port", f"must be between 1 and 65535, got {value!r}")
        return value

    def get_api_keys(self) -> List[str]:
        """Get accepted API keys. An empty list disables authentication."""
        raw = os.environ.get(ENV_API_KEYS)
        if raw is not None:
            return [key.strip() for key in raw.split(",") if key.strip()]
        keys = self.get("api_keys", [])
        if not isinstance(keys, list) or not all(isinstance(k, str) and k for k in keys):
            raise ValidationError("api_keys", "must be a list of non-empty strings")
        return keys

    def get_cors_origins(self) -> Any:
        """Get allowed CORS origins ("*" or a list of origins)."""
        origins = self.get("cors_origins", "*")
        if isinstance(origins, str) or (
            isinstance(origins, list) and all(isinstance(o, str) for o in origins)
        ):
            return origins
        raise ValidationError("cors_origins", "must be a string or a list of strings")

    def get_log_level(self) -> str:
        """Get the logging level name."""
        value = os.environ.get(ENV_LOG_LEVEL) or self.get("log_level", "INFO")
        level = str(value).upper()
        if level not in LOG_LEVELS:
            raise ValidationError("log_level", f"must be one of {', '.join(LOG_LEVELS)}")
        return level
