"""Configuration Manager for the SurrealDB backup service"""

import copy
import logging
import os
from pathlib import Path
from typing import Any, cast

import yaml

DEFAULT_CONFIG_FILE = "/config/settings.yaml"
CONFIG_ENV_VAR = "SURREAL_BACKUP_CONFIG"

DEFAULT_SETTINGS: dict[str, Any] = {
    "surrealdb": {
        "endpoint": "http://core-surrealdb:8000",
        "binary": "surreal",
        "health_retries": 3,
        "health_retry_delay": 5,
        "health_timeout": 10,
    },
    "storage": {
        "backup_dir": "/backups",
        "temp_dir": None,  # defaults to <backup_dir>/temp
        "min_free_space_mb": 100,
    },
    "keyvault": {
        "dir": "/keyvault/surrealdb",
        "shared_dir": "/keyvault/shared",
        "timeout": 60,
        "poll_interval": 2,
    },
    "logging": {
        "dir": "/logs/surrealdb-backup",
        "level": "INFO",
        "console": True,
    },
    "backup": {
        "compression_level": 6,
        "validation_markers": ["OPTION IMPORT", "BEGIN TRANSACTION", "DEFINE "],
    },
    "restore": {
        "safety_export": True,
    },
    "timeouts": {
        "export": 3600,
        "import": 7200,
    },
    "schedule": {
        "nightly": "0 2 * * *",
        "weekly": "0 3 * * 0",
        "timezone": None,
    },
    "health": {
        "host": "0.0.0.0",
        "port": 8080,
        "nightly_max_age_hours": 26,
        "weekly_max_age_hours": 8 * 24,
    },
    "notifications": {
        "webhook_url": None,
        "timeout": 10,
    },
}

# Environment variable -> dotted setting key
ENV_OVERRIDES = {
    "SURREALDB_ENDPOINT": "surrealdb.endpoint",
    "BACKUP_DIR": "storage.backup_dir",
    "KEYVAULT_DIR": "keyvault.dir",
    "LOG_DIR": "logging.dir",
    "HEALTH_CHECK_PORT": "health.port",
    "WEBHOOK_URL": "notifications.webhook_url",
}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class ConfigManager:
    """Manages all configuration for the backup service

    Settings come from three layers, later layers winning: built-in
    defaults, an optional YAML file, and environment variables.
    """

    def __init__(
        self,
        config_file: str | Path | None = None,
        overrides: dict[str, Any] | None = None,
        environ: dict[str, str] | None = None,
    ):
        explicit = config_file or os.environ.get(CONFIG_ENV_VAR)
        self.config_file = Path(explicit or DEFAULT_CONFIG_FILE)
        if explicit and not self.config_file.exists():
            logging.error(f"Configuration file not found: {self.config_file}")
            raise SystemExit(3)

        self.settings = _deep_merge(DEFAULT_SETTINGS, self._load_yaml(self.config_file))
        self._apply_env(os.environ if environ is None else environ)
        if overrides:
            self.settings = _deep_merge(self.settings, overrides)

    def _load_yaml(self, file_path: Path) -> dict[str, Any]:
        """Load YAML configuration file"""
        if not file_path.exists():
            return {}

        with open(file_path) as f:
            return yaml.safe_load(f) or {}

    def _apply_env(self, environ: Any) -> None:
        for var, key in ENV_OVERRIDES.items():
            value = environ.get(var)
            if value:
                self.set_setting(key, value)

    def get_setting(self, key: str, default: Any = None) -> Any:
        """Get a setting value with optional default

        Args:
            key: Setting key (supports nested keys with dot notation, e.g., 'storage.backup_dir')
            default: Default value if setting not found

        Returns:
            Setting value or default
        """
        keys = key.split(".")
        value: Any = self.settings

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
                if value is None:
                    return default
            else:
                return default

        return value if value is not None else default

    def set_setting(self, key: str, value: Any) -> None:
        """Set a dotted setting in memory (not persisted)"""
        keys = key.split(".")
        target = self.settings
        for k in keys[:-1]:
            target = target.setdefault(k, {})
        target[keys[-1]] = value

    def get_storage_paths(self) -> dict[str, Path]:
        """Get storage paths from settings

        Returns:
            Dict with 'backup', 'temp', 'logs', 'keyvault' and 'shared_keyvault'
        """
        backup_dir = Path(self.get_setting("storage.backup_dir"))
        temp_dir = self.get_setting("storage.temp_dir")
        return {
            "backup": backup_dir,
            "temp": Path(temp_dir) if temp_dir else backup_dir / "temp",
            "logs": Path(self.get_setting("logging.dir")),
            "keyvault": Path(self.get_setting("keyvault.dir")),
            "shared_keyvault": Path(self.get_setting("keyvault.shared_dir")),
        }

    def get_schedules(self) -> dict[str, str]:
        """Get cron expressions keyed by slot name"""
        schedule = self.get_setting("schedule", {})
        return {slot: cast("str", schedule[slot]) for slot in ("nightly", "weekly")}

    def get_timeout(self, name: str) -> int:
        """Get a subprocess timeout in seconds"""
        return int(self.get_setting(f"timeouts.{name}", 3600))

    def get_webhook_url(self) -> str | None:
        """Webhook URL from settings, falling back to the shared keyvault file"""
        url = self.get_setting("notifications.webhook_url")
        if url:
            return cast("str", url)

        shared = self.get_storage_paths()["shared_keyvault"] / "webhook_url"
        try:
            value = shared.read_text().strip()
        except OSError:
            return None
        return value or None
