"""
Configuration management for the LectGen quota service.
Handles loading, validating, and providing access to application settings.
"""

import os
import json
from pathlib import Path
from typing import Dict, Any, Optional
from dataclasses import dataclass


@dataclass
class AppConfig:
    """Application configuration settings."""
    host: str
    port: int
    debug: bool
    admin_user_ids: list[str]


@dataclass
class QuotaConfig:
    """Quota engine configuration settings."""
    free_monthly_cap: int
    max_conflict_retries: int
    lock_timeout_seconds: float


@dataclass
class PathsConfig:
    """Path configuration settings."""
    data_dir: str
    accounts_dir: str
    usage_log_dir: str
    events_dir: str


class ConfigManager:
    """Manages application configuration loading and access."""

    def __init__(self, config_file: str = "lectgen_config.json"):
        self.config_file = Path(config_file)
        self._config: Optional[Dict[str, Any]] = None
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration from file and environment variables."""
        self._config = self._get_default_config()

        if self.config_file.exists():
            try:
                with open(self.config_file, 'r', encoding='utf-8') as f:
                    file_config = json.load(f)
                    self._merge_config(file_config)
            except (json.JSONDecodeError, FileNotFoundError):
                # Keep default config if file is invalid or not found
                pass

        self._override_with_env()

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration."""
        return {
            "app": {
                "host": "0.0.0.0",
                "port": 22581,
                "debug": False,
                "admin_user_ids": []
            },
            "quota": {
                "free_monthly_cap": 5,
                "max_conflict_retries": 3,
                "lock_timeout_seconds": 5.0
            },
            "paths": {
                "data_dir": "data",
                "accounts_dir": "accounts",
                "usage_log_dir": "usage_logs",
                "events_dir": "events"
            }
        }

    def _merge_config(self, file_config: Dict[str, Any]) -> None:
        """Merge file configuration with current config."""
        for section, values in file_config.items():
            if section in self._config and isinstance(values, dict):
                self._config[section].update(values)
            else:
                self._config[section] = values

    def _override_with_env(self) -> None:
        """Override configuration with environment variables."""
        # App settings
        if os.getenv("APP_HOST"):
            self._config["app"]["host"] = os.getenv("APP_HOST")

        if os.getenv("APP_PORT"):
            self._config["app"]["port"] = int(os.getenv("APP_PORT"))

        if os.getenv("APP_DEBUG"):
            self._config["app"]["debug"] = os.getenv("APP_DEBUG").lower() == "true"

        if os.getenv("ADMIN_USER_IDS"):
            self._config["app"]["admin_user_ids"] = [
                uid.strip() for uid in os.getenv("ADMIN_USER_IDS").split(",") if uid.strip()
            ]

        # Quota settings
        if os.getenv("FREE_MONTHLY_CAP"):
            self._config["quota"]["free_monthly_cap"] = int(os.getenv("FREE_MONTHLY_CAP"))

        if os.getenv("QUOTA_MAX_RETRIES"):
            self._config["quota"]["max_conflict_retries"] = int(os.getenv("QUOTA_MAX_RETRIES"))

        if os.getenv("QUOTA_LOCK_TIMEOUT"):
            self._config["quota"]["lock_timeout_seconds"] = float(os.getenv("QUOTA_LOCK_TIMEOUT"))

        # Path settings
        if os.getenv("LECTGEN_DATA_DIR"):
            self._config["paths"]["data_dir"] = os.getenv("LECTGEN_DATA_DIR")

    def get_app_config(self) -> AppConfig:
        """Get application configuration."""
        app_config = self._config["app"]
        return AppConfig(
            host=app_config["host"],
            port=app_config["port"],
            debug=app_config["debug"],
            admin_user_ids=app_config["admin_user_ids"]
        )

    def get_quota_config(self) -> QuotaConfig:
        """Get quota engine configuration."""
        quota_config = self._config["quota"]
        free_cap = int(quota_config["free_monthly_cap"])
        if free_cap < 0:
            raise ValueError(f"free_monthly_cap must be non-negative, got {free_cap}")
        return QuotaConfig(
            free_monthly_cap=free_cap,
            max_conflict_retries=int(quota_config["max_conflict_retries"]),
            lock_timeout_seconds=float(quota_config["lock_timeout_seconds"])
        )

    def get_paths_config(self) -> PathsConfig:
        """Get paths configuration."""
        paths_config = self._config["paths"]
        return PathsConfig(
            data_dir=paths_config["data_dir"],
            accounts_dir=paths_config["accounts_dir"],
            usage_log_dir=paths_config["usage_log_dir"],
            events_dir=paths_config["events_dir"]
        )

    def get_config(self) -> Dict[str, Any]:
        """Get raw configuration dictionary."""
        return self._config.copy()

    def reload(self) -> None:
        """Reload configuration from file."""
        self._load_config()

    def save_config(self) -> None:
        """Save current configuration to file."""
        with open(self.config_file, 'w', encoding='utf-8') as f:
            json.dump(self._config, f, indent=2, ensure_ascii=False)


# Global configuration instance
config_manager = ConfigManager()


def get_app_config() -> AppConfig:
    """Get application configuration."""
    return config_manager.get_app_config()


def get_quota_config() -> QuotaConfig:
    """Get quota engine configuration."""
    return config_manager.get_quota_config()


def get_paths_config() -> PathsConfig:
    """Get paths configuration."""
    return config_manager.get_paths_config()


def reload_config() -> None:
    """Reload configuration."""
    config_manager.reload()


def save_config() -> None:
    """Save configuration to file."""
    config_manager.save_config()
