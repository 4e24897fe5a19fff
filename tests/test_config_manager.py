"""
Test cases for the configuration management system.
Tests config loading, validation, and access functionality.
"""

import os
import json
from unittest.mock import patch, mock_open
import pytest

from config_manager import (
    ConfigManager,
    AppConfig,
    QuotaConfig,
    PathsConfig,
    get_app_config,
    get_quota_config,
    get_paths_config,
)


class TestConfigManager:
    """Test the ConfigManager class functionality."""

    def test_init_with_default_config_file(self):
        """Test ConfigManager initialization with default config file."""
        with patch('config_manager.Path') as mock_path:
            mock_path.return_value.exists.return_value = False
            manager = ConfigManager()

            assert manager._config is not None
            assert "app" in manager._config
            assert "quota" in manager._config
            assert "paths" in manager._config

    def test_defaults(self):
        """Test default values when no file and no environment overrides exist."""
        with patch('config_manager.Path') as mock_path:
            mock_path.return_value.exists.return_value = False
            with patch.dict(os.environ, {}, clear=True):
                manager = ConfigManager()

        app_config = manager.get_app_config()
        assert app_config.host == "0.0.0.0"
        assert app_config.port == 22581
        assert app_config.debug is False
        assert app_config.admin_user_ids == []

        quota_config = manager.get_quota_config()
        assert quota_config.free_monthly_cap == 5
        assert quota_config.max_conflict_retries == 3
        assert quota_config.lock_timeout_seconds == 5.0

        paths_config = manager.get_paths_config()
        assert paths_config.data_dir == "data"
        assert paths_config.accounts_dir == "accounts"

    def test_load_config_from_file(self):
        """Test loading configuration from existing file."""
        test_config = {
            "app": {
                "host": "localhost",
                "port": 8080,
                "admin_user_ids": ["admin1", "admin2"]
            },
            "quota": {
                "free_monthly_cap": 10
            }
        }

        with patch('builtins.open', mock_open(read_data=json.dumps(test_config))):
            with patch('config_manager.Path') as mock_path:
                mock_path.return_value.exists.return_value = True
                with patch.dict(os.environ, {}, clear=True):
                    manager = ConfigManager()

                    assert manager._config["app"]["host"] == "localhost"
                    assert manager._config["app"]["admin_user_ids"] == ["admin1", "admin2"]
                    # Missing keys keep their defaults
                    assert manager._config["app"]["debug"] is False
                    assert manager._config["quota"]["free_monthly_cap"] == 10
                    assert manager._config["quota"]["max_conflict_retries"] == 3

    def test_invalid_file_keeps_defaults(self, tmp_path):
        """Test that a malformed config file falls back to defaults."""
        config_file = tmp_path / "lectgen_config.json"
        config_file.write_text("{not json", encoding="utf-8")

        with patch.dict(os.environ, {}, clear=True):
            manager = ConfigManager(str(config_file))

        assert manager.get_quota_config().free_monthly_cap == 5

    def test_override_with_env_variables(self):
        """Test that environment variables override config file values."""
        env_vars = {
            "APP_HOST": "localhost",
            "APP_PORT": "8080",
            "APP_DEBUG": "true",
            "ADMIN_USER_IDS": "admin1, admin2,,admin3",
            "FREE_MONTHLY_CAP": "12",
            "QUOTA_MAX_RETRIES": "7",
            "QUOTA_LOCK_TIMEOUT": "0.5",
            "LECTGEN_DATA_DIR": "/var/lib/lectgen"
        }

        with patch('config_manager.Path') as mock_path:
            mock_path.return_value.exists.return_value = False
            with patch.dict(os.environ, env_vars, clear=True):
                manager = ConfigManager()

                assert manager._config["app"]["host"] == "localhost"
                assert manager._config["app"]["port"] == 8080
                assert manager._config["app"]["debug"] is True
                assert manager._config["app"]["admin_user_ids"] == ["admin1", "admin2", "admin3"]
                assert manager._config["quota"]["free_monthly_cap"] == 12
                assert manager._config["quota"]["max_conflict_retries"] == 7
                assert manager._config["quota"]["lock_timeout_seconds"] == 0.5
                assert manager._config["paths"]["data_dir"] == "/var/lib/lectgen"

    def test_get_quota_config_rejects_negative_cap(self):
        """Test that a negative free cap is a configuration error."""
        with patch('config_manager.Path') as mock_path:
            mock_path.return_value.exists.return_value = False
            manager = ConfigManager()
            manager._config["quota"]["free_monthly_cap"] = -1

            with pytest.raises(ValueError):
                manager.get_quota_config()

    def test_get_config(self):
        """Test getting raw configuration dictionary."""
        test_config = {"test": "value"}

        with patch('config_manager.Path') as mock_path:
            mock_path.return_value.exists.return_value = False
            manager = ConfigManager()
            manager._config = test_config

            config = manager.get_config()

            assert config == test_config
            assert config is not manager._config  # Should be a copy

    def test_save_and_reload(self, tmp_path):
        """Test saving configuration to file and reading it back."""
        config_file = tmp_path / "lectgen_config.json"

        with patch.dict(os.environ, {}, clear=True):
            manager = ConfigManager(str(config_file))
            manager._config["quota"]["free_monthly_cap"] = 9
            manager.save_config()

            saved = json.loads(config_file.read_text(encoding="utf-8"))
            assert saved["quota"]["free_monthly_cap"] == 9

            manager._config["quota"]["free_monthly_cap"] = 1
            manager.reload()
            assert manager.get_quota_config().free_monthly_cap == 9

    def test_reload_config(self):
        """Test reloading configuration."""
        with patch('config_manager.Path') as mock_path:
            mock_path.return_value.exists.return_value = False
            manager = ConfigManager()

            original_config = manager._config.copy()
            manager._config["test"] = "modified"
            manager.reload()

            assert "test" not in manager._config
            assert manager._config == original_config


class TestGlobalFunctions:
    """Test the global configuration functions."""

    def test_get_app_config_global(self):
        config = get_app_config()
        assert isinstance(config, AppConfig)
        assert isinstance(config.port, int)

    def test_get_quota_config_global(self):
        config = get_quota_config()
        assert isinstance(config, QuotaConfig)
        assert config.free_monthly_cap >= 0

    def test_get_paths_config_global(self):
        config = get_paths_config()
        assert isinstance(config, PathsConfig)
        assert config.events_dir
