"""Unit tests for configuration loading and management."""

import os
from unittest.mock import patch

import pytest
import yaml

from quicklink_rbac.config import (
    CacheConfig,
    ConfigLoader,
    HierarchyConfig,
    RBACConfig,
    ServerConfig,
    StoreConfig,
)
from quicklink_rbac.config.jwt_config import DEFAULT_SECRET, JWTSettings, validate_jwt_config
from quicklink_rbac.config.logging import get_logging_config


class TestConfigModels:
    """Test cases for the configuration models."""

    def test_server_config_defaults(self):
        """Test server configuration with default values."""
        config = ServerConfig()

        assert config.host == "localhost"
        assert config.port == 8000
        assert config.reload is False
        assert config.access_log is True

    def test_rbac_config_defaults(self):
        """Test the defaults of the RBAC-specific sections."""
        config = RBACConfig()

        assert config.environment == "development"
        assert config.store.operation_timeout_seconds == 5.0
        assert config.store.seed_system_roles is True
        assert config.hierarchy.transitive_visibility is False
        assert config.hierarchy.root_max_sub_users == 1000
        assert config.cache.ttl_seconds == 300
        assert config.logging.format == "json"

    def test_store_timeout_must_be_positive(self):
        with pytest.raises(ValueError):
            StoreConfig(operation_timeout_seconds=0)

    def test_negative_quota_rejected(self):
        with pytest.raises(ValueError):
            HierarchyConfig(root_max_sub_users=-1)

    def test_negative_cache_ttl_rejected(self):
        with pytest.raises(ValueError):
            CacheConfig(ttl_seconds=-5)


class TestConfigLoader:
    """Test cases for ConfigLoader."""

    def _write(self, directory, name, data):
        with open(directory / name, "w") as f:
            yaml.dump(data, f)

    def test_missing_directory_gives_defaults(self, temp_directory):
        """Test loading when no configuration files exist."""
        config = ConfigLoader(temp_directory / "missing").load_config("development")

        assert config.environment == "development"
        assert config.server.port == 8000
        assert config.raw_config == {}

    def test_environment_overrides_base(self, temp_directory):
        """Test that the environment file is merged over rbac.yaml."""
        self._write(temp_directory, "rbac.yaml", {
            "server": {"host": "localhost", "port": 8000},
            "hierarchy": {"transitive_visibility": False, "root_max_sub_users": 100},
        })
        self._write(temp_directory, "staging.yaml", {
            "server": {"port": 9000},
            "hierarchy": {"transitive_visibility": True},
        })

        config = ConfigLoader(temp_directory).load_config("staging")

        assert config.environment == "staging"
        assert config.server.host == "localhost"
        assert config.server.port == 9000
        assert config.hierarchy.transitive_visibility is True
        assert config.hierarchy.root_max_sub_users == 100

    def test_environment_from_variable(self, temp_directory, mock_environment_variables):
        self._write(temp_directory, "qa.yaml", {"cache": {"ttl_seconds": 5}})

        with mock_environment_variables(ENVIRONMENT="qa"):
            config = ConfigLoader(temp_directory).load_config()

        assert config.environment == "qa"
        assert config.cache.ttl_seconds == 5

    def test_env_var_substitution(self, temp_directory):
        """Test ${VAR} and ${VAR:default} substitution."""
        self._write(temp_directory, "rbac.yaml", {
            "server": {"host": "${RBAC_TEST_HOST}"},
            "logging": {"level": "${RBAC_TEST_LEVEL:DEBUG}", "file": "${RBAC_TEST_UNSET}"},
        })

        with patch.dict(os.environ, {"RBAC_TEST_HOST": "10.0.0.1"}):
            os.environ.pop("RBAC_TEST_LEVEL", None)
            os.environ.pop("RBAC_TEST_UNSET", None)
            config = ConfigLoader(temp_directory).load_config("development")

        assert config.server.host == "10.0.0.1"
        assert config.logging.level == "DEBUG"
        assert config.logging.file == "${RBAC_TEST_UNSET}"

    def test_invalid_yaml_is_ignored(self, temp_directory):
        (temp_directory / "rbac.yaml").write_text("server: [unclosed\n")

        config = ConfigLoader(temp_directory).load_config("development")

        assert config.server.port == 8000

    def test_repository_test_config(self):
        """The shipped test profile shortens timeouts and disables caching."""
        config = ConfigLoader().load_config("test")

        assert config.store.operation_timeout_seconds == 1
        assert config.cache.ttl_seconds == 0
        assert config.hierarchy.root_max_sub_users == 50


class TestJWTSettings:

    def test_env_prefix(self, mock_environment_variables):
        with mock_environment_variables(RBAC_JWT_SECRET_KEY="x" * 40, RBAC_JWT_ACCESS_TOKEN_EXPIRE_MINUTES="5"):
            settings = JWTSettings()

        assert settings.secret_key == "x" * 40
        assert settings.access_token_expire_minutes == 5

    def test_default_secret_reported(self):
        issues = validate_jwt_config(JWTSettings(secret_key=DEFAULT_SECRET))
        assert any("default JWT secret" in issue for issue in issues)

    def test_clean_configuration(self):
        settings = JWTSettings(secret_key="s" * 48, access_token_expire_minutes=15)
        assert validate_jwt_config(settings) == []

    def test_long_expiry_reported(self):
        settings = JWTSettings(secret_key="s" * 48, access_token_expire_minutes=240)
        assert validate_jwt_config(settings) == ["Access token expiration is longer than 1 hour"]


class TestLoggingConfig:

    def test_json_formatter(self):
        config = get_logging_config(log_level="debug", log_format="json")

        assert config["formatters"]["json"]["()"] == "pythonjsonlogger.json.JsonFormatter"
        assert config["handlers"]["console"]["formatter"] == "json"
        assert config["handlers"]["console"]["level"] == "DEBUG"
        assert "quicklink_rbac.audit" in config["loggers"]

    def test_file_handler_added(self, temp_directory):
        config = get_logging_config(log_format="text", log_file=str(temp_directory / "rbac.log"))

        assert config["handlers"]["file"]["formatter"] == "detailed"
        assert "file" in config["loggers"][""]["handlers"]
