import logging
import os
import re
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class ServerConfig(BaseModel):
    """Server configuration settings."""
    host: str = "localhost"
    port: int = 8000
    workers: int = 1
    debug: bool = False
    reload: bool = False
    log_level: str = "info"
    access_log: bool = True


class StoreConfig(BaseModel):
    """Backing store settings."""
    operation_timeout_seconds: float = Field(default=5.0, gt=0)
    seed_system_roles: bool = True


class HierarchyConfig(BaseModel):
    """Manager tree policy."""
    transitive_visibility: bool = False
    root_max_sub_users: int = Field(default=1000, ge=0)


class CacheConfig(BaseModel):
    """Permission snapshot cache settings."""
    ttl_seconds: float = Field(default=300.0, ge=0)


class LoggingConfig(BaseModel):
    """Logging output settings."""
    level: str = "INFO"
    format: str = "json"
    file: Optional[str] = None
    access_log: bool = True


class RBACConfig(BaseModel):
    """Main RBAC service configuration."""
    environment: str = "development"
    server: ServerConfig = Field(default_factory=ServerConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    hierarchy: HierarchyConfig = Field(default_factory=HierarchyConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    # Raw configuration for sections without a model
    raw_config: Dict[str, Any] = Field(default_factory=dict)


class ConfigLoader:
    """Configuration loader for YAML files with environment-specific overrides."""

    def __init__(self, config_dir: Optional[Path] = None):
        """Initialize the configuration loader.

        Args:
            config_dir: Directory containing configuration files.
                       Defaults to the config directory at the project root.
        """
        if config_dir is None:
            current_dir = Path(__file__).parent.parent.parent
            self.config_dir = current_dir / "config"
        else:
            self.config_dir = Path(config_dir)

    def load_config(self, environment: Optional[str] = None) -> RBACConfig:
        """Load configuration for the specified environment.

        Args:
            environment: Environment name (development, test, production).
                        If None, will try to detect from ENVIRONMENT variable.

        Returns:
            Loaded and validated configuration.
        """
        if environment is None:
            environment = os.getenv("ENVIRONMENT", "development")

        config_data = self._load_base_config()

        env_config = self._load_environment_config(environment)
        if env_config:
            config_data = self._merge_configs(config_data, env_config)

        config_data = self._substitute_env_vars(config_data)

        return self._create_rbac_config(config_data, environment)

    def _load_base_config(self) -> Dict[str, Any]:
        """Load the base RBAC configuration."""
        base_path = self.config_dir / "rbac.yaml"
        if base_path.exists():
            return self._load_yaml_file(base_path)
        return {}

    def _load_environment_config(self, environment: str) -> Optional[Dict[str, Any]]:
        """Load environment-specific configuration."""
        env_config_path = self.config_dir / f"{environment}.yaml"
        if env_config_path.exists():
            return self._load_yaml_file(env_config_path)
        return None

    def _load_yaml_file(self, file_path: Path) -> Dict[str, Any]:
        """Load and parse a YAML file."""
        try:
            with open(file_path, 'r') as file:
                return yaml.safe_load(file) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Failed to load config file {file_path}: {e}")
            return {}

    def _merge_configs(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge configuration dictionaries."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_configs(result[key], value)
            else:
                result[key] = value

        return result

    def _substitute_env_vars(self, config: Any) -> Any:
        """Substitute environment variables in configuration values."""
        if isinstance(config, dict):
            return {key: self._substitute_env_vars(value) for key, value in config.items()}
        elif isinstance(config, list):
            return [self._substitute_env_vars(item) for item in config]
        elif isinstance(config, str):
            return self._substitute_string_env_vars(config)
        else:
            return config

    def _substitute_string_env_vars(self, value: str) -> str:
        """Substitute ``${VAR}`` and ``${VAR:default}`` in a string value."""

        def replace_env_var(match):
            var_spec = match.group(1)
            if ':' in var_spec:
                var_name, default_value = var_spec.split(':', 1)
                return os.getenv(var_name, default_value)
            else:
                return os.getenv(var_spec, match.group(0))

        return re.sub(r'\$\{([^}]+)\}', replace_env_var, value)

    def _create_rbac_config(self, config_data: Dict[str, Any], environment: str) -> RBACConfig:
        """Create an RBACConfig object from configuration data."""
        return RBACConfig(
            environment=environment,
            server=ServerConfig(**config_data.get("server", {})),
            store=StoreConfig(**config_data.get("store", {})),
            hierarchy=HierarchyConfig(**config_data.get("hierarchy", {})),
            cache=CacheConfig(**config_data.get("cache", {})),
            logging=LoggingConfig(**config_data.get("logging", {})),
            raw_config=config_data,
        )


# Global configuration instance
_config_loader = ConfigLoader()
_rbac_config: Optional[RBACConfig] = None


def get_config() -> RBACConfig:
    """Get the current RBAC configuration."""
    global _rbac_config
    if _rbac_config is None:
        _rbac_config = _config_loader.load_config()
    return _rbac_config


def reload_config(environment: Optional[str] = None) -> RBACConfig:
    """Reload the RBAC configuration."""
    global _rbac_config
    _rbac_config = _config_loader.load_config(environment)
    return _rbac_config
