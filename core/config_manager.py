"""
Configuration Management System for GuildKit
"""

import os
import logging
from pathlib import Path
from typing import Dict, Any, Optional, List, Literal
from enum import Enum

import yaml
from dotenv import dotenv_values
from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigurationError

logger = logging.getLogger('guildkit.core.config_manager')

ENV_PREFIX = 'GUILDKIT_'

class Environment(Enum):
    """Supported deployment environments"""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"

class BotConfiguration(BaseModel):
    """Main bot configuration model with Pydantic validation"""

    # Discord Configuration
    token: str
    prefix: str = "!"
    self_bot: bool = False
    public_prefix: Optional[str] = None
    shard_count: Optional[int] = None

    # Permission lists (user IDs and role names)
    owner: List[str] = Field(default_factory=list)
    admins: List[str] = Field(default_factory=list)
    admin_roles: List[str] = Field(default_factory=list)
    dj_roles: List[str] = Field(default_factory=list)
    blacklist: List[str] = Field(default_factory=list)

    # Modules
    module_path: str = "bot_modules"
    modules: List[str] = Field(default_factory=list)
    watch: bool = False

    # Data store
    data_store: Literal['memory', 'sqlite', 'couchdb', 'redis'] = 'memory'
    database_path: str = "guildkit.db"
    sqlite_poll_interval: float = 1.0
    couchdb_url: str = "http://127.0.0.1:5984"
    couchdb_database: str = "guildkit"
    redis_url: str = "redis://127.0.0.1:6379/0"

    # Logging Configuration
    debug: bool = False
    log_level: str = "INFO"
    log_file_path: Optional[str] = "./log.txt"

    @field_validator('token')
    @classmethod
    def validate_token(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError('token must not be empty')
        return v.strip()

    @field_validator('prefix')
    @classmethod
    def validate_prefix(cls, v: str) -> str:
        if not v:
            raise ValueError('prefix must not be empty')
        return v

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f'log_level must be one of {valid_levels}')
        return v.upper()

    @field_validator('owner', 'admins', 'blacklist', mode='before')
    @classmethod
    def split_id_lists(cls, v: Any) -> Any:
        if isinstance(v, str):
            return [item.strip() for item in v.split(',') if item.strip()]
        if isinstance(v, list):
            return [str(item) for item in v]
        return v

    @field_validator('admin_roles', 'dj_roles', 'modules', mode='before')
    @classmethod
    def split_name_lists(cls, v: Any) -> Any:
        if isinstance(v, str):
            return [item.strip() for item in v.split(',') if item.strip()]
        return v

class ConfigurationManager:
    """
    Loads and validates configuration from layered sources.

    Precedence (lowest first): config/default.yaml, config/<environment>.yaml,
    the .env file, then GUILDKIT_* environment variables.
    """

    def __init__(self, base_path: Optional[Path] = None, environ: Optional[Dict[str, str]] = None):
        self.base_path = Path(base_path) if base_path else Path.cwd()
        self.config_dir = self.base_path / "config"
        self._environ = environ if environ is not None else os.environ
        self.environment = self._detect_environment()
        self._configuration: Optional[BotConfiguration] = None

        logger.info(f"ConfigurationManager initialized for environment: {self.environment.value}")

    def load_configuration(self) -> BotConfiguration:
        """
        Load and validate configuration from all sources.

        Raises:
            ConfigurationError: If configuration is invalid or missing
        """
        config_data = self._load_yaml_file(self.config_dir / "default.yaml")
        config_data = self._deep_merge(
            config_data,
            self._load_yaml_file(self.config_dir / f"{self.environment.value}.yaml")
        )
        config_data.update(self._prefixed_values(dotenv_values(self.base_path / '.env')))
        config_data.update(self._prefixed_values(self._environ))

        try:
            self._configuration = BotConfiguration(**config_data)
        except ValidationError as e:
            logger.error(f"Invalid configuration: {e}")
            raise ConfigurationError(f"Configuration loading failed: {e}") from e

        logger.info("Configuration loaded successfully")
        return self._configuration

    def get_configuration(self) -> BotConfiguration:
        """Get current configuration, loading if necessary"""
        if self._configuration is None:
            return self.load_configuration()
        return self._configuration

    def reload_configuration(self) -> BotConfiguration:
        self._configuration = None
        return self.load_configuration()

    def _detect_environment(self) -> Environment:
        env_var = (self._environ.get(f'{ENV_PREFIX}ENVIRONMENT') or '').lower()
        if env_var:
            try:
                return Environment(env_var)
            except ValueError:
                logger.warning(f"Unknown environment '{env_var}', using development")
        return Environment.DEVELOPMENT

    def _prefixed_values(self, source: Dict[str, Optional[str]]) -> Dict[str, Any]:
        """Map GUILDKIT_FOO_BAR entries to foo_bar configuration keys"""
        values = {}
        for key, value in source.items():
            if value is None or not key.startswith(ENV_PREFIX) or key == f'{ENV_PREFIX}ENVIRONMENT':
                continue
            config_key = key[len(ENV_PREFIX):].lower()
            if config_key in BotConfiguration.model_fields:
                values[config_key] = value
                logger.debug(f"Applied {key} -> {config_key}")
        return values

    def _load_yaml_file(self, path: Path) -> Dict[str, Any]:
        if not path.exists():
            return {}
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to load YAML file {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"{path} must contain a mapping")
        logger.debug(f"Loaded configuration from {path}")
        return data

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value
        return result
