"""
Settings Service for GuildKit

Guild-scoped settings with a registered schema. Modules add their own
parameters while loaded; values live in the guild data document.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from core import ServiceRegistry, DuplicateRegistration, ConfigurationError
from .guild_service import GuildManager

logger = logging.getLogger('guildkit.services.settings_service')

_TRUE_STRINGS = {'1', 'true', 'yes', 'on', 'enable', 'enabled'}
_FALSE_STRINGS = {'0', 'false', 'no', 'off', 'disable', 'disabled'}

@dataclass
class Parameter:
    """Schema entry for one setting"""
    description: str = ''
    type: type = str
    default: Any = None
    module: Any = None

    def coerce(self, value: Any) -> Any:
        """
        Convert a raw value (typically user text) to the parameter type.

        Raises:
            ValueError: If the value cannot be converted
        """
        if value is None or isinstance(value, self.type):
            return value
        if self.type is bool:
            text = str(value).strip().lower()
            if text in _TRUE_STRINGS:
                return True
            if text in _FALSE_STRINGS:
                return False
            raise ValueError(f"'{value}' is not a boolean")
        if self.type is list:
            return [item.strip() for item in str(value).split(',') if item.strip()]
        return self.type(value)

class SettingsManager:
    """Schema of named parameters plus per-guild values"""

    def __init__(self, service_registry: ServiceRegistry):
        self.service_registry = service_registry
        self.guild_manager = service_registry.get(GuildManager)
        self.schema: Dict[str, Parameter] = {}

        self.register('prefix', Parameter(
            description='Command prefix used in this guild',
            type=str
        ))

        logger.info("SettingsManager initialized")

    def register(self, key: str, param: Parameter) -> Parameter:
        """
        Add a parameter to the schema.

        Raises:
            DuplicateRegistration: If the key is already registered
        """
        if key in self.schema:
            raise DuplicateRegistration(f"Setting '{key}' is already registered")
        self.schema[key] = param
        logger.debug(f"Registered setting '{key}'")
        return param

    def unregister(self, key: str) -> bool:
        if self.schema.pop(key, None) is None:
            return False
        logger.debug(f"Unregistered setting '{key}'")
        return True

    def keys(self) -> List[str]:
        return sorted(self.schema.keys())

    async def get(self, guild_id, key: str) -> Any:
        """Stored value for a guild, or the parameter default"""
        param = self._get_parameter(key)
        value = await self.guild_manager.get_setting(guild_id, key)
        return param.default if value is None else value

    async def set(self, guild_id, key: str, value: Any) -> Any:
        """
        Store a value for a guild; None resets it to the default.

        Returns:
            The coerced value that was stored

        Raises:
            ConfigurationError: If the key is unknown or the value invalid
        """
        param = self._get_parameter(key)
        try:
            coerced = param.coerce(value)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid value for setting '{key}': {e}") from e

        await self.guild_manager.set_setting(guild_id, key, coerced)
        return coerced

    def _get_parameter(self, key: str) -> Parameter:
        param: Optional[Parameter] = self.schema.get(key)
        if param is None:
            raise ConfigurationError(f"Unknown setting '{key}'")
        return param
