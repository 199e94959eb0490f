"""
Guild Data Service for GuildKit
"""

import logging
from typing import Any, Dict, Optional

from core import ServiceRegistry
from data import IDataStore

logger = logging.getLogger('guildkit.services.guild_service')

GUILD_KEY_PREFIX = 'guild:'

class GuildManager:
    """
    Per-guild data document stored in the DataStore under ``guild:<id>``.

    Document layout::

        {
            "modules": {"<module_id>": {"disabled": true}},
            "settings": {"prefix": "?"}
        }

    Reads and writes are read-modify-write on the whole document and are not
    atomic across concurrent writers.
    """

    def __init__(self, service_registry: ServiceRegistry):
        self.service_registry = service_registry
        self.data_store = service_registry.get(IDataStore)

        logger.info("GuildManager initialized")

    @staticmethod
    def guild_key(guild_id) -> str:
        return f"{GUILD_KEY_PREFIX}{guild_id}"

    async def get_guild_data(self, guild_id) -> Dict[str, Any]:
        data = await self.data_store.get(self.guild_key(guild_id))
        return data if isinstance(data, dict) else {}

    async def save_guild_data(self, guild_id, data: Dict[str, Any]) -> None:
        await self.data_store.set(self.guild_key(guild_id), data)

    async def get_module_flag(self, guild_id, module_id: str) -> Optional[bool]:
        """
        Stored "disabled" flag of a module for a guild.

        Returns:
            True/False when set, None when the guild never changed it
        """
        data = await self.get_guild_data(guild_id)
        module_state = data.get('modules', {}).get(module_id)
        if not isinstance(module_state, dict) or 'disabled' not in module_state:
            return None
        return bool(module_state['disabled'])

    async def set_module_flag(self, guild_id, module_id: str, disabled: bool) -> None:
        data = await self.get_guild_data(guild_id)
        data.setdefault('modules', {}).setdefault(module_id, {})['disabled'] = disabled
        await self.save_guild_data(guild_id, data)
        logger.info(f"[{guild_id}]: Module '{module_id}' {'disabled' if disabled else 'enabled'}")

    async def get_setting(self, guild_id, key: str) -> Any:
        data = await self.get_guild_data(guild_id)
        return data.get('settings', {}).get(key)

    async def set_setting(self, guild_id, key: str, value: Any) -> None:
        data = await self.get_guild_data(guild_id)
        settings = data.setdefault('settings', {})
        if value is None:
            settings.pop(key, None)
        else:
            settings[key] = value
        await self.save_guild_data(guild_id, data)
