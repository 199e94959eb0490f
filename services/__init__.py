"""
GuildKit Services Package

Framework services built on the core infrastructure.
"""

from .permission_service import PermissionLevel, PermissionEvaluator
from .gateway import IGatewayClient, DiscordGateway
from .error_service import ErrorService
from .guild_service import GuildManager
from .settings_service import Parameter, SettingsManager
from .command_service import Command, CommandOptions, CommandContext, CommandRegistry
from .event_router import EventNamespace, EventBinding, EventRouter, extract_guild
from .module import Module, ModuleState
from .module_loader import ModuleLoader
from .bot_application import BotApplication, create_application

__all__ = [
    'PermissionLevel',
    'PermissionEvaluator',
    'IGatewayClient',
    'DiscordGateway',
    'ErrorService',
    'GuildManager',
    'Parameter',
    'SettingsManager',
    'Command',
    'CommandOptions',
    'CommandContext',
    'CommandRegistry',
    'EventNamespace',
    'EventBinding',
    'EventRouter',
    'extract_guild',
    'Module',
    'ModuleState',
    'ModuleLoader',
    'BotApplication',
    'create_application'
]
