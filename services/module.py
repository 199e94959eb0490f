"""
Module Base Class for GuildKit

A module is an independently loadable unit of bot functionality. Everything a
module registers through its own methods is tracked on the instance so the
loader can release it on unload, reload or failed initialization.

Usage:
    class Ping(Module):
        name = "Ping"

        def init(self):
            @self.command('ping')
            async def ping(ctx):
                await ctx.reply('Pong!')

            self.register_event('discord.guild_join', self.on_guild_join)
"""

import logging
from enum import Enum
from typing import Any, Callable, Dict, Optional, Set, Union

from core import ServiceRegistry, EventBus
from data import IDataStore
from .command_service import Command, CommandOptions, CommandRegistry, Trigger
from .event_router import EventRouter, EventBinding
from .gateway import IGatewayClient
from .settings_service import Parameter, SettingsManager

logger = logging.getLogger('guildkit.services.module')

class ModuleState(Enum):
    """Lifecycle state of a resident module"""
    LOADING = "loading"
    LOADED = "loaded"
    UNLOADING = "unloading"
    RELOADING = "reloading"
    ERRORED = "errored"

class Module:
    """Base class for bot modules"""

    # Friendly metadata
    name: Optional[str] = None
    description: Optional[str] = None
    author: Optional[str] = None

    # Guild policy
    default_disabled = False
    allow_disabling = True

    def __init__(self, loader, module_id: str):
        self.id = module_id
        self.state = ModuleState.LOADING
        self.loader = loader
        self.service_registry: ServiceRegistry = loader.service_registry

        self.command_registry = self.service_registry.get(CommandRegistry)
        self.settings = self.service_registry.get(SettingsManager)
        self.event_bus = self.service_registry.get(EventBus)
        self.data = self.service_registry.get(IDataStore)
        self.gateway = self.service_registry.get_optional(IGatewayClient)

        self.commands: Dict[str, Command] = {}
        self.events = EventRouter(self, self.service_registry)
        self.dependencies: Set[str] = set()
        self.dependents: Set[str] = set()
        self.parameters: Set[str] = set()

        self.logger = logging.getLogger(f'guildkit.modules.{module_id}')

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.id!r} state={self.state.value}>"

    # Commands

    def register_command(self, trigger: Trigger, options: Optional[CommandOptions] = None,
                         handler: Optional[Callable] = None) -> Command:
        """
        Register a command owned by this module.

        Raises:
            DuplicateTrigger: If the name or pattern is taken
        """
        command = self.command_registry.register(trigger, options, handler, module=self)
        self.commands[command.name] = command
        return command

    def command(self, trigger: Trigger, **options: Any) -> Callable:
        """Decorator form of register_command; keyword arguments are CommandOptions fields"""
        def decorator(handler: Callable) -> Callable:
            self.register_command(trigger, CommandOptions(**options), handler)
            return handler
        return decorator

    def unregister_command(self, command: Union[Command, Trigger]) -> bool:
        """Remove a command, only if this module owns it"""
        registered = self.command_registry.get(command)
        if registered is None or registered.module is not self:
            return False
        self.command_registry.unregister(registered)
        self.commands.pop(registered.name, None)
        return True

    # Settings

    def register_parameter(self, key: str, param: Parameter) -> Parameter:
        param.module = self
        self.settings.register(key, param)
        self.parameters.add(key)
        return param

    def unregister_parameter(self, key: str) -> bool:
        param = self.settings.schema.get(key)
        if param is None or param.module is not self:
            return False
        self.settings.unregister(key)
        self.parameters.discard(key)
        return True

    # Events

    def register_event(self, name: str, handler: Callable) -> EventBinding:
        """
        Attach a handler to a platform, data store or internal event.

        The handler is skipped for events belonging to a guild this module is
        disabled in.
        """
        return self.events.register(name, handler)

    def listener(self, name: str) -> Callable:
        """Decorator form of register_event"""
        def decorator(handler: Callable) -> Callable:
            self.register_event(name, handler)
            return handler
        return decorator

    def unregister_event(self, name: str, handler: Optional[Callable] = None) -> int:
        return self.events.unregister(name, handler)

    # Dependencies

    def require_module(self, module_id: str) -> 'Module':
        """
        Get a loaded module and declare a dependency on it.

        Raises:
            UnknownModule: If the module is not loaded
        """
        self.loader.register_dependency(self, module_id)
        return self.loader.get(module_id)

    # Guild policy

    async def is_disabled_for_guild(self, guild) -> bool:
        return await self.loader.is_module_disabled_for_guild(guild, self)

    async def enable_for_guild(self, guild) -> bool:
        return await self.loader.enable_module_for_guild(guild, self)

    async def disable_for_guild(self, guild) -> bool:
        return await self.loader.disable_module_for_guild(guild, self)

    # Lifecycle hooks

    def init(self) -> Any:
        """Called each time the module is loaded or reloaded"""
        pass

    def shutdown(self) -> Any:
        """Called before the module is unloaded or reloaded"""
        pass

    def ready(self) -> Any:
        """Called once the bot is connected (right after init() if it already is)"""
        pass

    def teardown(self) -> None:
        """Release every command, event binding and parameter this module holds"""
        for command in list(self.commands.values()):
            self.command_registry.unregister(command)
        self.commands.clear()

        self.events.unregister_all()

        for key in list(self.parameters):
            self.unregister_parameter(key)
        self.parameters.clear()
