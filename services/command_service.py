"""
Command Service for GuildKit

Holds every registered command and turns inbound platform messages into
handler invocations.
"""

import inspect
import logging
import re
import weakref
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Pattern, Tuple, Union

from core import ServiceRegistry, EventBus, BotConfiguration, DuplicateTrigger
from .permission_service import PermissionEvaluator, PermissionLevel
from .error_service import ErrorService
from .settings_service import SettingsManager
from .gateway import IGatewayClient

logger = logging.getLogger('guildkit.services.command_service')

Trigger = Union[str, Pattern]
CommandHandler = Callable[['CommandContext'], Union[None, Awaitable[None]]]

@dataclass(frozen=True)
class CommandOptions:
    """Per-command dispatch options"""
    permission_level: PermissionLevel = PermissionLevel.EVERYONE
    description: str = ''
    usage: str = ''
    guild_only: bool = False

@dataclass(frozen=True)
class Command:
    """
    Immutable command descriptor.

    ``name`` is the lower-cased literal, or the pattern source for pattern
    triggers. The owning module is held weakly so a command never keeps an
    unloaded module alive.
    """
    name: str
    trigger: Trigger
    handler: CommandHandler
    options: CommandOptions = field(default_factory=CommandOptions)
    module_ref: Optional[weakref.ReferenceType] = field(default=None, compare=False, repr=False)

    @property
    def module(self):
        return self.module_ref() if self.module_ref is not None else None

    @property
    def is_pattern(self) -> bool:
        return not isinstance(self.trigger, str)

    @property
    def permission_level(self) -> PermissionLevel:
        return self.options.permission_level

    def __str__(self) -> str:
        return self.name

@dataclass
class CommandContext:
    """Everything a command handler receives for one invocation"""
    message: Any
    command: Command
    args: List[str]
    prefix: str
    registry: 'CommandRegistry'
    match: Optional[re.Match] = None

    @property
    def guild(self):
        return getattr(self.message, 'guild', None)

    @property
    def author(self):
        return self.message.author

    @property
    def channel(self):
        return getattr(self.message, 'channel', None)

    async def reply(self, content: str):
        """Send a message to the channel the command came from"""
        return await self.message.channel.send(content)

class CommandRegistry:
    """
    Registry and dispatch pipeline for text commands.

    Dispatch steps for one message: prefix check, literal lookup on the
    first token (case-insensitive), pattern triggers in registration order,
    permission check, per-guild module check, handler call. Handler
    exceptions are reported through ErrorService and never propagate.
    """

    def __init__(self, service_registry: ServiceRegistry):
        self.service_registry = service_registry
        self.config = service_registry.get(BotConfiguration)
        self.event_bus = service_registry.get(EventBus)
        self.permissions = service_registry.get(PermissionEvaluator)
        self.error_service = service_registry.get(ErrorService)

        self._literals: Dict[str, Command] = {}
        self._patterns: Dict[str, Command] = {}

        # Called with the CommandContext of a denied invocation
        self.on_denied: Optional[Callable[[CommandContext], Any]] = None

        logger.info("CommandRegistry initialized")

    def register(self, trigger: Trigger, options: Optional[CommandOptions] = None,
                 handler: Optional[CommandHandler] = None, module=None) -> Command:
        """
        Register a command.

        Args:
            trigger: Literal command name or compiled regular expression
            options: Dispatch options (defaults to everyone, anywhere)
            handler: Called with a CommandContext; may be a coroutine function
            module: Owning module, referenced weakly

        Returns:
            The registered Command

        Raises:
            DuplicateTrigger: If an equal name or pattern is already registered
        """
        if handler is None and callable(options):
            handler, options = options, None
        if handler is None:
            raise TypeError("No command handler specified")
        options = options or CommandOptions()
        module_ref = weakref.ref(module) if module is not None else None

        if isinstance(trigger, str):
            name = trigger.strip().lower()
            if not name or len(name.split()) != 1:
                raise ValueError(f"Invalid command name: '{trigger}'")
            if self._name_taken(name):
                raise DuplicateTrigger(name)
            command = Command(name, name, handler, options, module_ref)
            self._literals[name] = command
        else:
            if self._name_taken(trigger.pattern):
                raise DuplicateTrigger(trigger.pattern)
            command = Command(trigger.pattern, trigger, handler, options, module_ref)
            self._patterns[trigger.pattern] = command

        logger.debug(f"Registered command '{command.name}'")
        return command

    def unregister(self, command: Union[Command, Trigger]) -> bool:
        """
        Remove a command by descriptor, name or pattern.

        Returns:
            True if a command was removed
        """
        registered = self.get(command)
        if registered is None:
            return False
        if isinstance(command, Command) and registered is not command:
            return False

        if registered.is_pattern:
            del self._patterns[registered.name]
        else:
            del self._literals[registered.name]
        logger.debug(f"Unregistered command '{registered.name}'")
        return True

    def get(self, trigger: Union[Command, Trigger]) -> Optional[Command]:
        if isinstance(trigger, Command):
            trigger = trigger.trigger
        if isinstance(trigger, str):
            return self._literals.get(trigger.strip().lower())
        return self._patterns.get(trigger.pattern)

    def _name_taken(self, name: str) -> bool:
        """Literal names and pattern sources share one namespace"""
        return name in self._literals or name in self._patterns

    def all(self) -> List[Command]:
        return list(self._literals.values()) + list(self._patterns.values())

    def __len__(self) -> int:
        return len(self._literals) + len(self._patterns)

    def __contains__(self, trigger) -> bool:
        return self.get(trigger) is not None

    async def get_prefix(self, message) -> Optional[str]:
        """
        Active prefix for a message.

        Self-bot mode answers other users only through the public prefix
        (no public prefix means they are ignored). Otherwise a guild's
        ``prefix`` setting overrides the configured prefix.
        """
        if self.config.self_bot and str(message.author.id) != self._bot_user_id():
            return self.config.public_prefix

        guild = getattr(message, 'guild', None)
        if guild is not None:
            settings = self._settings()
            if settings is not None:
                guild_prefix = await settings.get(guild.id, 'prefix')
                if guild_prefix:
                    return guild_prefix
        return self.config.prefix

    async def process_message(self, message) -> Optional[CommandContext]:
        """
        Dispatch one inbound message.

        Returns:
            The CommandContext the handler was invoked with, or None when
            nothing was invoked
        """
        content = getattr(message, 'content', None) or ''
        prefix = await self.get_prefix(message)
        if not prefix or not content.startswith(prefix):
            return None

        resolved = self.resolve(content[len(prefix):])
        if resolved is None:
            return None
        command, args, match = resolved

        guild = getattr(message, 'guild', None)
        if command.options.guild_only and guild is None:
            logger.debug(f"Ignoring guild-only command '{command.name}' outside a guild")
            return None

        ctx = CommandContext(message, command, args, prefix, self, match)

        if not self.permissions.check_message(message, command.permission_level):
            await self._deny(ctx)
            return None

        module = command.module
        if guild is not None and module is not None and await module.is_disabled_for_guild(guild):
            logger.debug(f"[{guild.id}]: Module '{module.id}' disabled, skipping '{command.name}'")
            return None

        await self._invoke(ctx)
        return ctx

    def resolve(self, text: str) -> Optional[Tuple[Command, List[str], Optional[re.Match]]]:
        """Match prefix-stripped text against literal names, then patterns"""
        tokens = text.split()
        if tokens:
            command = self._literals.get(tokens[0].lower())
            if command is not None:
                return command, tokens[1:], None

        remaining = text.strip()
        for command in list(self._patterns.values()):
            match = command.trigger.search(remaining)
            if match:
                return command, tokens, match
        return None

    async def _deny(self, ctx: CommandContext) -> None:
        logger.info(
            f"Denied '{ctx.command.name}' for user {ctx.author.id} "
            f"(requires {ctx.command.permission_level.name})"
        )
        self.event_bus.emit('command.denied', ctx)
        if self.on_denied is None:
            return
        try:
            result = self.on_denied(ctx)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            self.error_service.report_handler_failure(
                f"denial callback for '{ctx.command.name}'", e,
                guild=ctx.guild, author=ctx.author
            )

    async def _invoke(self, ctx: CommandContext) -> None:
        command = ctx.command
        module = command.module
        try:
            result = command.handler(ctx)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            self.error_service.report_handler_failure(
                f"command '{command.name}'", e,
                module_id=getattr(module, 'id', None),
                guild=ctx.guild, author=ctx.author
            )

    def _settings(self):
        return self.service_registry.get_optional(SettingsManager)

    def _bot_user_id(self) -> Optional[str]:
        gateway = self.service_registry.get_optional(IGatewayClient)
        user_id = gateway.user_id if gateway is not None else None
        return str(user_id) if user_id is not None else None
