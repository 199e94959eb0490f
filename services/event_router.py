"""
Event Router for GuildKit

Module-scoped event registration across three namespaces:

- PLATFORM (``discord.<event>``, ``platform.``, ``client.``, ``bot.``): gateway listeners
- DATASTORE (``db.<key>``, ``datastore.``, ``ds.``, ``database.``): DataStore subscriptions
- INTERNAL (anything else): framework EventBus listeners under the full name

Every handler is wrapped with the per-guild module guard.
"""

import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional, Tuple

import discord

from core import ServiceRegistry, EventBus, FrameworkError
from data import IDataStore, DataSubscription
from .error_service import ErrorService
from .gateway import IGatewayClient

logger = logging.getLogger('guildkit.services.event_router')

class EventNamespace(Enum):
    """Where an event binding is attached"""
    PLATFORM = "platform"
    DATASTORE = "datastore"
    INTERNAL = "internal"

PLATFORM_PREFIXES = frozenset({'platform', 'discord', 'client', 'bot'})
DATASTORE_PREFIXES = frozenset({'datastore', 'db', 'ds', 'database'})

def resolve_event_name(name: str) -> Tuple[EventNamespace, str]:
    """
    Split an event name into its namespace and source name.

    Returns:
        (namespace, source_name); internal events keep the full name
    """
    head, sep, rest = name.partition('.')
    if sep and rest:
        if head in PLATFORM_PREFIXES:
            return EventNamespace.PLATFORM, rest
        if head in DATASTORE_PREFIXES:
            return EventNamespace.DATASTORE, rest
    return EventNamespace.INTERNAL, name

def extract_guild(payload: Any) -> Optional[discord.Guild]:
    """
    Guild an event payload belongs to.

    The payload is a guild when it is a discord.Guild; otherwise its
    ``guild`` attribute is used when that is a discord.Guild. Any other
    shape (including duck-typed guild-like objects) counts as no guild.
    """
    if isinstance(payload, discord.Guild):
        return payload
    guild = getattr(payload, 'guild', None)
    if isinstance(guild, discord.Guild):
        return guild
    return None

@dataclass(eq=False)
class EventBinding:
    """One registration made by a module; removed exactly once"""
    name: str
    source_name: str
    namespace: EventNamespace
    raw_handler: Callable
    wrapped_handler: Callable
    subscription: Optional[DataSubscription] = None
    active: bool = True

class EventRouter:
    """
    Owns the event bindings of one module.

    Bindings are kept in registration order; removal is a table operation on
    the binding records and is idempotent.
    """

    def __init__(self, module, service_registry: ServiceRegistry):
        self.module = module
        self.service_registry = service_registry
        self.event_bus = service_registry.get(EventBus)
        self.data_store = service_registry.get(IDataStore)
        self.error_service = service_registry.get(ErrorService)
        self.gateway = service_registry.get_optional(IGatewayClient)
        self._bindings: List[EventBinding] = []

    @property
    def bindings(self) -> List[EventBinding]:
        return list(self._bindings)

    def __len__(self) -> int:
        return len(self._bindings)

    def register(self, name: str, handler: Callable) -> EventBinding:
        """
        Attach a handler to an event.

        Args:
            name: Namespaced event name, e.g. "discord.message_delete" or "db.guild:1"
            handler: Sync or async callable receiving the event arguments

        Returns:
            The binding record for this registration
        """
        namespace, source_name = resolve_event_name(name)
        binding = EventBinding(name, source_name, namespace, handler, None)
        binding.wrapped_handler = self._wrap(binding)

        if namespace is EventNamespace.PLATFORM:
            if self.gateway is None:
                raise FrameworkError(f"Cannot register '{name}': no gateway client configured")
            self.gateway.on(source_name, binding.wrapped_handler)
        elif namespace is EventNamespace.DATASTORE:
            binding.subscription = self.data_store.subscribe(source_name, binding.wrapped_handler)
        else:
            self.event_bus.on(name, binding.wrapped_handler)

        self._bindings.append(binding)
        logger.debug(f"[{self.module.id}]: Registered {namespace.value} event '{name}'")
        return binding

    def unregister(self, name: str, handler: Optional[Callable] = None) -> int:
        """
        Remove bindings by event name.

        Args:
            name: Event name as passed to register()
            handler: Only remove the binding of this original handler

        Returns:
            Number of bindings removed
        """
        matching = [
            b for b in self._bindings
            if b.name == name and (handler is None or b.raw_handler is handler)
        ]
        for binding in matching:
            self._release(binding)
        return len(matching)

    def unregister_binding(self, binding: EventBinding) -> bool:
        if binding not in self._bindings:
            return False
        self._release(binding)
        return True

    def unregister_all(self) -> int:
        """Remove every binding; used on module teardown"""
        count = len(self._bindings)
        for binding in list(self._bindings):
            self._release(binding)
        return count

    def _release(self, binding: EventBinding) -> None:
        if not binding.active:
            return
        binding.active = False

        if binding.namespace is EventNamespace.PLATFORM:
            if self.gateway is not None:
                self.gateway.remove_listener(binding.source_name, binding.wrapped_handler)
        elif binding.namespace is EventNamespace.DATASTORE:
            binding.subscription.cancel()
        else:
            self.event_bus.remove_listener(binding.name, binding.wrapped_handler)

        self._bindings.remove(binding)
        logger.debug(f"[{self.module.id}]: Unregistered event '{binding.name}'")

    def _wrap(self, binding: EventBinding) -> Callable:
        module = self.module
        error_service = self.error_service

        async def guarded_handler(*args, **kwargs):
            if not binding.active:
                return False
            guild = extract_guild(args[0]) if args else None
            if guild is not None and await module.is_disabled_for_guild(guild):
                return False
            # The binding may have been released while the guild check awaited
            if not binding.active:
                return False
            try:
                result = binding.raw_handler(*args, **kwargs)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                error_service.report_handler_failure(
                    f"event '{binding.name}'", e, module_id=module.id, guild=guild
                )
            return True

        guarded_handler.__name__ = f"{module.id}:{binding.name}"
        return guarded_handler
