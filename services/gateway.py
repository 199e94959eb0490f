"""
Gateway Client Adapter for GuildKit

The framework only needs listener registration, the bot's own user id and a
login call from the platform client. DiscordGateway provides them on top of
discord.py.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Hashable, List, Optional, Set

import discord

logger = logging.getLogger('guildkit.services.gateway')

SERIALIZED_EVENTS = {'message'}

class IGatewayClient(ABC):
    """Interface of the platform gateway client"""

    @abstractmethod
    def on(self, event: str, handler: Callable) -> None:
        """Add a listener for a platform event (e.g. "message")"""
        pass

    @abstractmethod
    def remove_listener(self, event: str, handler: Callable) -> bool:
        """Remove a listener; returns False if it was not registered"""
        pass

    @property
    @abstractmethod
    def user_id(self) -> Optional[int]:
        """Id of the logged-in bot user, None before login"""
        pass

    @abstractmethod
    def is_ready(self) -> bool:
        """Whether the gateway finished its initial connection"""
        pass

    @abstractmethod
    async def start(self, token: str) -> None:
        """Log in and run the gateway connection"""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Disconnect from the gateway"""
        pass

class DiscordGateway(discord.AutoShardedClient, IGatewayClient):
    """
    discord.py client that fans every dispatched event out to the listeners
    added with on().

    Event names are discord.py's without the ``on_`` prefix ("message",
    "guild_join", "ready"). Each listener runs in its own task, except for
    message events: those are queued per channel and handled one at a time,
    so dispatch for a message finishes before the next one from the same
    channel starts.
    """

    def __init__(self, shard_count: Optional[int] = None, intents: Optional[discord.Intents] = None):
        if intents is None:
            intents = discord.Intents.default()
            intents.message_content = True
            intents.members = False
        super().__init__(intents=intents, shard_count=shard_count)
        self._event_listeners: Dict[str, List[Callable]] = {}
        self._listener_tasks: Set[asyncio.Task] = set()
        self._source_queues: Dict[Hashable, asyncio.Queue] = {}

        logger.info("DiscordGateway initialized")

    def on(self, event: str, handler: Callable) -> None:
        self._event_listeners.setdefault(event, []).append(handler)
        logger.debug(f"Added gateway listener for '{event}'")

    def remove_listener(self, event: str, handler: Callable) -> bool:
        listeners = self._event_listeners.get(event)
        if not listeners or handler not in listeners:
            return False
        listeners.remove(handler)
        if not listeners:
            del self._event_listeners[event]
        logger.debug(f"Removed gateway listener for '{event}'")
        return True

    def listener_count(self, event: str) -> int:
        return len(self._event_listeners.get(event, ()))

    @property
    def user_id(self) -> Optional[int]:
        return self.user.id if self.user else None

    def dispatch(self, event_name: str, /, *args, **kwargs) -> None:
        super().dispatch(event_name, *args, **kwargs)
        handlers = list(self._event_listeners.get(event_name, ()))
        if not handlers:
            return
        if event_name in SERIALIZED_EVENTS:
            self._enqueue(_source_key(args), (event_name, handlers, args, kwargs))
            return
        for handler in handlers:
            self._spawn(self._run_listener(event_name, handler, *args, **kwargs))

    async def wait_for_listeners(self) -> None:
        """Wait until every scheduled listener has finished"""
        while self._listener_tasks:
            await asyncio.gather(*list(self._listener_tasks), return_exceptions=True)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._listener_tasks.add(task)
        task.add_done_callback(self._listener_tasks.discard)
        return task

    def _enqueue(self, key: Hashable, item: tuple) -> None:
        queue = self._source_queues.get(key)
        if queue is None:
            queue = self._source_queues[key] = asyncio.Queue()
            self._spawn(self._drain_source(key, queue))
        queue.put_nowait(item)

    async def _drain_source(self, key: Hashable, queue: asyncio.Queue) -> None:
        try:
            while not queue.empty():
                event_name, handlers, args, kwargs = queue.get_nowait()
                for handler in handlers:
                    await self._run_listener(event_name, handler, *args, **kwargs)
        finally:
            self._source_queues.pop(key, None)

    async def _run_listener(self, event_name: str, handler: Callable, *args, **kwargs) -> None:
        try:
            result = handler(*args, **kwargs)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            logger.error(f"Unhandled error in gateway listener for '{event_name}': {e}", exc_info=e)

def _source_key(args: tuple) -> Any:
    """Channel id of a message payload (None when there is none)"""
    channel = getattr(args[0], 'channel', None) if args else None
    return getattr(channel, 'id', None)
