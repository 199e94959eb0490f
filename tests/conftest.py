"""
Shared fixtures for the GuildKit test suite
"""

import inspect
from typing import Callable, Dict, List, Optional
from unittest.mock import AsyncMock, Mock

import discord
import pytest

from core import BotConfiguration
from data import MemoryDataStore
from services import BotApplication, IGatewayClient


class FakeGateway(IGatewayClient):
    """In-process gateway: tests emit platform events directly"""

    def __init__(self, user_id: int = 1):
        self._listeners: Dict[str, List[Callable]] = {}
        self._user_id = user_id
        self._ready = False
        self.started_with: Optional[str] = None
        self.closed = False

    def on(self, event: str, handler: Callable) -> None:
        self._listeners.setdefault(event, []).append(handler)

    def remove_listener(self, event: str, handler: Callable) -> bool:
        listeners = self._listeners.get(event, [])
        if handler not in listeners:
            return False
        listeners.remove(handler)
        return True

    @property
    def user_id(self) -> Optional[int]:
        return self._user_id

    def is_ready(self) -> bool:
        return self._ready

    async def start(self, token: str) -> None:
        self.started_with = token
        await self.emit('ready')

    async def close(self) -> None:
        self.closed = True

    def listener_count(self, event: Optional[str] = None) -> int:
        if event is not None:
            return len(self._listeners.get(event, ()))
        return sum(len(handlers) for handlers in self._listeners.values())

    async def emit(self, event: str, *args) -> None:
        """Deliver an event and wait for every listener"""
        if event == 'ready':
            self._ready = True
        for handler in list(self._listeners.get(event, ())):
            result = handler(*args)
            if inspect.isawaitable(result):
                await result


def make_guild(guild_id: int = 1000) -> Mock:
    guild = Mock(spec=discord.Guild)
    guild.id = guild_id
    return guild


def make_message(content: str, author_id: int = 100, guild=None, roles=()) -> Mock:
    author = Mock()
    author.id = author_id
    author.roles = []
    for role_name in roles:
        role = Mock()
        role.name = role_name
        author.roles.append(role)

    message = Mock()
    message.content = content
    message.author = author
    message.guild = guild
    message.channel = Mock()
    message.channel.send = AsyncMock()
    return message


@pytest.fixture
def config():
    return BotConfiguration(
        token='test-token',
        prefix='--',
        owner=['1'],
        admins=['200'],
        admin_roles=['Moderators'],
        dj_roles=['DJ'],
        blacklist=['666'],
        log_file_path=None
    )


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def data_store():
    return MemoryDataStore()


@pytest.fixture
async def app(config, gateway, data_store):
    application = BotApplication(config, gateway=gateway, data_store=data_store)
    await application.initialize()
    yield application
    await application.modules.unload_all()
    await application.event_bus.drain()


@pytest.fixture
def guild():
    return make_guild()
