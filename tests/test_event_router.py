"""
Event router tests: namespace resolution, the three binding kinds and the
per-guild guard.
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock

import pytest

from core import FrameworkError
from data import MemoryDataStore
from services import BotApplication, EventNamespace, ErrorService, Module, extract_guild
from services.event_router import resolve_event_name
from tests.conftest import FakeGateway, make_guild, make_message


class Plain(Module):
    pass


class Locked(Module):
    allow_disabling = False


@pytest.fixture
async def module(app):
    app.modules.register_module_class('plain', Plain)
    return (await app.modules.load('plain'))[0]


class TestNamespaceResolution:

    @pytest.mark.parametrize('name,expected', [
        ('discord.message', (EventNamespace.PLATFORM, 'message')),
        ('platform.guild_join', (EventNamespace.PLATFORM, 'guild_join')),
        ('client.ready', (EventNamespace.PLATFORM, 'ready')),
        ('bot.message_delete', (EventNamespace.PLATFORM, 'message_delete')),
        ('db.guild:1', (EventNamespace.DATASTORE, 'guild:1')),
        ('datastore.a.b', (EventNamespace.DATASTORE, 'a.b')),
        ('ds.key', (EventNamespace.DATASTORE, 'key')),
        ('database.key', (EventNamespace.DATASTORE, 'key')),
        ('module.loaded', (EventNamespace.INTERNAL, 'module.loaded')),
        ('ready', (EventNamespace.INTERNAL, 'ready')),
        ('discord.', (EventNamespace.INTERNAL, 'discord.')),
    ])
    def test_resolve_event_name(self, name, expected):
        assert resolve_event_name(name) == expected


class TestExtractGuild:

    def test_guild_payload(self):
        guild = make_guild()
        assert extract_guild(guild) is guild

    def test_guild_attribute(self):
        guild = make_guild()
        assert extract_guild(make_message('x', guild=guild)) is guild

    def test_duck_typed_guild_is_not_a_guild(self):
        assert extract_guild(SimpleNamespace(guild=SimpleNamespace(id=1))) is None
        assert extract_guild(SimpleNamespace(id=1, name='guild-like')) is None

    def test_no_payload_guild(self):
        assert extract_guild(None) is None
        assert extract_guild({'guild': 1}) is None
        assert extract_guild(make_message('x')) is None


class TestPlatformEvents:

    @pytest.mark.asyncio
    async def test_register_and_unregister(self, module, gateway):
        handler = Mock()
        binding = module.register_event('discord.message_delete', handler)

        assert binding.namespace is EventNamespace.PLATFORM
        assert binding.source_name == 'message_delete'
        assert gateway.listener_count('message_delete') == 1

        message = make_message('deleted')
        await gateway.emit('message_delete', message)
        handler.assert_called_once_with(message)

        assert module.unregister_event('discord.message_delete', handler) == 1
        assert gateway.listener_count('message_delete') == 0
        await gateway.emit('message_delete', message)
        handler.assert_called_once()

    @pytest.mark.asyncio
    async def test_unregister_is_idempotent(self, module):
        handler = Mock()
        binding = module.register_event('discord.typing', handler)

        assert module.unregister_event('discord.typing') == 1
        assert module.unregister_event('discord.typing') == 0
        assert not module.events.unregister_binding(binding)

    @pytest.mark.asyncio
    async def test_unregister_by_handler_keeps_other_bindings(self, module, gateway):
        first, second = Mock(), Mock()
        module.register_event('discord.reaction_add', first)
        module.register_event('discord.reaction_add', second)

        assert module.unregister_event('discord.reaction_add', first) == 1
        await gateway.emit('reaction_add', make_message('x'))

        first.assert_not_called()
        second.assert_called_once()

    @pytest.mark.asyncio
    async def test_guard_skips_disabled_guilds(self, module, gateway, guild):
        handler = AsyncMock()
        module.register_event('discord.message_edit', handler)
        other_guild = make_guild(2)
        await module.disable_for_guild(guild)

        await gateway.emit('message_edit', make_message('a', guild=guild))
        await gateway.emit('message_edit', make_message('b', guild=other_guild))
        await gateway.emit('message_edit', make_message('c'))
        await gateway.emit('message_edit', guild)

        assert handler.await_count == 2
        contents = [call.args[0].content for call in handler.await_args_list]
        assert contents == ['b', 'c']

    @pytest.mark.asyncio
    async def test_handler_errors_are_reported(self, module, gateway):
        module.register_event('discord.message', Mock(side_effect=KeyError('x')))

        await gateway.emit('message', make_message('--nothing'))

        stats = module.service_registry.get(ErrorService).get_error_stats()
        assert stats['failures_by_module'] == {'plain': 1}

    @pytest.mark.asyncio
    async def test_requires_gateway(self, module):
        module.events.gateway = None
        with pytest.raises(FrameworkError):
            module.register_event('discord.message', Mock())


class TestDataStoreEvents:

    @pytest.mark.asyncio
    async def test_subscription_binding(self, module, data_store):
        received = []
        binding = module.register_event('db.counter', received.append)

        assert binding.namespace is EventNamespace.DATASTORE
        assert binding.subscription is not None and binding.subscription.active

        await data_store.set('counter', 1)
        await data_store.wait_for_delivery()
        module.unregister_event('db.counter')
        await data_store.set('counter', 2)
        await data_store.wait_for_delivery()

        assert received == [1]
        assert not binding.subscription.active
        assert data_store.subscription_count('counter') == 0


class TestInternalEvents:

    @pytest.mark.asyncio
    async def test_bus_binding(self, module, app):
        handler = Mock()
        binding = module.register_event('stats.updated', handler)

        assert binding.namespace is EventNamespace.INTERNAL
        await app.event_bus.emit_async('stats.updated', 5)
        handler.assert_called_once_with(5)

        module.unregister_event('stats.updated')
        assert app.event_bus.listener_count('stats.updated') == 0

    @pytest.mark.asyncio
    async def test_wrapped_handler_is_guarded(self, module, app, guild):
        handler = Mock()
        module.register_event('audit.entry', handler)
        await module.disable_for_guild(guild)

        await app.event_bus.emit_async('audit.entry', make_message('x', guild=guild))
        await app.event_bus.emit_async('audit.entry', make_message('y'))

        assert handler.call_count == 1


class TestAllowDisabling:

    @pytest.mark.asyncio
    async def test_locked_module_always_receives_events(self, app, gateway, guild):
        app.modules.register_module_class('locked', Locked)
        locked = (await app.modules.load('locked'))[0]
        handler = Mock()
        locked.register_event('discord.message_edit', handler)

        assert not await locked.disable_for_guild(guild)
        await gateway.emit('message_edit', make_message('x', guild=guild))

        handler.assert_called_once()


class SlowStore(MemoryDataStore):
    """Reads suspend long enough for the caller to change state meanwhile"""

    async def get(self, key):
        await asyncio.sleep(0.05)
        return await super().get(key)


class TestUnregisterDuringGuardCheck:

    @pytest.mark.asyncio
    async def test_handler_released_mid_check_is_not_called(self, config, guild):
        gateway = FakeGateway()
        application = BotApplication(config, gateway=gateway, data_store=SlowStore())
        await application.initialize()
        application.modules.register_module_class('plain', Plain)
        module = (await application.modules.load('plain'))[0]
        handler = Mock()
        module.register_event('discord.message_edit', handler)

        pending = asyncio.ensure_future(gateway.emit('message_edit', make_message('x', guild=guild)))
        await asyncio.sleep(0.01)
        assert module.unregister_event('discord.message_edit', handler) == 1
        await pending

        handler.assert_not_called()
        await application.modules.unload_all()

    @pytest.mark.asyncio
    async def test_handler_released_by_unload_mid_check_is_not_called(self, config, guild):
        gateway = FakeGateway()
        application = BotApplication(config, gateway=gateway, data_store=SlowStore())
        await application.initialize()
        application.modules.register_module_class('plain', Plain)
        module = (await application.modules.load('plain'))[0]
        handler = Mock()
        module.register_event('discord.message_edit', handler)

        pending = asyncio.ensure_future(gateway.emit('message_edit', make_message('x', guild=guild)))
        await asyncio.sleep(0.01)
        await application.modules.unload('plain')
        await pending

        handler.assert_not_called()
