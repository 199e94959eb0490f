"""
Guild data, settings schema and the bundled ping module
"""

from pathlib import Path

import pytest

from core import ConfigurationError, DuplicateRegistration
from services import BotApplication, GuildManager, Parameter, SettingsManager
from tests.conftest import make_message

BOT_MODULES = Path(__file__).resolve().parent.parent / 'bot_modules'


@pytest.fixture
def settings(app):
    return app.service_registry.get(SettingsManager)


class TestParameter:

    @pytest.mark.parametrize('raw,expected', [
        ('yes', True), ('Off', False), ('1', True), (True, True)
    ])
    def test_bool_coercion(self, raw, expected):
        assert Parameter(type=bool).coerce(raw) is expected

    def test_invalid_bool(self):
        with pytest.raises(ValueError):
            Parameter(type=bool).coerce('maybe')

    def test_list_and_int_coercion(self):
        assert Parameter(type=list).coerce('a, b,,c') == ['a', 'b', 'c']
        assert Parameter(type=int).coerce('12') == 12


class TestGuildManager:

    @pytest.mark.asyncio
    async def test_module_flags(self, app, data_store):
        guilds = app.service_registry.get(GuildManager)

        assert await guilds.get_module_flag(5, 'music') is None
        await guilds.set_module_flag(5, 'music', True)
        assert await guilds.get_module_flag(5, 'music') is True
        assert await data_store.get('guild:5') == {'modules': {'music': {'disabled': True}}}

    @pytest.mark.asyncio
    async def test_malformed_documents_read_as_empty(self, app, data_store):
        guilds = app.service_registry.get(GuildManager)
        await data_store.set('guild:5', 'garbage')
        assert await guilds.get_guild_data(5) == {}
        assert await guilds.get_module_flag(5, 'music') is None


class TestSettingsManager:

    @pytest.mark.asyncio
    async def test_prefix_is_builtin(self, settings):
        assert 'prefix' in settings.keys()
        assert await settings.get(1, 'prefix') is None

    @pytest.mark.asyncio
    async def test_defaults_and_overrides(self, settings):
        settings.register('volume', Parameter(type=int, default=50))

        assert await settings.get(1, 'volume') == 50
        assert await settings.set(1, 'volume', '80') == 80
        assert await settings.get(1, 'volume') == 80
        assert await settings.get(2, 'volume') == 50

        await settings.set(1, 'volume', None)
        assert await settings.get(1, 'volume') == 50

    @pytest.mark.asyncio
    async def test_unknown_and_invalid(self, settings):
        settings.register('loud', Parameter(type=bool))
        with pytest.raises(ConfigurationError):
            await settings.get(1, 'nope')
        with pytest.raises(ConfigurationError):
            await settings.set(1, 'loud', 'perhaps')

    def test_duplicate_registration(self, settings):
        with pytest.raises(DuplicateRegistration):
            settings.register('prefix', Parameter())
        assert settings.unregister('prefix')
        assert not settings.unregister('prefix')


class TestPingModule:

    @pytest.fixture
    async def ping_app(self, config, gateway, data_store):
        config = config.model_copy(update={'module_path': str(BOT_MODULES), 'modules': ['ping']})
        application = BotApplication(config, gateway=gateway, data_store=data_store)
        await application.initialize()
        await application.load_modules()
        yield application
        await application.modules.unload_all()
        await application.event_bus.drain()

    @pytest.mark.asyncio
    async def test_ping_replies(self, ping_app, guild):
        message = make_message('--ping', guild=guild)
        await ping_app.commands.process_message(message)
        message.channel.send.assert_awaited_once_with('Pong!')

    @pytest.mark.asyncio
    async def test_reply_is_a_guild_setting(self, ping_app, guild):
        settings = ping_app.service_registry.get(SettingsManager)
        await settings.set(guild.id, 'ping.reply', 'Here!')

        message = make_message('--ping', guild=guild)
        await ping_app.commands.process_message(message)

        message.channel.send.assert_awaited_once_with('Here!')

    @pytest.mark.asyncio
    async def test_uptime_pattern(self, ping_app):
        message = make_message('--How long have you been up?')
        await ping_app.commands.process_message(message)
        assert message.channel.send.await_args.args[0].startswith('Up for')

    @pytest.mark.asyncio
    async def test_pingstats_requires_admin(self, ping_app):
        denied = make_message('--pingstats', author_id=300)
        allowed = make_message('--pingstats', author_id=200)

        await ping_app.commands.process_message(denied)
        await ping_app.commands.process_message(allowed)

        denied.channel.send.assert_not_awaited()
        allowed.channel.send.assert_awaited_once_with('0 pings since load')

    @pytest.mark.asyncio
    async def test_unload_removes_parameter(self, ping_app):
        settings = ping_app.service_registry.get(SettingsManager)
        assert 'ping.reply' in settings.keys()
        await ping_app.modules.unload('ping')
        assert 'ping.reply' not in settings.keys()
        assert 'ping' not in ping_app.commands
