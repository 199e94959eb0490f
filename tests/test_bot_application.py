"""
Application wiring, startup and shutdown
"""

import asyncio

import pytest

from core import ConfigurationError
from data import IDataStore, MemoryDataStore, SqliteDataStore
from services import (
    BotApplication, CommandRegistry, Module, ModuleLoader, PermissionEvaluator, PermissionLevel,
    create_application
)
from tests.conftest import FakeGateway


class StoreReader(Module):

    async def init(self):
        self.greeting = await self.data.get('greeting')


class TestBotApplication:

    @pytest.mark.asyncio
    async def test_initialize_registers_services(self, app, data_store):
        registry = app.service_registry
        assert registry.get(IDataStore) is data_store
        assert isinstance(registry.get(CommandRegistry), CommandRegistry)
        assert isinstance(registry.get(ModuleLoader), ModuleLoader)

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, app, gateway):
        await app.initialize()
        assert gateway.listener_count('message') == 1

    @pytest.mark.asyncio
    async def test_default_data_store_from_config(self, config, gateway):
        application = BotApplication(config, gateway=gateway)
        await application.initialize()
        assert isinstance(application.data_store, MemoryDataStore)

    @pytest.mark.asyncio
    async def test_applications_are_isolated(self, config):
        first = BotApplication(config, gateway=FakeGateway(), data_store=MemoryDataStore())
        second = BotApplication(config, gateway=FakeGateway(), data_store=MemoryDataStore())
        await first.initialize()
        await second.initialize()

        first.commands.register('only-first', handler=lambda ctx: None)

        assert 'only-first' not in second.commands

    @pytest.mark.asyncio
    async def test_start_and_shutdown(self, config, gateway, data_store):
        application = BotApplication(config, gateway=gateway, data_store=data_store)

        await application.start()
        assert gateway.started_with == 'test-token'
        assert data_store.ready

        await application.shutdown()
        assert gateway.closed

    @pytest.mark.asyncio
    async def test_store_is_connected_before_modules_load(self, config, gateway, tmp_path):
        config = config.model_copy(update={'modules': ['reader']})
        store = SqliteDataStore(tmp_path / 'start.db')
        application = BotApplication(config, gateway=gateway, data_store=store)
        await application.initialize()
        application.modules.register_module_class('reader', StoreReader)

        try:
            await asyncio.wait_for(application.start(), timeout=5)

            reader = application.modules.get('reader')
            assert reader.greeting is None
            assert gateway.started_with == 'test-token'
        finally:
            await application.shutdown()

    @pytest.mark.asyncio
    async def test_self_bot_user_becomes_owner(self, config, data_store):
        config = config.model_copy(update={'self_bot': True})
        application = BotApplication(config, gateway=FakeGateway(user_id=77), data_store=data_store)
        await application.initialize()

        await application.start()

        evaluator = application.service_registry.get(PermissionEvaluator)
        assert evaluator.level_for('77') == PermissionLevel.OWNER

    @pytest.mark.asyncio
    async def test_service_stats(self, app):
        stats = app.get_service_stats()
        assert stats['version'] == app.version
        assert stats['commands'] == 0
        assert 'CommandRegistry' in stats['services']
        assert stats['errors']['handler_failures'] == 0


class TestCreateApplication:

    def test_reads_configuration(self, tmp_path, monkeypatch):
        monkeypatch.setenv('GUILDKIT_TOKEN', 'abc')
        application = create_application(tmp_path)
        assert application.config.token == 'abc'

    def test_missing_token(self, tmp_path, monkeypatch):
        monkeypatch.delenv('GUILDKIT_TOKEN', raising=False)
        with pytest.raises(ConfigurationError):
            create_application(tmp_path)
