"""
GuildKit Application
"""

import asyncio
import logging
import logging.handlers
import time
from pathlib import Path
from typing import Any, Dict, Optional

from core import ServiceRegistry, ServiceLifetime, EventBus, ConfigurationManager, BotConfiguration
from data import IDataStore, create_data_store
from .command_service import CommandRegistry
from .error_service import ErrorService
from .gateway import IGatewayClient, DiscordGateway
from .guild_service import GuildManager
from .module_loader import ModuleLoader
from .permission_service import PermissionEvaluator
from .settings_service import SettingsManager

logger = logging.getLogger('guildkit.services.bot_application')

VERSION = "1.0.0"

class BotApplication:
    """
    Root of one bot instance.

    Owns the ServiceRegistry every framework service is resolved from, wires
    gateway events into the framework and drives startup and shutdown.
    """

    def __init__(self, config: BotConfiguration,
                 service_registry: Optional[ServiceRegistry] = None,
                 gateway: Optional[IGatewayClient] = None,
                 data_store: Optional[IDataStore] = None):
        self.config = config
        self.service_registry = service_registry or ServiceRegistry()
        self.gateway = gateway
        self.data_store = data_store
        self.boot_time = time.time()
        self.version = VERSION
        self._initialized = False
        self._logging_configured = False

        logger.info("BotApplication initialized")

    async def initialize(self) -> None:
        """Register all services and wire gateway events"""
        if self._initialized:
            return
        logger.info(f"Initializing GuildKit {self.version}...")

        self._register_core_services()
        self._register_framework_services()
        self._setup_gateway_events()

        self._initialized = True
        logger.info("GuildKit services initialized successfully")

    @property
    def commands(self) -> CommandRegistry:
        return self.service_registry.get(CommandRegistry)

    @property
    def modules(self) -> ModuleLoader:
        return self.service_registry.get(ModuleLoader)

    @property
    def event_bus(self) -> EventBus:
        return self.service_registry.get(EventBus)

    async def load_modules(self) -> None:
        await self.modules.load_all()
        if self.config.watch:
            self.modules.start_watching()

    async def connect_data_store(self) -> None:
        """Connect the data store; modules may read it during init"""
        await self.data_store.connect()
        logger.info(f"Connected {type(self.data_store).__name__}")

    async def establish_connection(self) -> None:
        """Log in to the gateway (runs until disconnect)"""
        logger.info("Logging in...")
        await self.gateway.start(self.config.token)

    async def start(self) -> None:
        """Data store first, then modules, gateway login last"""
        await self.initialize()
        await self.connect_data_store()
        await self.load_modules()
        await self.establish_connection()

    async def run(self) -> None:
        self._setup_logging()
        await self.start()

    def run_sync(self) -> None:
        """Run the bot synchronously (for main entry point)"""
        try:
            asyncio.run(self._run_until_stopped())
        except KeyboardInterrupt:
            logger.info("Bot shutdown requested")

    async def shutdown(self) -> None:
        """Unload modules, close the data store and disconnect"""
        logger.info("Shutting down GuildKit...")
        if not self._initialized:
            return

        loader = self.modules
        loader.stop_watching()
        await loader.unload_all()
        await self.event_bus.drain()

        try:
            await self.data_store.close()
        except Exception as e:
            logger.error(f"Error closing data store: {e}")
        try:
            await self.gateway.close()
        except Exception as e:
            logger.error(f"Error closing gateway: {e}")

        logger.info("GuildKit shutdown complete")

    def get_service_stats(self) -> Dict[str, Any]:
        """Get statistics about the running instance"""
        registered = self.service_registry.get_registered_services()
        stats: Dict[str, Any] = {
            'version': self.version,
            'uptime': time.time() - self.boot_time,
            'total_services': len(registered),
            'services': {
                service_type.__name__: {
                    'lifetime': definition.lifetime.value,
                    'has_instance': definition.instance is not None
                }
                for service_type, definition in registered.items()
            }
        }
        if self._initialized:
            stats['modules'] = {m: mod.state.value for m, mod in self.modules.modules.items()}
            stats['commands'] = len(self.commands)
            stats['events'] = self.event_bus.get_stats()
            stats['errors'] = self.service_registry.get(ErrorService).get_error_stats()
        return stats

    async def _run_until_stopped(self) -> None:
        try:
            await self.run()
        finally:
            await self.shutdown()

    def _register_core_services(self) -> None:
        registry = self.service_registry
        registry.register_instance(ServiceRegistry, registry)
        registry.register_instance(BotConfiguration, self.config)
        registry.register(EventBus, lifetime=ServiceLifetime.SINGLETON)

        if self.data_store is None:
            self.data_store = create_data_store(self.config)
        registry.register_instance(IDataStore, self.data_store)

        if self.gateway is None:
            self.gateway = DiscordGateway(shard_count=self.config.shard_count)
        registry.register_instance(IGatewayClient, self.gateway)

        logger.debug("Core services registered")

    def _register_framework_services(self) -> None:
        registry = self.service_registry
        config = self.config

        registry.register(
            PermissionEvaluator,
            factory=lambda: PermissionEvaluator.from_config(config),
            lifetime=ServiceLifetime.SINGLETON
        )
        registry.register(ErrorService, lifetime=ServiceLifetime.SINGLETON)
        registry.register(GuildManager, lifetime=ServiceLifetime.SINGLETON)
        registry.register(SettingsManager, lifetime=ServiceLifetime.SINGLETON)
        registry.register(CommandRegistry, lifetime=ServiceLifetime.SINGLETON)
        registry.register(ModuleLoader, lifetime=ServiceLifetime.SINGLETON)

        registry.get(CommandRegistry)
        registry.get(ModuleLoader)

        logger.debug("Framework services registered")

    def _setup_gateway_events(self) -> None:
        self.gateway.on('message', self._on_message)
        self.gateway.on('ready', self._on_ready)
        self.gateway.on('error', self._on_error)

    async def _on_message(self, message) -> None:
        if str(message.author.id) in self.config.blacklist:
            return
        await self.commands.process_message(message)

    async def _on_ready(self, *args) -> None:
        if self.config.self_bot and self.gateway.user_id is not None:
            self.service_registry.get(PermissionEvaluator).add_owner(self.gateway.user_id)
        logger.info(f"Bot ready (user id {self.gateway.user_id})")
        await self.event_bus.emit_async('ready')

    async def _on_error(self, error, *args) -> None:
        logger.error(f"Gateway error: {error}")

    def _setup_logging(self) -> None:
        """Console and rotating file handlers on the guildkit and discord loggers"""
        if self._logging_configured:
            return
        level = logging.DEBUG if self.config.debug else self.config.log_level

        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        handlers = [logging.StreamHandler()]
        if self.config.log_file_path:
            log_path = Path(self.config.log_file_path)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.handlers.RotatingFileHandler(
                filename=log_path,
                encoding='utf-8',
                maxBytes=32 * 1024 * 1024,  # 32 MiB
                backupCount=5
            ))

        for name in ('guildkit', 'discord'):
            target = logging.getLogger(name)
            target.setLevel(level)
            for handler in handlers:
                handler.setFormatter(formatter)
                target.addHandler(handler)
            target.propagate = False

        logging.getLogger('discord.http').setLevel(logging.INFO)
        logging.getLogger('discord.gateway').setLevel(logging.INFO)
        self._logging_configured = True
        logger.debug("Logging configured")

def create_application(base_path: Optional[Path] = None) -> BotApplication:
    """
    Load configuration and create a BotApplication.

    Raises:
        ConfigurationError: If the configuration is invalid or the token missing
    """
    config = ConfigurationManager(base_path).get_configuration()
    return BotApplication(config)
