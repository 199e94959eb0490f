"""
Core Infrastructure for GuildKit

Provides the foundational pieces every framework service is built on.

Key Components:
- ServiceRegistry: Dependency injection container owned by one bot application
- ConfigurationManager: Layered configuration with pydantic validation
- EventBus: Internal (framework) event bus
- errors: Typed error hierarchy shared by all components
"""

from .errors import (
    FrameworkError,
    ConfigurationError,
    DuplicateRegistration,
    DuplicateTrigger,
    LifecycleError,
    AlreadyLoaded,
    UnknownModule,
    DependentsActive,
    CircularDependencyError,
    ModuleLoadError,
    HandlerFailure,
    BackendUnavailable
)
from .service_registry import ServiceRegistry, ServiceLifetime, ServiceNotFound
from .config_manager import ConfigurationManager, BotConfiguration
from .event_bus import EventBus

__all__ = [
    'FrameworkError',
    'ConfigurationError',
    'DuplicateRegistration',
    'DuplicateTrigger',
    'LifecycleError',
    'AlreadyLoaded',
    'UnknownModule',
    'DependentsActive',
    'CircularDependencyError',
    'ModuleLoadError',
    'HandlerFailure',
    'BackendUnavailable',
    'ServiceRegistry',
    'ServiceLifetime',
    'ServiceNotFound',
    'ConfigurationManager',
    'BotConfiguration',
    'EventBus'
]
