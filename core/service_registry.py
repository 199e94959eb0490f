"""
Service Registry - Dependency Injection Container for GuildKit
"""

import logging
import inspect
from abc import ABC, ABCMeta
from typing import TypeVar, Type, Dict, Any, Optional, Callable, Set
from enum import Enum
from dataclasses import dataclass
from threading import Lock

from .errors import FrameworkError, CircularDependencyError

logger = logging.getLogger('guildkit.core.service_registry')

T = TypeVar('T')

class ServiceLifetime(Enum):
    """Service lifetime management options"""
    SINGLETON = "singleton"
    TRANSIENT = "transient"

class ServiceNotFound(FrameworkError):
    """Raised when a requested service is not registered"""
    pass

class ServiceConfigurationError(FrameworkError):
    """Raised when service registration is invalid"""
    pass

@dataclass
class ServiceDefinition:
    """Metadata for a registered service"""
    interface_type: Type
    implementation_type: Optional[Type]
    lifetime: ServiceLifetime
    factory: Optional[Callable] = None
    instance: Optional[Any] = None

class ServiceRegistry:
    """
    Dependency injection container owned by one bot application.

    Every framework component receives the registry at construction and
    resolves its collaborators from it; nothing is looked up from module-level
    globals, so several independent bots can live in one process (and tests
    can build isolated ones).

    Usage:
        registry = ServiceRegistry()
        registry.register_instance(IDataStore, MemoryDataStore())
        registry.register(CommandRegistry)
        commands = registry.get(CommandRegistry)
    """

    def __init__(self):
        self._services: Dict[Type, ServiceDefinition] = {}
        self._resolving: Set[Type] = set()
        self._lock = Lock()
        logger.debug("ServiceRegistry initialized")

    def register(
        self,
        interface_type: Type[T],
        implementation_type: Optional[Type[T]] = None,
        lifetime: ServiceLifetime = ServiceLifetime.SINGLETON,
        factory: Optional[Callable[..., T]] = None
    ) -> 'ServiceRegistry':
        """
        Register a service with the container.

        Args:
            interface_type: The interface/abstract type to register
            implementation_type: The concrete implementation (if not using factory)
            lifetime: Service lifetime management
            factory: Optional factory function for complex construction

        Returns:
            Self for method chaining

        Raises:
            ServiceConfigurationError: If registration parameters are invalid
        """
        with self._lock:
            if implementation_type is None and factory is None:
                if self._is_abstract(interface_type):
                    raise ServiceConfigurationError(
                        f"Must provide implementation_type or factory for abstract type {interface_type}"
                    )
                implementation_type = interface_type

            if implementation_type and factory:
                raise ServiceConfigurationError(
                    "Cannot specify both implementation_type and factory"
                )

            if implementation_type and not issubclass(implementation_type, interface_type):
                raise ServiceConfigurationError(
                    f"{implementation_type} does not implement {interface_type}"
                )

            self._services[interface_type] = ServiceDefinition(
                interface_type=interface_type,
                implementation_type=implementation_type,
                lifetime=lifetime,
                factory=factory
            )

            target_name = "factory" if factory else implementation_type.__name__
            logger.debug(
                f"Registered service: {interface_type.__name__} -> "
                f"{target_name} ({lifetime.value})"
            )
            return self

    def register_instance(self, interface_type: Type[T], instance: T) -> 'ServiceRegistry':
        """Register a pre-created instance as a singleton service"""
        with self._lock:
            self._services[interface_type] = ServiceDefinition(
                interface_type=interface_type,
                implementation_type=type(instance),
                lifetime=ServiceLifetime.SINGLETON,
                instance=instance
            )
            logger.debug(f"Registered instance: {interface_type.__name__}")
            return self

    def get(self, interface_type: Type[T]) -> T:
        """
        Resolve a service instance from the container.

        Raises:
            ServiceNotFound: If service is not registered
            CircularDependencyError: If constructor dependencies loop
        """
        return self._resolve_service(interface_type)

    def get_optional(self, interface_type: Type[T]) -> Optional[T]:
        """Resolve a service instance, returning None if not registered"""
        try:
            return self.get(interface_type)
        except ServiceNotFound:
            return None

    def is_registered(self, interface_type: Type) -> bool:
        return interface_type in self._services

    def get_registered_services(self) -> Dict[Type, ServiceDefinition]:
        """Get all registered services (for debugging/monitoring)"""
        return self._services.copy()

    def _resolve_service(self, interface_type: Type[T]) -> T:
        if interface_type in self._resolving:
            chain = " -> ".join(t.__name__ for t in self._resolving)
            raise CircularDependencyError(
                f"Circular service dependency detected: {chain} -> {interface_type.__name__}"
            )

        if interface_type not in self._services:
            raise ServiceNotFound(f"Service {interface_type.__name__} is not registered")

        service_def = self._services[interface_type]
        if service_def.lifetime == ServiceLifetime.SINGLETON and service_def.instance is not None:
            return service_def.instance

        self._resolving.add(interface_type)
        try:
            target = service_def.factory or service_def.implementation_type
            instance = target(**self._resolve_arguments(target))

            if service_def.lifetime == ServiceLifetime.SINGLETON:
                service_def.instance = instance

            logger.debug(f"Resolved service: {interface_type.__name__}")
            return instance
        finally:
            self._resolving.discard(interface_type)

    def _resolve_arguments(self, target: Callable) -> Dict[str, Any]:
        """Resolve annotated constructor/factory parameters from the container"""
        signature = inspect.signature(target.__init__ if inspect.isclass(target) else target)
        kwargs = {}
        for param_name, param in signature.parameters.items():
            if param_name == 'self' or param.annotation is inspect.Parameter.empty:
                continue
            if param.annotation is ServiceRegistry:
                kwargs[param_name] = self
                continue
            if param.default is not inspect.Parameter.empty:
                try:
                    kwargs[param_name] = self._resolve_service(param.annotation)
                except ServiceNotFound:
                    pass
            else:
                kwargs[param_name] = self._resolve_service(param.annotation)
        return kwargs

    def _is_abstract(self, cls: Type) -> bool:
        return inspect.isabstract(cls) or (isinstance(cls, ABCMeta) and ABC in cls.__bases__)
