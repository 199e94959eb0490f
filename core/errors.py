"""
Framework Errors for GuildKit
"""

from typing import Iterable, Optional


class FrameworkError(Exception):
    """Base class for every error raised by the framework"""
    pass


class ConfigurationError(FrameworkError):
    """Raised when configuration is invalid or missing"""
    pass


class DuplicateRegistration(FrameworkError):
    """Raised when a command or parameter name is already taken"""
    pass


class DuplicateTrigger(DuplicateRegistration):
    """Raised when a command trigger collides with a registered one"""

    def __init__(self, trigger: str):
        super().__init__(f"Command trigger '{trigger}' is already registered")
        self.trigger = trigger


class LifecycleError(FrameworkError):
    """Base class for module lifecycle precondition violations"""
    pass


class AlreadyLoaded(LifecycleError):
    def __init__(self, module_id: str):
        super().__init__(f"Module '{module_id}' is already loaded")
        self.module_id = module_id


class UnknownModule(LifecycleError):
    def __init__(self, module_id: str):
        super().__init__(f"Module '{module_id}' is not loaded")
        self.module_id = module_id


class DependentsActive(LifecycleError):
    """Raised when unloading a module that loaded modules still require"""

    def __init__(self, module_id: str, dependents: Iterable[str]):
        self.module_id = module_id
        self.dependents = sorted(dependents)
        super().__init__(
            f"Cannot unload '{module_id}': modules {self.dependents} depend on it"
        )


class CircularDependencyError(LifecycleError):
    """Raised when a dependency edge would close a cycle"""
    pass


class ModuleLoadError(LifecycleError):
    """Raised when a module fails to initialize (the module ends up errored)"""

    def __init__(self, module_id: str, cause: Optional[BaseException] = None):
        detail = f": {cause}" if cause else ""
        super().__init__(f"Module '{module_id}' failed to load{detail}")
        self.module_id = module_id


class HandlerFailure(FrameworkError):
    """Wraps an exception raised by a command or event handler"""

    def __init__(self, source: str, original: BaseException):
        super().__init__(f"Handler for {source} failed: {original!r}")
        self.source = source
        self.original = original


class BackendUnavailable(FrameworkError):
    """Raised when the data store backend cannot serve an operation"""
    pass
