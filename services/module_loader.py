"""
Module Loader for GuildKit

Drives the module lifecycle (load, unload, reload), keeps the dependency
graph between loaded modules and answers the per-guild enable/disable
policy.
"""

import asyncio
import importlib.util
import inspect
import logging
import sys
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Type, Union

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from core import (
    ServiceRegistry, EventBus, BotConfiguration,
    AlreadyLoaded, UnknownModule, DependentsActive, CircularDependencyError, ModuleLoadError
)
from .error_service import ErrorService
from .guild_service import GuildManager
from .module import Module, ModuleState

logger = logging.getLogger('guildkit.services.module_loader')

IMPORT_NAMESPACE = 'guildkit_modules'

class ModuleLoader:
    """
    Owns every resident module.

    A module id maps to a Module instance in one of the ModuleState states.
    Unloaded modules have no entry. Errored modules keep an entry but hold
    no registrations.
    """

    def __init__(self, service_registry: ServiceRegistry):
        self.service_registry = service_registry
        self.config = service_registry.get(BotConfiguration)
        self.event_bus = service_registry.get(EventBus)
        self.guild_manager = service_registry.get(GuildManager)
        self.error_service = service_registry.get(ErrorService)

        self.module_path = Path(self.config.module_path)
        self.modules: Dict[str, Module] = {}
        self._module_classes: Dict[str, Type[Module]] = {}
        self._bot_ready = False
        self._watcher: Optional['ModuleWatcher'] = None

        self.event_bus.on('ready', self._on_ready)

        logger.info(f"ModuleLoader initialized (module path: {self.module_path})")

    # Lookup

    def register_module_class(self, module_id: str, module_class: Type[Module]) -> None:
        """Make a module loadable by id without importing it from the module path"""
        if not (inspect.isclass(module_class) and issubclass(module_class, Module)):
            raise TypeError(f"{module_class!r} is not a Module subclass")
        self._module_classes[module_id] = module_class

    def get(self, module_id: str) -> Module:
        """
        Raises:
            UnknownModule: If the module is not loaded
        """
        module = self.modules.get(module_id)
        if module is None or module.state is ModuleState.ERRORED:
            raise UnknownModule(module_id)
        return module

    def is_loaded(self, module_id: str) -> bool:
        module = self.modules.get(module_id)
        return module is not None and module.state is not ModuleState.ERRORED

    def __contains__(self, module_id: str) -> bool:
        return module_id in self.modules

    def discover(self) -> List[str]:
        """Ids of modules available under the module path or registered by class"""
        found: Set[str] = set(self._module_classes)
        if self.module_path.is_dir():
            for entry in self.module_path.iterdir():
                if entry.name.startswith(('_', '.')):
                    continue
                if entry.is_file() and entry.suffix == '.py':
                    found.add(entry.stem)
                elif entry.is_dir() and (entry / '__init__.py').exists():
                    found.add(entry.name)
        return sorted(found)

    # Lifecycle

    async def load(self, module_ids: Union[str, Iterable[str]]) -> List[Module]:
        """
        Load one module id or several, in order.

        Raises:
            AlreadyLoaded: If a module is resident and not errored
            UnknownModule: If no module with that id can be found
            ModuleLoadError: If initialization failed (the entry stays ERRORED)
        """
        if isinstance(module_ids, str):
            module_ids = [module_ids]
        return [await self._load_one(module_id) for module_id in module_ids]

    async def load_all(self) -> List[str]:
        """
        Load the configured modules (or every discovered one).

        Failures are logged and do not stop the remaining modules.
        """
        module_ids = self.config.modules or self.discover()
        loaded = []
        for module_id in module_ids:
            try:
                await self._load_one(module_id)
                loaded.append(module_id)
            except (ModuleLoadError, AlreadyLoaded, UnknownModule) as e:
                logger.error(f"Skipping module '{module_id}': {e}")
        logger.info(f"Loaded {len(loaded)}/{len(module_ids)} modules")
        return loaded

    async def unload(self, module_id: str, force: bool = False) -> List[str]:
        """
        Unload a module.

        Args:
            module_id: Module to unload; an absent id is a no-op
            force: Unload modules depending on it first (deepest first)

        Returns:
            Ids that were unloaded, in unload order

        Raises:
            DependentsActive: If loaded modules depend on it and force is False
        """
        module = self.modules.get(module_id)
        if module is None:
            return []

        dependents = sorted(d for d in module.dependents if d in self.modules)
        if dependents and not force:
            raise DependentsActive(module_id, dependents)

        unloaded: List[str] = []
        for dependent_id in dependents:
            unloaded.extend(await self.unload(dependent_id, force=True))

        await self._teardown(module)
        unloaded.append(module_id)
        return unloaded

    async def reload(self, module_id: str, force: bool = False) -> Module:
        """
        Unload and load a module again.

        Dependents unloaded by a forced cascade are loaded again afterwards.
        If the load fails the module is left ERRORED.

        Raises:
            DependentsActive: If loaded modules depend on it and force is False
            ModuleLoadError: If the new instance failed to initialize
        """
        module = self.modules.get(module_id)
        if module is None:
            return await self._load_one(module_id)

        previous_state = module.state
        if previous_state is not ModuleState.ERRORED:
            module.state = ModuleState.RELOADING
        try:
            unloaded = await self.unload(module_id, force=force)
        except DependentsActive:
            module.state = previous_state
            raise

        cascaded = [m for m in unloaded if m != module_id]
        try:
            reloaded = await self._load_one(module_id)
        except ModuleLoadError:
            if cascaded:
                logger.warning(f"Dependents of '{module_id}' left unloaded: {cascaded}")
            raise

        for dependent_id in reversed(cascaded):
            try:
                await self._load_one(dependent_id)
            except (ModuleLoadError, AlreadyLoaded, UnknownModule) as e:
                logger.error(f"Failed to restore dependent '{dependent_id}': {e}")

        logger.info(f"Reloaded module '{module_id}'")
        return reloaded

    async def unload_all(self) -> List[str]:
        """Unload every resident module, dependents before their dependencies"""
        unloaded: List[str] = []
        for module_id in list(self.modules):
            unloaded.extend(await self.unload(module_id, force=True))
        return unloaded

    def register_dependency(self, dependent: Union[Module, str], module_id: str) -> None:
        """
        Record that ``dependent`` requires the loaded module ``module_id``.

        Raises:
            UnknownModule: If either module is not loaded
            CircularDependencyError: If the edge would close a cycle
        """
        dependent_id = dependent.id if isinstance(dependent, Module) else dependent
        dependent_module = self.modules.get(dependent_id)
        if dependent_module is None:
            raise UnknownModule(dependent_id)
        target = self.get(module_id)

        if module_id == dependent_id or self._depends_on(module_id, dependent_id):
            raise CircularDependencyError(
                f"Dependency '{dependent_id}' -> '{module_id}' would create a cycle"
            )

        dependent_module.dependencies.add(module_id)
        target.dependents.add(dependent_id)
        logger.debug(f"Module '{dependent_id}' depends on '{module_id}'")

    # Guild policy

    async def is_module_disabled_for_guild(self, guild, module: Union[Module, str]) -> bool:
        module = self._as_module(module)
        if not module.allow_disabling:
            return False
        flag = await self.guild_manager.get_module_flag(_guild_id(guild), module.id)
        return module.default_disabled if flag is None else flag

    async def enable_module_for_guild(self, guild, module: Union[Module, str]) -> bool:
        module = self._as_module(module)
        await self.guild_manager.set_module_flag(_guild_id(guild), module.id, False)
        return True

    async def disable_module_for_guild(self, guild, module: Union[Module, str]) -> bool:
        """
        Returns:
            False if the module does not allow being disabled
        """
        module = self._as_module(module)
        if not module.allow_disabling:
            logger.warning(f"Module '{module.id}' cannot be disabled")
            return False
        await self.guild_manager.set_module_flag(_guild_id(guild), module.id, True)
        return True

    # Hot reload

    def start_watching(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        if self._watcher is None:
            self._watcher = ModuleWatcher(self, loop or asyncio.get_running_loop())
        self._watcher.start()

    def stop_watching(self) -> None:
        if self._watcher is not None:
            self._watcher.stop()
            self._watcher = None

    # Internals

    async def _load_one(self, module_id: str) -> Module:
        existing = self.modules.get(module_id)
        if existing is not None:
            if existing.state is not ModuleState.ERRORED:
                raise AlreadyLoaded(module_id)
            del self.modules[module_id]

        module = None
        try:
            module_class = self._resolve_class(module_id)
            module = module_class(self, module_id)
            self.modules[module_id] = module
            await _call_hook(module.init)
            if self._bot_ready:
                await _call_hook(module.ready)
        except Exception as e:
            if module is None and isinstance(e, UnknownModule):
                raise
            self._mark_errored(module_id, module, e)
            raise ModuleLoadError(module_id, e) from e

        module.state = ModuleState.LOADED
        logger.info(
            f"Loaded module '{module_id}' "
            f"({len(module.commands)} commands, {len(module.events)} events)"
        )
        self.event_bus.emit('module.loaded', module)
        return module

    def _resolve_class(self, module_id: str) -> Type[Module]:
        if module_id in self._module_classes:
            return self._module_classes[module_id]

        file_path = self.module_path / f"{module_id}.py"
        package_path = self.module_path / module_id / '__init__.py'
        if package_path.exists():
            return self._import_module_class(module_id, package_path, package=True)
        if file_path.exists():
            return self._import_module_class(module_id, file_path, package=False)
        raise UnknownModule(module_id)

    def _import_module_class(self, module_id: str, path: Path, package: bool) -> Type[Module]:
        """Import a module file fresh, so a reload picks up edited code"""
        import_name = f"{IMPORT_NAMESPACE}.{module_id}"
        for name in [n for n in sys.modules if n == import_name or n.startswith(import_name + '.')]:
            del sys.modules[name]

        spec = importlib.util.spec_from_file_location(
            import_name, path,
            submodule_search_locations=[str(path.parent)] if package else None
        )
        python_module = importlib.util.module_from_spec(spec)
        sys.modules[import_name] = python_module
        try:
            spec.loader.exec_module(python_module)
        except BaseException:
            sys.modules.pop(import_name, None)
            raise

        candidates = [
            obj for obj in vars(python_module).values()
            if inspect.isclass(obj) and issubclass(obj, Module) and obj is not Module
        ]
        own = [c for c in candidates if c.__module__ == import_name]
        if not (own or candidates):
            raise TypeError(f"{path} does not define a Module subclass")
        return (own or candidates)[0]

    def _mark_errored(self, module_id: str, module: Optional[Module], error: Exception) -> None:
        """Release partial registrations and keep an inert ERRORED entry"""
        if module is None:
            module = Module(self, module_id)
        module.teardown()
        self._drop_edges(module)
        module.state = ModuleState.ERRORED
        self.modules[module_id] = module

        self.error_service.report_error(f"Module '{module_id}' failed to initialize", error)
        self.event_bus.emit('module.errored', module_id, error)

    async def _teardown(self, module: Module) -> None:
        if module.state is not ModuleState.ERRORED:
            if module.state is not ModuleState.RELOADING:
                module.state = ModuleState.UNLOADING
            try:
                await _call_hook(module.shutdown)
            except Exception as e:
                self.error_service.report_error(f"Module '{module.id}' shutdown failed", e)

        module.teardown()
        self._drop_edges(module)
        self.modules.pop(module.id, None)
        logger.info(f"Unloaded module '{module.id}'")
        self.event_bus.emit('module.unloaded', module.id)

    def _drop_edges(self, module: Module) -> None:
        for dependency_id in module.dependencies:
            dependency = self.modules.get(dependency_id)
            if dependency is not None:
                dependency.dependents.discard(module.id)
        for dependent_id in module.dependents:
            dependent = self.modules.get(dependent_id)
            if dependent is not None:
                dependent.dependencies.discard(module.id)
        module.dependencies.clear()
        module.dependents.clear()

    def _depends_on(self, module_id: str, target_id: str) -> bool:
        """Whether module_id (transitively) depends on target_id"""
        stack = [module_id]
        seen: Set[str] = set()
        while stack:
            current = stack.pop()
            if current == target_id:
                return True
            if current in seen:
                continue
            seen.add(current)
            module = self.modules.get(current)
            if module is not None:
                stack.extend(module.dependencies)
        return False

    def _as_module(self, module: Union[Module, str]) -> Module:
        return module if isinstance(module, Module) else self.get(module)

    async def _on_ready(self, *args) -> None:
        self._bot_ready = True
        for module in list(self.modules.values()):
            if module.state is not ModuleState.LOADED:
                continue
            try:
                await _call_hook(module.ready)
            except Exception as e:
                self.error_service.report_error(f"Module '{module.id}' ready hook failed", e)

class ModuleHandler(FileSystemEventHandler):
    """Maps file system events under the module path to module ids"""

    def __init__(self, watcher: 'ModuleWatcher'):
        super().__init__()
        self.watcher = watcher

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.watcher.notify(Path(str(event.src_path)))

    def on_created(self, event: FileSystemEvent) -> None:
        self.on_modified(event)

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.watcher.notify(Path(str(event.dest_path)))

class ModuleWatcher:
    """
    Reloads modules whose files change.

    The watchdog observer thread only hands paths to the event loop; reloads
    run on the loop after ``debounce_delay`` seconds without further changes.
    """

    def __init__(self, loader: ModuleLoader, loop: asyncio.AbstractEventLoop,
                 debounce_delay: float = 0.5):
        self.loader = loader
        self.loop = loop
        self.debounce_delay = debounce_delay
        self._observer: Optional[Observer] = None
        self._pending: Dict[str, asyncio.TimerHandle] = {}
        self._reloads: Set[asyncio.Task] = set()

    def start(self) -> None:
        if self._observer is not None:
            return
        self.loader.module_path.mkdir(parents=True, exist_ok=True)
        self._observer = Observer()
        self._observer.schedule(ModuleHandler(self), str(self.loader.module_path), recursive=True)
        self._observer.start()
        logger.info(f"Watching {self.loader.module_path} for module changes")

    def stop(self) -> None:
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join(timeout=5)
        self._observer = None
        for handle in self._pending.values():
            handle.cancel()
        self._pending.clear()
        for task in list(self._reloads):
            task.cancel()
        logger.info("Stopped watching modules")

    def is_running(self) -> bool:
        return self._observer is not None and self._observer.is_alive()

    def module_id_for(self, path: Path) -> Optional[str]:
        try:
            relative = path.resolve().relative_to(self.loader.module_path.resolve())
        except ValueError:
            return None
        if not relative.parts or relative.suffix != '.py':
            return None
        module_id = relative.parts[0]
        if len(relative.parts) == 1:
            module_id = relative.stem
        return None if module_id.startswith(('_', '.')) else module_id

    def notify(self, path: Path) -> None:
        """Called from the observer thread"""
        module_id = self.module_id_for(path)
        if module_id is not None:
            self.loop.call_soon_threadsafe(self._schedule, module_id)

    def _schedule(self, module_id: str) -> None:
        handle = self._pending.pop(module_id, None)
        if handle is not None:
            handle.cancel()
        self._pending[module_id] = self.loop.call_later(
            self.debounce_delay, self._fire, module_id
        )

    def _fire(self, module_id: str) -> None:
        self._pending.pop(module_id, None)
        task = self.loop.create_task(self._reload(module_id))
        self._reloads.add(task)
        task.add_done_callback(self._reloads.discard)

    async def _reload(self, module_id: str) -> None:
        if module_id not in self.loader:
            logger.debug(f"Ignoring change to module '{module_id}' (not loaded)")
            return
        logger.info(f"Change detected in module '{module_id}', reloading")
        try:
            await self.loader.reload(module_id, force=True)
        except Exception as e:
            logger.error(f"Hot reload of '{module_id}' failed: {e}")

def _guild_id(guild):
    return getattr(guild, 'id', guild)

async def _call_hook(hook) -> None:
    result = hook()
    if inspect.isawaitable(result):
        await result
