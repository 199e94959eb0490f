"""
Event Bus System for GuildKit
"""

import logging
import asyncio
import inspect
from typing import Dict, Any, List, Callable, Set

logger = logging.getLogger('guildkit.core.event_bus')

DEFAULT_MAX_LISTENERS = 1024

class EventBus:
    """
    Process-wide publish/subscribe bus for framework ("internal") events.

    Listeners may be plain functions or coroutine functions. A failing
    listener is logged and never prevents the remaining listeners from
    running.
    """

    def __init__(self, max_listeners: int = DEFAULT_MAX_LISTENERS):
        self._listeners: Dict[str, List[Callable]] = {}
        self._max_listeners = max_listeners
        self._pending: Set[asyncio.Task] = set()
        self._stats = {
            'events_emitted': 0,
            'events_handled': 0,
            'handler_errors': 0
        }

        logger.debug("EventBus initialized")

    def on(self, event_type: str, handler: Callable) -> Callable:
        """
        Add a listener for an event type.

        Args:
            event_type: Event name
            handler: Listener (sync or async)

        Returns:
            The handler, so the method can be used as a decorator
        """
        listeners = self._listeners.setdefault(event_type, [])
        listeners.append(handler)

        if len(listeners) > self._max_listeners:
            logger.warning(
                f"{len(listeners)} listeners registered for '{event_type}' "
                f"(max {self._max_listeners}); possible listener leak"
            )

        logger.debug(f"Added listener {getattr(handler, '__name__', handler)} for '{event_type}'")
        return handler

    def remove_listener(self, event_type: str, handler: Callable) -> bool:
        """
        Remove one registration of a listener.

        Returns:
            True if the listener was found and removed
        """
        listeners = self._listeners.get(event_type)
        if not listeners or handler not in listeners:
            return False

        listeners.remove(handler)
        if not listeners:
            del self._listeners[event_type]
        logger.debug(f"Removed listener {getattr(handler, '__name__', handler)} for '{event_type}'")
        return True

    def emit(self, event_type: str, *args: Any, **kwargs: Any) -> int:
        """
        Emit an event without waiting for async listeners.

        Sync listeners run immediately; async listeners are scheduled on the
        running loop.

        Returns:
            Number of listeners invoked
        """
        self._stats['events_emitted'] += 1
        handled_count = 0

        for handler in list(self._listeners.get(event_type, ())):
            try:
                result = handler(*args, **kwargs)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(self._await_listener(event_type, handler, result))
                    self._pending.add(task)
                    task.add_done_callback(self._pending.discard)
                handled_count += 1
                self._stats['events_handled'] += 1
            except Exception as e:
                self._record_error(event_type, handler, e)

        return handled_count

    async def emit_async(self, event_type: str, *args: Any, **kwargs: Any) -> int:
        """
        Emit an event and wait for every listener to complete.

        Returns:
            Number of listeners invoked
        """
        self._stats['events_emitted'] += 1
        handled_count = 0

        for handler in list(self._listeners.get(event_type, ())):
            try:
                result = handler(*args, **kwargs)
                if inspect.isawaitable(result):
                    await result
                handled_count += 1
                self._stats['events_handled'] += 1
            except Exception as e:
                self._record_error(event_type, handler, e)

        return handled_count

    async def drain(self) -> None:
        """Wait for async listeners scheduled by emit() to finish"""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def listener_count(self, event_type: str) -> int:
        return len(self._listeners.get(event_type, ()))

    def listeners(self, event_type: str) -> List[Callable]:
        return list(self._listeners.get(event_type, ()))

    def event_types(self) -> List[str]:
        return list(self._listeners.keys())

    def get_stats(self) -> Dict[str, Any]:
        """Get event bus statistics"""
        return {
            **self._stats,
            'active_listeners': sum(len(h) for h in self._listeners.values()),
            'event_types': len(self._listeners)
        }

    async def _await_listener(self, event_type: str, handler: Callable, awaitable) -> None:
        try:
            await awaitable
        except Exception as e:
            self._record_error(event_type, handler, e)

    def _record_error(self, event_type: str, handler: Callable, error: Exception) -> None:
        self._stats['handler_errors'] += 1
        logger.error(
            f"Error in listener {getattr(handler, '__name__', handler)} for '{event_type}': {error}",
            exc_info=error
        )
