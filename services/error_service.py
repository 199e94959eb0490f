"""
Error Service for GuildKit
"""

import logging
from typing import Any, Dict, Optional

from core import ServiceRegistry, EventBus, HandlerFailure

logger = logging.getLogger('guildkit.services.error_service')

class ErrorService:
    """
    Centralized reporting of handler failures.

    Command and event handlers never propagate exceptions into the dispatch
    path; they are handed to this service, logged with their context and
    announced on the bus as ``handler.error``.
    """

    def __init__(self, service_registry: ServiceRegistry):
        self.service_registry = service_registry
        self.event_bus = service_registry.get(EventBus)
        self._failure_count = 0
        self._failures_by_module: Dict[str, int] = {}

        logger.info("ErrorService initialized")

    def report_handler_failure(self, source: str, error: BaseException,
                               module_id: Optional[str] = None,
                               guild: Any = None, author: Any = None) -> HandlerFailure:
        """
        Log a handler exception and announce it.

        Args:
            source: What failed, e.g. "command 'ping'" or "event 'discord.message_delete'"
            error: The exception raised by the handler
            module_id: Owning module, if any
            guild: Guild the handler ran for, if any
            author: Message author, for command handlers

        Returns:
            The HandlerFailure describing the error
        """
        failure = HandlerFailure(source, error)
        self._failure_count += 1
        if module_id:
            self._failures_by_module[module_id] = self._failures_by_module.get(module_id, 0) + 1

        context = {
            'source': source,
            'module': module_id,
            'guild_id': getattr(guild, 'id', None),
            'user_id': getattr(author, 'id', None),
            'error_type': type(error).__name__
        }
        logger.error(f"Handler failure: {context}: {error}", exc_info=error)

        try:
            self.event_bus.emit('handler.error', failure, context)
        except Exception as e:
            logger.error(f"Failed to announce handler failure: {e}")
        return failure

    def report_error(self, message: str, error: BaseException) -> None:
        """Log a framework error that is not tied to a handler"""
        logger.error(f"{message}: {error}", exc_info=error)

    def get_error_stats(self) -> Dict[str, Any]:
        """Get error reporting statistics"""
        return {
            'handler_failures': self._failure_count,
            'failures_by_module': dict(self._failures_by_module)
        }
