"""
Shared Data Store Machinery

Subscription fan-out and connection gating used by every backend.
"""

import asyncio
import inspect
import logging
from contextlib import suppress
from typing import Any, Dict, List, Optional

from core.errors import BackendUnavailable
from .interfaces import IDataStore, DataSubscription, SubscriptionHandler

logger = logging.getLogger('guildkit.data.base')

class BaseDataStore(IDataStore):
    """
    Base class for data store backends.

    Change notifications go through a single queue drained by one delivery
    task, so notifications for a key are delivered in the order the changes
    were observed. A subscription's ``active`` flag is checked right before
    each invocation.
    """

    def __init__(self):
        self._subscriptions: Dict[str, List[DataSubscription]] = {}
        self._ready = asyncio.Event()
        self._connect_error: Optional[BaseException] = None
        self._queue: Optional[asyncio.Queue] = None
        self._delivery_task: Optional[asyncio.Task] = None
        self.connected = False

    @property
    def ready(self) -> bool:
        return self.connected

    async def ensure_ready(self) -> None:
        if not self._ready.is_set():
            await self._ready.wait()
        if self._connect_error is not None:
            raise BackendUnavailable(
                f"{type(self).__name__} failed to connect: {self._connect_error}"
            ) from self._connect_error

    def subscribe(self, key: str, handler: SubscriptionHandler) -> DataSubscription:
        subscription = DataSubscription(key, handler, on_cancel=self._remove_subscription)
        self._subscriptions.setdefault(key, []).append(subscription)
        logger.debug(f"Subscribed to '{key}' ({len(self._subscriptions[key])} subscribers)")
        return subscription

    def subscription_count(self, key: Optional[str] = None) -> int:
        if key is not None:
            return len(self._subscriptions.get(key, ()))
        return sum(len(subs) for subs in self._subscriptions.values())

    async def wait_for_delivery(self) -> None:
        if self._queue is not None:
            await self._queue.join()

    async def close(self) -> None:
        if self._delivery_task is not None:
            self._delivery_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._delivery_task
        self._delivery_task = None
        self._queue = None
        self.connected = False

    def _mark_ready(self) -> None:
        self._connect_error = None
        self.connected = True
        self._ready.set()

    def _mark_failed(self, error: BaseException) -> None:
        """Record a connection failure and wake every pending operation"""
        self._connect_error = error
        self.connected = False
        self._ready.set()

    def _notify(self, key: str, value: Any) -> None:
        if not self._subscriptions.get(key):
            return
        self._ensure_delivery_task()
        self._queue.put_nowait((key, value))

    def _ensure_delivery_task(self) -> None:
        if self._delivery_task is None or self._delivery_task.done():
            self._queue = asyncio.Queue()
            self._delivery_task = asyncio.get_running_loop().create_task(self._deliver())

    async def _deliver(self) -> None:
        while True:
            key, value = await self._queue.get()
            try:
                for subscription in list(self._subscriptions.get(key, ())):
                    if not subscription.active:
                        continue
                    await self._invoke(subscription, value)
            finally:
                self._queue.task_done()

    async def _invoke(self, subscription: DataSubscription, value: Any) -> None:
        try:
            result = subscription.handler(value)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Subscription handler for '{subscription.key}' failed: {e}", exc_info=e)

    def _remove_subscription(self, subscription: DataSubscription) -> None:
        subscriptions = self._subscriptions.get(subscription.key)
        if subscriptions and subscription in subscriptions:
            subscriptions.remove(subscription)
            if not subscriptions:
                del self._subscriptions[subscription.key]
        logger.debug(f"Cancelled subscription to '{subscription.key}'")
