"""
Abstract Interfaces for GuildKit Data Stores
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional, Union

logger = logging.getLogger('guildkit.data.interfaces')

SubscriptionHandler = Callable[[Any], Union[None, Awaitable[None]]]

class DataSubscription:
    """
    A live registration for change notifications on one key.

    Once cancel() returns the handler is never invoked again. Cancelling is
    idempotent.
    """

    def __init__(self, key: str, handler: SubscriptionHandler,
                 on_cancel: Optional[Callable[['DataSubscription'], None]] = None):
        self.key = key
        self.handler = handler
        self.active = True
        self._on_cancel = on_cancel

    def cancel(self) -> None:
        if not self.active:
            return
        self.active = False
        if self._on_cancel:
            self._on_cancel(self)
            self._on_cancel = None

    def __repr__(self) -> str:
        state = 'active' if self.active else 'cancelled'
        return f"<DataSubscription key={self.key!r} {state}>"

class IDataStore(ABC):
    """
    Key/value persistence contract shared by every backend.

    Values must be JSON-serialisable. get() never raises for a missing key.
    Operations issued before the backend is connected wait for the
    connection instead of failing; backend failures raise BackendUnavailable.
    """

    @abstractmethod
    async def connect(self) -> None:
        """Establish the backend connection and start change feeds"""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Stop change feeds and release backend resources"""
        pass

    @abstractmethod
    async def ensure_ready(self) -> None:
        """Wait until the backend is connected"""
        pass

    @abstractmethod
    async def get(self, key: str) -> Any:
        """Return the stored value or None when unset"""
        pass

    @abstractmethod
    async def set(self, key: str, value: Any) -> str:
        """Replace the value at key"""
        pass

    @abstractmethod
    async def delete(self, key: str) -> str:
        """Remove the value at key"""
        pass

    @abstractmethod
    def subscribe(self, key: str, handler: SubscriptionHandler) -> DataSubscription:
        """Invoke handler with the new value whenever key changes"""
        pass

    @abstractmethod
    async def wait_for_delivery(self) -> None:
        """Wait until every queued change notification has been delivered"""
        pass
