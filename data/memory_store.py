"""
In-Memory Data Store

Temporary storage for development and tests. Change notifications only cover
writes made through this instance.
"""

import json
import logging
from typing import Any, Dict

from .base import BaseDataStore

logger = logging.getLogger('guildkit.data.memory_store')

class MemoryDataStore(BaseDataStore):
    """Process-local data store; values are stored as JSON text"""

    def __init__(self):
        super().__init__()
        self._data: Dict[str, str] = {}
        self._mark_ready()
        logger.info("MemoryDataStore initialized")

    async def connect(self) -> None:
        self._mark_ready()

    async def get(self, key: str) -> Any:
        await self.ensure_ready()
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any) -> str:
        await self.ensure_ready()
        raw = json.dumps(value)
        self._data[key] = raw
        self._notify(key, json.loads(raw))
        return 'OK'

    async def delete(self, key: str) -> str:
        await self.ensure_ready()
        if self._data.pop(key, None) is not None:
            self._notify(key, None)
        return 'OK'

    def keys(self):
        return list(self._data.keys())
