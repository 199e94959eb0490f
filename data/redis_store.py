"""
Redis Data Store

Stores each key as a JSON string under ``<namespace>:<key>`` and publishes
every write on the ``<namespace>:changes`` channel, so subscribers see writes
from every process sharing the Redis server.
"""

import asyncio
import json
import logging
import uuid
from contextlib import suppress
from typing import Any, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from core.errors import BackendUnavailable
from .base import BaseDataStore

logger = logging.getLogger('guildkit.data.redis_store')

class RedisDataStore(BaseDataStore):
    """
    Redis-backed data store using redis.asyncio.

    Local writes notify subscribers immediately; writes published by other
    instances arrive through the pub/sub listener.
    """

    def __init__(self, url: str = "redis://127.0.0.1:6379/0", namespace: str = "guildkit",
                 client: Optional[aioredis.Redis] = None, listener_retry_delay: float = 5.0):
        super().__init__()
        self.url = url
        self.namespace = namespace
        self.listener_retry_delay = listener_retry_delay
        self._client = client
        self._owns_client = client is None
        self._pubsub = None
        self._listener_task: Optional[asyncio.Task] = None
        self._writer_id = uuid.uuid4().hex

        logger.info(f"RedisDataStore configured for {url} (namespace '{namespace}')")

    @property
    def changes_channel(self) -> str:
        return f"{self.namespace}:changes"

    def _redis_key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def connect(self) -> None:
        if self.connected:
            return
        try:
            if self._client is None:
                self._client = aioredis.from_url(self.url, decode_responses=True)
            await self._client.ping()
            self._pubsub = self._client.pubsub()
            await self._pubsub.subscribe(self.changes_channel)
        except (RedisError, OSError) as e:
            logger.error(f"Failed to connect to Redis at {self.url}: {e}")
            await self._close_client()
            self._mark_failed(e)
            raise BackendUnavailable(f"Redis unavailable: {e}") from e

        self._listener_task = asyncio.get_running_loop().create_task(self._listen())
        self._mark_ready()
        logger.info(f"Connected to Redis at {self.url}")

    async def close(self) -> None:
        if self._listener_task is not None:
            self._listener_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._listener_task
            self._listener_task = None
        await super().close()
        await self._close_client()

    async def _close_client(self) -> None:
        pubsub, self._pubsub = self._pubsub, None
        try:
            if pubsub is not None:
                await pubsub.aclose()
            if self._client is not None and self._owns_client:
                await self._client.aclose()
        except (RedisError, OSError) as e:
            logger.warning(f"Failed to close Redis connection: {e}")
        if self._owns_client:
            self._client = None

    async def get(self, key: str) -> Any:
        await self.ensure_ready()
        try:
            raw = await self._client.get(self._redis_key(key))
        except (RedisError, OSError) as e:
            raise BackendUnavailable(f"Failed to read '{key}': {e}") from e
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any) -> str:
        await self.ensure_ready()
        raw = json.dumps(value)
        await self._write(key, raw)
        self._notify(key, json.loads(raw))
        return 'OK'

    async def delete(self, key: str) -> str:
        await self.ensure_ready()
        await self._write(key, None)
        self._notify(key, None)
        return 'OK'

    async def _write(self, key: str, raw: Optional[str]) -> None:
        change = json.dumps({'key': key, 'value': raw, 'writer': self._writer_id})
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                if raw is None:
                    pipe.delete(self._redis_key(key))
                else:
                    pipe.set(self._redis_key(key), raw)
                pipe.publish(self.changes_channel, change)
                await pipe.execute()
        except (RedisError, OSError) as e:
            raise BackendUnavailable(f"Failed to write '{key}': {e}") from e

    async def _listen(self) -> None:
        while True:
            try:
                async for message in self._pubsub.listen():
                    if message.get('type') == 'message':
                        self._handle_change(message.get('data'))
            except (RedisError, OSError) as e:
                logger.warning(f"Redis change listener interrupted: {e}")
            await asyncio.sleep(self.listener_retry_delay)
            try:
                await self._pubsub.subscribe(self.changes_channel)
            except (RedisError, OSError) as e:
                logger.warning(f"Failed to resubscribe to {self.changes_channel}: {e}")

    def _handle_change(self, data: Any) -> None:
        if isinstance(data, bytes):
            data = data.decode('utf-8')
        try:
            change = json.loads(data)
            key = change['key']
            raw = change.get('value')
            value = json.loads(raw) if raw is not None else None
            writer = change.get('writer')
        except (TypeError, ValueError, KeyError) as e:
            logger.warning(f"Ignoring malformed change message: {e}")
            return

        if writer == self._writer_id:
            return
        logger.debug(f"DB change: {key}")
        self._notify(key, value)
