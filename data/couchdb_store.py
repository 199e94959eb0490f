"""
CouchDB Data Store

Stores each key as a document ``{_id: key, val: value}`` and follows the
database's continuous ``_changes`` feed, so subscribers see writes from every
process sharing the database.
"""

import asyncio
import json
import logging
from contextlib import suppress
from typing import Any, Dict, Optional
from urllib.parse import quote

import aiohttp

from core.errors import BackendUnavailable
from .base import BaseDataStore

logger = logging.getLogger('guildkit.data.couchdb_store')

class CouchDataStore(BaseDataStore):
    """CouchDB-backed data store using aiohttp"""

    def __init__(self, url: str = "http://127.0.0.1:5984", database: str = "guildkit",
                 feed_retry_delay: float = 5.0):
        super().__init__()
        self.url = url.rstrip('/')
        self.database = database
        self.feed_retry_delay = feed_retry_delay
        self._session: Optional[aiohttp.ClientSession] = None
        self._feed_task: Optional[asyncio.Task] = None

        logger.info(f"CouchDataStore configured for {self.url}/{self.database}")

    @property
    def database_url(self) -> str:
        return f"{self.url}/{quote(self.database, safe='')}"

    def _document_url(self, key: str) -> str:
        return f"{self.database_url}/{quote(key, safe='')}"

    async def connect(self) -> None:
        if self.connected:
            return
        self._session = aiohttp.ClientSession()
        try:
            async with self._session.get(self.database_url) as resp:
                if resp.status == 404:
                    await self._create_database()
                elif resp.status >= 400:
                    raise BackendUnavailable(
                        f"CouchDB returned {resp.status} for database '{self.database}'"
                    )
        except (aiohttp.ClientError, BackendUnavailable) as e:
            logger.error(f"Failed to connect to CouchDB at {self.url}: {e}")
            await self._session.close()
            self._session = None
            self._mark_failed(e)
            if isinstance(e, BackendUnavailable):
                raise
            raise BackendUnavailable(f"CouchDB unavailable: {e}") from e

        self._feed_task = asyncio.get_running_loop().create_task(self._follow_changes())
        self._mark_ready()
        logger.info(f"Connected to CouchDB database '{self.database}'")

    async def close(self) -> None:
        if self._feed_task is not None:
            self._feed_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._feed_task
            self._feed_task = None
        await super().close()
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def get(self, key: str) -> Any:
        await self.ensure_ready()
        doc = await self._get_document(key)
        return doc.get('val') if doc else None

    async def set(self, key: str, value: Any) -> str:
        await self.ensure_ready()
        body: Dict[str, Any] = {'val': value}
        existing = await self._get_document(key)
        if existing:
            body['_rev'] = existing['_rev']

        try:
            async with self._session.put(self._document_url(key), json=body) as resp:
                if resp.status not in (201, 202):
                    raise BackendUnavailable(
                        f"CouchDB rejected write of '{key}' ({resp.status}): {await resp.text()}"
                    )
        except aiohttp.ClientError as e:
            raise BackendUnavailable(f"Failed to write '{key}': {e}") from e
        return 'OK'

    async def delete(self, key: str) -> str:
        await self.ensure_ready()
        existing = await self._get_document(key)
        if not existing:
            return 'OK'

        try:
            async with self._session.delete(
                self._document_url(key), params={'rev': existing['_rev']}
            ) as resp:
                if resp.status not in (200, 202, 404):
                    raise BackendUnavailable(
                        f"CouchDB rejected delete of '{key}' ({resp.status}): {await resp.text()}"
                    )
        except aiohttp.ClientError as e:
            raise BackendUnavailable(f"Failed to delete '{key}': {e}") from e
        return 'OK'

    async def _create_database(self) -> None:
        async with self._session.put(self.database_url) as resp:
            # 412: created concurrently by another shard
            if resp.status not in (201, 202, 412):
                raise BackendUnavailable(
                    f"Could not create CouchDB database '{self.database}' ({resp.status})"
                )
        logger.info(f"Created CouchDB database '{self.database}'")

    async def _get_document(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            async with self._session.get(self._document_url(key)) as resp:
                if resp.status == 404:
                    return None
                if resp.status >= 400:
                    raise BackendUnavailable(f"CouchDB returned {resp.status} reading '{key}'")
                return await resp.json()
        except aiohttp.ClientError as e:
            raise BackendUnavailable(f"Failed to read '{key}': {e}") from e

    async def _follow_changes(self) -> None:
        since = 'now'
        timeout = aiohttp.ClientTimeout(total=None, sock_read=90)
        while True:
            params = {
                'feed': 'continuous',
                'since': since,
                'include_docs': 'true',
                'heartbeat': '30000'
            }
            try:
                async with self._session.get(
                    f"{self.database_url}/_changes", params=params, timeout=timeout
                ) as resp:
                    async for line in resp.content:
                        line = line.strip()
                        if not line:
                            continue
                        since = self._handle_change(json.loads(line), since)
            except (aiohttp.ClientError, asyncio.TimeoutError, json.JSONDecodeError) as e:
                logger.warning(f"CouchDB change feed interrupted: {e}")
            await asyncio.sleep(self.feed_retry_delay)

    def _handle_change(self, change: Dict[str, Any], since: Any) -> Any:
        if 'last_seq' in change:
            return change['last_seq']

        key = change.get('id')
        if not key or key.startswith('_design/'):
            return change.get('seq', since)

        logger.debug(f"DB change: {key}")
        if change.get('deleted'):
            self._notify(key, None)
        else:
            self._notify(key, (change.get('doc') or {}).get('val'))
        return change.get('seq', since)
