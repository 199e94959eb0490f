"""
SQLite Data Store

File-backed key/value storage on aiosqlite. Every write is also appended to a
change log table so that other processes sharing the database file (for
example other shards) see the change through their polling feed.
"""

import asyncio
import json
import logging
import uuid
from contextlib import suppress
from pathlib import Path
from typing import Any, Optional

import aiosqlite

from core.errors import BackendUnavailable
from .base import BaseDataStore

logger = logging.getLogger('guildkit.data.sqlite_store')

CHANGE_LOG_RETENTION = 10000
BUSY_TIMEOUT_MS = 5000

class SqliteDataStore(BaseDataStore):
    """
    SQLite-backed data store.

    Local writes notify subscribers immediately; writes by other connections
    are picked up by a polling task every ``poll_interval`` seconds. The
    database runs in WAL mode so readers in other processes never block the
    writer.
    """

    def __init__(self, database_path: str = "guildkit.db", poll_interval: float = 1.0):
        super().__init__()
        self.database_path = str(database_path)
        self.poll_interval = poll_interval
        self._conn: Optional[aiosqlite.Connection] = None
        self._write_lock = asyncio.Lock()
        self._writer_id = uuid.uuid4().hex
        self._last_seq = 0
        self._poll_task: Optional[asyncio.Task] = None

        logger.info(f"SqliteDataStore configured for {self.database_path}")

    async def connect(self) -> None:
        if self.connected:
            return
        try:
            if self.database_path != ':memory:':
                Path(self.database_path).expanduser().parent.mkdir(parents=True, exist_ok=True)
            self._conn = await aiosqlite.connect(self.database_path)
            await self._conn.execute("PRAGMA journal_mode=WAL")
            await self._conn.execute(f"PRAGMA busy_timeout={BUSY_TIMEOUT_MS}")
            await self._conn.execute("""
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)
            await self._conn.execute("""
                CREATE TABLE IF NOT EXISTS changes (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    key TEXT NOT NULL,
                    value TEXT,
                    writer TEXT NOT NULL
                )
            """)
            await self._conn.commit()
            async with self._conn.execute("SELECT COALESCE(MAX(seq), 0) FROM changes") as cursor:
                row = await cursor.fetchone()
            self._last_seq = row[0]
        except (aiosqlite.Error, OSError) as e:
            logger.error(f"Failed to open SQLite database at {self.database_path}: {e}")
            await self._close_connection()
            self._mark_failed(e)
            raise BackendUnavailable(f"SQLite database unavailable: {e}") from e

        self._poll_task = asyncio.get_running_loop().create_task(self._poll_changes())
        self._mark_ready()
        logger.info(f"Connected to SQLite database at {self.database_path}")

    async def close(self) -> None:
        if self._poll_task is not None:
            self._poll_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._poll_task
            self._poll_task = None
        await super().close()
        await self._close_connection()

    async def _close_connection(self) -> None:
        if self._conn is None:
            return
        conn, self._conn = self._conn, None
        try:
            await conn.close()
        except aiosqlite.Error as e:
            logger.warning(f"Failed to close SQLite database at {self.database_path}: {e}")

    async def get(self, key: str) -> Any:
        await self.ensure_ready()
        try:
            async with self._conn.execute("SELECT value FROM kv WHERE key = ?", (key,)) as cursor:
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise BackendUnavailable(f"Failed to read '{key}': {e}") from e
        return json.loads(row[0]) if row else None

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
        # The kv row and its change log entry commit together
        async with self._write_lock:
            try:
                if raw is None:
                    await self._conn.execute("DELETE FROM kv WHERE key = ?", (key,))
                else:
                    await self._conn.execute(
                        "INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)", (key, raw)
                    )
                await self._conn.execute(
                    "INSERT INTO changes (key, value, writer) VALUES (?, ?, ?)",
                    (key, raw, self._writer_id)
                )
                await self._conn.commit()
            except aiosqlite.Error as e:
                with suppress(aiosqlite.Error):
                    await self._conn.rollback()
                raise BackendUnavailable(f"Failed to write '{key}': {e}") from e

    async def _poll_changes(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            try:
                await self._read_foreign_changes()
            except aiosqlite.Error as e:
                logger.warning(f"Failed to poll change log: {e}")

    async def _read_foreign_changes(self) -> None:
        async with self._conn.execute(
            "SELECT seq, key, value, writer FROM changes WHERE seq > ? ORDER BY seq",
            (self._last_seq,)
        ) as cursor:
            rows = await cursor.fetchall()

        for seq, key, raw, writer in rows:
            self._last_seq = seq
            if writer == self._writer_id:
                continue
            self._notify(key, json.loads(raw) if raw is not None else None)

        if rows and self._last_seq > CHANGE_LOG_RETENTION:
            async with self._write_lock:
                await self._conn.execute(
                    "DELETE FROM changes WHERE seq <= ?",
                    (self._last_seq - CHANGE_LOG_RETENTION,)
                )
                await self._conn.commit()
