"""
Data Stores for GuildKit

One key/value contract (IDataStore) with interchangeable backends:

- MemoryDataStore: temporary in-process storage
- SqliteDataStore: file-backed storage with a cross-process change log
- CouchDataStore: CouchDB documents with the continuous changes feed
- RedisDataStore: Redis strings with change delivery over pub/sub
"""

import logging

from core.errors import ConfigurationError

from .interfaces import IDataStore, DataSubscription, SubscriptionHandler
from .base import BaseDataStore
from .memory_store import MemoryDataStore
from .sqlite_store import SqliteDataStore
from .couchdb_store import CouchDataStore
from .redis_store import RedisDataStore

logger = logging.getLogger('guildkit.data')

def create_data_store(config) -> IDataStore:
    """
    Build the backend selected by ``config.data_store``.

    Args:
        config: BotConfiguration (or any object with the same attributes)
    """
    backend = config.data_store
    if backend == 'memory':
        store = MemoryDataStore()
    elif backend == 'sqlite':
        store = SqliteDataStore(config.database_path, poll_interval=config.sqlite_poll_interval)
    elif backend == 'couchdb':
        store = CouchDataStore(config.couchdb_url, config.couchdb_database)
    elif backend == 'redis':
        store = RedisDataStore(config.redis_url)
    else:
        raise ConfigurationError(f"Unknown data store backend: {backend}")

    logger.info(f"Using {type(store).__name__}")
    return store

__all__ = [
    'IDataStore',
    'DataSubscription',
    'SubscriptionHandler',
    'BaseDataStore',
    'MemoryDataStore',
    'SqliteDataStore',
    'CouchDataStore',
    'RedisDataStore',
    'create_data_store'
]
