"""
Storage Factory

Provides a single entry point for obtaining the storage engine. The engine
is chosen once, at startup, from ``settings.storage_backend``; the rest of
the application only sees BaseStorage.

Usage:
    from food_ordering.services.storage import create_storage

    storage = create_storage(settings)
    await storage.connect()

Engine Switching:
    - STORAGE_BACKEND=sql → SQLStorage (SQLAlchemy async)
    - STORAGE_BACKEND=redis → RedisStorage (redis.asyncio)
"""

import logging

from food_ordering.core.config import Settings, StorageBackend
from food_ordering.services.storage.base import BaseStorage
from food_ordering.services.storage.keyvalue import RedisStorage
from food_ordering.services.storage.sql import SQLStorage

logger = logging.getLogger(__name__)


def create_storage(settings: Settings) -> BaseStorage:
    """
    Build the configured storage engine.

    Returns:
        BaseStorage: SQLStorage or RedisStorage

    Raises:
        ValueError: If the configured backend is unknown
    """
    if settings.storage_backend == StorageBackend.SQL:
        logger.info("Storage: Using SQLStorage")
        return SQLStorage(settings)
    if settings.storage_backend == StorageBackend.REDIS:
        logger.info("Storage: Using RedisStorage")
        return RedisStorage(settings)
    raise ValueError(f"Unknown storage backend: {settings.storage_backend}")


__all__ = [
    "create_storage",
    "BaseStorage",
    "SQLStorage",
    "RedisStorage",
]
