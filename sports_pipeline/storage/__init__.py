"""
Storage layer for normalized sports entities.
"""

from sports_pipeline.storage.interfaces import (
    BaseEntityStore,
    ConnectionError,
    EntityStore,
    StorageError,
)
from sports_pipeline.storage.memory import InMemoryEntityStore, RedisEntityStore

__all__ = [
    "EntityStore",
    "BaseEntityStore",
    "InMemoryEntityStore",
    "RedisEntityStore",
    "StorageError",
    "ConnectionError",
]
