"""
Entity store implementations.

- InMemoryEntityStore: process-local dict, used for dry runs and tests
- RedisEntityStore: one JSON document per entity in Redis
"""

import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sports_pipeline.storage.interfaces import (
    BaseEntityStore,
    ConnectionError,
    StorageError,
)

logger = logging.getLogger(__name__)


class InMemoryEntityStore(BaseEntityStore):
    """Entity store backed by a dict keyed by (kind, external id)."""

    def __init__(self):
        self._entities: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self._lock = asyncio.Lock()
        self.writes = 0

    async def upsert_entity(
        self, kind: str, external_id: str, fields: Dict[str, Any]
    ) -> bool:
        async with self._lock:
            key = (kind, external_id)
            existing = self._entities.get(key)
            created = existing is None

            entity = dict(existing or {})
            entity.update(fields)
            entity["updated_at"] = datetime.utcnow()
            self._entities[key] = entity
            self.writes += 1

        logger.debug(f"{'Created' if created else 'Updated'} {kind} entity {external_id}")
        return created

    async def get_entity(self, kind: str, external_id: str) -> Optional[Dict[str, Any]]:
        entity = self._entities.get((kind, external_id))
        return dict(entity) if entity is not None else None

    async def list_entities(self, kind: str) -> List[Dict[str, Any]]:
        return [dict(e) for (k, _), e in self._entities.items() if k == kind]

    def count(self, kind: Optional[str] = None) -> int:
        if kind is None:
            return len(self._entities)
        return sum(1 for (k, _) in self._entities if k == kind)


class RedisEntityStore(BaseEntityStore):
    """
    Entity store on Redis.

    Each entity is a JSON document under "<prefix>:<kind>:<external_id>";
    a set per kind indexes the external ids.
    """

    def __init__(self, redis_client, key_prefix: str = "sports"):
        """
        Initialize the Redis store.

        Args:
            redis_client: Redis client instance (from redis.asyncio)
            key_prefix: Prefix for Redis keys
        """
        self.redis = redis_client
        self.key_prefix = key_prefix

    def _key(self, kind: str, external_id: str) -> str:
        return f"{self.key_prefix}:{kind}:{external_id}"

    def _index_key(self, kind: str) -> str:
        return f"{self.key_prefix}:{kind}:_ids"

    async def upsert_entity(
        self, kind: str, external_id: str, fields: Dict[str, Any]
    ) -> bool:
        key = self._key(kind, external_id)
        try:
            raw = await self.redis.get(key)
            entity = json.loads(raw) if raw else {}
            entity.update(fields)
            entity["updated_at"] = datetime.utcnow().isoformat()

            await self.redis.set(key, json.dumps(entity, default=str))
            await self.redis.sadd(self._index_key(kind), external_id)
        except (TypeError, ValueError) as e:
            raise StorageError(f"Cannot serialize {kind} entity {external_id}: {e}") from e
        except Exception as e:
            raise ConnectionError(f"Redis write failed for {key}: {e}") from e

        return raw is None

    async def get_entity(self, kind: str, external_id: str) -> Optional[Dict[str, Any]]:
        try:
            raw = await self.redis.get(self._key(kind, external_id))
        except Exception as e:
            raise ConnectionError(f"Redis read failed: {e}") from e
        return json.loads(raw) if raw else None

    async def list_entities(self, kind: str) -> List[Dict[str, Any]]:
        try:
            ids = await self.redis.smembers(self._index_key(kind))
        except Exception as e:
            raise ConnectionError(f"Redis read failed: {e}") from e

        entities = []
        for external_id in sorted(i.decode() if isinstance(i, bytes) else i for i in ids):
            entity = await self.get_entity(kind, external_id)
            if entity is not None:
                entities.append(entity)
        return entities

    async def ping(self) -> bool:
        try:
            return bool(await self.redis.ping())
        except Exception as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    async def close(self) -> None:
        await self.redis.aclose()
