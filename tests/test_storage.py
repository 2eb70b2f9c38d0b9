"""
Unit tests for entity stores.

The Redis store runs against the FakeRedis mock from tests/mocks/storage.py.
"""

import pytest

from sports_pipeline.storage.interfaces import ConnectionError, StorageError
from sports_pipeline.storage.memory import InMemoryEntityStore, RedisEntityStore
from tests.mocks import FakeRedis


# ============================================================================
# InMemoryEntityStore Tests
# ============================================================================


@pytest.mark.asyncio
async def test_upsert_creates_then_updates():
    store = InMemoryEntityStore()

    created = await store.upsert_entity("player_stats", "pm_15", {"name": "Patrick Mahomes", "team": "KC"})
    updated = await store.upsert_entity("player_stats", "pm_15", {"team": "KC", "position": "QB"})

    entity = await store.get_entity("player_stats", "pm_15")
    assert created is True
    assert updated is False
    assert entity["name"] == "Patrick Mahomes"
    assert entity["position"] == "QB"
    assert "updated_at" in entity
    assert store.count() == 1
    assert store.writes == 2


@pytest.mark.asyncio
async def test_kinds_are_separate_namespaces():
    store = InMemoryEntityStore()

    await store.upsert_entity("player_stats", "pm_15", {"name": "Patrick Mahomes"})
    await store.upsert_entity("injuries", "pm_15", {"status": "HEALTHY"})

    assert store.count("player_stats") == 1
    assert store.count("injuries") == 1
    assert len(await store.list_entities("injuries")) == 1
    assert await store.get_entity("odds", "pm_15") is None


@pytest.mark.asyncio
async def test_returned_entities_are_copies():
    store = InMemoryEntityStore()
    await store.upsert_entity("odds", "x", {"line": 2.5})

    entity = await store.get_entity("odds", "x")
    entity["line"] = 99

    assert (await store.get_entity("odds", "x"))["line"] == 2.5
    assert await store.ping() is True


# ============================================================================
# RedisEntityStore Tests
# ============================================================================


@pytest.mark.asyncio
async def test_redis_store_upsert_and_list():
    redis = FakeRedis()
    store = RedisEntityStore(redis)

    assert await store.upsert_entity("injuries", "cmc_28", {"status": "QUESTIONABLE"}) is True
    assert await store.upsert_entity("injuries", "cmc_28", {"details": "Limited"}) is False
    await store.upsert_entity("injuries", "tk_87", {"status": "PROBABLE"})

    entity = await store.get_entity("injuries", "cmc_28")
    assert entity["status"] == "QUESTIONABLE"
    assert entity["details"] == "Limited"
    assert len(await store.list_entities("injuries")) == 2
    assert await store.ping() is True


@pytest.mark.asyncio
async def test_redis_store_connection_errors():
    store = RedisEntityStore(FakeRedis(fail=True))

    with pytest.raises(ConnectionError):
        await store.upsert_entity("odds", "x", {"line": 1})
    with pytest.raises(StorageError):
        await store.get_entity("odds", "x")
    assert await store.ping() is False


@pytest.mark.asyncio
async def test_redis_store_close():
    redis = FakeRedis()
    store = RedisEntityStore(redis)

    await store.close()

    assert redis.closed is True
