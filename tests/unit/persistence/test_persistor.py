"""Tests for CachePersistor."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import orjson
import pytest

from policycache.cache import InvalidationPolicyCache
from policycache.core.types import MISSING, Reference
from policycache.persistence.memory import InMemoryStorage
from policycache.persistence.persistor import CachePersistor

CacheFactory = Callable[..., InvalidationPolicyCache]


class TestCachePersistor:
    """Test persisting and restoring a cache."""

    @pytest.fixture
    def storage(self) -> InMemoryStorage:
        return InMemoryStorage()

    @pytest.fixture
    def cache(self, make_cache: CacheFactory) -> InvalidationPolicyCache:
        cache = make_cache(invalidation_policies={"timeToLive": 10_000})
        cache.write("Person:4", {"__typename": "Person", "name": "George Lucas"})
        cache.write("Film:1", {"title": "A New Hope", "director": Reference("Person:4")})
        return cache

    async def test_persist_and_restore(
        self,
        cache: InvalidationPolicyCache,
        storage: InMemoryStorage,
        make_cache: CacheFactory,
    ) -> None:
        await CachePersistor(cache, storage).persist()

        restored_cache = make_cache()
        assert await CachePersistor(restored_cache, storage).restore()

        assert restored_cache.read("Film:1", "title") == "A New Hope"
        assert restored_cache.read("Film:1", "director") == Reference("Person:4")
        assert restored_cache.store.get("Film:1").ttl_ms == 10_000

    async def test_default_key_from_settings(
        self, cache: InvalidationPolicyCache, storage: InMemoryStorage
    ) -> None:
        persistor = CachePersistor(cache, storage)
        await persistor.persist()

        assert persistor.key == "policycache"
        assert await storage.load("policycache") is not None

    async def test_restore_absent_is_noop(
        self, cache: InvalidationPolicyCache, storage: InMemoryStorage
    ) -> None:
        assert not await CachePersistor(cache, storage).restore()
        assert cache.read("Film:1", "title") == "A New Hope"

    async def test_restore_invalid_json_starts_empty(
        self, cache: InvalidationPolicyCache, storage: InMemoryStorage
    ) -> None:
        await storage.save("policycache", b"{not json")

        assert not await CachePersistor(cache, storage).restore()
        assert len(cache) == 0

    async def test_restore_malformed_snapshot_starts_empty(
        self, cache: InvalidationPolicyCache, storage: InMemoryStorage
    ) -> None:
        await storage.save("policycache", orjson.dumps({"version": 99}))

        assert not await CachePersistor(cache, storage).restore()
        assert cache.read("Film:1", "title") is MISSING

    async def test_max_size_skips_persist(
        self, cache: InvalidationPolicyCache, storage: InMemoryStorage
    ) -> None:
        persistor = CachePersistor(cache, storage, max_size=10)

        assert not await persistor.persist()
        assert await storage.load("policycache") is None

    async def test_get_size_and_purge(
        self, cache: InvalidationPolicyCache, storage: InMemoryStorage
    ) -> None:
        persistor = CachePersistor(cache, storage, key="films")
        assert await persistor.get_size() is None

        await persistor.persist()
        assert await persistor.get_size() == len(orjson.dumps(cache.extract()))

        assert await persistor.purge()
        assert await persistor.get_size() is None
        assert cache.read("Film:1", "title") == "A New Hope"

    async def test_auto_persist(
        self, cache: InvalidationPolicyCache, storage: InMemoryStorage
    ) -> None:
        """The background loop saves changes made after it started."""
        persistor = CachePersistor(cache, storage, debug=True)
        await persistor.start(interval_seconds=0.01)
        await persistor.start(interval_seconds=0.01)

        cache.write("Film:2", {"title": "The Empire Strikes Back"})
        for _ in range(100):
            await asyncio.sleep(0.01)
            data = await storage.load("policycache")
            if data is not None and b"Film:2" in data:
                break

        await persistor.stop()

        data = await storage.load("policycache")
        assert data is not None
        assert "Film:2" in orjson.loads(data)["entities"]
