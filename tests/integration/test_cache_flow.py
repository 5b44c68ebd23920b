"""End-to-end cache flows: leases, pagination and persistence together."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from policycache import (
    MISSING,
    ROOT_QUERY,
    CachePersistor,
    EntityState,
    InMemoryStorage,
    InvalidationPolicyCache,
    Reference,
    relay_style_pagination,
)

CacheFactory = Callable[..., InvalidationPolicyCache]

FILM_QUERY_RESULT = {
    "film": {
        "__typename": "Film",
        "id": "1",
        "title": "A New Hope",
        "director": {"__typename": "Person", "id": "4", "name": "George Lucas"},
        "characters": [
            {"__typename": "Person", "id": "5", "name": "Luke Skywalker"},
            {"__typename": "Person", "id": "6", "name": "Leia Organa"},
        ],
    }
}


def people_page(*ids: str, has_next: bool) -> dict[str, Any]:
    return {
        "allPeople": {
            "__typename": "PeopleConnection",
            "edges": [
                {
                    "__typename": "PeopleEdge",
                    "cursor": f"p{person_id}",
                    "node": {"__typename": "Person", "id": person_id},
                }
                for person_id in ids
            ],
            "pageInfo": {"endCursor": f"p{ids[-1]}", "hasNextPage": has_next},
        }
    }


class TestLeaseLifecycle:
    """A film leased for ten seconds under write-only renewal."""

    @pytest.fixture
    def cache(self, make_cache: CacheFactory) -> InvalidationPolicyCache:
        cache = make_cache(
            invalidation_policies={
                "timeToLive": 10_000,
                "renewalPolicy": "write-only",
                "types": {"Person": {"timeToLive": 60_000}},
            }
        )
        cache.write_result(ROOT_QUERY, FILM_QUERY_RESULT)
        return cache

    def test_reads_do_not_renew(self, cache: InvalidationPolicyCache, clock: Any) -> None:
        clock.advance(5_000)
        assert cache.read_result("Film:1", "title").state is EntityState.FRESH

        clock.advance(10_000)
        result = cache.read_result("Film:1", "title")

        assert result.value == "A New Hope"
        assert result.state is EntityState.STALE
        assert result.stale

    def test_rewrite_refreshes(self, cache: InvalidationPolicyCache, clock: Any) -> None:
        clock.advance(15_000)
        assert cache.state("Film:1") is EntityState.STALE

        cache.write_result(ROOT_QUERY, FILM_QUERY_RESULT)

        assert cache.state("Film:1") is EntityState.FRESH
        assert cache.store.get("Film:1").stale_fields == set()

    def test_identical_refetch_clears_parent_field(
        self, cache: InvalidationPolicyCache, clock: Any
    ) -> None:
        """Refetching the same response leaves nothing stale behind."""
        clock.advance(15_000)
        assert cache.read_result(ROOT_QUERY, "film").stale

        cache.write_result(ROOT_QUERY, FILM_QUERY_RESULT)

        result = cache.read_result(ROOT_QUERY, "film")
        assert result.value == Reference("Film:1")
        assert not result.stale
        assert cache.store.get(ROOT_QUERY).stale_fields == set()

    def test_refetched_child_clears_evicted_reference(
        self, cache: InvalidationPolicyCache
    ) -> None:
        cache.evict("Film:1")
        assert cache.read_result(ROOT_QUERY, "film").stale

        cache.write_result(ROOT_QUERY, FILM_QUERY_RESULT)

        assert not cache.read_result(ROOT_QUERY, "film").stale

    def test_person_outlives_film(self, cache: InvalidationPolicyCache, clock: Any) -> None:
        clock.advance(15_000)
        cache.sweep()
        cache.evict_stale()

        assert cache.read("Film:1", "title") is MISSING
        assert cache.read("Person:4", "name") == "George Lucas"
        assert cache.read(ROOT_QUERY, "film") is MISSING

    def test_eviction_cascades_to_parents(self, cache: InvalidationPolicyCache) -> None:
        cache.evict("Person:5")

        result = cache.read_result("Film:1", "characters")

        assert result.value == [Reference("Person:6")]
        assert result.stale
        assert cache.state("Film:1") is EntityState.FRESH


class TestPaginatedFeed:
    """Pages of a relay connection accumulate under one field."""

    @pytest.fixture
    def cache(self, make_cache: CacheFactory) -> InvalidationPolicyCache:
        return make_cache(
            type_policies={
                "Query": {"allPeople": relay_style_pagination(())},
            },
            invalidation_policies={"timeToLive": 10_000},
        )

    def test_pages_merge_and_invalidate(self, cache: InvalidationPolicyCache) -> None:
        cache.write_result(ROOT_QUERY, people_page("1", "2", has_next=True))
        cache.write_result(
            ROOT_QUERY, people_page("3", has_next=False), {"allPeople": {"after": "p2"}}
        )

        connection = cache.read(ROOT_QUERY, "allPeople")
        assert [edge["cursor"] for edge in connection["edges"]] == ["p1", "p2", "p3"]
        assert connection["pageInfo"]["hasNextPage"] is False

        cache.invalidate("Person:2")
        result = cache.read_result(ROOT_QUERY, "allPeople")

        assert result.stale
        assert len(result.value["edges"]) == 3


class TestPersistedSession:
    """A cache saved at shutdown and restored at startup."""

    async def test_round_trip(self, make_cache: CacheFactory, clock: Any) -> None:
        storage = InMemoryStorage()
        policies = {"timeToLive": 10_000, "renewalPolicy": "access-and-write"}

        cache = make_cache(invalidation_policies=policies)
        cache.write_result(ROOT_QUERY, FILM_QUERY_RESULT)
        cache.invalidate("Person:6")
        await CachePersistor(cache, storage).persist()

        restored = make_cache(invalidation_policies=policies)
        assert await CachePersistor(restored, storage).restore()
        assert restored.read_result("Film:1", "characters").stale

        for key in ("Film:1", "Person:4", "Person:5", "Person:6", ROOT_QUERY):
            assert restored.read(key) == cache.read(key)
            assert restored.state(key) is cache.state(key)

        # reading Person:6 renewed it, which settles the fields that reference it
        assert not restored.read_result("Film:1", "characters").stale
        assert not restored.read_result(ROOT_QUERY, "film").stale

        clock.advance(9_000)
        restored.read("Film:1")
        clock.advance(9_000)
        assert restored.state("Film:1") is EntityState.FRESH

    async def test_reset_after_purge(self, make_cache: CacheFactory) -> None:
        storage = InMemoryStorage()
        cache = make_cache()
        cache.write_result(ROOT_QUERY, FILM_QUERY_RESULT)
        persistor = CachePersistor(cache, storage)
        await persistor.persist()

        await persistor.purge()
        cache.reset()

        assert len(cache) == 0
        assert not await CachePersistor(make_cache(), storage).restore()
