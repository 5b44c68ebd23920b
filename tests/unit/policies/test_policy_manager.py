"""Tests for the policy manager state machine."""

from __future__ import annotations

from typing import Any

import pytest

from policycache.core.types import EntityState, Reference, RenewalPolicy
from policycache.events.schemas import ChangeReason
from policycache.policies.config import PolicyConfig, TypePolicy
from policycache.policies.manager import FieldInvalidation, PolicyManager
from policycache.store.normalized import NormalizedStore


class Harness:
    """Store plus manager driven by explicit timestamps."""

    def __init__(self, config: PolicyConfig) -> None:
        self.now = 0.0
        self.store = NormalizedStore()
        self.changes: list[tuple[str, str | None, ChangeReason]] = []
        self.manager = PolicyManager(
            self.store,
            config=config,
            clock=lambda: self.now,
            on_change=lambda key, field, reason: self.changes.append((key, field, reason)),
        )

    def write(self, key: str, fields: dict[str, Any], at: float | None = None) -> None:
        if at is not None:
            self.now = at
        self.manager.record_write(self.store.write(key, fields))

    def read(self, key: str, at: float) -> EntityState:
        self.now = at
        return self.manager.record_read(self.store.get(key))

    def state(self, key: str, at: float) -> EntityState | None:
        self.now = at
        return self.manager.state_of(key)


def harness(renewal: RenewalPolicy, ttl_ms: int | None = 10_000) -> Harness:
    return Harness(PolicyConfig(ttl_ms=ttl_ms, renewal_policy=renewal))


class TestLeases:
    """Test expiry and renewal rules."""

    def test_last_written_at_is_monotonic(self) -> None:
        """A write stamped earlier than the last one does not move time back."""
        h = harness(RenewalPolicy.WRITE_ONLY)
        h.write("Film:1", {"title": "A"}, at=1000)
        h.manager.record_write(h.store.write("Film:1", {"title": "B"}), now=500)

        assert h.store.get("Film:1").last_written_at == 1000

    def test_write_only_expires_after_ttl(self) -> None:
        h = harness(RenewalPolicy.WRITE_ONLY)
        h.write("Film:1", {"title": "A New Hope"}, at=0)

        assert h.state("Film:1", at=10_000) is EntityState.FRESH
        assert h.state("Film:1", at=10_001) is EntityState.STALE

    def test_write_only_reads_do_not_renew(self) -> None:
        h = harness(RenewalPolicy.WRITE_ONLY)
        h.write("Film:1", {"title": "A New Hope"}, at=0)
        h.read("Film:1", at=9_000)

        assert h.state("Film:1", at=10_001) is EntityState.STALE

    def test_write_only_writes_renew(self) -> None:
        h = harness(RenewalPolicy.WRITE_ONLY)
        h.write("Film:1", {"title": "A New Hope"}, at=0)
        h.write("Film:1", {"title": "A New Hope"}, at=9_000)

        assert h.state("Film:1", at=19_000) is EntityState.FRESH
        assert h.state("Film:1", at=19_001) is EntityState.STALE

    def test_none_expires_ttl_after_creation(self) -> None:
        """Under none, neither reads nor writes extend the lease."""
        h = harness(RenewalPolicy.NONE)
        h.write("Film:1", {"title": "A New Hope"}, at=0)
        h.write("Film:1", {"title": "Episode IV"}, at=5_000)
        h.read("Film:1", at=9_000)

        assert h.state("Film:1", at=10_000) is EntityState.FRESH
        assert h.state("Film:1", at=10_001) is EntityState.STALE

    def test_none_write_onto_stale_starts_new_lease(self) -> None:
        h = harness(RenewalPolicy.NONE)
        h.write("Film:1", {"title": "A New Hope"}, at=0)
        assert h.state("Film:1", at=15_000) is EntityState.STALE

        h.write("Film:1", {"title": "A New Hope"}, at=15_000)

        assert h.state("Film:1", at=25_000) is EntityState.FRESH
        assert h.state("Film:1", at=25_001) is EntityState.STALE

    def test_access_and_write_reads_keep_entity_fresh(self) -> None:
        """An entity read every ttl/2 never becomes stale."""
        h = harness(RenewalPolicy.ACCESS_AND_WRITE)
        h.write("Film:1", {"title": "A New Hope"}, at=0)

        for at in range(5_000, 100_001, 5_000):
            assert h.read("Film:1", at=at) is EntityState.FRESH

        assert h.state("Film:1", at=110_000) is EntityState.FRESH
        assert h.state("Film:1", at=110_001) is EntityState.STALE

    def test_access_and_write_read_refreshes_stale(self) -> None:
        """A read of a stale entity observes STALE, then renews the lease."""
        h = harness(RenewalPolicy.ACCESS_AND_WRITE)
        h.write("Film:1", {"title": "A New Hope"}, at=0)

        assert h.read("Film:1", at=20_000) is EntityState.STALE
        assert h.store.get("Film:1").state is EntityState.FRESH
        assert h.state("Film:1", at=30_000) is EntityState.FRESH

    def test_write_refreshes_stale(self) -> None:
        h = harness(RenewalPolicy.WRITE_ONLY)
        h.write("Film:1", {"title": "A New Hope"}, at=0)
        assert h.state("Film:1", at=15_000) is EntityState.STALE

        h.write("Film:1", {"title": "A New Hope"}, at=15_000)

        assert h.state("Film:1", at=15_000) is EntityState.FRESH

    def test_no_ttl_never_expires(self) -> None:
        h = harness(RenewalPolicy.WRITE_ONLY, ttl_ms=None)
        h.write("Film:1", {"title": "A New Hope"}, at=0)

        assert h.state("Film:1", at=10**12) is EntityState.FRESH

    def test_type_policy_applies(self) -> None:
        h = Harness(PolicyConfig(ttl_ms=10_000, types={"Person": TypePolicy(ttl_ms=100)}))
        h.write("Person:4", {"name": "George Lucas"}, at=0)
        h.write("Film:1", {"title": "A New Hope"}, at=0)

        assert h.state("Person:4", at=101) is EntityState.STALE
        assert h.state("Film:1", at=101) is EntityState.FRESH

    def test_unknown_key_has_no_state(self) -> None:
        h = harness(RenewalPolicy.WRITE_ONLY)
        assert h.state("Film:9", at=0) is None


class TestCascade:
    """Test invalidation along references."""

    @pytest.fixture
    def h(self) -> Harness:
        """ROOT_QUERY.film -> Film:1, Film:1.director -> Person:4."""
        h = harness(RenewalPolicy.WRITE_ONLY)
        h.write("Person:4", {"name": "George Lucas"}, at=0)
        h.write("Film:1", {"title": "A New Hope", "director": Reference("Person:4")})
        h.write("ROOT_QUERY", {"film": Reference("Film:1")})
        return h

    def test_evict_marks_referencing_field_stale(self, h: Harness) -> None:
        """Evicting a child invalidates the parent field without evicting the parent."""
        assert h.manager.evict("Person:4")

        film = h.store.get("Film:1")
        assert film is not None
        assert film.stale_fields == {"director"}
        assert film.state is EntityState.FRESH
        assert "Person:4" not in h.store

    def test_cascade_is_transitive(self, h: Harness) -> None:
        invalidated = h.manager.invalidate("Person:4")

        assert invalidated == [
            FieldInvalidation(key="Film:1", field="director", cause="Person:4"),
            FieldInvalidation(key="ROOT_QUERY", field="film", cause="Film:1"),
        ]
        assert h.store.get("Person:4").state is EntityState.STALE
        assert h.store.get("ROOT_QUERY").stale_fields == {"film"}

    def test_expiry_cascades(self, h: Harness) -> None:
        """A lease elapsing cascades like an explicit invalidation."""
        h.state("Person:4", at=10_001)

        assert h.store.get("Film:1").stale_fields == {"director"}

    def test_cycles_terminate(self) -> None:
        h = harness(RenewalPolicy.WRITE_ONLY)
        h.write("Person:1", {"friend": Reference("Person:2")}, at=0)
        h.write("Person:2", {"friend": Reference("Person:1")})

        invalidated = h.manager.invalidate("Person:1")

        assert {(i.key, i.field) for i in invalidated} == {
            ("Person:2", "friend"),
            ("Person:1", "friend"),
        }

    def test_rewrite_clears_stale_field(self, h: Harness) -> None:
        h.manager.evict("Person:4")
        h.write("Film:1", {"director": None})

        assert h.store.get("Film:1").stale_fields == set()

    def test_identical_rewrite_clears_stale_field(self, h: Harness) -> None:
        """Writing the same reference back still counts as a rewrite."""
        h.manager.invalidate("Person:4")
        h.write("ROOT_QUERY", {"film": Reference("Film:1")})

        assert h.store.get("ROOT_QUERY").stale_fields == set()
        assert h.store.get("Film:1").stale_fields == {"director"}

    def test_child_rewrite_settles_dependents(self, h: Harness) -> None:
        """A child that is fresh again clears the marks it caused, transitively."""
        h.manager.evict("Person:4")
        h.changes.clear()

        h.write("Person:4", {"name": "George Lucas"})

        assert h.store.get("Film:1").stale_fields == set()
        assert h.store.get("ROOT_QUERY").stale_fields == set()
        assert h.changes == [
            ("Film:1", "director", ChangeReason.REFRESHED),
            ("ROOT_QUERY", "film", ChangeReason.REFRESHED),
        ]

    def test_settle_waits_for_every_referenced_child(self, h: Harness) -> None:
        h.write("Person:5", {"name": "Mark Hamill"})
        h.write("Film:1", {"cast": [Reference("Person:4"), Reference("Person:5")]})
        h.manager.invalidate("Person:4")
        h.manager.invalidate("Person:5")

        h.write("Person:4", {"name": "George Lucas"})
        assert h.store.get("Film:1").stale_fields == {"cast"}

        h.write("Person:5", {"name": "Mark Hamill"})
        assert h.store.get("Film:1").stale_fields == set()

    def test_access_renewal_settles_dependents(self) -> None:
        h = harness(RenewalPolicy.ACCESS_AND_WRITE)
        h.write("Film:1", {"title": "A New Hope"}, at=0)
        h.write("Person:4", {"film": Reference("Film:1")}, at=5_000)

        assert h.read("Film:1", at=10_001) is EntityState.STALE

        assert h.store.get("Film:1").state is EntityState.FRESH
        assert h.store.get("Person:4").stale_fields == set()

    def test_invalidate_single_field(self, h: Harness) -> None:
        invalidated = h.manager.invalidate("Film:1", "title")

        assert invalidated == [FieldInvalidation(key="Film:1", field="title", cause="Film:1")]
        assert h.store.get("Film:1").stale_fields == {"title"}
        assert h.manager.invalidate("Film:1", "title") == []

    def test_invalidate_unknown_key(self, h: Harness) -> None:
        assert h.manager.invalidate("Film:9") == []

    def test_evict_field(self, h: Harness) -> None:
        assert h.manager.evict("Film:1", "director")
        assert "director" not in h.store.get("Film:1").fields
        assert not h.manager.evict("Film:1", "director")

    def test_evict_unknown_key(self, h: Harness) -> None:
        assert not h.manager.evict("Film:9")

    def test_change_notifications(self, h: Harness) -> None:
        h.changes.clear()
        h.manager.evict("Person:4")

        assert h.changes == [
            ("Person:4", None, ChangeReason.EVICTED),
            ("Film:1", "director", ChangeReason.INVALIDATED),
            ("ROOT_QUERY", "film", ChangeReason.INVALIDATED),
        ]


class TestSweep:
    """Test the expiration sweep."""

    @pytest.fixture
    def h(self) -> Harness:
        h = Harness(PolicyConfig(ttl_ms=10_000, types={"Person": TypePolicy(ttl_ms=1_000)}))
        h.write("Person:4", {"name": "George Lucas"}, at=0)
        h.write("Film:1", {"director": Reference("Person:4")}, at=0)
        return h

    def test_sweep_marks_without_removing(self, h: Harness) -> None:
        h.now = 5_000
        result = h.manager.sweep()

        assert result.expired == ["Person:4"]
        assert result.scanned == 2
        assert result.invalidated == [
            FieldInvalidation(key="Film:1", field="director", cause="Person:4")
        ]
        assert "Person:4" in h.store
        assert h.store.get("Person:4").state is EntityState.STALE

    def test_sweep_is_idempotent(self, h: Harness) -> None:
        h.manager.sweep(now=5_000)
        result = h.manager.sweep(now=5_000)

        assert result.expired == []
        assert result.invalidated == []

    def test_evict_stale_removes(self, h: Harness) -> None:
        h.manager.sweep(now=5_000)

        assert h.manager.evict_stale() == ["Person:4"]
        assert "Person:4" not in h.store
        assert "Film:1" in h.store
