"""Policy manager: leases, expiration and cascade invalidation.

Each stored entity is FRESH or STALE; eviction moves it to EVICTED, which is
terminal (a later write of the same key starts a new lifecycle).

Transitions:
    FRESH -> STALE     lease elapsed (found by sweep or lazily on read),
                       or explicit invalidate()
    STALE -> FRESH     any write; a read under access-and-write
    *     -> EVICTED   explicit evict() or evict_stale() after a sweep

Lease anchor (lease_started_at):
    none               set when a lifecycle starts, or by a write onto a STALE entity
    write-only         every write
    access-and-write   every write and every read

When an entity goes STALE or is evicted, every field of every (transitive)
dependent that references it is marked stale. Only the referencing fields
are marked; the dependents themselves keep their state. Traversal is
bounded by a visited set, so reference cycles terminate.

Expiry and removal are separate steps: sweep() only marks, evict_stale()
removes, so readers consuming partial data never see an entry vanish
mid-read.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from policycache.core.types import Entity, EntityState
from policycache.events.schemas import ChangeReason
from policycache.policies.config import PolicyConfig

if TYPE_CHECKING:
    from policycache.observability.metrics import CacheMetrics
    from policycache.store.normalized import NormalizedStore, WriteOutcome

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
ChangeListener = Callable[[str, "str | None", ChangeReason], None]


def system_clock() -> float:
    """Wall clock in milliseconds."""
    return time.time() * 1000.0


@dataclass(frozen=True)
class FieldInvalidation:
    """A dependent field whose stale mark a cascade set or cleared."""

    key: str
    field: str
    cause: str


@dataclass
class SweepResult:
    """Outcome of one expiration sweep.

    Attributes:
        expired: Keys that went FRESH -> STALE during the sweep
        invalidated: Dependent fields marked stale by cascades
        scanned: Number of entities examined
    """

    expired: list[str] = field(default_factory=list)
    invalidated: list[FieldInvalidation] = field(default_factory=list)
    scanned: int = 0


class PolicyManager:
    """Applies lease, expiration and cascade rules to the store."""

    def __init__(
        self,
        store: NormalizedStore,
        config: PolicyConfig | None = None,
        clock: Clock | None = None,
        metrics: CacheMetrics | None = None,
        on_change: ChangeListener | None = None,
    ) -> None:
        self.store = store
        self.config = config or PolicyConfig()
        self.clock = clock or system_clock
        self.metrics = metrics
        self._on_change = on_change

    def _notify(self, key: str, field_name: str | None, reason: ChangeReason) -> None:
        if self._on_change is not None:
            self._on_change(key, field_name, reason)

    # Lease bookkeeping

    def record_write(self, outcome: WriteOutcome, now: float | None = None) -> None:
        """Stamp write timestamps and renew the lease as the policy allows."""
        now = self.clock() if now is None else now
        entity = outcome.entity
        resolved = self.config.resolve(entity.typename)
        entity.ttl_ms = resolved.ttl_ms
        entity.renewal_policy = resolved.renewal_policy

        if outcome.created:
            entity.created_at = now
            entity.last_written_at = now
            entity.lease_started_at = now
        else:
            entity.last_written_at = max(entity.last_written_at, now)
            was_stale = entity.state is EntityState.STALE or entity.is_expired(now)
            if entity.renewal_policy.renews_on_write or was_stale:
                entity.lease_started_at = max(entity.lease_started_at, now)

        entity.state = EntityState.FRESH
        entity.stale_fields.difference_update(outcome.written_fields)
        self.settle(entity.key)

    def record_read(self, entity: Entity, now: float | None = None) -> EntityState:
        """Evaluate the entity for a read and renew the lease under access-and-write.

        Returns:
            The state observed by this read (before any renewal)
        """
        now = self.clock() if now is None else now
        observed = self._evaluate(entity, now)

        entity.last_accessed_at = now if entity.last_accessed_at is None else max(
            entity.last_accessed_at, now
        )
        if entity.renewal_policy.renews_on_read:
            entity.lease_started_at = max(entity.lease_started_at, now)
            if entity.state is EntityState.STALE:
                entity.state = EntityState.FRESH
                logger.debug(f"Lease of {entity.key} renewed by read")
                self.settle(entity.key)
        return observed

    def _evaluate(self, entity: Entity, now: float) -> EntityState:
        """Lazily move an entity whose lease elapsed to STALE."""
        if entity.state is EntityState.FRESH and entity.is_expired(now):
            self._mark_stale(entity)
        return entity.state

    def _mark_stale(self, entity: Entity) -> list[FieldInvalidation]:
        entity.state = EntityState.STALE
        logger.debug(f"{entity.key} is stale")
        self._notify(entity.key, None, ChangeReason.INVALIDATED)
        return self.cascade(entity.key)

    def observe(self, key: str, now: float | None = None) -> Entity | None:
        """Look up key, moving it to STALE first if its lease has elapsed."""
        entity = self.store.get(key)
        if entity is not None:
            self._evaluate(entity, self.clock() if now is None else now)
        return entity

    def state_of(self, key: str, now: float | None = None) -> EntityState | None:
        """Current state of key, or None if it is not cached."""
        entity = self.observe(key, now)
        return entity.state if entity is not None else None

    # Invalidation

    def cascade(self, key: str) -> list[FieldInvalidation]:
        """Mark every field of every transitive dependent that references key."""
        invalidated: list[FieldInvalidation] = []
        for child, parent, fields in self.store.graph.walk_dependents(key):
            entity = self.store.get(parent)
            if entity is None:
                continue
            for name in sorted(fields - entity.stale_fields):
                entity.stale_fields.add(name)
                invalidated.append(FieldInvalidation(key=parent, field=name, cause=child))
                self._notify(parent, name, ChangeReason.INVALIDATED)

        if invalidated:
            logger.debug(f"Cascade from {key} invalidated {len(invalidated)} dependent fields")
            if self.metrics is not None:
                self.metrics.invalidations_total.labels(kind="cascade").inc(len(invalidated))
        return invalidated

    def _is_settled(self, key: str) -> bool:
        entity = self.store.get(key)
        return (
            entity is not None
            and entity.state is EntityState.FRESH
            and not entity.stale_fields
        )

    def settle(self, key: str) -> list[FieldInvalidation]:
        """Clear cascade marks that key no longer justifies.

        A dependent field is unmarked once every entity it references is
        FRESH with no stale fields of its own. A dependent left with no marks
        is followed upward in turn.

        Returns:
            Dependent fields whose stale mark was cleared
        """
        cleared: list[FieldInvalidation] = []
        if not self._is_settled(key):
            return cleared

        graph = self.store.graph
        visited = {key}
        frontier = [key]
        while frontier:
            child = frontier.pop(0)
            for parent in sorted(graph.dependents_of(child)):
                entity = self.store.get(parent)
                if entity is None:
                    continue
                marked = graph.fields_referencing(parent, child) & entity.stale_fields
                unmarked = False
                for name in sorted(marked):
                    if all(self._is_settled(ref) for ref in graph.children_of(parent, name)):
                        entity.stale_fields.discard(name)
                        cleared.append(FieldInvalidation(key=parent, field=name, cause=child))
                        self._notify(parent, name, ChangeReason.REFRESHED)
                        unmarked = True
                if unmarked and parent not in visited and self._is_settled(parent):
                    visited.add(parent)
                    frontier.append(parent)

        if cleared:
            logger.debug(f"{key} is fresh again, cleared {len(cleared)} dependent fields")
        return cleared

    def invalidate(self, key: str, field_name: str | None = None) -> list[FieldInvalidation]:
        """Force an entity (or one of its fields) stale without evicting it.

        Returns:
            Dependent fields invalidated as a result
        """
        entity = self.store.get(key)
        if entity is None:
            return []

        if self.metrics is not None:
            self.metrics.invalidations_total.labels(kind="explicit").inc()

        if field_name is not None:
            if field_name not in entity.fields or field_name in entity.stale_fields:
                return []
            entity.stale_fields.add(field_name)
            self._notify(key, field_name, ChangeReason.INVALIDATED)
            return [FieldInvalidation(key=key, field=field_name, cause=key)]

        if entity.state is EntityState.STALE:
            return []
        return self._mark_stale(entity)

    def evict(self, key: str, field_name: str | None = None, reason: str = "explicit") -> bool:
        """Evict an entity (or a single field) and cascade to its dependents."""
        if field_name is not None:
            removed = self.store.evict_field(key, field_name)
            if removed:
                self._notify(key, field_name, ChangeReason.EVICTED)
            return removed

        entity = self.store.evict(key)
        if entity is None:
            return False

        logger.info(f"Evicted {key} ({reason})")
        if self.metrics is not None:
            self.metrics.evictions_total.labels(reason=reason).inc()
        self._notify(key, None, ChangeReason.EVICTED)
        self.cascade(key)
        return True

    # Sweeping

    def sweep(self, now: float | None = None) -> SweepResult:
        """Mark every entity whose lease has elapsed as STALE.

        Idempotent: already-stale entities are left as they are. Nothing is
        removed from storage.
        """
        now = self.clock() if now is None else now
        result = SweepResult()
        for entity in self.store.entities():
            result.scanned += 1
            if entity.state is EntityState.FRESH and entity.is_expired(now):
                result.expired.append(entity.key)
                result.invalidated.extend(self._mark_stale(entity))

        if self.metrics is not None:
            self.metrics.sweeps_total.inc()
        if result.expired:
            logger.info(
                f"Sweep marked {len(result.expired)} of {result.scanned} entities stale "
                f"({len(result.invalidated)} dependent fields invalidated)"
            )
        return result

    def evict_stale(self) -> list[str]:
        """Evict every STALE entity.

        Returns:
            Keys evicted
        """
        stale = [e.key for e in self.store.entities() if e.state is EntityState.STALE]
        for key in stale:
            self.evict(key, reason="stale")
        return stale
