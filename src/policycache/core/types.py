"""Core data model for the normalized cache.

Entities live in a flat arena keyed by stable identity strings. Links between
entities are expressed as Reference values (lookups into the arena), never as
nested ownership, so cyclic references are legal.

Invariants:
    - An entity key never changes once created
    - A field that was never written reads as MISSING, which is not None
    - References are weak: a dangling Reference means "data unavailable"
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Final


class _MissingType:
    """Sentinel type for values that were never written."""

    _instance: _MissingType | None = None

    def __new__(cls) -> _MissingType:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False

    def __reduce__(self) -> str:
        return "MISSING"


MISSING: Final = _MissingType()

REF_KEY = "__ref"


class EntityState(str, Enum):
    """Lifecycle state of a cached entity."""

    FRESH = "fresh"
    STALE = "stale"
    EVICTED = "evicted"


class RenewalPolicy(str, Enum):
    """Which operations renew an entity's lease."""

    NONE = "none"
    WRITE_ONLY = "write-only"
    ACCESS_AND_WRITE = "access-and-write"

    @property
    def renews_on_write(self) -> bool:
        return self is not RenewalPolicy.NONE

    @property
    def renews_on_read(self) -> bool:
        return self is RenewalPolicy.ACCESS_AND_WRITE


@dataclass(frozen=True, slots=True)
class Reference:
    """Typed pointer from a field to another entity's key."""

    key: str

    def to_json(self) -> dict[str, str]:
        return {REF_KEY: self.key}

    @staticmethod
    def is_json_reference(value: Any) -> bool:
        return isinstance(value, dict) and len(value) == 1 and isinstance(value.get(REF_KEY), str)


@dataclass(frozen=True, slots=True)
class DependencyEdge:
    """Directed edge (parent, field) -> child, recorded whenever a field stores a reference."""

    parent: str
    field: str
    child: str


@dataclass(slots=True)
class Entity:
    """A cached entity and its lease metadata.

    Attributes:
        key: Stable identity (e.g. "Film:1" or a caller-supplied id)
        typename: GraphQL-style type name, used for policy lookup
        fields: Field map; absent names are MISSING, not null
        created_at: Start of this lifecycle (ms)
        last_written_at: Last write (ms), monotonically non-decreasing
        last_accessed_at: Last read (ms), None until first read
        lease_started_at: Anchor for TTL expiry (ms)
        ttl_ms: Lease duration; None never expires
        renewal_policy: Which operations renew the lease
        state: FRESH or STALE while stored, EVICTED once removed
        stale_fields: Fields invalidated by a cascade or explicit invalidation
    """

    key: str
    typename: str | None
    fields: dict[str, Any] = field(default_factory=dict)
    created_at: float = 0.0
    last_written_at: float = 0.0
    last_accessed_at: float | None = None
    lease_started_at: float = 0.0
    ttl_ms: int | None = None
    renewal_policy: RenewalPolicy = RenewalPolicy.WRITE_ONLY
    state: EntityState = EntityState.FRESH
    stale_fields: set[str] = field(default_factory=set)

    def expires_at(self) -> float | None:
        """Instant after which the lease has elapsed, or None if it never expires."""
        if self.ttl_ms is None:
            return None
        return self.lease_started_at + self.ttl_ms

    def is_expired(self, now: float) -> bool:
        return self.ttl_ms is not None and now - self.lease_started_at > self.ttl_ms


@dataclass(frozen=True, slots=True)
class ReadResult:
    """Detailed outcome of a cache read.

    Attributes:
        value: The value read, or MISSING
        state: State of the entity at the time of the read (None if unknown)
        stale: True when the entity or the requested field is stale
        stale_fields: Fields of the entity currently marked stale
        dangling: Keys of referenced entities that are no longer cached
    """

    value: Any
    state: EntityState | None
    stale: bool = False
    stale_fields: frozenset[str] = frozenset()
    dangling: frozenset[str] = frozenset()

    @property
    def missing(self) -> bool:
        return self.value is MISSING
