"""Snapshot schema for extract/restore.

Snapshot format:
    {
        "version": 1,
        "entities": {
            "Film:1": {
                "typename": "Film",
                "fields": {"title": "A New Hope", "director": {"__ref": "Person:4"}},
                "meta": {
                    "created_at": 1700000000000.0,
                    "last_written_at": 1700000000000.0,
                    "last_accessed_at": null,
                    "lease_started_at": 1700000000000.0,
                    "ttl_ms": 10000,
                    "renewal_policy": "write-only",
                    "state": "fresh",
                    "stale_fields": []
                }
            }
        }
    }

References are encoded as {"__ref": key}. The snapshot is plain JSON data;
turning it into bytes is the persistence adapter's job.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError, field_validator

from policycache.core.errors import MalformedSnapshotError
from policycache.core.types import REF_KEY, Entity, EntityState, Reference, RenewalPolicy

SNAPSHOT_VERSION = 1


class EntityMeta(BaseModel):
    """Lease metadata of a snapshotted entity."""

    model_config = {"extra": "forbid"}

    created_at: float
    last_written_at: float
    last_accessed_at: float | None = None
    lease_started_at: float
    ttl_ms: int | None = Field(default=None, ge=0)
    renewal_policy: RenewalPolicy = RenewalPolicy.WRITE_ONLY
    state: EntityState = EntityState.FRESH
    stale_fields: list[str] = Field(default_factory=list)

    @field_validator("state")
    @classmethod
    def _stored_state(cls, value: EntityState) -> EntityState:
        if value is EntityState.EVICTED:
            raise ValueError("evicted entities cannot appear in a snapshot")
        return value


class EntityRecord(BaseModel):
    """A snapshotted entity."""

    model_config = {"extra": "forbid"}

    typename: str | None = None
    fields: dict[str, Any]
    meta: EntityMeta


class Snapshot(BaseModel):
    """Top-level snapshot document."""

    model_config = {"extra": "forbid"}

    version: Literal[1] = SNAPSHOT_VERSION
    entities: dict[str, EntityRecord] = Field(default_factory=dict)

    @field_validator("entities")
    @classmethod
    def _non_empty_keys(cls, value: dict[str, EntityRecord]) -> dict[str, EntityRecord]:
        if any(not key for key in value):
            raise ValueError("entity keys must be non-empty")
        return value


def encode_value(value: Any) -> Any:
    """Convert an in-memory field value to JSON data."""
    if isinstance(value, Reference):
        return value.to_json()
    if isinstance(value, Mapping):
        return {name: encode_value(child) for name, child in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode_value(item) for item in value]
    return value


def decode_value(value: Any) -> Any:
    """Convert JSON data from a snapshot back to an in-memory field value."""
    if Reference.is_json_reference(value):
        return Reference(value[REF_KEY])
    if isinstance(value, dict):
        return {name: decode_value(child) for name, child in value.items()}
    if isinstance(value, list):
        return [decode_value(item) for item in value]
    return value


def encode_entity(entity: Entity) -> dict[str, Any]:
    """Serialize one entity into its snapshot record."""
    return {
        "typename": entity.typename,
        "fields": encode_value(entity.fields),
        "meta": {
            "created_at": entity.created_at,
            "last_written_at": entity.last_written_at,
            "last_accessed_at": entity.last_accessed_at,
            "lease_started_at": entity.lease_started_at,
            "ttl_ms": entity.ttl_ms,
            "renewal_policy": entity.renewal_policy.value,
            "state": entity.state.value,
            "stale_fields": sorted(entity.stale_fields),
        },
    }


def decode_entity(key: str, record: EntityRecord) -> Entity:
    """Rebuild an entity from a validated snapshot record."""
    meta = record.meta
    return Entity(
        key=key,
        typename=record.typename,
        fields=decode_value(record.fields),
        created_at=meta.created_at,
        last_written_at=meta.last_written_at,
        last_accessed_at=meta.last_accessed_at,
        lease_started_at=meta.lease_started_at,
        ttl_ms=meta.ttl_ms,
        renewal_policy=meta.renewal_policy,
        state=meta.state,
        stale_fields=set(meta.stale_fields),
    )


def parse_snapshot(data: Any) -> Snapshot:
    """Validate snapshot data.

    Raises:
        MalformedSnapshotError: If the data fails structural validation
    """
    if not isinstance(data, Mapping):
        raise MalformedSnapshotError(f"Snapshot must be an object, got {type(data).__name__}")
    try:
        return Snapshot.model_validate(data)
    except ValidationError as e:
        raise MalformedSnapshotError(
            f"Snapshot failed validation ({e.error_count()} errors)"
        ) from e
