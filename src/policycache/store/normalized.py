"""Normalized entity store.

Entities are kept in a flat arena keyed by identity string. Every write
keeps the dependency graph in step with the references the written fields
hold, so the policy layer can cascade invalidation without scanning.

Invariants:
    - A write is atomic: every field is validated before any is applied
    - Field maps may be partial; an unwritten field reads as MISSING
    - Evicting an entity removes its outgoing edges but never its children
    - Edges pointing at an evicted entity stay until the parent field changes

How to change safely:
    - Lease bookkeeping belongs to PolicyManager, not here
    - Keep extract() output JSON-ready; persistence adapters serialize it as-is
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

from policycache.core.errors import InvalidWriteError
from policycache.core.keys import TYPENAME_FIELD, typename_from_key
from policycache.core.types import MISSING, Entity, EntityState, Reference
from policycache.store.graph import DependencyGraph
from policycache.store.snapshot import (
    SNAPSHOT_VERSION,
    decode_entity,
    encode_entity,
    parse_snapshot,
)

logger = logging.getLogger(__name__)

_SCALARS = (str, int, float, bool, type(None))


@dataclass
class WriteOutcome:
    """Result of writing one entity.

    Attributes:
        entity: The stored entity after the write
        created: Whether the write started a new entity lifecycle
        changed_fields: Fields whose value differs from before the write
        written_fields: Every field the write carried, changed or not
    """

    entity: Entity
    created: bool
    changed_fields: list[str] = field(default_factory=list)
    written_fields: list[str] = field(default_factory=list)


def collect_references(value: Any) -> set[str]:
    """Keys of every Reference nested anywhere in value."""
    found: set[str] = set()
    stack = [value]
    while stack:
        current = stack.pop()
        if isinstance(current, Reference):
            found.add(current.key)
        elif isinstance(current, Mapping):
            stack.extend(current.values())
        elif isinstance(current, (list, tuple)):
            stack.extend(current)
    return found


def _validate_value(key: str, path: str, value: Any) -> None:
    if isinstance(value, (Reference, *_SCALARS)):
        return
    if isinstance(value, Mapping):
        for name, child in value.items():
            if not isinstance(name, str):
                raise InvalidWriteError(key, f"non-string key {name!r} at {path}")
            _validate_value(key, f"{path}.{name}", child)
        return
    if isinstance(value, (list, tuple)):
        for index, item in enumerate(value):
            _validate_value(key, f"{path}[{index}]", item)
        return
    raise InvalidWriteError(key, f"unsupported value of type {type(value).__name__} at {path}")


def _validate_write(key: Any, fields: Any) -> None:
    if not isinstance(key, str) or not key:
        raise InvalidWriteError(str(key), "entity key must be a non-empty string")
    if not isinstance(fields, Mapping):
        raise InvalidWriteError(key, "fields must be a mapping")
    for name, value in fields.items():
        if not isinstance(name, str) or not name:
            raise InvalidWriteError(key, f"invalid field name {name!r}")
        _validate_value(key, name, value)


def copy_value(value: Any) -> Any:
    """Copy containers of a field value; scalars and references are shared."""
    if isinstance(value, Mapping):
        return {name: copy_value(child) for name, child in value.items()}
    if isinstance(value, (list, tuple)):
        return [copy_value(item) for item in value]
    return value


class NormalizedStore:
    """Arena of entities plus the dependency graph of their references.

    Example:
        >>> store = NormalizedStore()
        >>> _ = store.write("Film:1", {"__typename": "Film", "title": "A New Hope"})
        >>> store.read("Film:1", "title")
        'A New Hope'
        >>> store.read("Film:1", "director")
        MISSING
    """

    def __init__(self, graph: DependencyGraph | None = None) -> None:
        self._entities: dict[str, Entity] = {}
        self.graph = graph if graph is not None else DependencyGraph()

    def get(self, key: str) -> Entity | None:
        """Get the stored entity for key, if any."""
        return self._entities.get(key)

    def read(self, key: str, field_name: str | None = None) -> Any:
        """Read a field value (or a copy of the whole field map).

        Returns MISSING when the key or the field has never been written.
        """
        entity = self._entities.get(key)
        if entity is None:
            return MISSING
        if field_name is None:
            return copy_value(entity.fields)
        if field_name not in entity.fields:
            return MISSING
        return entity.fields[field_name]

    def write(
        self,
        key: str,
        fields: Mapping[str, Any],
        typename: str | None = None,
    ) -> WriteOutcome:
        """Merge fields into the entity, creating it if absent.

        Raises:
            InvalidWriteError: If validation fails; nothing is applied
        """
        _validate_write(key, fields)
        return self._apply(key, fields, typename)

    def write_many(
        self,
        entries: Mapping[str, Mapping[str, Any]],
        typenames: Mapping[str, str | None] | None = None,
    ) -> list[WriteOutcome]:
        """Write several entities atomically.

        Every entry is validated before the first one is applied.
        """
        for key, fields in entries.items():
            _validate_write(key, fields)

        typenames = typenames or {}
        return [self._apply(key, fields, typenames.get(key)) for key, fields in entries.items()]

    def _apply(self, key: str, fields: Mapping[str, Any], typename: str | None) -> WriteOutcome:
        entity = self._entities.get(key)
        created = entity is None
        if entity is None:
            entity = Entity(key=key, typename=None)
            self._entities[key] = entity

        resolved = typename or fields.get(TYPENAME_FIELD)
        if isinstance(resolved, str) and resolved:
            entity.typename = resolved
        elif entity.typename is None:
            entity.typename = typename_from_key(key)

        changed: list[str] = []
        for name, value in fields.items():
            previous = entity.fields.get(name, MISSING)
            stored = copy_value(value)
            entity.fields[name] = stored
            if previous is MISSING or previous != stored:
                changed.append(name)
                refs = collect_references(stored)
                if refs or previous is not MISSING:
                    self.graph.set_edges(key, name, refs)

        logger.debug(
            f"Stored {key} ({'created' if created else 'updated'}, {len(changed)} fields changed)"
        )
        return WriteOutcome(
            entity=entity, created=created, changed_fields=changed, written_fields=list(fields)
        )

    def evict(self, key: str) -> Entity | None:
        """Remove the entity and its outgoing edges.

        Children are not evicted; cascading is the policy layer's job.

        Returns:
            The evicted entity (now in EVICTED state), or None if absent
        """
        entity = self._entities.pop(key, None)
        if entity is None:
            return None

        self.graph.remove_parent(key)
        entity.state = EntityState.EVICTED
        logger.debug(f"Evicted {key}")
        return entity

    def evict_field(self, key: str, field_name: str) -> bool:
        """Remove a single field and its outgoing edges."""
        entity = self._entities.get(key)
        if entity is None or field_name not in entity.fields:
            return False

        del entity.fields[field_name]
        entity.stale_fields.discard(field_name)
        self.graph.remove_edges_from(key, field_name)
        logger.debug(f"Evicted field {key}.{field_name}")
        return True

    def extract(self) -> dict[str, Any]:
        """Export all entities as a JSON-ready snapshot."""
        return {
            "version": SNAPSHOT_VERSION,
            "entities": {key: encode_entity(entity) for key, entity in self._entities.items()},
        }

    def restore(self, snapshot: Any) -> int:
        """Replace the store contents with a snapshot.

        Returns:
            Number of entities loaded

        Raises:
            MalformedSnapshotError: If the snapshot is invalid; the store is unchanged
        """
        parsed = parse_snapshot(snapshot)
        entities = {key: decode_entity(key, record) for key, record in parsed.entities.items()}

        self.purge()
        self._entities.update(entities)
        for key, entity in entities.items():
            for name, value in entity.fields.items():
                for child in collect_references(value):
                    self.graph.add_edge(key, name, child)

        logger.debug(f"Restored {len(entities)} entities")
        return len(entities)

    def purge(self) -> int:
        """Remove every entity and edge.

        Returns:
            Number of entities removed
        """
        count = len(self._entities)
        for entity in self._entities.values():
            entity.state = EntityState.EVICTED
        self._entities.clear()
        self.graph.clear()
        return count

    def keys(self) -> list[str]:
        return list(self._entities)

    def entities(self) -> Iterator[Entity]:
        return iter(list(self._entities.values()))

    def __contains__(self, key: object) -> bool:
        return key in self._entities

    def __len__(self) -> int:
        return len(self._entities)
