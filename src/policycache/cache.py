"""The constructed cache object.

InvalidationPolicyCache ties the normalized store, the dependency graph, the
policy manager, the field policy registry and watch notifications together
behind one explicit object. There is no process-wide cache instance; callers
construct one and pass it to every collaborator (query layer, persistor).

Read path:
    typename -> field policy -> storage field name -> stored value
    -> dangling references stripped -> policy read -> lease bookkeeping

Write path:
    storage field name -> policy merge -> atomic store write
    -> lease bookkeeping -> watch notifications

Example:
    cache = InvalidationPolicyCache(
        type_policies={
            "Query": {
                "film": lambda existing, options: existing or options.to_reference(
                    {"id": options.args["id"]}
                ),
                "allFilms": relay_style_pagination(["first"]),
            }
        },
        invalidation_policies={"timeToLive": 10_000, "renewalPolicy": "write-only"},
    )
    cache.write_result(ROOT_QUERY, response_data, field_args={"allFilms": {"first": 3}})
    cache.read(ROOT_QUERY, "allFilms", {"first": 3})
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from policycache.config import Settings
from policycache.core.errors import InvalidWriteError, MalformedSnapshotError
from policycache.core.keys import (
    ROOT_MUTATION,
    ROOT_QUERY,
    TYPENAME_FIELD,
    DataIdFromObject,
    default_data_id_from_object,
    typename_from_key,
)
from policycache.core.normalize import normalize
from policycache.core.types import MISSING, EntityState, ReadResult, Reference
from policycache.events.schemas import ChangeReason
from policycache.events.watch import Watch, WatchManager
from policycache.observability.logging import LogContext
from policycache.observability.metrics import CacheMetrics
from policycache.policies.config import PolicyConfig
from policycache.policies.fields import FieldMergeOptions, FieldPolicyRegistry, FieldReadOptions
from policycache.policies.manager import Clock, FieldInvalidation, PolicyManager, SweepResult
from policycache.store.normalized import NormalizedStore, WriteOutcome, copy_value
from policycache.store.snapshot import decode_value

logger = logging.getLogger(__name__)

ROOT_KEYS = (ROOT_QUERY, ROOT_MUTATION)


def strip_dangling(value: Any, resolves: Callable[[str], bool]) -> tuple[Any, set[str]]:
    """Remove references that no longer resolve.

    A dangling reference at the top reads as MISSING, list items that dangle
    are dropped and object keys holding one are left out.

    Returns:
        The cleaned value (always a fresh container) and the dangling keys
    """
    dangling: set[str] = set()

    def visit(current: Any) -> Any:
        if isinstance(current, Reference):
            if resolves(current.key):
                return current
            dangling.add(current.key)
            return MISSING
        if isinstance(current, Mapping):
            result = {}
            for name, child in current.items():
                cleaned = visit(child)
                if cleaned is not MISSING:
                    result[name] = cleaned
            return result
        if isinstance(current, (list, tuple)):
            return [cleaned for cleaned in map(visit, current) if cleaned is not MISSING]
        return current

    return visit(value), dangling


class InvalidationPolicyCache:
    """Normalized entity cache with TTL leases and cascade invalidation.

    Args:
        type_policies: {typename: {field: FieldPolicy | read function}}
        invalidation_policies: PolicyConfig, or a mapping accepted by
            PolicyConfig.from_mapping; None takes the defaults from settings
        data_id_from_object: Identity resolver for response objects
        clock: Millisecond clock (injectable for tests)
        settings: Settings instance; a fresh one is read from the environment
        metrics: Metric handles; created from settings when omitted
    """

    def __init__(
        self,
        type_policies: Mapping[str, Mapping[str, Any]] | None = None,
        invalidation_policies: PolicyConfig | Mapping[str, Any] | None = None,
        data_id_from_object: DataIdFromObject | None = None,
        clock: Clock | None = None,
        settings: Settings | None = None,
        metrics: CacheMetrics | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.cache_id = self.settings.instance_id

        if invalidation_policies is None:
            config = PolicyConfig.from_settings(self.settings)
        elif isinstance(invalidation_policies, PolicyConfig):
            config = invalidation_policies
        else:
            config = PolicyConfig.from_mapping(invalidation_policies)

        self.metrics = metrics or CacheMetrics.create(enabled=self.settings.enable_metrics)
        self.policies = FieldPolicyRegistry()
        if type_policies:
            self.policies.register_type_policies(type_policies)

        self.store = NormalizedStore()
        self.watches = WatchManager(self._peek, max_queue_size=self.settings.watch_queue_size)
        self.manager = PolicyManager(
            self.store,
            config=config,
            clock=clock,
            metrics=self.metrics,
            on_change=self.watches.notify,
        )
        self._data_id_from_object = data_id_from_object or default_data_id_from_object
        self._retained: dict[str, int] = {}

        logger.info(
            f"Cache {self.cache_id} created (ttl={config.ttl_ms}, "
            f"renewal={config.renewal_policy.value}, {len(self.policies)} field policies)"
        )

    @property
    def config(self) -> PolicyConfig:
        return self.manager.config

    # Identity

    def identify(self, obj: Mapping[str, Any]) -> str | None:
        """Entity key of a response object, or None if it has no identity."""
        return self._data_id_from_object(obj)

    def to_reference(self, value: Any) -> Reference | None:
        """Build a Reference from a Reference, a response object or a key."""
        if isinstance(value, Reference):
            return value
        if isinstance(value, Mapping):
            key = self.identify(value)
            return Reference(key) if key else None
        if isinstance(value, str) and value:
            return Reference(value)
        return None

    def _typename_of(self, key: str, fields: Mapping[str, Any] | None = None) -> str | None:
        if fields is not None:
            declared = fields.get(TYPENAME_FIELD)
            if isinstance(declared, str) and declared:
                return declared
        entity = self.store.get(key)
        if entity is not None and entity.typename:
            return entity.typename
        return typename_from_key(key)

    # Reads

    def read(
        self, key: str, field_name: str | None = None, args: Mapping[str, Any] | None = None
    ) -> Any:
        """Read a field (or the whole entity); MISSING when nothing is cached."""
        return self.read_result(key, field_name, args).value

    def read_result(
        self, key: str, field_name: str | None = None, args: Mapping[str, Any] | None = None
    ) -> ReadResult:
        """Read with state, staleness and dangling-reference details."""
        now = self.manager.clock()
        entity = self.manager.observe(key, now)

        def resolves(ref_key: str) -> bool:
            return self.manager.observe(ref_key, now) is not None

        typename = entity.typename if entity is not None else typename_from_key(key)
        storage: str | None = None
        dangling: set[str] = set()

        if field_name is None:
            if entity is None:
                self.metrics.reads_total.labels(outcome="miss").inc()
                return ReadResult(value=MISSING, state=None)
            value, dangling = strip_dangling(entity.fields, resolves)
        else:
            storage = self.policies.storage_name(typename, field_name, args)
            if entity is None and self.policies.get(typename, field_name) is None:
                self.metrics.reads_total.labels(outcome="miss").inc()
                return ReadResult(value=MISSING, state=None)

            stored = entity.fields.get(storage, MISSING) if entity is not None else MISSING
            existing, dangling = strip_dangling(stored, resolves)
            options = FieldReadOptions(
                args=dict(args or {}),
                field_name=field_name,
                storage_field_name=storage,
                typename=typename,
                to_reference=self.to_reference,
                can_read=lambda candidate: self._can_read(candidate, resolves),
            )
            value = self.policies.apply_read(typename, field_name, existing, options)
            if isinstance(value, Reference) and not resolves(value.key):
                dangling.add(value.key)
                value = MISSING

        if entity is None:
            state = None
            stale = False
            stale_fields: frozenset[str] = frozenset()
        else:
            state = self.manager.record_read(entity, now)
            stale_fields = frozenset(entity.stale_fields)
            if storage is None:
                stale = state is EntityState.STALE or bool(stale_fields)
            else:
                stale = state is EntityState.STALE or storage in stale_fields

        outcome = "miss" if value is MISSING else "stale" if stale else "hit"
        self.metrics.reads_total.labels(outcome=outcome).inc()
        logger.debug(f"Read {key}.{storage or '*'}: {outcome}")
        return ReadResult(
            value=value,
            state=state,
            stale=stale,
            stale_fields=stale_fields,
            dangling=frozenset(dangling),
        )

    @staticmethod
    def _can_read(value: Any, resolves: Callable[[str], bool]) -> bool:
        if value is MISSING or value is None:
            return False
        if isinstance(value, Reference):
            return resolves(value.key)
        return True

    def _peek(self, key: str, field_name: str | None) -> tuple[Any, EntityState | None, bool]:
        """Current view of (key, field) without lease side effects."""
        entity = self.store.get(key)
        if entity is None:
            return MISSING, None, False

        def resolves(ref_key: str) -> bool:
            return ref_key in self.store

        if field_name is None:
            value, _ = strip_dangling(entity.fields, resolves)
            stale = entity.state is EntityState.STALE or bool(entity.stale_fields)
        else:
            value, _ = strip_dangling(entity.fields.get(field_name, MISSING), resolves)
            stale = entity.state is EntityState.STALE or field_name in entity.stale_fields
        return value, entity.state, stale

    # Writes

    def write(
        self,
        key: str,
        fields: Mapping[str, Any],
        field_args: Mapping[str, Mapping[str, Any]] | None = None,
    ) -> WriteOutcome:
        """Merge fields into the entity at key.

        Args:
            key: Entity key
            fields: Field values by schema field name. {"__ref": key} objects
                are accepted as references.
            field_args: Arguments each field was requested with

        Raises:
            InvalidWriteError: If validation fails; nothing is applied
        """
        outcomes = self._write_entities({key: fields}, {key: field_args or {}})
        return outcomes[0]

    def write_result(
        self,
        root_key: str,
        data: Mapping[str, Any],
        field_args: Mapping[str, Mapping[str, Any]] | None = None,
    ) -> list[WriteOutcome]:
        """Normalize a response tree and write every entity in it atomically.

        Args:
            root_key: Entity the response belongs to (usually ROOT_QUERY)
            data: Response data
            field_args: Arguments of the root fields
        """
        entities = normalize(decode_value(data), root_key, self.identify)
        return self._write_entities(entities, {root_key: field_args or {}})

    def _write_entities(
        self,
        entries: Mapping[str, Mapping[str, Any]],
        field_args: Mapping[str, Mapping[str, Mapping[str, Any]]],
    ) -> list[WriteOutcome]:
        prepared: dict[str, dict[str, Any]] = {}
        typenames: dict[str, str | None] = {}

        for key, fields in entries.items():
            if not isinstance(key, str) or not key:
                raise InvalidWriteError(str(key), "entity key must be a non-empty string")
            if not isinstance(fields, Mapping):
                raise InvalidWriteError(key, "fields must be a mapping")

            typename = self._typename_of(key, fields)
            typenames[key] = typename
            args_by_field = field_args.get(key) or {}
            merged: dict[str, Any] = {}
            for name, incoming in fields.items():
                if not isinstance(name, str) or not name:
                    raise InvalidWriteError(key, f"invalid field name {name!r}")
                args = dict(args_by_field.get(name) or {})
                storage = self.policies.storage_name(typename, name, args)
                existing = copy_value(self.store.read(key, storage))
                merged[storage] = self.policies.apply_merge(
                    typename,
                    name,
                    existing,
                    decode_value(incoming),
                    FieldMergeOptions(
                        args=args,
                        field_name=name,
                        storage_field_name=storage,
                        typename=typename,
                    ),
                )
            prepared[key] = merged

        outcomes = self.store.write_many(prepared, typenames)
        self.policies.freeze()

        now = self.manager.clock()
        for outcome in outcomes:
            self.manager.record_write(outcome, now)
            self.metrics.writes_total.inc()
        self.metrics.entities.set(len(self.store))

        for outcome in outcomes:
            self.watches.notify(outcome.entity.key, None, ChangeReason.WRITTEN)
        return outcomes

    # Invalidation

    def _storage_name(
        self, key: str, field_name: str | None, args: Mapping[str, Any] | None
    ) -> str | None:
        if field_name is None:
            return None
        return self.policies.storage_name(self._typename_of(key), field_name, args)

    def evict(
        self, key: str, field_name: str | None = None, args: Mapping[str, Any] | None = None
    ) -> bool:
        """Evict an entity (or one field) and invalidate whatever references it."""
        evicted = self.manager.evict(key, self._storage_name(key, field_name, args))
        self.metrics.entities.set(len(self.store))
        return evicted

    def invalidate(
        self, key: str, field_name: str | None = None, args: Mapping[str, Any] | None = None
    ) -> list[FieldInvalidation]:
        """Force an entity (or one field) stale while keeping its data readable."""
        return self.manager.invalidate(key, self._storage_name(key, field_name, args))

    def state(self, key: str) -> EntityState | None:
        """Lifecycle state of key, or None if it is not cached."""
        return self.manager.state_of(key)

    def sweep(self, now: float | None = None) -> SweepResult:
        """Mark every entity whose lease has elapsed as STALE."""
        with LogContext(cache_id=self.cache_id, operation="sweep"):
            return self.manager.sweep(now)

    def evict_stale(self) -> list[str]:
        """Evict every STALE entity."""
        with LogContext(cache_id=self.cache_id, operation="evict_stale"):
            evicted = self.manager.evict_stale()
        self.metrics.entities.set(len(self.store))
        return evicted

    # Watch

    def watch(
        self, key: str, field_name: str | None = None, args: Mapping[str, Any] | None = None
    ) -> Watch:
        """Stream value-changed notifications for (key, field) until unsubscribed."""
        return self.watches.watch(key, self._storage_name(key, field_name, args))

    # Snapshots

    def extract(self) -> dict[str, Any]:
        """JSON-ready snapshot of every entity and its lease metadata."""
        return self.store.extract()

    def restore(self, snapshot: Any) -> bool:
        """Replace the cache contents with a snapshot.

        A malformed snapshot is logged and leaves the cache empty.

        Returns:
            Whether the snapshot was loaded
        """
        with LogContext(cache_id=self.cache_id, operation="restore"):
            try:
                count = self.store.restore(snapshot)
            except MalformedSnapshotError as e:
                logger.warning(f"Discarding malformed snapshot, starting empty: {e}")
                self.store.purge()
                self.metrics.entities.set(0)
                self.watches.notify_all(ChangeReason.PURGED)
                return False

            logger.info(f"Restored {count} entities")
        self.metrics.entities.set(count)
        self.watches.notify_all(ChangeReason.RESTORED)
        return True

    def purge(self) -> int:
        """Remove every entity.

        Returns:
            Number of entities removed
        """
        with LogContext(cache_id=self.cache_id, operation="purge"):
            count = self.store.purge()
            logger.info(f"Purged {count} entities")
        self.metrics.entities.set(0)
        self.watches.notify_all(ChangeReason.PURGED)
        return count

    def reset(self) -> int:
        """Purge the cache and forget retained roots."""
        self._retained.clear()
        return self.purge()

    # Garbage collection

    def retain(self, key: str) -> int:
        """Protect key (and what it references) from gc(); returns the retain count."""
        self._retained[key] = self._retained.get(key, 0) + 1
        return self._retained[key]

    def release(self, key: str) -> int:
        """Undo one retain(); returns the remaining count."""
        count = self._retained.get(key, 0) - 1
        if count > 0:
            self._retained[key] = count
            return count
        self._retained.pop(key, None)
        return 0

    def gc(self) -> list[str]:
        """Evict entities unreachable from the root keys and retained keys.

        Returns:
            Keys evicted
        """
        reachable = self.store.graph.reachable_from([*ROOT_KEYS, *self._retained])
        unreachable = [key for key in self.store.keys() if key not in reachable]
        for key in unreachable:
            self.manager.evict(key, reason="gc")
        if unreachable:
            logger.info(f"Garbage collected {len(unreachable)} unreachable entities")
        self.metrics.entities.set(len(self.store))
        return unreachable

    # Introspection

    def stats(self) -> dict[str, int]:
        """Entity, edge, policy and watch counts."""
        states = [entity.state for entity in self.store.entities()]
        return {
            "entities": len(states),
            "fresh": sum(1 for state in states if state is EntityState.FRESH),
            "stale": sum(1 for state in states if state is EntityState.STALE),
            "edges": len(self.store.graph),
            "field_policies": len(self.policies),
            "watches": self.watches.watch_count,
            "retained": len(self._retained),
        }

    def close(self) -> None:
        """End every watch stream."""
        self.watches.close()

    def __len__(self) -> int:
        return len(self.store)
