"""Field policy registry.

Field values are arbitrary JSON-like shapes, so behavior is selected by a
dispatch table keyed by (typename, field name). Each entry is a FieldPolicy
tagged with its kind:

- CUSTOM: caller-supplied read and/or merge functions
- PAGINATION: relay-style connection merge (see policies.pagination)
- KEYED: only controls which arguments distinguish stored values

Invariants:
    - At most one policy per (typename, field); duplicates fail fast
    - The registry is frozen once the cache accepts its first write

Example:
    >>> registry = FieldPolicyRegistry()
    >>> registry.register("Query", "allFilms", relay_style_pagination())
    >>> registry.register("Query", "film", FieldPolicy.custom(
    ...     read=lambda existing, options: existing or options.to_reference(options.args["id"]),
    ... ))
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from policycache.core.errors import ConfigurationError, PolicyConflictError, RegistryFrozenError
from policycache.core.keys import storage_field_name
from policycache.core.types import Reference
from policycache.policies import pagination

logger = logging.getLogger(__name__)


class FieldPolicyKind(str, Enum):
    """Variant tag of a field policy."""

    CUSTOM = "custom"
    PAGINATION = "pagination"
    KEYED = "keyed"


@dataclass(frozen=True)
class FieldReadOptions:
    """Context passed to a field read function.

    Attributes:
        args: Arguments the field was requested with
        field_name: Schema field name
        storage_field_name: Name the value is stored under
        typename: Typename of the entity owning the field
        to_reference: Build a Reference from an object, an id or a key
        can_read: Whether a value (usually a Reference) still resolves
    """

    args: Mapping[str, Any]
    field_name: str
    storage_field_name: str
    typename: str | None
    to_reference: Callable[[Any], Reference | None]
    can_read: Callable[[Any], bool]


@dataclass(frozen=True)
class FieldMergeOptions:
    """Context passed to a field merge function."""

    args: Mapping[str, Any]
    field_name: str
    storage_field_name: str
    typename: str | None


ReadFunction = Callable[[Any, FieldReadOptions], Any]
MergeFunction = Callable[[Any, Any, FieldMergeOptions], Any]


@dataclass(frozen=True)
class FieldPolicy:
    """Policy for one (typename, field).

    Attributes:
        kind: Variant tag selecting the behavior
        read: Read function (CUSTOM only)
        merge: Merge function (CUSTOM only)
        key_args: Arguments that distinguish stored values; None keys on all
    """

    kind: FieldPolicyKind
    read: ReadFunction | None = None
    merge: MergeFunction | None = None
    key_args: tuple[str, ...] | None = None

    @classmethod
    def custom(
        cls,
        read: ReadFunction | None = None,
        merge: MergeFunction | None = None,
        key_args: Iterable[str] | None = None,
    ) -> FieldPolicy:
        if read is None and merge is None:
            raise ConfigurationError("A custom field policy needs a read or a merge function")
        return cls(
            kind=FieldPolicyKind.CUSTOM,
            read=read,
            merge=merge,
            key_args=tuple(key_args) if key_args is not None else None,
        )

    @classmethod
    def keyed(cls, key_args: Iterable[str]) -> FieldPolicy:
        return cls(kind=FieldPolicyKind.KEYED, key_args=tuple(key_args))


@dataclass
class FieldPolicyRegistry:
    """Dispatch table of field policies keyed by (typename, field)."""

    _policies: dict[tuple[str, str], FieldPolicy] = field(default_factory=dict)
    _frozen: bool = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        """Reject further registrations."""
        if not self._frozen:
            self._frozen = True
            logger.debug(f"Field policy registry frozen with {len(self._policies)} policies")

    def register(self, typename: str, field_name: str, policy: FieldPolicy) -> None:
        """Register a policy for (typename, field_name).

        Raises:
            RegistryFrozenError: If the cache has already been written to
            PolicyConflictError: If a policy is already registered for the pair
        """
        if self._frozen:
            raise RegistryFrozenError(
                f"Cannot register policy for {typename}.{field_name}: cache already written"
            )
        if not isinstance(policy, FieldPolicy):
            raise ConfigurationError(
                f"Policy for {typename}.{field_name} must be a FieldPolicy, "
                f"got {type(policy).__name__}"
            )

        key = (typename, field_name)
        if key in self._policies:
            raise PolicyConflictError(typename, field_name)

        self._policies[key] = policy
        logger.debug(f"Registered {policy.kind.value} policy for {typename}.{field_name}")

    def register_type_policies(self, type_policies: Mapping[str, Mapping[str, Any]]) -> None:
        """Register a {typename: {field: policy}} mapping.

        A bare callable is taken as a custom read function. The
        {typename: {"fields": {...}}} shape is accepted as well.
        """
        for typename, entry in type_policies.items():
            fields = entry.get("fields") if isinstance(entry.get("fields"), Mapping) else entry
            for field_name, policy in fields.items():
                if callable(policy) and not isinstance(policy, FieldPolicy):
                    policy = FieldPolicy.custom(read=policy)
                self.register(typename, field_name, policy)

    def get(self, typename: str | None, field_name: str) -> FieldPolicy | None:
        if typename is None:
            return None
        return self._policies.get((typename, field_name))

    def storage_name(
        self, typename: str | None, field_name: str, args: Mapping[str, Any] | None
    ) -> str:
        """Name a field value is stored under for the given arguments."""
        policy = self.get(typename, field_name)
        key_args = policy.key_args if policy is not None else None
        return storage_field_name(field_name, args, key_args)

    def apply_read(
        self, typename: str | None, field_name: str, existing: Any, options: FieldReadOptions
    ) -> Any:
        """Run the read behavior registered for the field."""
        policy = self.get(typename, field_name)
        if policy is None:
            return existing

        if policy.kind is FieldPolicyKind.PAGINATION:
            return pagination.read_connection(existing, options)
        if policy.kind is FieldPolicyKind.CUSTOM and policy.read is not None:
            return policy.read(existing, options)
        return existing

    def apply_merge(
        self,
        typename: str | None,
        field_name: str,
        existing: Any,
        incoming: Any,
        options: FieldMergeOptions,
    ) -> Any:
        """Run the merge behavior registered for the field.

        Without a merge behavior the incoming value replaces the existing one.
        """
        policy = self.get(typename, field_name)
        if policy is None:
            return incoming

        if policy.kind is FieldPolicyKind.PAGINATION:
            return pagination.merge_connection(existing, incoming, options)
        if policy.kind is FieldPolicyKind.CUSTOM and policy.merge is not None:
            return policy.merge(existing, incoming, options)
        return incoming

    def __len__(self) -> int:
        return len(self._policies)


def relay_style_pagination(key_args: Iterable[str] = ()) -> FieldPolicy:
    """Field policy merging relay-style connections page by page.

    Args:
        key_args: Arguments that distinguish separate connections (cursor
            arguments normally stay out of this list)
    """
    return FieldPolicy(kind=FieldPolicyKind.PAGINATION, key_args=tuple(key_args))
