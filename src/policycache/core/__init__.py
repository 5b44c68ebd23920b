"""Core data model, identity helpers and errors."""

from policycache.core.errors import (
    CacheError,
    ConfigurationError,
    InvalidWriteError,
    MalformedSnapshotError,
    PolicyConflictError,
    RegistryFrozenError,
)
from policycache.core.keys import (
    ROOT_MUTATION,
    ROOT_QUERY,
    default_data_id_from_object,
    storage_field_name,
    typename_from_key,
)
from policycache.core.normalize import normalize
from policycache.core.types import (
    MISSING,
    DependencyEdge,
    Entity,
    EntityState,
    ReadResult,
    Reference,
    RenewalPolicy,
)

__all__ = [
    # Data model
    "MISSING",
    "Reference",
    "Entity",
    "EntityState",
    "RenewalPolicy",
    "DependencyEdge",
    "ReadResult",
    # Keys
    "ROOT_QUERY",
    "ROOT_MUTATION",
    "default_data_id_from_object",
    "storage_field_name",
    "typename_from_key",
    "normalize",
    # Errors
    "CacheError",
    "ConfigurationError",
    "PolicyConflictError",
    "RegistryFrozenError",
    "InvalidWriteError",
    "MalformedSnapshotError",
]
