"""policycache: normalized in-memory entity cache with policy-driven invalidation.

Entities are stored flat by identity, linked by references, leased for a
configurable time to live and invalidated along the references that point
at them. Paginated connections merge page by page.
"""

from policycache.cache import InvalidationPolicyCache
from policycache.core import (
    MISSING,
    ROOT_MUTATION,
    ROOT_QUERY,
    CacheError,
    ConfigurationError,
    EntityState,
    InvalidWriteError,
    MalformedSnapshotError,
    PolicyConflictError,
    ReadResult,
    Reference,
    RegistryFrozenError,
    RenewalPolicy,
)
from policycache.events import CacheChangeEvent, ChangeReason
from policycache.persistence import CachePersistor, InMemoryStorage, LocalFileStorage
from policycache.policies import (
    ExpirationSweeper,
    FieldPolicy,
    PolicyConfig,
    TypePolicy,
    relay_style_pagination,
)

__all__ = [
    "InvalidationPolicyCache",
    "MISSING",
    "ROOT_QUERY",
    "ROOT_MUTATION",
    "Reference",
    "ReadResult",
    "EntityState",
    "RenewalPolicy",
    # Policies
    "PolicyConfig",
    "TypePolicy",
    "FieldPolicy",
    "relay_style_pagination",
    "ExpirationSweeper",
    # Events
    "CacheChangeEvent",
    "ChangeReason",
    # Persistence
    "CachePersistor",
    "InMemoryStorage",
    "LocalFileStorage",
    # Errors
    "CacheError",
    "ConfigurationError",
    "PolicyConflictError",
    "RegistryFrozenError",
    "InvalidWriteError",
    "MalformedSnapshotError",
]
