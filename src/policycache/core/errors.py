"""Error taxonomy for the cache.

Configuration errors are fatal and raised at setup. Runtime data errors
(malformed snapshots, missing fields) are recovered locally by the cache
and degrade to "no cached data". A read of an unknown key is not an error
at all: it returns MISSING.
"""

from __future__ import annotations


class CacheError(Exception):
    """Base class for all cache errors."""


class ConfigurationError(CacheError):
    """Invalid cache configuration detected at setup time."""


class PolicyConflictError(ConfigurationError):
    """Two field policies were registered for the same (type, field)."""

    def __init__(self, typename: str, field_name: str):
        self.typename = typename
        self.field_name = field_name
        super().__init__(f"Field policy already registered for {typename}.{field_name}")


class RegistryFrozenError(ConfigurationError):
    """A field policy was registered after the cache accepted its first write."""


class InvalidWriteError(CacheError):
    """A write failed validation; no field of the write was applied."""

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Invalid write to {key!r}: {reason}")


class MalformedSnapshotError(CacheError):
    """A snapshot failed structural validation during restore."""
