"""Persistence adapters for cache snapshots."""

from policycache.persistence.base import SnapshotStorage, validate_key
from policycache.persistence.local import LocalFileStorage
from policycache.persistence.memory import InMemoryStorage
from policycache.persistence.persistor import CachePersistor

__all__ = [
    "CachePersistor",
    "InMemoryStorage",
    "LocalFileStorage",
    "SnapshotStorage",
    "validate_key",
]
