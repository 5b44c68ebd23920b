"""Normalized entity storage.

Provides the arena of entities and the dependency graph of references:
- NormalizedStore: field-level reads/writes, eviction, extract/restore/purge
- DependencyGraph: (parent, field) -> child edges for cascade queries
- Snapshot models validating restore input
"""

from policycache.store.graph import DependencyGraph
from policycache.store.normalized import NormalizedStore, WriteOutcome, collect_references
from policycache.store.snapshot import SNAPSHOT_VERSION, Snapshot, parse_snapshot

__all__ = [
    "DependencyGraph",
    "NormalizedStore",
    "WriteOutcome",
    "collect_references",
    "Snapshot",
    "SNAPSHOT_VERSION",
    "parse_snapshot",
]
