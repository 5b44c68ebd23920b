"""Snapshot storage interface.

A storage backend keeps serialized cache snapshots under string keys. It
knows nothing about the snapshot format; CachePersistor turns the cache into
bytes and back.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def validate_key(key: str) -> str:
    """Check that a snapshot key is usable as a file name.

    Raises:
        ValueError: If the key is empty or contains path separators
    """
    if not _KEY_PATTERN.match(key):
        raise ValueError(f"Invalid snapshot key: {key!r}")
    return key


class SnapshotStorage(ABC):
    """Abstract base class for snapshot storage backends."""

    @abstractmethod
    async def save(self, key: str, data: bytes) -> None:
        """Durably store data under key, replacing any previous snapshot."""
        ...

    @abstractmethod
    async def load(self, key: str) -> bytes | None:
        """Load the snapshot stored under key.

        Returns:
            The stored bytes, or None if nothing is stored
        """
        ...

    @abstractmethod
    async def remove(self, key: str) -> bool:
        """Remove the snapshot stored under key.

        Returns:
            True if removed, False if nothing was stored
        """
        ...
