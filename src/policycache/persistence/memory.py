"""In-memory snapshot storage, for tests and short-lived processes."""

from __future__ import annotations

from policycache.persistence.base import SnapshotStorage, validate_key


class InMemoryStorage(SnapshotStorage):
    """Keeps snapshots in a dict."""

    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}

    async def save(self, key: str, data: bytes) -> None:
        self._data[validate_key(key)] = bytes(data)

    async def load(self, key: str) -> bytes | None:
        return self._data.get(validate_key(key))

    async def remove(self, key: str) -> bool:
        return self._data.pop(validate_key(key), None) is not None

    def __len__(self) -> int:
        return len(self._data)
