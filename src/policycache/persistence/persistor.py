"""Cache persistor: snapshots a cache into a storage backend and back.

Snapshot flow:
    cache.extract() -> orjson bytes -> storage.save(key)
    storage.load(key) -> orjson -> cache.restore()

Restoring never raises on bad data. A missing snapshot is a no-op; an
undecodable or malformed one is logged and the cache starts empty.

Example:
    persistor = CachePersistor(cache, LocalFileStorage(".policycache"), debug=True)
    await persistor.restore()
    await persistor.start(interval_seconds=5.0)
    ...
    await persistor.stop()
    await persistor.purge()
    cache.reset()
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import orjson

from policycache.observability.logging import LogContext
from policycache.persistence.base import SnapshotStorage

if TYPE_CHECKING:
    from policycache.cache import InvalidationPolicyCache

logger = logging.getLogger(__name__)


class CachePersistor:
    """Persists one cache under one storage key.

    Args:
        cache: Cache to persist
        storage: Storage backend
        key: Snapshot key; defaults to settings.snapshot_key
        debug: Log persist/restore activity at INFO instead of DEBUG
        max_size: Skip persisting snapshots larger than this many bytes
    """

    def __init__(
        self,
        cache: InvalidationPolicyCache,
        storage: SnapshotStorage,
        key: str | None = None,
        debug: bool = False,
        max_size: int | None = None,
    ):
        self.cache = cache
        self.storage = storage
        self.key = key or cache.settings.snapshot_key
        self.debug = debug
        self.max_size = max_size if max_size is not None else cache.settings.snapshot_max_bytes
        self._last_persisted: bytes | None = None
        self._running = False
        self._task: asyncio.Task[None] | None = None

    def _log(self, message: str) -> None:
        logger.log(logging.INFO if self.debug else logging.DEBUG, message)

    async def persist(self) -> bool:
        """Save the current cache contents.

        Returns:
            False if the snapshot exceeded max_size and was not saved
        """
        data = orjson.dumps(self.cache.extract())
        if self.max_size is not None and len(data) > self.max_size:
            logger.warning(
                f"Snapshot of {len(data)} bytes exceeds max size {self.max_size}, not persisting"
            )
            return False

        await self.storage.save(self.key, data)
        self._last_persisted = data
        self._log(f"Persisted cache {self.key} ({len(data)} bytes)")
        return True

    async def restore(self) -> bool:
        """Load the persisted snapshot into the cache.

        Returns:
            True if a snapshot was loaded
        """
        with LogContext(cache_id=self.cache.cache_id, operation="restore"):
            data = await self.storage.load(self.key)
            if data is None:
                self._log(f"No persisted snapshot under {self.key}")
                return False

            try:
                snapshot = orjson.loads(data)
            except orjson.JSONDecodeError as e:
                logger.warning(f"Persisted snapshot {self.key} is not valid JSON: {e}")
                self.cache.purge()
                return False

            restored = self.cache.restore(snapshot)
            if restored:
                self._last_persisted = data
                self._log(f"Restored cache {self.key} ({len(data)} bytes)")
            return restored

    async def purge(self) -> bool:
        """Remove the persisted snapshot (the in-memory cache is untouched)."""
        removed = await self.storage.remove(self.key)
        self._last_persisted = None
        self._log(f"Purged persisted snapshot {self.key}")
        return removed

    async def get_size(self) -> int | None:
        """Size in bytes of the persisted snapshot, or None if there is none."""
        data = await self.storage.load(self.key)
        return len(data) if data is not None else None

    async def start(self, interval_seconds: float = 1.0) -> None:
        """Persist periodically whenever the cache contents changed."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._persist_loop(interval_seconds))
        self._log(f"Auto-persist started for {self.key} (every {interval_seconds}s)")

    async def stop(self) -> None:
        """Stop periodic persisting."""
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _persist_loop(self, interval_seconds: float) -> None:
        while self._running:
            try:
                await asyncio.sleep(interval_seconds)
                if orjson.dumps(self.cache.extract()) != self._last_persisted:
                    await self.persist()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception(f"Error persisting cache {self.key}")
