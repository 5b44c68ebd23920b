"""Periodic expiration sweeper.

Runs cache.sweep() on an interval so entities go STALE even when nobody
reads them. Eviction of stale entities is a separate, opt-in step
(evict=True), keeping expiry and removal distinct.

Example:
    sweeper = ExpirationSweeper(cache, interval_seconds=30.0)
    await sweeper.start()
    ...
    await sweeper.stop()
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from policycache.policies.manager import SweepResult

if TYPE_CHECKING:
    from policycache.cache import InvalidationPolicyCache

logger = logging.getLogger(__name__)


class ExpirationSweeper:
    """Background task sweeping a cache for elapsed leases."""

    def __init__(
        self,
        cache: InvalidationPolicyCache,
        interval_seconds: float | None = None,
        evict: bool | None = None,
    ):
        self.cache = cache
        self.interval_seconds = (
            interval_seconds
            if interval_seconds is not None
            else cache.settings.sweep_interval_seconds
        )
        self.evict = evict if evict is not None else cache.settings.sweep_evicts
        self._running = False
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._running

    def run_once(self) -> SweepResult:
        """Sweep once (and evict stale entities if configured)."""
        result = self.cache.sweep()
        if self.evict:
            self.cache.evict_stale()
        return result

    async def start(self) -> None:
        """Start sweeping in the background."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._sweep_loop())
        logger.info(f"Expiration sweeper started (every {self.interval_seconds}s)")

    async def stop(self) -> None:
        """Stop sweeping."""
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Expiration sweeper stopped")

    async def _sweep_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.interval_seconds)
                self.run_once()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Error during expiration sweep")
