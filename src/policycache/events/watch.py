"""Watch registrations for value-changed notifications.

Architecture:
    cache mutation -> WatchManager.notify -> Watch queues -> async consumers

The manager:
1. Keeps a registry of active watches keyed by id
2. On every mutation, resolves the value each matching watch now sees
3. Enqueues a CacheChangeEvent only when that value (or its staleness) changed
4. Handles watch lifecycle (register, unsubscribe, close on shutdown)

Enqueueing never blocks and never awaits, so notifications are produced in
the same order as the mutations that caused them.

Example:
    watch = cache.watch("Film:1", "title")
    async for event in watch:
        print(event.value)
        if done:
            watch.unsubscribe()
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

from policycache.core.types import EntityState
from policycache.events.schemas import CacheChangeEvent, ChangeReason

logger = logging.getLogger(__name__)

# (key, field) -> (value, state, stale)
Resolver = Callable[[str, "str | None"], "tuple[Any, EntityState | None, bool]"]


@dataclass
class WatchFilter:
    """Which mutations a watch cares about.

    Attributes:
        key: Entity key
        field: Field name, or None for any field of the entity
    """

    key: str
    field: str | None = None

    def matches(self, key: str, field: str | None) -> bool:
        if key != self.key:
            return False
        # Entity-level changes affect every field; field changes affect entity watches
        return self.field is None or field is None or field == self.field


class Watch:
    """An infinite async stream of change events, ended by unsubscribe()."""

    def __init__(
        self,
        manager: WatchManager,
        filter: WatchFilter,
        queue: asyncio.Queue[CacheChangeEvent | None],
        initial: tuple[Any, bool],
    ) -> None:
        self.id = str(uuid4())
        self.filter = filter
        self._manager = manager
        self._queue = queue
        self._last = initial
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending_count(self) -> int:
        return self._queue.qsize()

    def _offer(self, event: CacheChangeEvent) -> None:
        observed = (event.value, event.stale)
        if observed == self._last:
            return
        self._last = observed
        _put_dropping_oldest(self._queue, event, self.id)

    def unsubscribe(self) -> None:
        """Stop receiving events; pending events are still delivered first."""
        if self._closed:
            return
        self._closed = True
        self._manager._unregister(self.id)
        _put_dropping_oldest(self._queue, None, self.id)

    def __aiter__(self) -> Watch:
        return self

    async def __anext__(self) -> CacheChangeEvent:
        event = await self._queue.get()
        if event is None:
            raise StopAsyncIteration
        return event

    async def __aenter__(self) -> Watch:
        return self

    async def __aexit__(self, *args: Any) -> None:
        self.unsubscribe()


def _put_dropping_oldest(
    queue: asyncio.Queue[CacheChangeEvent | None], item: CacheChangeEvent | None, watch_id: str
) -> None:
    try:
        queue.put_nowait(item)
    except asyncio.QueueFull:
        try:
            queue.get_nowait()
            queue.put_nowait(item)
        except asyncio.QueueEmpty:
            pass
        logger.warning("Watch %s queue full, dropped oldest event", watch_id)


class WatchManager:
    """Registry of active watches.

    Attributes:
        max_queue_size: Maximum number of events buffered per watch
    """

    def __init__(self, resolver: Resolver, max_queue_size: int = 100) -> None:
        self._resolver = resolver
        self.max_queue_size = max_queue_size
        self._watches: dict[str, Watch] = {}

    def watch(self, key: str, field: str | None = None) -> Watch:
        """Register a watch on key (and optionally a single field)."""
        value, _state, stale = self._resolver(key, field)
        queue: asyncio.Queue[CacheChangeEvent | None] = asyncio.Queue(
            maxsize=self.max_queue_size
        )
        watch = Watch(self, WatchFilter(key=key, field=field), queue, initial=(value, stale))
        self._watches[watch.id] = watch
        logger.debug("Registered watch %s on %s.%s", watch.id, key, field or "*")
        return watch

    def _unregister(self, watch_id: str) -> None:
        if self._watches.pop(watch_id, None) is not None:
            logger.debug("Unregistered watch %s", watch_id)

    def notify(self, key: str, field: str | None, reason: ChangeReason) -> None:
        """Deliver a change of (key, field) to every matching watch."""
        for watch in list(self._watches.values()):
            if not watch.filter.matches(key, field):
                continue
            value, state, stale = self._resolver(key, watch.filter.field)
            watch._offer(
                CacheChangeEvent(
                    key=key,
                    field=watch.filter.field,
                    value=value,
                    reason=reason,
                    state=state,
                    stale=stale,
                )
            )

    def notify_all(self, reason: ChangeReason) -> None:
        """Deliver a store-wide change (restore, purge) to every watch."""
        for watch in list(self._watches.values()):
            value, state, stale = self._resolver(watch.filter.key, watch.filter.field)
            watch._offer(
                CacheChangeEvent(
                    key=watch.filter.key,
                    field=watch.filter.field,
                    value=value,
                    reason=reason,
                    state=state,
                    stale=stale,
                )
            )

    def close(self) -> None:
        """End every watch stream."""
        for watch in list(self._watches.values()):
            watch.unsubscribe()

    @property
    def watch_count(self) -> int:
        return len(self._watches)

