"""Tests for watch notifications."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from policycache.core.types import MISSING, EntityState
from policycache.events.schemas import CacheChangeEvent, ChangeReason
from policycache.events.watch import Watch, WatchFilter, WatchManager


class FakeView:
    """Dict-backed resolver standing in for the cache."""

    def __init__(self) -> None:
        self.values: dict[tuple[str, str | None], Any] = {}
        self.stale: set[tuple[str, str | None]] = set()

    def __call__(self, key: str, field: str | None) -> tuple[Any, EntityState | None, bool]:
        value = self.values.get((key, field), MISSING)
        state = None if value is MISSING else EntityState.FRESH
        return value, state, (key, field) in self.stale


async def next_event(watch: Watch) -> CacheChangeEvent:
    return await asyncio.wait_for(anext(watch), timeout=1.0)


class TestWatchFilter:
    """Test which mutations reach a watch."""

    def test_field_watch(self) -> None:
        f = WatchFilter(key="Film:1", field="title")

        assert f.matches("Film:1", "title")
        assert f.matches("Film:1", None)
        assert not f.matches("Film:1", "director")
        assert not f.matches("Film:2", "title")

    def test_entity_watch(self) -> None:
        f = WatchFilter(key="Film:1")

        assert f.matches("Film:1", "title")
        assert f.matches("Film:1", None)


class TestWatchManager:
    """Test delivery of value-changed notifications."""

    @pytest.fixture
    def view(self) -> FakeView:
        return FakeView()

    @pytest.fixture
    def manager(self, view: FakeView) -> WatchManager:
        return WatchManager(view, max_queue_size=10)

    async def test_change_is_delivered(self, view: FakeView, manager: WatchManager) -> None:
        watch = manager.watch("Film:1", "title")
        view.values[("Film:1", "title")] = "A New Hope"

        manager.notify("Film:1", "title", ChangeReason.WRITTEN)
        event = await next_event(watch)

        assert event.key == "Film:1"
        assert event.field == "title"
        assert event.value == "A New Hope"
        assert event.reason is ChangeReason.WRITTEN
        assert event.state is EntityState.FRESH

    async def test_unchanged_value_not_delivered(
        self, view: FakeView, manager: WatchManager
    ) -> None:
        """Notifications that don't change the watched value are skipped."""
        view.values[("Film:1", "title")] = "A New Hope"
        watch = manager.watch("Film:1", "title")

        manager.notify("Film:1", "title", ChangeReason.WRITTEN)
        manager.notify("Film:1", "director", ChangeReason.WRITTEN)

        assert watch.pending_count == 0

    async def test_staleness_change_delivered(
        self, view: FakeView, manager: WatchManager
    ) -> None:
        view.values[("Film:1", "title")] = "A New Hope"
        watch = manager.watch("Film:1", "title")

        view.stale.add(("Film:1", "title"))
        manager.notify("Film:1", "title", ChangeReason.INVALIDATED)
        event = await next_event(watch)

        assert event.stale
        assert event.value == "A New Hope"

    async def test_events_in_mutation_order(self, view: FakeView, manager: WatchManager) -> None:
        watch = manager.watch("Film:1", "title")

        for title in ("A", "B", "C"):
            view.values[("Film:1", "title")] = title
            manager.notify("Film:1", "title", ChangeReason.WRITTEN)

        assert [(await next_event(watch)).value for _ in range(3)] == ["A", "B", "C"]

    async def test_unsubscribe_ends_stream(self, view: FakeView, manager: WatchManager) -> None:
        """Pending events are delivered before the stream ends."""
        watch = manager.watch("Film:1", "title")
        view.values[("Film:1", "title")] = "A"
        manager.notify("Film:1", "title", ChangeReason.WRITTEN)

        watch.unsubscribe()
        received = [event.value async for event in watch]

        assert received == ["A"]
        assert watch.closed
        assert manager.watch_count == 0

    async def test_unsubscribed_watch_gets_nothing(
        self, view: FakeView, manager: WatchManager
    ) -> None:
        watch = manager.watch("Film:1", "title")
        watch.unsubscribe()
        view.values[("Film:1", "title")] = "A"

        manager.notify("Film:1", "title", ChangeReason.WRITTEN)

        assert [event async for event in watch] == []

    async def test_full_queue_drops_oldest(self, view: FakeView) -> None:
        manager = WatchManager(view, max_queue_size=2)
        watch = manager.watch("Film:1", "title")

        for title in ("A", "B", "C"):
            view.values[("Film:1", "title")] = title
            manager.notify("Film:1", "title", ChangeReason.WRITTEN)

        assert watch.pending_count == 2
        assert (await next_event(watch)).value == "B"
        assert (await next_event(watch)).value == "C"

    async def test_notify_all(self, view: FakeView, manager: WatchManager) -> None:
        """Store-wide changes reach every watch."""
        view.values[("Film:1", "title")] = "A"
        view.values[("Film:2", "title")] = "B"
        first = manager.watch("Film:1", "title")
        second = manager.watch("Film:2", "title")

        view.values.clear()
        manager.notify_all(ChangeReason.PURGED)

        assert (await next_event(first)).value is MISSING
        assert (await next_event(second)).reason is ChangeReason.PURGED

    async def test_close_ends_every_watch(self, manager: WatchManager) -> None:
        watches = [manager.watch("Film:1"), manager.watch("Film:2")]

        manager.close()

        assert manager.watch_count == 0
        for watch in watches:
            assert [event async for event in watch] == []

    async def test_context_manager_unsubscribes(self, manager: WatchManager) -> None:
        async with manager.watch("Film:1") as watch:
            assert manager.watch_count == 1

        assert watch.closed
        assert manager.watch_count == 0
