"""Global pytest configuration and fixtures.

Provides a controllable millisecond clock and cache factories so lease
expiry can be tested without sleeping.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from policycache.cache import InvalidationPolicyCache
from policycache.config import Settings


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> float:
        self.now += ms
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    """Clock starting at t=0."""
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    """Settings independent of the environment."""
    return Settings(
        _env_file=None,
        instance_id="test",
        default_ttl_ms=None,
        watch_queue_size=100,
        snapshot_key="policycache",
        snapshot_max_bytes=None,
        enable_metrics=True,
    )


@pytest.fixture
def make_cache(
    clock: FakeClock, settings: Settings
) -> Callable[..., InvalidationPolicyCache]:
    """Factory for caches sharing the test clock and settings."""

    def factory(**kwargs: Any) -> InvalidationPolicyCache:
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("settings", settings)
        return InvalidationPolicyCache(**kwargs)

    return factory
