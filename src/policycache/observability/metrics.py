"""Prometheus metrics for the cache.

Provides counters and gauges per cache instance:
- Reads by outcome (hit, miss, stale)
- Writes, evictions by reason, invalidations by kind
- Expiration sweeps and the number of cached entities

Each cache registers its metrics in its own CollectorRegistry so several
caches (and test instances) can live in one process.

Usage:
    metrics = CacheMetrics.create(enabled=True)
    metrics.reads_total.labels(outcome="hit").inc()
    print(metrics.generate_latest().decode())
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest

logger = logging.getLogger(__name__)


class NoOpMetric:
    """No-op metric for when metrics are disabled."""

    def labels(self, **kwargs: Any) -> NoOpMetric:
        """Return self for chaining."""
        return self

    def inc(self, amount: float = 1) -> None:
        """No-op."""
        pass

    def dec(self, amount: float = 1) -> None:
        """No-op."""
        pass

    def set(self, value: float) -> None:
        """No-op."""
        pass


@dataclass
class CacheMetrics:
    """Metric handles for one cache instance."""

    reads_total: Any
    writes_total: Any
    evictions_total: Any
    invalidations_total: Any
    sweeps_total: Any
    entities: Any
    registry: CollectorRegistry | None = None

    @classmethod
    def create(cls, enabled: bool = True, namespace: str = "policycache") -> CacheMetrics:
        """Create metrics in a fresh registry, or no-op metrics when disabled."""
        if not enabled:
            logger.info("Metrics are disabled")
            noop = NoOpMetric()
            return cls(
                reads_total=noop,
                writes_total=noop,
                evictions_total=noop,
                invalidations_total=noop,
                sweeps_total=noop,
                entities=noop,
            )

        registry = CollectorRegistry()
        return cls(
            reads_total=Counter(
                f"{namespace}_reads_total",
                "Cache reads by outcome",
                ["outcome"],
                registry=registry,
            ),
            writes_total=Counter(
                f"{namespace}_writes_total",
                "Entities written",
                registry=registry,
            ),
            evictions_total=Counter(
                f"{namespace}_evictions_total",
                "Entities evicted by reason",
                ["reason"],
                registry=registry,
            ),
            invalidations_total=Counter(
                f"{namespace}_invalidations_total",
                "Entities or fields forced stale",
                ["kind"],
                registry=registry,
            ),
            sweeps_total=Counter(
                f"{namespace}_sweeps_total",
                "Expiration sweeps run",
                registry=registry,
            ),
            entities=Gauge(
                f"{namespace}_entities",
                "Entities currently cached",
                registry=registry,
            ),
            registry=registry,
        )

    def generate_latest(self) -> bytes:
        """Metrics in Prometheus exposition format."""
        if self.registry is None:
            return b"# Metrics disabled\n"
        return generate_latest(self.registry)
