"""Observability for policycache: structured logging and Prometheus metrics."""

from policycache.observability.logging import LogContext, configure_logging
from policycache.observability.metrics import CacheMetrics, NoOpMetric

__all__ = ["CacheMetrics", "LogContext", "NoOpMetric", "configure_logging"]
