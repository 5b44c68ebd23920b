"""Helpers shared by the CLI commands."""

from __future__ import annotations

from pathlib import Path

from policycache.cache import InvalidationPolicyCache
from policycache.config import Settings
from policycache.observability.logging import configure_logging
from policycache.persistence import CachePersistor, LocalFileStorage


def open_persisted(
    directory: Path | None, key: str | None, verbose: bool
) -> tuple[InvalidationPolicyCache, CachePersistor]:
    """Build a cache and a persistor over the snapshot stored in directory.

    Without a directory the configured snapshot_dir is used.
    """
    settings = Settings(enable_metrics=False)
    configure_logging(
        json_format=settings.log_json,
        level="DEBUG" if verbose else "WARNING",
    )
    cache = InvalidationPolicyCache(settings=settings)
    persistor = CachePersistor(
        cache,
        LocalFileStorage(directory or settings.snapshot_dir),
        key=key or settings.snapshot_key,
        debug=verbose,
    )
    return cache, persistor
