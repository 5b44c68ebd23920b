"""Local filesystem snapshot storage.

Stores one file per snapshot key:
    {base_path}/{key}.json

Saves go through a temporary file and a rename, so a crash mid-save leaves
the previous snapshot intact.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import cast

import aiofiles  # type: ignore[import-untyped]
import aiofiles.os  # type: ignore[import-untyped]

from policycache.persistence.base import SnapshotStorage, validate_key

logger = logging.getLogger(__name__)


class LocalFileStorage(SnapshotStorage):
    """Local filesystem snapshot storage backend."""

    SUFFIX = ".json"

    def __init__(self, base_path: str | Path = ".policycache"):
        """Initialize local snapshot storage.

        Args:
            base_path: Directory holding snapshot files
        """
        self.base_path = Path(base_path)

    async def _ensure_directory(self) -> None:
        if not await aiofiles.os.path.exists(self.base_path):
            await aiofiles.os.makedirs(self.base_path, exist_ok=True)

    def path_for(self, key: str) -> Path:
        """File path of the snapshot stored under key."""
        return self.base_path / f"{validate_key(key)}{self.SUFFIX}"

    async def save(self, key: str, data: bytes) -> None:
        path = self.path_for(key)
        await self._ensure_directory()

        tmp_path = path.with_name(f"{path.name}.tmp")
        async with aiofiles.open(tmp_path, "wb") as f:
            await f.write(data)
        await aiofiles.os.replace(tmp_path, path)

        logger.debug(f"Saved snapshot {key} to {path} ({len(data)} bytes)")

    async def load(self, key: str) -> bytes | None:
        path = self.path_for(key)
        if not await aiofiles.os.path.exists(path):
            return None

        async with aiofiles.open(path, "rb") as f:
            content = await f.read()
        return cast(bytes, content)

    async def remove(self, key: str) -> bool:
        path = self.path_for(key)
        if not await aiofiles.os.path.exists(path):
            return False

        await aiofiles.os.remove(path)
        logger.debug(f"Removed snapshot at {path}")
        return True
