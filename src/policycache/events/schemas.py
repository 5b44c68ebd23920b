"""Change notification schemas.

Every mutation of a watched (key, field) produces a CacheChangeEvent carrying
the value a reader would now see.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from policycache.core.types import EntityState


class ChangeReason(str, Enum):
    """Why a watched value changed."""

    WRITTEN = "written"
    EVICTED = "evicted"
    INVALIDATED = "invalidated"
    REFRESHED = "refreshed"
    RESTORED = "restored"
    PURGED = "purged"


@dataclass(frozen=True, slots=True)
class CacheChangeEvent:
    """A value-changed notification for a watched (key, field).

    Attributes:
        key: Entity key
        field: Field name, or None when the whole entity is watched
        value: Value now visible to readers (MISSING when gone)
        reason: What caused the change
        state: Entity state after the change (None when no longer cached)
        stale: Whether the watched value is now stale
    """

    key: str
    field: str | None
    value: Any
    reason: ChangeReason
    state: EntityState | None = None
    stale: bool = False
    event_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
