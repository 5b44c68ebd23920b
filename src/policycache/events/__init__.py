"""Change notifications for watched cache entries.

Mutations are delivered synchronously into per-watch queues:
- Ordering matches the order of writes, evictions and invalidations
- Only actual value (or staleness) changes are delivered
- A watch runs until unsubscribed
"""

from policycache.events.schemas import CacheChangeEvent, ChangeReason
from policycache.events.watch import Watch, WatchFilter, WatchManager

__all__ = [
    "CacheChangeEvent",
    "ChangeReason",
    "Watch",
    "WatchFilter",
    "WatchManager",
]
