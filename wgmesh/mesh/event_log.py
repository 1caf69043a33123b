"""
Event log: deduplication and the recent-activity window.

Two tiers:

- `seen` maps every accepted event id to its embedded timestamp and is used
  for dedup. It ages out after a retention horizon and is capped in size.
- `recent` holds the last N accepted events in acceptance order and backs
  the `/events` query used for replay and anti-entropy.

Ids present in `recent` are never dropped from `seen`.
"""

import logging
import time
from collections import OrderedDict, deque
from typing import Deque, List, Optional, Set

from .event_id import EventId
from .events import Event

logger = logging.getLogger(__name__)

DEFAULT_RECENT_CAPACITY = 1000
DEFAULT_RETENTION_SEC = 24 * 3600
DEFAULT_MAX_SEEN = 100_000


class EventLog:
    """Deduplicating, bounded store of accepted events."""

    def __init__(
        self,
        capacity: int = DEFAULT_RECENT_CAPACITY,
        retention_seconds: float = DEFAULT_RETENTION_SEC,
        max_seen: int = DEFAULT_MAX_SEEN,
    ):
        if capacity < 1:
            raise ValueError("capacity must be positive")
        if max_seen < capacity:
            raise ValueError("max_seen must be at least capacity")
        self.capacity = capacity
        self.retention_seconds = retention_seconds
        self.max_seen = max_seen

        self._seen: "OrderedDict[EventId, float]" = OrderedDict()
        self._recent: Deque[Event] = deque()
        self._recent_ids: Set[EventId] = set()

        # Metrics
        self._recorded = 0
        self._duplicates = 0
        self._pruned = 0

    def record(self, event: Event) -> bool:
        """Accept an event. Returns True only the first time an id is seen."""
        if event.id in self._seen:
            self._duplicates += 1
            return False

        self._seen[event.id] = event.id.timestamp
        self._recent.append(event)
        self._recent_ids.add(event.id)
        self._recorded += 1

        while len(self._recent) > self.capacity:
            evicted = self._recent.popleft()
            self._recent_ids.discard(evicted.id)

        if len(self._seen) > self.max_seen:
            self._evict_seen(len(self._seen) - self.max_seen)
        return True

    def _evict_seen(self, count: int) -> None:
        """Drop the oldest inserted ids that are not in the recent window."""
        evicted = []
        for event_id in self._seen:
            if len(evicted) >= count:
                break
            if event_id not in self._recent_ids:
                evicted.append(event_id)
        for event_id in evicted:
            del self._seen[event_id]
        self._pruned += len(evicted)

    def prune(self, now: Optional[float] = None) -> int:
        """Forget ids older than the retention horizon. Returns how many."""
        now = time.time() if now is None else now
        horizon = now - self.retention_seconds
        expired = [
            event_id for event_id, ts in self._seen.items()
            if ts < horizon and event_id not in self._recent_ids
        ]
        for event_id in expired:
            del self._seen[event_id]
        self._pruned += len(expired)
        if expired:
            logger.debug(f"Pruned {len(expired)} event ids older than {self.retention_seconds}s")
        return len(expired)

    def recent_events(self) -> List[Event]:
        """The recent window in acceptance order, newest last."""
        return list(self._recent)

    def recent_ids(self) -> List[EventId]:
        return [e.id for e in self._recent]

    def __contains__(self, event_id: EventId) -> bool:
        return event_id in self._seen

    def __len__(self) -> int:
        return len(self._recent)

    @property
    def seen_count(self) -> int:
        return len(self._seen)

    def stats(self) -> dict:
        return {
            "recent": len(self._recent),
            "seen": len(self._seen),
            "recorded": self._recorded,
            "duplicates": self._duplicates,
            "pruned": self._pruned,
            "capacity": self.capacity,
            "retention_seconds": self.retention_seconds,
        }
