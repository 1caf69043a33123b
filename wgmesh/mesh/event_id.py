"""
Time-ordered 128-bit event identifiers.

Layout (most significant bits first):

    48 bits  unix timestamp in milliseconds
    16 bits  per-process counter for events created in the same millisecond
    64 bits  origin component (SHA-256 prefix of the origin host id)

Comparing ids as integers orders them by timestamp, then counter, then
origin. Ids from one generator are strictly increasing; ids from different
origins that collide on timestamp and counter are ordered by origin.
"""

import hashlib
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Optional, Union

from ..errors import InvalidEventId

TIMESTAMP_BITS = 48
COUNTER_BITS = 16
ORIGIN_BITS = 64

MAX_TIMESTAMP = (1 << TIMESTAMP_BITS) - 1
MAX_COUNTER = (1 << COUNTER_BITS) - 1
ORIGIN_MASK = (1 << ORIGIN_BITS) - 1


def origin_component(origin_id: str) -> int:
    """64-bit origin marker derived from a host id."""
    digest = hashlib.sha256(origin_id.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big")


@dataclass(frozen=True, order=True)
class EventId:
    """A 128-bit, totally ordered event identifier."""
    value: int

    def __post_init__(self):
        if not 0 <= self.value < (1 << 128):
            raise InvalidEventId(f"event id out of range: {self.value}")

    @classmethod
    def build(cls, timestamp_ms: int, counter: int, origin: int) -> "EventId":
        if not 0 <= timestamp_ms <= MAX_TIMESTAMP:
            raise InvalidEventId(f"timestamp out of range: {timestamp_ms}")
        if not 0 <= counter <= MAX_COUNTER:
            raise InvalidEventId(f"counter out of range: {counter}")
        value = (
            (timestamp_ms << (COUNTER_BITS + ORIGIN_BITS))
            | (counter << ORIGIN_BITS)
            | (origin & ORIGIN_MASK)
        )
        return cls(value)

    @classmethod
    def minimum(cls, origin_id: str) -> "EventId":
        """Lowest possible id for an origin; any real event supersedes it."""
        return cls.build(0, 0, origin_component(origin_id))

    @classmethod
    def parse(cls, text: Union[str, "EventId"]) -> "EventId":
        """Parse the canonical UUID form or 32 hex digits."""
        if isinstance(text, EventId):
            return text
        if not isinstance(text, str):
            raise InvalidEventId(f"event id must be a string, got {type(text).__name__}")
        try:
            return cls(uuid.UUID(text.strip()).int)
        except ValueError as e:
            raise InvalidEventId(f"unparsable event id {text!r}") from e

    @property
    def timestamp_ms(self) -> int:
        return self.value >> (COUNTER_BITS + ORIGIN_BITS)

    @property
    def timestamp(self) -> float:
        """Embedded timestamp in seconds."""
        return self.timestamp_ms / 1000.0

    @property
    def counter(self) -> int:
        return (self.value >> ORIGIN_BITS) & MAX_COUNTER

    @property
    def origin(self) -> int:
        return self.value & ORIGIN_MASK

    def __str__(self) -> str:
        return str(uuid.UUID(int=self.value))

    def __repr__(self) -> str:
        return f"EventId({self})"


class EventIdGenerator:
    """
    Monotonic id generator for one origin.

    Behaves like a hybrid logical clock: the physical clock drives the
    timestamp, but the generator never goes backwards, and `observe` moves
    it past ids created elsewhere so local events created afterwards always
    order after what this node has already seen.
    """

    def __init__(self, origin_id: str, clock=None):
        self.origin_id = origin_id
        self._origin = origin_component(origin_id)
        self._clock = clock or time.time
        self._last_ms = 0
        self._counter = 0
        self._lock = threading.Lock()

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def next(self) -> EventId:
        """Create a new id strictly greater than any id issued or observed."""
        with self._lock:
            now = self._now_ms()
            if now > self._last_ms:
                self._last_ms = now
                self._counter = 0
            elif self._counter < MAX_COUNTER:
                self._counter += 1
            else:
                self._last_ms += 1
                self._counter = 0
            return EventId.build(self._last_ms, self._counter, self._origin)

    def observe(self, event_id: Optional[EventId]) -> None:
        """Advance past a remote id so later local ids supersede it."""
        if event_id is None:
            return
        with self._lock:
            ts, counter = event_id.timestamp_ms, event_id.counter
            if (ts, counter) > (self._last_ms, self._counter):
                self._last_ms, self._counter = ts, counter
