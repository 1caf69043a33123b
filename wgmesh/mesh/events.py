"""
Membership events.

An event is an immutable fact: "host X connected with these endpoints" or
"host X disconnected". Events are created once, by the node that handled the
request or noticed the change, and then travel through the mesh unchanged.
"""

from dataclasses import dataclass
from enum import Enum

from ..errors import InvalidEvent, InvalidEventId, InvalidHost
from .event_id import EventId, EventIdGenerator
from .host import Host, HostStatus


class EventKind(str, Enum):
    CONNECT = "connect"
    DISCONNECT = "disconnect"

    @property
    def status(self) -> HostStatus:
        if self is EventKind.CONNECT:
            return HostStatus.CONNECTED
        return HostStatus.DISCONNECTED

    @classmethod
    def for_status(cls, status: HostStatus) -> "EventKind":
        if status == HostStatus.CONNECTED:
            return cls.CONNECT
        return cls.DISCONNECT


@dataclass(frozen=True)
class Event:
    """A single membership change."""
    id: EventId
    kind: EventKind
    host: Host
    origin_id: str

    @classmethod
    def create(cls, kind: EventKind, host: Host, ids: EventIdGenerator) -> "Event":
        """Create a new event; the host payload takes the kind's status."""
        event_id = ids.next()
        payload = host.with_status(kind.status).with_event(event_id)
        return cls(id=event_id, kind=kind, host=payload, origin_id=ids.origin_id)

    @classmethod
    def connect(cls, host: Host, ids: EventIdGenerator) -> "Event":
        return cls.create(EventKind.CONNECT, host, ids)

    @classmethod
    def disconnect(cls, host: Host, ids: EventIdGenerator) -> "Event":
        return cls.create(EventKind.DISCONNECT, host, ids)

    @property
    def timestamp(self) -> float:
        return self.id.timestamp

    def to_dict(self) -> dict:
        """Serialize as an EventView."""
        return {
            "id": str(self.id),
            "kind": self.kind.value,
            "host": self.host.to_dict(),
            "originId": self.origin_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Event":
        """Parse an EventView. Raises InvalidEvent on any malformed field."""
        if not isinstance(data, dict):
            raise InvalidEvent("event payload must be an object")
        for key in ("id", "kind", "host", "originId"):
            if not data.get(key):
                raise InvalidEvent(f"event is missing {key}")
        try:
            event_id = EventId.parse(data["id"])
            kind = EventKind(data["kind"])
            host = Host.from_dict(data["host"])
        except (InvalidEventId, InvalidHost) as e:
            raise InvalidEvent(str(e)) from e
        except ValueError as e:
            raise InvalidEvent(f"unknown event kind {data['kind']!r}") from e

        # The payload always reflects the event itself.
        host = host.with_status(kind.status).with_event(event_id)
        return cls(id=event_id, kind=kind, host=host, origin_id=str(data["originId"]))
