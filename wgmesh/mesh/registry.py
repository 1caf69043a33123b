"""
Host registry and last-writer-wins conflict resolution.

The registry is the local view of mesh membership. It is only ever changed
by applying events; the resolver decides whether an incoming event is newer
than the one that produced the current record.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from .event_id import EventId
from .events import Event
from .host import Host

logger = logging.getLogger(__name__)


def supersedes(incoming: EventId, current: Optional[EventId]) -> bool:
    """
    Last-writer-wins: does `incoming` replace a record produced by `current`?

    Ids compare by embedded timestamp, then counter, then origin component,
    so the outcome is the same on every node regardless of arrival order.
    Equal ids never supersede each other.
    """
    if current is None:
        return True
    return incoming > current


@dataclass(frozen=True)
class ApplyResult:
    """Outcome of applying one event to the registry."""
    applied: bool
    changed: bool


class HostRegistry:
    """Mapping of host id to the newest known host record."""

    def __init__(self):
        self._hosts: Dict[str, Host] = {}

    def apply(self, event: Event) -> ApplyResult:
        """
        Apply an event under last-writer-wins.

        Stale and duplicate events are ignored without error. The rule is the
        same for every event kind, so a late disconnect cannot undo a newer
        connect and a late connect cannot revive a newer disconnect.
        """
        current = self._hosts.get(event.host.id)
        current_id = current.last_event_id if current else None

        if not supersedes(event.id, current_id):
            logger.debug(
                f"Ignoring stale {event.kind.value} for {event.host.id}: "
                f"{event.id} <= {current_id}"
            )
            return ApplyResult(applied=False, changed=False)

        record = event.host.with_status(event.kind.status).with_event(event.id)
        self._hosts[record.id] = record

        if not record.same_facts(current):
            logger.info(f"Host {record.id} is now {record.status.value} ({event.id})")
        return ApplyResult(applied=True, changed=True)

    def get(self, host_id: str) -> Optional[Host]:
        return self._hosts.get(host_id)

    def hosts(self) -> List[Host]:
        """All known hosts, sorted by id."""
        return [self._hosts[k] for k in sorted(self._hosts)]

    def connected_hosts(self) -> List[Host]:
        return [h for h in self.hosts() if h.is_connected]

    def peer_set(self, exclude_id: Optional[str] = None) -> List[Host]:
        """Connected hosts other than `exclude_id`: the desired WireGuard peers."""
        return [h for h in self.connected_hosts() if h.id != exclude_id]

    def __contains__(self, host_id: str) -> bool:
        return host_id in self._hosts

    def __len__(self) -> int:
        return len(self._hosts)

    def stats(self) -> dict:
        connected = len(self.connected_hosts())
        return {
            "hosts": len(self._hosts),
            "connected": connected,
            "disconnected": len(self._hosts) - connected,
        }
