"""
Mesh membership for wgmesh.

Provides:
- Time-ordered event ids
- Host records and membership events
- Event log with deduplication
- Host registry with last-writer-wins resolution

The node state machine lives in `wgmesh.mesh.node`.
"""

from .event_id import EventId, EventIdGenerator
from .host import Endpoint, Host, HostStatus, generate_ipv6
from .events import Event, EventKind
from .event_log import EventLog
from .registry import ApplyResult, HostRegistry, supersedes

__all__ = [
    # Ids
    "EventId",
    "EventIdGenerator",
    # Hosts
    "Endpoint",
    "Host",
    "HostStatus",
    "generate_ipv6",
    # Events
    "Event",
    "EventKind",
    "EventLog",
    # Registry
    "ApplyResult",
    "HostRegistry",
    "supersedes",
]
