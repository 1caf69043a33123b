"""
A node in the wgmesh network.

Combines the node identity, the host registry, the event log and the
handshake state machine. Registry and event log are the only shared
mutable state; both are touched only inside `ingest`'s critical section,
and no network I/O happens while the lock is held.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Set

from ..auth.identity import NodeIdentity
from ..config import GossipConfig
from ..errors import InvalidHost, JoinError, MeshError
from ..wireguard import DryRunApplier, PeerSetApplier
from .client import MeshClient
from .event_id import EventId, EventIdGenerator
from .event_log import EventLog
from .events import Event, EventKind
from .gossip import GossipPropagator, PropagationReport
from .host import DEFAULT_API_PORT, Endpoint, Host
from .registry import HostRegistry

logger = logging.getLogger(__name__)


class NodeState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True)
class IngestResult:
    """What happened to one inbound event."""
    is_new: bool
    applied: bool
    changed: bool


class MeshNode:
    """
    Local mesh membership engine.

    Inbound events go through `ingest`: dedup in the event log, then
    last-writer-wins in the registry, then (outside the lock) the peer set
    is pushed to WireGuard and new events are fanned out to peers.
    """

    def __init__(
        self,
        identity: NodeIdentity,
        wireguard: Optional[PeerSetApplier] = None,
        client: Optional[MeshClient] = None,
        gossip_config: Optional[GossipConfig] = None,
        endpoints: Optional[List[Endpoint]] = None,
        api_port: int = DEFAULT_API_PORT,
    ):
        self.identity = identity
        self.config = gossip_config or GossipConfig()
        self.wireguard = wireguard or DryRunApplier()
        self.client = client or MeshClient(sender_id=identity.host_id, timeout=self.config.peer_timeout)
        self.endpoints = list(endpoints if endpoints is not None else identity.endpoints)
        self.api_port = api_port

        self.ids = EventIdGenerator(identity.host_id)
        self.registry = HostRegistry()
        self.event_log = EventLog(
            capacity=self.config.recent_capacity,
            retention_seconds=self.config.seen_retention_seconds,
            max_seen=self.config.max_seen,
        )
        self.propagator = GossipPropagator(
            node_id=identity.host_id,
            client=self.client,
            peers=self.connected_peers,
            timeout=self.config.propagate_timeout,
        )

        self.state = NodeState.IDLE
        self._lock = asyncio.Lock()
        self._pending: Set[asyncio.Task] = set()
        self._peer_set_failed = False
        self._reconcile_lock = asyncio.Lock()

    @property
    def node_id(self) -> str:
        return self.identity.host_id

    @property
    def name(self) -> str:
        return self.identity.name

    def self_host(self) -> Host:
        """The host payload this node announces about itself."""
        return self.identity.to_host(self.endpoints, api_port=self.api_port)

    # ============ Lifecycle ============

    async def start(self) -> None:
        """Register ourselves so we show up in our own host lists."""
        await self.ingest(Event.connect(self.self_host(), self.ids), propagate=False)
        logger.info(f"Node {self.name} ({self.node_id}) started")

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for outstanding propagation tasks."""
        while self._pending:
            done, _ = await asyncio.wait(set(self._pending), timeout=timeout)
            if not done:
                logger.warning(f"{len(self._pending)} propagation tasks still running")
                return

    async def stop(self, timeout: float = 10.0) -> None:
        await self.drain(timeout=timeout)
        for task in self._pending:
            task.cancel()
        await self.client.close()
        logger.info(f"Node {self.name} stopped")

    def _schedule(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    # ============ Event ingestion ============

    async def ingest(
        self,
        event: Event,
        sender: Optional[str] = None,
        propagate: bool = True,
    ) -> IngestResult:
        """
        Record and apply an event, then fan it out if it was new.

        Duplicates and stale events are accepted as no-ops.
        """
        applied = None
        peers_changed = False
        async with self._lock:
            is_new = self.event_log.record(event)
            if is_new:
                previous = self.registry.get(event.host.id)
                applied = self.registry.apply(event)
                peers_changed = applied.applied and not self.registry.get(event.host.id).same_facts(previous)
        self.ids.observe(event.id)

        result = IngestResult(
            is_new=is_new,
            applied=bool(applied and applied.applied),
            changed=bool(applied and applied.changed),
        )
        # A newer event restating the same facts leaves the peer set as is.
        if peers_changed:
            await self.reconcile()
        if is_new and propagate:
            self._schedule(self.propagate(event, exclude=sender))
        return result

    async def propagate(self, event: Event, exclude: Optional[str] = None) -> PropagationReport:
        return await self.propagator.propagate(event, exclude=exclude)

    async def _merge(self, host: Host) -> IngestResult:
        """Apply a host record received from a bootstrap node as a resolved fact."""
        event_id = host.last_event_id or EventId.minimum(host.id)
        event = Event(
            id=event_id,
            kind=EventKind.for_status(host.status),
            host=host.with_event(event_id),
            origin_id=host.id,
        )
        return await self.ingest(event, propagate=False)

    # ============ WireGuard ============

    def desired_peers(self) -> List[Host]:
        if self.state == NodeState.DISCONNECTED:
            return []
        return self.registry.peer_set(exclude_id=self.node_id)

    async def reconcile(self) -> bool:
        """
        Push the desired peer set to WireGuard. Failures are logged, not raised.

        Calls run one at a time and read the registry only once they hold
        the lock, so the last one to finish applies the newest state.
        """
        async with self._reconcile_lock:
            try:
                await self.wireguard.apply_peer_set(self.desired_peers())
            except Exception as e:
                self._peer_set_failed = True
                logger.error(f"Failed to apply WireGuard peer set: {e}")
                return False
            if self._peer_set_failed:
                logger.info("WireGuard peer set applied after earlier failure")
            self._peer_set_failed = False
            return True

    # ============ Connect / disconnect actions ============

    async def join(self, bootstrap_url: str) -> List[Host]:
        """
        Join the mesh through a bootstrap host.

        Merges the bootstrap's host list, then announces a fresh connect
        event for ourselves to every connected peer.
        """
        previous = self.state
        self.state = NodeState.CONNECTING
        logger.info(f"Joining mesh via {bootstrap_url}")
        try:
            hosts = await self.client.connect(bootstrap_url, self.self_host())
        except MeshError as e:
            self.state = previous
            raise JoinError(f"Could not join via {bootstrap_url}: {e}") from e

        for host in hosts:
            await self._merge(host)

        self.state = NodeState.CONNECTED
        await self.reconcile()

        event = Event.connect(self.self_host(), self.ids)
        await self.ingest(event, propagate=False)
        await self.propagate(event)

        logger.info(f"Joined mesh via {bootstrap_url}: {len(self.registry)} hosts known")
        return self.known_hosts()

    async def leave(self) -> PropagationReport:
        """Announce our own disconnect and tear down the local peer set."""
        event = Event.disconnect(self.self_host(), self.ids)
        await self.ingest(event, propagate=False)
        report = await self.propagate(event)
        self.state = NodeState.DISCONNECTED
        await self.reconcile()
        logger.info(f"Left mesh: disconnect sent to {len(report.sent)} peers")
        return report

    # ============ Serving peer requests ============

    async def serve_connect(self, host: Host) -> List[Host]:
        """A remote host joins through us."""
        if not host.endpoints:
            raise InvalidHost("at least one endpoint is required")
        if host.id == self.node_id:
            raise InvalidHost("a host cannot connect as this node")
        await self.ingest(Event.connect(host, self.ids), sender=host.id)
        return self.known_hosts()

    async def serve_disconnect(self, host_id: str, sender: Optional[str] = None) -> bool:
        """Mark a host disconnected. Unknown hosts are a no-op."""
        current = self.registry.get(host_id)
        if current is None:
            logger.debug(f"Disconnect for unknown host {host_id} ignored")
            return False
        await self.ingest(Event.disconnect(current, self.ids), sender=sender)
        return True

    async def serve_event(self, event: Event, sender: Optional[str] = None) -> IngestResult:
        return await self.ingest(event, sender=sender)

    # ============ Reads ============

    def known_hosts(self) -> List[Host]:
        return self.registry.hosts()

    def connected_peers(self) -> List[Host]:
        return self.registry.peer_set(exclude_id=self.node_id)

    def recent_events(self) -> List[Event]:
        return self.event_log.recent_events()

    def status(self) -> dict:
        return {
            "host_id": self.node_id,
            "node_name": self.name,
            "state": self.state.value,
            "registry": self.registry.stats(),
            "event_log": self.event_log.stats(),
            "gossip": self.propagator.stats(),
            "pending_propagations": len(self._pending),
            "wireguard_ok": not self._peer_set_failed,
        }
