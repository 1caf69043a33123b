"""
Gossip propagation and anti-entropy.

Newly accepted events are pushed to every connected peer once; events a
node has already seen are never forwarded again, which bounds traffic to
one send per event per edge. Pushes are fire-and-forget, so a periodic
anti-entropy pass pulls each peer's recent window over `GET /events` and
repairs whatever either side missed.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Dict, List, Optional

from ..errors import InvalidEvent, MeshError
from .client import MeshClient
from .events import Event
from .host import Host

if TYPE_CHECKING:
    from .node import MeshNode

logger = logging.getLogger(__name__)

# Protocol constants
PROPAGATE_TIMEOUT_SEC = 5.0
PEER_TIMEOUT_SEC = 5.0
ANTI_ENTROPY_INTERVAL_SEC = 30.0
PING_INTERVAL_SEC = 15.0
PRUNE_INTERVAL_SEC = 60.0

PeerSource = Callable[[], List[Host]]


@dataclass
class PropagationReport:
    """Per-event fan-out outcome. Failures are counted, never raised."""
    event_id: str
    sent: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


@dataclass
class SyncReport:
    """Outcome of one anti-entropy exchange with a peer."""
    peer_id: str
    pulled: int = 0
    pushed: int = 0
    rejected: int = 0
    error: Optional[str] = None


@dataclass
class PeerHealth:
    """Liveness as observed through `/ping`."""
    last_seen: Optional[float] = None
    last_checked: Optional[float] = None
    failures: int = 0

    @property
    def reachable(self) -> bool:
        return self.last_seen is not None and self.failures == 0

    def to_dict(self) -> dict:
        return {
            "last_seen": self.last_seen,
            "last_checked": self.last_checked,
            "failures": self.failures,
            "reachable": self.reachable,
        }


class GossipPropagator:
    """
    Pushes events to connected peers.

    Each peer gets its own task and timeout. A peer's API is tried on each
    of its endpoints in order until one accepts the event.
    """

    def __init__(
        self,
        node_id: str,
        client: MeshClient,
        peers: PeerSource,
        timeout: float = PROPAGATE_TIMEOUT_SEC,
    ):
        self.node_id = node_id
        self.client = client
        self.peers = peers
        self.timeout = timeout

        # Metrics
        self._events_propagated = 0
        self._sends_ok = 0
        self._sends_failed = 0

    def targets(self, exclude: Optional[str] = None) -> List[Host]:
        return [
            h for h in self.peers()
            if h.id != self.node_id and h.id != exclude
        ]

    async def send(self, host: Host, event: Event) -> bool:
        """Deliver one event to one peer. Never raises."""
        for url in host.api_urls():
            try:
                await asyncio.wait_for(self.client.post_event(url, event), self.timeout)
                return True
            except (MeshError, asyncio.TimeoutError) as e:
                logger.warning(f"Failed to send event {event.id} to {host.id} at {url}: {e or 'timed out'}")
        return False

    async def propagate(self, event: Event, exclude: Optional[str] = None) -> PropagationReport:
        """Send `event` to every connected peer except `exclude`."""
        report = PropagationReport(event_id=str(event.id))
        targets = []
        for host in self.targets(exclude):
            if host.api_urls():
                targets.append(host)
            else:
                report.skipped.append(host.id)

        results = await asyncio.gather(*(self.send(h, event) for h in targets))
        for host, ok in zip(targets, results):
            (report.sent if ok else report.failed).append(host.id)

        self._events_propagated += 1
        self._sends_ok += len(report.sent)
        self._sends_failed += len(report.failed)
        if targets:
            logger.debug(
                f"Propagated {event.kind.value} {event.id}: "
                f"{len(report.sent)} sent, {len(report.failed)} failed, {len(report.skipped)} skipped"
            )
        return report

    def stats(self) -> dict:
        return {
            "events_propagated": self._events_propagated,
            "sends_ok": self._sends_ok,
            "sends_failed": self._sends_failed,
        }


class AntiEntropy:
    """
    Periodic pull-and-push reconciliation over `/events`.

    For each connected peer: fetch its recent window, ingest what we have
    not seen (onward propagation excludes that peer), then push our recent
    events the peer's window lacks. Events older than the oldest id in the
    peer's window are not pushed, since the peer may simply have evicted them.
    """

    def __init__(self, node: "MeshNode", client: MeshClient, timeout: float = PEER_TIMEOUT_SEC):
        self.node = node
        self.client = client
        self.timeout = timeout

        self._rounds = 0
        self._pulled = 0
        self._pushed = 0

    async def sync_with(self, host: Host) -> SyncReport:
        report = SyncReport(peer_id=host.id)
        for url in host.api_urls():
            try:
                views = await self.client.get_events(url, timeout=self.timeout)
            except MeshError as e:
                report.error = str(e)
                continue
            report.error = None

            remote = []
            for view in views:
                try:
                    remote.append(Event.from_dict(view))
                except InvalidEvent as e:
                    report.rejected += 1
                    logger.warning(f"Skipping malformed event from {host.id}: {e}")

            remote_ids = {e.id for e in remote}
            for event in remote:
                if event.id in self.node.event_log:
                    continue
                result = await self.node.ingest(event, sender=host.id)
                if result.is_new:
                    report.pulled += 1

            oldest = min(remote_ids) if remote_ids else None
            for event in self.node.recent_events():
                if event.id in remote_ids or (oldest is not None and event.id < oldest):
                    continue
                try:
                    await self.client.post_event(url, event, timeout=self.timeout)
                except MeshError as e:
                    report.error = str(e)
                    break
                report.pushed += 1
            break

        if report.error:
            logger.warning(f"Anti-entropy with {host.id} failed: {report.error}")
        elif report.pulled or report.pushed:
            logger.info(f"Anti-entropy with {host.id}: pulled {report.pulled}, pushed {report.pushed}")
        self._pulled += report.pulled
        self._pushed += report.pushed
        return report

    async def run_once(self) -> List[SyncReport]:
        """One reconciliation round against every connected peer."""
        peers = [h for h in self.node.connected_peers() if h.api_urls()]
        reports = await asyncio.gather(*(self.sync_with(h) for h in peers))
        self._rounds += 1
        return list(reports)

    def stats(self) -> dict:
        return {
            "rounds": self._rounds,
            "pulled": self._pulled,
            "pushed": self._pushed,
        }


class LivenessMonitor:
    """Pings connected peers. Observes reachability only; never edits the registry."""

    def __init__(self, client: MeshClient, peers: PeerSource, timeout: float = PEER_TIMEOUT_SEC):
        self.client = client
        self.peers = peers
        self.timeout = timeout
        self._health: Dict[str, PeerHealth] = {}

    async def check(self, host: Host) -> bool:
        health = self._health.setdefault(host.id, PeerHealth())
        health.last_checked = time.time()
        for url in host.api_urls():
            try:
                await self.client.ping(url, timeout=self.timeout)
            except MeshError as e:
                logger.debug(f"Ping {host.id} at {url} failed: {e}")
                continue
            health.last_seen = health.last_checked
            health.failures = 0
            return True

        health.failures += 1
        if health.failures == 1:
            logger.warning(f"Peer {host.id} is not answering pings")
        return False

    async def run_once(self) -> Dict[str, bool]:
        peers = self.peers()
        results = await asyncio.gather(*(self.check(h) for h in peers))
        # Forget peers that are no longer connected
        current = {h.id for h in peers}
        for host_id in list(self._health):
            if host_id not in current:
                del self._health[host_id]
        return {h.id: ok for h, ok in zip(peers, results)}

    def health(self, host_id: str) -> Optional[PeerHealth]:
        return self._health.get(host_id)

    def stats(self) -> dict:
        return {host_id: h.to_dict() for host_id, h in self._health.items()}


class GossipService:
    """
    Background loops: anti-entropy, liveness pings and maintenance
    (event log pruning plus a periodic WireGuard reconciliation pass).
    """

    def __init__(
        self,
        node: "MeshNode",
        client: MeshClient,
        anti_entropy_interval: float = ANTI_ENTROPY_INTERVAL_SEC,
        ping_interval: float = PING_INTERVAL_SEC,
        prune_interval: float = PRUNE_INTERVAL_SEC,
        peer_timeout: float = PEER_TIMEOUT_SEC,
    ):
        self.node = node
        self.anti_entropy = AntiEntropy(node, client, timeout=peer_timeout)
        self.liveness = LivenessMonitor(client, node.connected_peers, timeout=peer_timeout)
        self.anti_entropy_interval = anti_entropy_interval
        self.ping_interval = ping_interval
        self.prune_interval = prune_interval

        self._running = False
        self._tasks: List[asyncio.Task] = []

    async def maintain(self) -> None:
        self.node.event_log.prune()
        await self.node.reconcile()

    async def _loop(self, name: str, interval: float, step) -> None:
        while self._running:
            await asyncio.sleep(interval)
            try:
                await step()
            except Exception as e:
                logger.error(f"{name} failed: {e}")

    async def start(self) -> None:
        """Start the periodic loops."""
        if self._running:
            return
        self._running = True
        self._tasks = [
            asyncio.create_task(self._loop("Anti-entropy", self.anti_entropy_interval, self.anti_entropy.run_once)),
            asyncio.create_task(self._loop("Liveness check", self.ping_interval, self.liveness.run_once)),
            asyncio.create_task(self._loop("Maintenance", self.prune_interval, self.maintain)),
        ]
        logger.info("Gossip background tasks started")

    async def stop(self) -> None:
        """Stop the periodic loops."""
        self._running = False
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        logger.info("Gossip background tasks stopped")

    def stats(self) -> dict:
        return {
            "anti_entropy": self.anti_entropy.stats(),
            "peers": self.liveness.stats(),
        }
