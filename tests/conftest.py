"""
Shared fixtures for wgmesh tests.

`FakeNetwork` wires MeshNodes together in-process: each node gets a
`LoopbackClient` that routes peer requests straight into the target
node's serve_* methods, round-tripping payloads through their wire form.
"""

import asyncio
from typing import Dict, List, Optional, Set, Tuple

import pytest

from wgmesh.auth.identity import generate_node_identity
from wgmesh.config import GossipConfig, reset_config
from wgmesh.errors import InvalidHost, PeerRequestError, PeerUnreachableError, WireGuardError
from wgmesh.mesh.client import normalize_url
from wgmesh.mesh.event_id import EventIdGenerator
from wgmesh.mesh.events import Event
from wgmesh.mesh.host import Endpoint, Host
from wgmesh.mesh.node import MeshNode
from wgmesh.wireguard import DryRunApplier, PeerSetApplier

CLOCK_T0 = 1_700_000_000.0


class FakeClock:
    """Settable clock for EventIdGenerator."""

    def __init__(self, now: float = CLOCK_T0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FlakyApplier(PeerSetApplier):
    """Applier that fails while `fail` is set."""

    def __init__(self, fail: bool = True):
        self.fail = fail
        self.last_peers: Optional[List[Host]] = None

    async def apply_peer_set(self, peers: List[Host]) -> None:
        if self.fail:
            raise WireGuardError("wg set failed: interface wg0 does not exist")
        self.last_peers = list(peers)


class SlowApplier(PeerSetApplier):
    """Applier whose first call takes `delay` seconds to land."""

    def __init__(self, delay: float = 0.05):
        self.delay = delay
        self.calls: List[List[str]] = []
        self.last_peers: Optional[List[Host]] = None

    async def apply_peer_set(self, peers: List[Host]) -> None:
        self.calls.append([p.id for p in peers])
        if len(self.calls) == 1:
            await asyncio.sleep(self.delay)
        self.last_peers = list(peers)


class LoopbackClient:
    """MeshClient stand-in that delivers requests to nodes on a FakeNetwork."""

    def __init__(self, network: "FakeNetwork", sender_id: Optional[str]):
        self.network = network
        self.sender_id = sender_id

    def _target(self, url: str) -> MeshNode:
        url = normalize_url(url)
        node = self.network.nodes.get(url)
        if node is None or url in self.network.down:
            raise PeerUnreachableError(f"{url}: connection refused")
        return node

    async def connect(self, url: str, host: Host) -> List[Host]:
        node = self._target(url)
        try:
            hosts = await node.serve_connect(Host.from_dict(host.to_dict(), require_endpoints=True))
        except InvalidHost as e:
            raise PeerRequestError(url, 400, str(e))
        return [Host.from_dict(h.to_dict()) for h in hosts]

    async def discover(self, url: str, timeout: Optional[float] = None) -> List[Host]:
        return [Host.from_dict(h.to_dict()) for h in self._target(url).known_hosts()]

    async def ping(self, url: str, timeout: Optional[float] = None) -> dict:
        return {"status": "pong", "hostId": self._target(url).node_id}

    async def disconnect(self, url: str, host_id: str) -> None:
        await self._target(url).serve_disconnect(host_id, sender=self.sender_id)

    async def post_event(self, url: str, event: Event, timeout: Optional[float] = None) -> None:
        self.network.posts.append((self.sender_id, normalize_url(url), event.id))
        if self.network.drop_posts:
            raise PeerUnreachableError(f"{url}: connection reset")
        node = self._target(url)
        await node.serve_event(Event.from_dict(event.to_dict()), sender=self.sender_id)

    async def get_events(self, url: str, timeout: Optional[float] = None) -> List[dict]:
        views = [e.to_dict() for e in self._target(url).recent_events()]
        return self.network.extra_views.get(normalize_url(url), []) + views

    async def close(self) -> None:
        pass


class FakeNetwork:
    """A set of in-process nodes addressed by their API URL."""

    def __init__(self):
        self.nodes: Dict[str, MeshNode] = {}
        self.down: Set[str] = set()
        self.drop_posts = False
        self.extra_views: Dict[str, List[dict]] = {}
        self.posts: List[Tuple[str, str, object]] = []

    def add_node(
        self,
        name: str,
        ip: str,
        wireguard: Optional[PeerSetApplier] = None,
        gossip_config: Optional[GossipConfig] = None,
    ) -> MeshNode:
        identity = generate_node_identity(name=name, endpoints=[Endpoint(ip)])
        node = MeshNode(
            identity,
            wireguard=wireguard or DryRunApplier(),
            client=LoopbackClient(self, identity.host_id),
            gossip_config=gossip_config,
        )
        self.nodes[self.url(node)] = node
        return node

    @staticmethod
    def url(node: MeshNode) -> str:
        return node.self_host().api_urls()[0]

    def posts_for(self, event_id) -> List[Tuple[str, str, object]]:
        return [p for p in self.posts if p[2] == event_id]

    async def settle(self) -> None:
        """Wait until no node has propagation in flight."""
        while any(n._pending for n in self.nodes.values()):
            for node in list(self.nodes.values()):
                await node.drain()

    async def mesh(self, count: int) -> List[MeshNode]:
        """Start `count` nodes and join each through the first."""
        nodes = [self.add_node(f"node{i}", f"10.0.0.{i + 1}") for i in range(count)]
        for node in nodes:
            await node.start()
        for node in nodes[1:]:
            await node.join(self.url(nodes[0]))
            await self.settle()
        return nodes


def make_host(host_id: str, ip: str = "192.0.2.1", **kwargs) -> Host:
    kwargs.setdefault("public_key", f"{host_id}-key")
    return Host(id=host_id, endpoints=(Endpoint(ip),), **kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ids(clock):
    return EventIdGenerator("node-a", clock=clock)


@pytest.fixture
def network():
    return FakeNetwork()


@pytest.fixture(autouse=True)
def _reset_globals():
    yield
    reset_config()
    from wgmesh.api.server import set_server
    set_server(None)
