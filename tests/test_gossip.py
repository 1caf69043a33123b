"""
Tests for gossip propagation, anti-entropy and liveness checks.
"""

import asyncio
from collections import Counter

import pytest

from conftest import make_host
from wgmesh.mesh.events import Event
from wgmesh.mesh.gossip import AntiEntropy, GossipPropagator, GossipService, LivenessMonitor
from wgmesh.mesh.host import Host


class TestPropagation:

    @pytest.mark.asyncio
    async def test_event_reaches_every_node(self, network):
        nodes = await network.mesh(5)

        await nodes[2].serve_connect(make_host("newcomer", "10.0.1.1"))
        await network.settle()

        for node in nodes:
            assert node.registry.get("newcomer").is_connected

    @pytest.mark.asyncio
    async def test_each_event_crosses_each_edge_at_most_once(self, network):
        nodes = await network.mesh(5)
        network.posts.clear()

        event = Event.connect(make_host("newcomer", "10.0.1.1"), nodes[0].ids)
        await nodes[0].ingest(event)
        await network.settle()

        posts = network.posts_for(event.id)
        edges = Counter((sender, url) for sender, url, _ in posts)
        assert all(count == 1 for count in edges.values())
        # Every node but the newcomer forwards once to every other peer
        assert len(posts) <= len(nodes) * len(nodes)

    @pytest.mark.asyncio
    async def test_sender_is_not_sent_its_own_event(self, network):
        a, b = await network.mesh(2)
        network.posts.clear()

        await a.serve_event(Event.connect(make_host("remote"), b.ids), sender=b.node_id)
        await network.settle()

        assert network.url(b) not in {url for _, url, _ in network.posts}

    @pytest.mark.asyncio
    async def test_failures_are_counted_not_raised(self, network):
        a, b, c = await network.mesh(3)
        network.down.add(network.url(b))

        report = await a.propagate(Event.connect(make_host("remote"), a.ids))

        assert report.failed == [b.node_id]
        assert report.sent == [c.node_id]
        assert a.propagator.stats()["sends_failed"] >= 1

    @pytest.mark.asyncio
    async def test_hosts_without_endpoints_are_skipped(self, network):
        a = network.add_node("alpha", "10.0.0.1")
        peer = Host(id="no-endpoints", public_key="key")
        propagator = GossipPropagator(a.node_id, a.client, peers=lambda: [peer])

        report = await propagator.propagate(Event.connect(make_host("remote"), a.ids))

        assert report.skipped == ["no-endpoints"]
        assert report.sent == []

    @pytest.mark.asyncio
    async def test_slow_peer_times_out(self, network):
        a = network.add_node("alpha", "10.0.0.1")

        class SlowClient:
            async def post_event(self, url, event, timeout=None):
                await asyncio.sleep(10)

        propagator = GossipPropagator(a.node_id, SlowClient(), peers=lambda: [make_host("slow")], timeout=0.05)
        report = await propagator.propagate(Event.connect(make_host("remote"), a.ids))

        assert report.failed == ["slow"]


class TestAntiEntropy:

    @pytest.mark.asyncio
    async def test_pull_repairs_missed_push(self, network):
        a, b, c = await network.mesh(3)
        network.drop_posts = True
        await a.serve_connect(make_host("newcomer", "10.0.1.1"))
        await network.settle()
        network.drop_posts = False
        assert b.registry.get("newcomer") is None

        reports = await AntiEntropy(b, b.client).run_once()
        await network.settle()

        assert sum(r.pulled for r in reports) >= 1
        assert b.registry.get("newcomer").is_connected
        assert c.registry.get("newcomer").is_connected

    @pytest.mark.asyncio
    async def test_push_repairs_peer_that_missed_our_event(self, network):
        a, b = await network.mesh(2)
        network.drop_posts = True
        await a.serve_connect(make_host("newcomer", "10.0.1.1"))
        await network.settle()
        network.drop_posts = False

        report = await AntiEntropy(a, a.client).sync_with(a.registry.get(b.node_id))

        assert report.pushed >= 1
        assert report.error is None
        assert b.registry.get("newcomer").is_connected

    @pytest.mark.asyncio
    async def test_unreachable_peer_reports_error(self, network):
        a, b = await network.mesh(2)
        network.down.add(network.url(b))

        report = await AntiEntropy(a, a.client).sync_with(a.registry.get(b.node_id))

        assert report.error
        assert report.pulled == 0

    @pytest.mark.asyncio
    async def test_malformed_event_in_window_is_skipped(self, network):
        a, b = await network.mesh(2)
        network.drop_posts = True
        await a.serve_connect(make_host("newcomer", "10.0.1.1"))
        await network.settle()
        network.drop_posts = False
        junk = a.recent_events()[-1].to_dict()
        junk["id"] = "not-an-event-id"
        network.extra_views[network.url(a)] = [junk]

        report = await AntiEntropy(b, b.client).sync_with(b.registry.get(a.node_id))

        assert report.rejected == 1
        assert report.error is None
        await network.settle()

        assert report.pulled >= 1
        assert b.registry.get("newcomer").is_connected


class TestLiveness:

    @pytest.mark.asyncio
    async def test_ping_tracks_reachability_only(self, network):
        a, b = await network.mesh(2)
        monitor = LivenessMonitor(a.client, a.connected_peers)

        assert await monitor.run_once() == {b.node_id: True}
        assert monitor.health(b.node_id).reachable

        network.down.add(network.url(b))
        assert await monitor.run_once() == {b.node_id: False}
        assert monitor.health(b.node_id).failures == 1
        # Unreachable peers stay in the registry
        assert a.registry.get(b.node_id).is_connected

    @pytest.mark.asyncio
    async def test_forgets_peers_that_left(self, network):
        a, b = await network.mesh(2)
        monitor = LivenessMonitor(a.client, a.connected_peers)
        await monitor.run_once()

        await b.leave()
        await network.settle()
        await monitor.run_once()

        assert monitor.health(b.node_id) is None


class TestGossipService:

    @pytest.mark.asyncio
    async def test_loops_start_and_stop(self, network):
        a, b = await network.mesh(2)
        service = GossipService(a, a.client, anti_entropy_interval=0.01, ping_interval=0.01, prune_interval=0.01)

        await service.start()
        await asyncio.sleep(0.05)
        await service.stop()

        stats = service.stats()
        assert stats["anti_entropy"]["rounds"] >= 1
        assert b.node_id in stats["peers"]

    @pytest.mark.asyncio
    async def test_maintain_prunes_and_reconciles(self, network):
        a, b = await network.mesh(2)
        service = GossipService(a, a.client)
        applied = a.wireguard.apply_count

        await service.maintain()

        assert a.wireguard.apply_count == applied + 1
