"""
Tests for the host registry and last-writer-wins resolution.
"""

import pytest

from conftest import CLOCK_T0, FakeClock, make_host
from wgmesh.errors import InvalidEvent
from wgmesh.mesh.event_id import EventId, EventIdGenerator
from wgmesh.mesh.events import Event, EventKind
from wgmesh.mesh.host import Endpoint, HostStatus
from wgmesh.mesh.registry import HostRegistry, supersedes


class TestSupersedes:

    def test_anything_beats_no_record(self):
        assert supersedes(EventId.minimum("a"), None)

    def test_newer_wins_and_equal_does_not(self):
        old, new = EventId.build(1, 0, 0), EventId.build(2, 0, 0)
        assert supersedes(new, old)
        assert not supersedes(old, new)
        assert not supersedes(new, new)


class TestApply:

    def test_connect_registers_host(self, ids):
        registry = HostRegistry()
        event = Event.connect(make_host("host-1"), ids)

        result = registry.apply(event)

        assert result.applied and result.changed
        host = registry.get("host-1")
        assert host.status == HostStatus.CONNECTED
        assert host.last_event_id == event.id
        assert "host-1" in registry

    def test_reapplying_is_idempotent(self, ids):
        registry = HostRegistry()
        event = Event.connect(make_host("host-1"), ids)
        registry.apply(event)
        before = registry.hosts()

        result = registry.apply(event)

        assert not result.applied
        assert registry.hosts() == before

    def test_newer_event_with_same_facts_overwrites(self, ids):
        registry = HostRegistry()
        registry.apply(Event.connect(make_host("host-1"), ids))
        newer = Event.connect(make_host("host-1"), ids)

        result = registry.apply(newer)

        assert result.applied and result.changed
        assert registry.get("host-1").last_event_id == newer.id

    def test_new_endpoint_is_a_change(self, ids):
        registry = HostRegistry()
        registry.apply(Event.connect(make_host("host-1", "192.0.2.1"), ids))

        result = registry.apply(Event.connect(make_host("host-1", "192.0.2.99"), ids))

        assert result.changed
        assert registry.get("host-1").endpoints == (Endpoint("192.0.2.99"),)

    @pytest.mark.parametrize("order", ["in_order", "reversed"])
    def test_outcome_does_not_depend_on_arrival_order(self, ids, order):
        host = make_host("host-1")
        connect = Event.connect(host, ids)
        disconnect = Event.disconnect(host, ids)
        events = [connect, disconnect] if order == "in_order" else [disconnect, connect]

        registry = HostRegistry()
        for event in events:
            registry.apply(event)

        assert registry.get("host-1").status == HostStatus.DISCONNECTED
        assert registry.get("host-1").last_event_id == disconnect.id

    def test_stale_disconnect_does_not_undo_newer_connect(self, ids):
        host = make_host("host-1")
        stale = Event.disconnect(host, ids)
        fresh = Event.connect(host, ids)
        registry = HostRegistry()
        registry.apply(fresh)

        result = registry.apply(stale)

        assert not result.applied
        assert registry.get("host-1").is_connected

    def test_concurrent_events_tie_break_on_origin(self):
        clock = FakeClock(CLOCK_T0)
        a = EventIdGenerator("origin-a", clock=clock)
        b = EventIdGenerator("origin-b", clock=clock)
        host = make_host("host-1")
        from_a = Event.connect(host, a)
        from_b = Event.disconnect(host, b)
        winner = max(from_a, from_b, key=lambda e: e.id)

        left, right = HostRegistry(), HostRegistry()
        left.apply(from_a)
        left.apply(from_b)
        right.apply(from_b)
        right.apply(from_a)

        assert left.get("host-1") == right.get("host-1")
        assert left.get("host-1").last_event_id == winner.id

    def test_peer_set_excludes_self_and_disconnected(self, ids):
        registry = HostRegistry()
        for host_id in ("self", "b", "c"):
            registry.apply(Event.connect(make_host(host_id), ids))
        registry.apply(Event.disconnect(make_host("c"), ids))

        assert [h.id for h in registry.peer_set(exclude_id="self")] == ["b"]
        assert [h.id for h in registry.connected_hosts()] == ["b", "self"]
        assert registry.stats() == {"hosts": 3, "connected": 2, "disconnected": 1}


class TestEventPayloads:

    def test_payload_status_follows_event_kind(self, ids):
        event = Event.connect(make_host("host-1"), ids)
        data = event.to_dict()
        data["kind"] = "disconnect"
        data["host"]["status"] = "connected"

        parsed = Event.from_dict(data)

        assert parsed.kind == EventKind.DISCONNECT
        assert parsed.host.status == HostStatus.DISCONNECTED
        assert parsed.host.last_event_id == parsed.id

    @pytest.mark.parametrize("mutate", [
        lambda d: d.pop("originId"),
        lambda d: d.update(id="not-an-id"),
        lambda d: d.update(kind="explode"),
        lambda d: d["host"].pop("publicKey"),
        lambda d: d["host"].update(endpoints=[{"ip": "not-an-ip"}]),
        lambda d: d["host"].update(apiPort="http"),
    ])
    def test_malformed_payloads_are_rejected(self, ids, mutate):
        data = Event.connect(make_host("host-1"), ids).to_dict()
        mutate(data)

        with pytest.raises(InvalidEvent):
            Event.from_dict(data)

    def test_bad_api_port_is_reported_as_bad_host(self, ids):
        data = Event.connect(make_host("host-1"), ids).to_dict()
        data["host"]["apiPort"] = "http"

        with pytest.raises(InvalidEvent, match="apiPort"):
            Event.from_dict(data)
