"""
Tests for configuration and node identity storage.
"""

import base64
import ipaddress
import json
import stat

from wgmesh.auth.identity import KeyPair, NodeIdentity, generate_node_identity, load_node_identity
from wgmesh.config import Config, GossipConfig, get_config, reset_config, set_config
from wgmesh.mesh.host import DEFAULT_API_PORT, Endpoint


class TestConfig:

    def test_defaults(self, tmp_path):
        config = Config(data_dir=tmp_path)

        assert config.server.port == DEFAULT_API_PORT
        assert config.gossip.recent_capacity == 1000
        assert config.gossip.seen_retention_seconds == 24 * 3600
        assert config.wireguard_interface is None
        assert config.local_url == f"http://127.0.0.1:{DEFAULT_API_PORT}"

    def test_save_and_load(self, tmp_path):
        config = Config(data_dir=tmp_path, wireguard_interface="wg0", bootstrap=["10.0.0.1:64001"])
        config.server.port = 7000
        config.gossip.anti_entropy_interval = 5.0
        config.save()

        loaded = Config.load(tmp_path)

        assert Config.exists(tmp_path)
        assert loaded.wireguard_interface == "wg0"
        assert loaded.bootstrap == ["10.0.0.1:64001"]
        assert loaded.server.port == 7000
        assert loaded.gossip.anti_entropy_interval == 5.0

    def test_load_missing_returns_defaults(self, tmp_path):
        config = Config.load(tmp_path / "nowhere")

        assert not Config.exists(tmp_path / "nowhere")
        assert config.data_dir == tmp_path / "nowhere"
        assert config.mdns_enabled is True

    def test_unknown_gossip_keys_are_ignored(self, tmp_path):
        (tmp_path / "config.json").write_text(json.dumps({
            "gossip": {"recent_capacity": 50, "from_a_newer_version": True},
        }))

        config = Config.load(tmp_path)

        assert config.gossip.recent_capacity == 50
        assert config.gossip == GossipConfig(recent_capacity=50)

    def test_global_config(self, tmp_path):
        config = Config(data_dir=tmp_path)
        set_config(config)
        assert get_config() is config

        reset_config()
        assert get_config(tmp_path) is not config


class TestIdentity:

    def test_host_id_defaults_to_public_key(self):
        identity = generate_node_identity("alpha")

        assert identity.host_id == identity.public_key
        assert len(base64.b64decode(identity.public_key)) == 32

    def test_explicit_host_id(self):
        identity = generate_node_identity("alpha", host_id="alpha.example")

        assert identity.host_id == "alpha.example"
        assert identity.to_host().public_key == identity.public_key

    def test_tunnel_address_is_unique_local(self):
        identity = generate_node_identity("alpha")
        address = ipaddress.ip_interface(identity.wireguard_address)

        assert address.ip in ipaddress.ip_network("fc00::/7")
        assert address.network.prefixlen == 128

    def test_keypair_round_trip(self):
        keypair = KeyPair.generate()
        restored = KeyPair.from_private_b64(keypair.private_key_b64())

        assert restored.public_key_b64() == keypair.public_key_b64()

    def test_save_and_load(self, tmp_path):
        identity = generate_node_identity("alpha", endpoints=[Endpoint("10.0.0.1", 51821, "eth0")])
        path = tmp_path / "identity.json"
        identity.save(path)

        loaded = NodeIdentity.load(path)

        assert stat.S_IMODE(path.stat().st_mode) == 0o600
        assert loaded.host_id == identity.host_id
        assert loaded.public_key == identity.public_key
        assert loaded.wireguard_address == identity.wireguard_address
        assert loaded.endpoints == [Endpoint("10.0.0.1", 51821, "eth0")]

    def test_public_dict_has_no_private_key(self):
        assert "private_key" not in generate_node_identity("alpha").to_dict()

    def test_load_missing_identity(self, tmp_path):
        assert load_node_identity(tmp_path / "identity.json") is None

    def test_to_host_announces_connected(self):
        identity = generate_node_identity("alpha", endpoints=[Endpoint("10.0.0.1")])
        host = identity.to_host(api_port=7000)

        assert host.is_connected
        assert host.api_urls() == ["http://10.0.0.1:7000"]
        assert host.wireguard_address == identity.wireguard_address
