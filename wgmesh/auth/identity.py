"""
Node identity backed by a WireGuard (Curve25519) keypair.

The base64 public key is what WireGuard peers know this node by, and it is
the default host id in the mesh.
"""

import base64
import json
import platform
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import (
    X25519PrivateKey,
    X25519PublicKey,
)

from ..mesh.host import DEFAULT_API_PORT, Endpoint, Host, HostStatus, generate_ipv6


@dataclass
class KeyPair:
    """WireGuard keypair."""
    private_key: X25519PrivateKey
    public_key: X25519PublicKey

    @classmethod
    def generate(cls) -> "KeyPair":
        """Equivalent to `wg genkey`."""
        private_key = X25519PrivateKey.generate()
        return cls(private_key=private_key, public_key=private_key.public_key())

    @classmethod
    def from_private_b64(cls, private_b64: str) -> "KeyPair":
        """Load from a `wg genkey` style base64 private key."""
        private_key = X25519PrivateKey.from_private_bytes(base64.b64decode(private_b64))
        return cls(private_key=private_key, public_key=private_key.public_key())

    def private_bytes(self) -> bytes:
        return self.private_key.private_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PrivateFormat.Raw,
            encryption_algorithm=serialization.NoEncryption()
        )

    def public_bytes(self) -> bytes:
        return self.public_key.public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw
        )

    def private_key_b64(self) -> str:
        return base64.b64encode(self.private_bytes()).decode("ascii")

    def public_key_b64(self) -> str:
        """Equivalent to `wg pubkey`."""
        return base64.b64encode(self.public_bytes()).decode("ascii")


@dataclass
class NodeIdentity:
    """This node's keys and the facts it announces about itself."""
    keypair: KeyPair
    name: str
    wireguard_address: str
    created_at: int
    host_id: Optional[str] = None
    endpoints: List[Endpoint] = field(default_factory=list)

    def __post_init__(self):
        if not self.host_id:
            self.host_id = self.public_key

    @property
    def public_key(self) -> str:
        return self.keypair.public_key_b64()

    def to_host(
        self,
        endpoints: Optional[List[Endpoint]] = None,
        api_port: int = DEFAULT_API_PORT,
    ) -> Host:
        """The host payload this node announces."""
        return Host(
            id=self.host_id,
            public_key=self.public_key,
            endpoints=tuple(endpoints if endpoints is not None else self.endpoints),
            status=HostStatus.CONNECTED,
            name=self.name,
            wireguard_address=self.wireguard_address,
            api_port=api_port,
        )

    def to_dict(self) -> dict:
        """Public parts only."""
        return {
            "host_id": self.host_id,
            "public_key": self.public_key,
            "name": self.name,
            "wireguard_address": self.wireguard_address,
            "endpoints": [e.to_dict() for e in self.endpoints],
            "created_at": self.created_at
        }

    def save(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        data = self.to_dict()
        data["private_key"] = self.keypair.private_key_b64()
        with open(path, 'w') as f:
            json.dump(data, f, indent=2)
        path.chmod(0o600)

    @classmethod
    def load(cls, path: Path) -> "NodeIdentity":
        with open(path, 'r') as f:
            data = json.load(f)
        return cls(
            keypair=KeyPair.from_private_b64(data["private_key"]),
            name=data["name"],
            wireguard_address=data["wireguard_address"],
            created_at=data["created_at"],
            host_id=data.get("host_id"),
            endpoints=[Endpoint.from_dict(e) for e in data.get("endpoints", [])],
        )


def generate_node_identity(
    name: Optional[str] = None,
    host_id: Optional[str] = None,
    endpoints: Optional[List[Endpoint]] = None,
    wireguard_address: Optional[str] = None,
) -> NodeIdentity:
    """Generate a new identity with fresh keys and a unique-local tunnel address."""
    return NodeIdentity(
        keypair=KeyPair.generate(),
        name=name or platform.node() or "wgmesh-node",
        wireguard_address=wireguard_address or f"{generate_ipv6()}/128",
        created_at=int(time.time()),
        host_id=host_id,
        endpoints=list(endpoints or []),
    )


def load_node_identity(path: Path) -> Optional[NodeIdentity]:
    """Load node identity from file, or return None if not found."""
    if not path.exists():
        return None
    return NodeIdentity.load(path)
