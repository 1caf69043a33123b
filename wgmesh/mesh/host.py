"""
Mesh host records.

A host is a single member of the mesh: its WireGuard public key, the
addresses it can be reached on and whether it is currently connected.
Host records are immutable; the registry replaces them wholesale when a
newer event arrives.
"""

import ipaddress
import secrets
from dataclasses import dataclass, replace
from enum import Enum
from typing import List, Optional, Tuple

from ..errors import InvalidHost, InvalidEventId
from .event_id import EventId

DEFAULT_API_PORT = 64001
DEFAULT_WIREGUARD_PORT = 51820


class HostStatus(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


def generate_ipv6(
    global_id: Optional[int] = None,
    subnet_id: Optional[int] = None,
    iface_id: Optional[int] = None,
) -> ipaddress.IPv6Address:
    """
    Build a unique local IPv6 address (RFC 4193, section 3.2.1).

    global_id: 40 bits, default 0
    subnet_id: 16 bits, default 0
    iface_id:  64 bits, default random
    """
    global_id = global_id or 0
    subnet_id = subnet_id or 0
    if iface_id is None:
        iface_id = secrets.randbits(64)
    if not 0 <= global_id < (1 << 40):
        raise ValueError("global_id may only be 40 bits wide")
    if not 0 <= subnet_id < (1 << 16):
        raise ValueError("subnet_id may only be 16 bits wide")
    if not 0 <= iface_id < (1 << 64):
        raise ValueError("iface_id may only be 64 bits wide")
    value = (0xFC << 120) | (global_id << 80) | (subnet_id << 64) | iface_id
    return ipaddress.IPv6Address(value)


@dataclass(frozen=True)
class Endpoint:
    """A network address a host's WireGuard listener is reachable on."""
    ip: str
    port: int = DEFAULT_WIREGUARD_PORT
    interface: Optional[str] = None

    def __post_init__(self):
        try:
            ipaddress.ip_address(self.ip)
        except ValueError as e:
            raise InvalidHost(f"invalid endpoint address {self.ip!r}") from e
        if not isinstance(self.port, int) or not 0 < self.port < 65536:
            raise InvalidHost(f"invalid endpoint port {self.port!r}")

    @property
    def is_ipv6(self) -> bool:
        return ipaddress.ip_address(self.ip).version == 6

    @property
    def address(self) -> str:
        """`ip:port`, with brackets around IPv6 addresses."""
        if self.is_ipv6:
            return f"[{self.ip}]:{self.port}"
        return f"{self.ip}:{self.port}"

    def to_dict(self) -> dict:
        return {
            "interface": self.interface,
            "ip": self.ip,
            "port": self.port,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Endpoint":
        if not isinstance(data, dict) or "ip" not in data:
            raise InvalidHost(f"endpoint must carry an ip: {data!r}")
        try:
            port = int(data.get("port", DEFAULT_WIREGUARD_PORT))
        except (TypeError, ValueError) as e:
            raise InvalidHost(f"invalid endpoint port {data.get('port')!r}") from e
        return cls(ip=str(data["ip"]), port=port, interface=data.get("interface"))

    @classmethod
    def parse(cls, text: str, interface: Optional[str] = None) -> "Endpoint":
        """Parse `ip`, `ip:port` or `[ipv6]:port`."""
        text = text.strip()
        if text.startswith("["):
            host, _, rest = text[1:].partition("]")
            port = rest.lstrip(":") or DEFAULT_WIREGUARD_PORT
        elif text.count(":") == 1:
            host, port = text.split(":")
        else:
            host, port = text, DEFAULT_WIREGUARD_PORT
        try:
            port = int(port)
        except ValueError as e:
            raise InvalidHost(f"invalid endpoint {text!r}") from e
        return cls(ip=host, port=port, interface=interface)


@dataclass(frozen=True)
class Host:
    """A member of the mesh as asserted by one event."""
    id: str
    public_key: str
    endpoints: Tuple[Endpoint, ...] = ()
    status: HostStatus = HostStatus.CONNECTED
    last_event_id: Optional[EventId] = None
    name: Optional[str] = None
    wireguard_address: Optional[str] = None
    api_port: int = DEFAULT_API_PORT

    @property
    def is_connected(self) -> bool:
        return self.status == HostStatus.CONNECTED

    def with_status(self, status: HostStatus) -> "Host":
        return replace(self, status=status)

    def with_event(self, event_id: EventId) -> "Host":
        return replace(self, last_event_id=event_id)

    def same_facts(self, other: Optional["Host"]) -> bool:
        """True when both records describe the same peer configuration."""
        if other is None:
            return False
        return (
            self.status == other.status
            and self.endpoints == other.endpoints
            and self.public_key == other.public_key
            and self.wireguard_address == other.wireguard_address
            and self.api_port == other.api_port
        )

    def api_urls(self) -> List[str]:
        """Base URLs of this host's wgmesh API, one per endpoint."""
        urls = []
        for endpoint in self.endpoints:
            ip = f"[{endpoint.ip}]" if endpoint.is_ipv6 else endpoint.ip
            url = f"http://{ip}:{self.api_port}"
            if url not in urls:
                urls.append(url)
        return urls

    def to_dict(self) -> dict:
        """Serialize as a HostView."""
        return {
            "hostId": self.id,
            "publicKey": self.public_key,
            "endpoints": [e.to_dict() for e in self.endpoints],
            "status": self.status.value,
            "lastEventId": str(self.last_event_id) if self.last_event_id else None,
            "name": self.name,
            "wireguardAddress": self.wireguard_address,
            "apiPort": self.api_port,
        }

    @classmethod
    def from_dict(cls, data: dict, require_endpoints: bool = False) -> "Host":
        """Parse a HostView. Raises InvalidHost for missing or bad fields."""
        if not isinstance(data, dict):
            raise InvalidHost("host payload must be an object")
        host_id = data.get("hostId")
        public_key = data.get("publicKey")
        if not host_id:
            raise InvalidHost("hostId is required")
        if not public_key:
            raise InvalidHost("publicKey is required")

        endpoints = tuple(Endpoint.from_dict(e) for e in data.get("endpoints") or [])
        if require_endpoints and not endpoints:
            raise InvalidHost("at least one endpoint is required")

        try:
            status = HostStatus(data.get("status") or HostStatus.CONNECTED.value)
        except ValueError as e:
            raise InvalidHost(f"unknown status {data.get('status')!r}") from e

        last_event_id = None
        if data.get("lastEventId"):
            try:
                last_event_id = EventId.parse(data["lastEventId"])
            except InvalidEventId as e:
                raise InvalidHost(str(e)) from e

        try:
            api_port = int(data.get("apiPort") or DEFAULT_API_PORT)
        except (TypeError, ValueError) as e:
            raise InvalidHost(f"invalid apiPort {data.get('apiPort')!r}") from e

        return cls(
            id=str(host_id),
            public_key=str(public_key),
            endpoints=endpoints,
            status=status,
            last_event_id=last_event_id,
            name=data.get("name"),
            wireguard_address=data.get("wireguardAddress"),
            api_port=api_port,
        )
