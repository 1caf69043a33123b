"""
Local address detection.

Used to build this node's own endpoint list when none is configured.
"""

import ipaddress
import logging
import re
import socket
import subprocess
from dataclasses import dataclass
from typing import List, Optional

from ..mesh.host import DEFAULT_WIREGUARD_PORT, Endpoint

logger = logging.getLogger(__name__)

IFACE_NAME_RE = re.compile(r"^\d+: ([0-9a-zA-Z\-_.@]+):")
IFACE_ADDR_RE = re.compile(r"inet6? ([0-9a-fA-F.:]+)/\d+")


@dataclass
class NetworkInterface:
    """An address configured on a local interface."""
    name: str
    ip: str
    priority: int  # Lower is better (1=route, 2=ethernet/wifi, 3=other)

    @property
    def is_private(self) -> bool:
        return ipaddress.ip_address(self.ip).is_private


def parse_ip_addr(output: str) -> List[NetworkInterface]:
    """Parse `ip addr show` output into usable interface addresses."""
    interfaces = []
    current_iface = None
    for line in output.splitlines():
        name_match = IFACE_NAME_RE.match(line)
        if name_match:
            current_iface = name_match.group(1).split("@")[0]
            continue
        addr_match = IFACE_ADDR_RE.search(line)
        if not addr_match or "scope link" in line:
            continue
        ip = addr_match.group(1)
        if ipaddress.ip_address(ip).is_loopback:
            continue
        priority = 2 if current_iface and current_iface.startswith(("eth", "en", "wl")) else 3
        interfaces.append(NetworkInterface(
            name=current_iface or "unknown",
            ip=ip,
            priority=priority
        ))
    return interfaces


def get_route_ip() -> Optional[str]:
    """IP of the interface holding the default route."""
    try:
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        s.settimeout(0.1)
        # Nothing is sent; connect() only selects a route.
        s.connect(("8.8.8.8", 80))
        route_ip = s.getsockname()[0]
        s.close()
    except OSError:
        return None
    if route_ip.startswith("127."):
        return None
    return route_ip


def get_local_ips() -> List[NetworkInterface]:
    """All local interface addresses, best first."""
    interfaces: List[NetworkInterface] = []
    try:
        output = subprocess.check_output(["ip", "addr", "show"], text=True, stderr=subprocess.DEVNULL)
        interfaces = parse_ip_addr(output)
    except (OSError, subprocess.CalledProcessError) as e:
        logger.debug(f"ip addr parsing failed: {e}")

    route_ip = get_route_ip()
    if route_ip:
        existing = [i for i in interfaces if i.ip == route_ip]
        if existing:
            existing[0].priority = 1
        else:
            interfaces.append(NetworkInterface(name="route", ip=route_ip, priority=1))

    interfaces.sort(key=lambda x: (x.priority, not x.is_private))
    return interfaces


def local_endpoints(port: int = DEFAULT_WIREGUARD_PORT, exclude: Optional[str] = None) -> List[Endpoint]:
    """Endpoints for this host, skipping the mesh interface itself."""
    return [
        Endpoint(ip=i.ip, port=port, interface=i.name)
        for i in get_local_ips()
        if i.name != exclude
    ]
