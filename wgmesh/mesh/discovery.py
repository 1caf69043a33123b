"""
mDNS/DNS-SD discovery of wgmesh daemons on the local network.

Lets a new host find a bootstrap daemon without being told an address.
"""

import asyncio
import logging
import socket
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from zeroconf import ServiceInfo, ServiceStateChange, Zeroconf
from zeroconf.asyncio import AsyncServiceBrowser, AsyncServiceInfo, AsyncZeroconf

logger = logging.getLogger(__name__)

# Service type for wgmesh daemons
SERVICE_TYPE = "_wgmesh._tcp.local."
SERVICE_NAME_PREFIX = "wgmesh-"


@dataclass
class DiscoveredPeer:
    """A daemon found on the local network."""
    host_id: str
    name: str
    host: str
    port: int

    @property
    def address(self) -> str:
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


class MeshDiscovery:
    """
    mDNS-based daemon discovery.

    Advertises this daemon (when `port` is non-zero) and browses for others.

    Usage:
        discovery = MeshDiscovery(host_id="abc", port=64001)
        await discovery.start()
        peers = await discovery.find_bootstrap(timeout=3.0)
        await discovery.stop()
    """

    def __init__(
        self,
        host_id: str,
        port: int = 0,
        name: Optional[str] = None,
    ):
        self.host_id = host_id
        self.port = port
        self.name = name or f"{SERVICE_NAME_PREFIX}{host_id[:8]}"

        self._zeroconf: Optional[AsyncZeroconf] = None
        self._browser: Optional[AsyncServiceBrowser] = None
        self._service_info: Optional[ServiceInfo] = None
        self._peers: Dict[str, DiscoveredPeer] = {}
        self._found = asyncio.Event()
        self._tasks: set = set()

        # Callbacks
        self.on_peer_found: Optional[Callable[[DiscoveredPeer], None]] = None
        self.on_peer_lost: Optional[Callable[[str], None]] = None

    def _service_name(self) -> str:
        # DNS-SD instance names must not contain dots
        safe = "".join(c if c.isalnum() or c == "-" else "-" for c in self.name)
        return f"{safe}.{SERVICE_TYPE}"

    async def start(self) -> bool:
        """
        Start advertising and browsing.

        Returns:
            True if started successfully, False if mDNS is unavailable
        """
        try:
            self._zeroconf = AsyncZeroconf()

            if self.port:
                hostname = socket.gethostname()
                self._service_info = ServiceInfo(
                    SERVICE_TYPE,
                    self._service_name(),
                    port=self.port,
                    properties={b"host_id": self.host_id.encode()},
                    server=f"{hostname}.local.",
                )
                await self._zeroconf.async_register_service(self._service_info)
                logger.info(f"Advertising as {self.name} on port {self.port}")

            self._browser = AsyncServiceBrowser(
                self._zeroconf.zeroconf,
                SERVICE_TYPE,
                handlers=[self._on_service_state_change]
            )
            logger.info("mDNS discovery started")
            return True

        except Exception as e:
            logger.error(f"Failed to start mDNS discovery: {e}")
            return False

    async def stop(self) -> None:
        """Stop advertising and browsing."""
        if self._browser:
            await self._browser.async_cancel()
            self._browser = None

        if self._zeroconf:
            if self._service_info:
                await self._zeroconf.async_unregister_service(self._service_info)
            await self._zeroconf.async_close()
            self._zeroconf = None

        logger.info("mDNS discovery stopped")

    def _on_service_state_change(
        self,
        zeroconf: Zeroconf,
        service_type: str,
        name: str,
        state_change: ServiceStateChange
    ) -> None:
        if state_change == ServiceStateChange.Added:
            task = asyncio.ensure_future(self._handle_service_added(zeroconf, service_type, name))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        elif state_change == ServiceStateChange.Removed:
            self._handle_service_removed(name)

    async def _handle_service_added(self, zeroconf: Zeroconf, service_type: str, name: str) -> None:
        info = AsyncServiceInfo(service_type, name)
        if not await info.async_request(zeroconf, 3000):
            return

        host_id = (info.properties.get(b"host_id") or b"").decode()
        if host_id == self.host_id:
            return

        addresses = info.parsed_addresses()
        host = addresses[0] if addresses else (info.server or "").rstrip(".")
        if not host:
            return

        peer = DiscoveredPeer(
            host_id=host_id,
            name=name.replace(f".{SERVICE_TYPE}", ""),
            host=host,
            port=info.port,
        )
        self._peers[name] = peer
        self._found.set()
        logger.info(f"Discovered daemon {peer.name} at {peer.address}")

        if self.on_peer_found:
            self.on_peer_found(peer)

    def _handle_service_removed(self, name: str) -> None:
        peer = self._peers.pop(name, None)
        if peer:
            logger.info(f"Daemon left: {peer.name}")
            if self.on_peer_lost:
                self.on_peer_lost(peer.host_id)

    async def find_bootstrap(self, timeout: float = 3.0) -> List[DiscoveredPeer]:
        """Wait up to `timeout` seconds for at least one daemon to appear."""
        try:
            await asyncio.wait_for(self._found.wait(), timeout)
        except asyncio.TimeoutError:
            pass
        return self.peers

    @property
    def peers(self) -> List[DiscoveredPeer]:
        return list(self._peers.values())
