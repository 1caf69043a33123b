"""
WireGuard peer-set reconciliation.

The gossip core never programs tunnels itself. After every registry change
it hands the desired peer set (connected hosts other than itself) to a
`PeerSetApplier`, which brings the local interface in line. Applying the
same set twice is a no-op.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Set

from .errors import WireGuardError
from .mesh.host import Host

logger = logging.getLogger(__name__)

PERSISTENT_KEEPALIVE_SEC = 25


class PeerSetApplier(ABC):
    """Reconciles a WireGuard interface against a desired peer set."""

    @abstractmethod
    async def apply_peer_set(self, peers: List[Host]) -> None:
        """Make the interface's peers exactly `peers`. Must be idempotent."""


class DryRunApplier(PeerSetApplier):
    """Logs the desired peer set instead of touching an interface."""

    def __init__(self):
        self.last_peers: Optional[List[Host]] = None
        self.apply_count = 0

    async def apply_peer_set(self, peers: List[Host]) -> None:
        self.last_peers = list(peers)
        self.apply_count += 1
        logger.info(
            f"Desired peer set ({len(peers)}): "
            + ", ".join(p.name or p.id for p in peers)
        )


class WireGuardInterface(PeerSetApplier):
    """
    Drives a kernel or userspace WireGuard interface through the `wg` tool.

    Peers not in the desired set are removed; every desired peer is
    (re)written with its first endpoint and its tunnel address as
    allowed-ips.
    """

    def __init__(self, interface: str, wg_binary: str = "wg"):
        self.interface = interface
        self.wg_binary = wg_binary

    async def _run(self, *args: str) -> str:
        try:
            proc = await asyncio.create_subprocess_exec(
                self.wg_binary,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise WireGuardError(f"{self.wg_binary} not found") from e

        stdout, stderr = await proc.communicate()
        if proc.returncode != 0:
            raise WireGuardError(
                f"{self.wg_binary} {' '.join(args)} failed: {stderr.decode().strip()}"
            )
        return stdout.decode()

    async def current_peers(self) -> Set[str]:
        """Public keys currently configured on the interface."""
        output = await self._run("show", self.interface, "peers")
        return {line.strip() for line in output.splitlines() if line.strip()}

    def peer_args(self, host: Host) -> List[str]:
        args = ["set", self.interface, "peer", host.public_key]
        if host.endpoints:
            args += ["endpoint", host.endpoints[0].address]
        if host.wireguard_address:
            args += ["allowed-ips", host.wireguard_address]
        args += ["persistent-keepalive", str(PERSISTENT_KEEPALIVE_SEC)]
        return args

    async def apply_peer_set(self, peers: List[Host]) -> None:
        desired = {p.public_key: p for p in peers}
        current = await self.current_peers()

        for public_key in sorted(current - desired.keys()):
            await self._run("set", self.interface, "peer", public_key, "remove")
            logger.info(f"Removed WireGuard peer {public_key} from {self.interface}")

        for public_key, host in desired.items():
            await self._run(*self.peer_args(host))
            if public_key not in current:
                logger.info(f"Added WireGuard peer {host.name or host.id} to {self.interface}")


def create_applier(interface: Optional[str]) -> PeerSetApplier:
    """WireGuard interface if one is configured, otherwise a dry run."""
    if interface:
        return WireGuardInterface(interface)
    logger.warning("No WireGuard interface configured, running in dry-run mode")
    return DryRunApplier()
