"""
FastAPI server for wgmesh.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI
import uvicorn

from .. import __version__
from ..auth.identity import NodeIdentity
from ..config import Config, get_config
from ..errors import JoinError
from ..mesh.client import MeshClient
from ..mesh.discovery import MeshDiscovery
from ..mesh.gossip import GossipService
from ..mesh.host import Endpoint
from ..mesh.node import MeshNode
from ..network.ip_detect import local_endpoints
from ..wireguard import PeerSetApplier, create_applier

logger = logging.getLogger(__name__)

# Global server instance
_server: Optional["MeshServer"] = None


def get_server() -> Optional["MeshServer"]:
    """Get the global server instance."""
    return _server


def set_server(server: Optional["MeshServer"]) -> None:
    """Set the global server instance."""
    global _server
    _server = server


class MeshServer:
    """
    wgmesh daemon.

    Manages all components:
    - Node identity and mesh node
    - WireGuard reconciliation
    - Gossip background tasks
    - mDNS advertisement
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        node: Optional[MeshNode] = None,
        wireguard: Optional[PeerSetApplier] = None,
    ):
        self.config = config or get_config()
        self.node = node
        self.wireguard = wireguard
        self.gossip: Optional[GossipService] = None
        self.discovery: Optional[MeshDiscovery] = None
        self._running = False
        self._bootstrap_task: Optional[asyncio.Task] = None

    def _endpoints(self, identity: NodeIdentity) -> List[Endpoint]:
        if identity.endpoints:
            return identity.endpoints
        detected = local_endpoints(exclude=self.config.wireguard_interface)
        logger.info(f"Detected endpoints: {', '.join(e.address for e in detected) or 'none'}")
        return detected

    async def initialize(self) -> None:
        """Build the node from the stored identity unless one was injected."""
        if self.node:
            return

        if not self.config.identity_path.exists():
            raise RuntimeError("Node not initialized. Run 'wgmesh init' first.")
        identity = NodeIdentity.load(self.config.identity_path)
        logger.info(f"Loaded identity: {identity.name} ({identity.host_id})")

        self.node = MeshNode(
            identity=identity,
            wireguard=self.wireguard or create_applier(self.config.wireguard_interface),
            client=MeshClient(sender_id=identity.host_id, timeout=self.config.gossip.peer_timeout),
            gossip_config=self.config.gossip,
            endpoints=self._endpoints(identity),
            api_port=self.config.server.port,
        )

    async def start(self) -> None:
        """Start the node and all background services."""
        await self.initialize()
        await self.node.start()

        gossip = self.config.gossip
        self.gossip = GossipService(
            self.node,
            self.node.client,
            anti_entropy_interval=gossip.anti_entropy_interval,
            ping_interval=gossip.ping_interval,
            prune_interval=gossip.prune_interval,
            peer_timeout=gossip.peer_timeout,
        )
        await self.gossip.start()

        if self.config.mdns_enabled:
            self.discovery = MeshDiscovery(
                host_id=self.node.node_id,
                port=self.config.server.port,
                name=self.node.name,
            )
            await self.discovery.start()

        if self.config.bootstrap:
            self._bootstrap_task = asyncio.create_task(self._join_bootstrap())

        self._running = True
        logger.info(
            f"wgmesh server running at http://{self.config.server.host}:{self.config.server.port}"
        )

    async def _join_bootstrap(self) -> None:
        """Try configured bootstrap hosts in order until one accepts us."""
        # Let uvicorn start accepting before peers call back
        await asyncio.sleep(0.5)
        for bootstrap in self.config.bootstrap:
            try:
                await self.node.join(bootstrap)
                return
            except JoinError as e:
                logger.warning(str(e))
        logger.error("Could not join through any configured bootstrap host")

    async def stop(self) -> None:
        """Stop the server and all services."""
        logger.info("Stopping wgmesh server...")
        self._running = False

        if self._bootstrap_task:
            self._bootstrap_task.cancel()
            try:
                await self._bootstrap_task
            except asyncio.CancelledError:
                pass

        if self.gossip:
            await self.gossip.stop()

        if self.discovery:
            await self.discovery.stop()

        if self.node:
            await self.node.stop()

        logger.info("wgmesh server stopped")

    def status(self) -> dict:
        """Get server status."""
        status = {
            "name": "wgmesh",
            "version": __version__,
            "running": self._running,
        }
        if self.node:
            status.update(self.node.status())
        if self.gossip:
            status["background"] = self.gossip.stats()
        return status


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    server = getattr(app.state, "mesh_server", None) or MeshServer(get_config())
    set_server(server)

    try:
        await server.start()
    except Exception as e:
        logger.error(f"Failed to start server: {e}")
        raise

    yield

    await server.stop()
    set_server(None)


def create_app(config: Optional[Config] = None, server: Optional[MeshServer] = None) -> FastAPI:
    """Create the FastAPI application."""
    from .routes import router

    if config:
        from ..config import set_config
        set_config(config)

    app = FastAPI(
        title="wgmesh",
        description="Gossip-driven WireGuard mesh membership",
        version=__version__,
        lifespan=lifespan
    )
    app.state.mesh_server = server

    app.include_router(router)

    # Health check
    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


def run_server(config: Optional[Config] = None):
    """Run the server with uvicorn."""
    config = config or get_config()
    app = create_app(config)
    uvicorn.run(
        app,
        host=config.server.host,
        port=config.server.port,
        log_level="info"
    )
