"""
HTTP API for wgmesh.

Provides endpoints for:
- The peer handshake (connect, discover, ping, disconnect)
- Event gossip and replay
- Local control of the daemon
"""

from .server import create_app, run_server, MeshServer
from .routes import router

__all__ = [
    "create_app",
    "run_server",
    "MeshServer",
    "router",
]
