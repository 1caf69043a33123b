"""
wgmesh - self-organizing WireGuard mesh networks

Every host runs a small daemon. Membership changes travel between daemons
as gossip events and each daemon keeps its WireGuard peers in line with
what it has learned.

Example:
    >>> from wgmesh import MeshNode, generate_node_identity
    >>> node = MeshNode(generate_node_identity("alpha"))
    >>> await node.start()
    >>> await node.join("10.0.0.1:64001")
"""

__version__ = "0.1.0"

from .config import Config, get_config
from .auth.identity import NodeIdentity, generate_node_identity
from .mesh.node import MeshNode, NodeState

__all__ = [
    "__version__",
    "Config",
    "get_config",
    "NodeIdentity",
    "generate_node_identity",
    "MeshNode",
    "NodeState",
]
