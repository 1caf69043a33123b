"""
Node identity and WireGuard keys.
"""

from .identity import KeyPair, NodeIdentity, generate_node_identity, load_node_identity

__all__ = [
    "KeyPair",
    "NodeIdentity",
    "generate_node_identity",
    "load_node_identity",
]
