"""
Exceptions raised by wgmesh.
"""


class MeshError(Exception):
    """Base class for all wgmesh errors."""


class InvalidEventId(MeshError, ValueError):
    """An event id could not be parsed."""


class InvalidEvent(MeshError, ValueError):
    """An event payload is missing fields or is malformed."""


class InvalidHost(MeshError, ValueError):
    """A host payload is missing its id, public key or endpoints."""


class JoinError(MeshError):
    """Joining the mesh through a bootstrap host failed."""


class PeerRequestError(MeshError):
    """A peer answered with a non-success status."""

    def __init__(self, url: str, status: int, message: str = ""):
        self.url = url
        self.status = status
        super().__init__(f"{url} returned {status}: {message}")


class PeerUnreachableError(MeshError):
    """A peer could not be reached at all."""


class WireGuardError(MeshError):
    """The WireGuard interface could not be reconciled."""
