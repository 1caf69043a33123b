"""
API routes for wgmesh.

Peer protocol: /connect, /discover, /ping, /disconnect, /events.
Local control: /local/connect, /local/disconnect (loopback clients only).
"""

import logging
from typing import List, Literal, Optional

from fastapi import APIRouter, Header, HTTPException, Request, Response
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .server import get_server
from ..errors import InvalidEvent, InvalidHost, JoinError
from ..mesh.events import Event
from ..mesh.host import DEFAULT_API_PORT, DEFAULT_WIREGUARD_PORT, Host
from ..mesh.node import MeshNode

logger = logging.getLogger(__name__)

router = APIRouter()

LOOPBACK_CLIENTS = {"127.0.0.1", "::1", "localhost"}


# ============ Request/Response Models ============

class CamelModel(BaseModel):
    """Models are camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class EndpointModel(CamelModel):
    interface: Optional[str] = None
    ip: str = Field(..., min_length=1)
    port: int = Field(default=DEFAULT_WIREGUARD_PORT, gt=0, lt=65536)


class HostView(CamelModel):
    """A host as seen by this node."""
    host_id: str = Field(..., min_length=1)
    public_key: str = Field(..., min_length=1)
    endpoints: List[EndpointModel] = Field(default_factory=list)
    status: Literal["connected", "disconnected"] = "connected"
    last_event_id: Optional[str] = None
    name: Optional[str] = None
    wireguard_address: Optional[str] = None
    api_port: int = Field(default=DEFAULT_API_PORT, gt=0, lt=65536)


class ConnectRequest(HostView):
    """A host asking to join the mesh through this node."""
    endpoints: List[EndpointModel] = Field(..., min_length=1)


class HostsResponse(CamelModel):
    hosts: List[HostView]


class DisconnectRequest(CamelModel):
    host_id: str = Field(..., min_length=1)


class EventView(CamelModel):
    """A membership event."""
    id: str = Field(..., min_length=1)
    kind: Literal["connect", "disconnect"]
    host: HostView
    origin_id: str = Field(..., min_length=1)


class EventsResponse(CamelModel):
    events: List[EventView]


class PingResponse(CamelModel):
    status: str = "pong"
    host_id: str


class LocalConnectRequest(CamelModel):
    bootstrap: str = Field(..., min_length=1, description="host:port or URL of a mesh member")


# ============ Helpers ============

def _node() -> MeshNode:
    server = get_server()
    if not server or not server.node:
        raise HTTPException(status_code=503, detail="Server not ready")
    return server.node


def _hosts_response(hosts: List[Host]) -> dict:
    return {"hosts": [h.to_dict() for h in hosts]}


def _require_loopback(request: Request) -> None:
    client = request.client.host if request.client else None
    if client not in LOOPBACK_CLIENTS:
        raise HTTPException(status_code=403, detail="Local control is only available on loopback")


# ============ Peer protocol ============

@router.get("/ping", response_model=PingResponse)
async def ping():
    """Liveness check. Never touches the registry."""
    return {"status": "pong", "hostId": _node().node_id}


@router.post("/connect", response_model=HostsResponse)
async def connect(request: ConnectRequest):
    """
    Register the caller and return every host this node knows.

    The caller is announced to all other connected peers.
    """
    node = _node()
    try:
        host = Host.from_dict(request.model_dump(by_alias=True), require_endpoints=True)
        hosts = await node.serve_connect(host)
    except InvalidHost as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _hosts_response(hosts)


@router.get("/discover", response_model=HostsResponse)
async def discover():
    """Known hosts, including this node. No side effects."""
    return _hosts_response(_node().known_hosts())


@router.post("/disconnect", status_code=204)
async def disconnect(
    request: DisconnectRequest,
    x_wgmesh_sender: Optional[str] = Header(default=None),
):
    """Mark a host disconnected. Unknown hosts are accepted as a no-op."""
    await _node().serve_disconnect(request.host_id, sender=x_wgmesh_sender)
    return Response(status_code=204)


@router.post("/events", status_code=204)
async def post_event(
    request: EventView,
    x_wgmesh_sender: Optional[str] = Header(default=None),
):
    """Accept one gossiped event. Duplicates and stale events are no-ops."""
    node = _node()
    try:
        event = Event.from_dict(request.model_dump(by_alias=True))
    except InvalidEvent as e:
        raise HTTPException(status_code=400, detail=str(e))
    await node.serve_event(event, sender=x_wgmesh_sender)
    return Response(status_code=204)


@router.get("/events", response_model=EventsResponse)
async def list_events():
    """The recent event window in acceptance order, oldest first."""
    return {"events": [e.to_dict() for e in _node().recent_events()]}


@router.get("/")
async def info():
    """Node status."""
    server = get_server()
    if not server:
        raise HTTPException(status_code=503, detail="Server not ready")
    return server.status()


# ============ Local control ============

@router.post("/local/connect", response_model=HostsResponse)
async def local_connect(request: LocalConnectRequest, http_request: Request):
    """Join the mesh through a bootstrap host."""
    _require_loopback(http_request)
    try:
        hosts = await _node().join(request.bootstrap)
    except JoinError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return _hosts_response(hosts)


@router.post("/local/disconnect")
async def local_disconnect(http_request: Request):
    """Leave the mesh."""
    _require_loopback(http_request)
    report = await _node().leave()
    return {
        "sent": report.sent,
        "failed": report.failed,
        "skipped": report.skipped,
    }
