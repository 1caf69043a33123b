"""
HTTP client for talking to other wgmesh daemons.

Wraps the peer protocol (`/connect`, `/discover`, `/ping`, `/disconnect`,
`/events`) and the local control endpoints used by the CLI.
"""

import asyncio
import logging
from typing import List, Optional

import aiohttp

from ..errors import PeerRequestError, PeerUnreachableError
from .events import Event
from .host import DEFAULT_API_PORT, Host

logger = logging.getLogger(__name__)

SENDER_HEADER = "X-Wgmesh-Sender"
DEFAULT_TIMEOUT_SEC = 10.0


def normalize_url(endpoint: str, default_port: int = DEFAULT_API_PORT) -> str:
    """Accept `host`, `host:port` or a full URL."""
    endpoint = endpoint.strip().rstrip("/")
    if endpoint.startswith("http://") or endpoint.startswith("https://"):
        return endpoint
    if endpoint.startswith("[") or endpoint.count(":") == 1:
        return f"http://{endpoint}"
    if endpoint.count(":") > 1:
        return f"http://[{endpoint}]:{default_port}"
    return f"http://{endpoint}:{default_port}"


class MeshClient:
    """
    aiohttp client for the wgmesh peer protocol.

    One session is shared by every request; `timeout` bounds each request
    unless a call passes its own.
    """

    def __init__(self, sender_id: Optional[str] = None, timeout: float = DEFAULT_TIMEOUT_SEC):
        self.sender_id = sender_id
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "MeshClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def _request(
        self,
        method: str,
        url: str,
        path: str,
        json: Optional[dict] = None,
        timeout: Optional[float] = None,
    ):
        session = await self._get_session()
        headers = {SENDER_HEADER: self.sender_id} if self.sender_id else {}
        full_url = f"{normalize_url(url)}{path}"
        kwargs = {"json": json, "headers": headers}
        if timeout:
            kwargs["timeout"] = aiohttp.ClientTimeout(total=timeout)
        try:
            async with session.request(method, full_url, **kwargs) as resp:
                if resp.status >= 400:
                    raise PeerRequestError(full_url, resp.status, await resp.text())
                if resp.status == 204 or resp.content_type != "application/json":
                    return None
                return await resp.json()
        except aiohttp.ClientError as e:
            raise PeerUnreachableError(f"{full_url}: {e}") from e
        except asyncio.TimeoutError as e:
            raise PeerUnreachableError(f"{full_url}: timed out") from e

    # ============ Peer protocol ============

    async def connect(self, url: str, host: Host) -> List[Host]:
        """POST /connect with our host payload; returns the peer's known hosts."""
        data = await self._request("POST", url, "/connect", json=host.to_dict())
        return [Host.from_dict(h) for h in (data or {}).get("hosts", [])]

    async def discover(self, url: str, timeout: Optional[float] = None) -> List[Host]:
        data = await self._request("GET", url, "/discover", timeout=timeout)
        return [Host.from_dict(h) for h in (data or {}).get("hosts", [])]

    async def ping(self, url: str, timeout: Optional[float] = None) -> dict:
        return await self._request("GET", url, "/ping", timeout=timeout) or {}

    async def disconnect(self, url: str, host_id: str) -> None:
        await self._request("POST", url, "/disconnect", json={"hostId": host_id})

    async def post_event(self, url: str, event: Event, timeout: Optional[float] = None) -> None:
        await self._request("POST", url, "/events", json=event.to_dict(), timeout=timeout)

    async def get_events(self, url: str, timeout: Optional[float] = None) -> List[dict]:
        """GET /events. Returns the raw EventViews, oldest first; callers parse them."""
        data = await self._request("GET", url, "/events", timeout=timeout)
        return list((data or {}).get("events", []))

    # ============ Local control ============

    async def status(self, url: str) -> dict:
        return await self._request("GET", url, "/") or {}

    async def local_join(self, url: str, bootstrap: str) -> dict:
        return await self._request("POST", url, "/local/connect", json={"bootstrap": bootstrap}) or {}

    async def local_leave(self, url: str) -> dict:
        return await self._request("POST", url, "/local/disconnect") or {}
