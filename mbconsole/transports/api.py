"""HTTP client for the register access service.

Every call goes through `ApiClient._request`, which enforces the session
gate, attaches the access token and maps failures onto the error
taxonomy: 401 locks the gate and raises AuthorizationError, any other
non-2xx or transport failure raises RequestError.
"""
import asyncio
import logging
from typing import Any, List, Optional, Tuple

import aiohttp

from mbconsole.core.models import ConnectionStatus, DeviceConfig, ReadRequest, ReadResult, Stats
from mbconsole.core.session_gate import SessionGate
from mbconsole.errors import AuthorizationError, RequestError

logger = logging.getLogger("mbconsole.transports.api")

TOKEN_HEADER = "X-GMM-Token"


def create_session(timeout_seconds: float = 5.0) -> aiohttp.ClientSession:
    """Create an aiohttp session for talking to the service."""
    connector = aiohttp.TCPConnector(
        limit_per_host=4,
        enable_cleanup_closed=True,
    )
    return aiohttp.ClientSession(
        connector=connector,
        timeout=aiohttp.ClientTimeout(total=timeout_seconds),
    )


def _error_message(data: Any, fallback: Optional[str]) -> str:
    if isinstance(data, dict) and isinstance(data.get("error"), str) and data["error"]:
        return data["error"]
    return fallback or "Request failed"


class ApiClient:
    """Request/response calls against the service's `/api` routes.

    The session is created lazily on first use unless one is passed in;
    a passed-in session is not closed by `close()`.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        *,
        gate: Optional[SessionGate] = None,
        session: Optional[aiohttp.ClientSession] = None,
        timeout_s: float = 5.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token or None
        self.gate = gate or SessionGate()
        self.timeout_s = timeout_s
        self._session = session
        self._owns_session = session is None

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = create_session(self.timeout_s)
            self._owns_session = True
        return self._session

    async def close(self):
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def headers(self) -> dict:
        if self.token:
            return {TOKEN_HEADER: self.token}
        return {}

    async def _request(self, method: str, path: str, body: Any = None) -> Any:
        self.gate.check()
        url = f"{self.base_url}{path}"
        logger.debug("%s %s body=%s", method, url, body)
        try:
            async with self.session.request(method, url, json=body, headers=self.headers()) as resp:
                if resp.status == 401:
                    self.gate.lock()
                    raise AuthorizationError("Unauthorized")
                try:
                    data = await resp.json(content_type=None)
                except ValueError:
                    data = None
                if data is None:
                    data = {}
                if resp.status >= 400:
                    message = _error_message(data, resp.reason)
                    logger.debug("%s %s failed: %s %s", method, url, resp.status, message)
                    raise RequestError(message, status=resp.status, payload=data)
                if not isinstance(data, dict):
                    logger.warning("%s %s returned a non-object body: %.200r", method, url, data)
                    raise RequestError("Malformed response", status=resp.status, payload=data)
                return data
        except aiohttp.ClientError as exc:
            raise RequestError(str(exc) or "Request failed") from exc
        except asyncio.TimeoutError as exc:
            raise RequestError("Request timed out") from exc

    async def get_config(self) -> Tuple[DeviceConfig, str]:
        data = await self._request("GET", "/api/config")
        return DeviceConfig.from_dict(data.get("config") or {}), str(data.get("invocation", ""))

    async def save_config(self, config: DeviceConfig) -> Tuple[DeviceConfig, str]:
        data = await self._request("POST", "/api/config", config.to_dict())
        return DeviceConfig.from_dict(data.get("config") or {}), str(data.get("invocation", ""))

    async def get_stats(self) -> Stats:
        return Stats.from_dict(await self._request("GET", "/api/stats"))

    async def get_status(self) -> ConnectionStatus:
        return ConnectionStatus.from_dict(await self._request("GET", "/api/status"))

    async def connect(self) -> ConnectionStatus:
        return ConnectionStatus.from_dict(await self._request("POST", "/api/connect"))

    async def disconnect(self) -> ConnectionStatus:
        return ConnectionStatus.from_dict(await self._request("POST", "/api/disconnect"))

    async def read(self, request: ReadRequest) -> ReadResult:
        """Issue a read.

        The service answers failed reads with a 400 whose body is still a
        read result carrying `errorMessage`; that result is returned rather
        than raised.
        """
        try:
            data = await self._request("POST", "/api/read", request.to_dict())
        except RequestError as exc:
            if ReadResult.looks_like(exc.payload):
                return ReadResult.from_dict(exc.payload)
            raise
        return ReadResult.from_dict(data)

    async def serial_devices(self) -> List[str]:
        data = await self._request("GET", "/api/serial-devices")
        return [str(d) for d in (data.get("devices") or [])]

    async def version(self) -> str:
        data = await self._request("GET", "/api/version")
        return str(data.get("version", ""))
