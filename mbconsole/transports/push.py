import asyncio
import json
import logging
from typing import Optional
from urllib.parse import urlencode, urlparse, urlunparse

import aiohttp

from mbconsole.core.events import PushEvent, push_event_from_message
from mbconsole.core.session_gate import SessionGate
from mbconsole.errors import AuthorizationError, RequestError
from .base import EventSource

logger = logging.getLogger("mbconsole.transports.push")


def push_url(base_url: str, token: Optional[str] = None) -> str:
    """Derive the WebSocket URL (`/ws`) from the service base URL."""
    parsed = urlparse(base_url)
    scheme = "wss" if parsed.scheme == "https" else "ws"
    query = urlencode({"token": token}) if token else ""
    path = parsed.path.rstrip("/") + "/ws"
    return urlunparse((scheme, parsed.netloc, path, "", query, ""))


class PushChannel(EventSource):
    """WebSocket push channel delivering `{type, payload}` messages."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        *,
        gate: Optional[SessionGate] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.url = push_url(base_url, token)
        self.gate = gate or SessionGate()
        self._session = session
        self._owns_session = session is None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    async def connect(self):
        self.gate.check()
        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        logger.debug("opening push channel %s", self.url)
        try:
            self._ws = await self._session.ws_connect(self.url)
        except aiohttp.WSServerHandshakeError as exc:
            if exc.status == 401:
                self.gate.lock()
                raise AuthorizationError("Unauthorized") from exc
            raise RequestError(f"Push channel rejected: {exc.status}", status=exc.status) from exc
        except aiohttp.ClientError as exc:
            raise RequestError(str(exc) or "Push channel unavailable") from exc
        except asyncio.TimeoutError as exc:
            raise RequestError("Push channel timed out") from exc

    async def disconnect(self):
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    async def receive(self) -> Optional[PushEvent]:
        if self._ws is None:
            return None
        while True:
            msg = await self._ws.receive()
            if msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED):
                logger.info("push channel closed")
                return None
            if msg.type == aiohttp.WSMsgType.ERROR:
                logger.warning("push channel error: %s", self._ws.exception())
                return None
            if msg.type != aiohttp.WSMsgType.TEXT:
                continue
            try:
                message = json.loads(msg.data)
                event = push_event_from_message(message)
            except (ValueError, KeyError, TypeError, AttributeError):
                logger.warning("dropping malformed push message: %.200s", msg.data)
                continue
            if event is None:
                logger.warning("skipping push message of unknown type %r", message.get("type"))
                continue
            return event
