import asyncio
from typing import Optional

from mbconsole.core.events import PushEvent
from .base import EventSource

_CLOSED = object()


class MockEventSource(EventSource):
    """In-process push channel fed by `feed`; used for tests and demos."""

    def __init__(self):
        self.connected = False
        self.rx_queue: asyncio.Queue = asyncio.Queue()

    async def connect(self):
        self.connected = True

    async def disconnect(self):
        self.connected = False
        await self.rx_queue.put(_CLOSED)

    def feed(self, event: PushEvent) -> None:
        self.rx_queue.put_nowait(event)

    def close(self) -> None:
        self.rx_queue.put_nowait(_CLOSED)

    async def receive(self) -> Optional[PushEvent]:
        item = await self.rx_queue.get()
        if item is _CLOSED:
            self.connected = False
            return None
        return item
