from abc import ABC, abstractmethod
from typing import AsyncIterator, Optional

from mbconsole.core.events import PushEvent


class EventSource(ABC):
    """A standing channel that delivers push events from the service."""

    @abstractmethod
    async def connect(self):
        pass

    @abstractmethod
    async def disconnect(self):
        pass

    @abstractmethod
    async def receive(self) -> Optional[PushEvent]:
        """Return the next event, or None once the channel has closed."""
        pass

    async def events(self) -> AsyncIterator[PushEvent]:
        while True:
            event = await self.receive()
            if event is None:
                return
            yield event
