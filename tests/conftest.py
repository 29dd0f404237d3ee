from typing import Dict, List

import pytest

from mbconsole.core.data_types import is_bit_kind
from mbconsole.core.models import ConnectionStatus, DeviceConfig, ReadRequest, ReadResult, Stats


class FakeApi:
    """Stands in for ApiClient; records calls and replays canned answers."""

    def __init__(self):
        self.config = DeviceConfig(unit_id=1)
        self.status = ConnectionStatus()
        self.connect_status = ConnectionStatus(connected=True)
        self.calls: List[str] = []
        self.requests: List[ReadRequest] = []
        self.failures: Dict[str, Exception] = {}
        self.read_error = None
        self.closed = False

    async def _call(self, name):
        self.calls.append(name)
        if name in self.failures:
            raise self.failures[name]

    async def get_config(self):
        await self._call("get_config")
        return self.config, "gmm -tcp 127.0.0.1:502"

    async def save_config(self, config):
        await self._call("save_config")
        self.config = config
        return config, "gmm -tcp 127.0.0.1:502"

    async def get_stats(self):
        await self._call("get_stats")
        return Stats(read_count=2, error_count=0, last_latency_ms=5)

    async def get_status(self):
        await self._call("get_status")
        return self.status

    async def connect(self):
        await self._call("connect")
        self.status = self.connect_status
        return self.status

    async def disconnect(self):
        await self._call("disconnect")
        self.status = ConnectionStatus()
        return self.status

    async def read(self, request):
        await self._call("read")
        self.requests.append(request)
        if self.read_error:
            return ReadResult(
                kind=request.kind,
                address=request.address,
                quantity=request.quantity,
                error_message=self.read_error,
            )
        if is_bit_kind(request.kind):
            return ReadResult(
                kind=request.kind,
                address=request.address,
                quantity=request.quantity,
                bool_values=tuple(i % 2 == 0 for i in range(request.quantity)),
            )
        return ReadResult(
            kind=request.kind,
            address=request.address,
            quantity=request.quantity,
            reg_values=tuple(range(request.quantity)),
            latency_ms=4,
        )

    async def serial_devices(self):
        await self._call("serial_devices")
        return ["/dev/ttyUSB0"]

    async def version(self):
        await self._call("version")
        return "1.2.0"

    async def close(self):
        self.closed = True

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()


@pytest.fixture
def fake_api():
    return FakeApi()
