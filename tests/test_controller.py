import asyncio
import logging

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from mbconsole.core.controller import ConsoleController
from mbconsole.core.data_types import ReadKind
from mbconsole.core.events import (
    ConfigSubmitted,
    LogPushed,
    ReadRequested,
    StatusPushed,
)
from mbconsole.core.models import ConnectionState, ConnectionStatus, DeviceConfig, LogEntry
from mbconsole.core.reconciler import ConsoleState
from mbconsole.database.logging import DBLogger
from mbconsole.errors import AuthorizationError, RequestError
from mbconsole.transports.api import ApiClient
from mbconsole.transports.mock import MockEventSource

TIMEOUT = 2.0


def read_holding(address="0", quantity=4):
    return ReadRequested(kind=ReadKind.HOLDING_REGISTERS, address=address, quantity=quantity)


async def started(api, push=None, **kw):
    controller = ConsoleController(api, push, **kw)
    await controller.start()
    await controller.wait_for(lambda s: s.config is not None or s.locked, TIMEOUT)
    await asyncio.wait_for(controller.wait_idle(), TIMEOUT)
    return controller


@pytest.mark.asyncio
async def test_start_fetches_everything(fake_api):
    controller = await started(fake_api)
    try:
        assert fake_api.calls == ["get_config", "get_stats", "version", "get_status"]
        state = controller.state
        assert state.config.unit_id == 1
        assert state.version == "1.2.0"
        assert state.stats.read_count == 2
        assert state.connection == ConnectionState.OFFLINE
    finally:
        await controller.stop()
    assert fake_api.closed


@pytest.mark.asyncio
async def test_offline_read_connects_then_reads(fake_api):
    controller = await started(fake_api)
    try:
        controller.dispatch(read_holding(address="0x10"))
        state = await controller.wait_for(lambda s: s.result is not None, TIMEOUT)
        await asyncio.wait_for(controller.wait_idle(), TIMEOUT)
        assert fake_api.calls[-2:] == ["connect", "read"]
        assert fake_api.requests[0].address == 16
        assert state.result.reg_values == (0, 1, 2, 3)
        assert controller.state.pending_read is None
        assert controller.state.connection == ConnectionState.ONLINE
    finally:
        await controller.stop()


@pytest.mark.asyncio
async def test_pending_read_fires_once_on_push(fake_api):
    fake_api.connect_status = ConnectionStatus(connecting=True)
    push = MockEventSource()
    controller = await started(fake_api, push)
    try:
        controller.dispatch(read_holding())
        await controller.wait_for(lambda s: s.connection == ConnectionState.CONNECTING, TIMEOUT)
        assert controller.state.pending_read is not None
        assert fake_api.requests == []

        push.feed(StatusPushed(ConnectionStatus(connected=True)))
        push.feed(StatusPushed(ConnectionStatus(connected=True)))
        await controller.wait_for(lambda s: s.result is not None, TIMEOUT)
        await asyncio.wait_for(controller.wait_idle(), TIMEOUT)
        assert len(fake_api.requests) == 1
    finally:
        await controller.stop()


@pytest.mark.asyncio
async def test_push_offline_drops_pending_read(fake_api):
    fake_api.connect_status = ConnectionStatus(connecting=True)
    push = MockEventSource()
    controller = await started(fake_api, push)
    try:
        controller.dispatch(read_holding())
        await controller.wait_for(lambda s: s.connection == ConnectionState.CONNECTING, TIMEOUT)
        push.feed(StatusPushed(ConnectionStatus(last_error="no route to host")))
        state = await controller.wait_for(lambda s: s.connection == ConnectionState.OFFLINE, TIMEOUT)
        assert state.pending_read is None
        assert state.last_error == "no route to host"
        push.feed(StatusPushed(ConnectionStatus(connected=True)))
        await controller.wait_for(lambda s: s.online, TIMEOUT)
        await asyncio.wait_for(controller.wait_idle(), TIMEOUT)
        assert fake_api.requests == []
    finally:
        await controller.stop()


@pytest.mark.asyncio
async def test_failed_connect_becomes_notice(fake_api):
    fake_api.failures["connect"] = RequestError("connection refused", status=502)
    controller = await started(fake_api)
    try:
        controller.dispatch(read_holding())
        state = await controller.wait_for(lambda s: bool(s.notice), TIMEOUT)
        assert state.notice == "connection refused"
        assert state.pending_read is None
        assert "read" not in fake_api.calls
    finally:
        await controller.stop()


@pytest.mark.asyncio
async def test_unauthorized_locks_console(fake_api):
    fake_api.failures["get_config"] = AuthorizationError("Unauthorized")
    controller = await started(fake_api)
    try:
        assert controller.state.locked
        controller.dispatch(read_holding())
        await asyncio.wait_for(controller.wait_idle(), TIMEOUT)
        assert "connect" not in fake_api.calls
    finally:
        await controller.stop()


@pytest.mark.asyncio
async def test_config_submit_reconnects_in_order(fake_api):
    fake_api.status = ConnectionStatus(connected=True)
    controller = await started(fake_api)
    try:
        assert controller.state.online
        controller.dispatch(ConfigSubmitted(DeviceConfig(unit_id=7)))
        await controller.wait_for(lambda s: s.config.unit_id == 7, TIMEOUT)
        await asyncio.wait_for(controller.wait_idle(), TIMEOUT)
        assert fake_api.calls[-3:] == ["save_config", "disconnect", "connect"]
        assert controller.state.online
    finally:
        await controller.stop()


@pytest.mark.asyncio
async def test_failure_stops_rest_of_batch(fake_api):
    fake_api.status = ConnectionStatus(connected=True)
    fake_api.failures["disconnect"] = RequestError("busy")
    controller = await started(fake_api)
    try:
        controller.dispatch(ConfigSubmitted(DeviceConfig(unit_id=7)))
        await controller.wait_for(lambda s: s.notice == "busy", TIMEOUT)
        await asyncio.wait_for(controller.wait_idle(), TIMEOUT)
        assert fake_api.calls[-2:] == ["save_config", "disconnect"]
    finally:
        await controller.stop()


@pytest.mark.asyncio
async def test_observer_errors_are_logged(fake_api, caplog):
    seen = []

    def broken(state, event):
        raise RuntimeError("observer bug")

    controller = ConsoleController(fake_api)
    controller.add_observer(broken)
    controller.add_observer(lambda state, event: seen.append(type(event).__name__))
    with caplog.at_level(logging.ERROR, logger="mbconsole.controller"):
        await controller.start()
        await controller.wait_for(lambda s: s.config is not None, TIMEOUT)
        await controller.stop()
    assert "Started" in seen
    assert "ConfigLoaded" in seen
    assert "observer failed" in caplog.text


@pytest.mark.asyncio
async def test_closed_channel_keeps_state(fake_api):
    fake_api.status = ConnectionStatus(connected=True)
    push = MockEventSource()
    controller = await started(fake_api, push)
    try:
        push.close()
        state = await controller.wait_for(lambda s: "closed" in s.notice, TIMEOUT)
        assert state.connection == ConnectionState.ONLINE
    finally:
        await controller.stop()


@pytest.mark.asyncio
async def test_initial_state_settings_respected(fake_api):
    controller = await started(fake_api, state=ConsoleState(auto_connect=False, columns=16))
    try:
        controller.dispatch(read_holding())
        state = await controller.wait_for(lambda s: bool(s.notice), TIMEOUT)
        assert state.notice == "Not connected"
        assert state.columns == 16
        assert "connect" not in fake_api.calls
    finally:
        await controller.stop()


@pytest.mark.asyncio
async def test_log_pushes_are_recorded(fake_api, tmp_path):
    db_path = tmp_path / "trace.db"
    push = MockEventSource()
    recorder = DBLogger(db_path=str(db_path))
    controller = await started(fake_api, push, db_logger=recorder)
    try:
        for i in range(3):
            push.feed(LogPushed(LogEntry(None, "tx", f"frame {i}")))
        await controller.wait_for(lambda s: len(s.logs) == 3, TIMEOUT)
        await asyncio.wait_for(controller.wait_idle(), TIMEOUT)
    finally:
        await controller.stop()
    rows = recorder.fetch_recent()
    assert [r[2] for r in rows] == ["frame 0", "frame 1", "frame 2"]
    assert {r[1] for r in rows} == {"tx"}


@pytest.mark.asyncio
async def test_non_object_response_becomes_notice():
    async def listing(request):
        return web.json_response([1])

    app = web.Application()
    app.router.add_get("/api/config", listing)
    server = TestServer(app)
    await server.start_server()
    controller = ConsoleController(ApiClient(f"http://{server.host}:{server.port}"))
    try:
        await controller.start()
        state = await controller.wait_for(lambda s: bool(s.notice), TIMEOUT)
        await asyncio.wait_for(controller.wait_idle(), TIMEOUT)
        assert state.notice == "Malformed response"
        assert state.config is None
    finally:
        await controller.stop()
        await server.close()


class BrokenSource(MockEventSource):
    async def connect(self):
        raise RuntimeError("socket exploded")


@pytest.mark.asyncio
async def test_stop_survives_failed_push_task(fake_api, caplog):
    controller = ConsoleController(fake_api, BrokenSource())
    with caplog.at_level(logging.ERROR, logger="mbconsole.controller"):
        await controller.start()
        await controller.wait_for(lambda s: s.config is not None, TIMEOUT)
        await controller.stop()
    assert fake_api.closed
    assert "push channel task failed" in caplog.text


@pytest.mark.asyncio
async def test_stop_closes_api_when_recorder_fails(fake_api, tmp_path):
    class FailingRecorder(DBLogger):
        async def stop(self):
            await super().stop()
            raise OSError("disk gone")

    controller = ConsoleController(fake_api, db_logger=FailingRecorder(db_path=str(tmp_path / "trace.db")))
    await controller.start()
    with pytest.raises(OSError):
        await controller.stop()
    assert fake_api.closed
