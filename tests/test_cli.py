import pytest
from rich.console import Console
from typer.testing import CliRunner

import main_cli
from mbconsole.core.models import ConnectionStatus
from mbconsole.errors import AuthorizationError
from mbconsole.utils.decoding import DecoderType


runner = CliRunner()


@pytest.fixture
def cli(monkeypatch, fake_api):
    monkeypatch.setattr(main_cli, "console", Console(width=200))
    monkeypatch.setattr(main_cli, "_make_api", lambda settings, gate=None: fake_api)
    monkeypatch.setattr(main_cli, "_make_push", lambda settings, gate=None: None)
    monkeypatch.delenv("MBCONSOLE_URL", raising=False)
    monkeypatch.delenv("MBCONSOLE_TOKEN", raising=False)
    return fake_api


def invoke(*args):
    return runner.invoke(main_cli.app, list(args))


def test_version(cli):
    result = invoke("version")
    assert result.exit_code == 0
    assert "mbconsole" in result.stdout
    assert "service 1.2.0" in result.stdout


def test_status(cli):
    result = invoke("status")
    assert result.exit_code == 0
    assert "offline" in result.stdout


def test_devices(cli):
    result = invoke("devices")
    assert result.exit_code == 0
    assert "/dev/ttyUSB0" in result.stdout


def test_config_json(cli):
    result = invoke("config", "--json")
    assert result.exit_code == 0
    assert '"unitId": 1' in result.stdout


def test_read_connects_and_renders(cli):
    result = invoke("read", "0", "-n", "4")
    assert result.exit_code == 0, result.stdout
    assert cli.calls[-2:] == ["connect", "read"]
    assert "Holding Registers @ 0 x4 (4 ms)" in result.stdout


def test_read_coils(cli):
    cli.status = ConnectionStatus(connected=True)
    result = invoke("read", "0x10", "--kind", "coil", "-n", "3")
    assert result.exit_code == 0, result.stdout
    assert "connect" not in cli.calls
    assert cli.requests[0].address == 16
    assert "Coils @ 16 x3" in result.stdout


def test_read_without_auto_connect(cli):
    result = invoke("read", "0", "--no-auto-connect")
    assert result.exit_code == 1
    assert "Not connected" in result.stdout
    assert "read" not in cli.calls


def test_read_invalid_address(cli):
    result = invoke("read", "12x")
    assert result.exit_code == 1
    assert "Invalid address" in result.stdout
    assert cli.calls == []


def test_read_error_result(cli):
    cli.read_error = "illegal data address"
    result = invoke("read", "999")
    assert result.exit_code == 1
    assert "Read error: illegal data address" in result.stdout


def test_unauthorized_panel(cli):
    cli.failures["get_config"] = AuthorizationError("Unauthorized")
    result = invoke("read", "0")
    assert result.exit_code == 1
    assert "Unauthorized" in result.stdout
    assert "Session expired" in result.stdout


def test_decode_offline(cli):
    result = invoke("decode", "0x3f80", "0x0000", "-t", "float32")
    assert result.exit_code == 0
    assert "1.000" in result.stdout
    assert "float32" in result.stdout
    assert cli.calls == []


def test_decode_low_first_hex(cli):
    result = invoke("decode", "0", "0x3f80", "-t", "float32", "-w", "low-first", "--hex")
    assert result.exit_code == 0
    assert "1.000" in result.stdout
    assert "0x3f80" in result.stdout


def test_decode_rejects_bad_value(cli):
    result = invoke("decode", "70000")
    assert result.exit_code == 1
    assert "Invalid register value" in result.stdout


def test_set_display_only(cli):
    result = invoke("set", "--value-base", "16")
    assert result.exit_code == 0, result.stdout
    assert cli.config.value_base == 16
    assert "disconnect" not in cli.calls
    assert "Configuration saved" in result.stdout


def test_set_connection_reconnects_when_online(cli):
    cli.status = ConnectionStatus(connected=True)
    result = invoke("set", "--unit", "5", "--host", "10.1.1.1")
    assert result.exit_code == 0, result.stdout
    assert cli.config.unit_id == 5
    assert cli.config.tcp.host == "10.1.1.1"
    assert cli.calls[-3:] == ["save_config", "disconnect", "connect"]


def test_set_nothing(cli):
    result = invoke("set")
    assert result.exit_code == 1
    assert "Nothing to change" in result.stdout


def test_set_bad_choice(cli):
    result = invoke("set", "--address-format", "12")
    assert result.exit_code == 2


def test_decoder_update(cli):
    result = invoke("decoder", "float32", "--enable", "--word-order", "low-first")
    assert result.exit_code == 0, result.stdout
    descriptor = cli.config.decoders.get(DecoderType.FLOAT32)
    assert descriptor.enabled is True
    assert descriptor.word_order.value == "low-first"
    assert [d.type for d in cli.config.decoders] == list(DecoderType)


def test_decoder_list(cli):
    result = invoke("decoder")
    assert result.exit_code == 0
    assert "uint32" in result.stdout


def test_connect(cli):
    result = invoke("connect")
    assert result.exit_code == 0, result.stdout
    assert "online" in result.stdout


def test_watch_for_a_moment(cli):
    result = invoke("watch", "--duration", "0.1")
    assert result.exit_code == 0, result.stdout
    assert "Watching" in result.stdout


def test_bad_settings_file(cli, tmp_path):
    path = tmp_path / "console.yaml"
    path.write_text("columns: 12\n", encoding="utf-8")
    result = invoke("--config", str(path), "status")
    assert result.exit_code == 1
    assert "Cannot load settings" in result.stdout
