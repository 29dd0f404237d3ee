import asyncio
import logging
from contextlib import asynccontextmanager, contextmanager
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional

import typer
import yaml
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from mbconsole import __version__
from mbconsole.commands.validators import validate_address, validate_quantity
from mbconsole.core.controller import ConsoleController
from mbconsole.core.data_types import READ_KIND_PROPERTIES, ReadKind, parse_read_kind
from mbconsole.core.events import (
    AutoConnectChanged,
    ChannelClosed,
    ColumnsChanged,
    ConfigSaved,
    ConfigSubmitted,
    Connect,
    ConnectRequested,
    DecoderUpdated,
    Disconnect,
    DisconnectRequested,
    DisplayChanged,
    Event,
    FetchConfig,
    LogPushed,
    Read,
    ReadCompleted,
    ReadRequested,
    RequestFailed,
    ResultPushed,
    SaveConfig,
    StatsPushed,
    StatusAcked,
    StatusPushed,
    Unauthorized,
)
from mbconsole.core.models import (
    ConnectionState,
    ConnectionStatus,
    DeviceConfig,
    LogEntry,
    Protocol,
    ReadResult,
    Stats,
    format_timestamp,
)
from mbconsole.core.reconciler import COLUMN_CHOICES, NOT_CONNECTED, ConsoleState
from mbconsole.core.session_gate import SessionGate
from mbconsole.database.logging import DBLogger
from mbconsole.errors import AuthorizationError, RemoteReadError, RequestError, ValidationError
from mbconsole.settings import ConsoleSettings, load_settings
from mbconsole.transports.api import ApiClient
from mbconsole.transports.base import EventSource
from mbconsole.transports.push import PushChannel
from mbconsole.utils.address import format_address, parse_address
from mbconsole.utils.decoding import (
    DecoderDescriptor,
    DecoderSet,
    DecoderType,
    RenderRow,
    build_rows,
)
from mbconsole.utils.ieee754 import Endianness, WordOrder

app = typer.Typer(help="Operator console for a Modbus register access service")
console = Console()
logger = logging.getLogger("mbconsole.cli")

UNAUTHORIZED_TEXT = (
    "Session expired or the access token was rejected.\n"
    "Copy the fresh URL (with token) from the service and run again."
)

# startup fetches config, stats, version and status before anything else
WAIT_ROUNDS = 3


def _setup_logging(level_name: str):
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(
            level=getattr(logging, level_name.upper(), logging.WARNING),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
    logging.getLogger("asyncio").setLevel(logging.INFO)
    logging.getLogger("aiohttp").setLevel(logging.INFO)


@app.callback()
def main(
    ctx: typer.Context,
    url: Optional[str] = typer.Option(None, "--url", help="Service base URL, e.g. http://127.0.0.1:8502"),
    token: Optional[str] = typer.Option(None, "--token", help="Access token"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Settings file (YAML or JSON)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output"),
):
    """Read and decode registers through a running register service."""
    try:
        settings = load_settings(config)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        console.print(f"[red]Cannot load settings: {exc}[/red]")
        raise typer.Exit(code=1)
    if url:
        settings = replace(settings, base_url=url.rstrip("/"))
    if token:
        settings = replace(settings, token=token)
    _setup_logging("DEBUG" if verbose else settings.log_level)
    ctx.obj = settings


def _make_api(settings: ConsoleSettings, gate: Optional[SessionGate] = None) -> ApiClient:
    return ApiClient(settings.base_url, settings.token, gate=gate, timeout_s=settings.timeout_s)


def _make_push(settings: ConsoleSettings, gate: Optional[SessionGate] = None) -> Optional[EventSource]:
    return PushChannel(settings.base_url, settings.token, gate=gate)


def _make_controller(settings: ConsoleSettings, push: bool = False) -> ConsoleController:
    gate = SessionGate()
    db_logger = DBLogger(settings.trace_db) if settings.trace_db else None
    state = ConsoleState(auto_connect=settings.auto_connect, columns=settings.columns)
    return ConsoleController(
        _make_api(settings, gate),
        _make_push(settings, gate) if push else None,
        state=state,
        db_logger=db_logger,
    )


def _wait_timeout(settings: ConsoleSettings) -> float:
    return settings.timeout_s * WAIT_ROUNDS


@contextmanager
def _handled():
    """Translate engine errors into printed messages and exit code 1."""
    try:
        yield
    except AuthorizationError:
        console.print(Panel(UNAUTHORIZED_TEXT, title="Unauthorized", border_style="red"))
        raise typer.Exit(code=1)
    except RemoteReadError as exc:
        console.print(f"[red]Read error: {exc}[/red]")
        raise typer.Exit(code=1)
    except (RequestError, ValidationError) as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)
    except asyncio.TimeoutError:
        console.print("[red]Timed out waiting for the service[/red]")
        raise typer.Exit(code=1)


class _Outcome:
    """Resolves once `decide(state, event)` returns a value or raises.

    Must be created before the events it watches are dispatched.
    """

    def __init__(self, controller: ConsoleController, decide: Callable[[ConsoleState, Event], Any]):
        self._controller = controller
        self._decide = decide
        self.future: asyncio.Future = asyncio.get_running_loop().create_future()
        controller.add_observer(self._observe)

    def _observe(self, state: ConsoleState, event: Event):
        if self.future.done():
            return
        try:
            value = self._decide(state, event)
        except Exception as exc:
            self.future.set_exception(exc)
            return
        if value is not None:
            self.future.set_result(value)

    async def wait(self, timeout: Optional[float]) -> Any:
        try:
            return await asyncio.wait_for(self.future, timeout)
        finally:
            self._controller.remove_observer(self._observe)


def _raise_if_locked(state: ConsoleState, event: Event):
    if state.locked or isinstance(event, Unauthorized):
        raise AuthorizationError("Unauthorized")


def _config_ready(state: ConsoleState, event: Event) -> Optional[ConsoleState]:
    _raise_if_locked(state, event)
    if isinstance(event, RequestFailed) and isinstance(event.command, FetchConfig):
        raise RequestError(event.message)
    if state.config is not None:
        return state
    return None


@asynccontextmanager
async def _session(settings: ConsoleSettings, push: bool = False):
    """Start a controller and wait until the startup fetches have settled."""
    controller = _make_controller(settings, push=push)
    ready = _Outcome(controller, _config_ready)
    await controller.start()
    try:
        await ready.wait(_wait_timeout(settings))
        await asyncio.wait_for(controller.wait_idle(), _wait_timeout(settings))
        yield controller
    finally:
        await controller.stop()


def _acked(command_type: type):
    def decide(state: ConsoleState, event: Event) -> Optional[ConsoleState]:
        _raise_if_locked(state, event)
        if isinstance(event, RequestFailed) and isinstance(event.command, command_type):
            raise RequestError(event.message)
        if isinstance(event, StatusAcked) and isinstance(event.command, command_type):
            return state
        return None
    return decide


def _config_saved(state: ConsoleState, event: Event) -> Optional[ConsoleState]:
    _raise_if_locked(state, event)
    if isinstance(event, RequestFailed) and isinstance(event.command, SaveConfig):
        raise RequestError(event.message)
    if isinstance(event, ConfigSaved):
        return state
    return None


class _ReadWatcher:
    """Follows one read request through connect and dispatch."""

    def __init__(self):
        self.requested = False
        self.parked = False

    def __call__(self, state: ConsoleState, event: Event) -> Optional[ConsoleState]:
        _raise_if_locked(state, event)
        if isinstance(event, ReadRequested):
            self.requested = True
            if state.address_error:
                raise ValidationError("address", state.address_error)
            if state.quantity_error:
                raise ValidationError("quantity", state.quantity_error)
            if state.notice:
                raise RequestError(state.notice)
            self.parked = state.pending_read is not None
            return None
        if not self.requested:
            return None
        if isinstance(event, (ReadCompleted, ResultPushed)):
            return state
        if isinstance(event, RequestFailed) and isinstance(event.command, (Read, Connect)):
            raise RequestError(event.message)
        if self.parked and isinstance(event, (StatusPushed, StatusAcked)) and state.pending_read is None:
            if state.online:
                self.parked = False
            elif state.connection == ConnectionState.OFFLINE:
                raise RequestError(state.last_error or NOT_CONNECTED)
        return None


# --- rendering ---

def _rows_table(rows: List[RenderRow], columns: int, title: Optional[str] = None) -> Table:
    table = Table(show_header=True, header_style="bold magenta", title=title)
    table.add_column("Address", style="cyan", no_wrap=True)
    for i in range(columns):
        table.add_column(f"+{i}", justify="right")
    for row in rows:
        cells: List[str] = []
        for cell in row.cells:
            cells.append(cell.value)
            # rich has no column spans; the value sits in the first column
            cells.extend([""] * (cell.col_span - 1))
        cells = cells[:columns] + [""] * (columns - len(cells))
        table.add_row(row.label, *cells, style="dim" if row.is_decoded else None)
    return table


def _print_result(result: Optional[ReadResult], config: Optional[DeviceConfig], columns: int):
    if result is None:
        console.print("No result")
        return
    config = config or DeviceConfig()
    rows = build_rows(
        result,
        config.decoders,
        address_base=config.address_base,
        address_format=config.address_format,
        value_base=config.value_base,
        columns=columns,
    )
    label = READ_KIND_PROPERTIES[result.kind].label
    start = format_address(result.address, config.address_format)
    title = f"{label} @ {start} x{result.quantity} ({result.latency_ms} ms)"
    console.print(_rows_table(rows, columns, title=title))


def _status_text(status: ConnectionState, last_error: Optional[str]) -> str:
    colour = {
        ConnectionState.ONLINE: "green",
        ConnectionState.CONNECTING: "yellow",
        ConnectionState.OFFLINE: "red",
    }[status]
    text = f"[{colour}]{status.value}[/{colour}]"
    if last_error:
        text += f" ({last_error})"
    return text


def _print_status(status: ConnectionStatus):
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("State")
    table.add_column("Connected")
    table.add_column("Connecting")
    table.add_column("Last error")
    table.add_row(
        _status_text(status.state, None),
        str(status.connected),
        str(status.connecting),
        status.last_error or "",
    )
    console.print(table)


def _print_stats(stats: Stats):
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Reads", justify="right")
    table.add_column("Errors", justify="right")
    table.add_column("Last latency (ms)", justify="right")
    table.add_row(str(stats.read_count), str(stats.error_count), str(stats.last_latency_ms))
    console.print(table)


def _decoders_table(decoders: DecoderSet) -> Table:
    table = Table(show_header=True, header_style="bold magenta", title="Decoders")
    table.add_column("Type")
    table.add_column("Enabled")
    table.add_column("Endianness")
    table.add_column("Word order")
    for dtype in DecoderType:
        d = decoders.get(dtype)
        table.add_row(dtype.value, "yes" if d.enabled else "no", d.endianness.value, d.word_order.value)
    return table


def _print_config(config: DeviceConfig, invocation: str = ""):
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Setting")
    table.add_column("Value")
    table.add_row("Protocol", config.protocol.value)
    table.add_row("Target", config.target)
    if config.protocol == Protocol.RTU:
        s = config.serial
        table.add_row("Serial", f"{s.speed} {s.data_bits}{s.parity[:1].upper()}{s.stop_bits}")
    table.add_row("Unit", str(config.unit_id))
    table.add_row("Timeout (ms)", str(config.timeout_ms))
    table.add_row("Address base", str(config.address_base))
    table.add_row("Address format", "hex" if config.address_format == 16 else "decimal")
    table.add_row("Value base", "hex" if config.value_base == 16 else "decimal")
    table.add_row("Listen", config.listen_addr)
    table.add_row("Require token", str(config.require_token))
    if invocation:
        table.add_row("Invocation", invocation)
    console.print(table)
    console.print(_decoders_table(config.decoders))


def _log_line(entry: LogEntry) -> str:
    stamp = format_timestamp(entry.time) or "-"
    return f"[dim]{stamp}[/dim] {entry.direction} {entry.message}"


# --- request/response commands ---

async def _call(settings: ConsoleSettings, fn: Callable[[ApiClient], Any]) -> Any:
    async with _make_api(settings) as api:
        return await fn(api)


@app.command()
def version(ctx: typer.Context):
    """Show client and service versions."""
    settings: ConsoleSettings = ctx.obj
    with _handled():
        remote = asyncio.run(_call(settings, lambda api: api.version()))
    console.print(f"mbconsole {__version__}")
    console.print(f"service {remote or 'unknown'}")


@app.command()
def status(ctx: typer.Context):
    """Show the service's connection state."""
    with _handled():
        result = asyncio.run(_call(ctx.obj, lambda api: api.get_status()))
    _print_status(result)


@app.command()
def stats(ctx: typer.Context):
    """Show read counters."""
    with _handled():
        result = asyncio.run(_call(ctx.obj, lambda api: api.get_stats()))
    _print_stats(result)


@app.command()
def devices(ctx: typer.Context):
    """List serial devices visible to the service."""
    with _handled():
        found = asyncio.run(_call(ctx.obj, lambda api: api.serial_devices()))
    if not found:
        console.print("No serial ports found")
        return
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Device")
    for device in found:
        table.add_row(device)
    console.print(table)


@app.command("config")
def show_config(ctx: typer.Context, as_json: bool = typer.Option(False, "--json", help="Print the raw configuration")):
    """Show the service configuration."""
    with _handled():
        config, invocation = asyncio.run(_call(ctx.obj, lambda api: api.get_config()))
    if as_json:
        console.print_json(data=config.to_dict())
        return
    _print_config(config, invocation)


# --- commands driven through the reconciler ---

async def _change_connection(settings: ConsoleSettings, wanted: bool) -> ConsoleState:
    async with _session(settings) as controller:
        outcome = _Outcome(controller, _acked(Connect if wanted else Disconnect))
        controller.dispatch(ConnectRequested() if wanted else DisconnectRequested())
        return await outcome.wait(_wait_timeout(settings))


@app.command()
def connect(ctx: typer.Context):
    """Ask the service to open its device connection."""
    with _handled():
        state = asyncio.run(_change_connection(ctx.obj, True))
    console.print(f"Connection: {_status_text(state.connection, state.last_error)}")


@app.command()
def disconnect(ctx: typer.Context):
    """Ask the service to close its device connection."""
    with _handled():
        state = asyncio.run(_change_connection(ctx.obj, False))
    console.print(f"Connection: {_status_text(state.connection, state.last_error)}")


def _check_choice(name: str, value: Optional[int], choices: tuple):
    if value is not None and value not in choices:
        raise typer.BadParameter(f"must be one of {', '.join(str(c) for c in choices)}", param_hint=name)


async def _save(settings: ConsoleSettings, build: Callable[[ConsoleState], Event]) -> ConsoleState:
    async with _session(settings) as controller:
        outcome = _Outcome(controller, _config_saved)
        controller.dispatch(build(controller.state))
        await outcome.wait(_wait_timeout(settings))
        # a reconnect batch may still be running
        await asyncio.wait_for(controller.wait_idle(), _wait_timeout(settings))
        return controller.state


@app.command("set")
def set_config(
    ctx: typer.Context,
    protocol: Optional[str] = typer.Option(None, help="tcp|rtu"),
    unit: Optional[int] = typer.Option(None, help="Modbus unit id"),
    timeout_ms: Optional[int] = typer.Option(None, "--timeout-ms", help="Device timeout in milliseconds"),
    host: Optional[str] = typer.Option(None, help="Modbus TCP host"),
    port: Optional[int] = typer.Option(None, help="Modbus TCP port"),
    device: Optional[str] = typer.Option(None, help="Serial device (e.g. /dev/ttyUSB0)"),
    baud: Optional[int] = typer.Option(None, help="Baud rate for serial"),
    address_base: Optional[int] = typer.Option(None, "--address-base", help="0 or 1"),
    address_format: Optional[int] = typer.Option(None, "--address-format", help="10 or 16"),
    value_base: Optional[int] = typer.Option(None, "--value-base", help="10 or 16"),
):
    """Change the service configuration.

    Connection settings reconnect an active connection; display settings
    never do.
    """
    _check_choice("--address-base", address_base, (0, 1))
    _check_choice("--address-format", address_format, (10, 16))
    _check_choice("--value-base", value_base, (10, 16))
    try:
        proto = Protocol(protocol.lower()) if protocol else None
    except ValueError:
        raise typer.BadParameter("must be tcp or rtu", param_hint="--protocol")

    display = {
        k: v for k, v in (
            ("address_base", address_base),
            ("address_format", address_format),
            ("value_base", value_base),
        ) if v is not None
    }
    top: Dict[str, Any] = {k: v for k, v in (
        ("protocol", proto), ("unit_id", unit), ("timeout_ms", timeout_ms),
    ) if v is not None}
    tcp = {k: v for k, v in (("host", host), ("port", port)) if v is not None}
    serial = {k: v for k, v in (("device", device), ("speed", baud)) if v is not None}

    if not (display or top or tcp or serial):
        console.print("Nothing to change")
        raise typer.Exit(code=1)

    def build(state: ConsoleState) -> Event:
        if not (top or tcp or serial):
            return DisplayChanged(**display)
        config = state.config
        return ConfigSubmitted(config.evolve(
            tcp=replace(config.tcp, **tcp),
            serial=replace(config.serial, **serial),
            **top,
            **display,
        ))

    with _handled():
        state = asyncio.run(_save(ctx.obj, build))
    console.print("[green]Configuration saved[/green]")
    _print_config(state.config, state.invocation)
    if state.notice:
        console.print(f"[yellow]{state.notice}[/yellow]")


@app.command()
def decoder(
    ctx: typer.Context,
    dtype: Optional[str] = typer.Argument(None, metavar="TYPE", help="uint16|int16|uint32|int32|float32"),
    enable: Optional[bool] = typer.Option(None, "--enable/--disable", help="Turn the decoder on or off"),
    endianness: Optional[str] = typer.Option(None, "--endianness", "-e", help="big|little"),
    word_order: Optional[str] = typer.Option(None, "--word-order", "-w", help="high-first|low-first"),
):
    """Show decoders, or update one decoder."""
    settings: ConsoleSettings = ctx.obj
    if dtype is None:
        with _handled():
            config, _ = asyncio.run(_call(settings, lambda api: api.get_config()))
        console.print(_decoders_table(config.decoders))
        return
    try:
        decoder_type = DecoderType(dtype.lower())
        endian = Endianness(endianness.lower()) if endianness else None
        order = WordOrder(word_order.lower()) if word_order else None
    except ValueError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)

    def build(state: ConsoleState) -> Event:
        current = state.config.decoders.get(decoder_type)
        changes: Dict[str, Any] = {}
        if enable is not None:
            changes["enabled"] = enable
        if endian is not None:
            changes["endianness"] = endian
        if order is not None:
            changes["word_order"] = order
        return DecoderUpdated(current.evolve(**changes))

    with _handled():
        state = asyncio.run(_save(settings, build))
    console.print(_decoders_table(state.config.decoders))


async def _read(
    settings: ConsoleSettings,
    kind: ReadKind,
    address: str,
    quantity: int,
    columns: Optional[int],
    auto_connect: Optional[bool],
) -> ConsoleState:
    async with _session(settings, push=True) as controller:
        if auto_connect is not None:
            controller.dispatch(AutoConnectChanged(auto_connect))
        if columns is not None:
            controller.dispatch(ColumnsChanged(columns))
        outcome = _Outcome(controller, _ReadWatcher())
        controller.dispatch(ReadRequested(kind=kind, address=address, quantity=quantity))
        return await outcome.wait(_wait_timeout(settings))


@app.command()
def read(
    ctx: typer.Context,
    address: str = typer.Argument(..., help="Starting address (decimal or 0xHEX)"),
    quantity: int = typer.Option(1, "--quantity", "-n", help="Number of values to read"),
    kind: str = typer.Option("holding", "--kind", "-k", help="holding|input|coil|discrete"),
    columns: Optional[int] = typer.Option(None, "--columns", help="Values per row (8 or 16)"),
    auto_connect: Optional[bool] = typer.Option(
        None, "--auto-connect/--no-auto-connect", help="Connect first when the service is offline"
    ),
):
    """Read registers or bits and render them with the enabled decoders."""
    settings: ConsoleSettings = ctx.obj
    _check_choice("--columns", columns, COLUMN_CHOICES)
    try:
        read_kind = parse_read_kind(kind)
        validate_address(address)
        validate_quantity(quantity)
    except ValueError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)

    with _handled():
        state = asyncio.run(_read(settings, read_kind, address, quantity, columns, auto_connect))
        _print_result(state.result, state.config, state.columns)


@app.command()
def decode(
    values: List[str] = typer.Argument(..., help="Register values (decimal or 0xHEX), e.g. '0x3f80 0x0000'"),
    dtypes: Optional[List[str]] = typer.Option(None, "--type", "-t", help="Decoder type; repeat for several (default: all)"),
    endianness: str = typer.Option("big", "--endianness", "-e", help="big|little"),
    word_order: str = typer.Option("high-first", "--word-order", "-w", help="high-first|low-first"),
    address: str = typer.Option("0", "--address", "-a", help="Address of the first value"),
    columns: int = typer.Option(8, "--columns", help="Values per row (8 or 16)"),
    hex_values: bool = typer.Option(False, "--hex", help="Show addresses and raw values in hex"),
):
    """Decode register values locally, without contacting the service."""
    _check_choice("--columns", columns, COLUMN_CHOICES)
    registers: List[int] = []
    for text in values:
        value = parse_address(text)
        if value is None or value > 0xFFFF:
            console.print(f"Invalid register value '{text}'; use decimal or 0xHEX in 0..65535")
            raise typer.Exit(code=1)
        registers.append(value)
    start = parse_address(address)
    if start is None:
        console.print("Invalid address format")
        raise typer.Exit(code=1)
    try:
        endian = Endianness(endianness.lower())
        order = WordOrder(word_order.lower())
        types = [DecoderType(t.lower()) for t in dtypes] if dtypes else list(DecoderType)
    except ValueError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)

    result = ReadResult(
        kind=ReadKind.HOLDING_REGISTERS,
        address=start,
        quantity=len(registers),
        reg_values=tuple(registers),
    )
    descriptors = [DecoderDescriptor(type=t, endianness=endian, word_order=order, enabled=True) for t in types]
    base = 16 if hex_values else 10
    rows = build_rows(result, descriptors, address_format=base, value_base=base, columns=columns)
    console.print(_rows_table(rows, columns))


class _WatchPrinter:
    """Prints push traffic as it is reduced."""

    def __init__(self, state: ConsoleState):
        self.connection = state.connection

    def __call__(self, state: ConsoleState, event: Event):
        if isinstance(event, (StatusPushed, StatusAcked)) and state.connection != self.connection:
            self.connection = state.connection
            console.print(f"Connection: {_status_text(state.connection, state.last_error)}")
        elif isinstance(event, ResultPushed):
            try:
                _print_result(state.result, state.config, state.columns)
            except RemoteReadError as exc:
                console.print(f"[red]Read error: {exc}[/red]")
        elif isinstance(event, LogPushed):
            console.print(_log_line(event.entry))
        elif isinstance(event, StatsPushed):
            s = event.stats
            console.print(f"[dim]reads={s.read_count} errors={s.error_count} latency={s.last_latency_ms}ms[/dim]")
        elif isinstance(event, ChannelClosed):
            console.print(f"[yellow]{state.notice}[/yellow]")


def _channel_done(state: ConsoleState, event: Event) -> Optional[ConsoleState]:
    _raise_if_locked(state, event)
    if isinstance(event, ChannelClosed):
        return state
    return None


async def _watch(settings: ConsoleSettings, duration: Optional[float]):
    async with _session(settings, push=True) as controller:
        state = controller.state
        console.print(f"Watching {settings.base_url} ({state.config.target}); Ctrl-C to stop")
        console.print(f"Connection: {_status_text(state.connection, state.last_error)}")
        done = _Outcome(controller, _channel_done)
        controller.add_observer(_WatchPrinter(state))
        try:
            await done.wait(duration)
        except asyncio.TimeoutError:
            pass


@app.command()
def watch(
    ctx: typer.Context,
    duration: Optional[float] = typer.Option(None, help="Stop after this many seconds"),
    trace_db: Optional[str] = typer.Option(None, "--trace-db", help="Record trace lines to this SQLite file"),
):
    """Follow status, results, stats and trace lines pushed by the service."""
    settings: ConsoleSettings = ctx.obj
    if trace_db:
        settings = replace(settings, trace_db=trace_db)
    try:
        with _handled():
            asyncio.run(_watch(settings, duration))
    except KeyboardInterrupt:
        console.print("Stopping watch...")


if __name__ == "__main__":
    app()
