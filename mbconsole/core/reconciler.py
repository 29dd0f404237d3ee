"""Connection reconciliation as a pure reducer.

`reduce(state, event)` returns the next `ConsoleState` plus the commands
to perform. Push notifications and command acknowledgements share one
transition rule, so whichever arrives last decides the connection state.

A read requested while offline (with auto-connect on) is parked as the
pending read and a connect is issued. The pending read is dispatched on
the transition into ONLINE, exactly once, and dropped whenever the
connection falls back to OFFLINE.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

from mbconsole.commands.validators import (
    ADDRESS_ERROR,
    QUANTITY_ERROR,
    validate_address,
    validate_quantity,
)
from mbconsole.core.data_types import ReadKind, default_read_kind
from mbconsole.core.events import (
    AddressChanged,
    AutoConnectChanged,
    ChannelClosed,
    ColumnsChanged,
    Command,
    ConfigLoaded,
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
    FetchSerialDevices,
    FetchStats,
    FetchStatus,
    FetchVersion,
    KindChanged,
    LogPushed,
    QuantityChanged,
    Read,
    ReadCompleted,
    ReadRequested,
    RequestFailed,
    ResultPushed,
    SaveConfig,
    SerialDevicesFetched,
    Started,
    StatsFetched,
    StatsPushed,
    StatusAcked,
    StatusPushed,
    Unauthorized,
    VersionFetched,
)
from mbconsole.core.models import (
    ConnectionState,
    ConnectionStatus,
    DeviceConfig,
    LogEntry,
    Protocol,
    ReadRequest,
    ReadResult,
    Stats,
)
from mbconsole.errors import ValidationError

logger = logging.getLogger("mbconsole.reconciler")

LOG_CAPACITY = 500
COLUMN_CHOICES = (8, 16)
NOT_CONNECTED = "Not connected"
NO_CONFIG = "Configuration not loaded"

Transition = Tuple["ConsoleState", List[Command]]


@dataclass(frozen=True)
class ConsoleState:
    """Everything the console shows, owned by the reducer."""

    connection: ConnectionState = ConnectionState.OFFLINE
    last_error: Optional[str] = None
    pending_read: Optional[ReadRequest] = None
    result: Optional[ReadResult] = None
    stats: Stats = field(default_factory=Stats)
    logs: Tuple[LogEntry, ...] = ()
    config: Optional[DeviceConfig] = None
    invocation: str = ""
    version: str = ""
    serial_devices: Tuple[str, ...] = ()
    auto_connect: bool = True
    columns: int = 8
    kind: ReadKind = field(default_factory=default_read_kind)
    address_input: str = "0"
    quantity: Any = 1
    address_error: str = ""
    quantity_error: str = ""
    notice: str = ""
    locked: bool = False

    def evolve(self, **changes) -> "ConsoleState":
        return replace(self, **changes)

    @property
    def online(self) -> bool:
        return self.connection == ConnectionState.ONLINE


_HANDLERS: Dict[Type[Event], Callable[[ConsoleState, Any], Transition]] = {}


def _handles(*event_types: Type[Event]):
    def register(fn):
        for event_type in event_types:
            _HANDLERS[event_type] = fn
        return fn
    return register


def reduce(state: ConsoleState, event: Event) -> Transition:
    """Apply one event. Once the session is locked every event is ignored."""
    if state.locked:
        return state, []
    handler = _HANDLERS.get(type(event))
    if handler is None:
        logger.debug("no handler for %s", type(event).__name__)
        return state, []
    return handler(state, event)


# --- connection lifecycle ---

@_handles(StatusPushed, StatusAcked)
def _on_status(state: ConsoleState, event: Any) -> Transition:
    return apply_status(state, event.status)


def apply_status(state: ConsoleState, status: ConnectionStatus) -> Transition:
    previous = state.connection
    current = status.state
    pending = state.pending_read
    commands: List[Command] = []

    if current not in (ConnectionState.CONNECTING, ConnectionState.ONLINE):
        if pending is not None:
            logger.info("connection %s; dropping pending read", current.value)
        pending = None
    elif current == ConnectionState.ONLINE and previous != ConnectionState.ONLINE and pending is not None:
        logger.info("connection online; dispatching pending read at %d", pending.address)
        commands.append(Read(pending))
        pending = None

    if current != previous:
        logger.info("connection %s -> %s", previous.value, current.value)

    last_error = None if current == ConnectionState.ONLINE else status.last_error
    return state.evolve(connection=current, last_error=last_error, pending_read=pending), commands


@_handles(ConnectRequested)
def _on_connect_requested(state: ConsoleState, event: ConnectRequested) -> Transition:
    return state, [Connect()]


@_handles(DisconnectRequested)
def _on_disconnect_requested(state: ConsoleState, event: DisconnectRequested) -> Transition:
    return state, [Disconnect()]


@_handles(ChannelClosed)
def _on_channel_closed(state: ConsoleState, event: ChannelClosed) -> Transition:
    # connection state is left as last reported
    return state.evolve(notice=f"Push channel closed{': ' + event.reason if event.reason else ''}"), []


# --- reads ---

@_handles(ReadRequested)
def _on_read_requested(state: ConsoleState, event: ReadRequested) -> Transition:
    state = state.evolve(kind=event.kind, address_input=event.address, quantity=event.quantity)

    errors = {"address_error": "", "quantity_error": ""}
    address = quantity = None
    try:
        address = validate_address(event.address)
    except ValidationError as exc:
        errors["address_error"] = str(exc)
    try:
        quantity = validate_quantity(event.quantity)
    except ValidationError as exc:
        errors["quantity_error"] = str(exc)
    state = state.evolve(**errors)
    if address is None or quantity is None:
        return state, []

    if state.config is None:
        return state.evolve(notice=NO_CONFIG), []

    request = ReadRequest(kind=event.kind, address=address, quantity=quantity, unit_id=state.config.unit_id)
    if state.online:
        return state.evolve(notice=""), [Read(request)]
    if state.auto_connect:
        logger.info("not connected; queueing read at %d and connecting", address)
        return state.evolve(pending_read=request, notice=""), [Connect()]
    return state.evolve(notice=NOT_CONNECTED), []


@_handles(ResultPushed, ReadCompleted)
def _on_result(state: ConsoleState, event: Any) -> Transition:
    return state.evolve(result=event.result), []


@_handles(KindChanged)
def _on_kind_changed(state: ConsoleState, event: KindChanged) -> Transition:
    return state.evolve(kind=event.kind), []


@_handles(AddressChanged)
def _on_address_changed(state: ConsoleState, event: AddressChanged) -> Transition:
    try:
        validate_address(event.address)
        error = ""
    except ValidationError:
        error = ADDRESS_ERROR
    return state.evolve(address_input=event.address, address_error=error), []


@_handles(QuantityChanged)
def _on_quantity_changed(state: ConsoleState, event: QuantityChanged) -> Transition:
    try:
        validate_quantity(event.quantity)
        error = ""
    except ValidationError:
        error = QUANTITY_ERROR
    return state.evolve(quantity=event.quantity, quantity_error=error), []


@_handles(AutoConnectChanged)
def _on_auto_connect_changed(state: ConsoleState, event: AutoConnectChanged) -> Transition:
    return state.evolve(auto_connect=bool(event.enabled)), []


@_handles(ColumnsChanged)
def _on_columns_changed(state: ConsoleState, event: ColumnsChanged) -> Transition:
    if event.columns not in COLUMN_CHOICES:
        return state.evolve(notice=f"Columns must be one of {COLUMN_CHOICES}"), []
    return state.evolve(columns=event.columns), []


# --- configuration ---

@_handles(Started)
def _on_started(state: ConsoleState, event: Started) -> Transition:
    return state, [FetchConfig(), FetchStats(), FetchVersion(), FetchStatus()]


@_handles(ConfigLoaded)
def _on_config_loaded(state: ConsoleState, event: ConfigLoaded) -> Transition:
    commands: List[Command] = []
    if event.config.protocol == Protocol.RTU:
        commands.append(FetchSerialDevices())
    return state.evolve(config=event.config, invocation=event.invocation), commands


@_handles(ConfigSubmitted)
def _on_config_submitted(state: ConsoleState, event: ConfigSubmitted) -> Transition:
    return _submit(state, event.config)


def _submit(state: ConsoleState, config: DeviceConfig) -> Transition:
    reconnect = state.connection in (ConnectionState.ONLINE, ConnectionState.CONNECTING)
    return state, [SaveConfig(config=config, reconnect=reconnect)]


@_handles(ConfigSaved)
def _on_config_saved(state: ConsoleState, event: ConfigSaved) -> Transition:
    commands: List[Command] = []
    if event.reconnect:
        commands.extend([Disconnect(), Connect()])
    if event.config.protocol == Protocol.RTU:
        commands.append(FetchSerialDevices())
    return state.evolve(config=event.config, invocation=event.invocation, notice=""), commands


@_handles(DecoderUpdated)
def _on_decoder_updated(state: ConsoleState, event: DecoderUpdated) -> Transition:
    if state.config is None:
        return state.evolve(notice=NO_CONFIG), []
    config = state.config.evolve(decoders=state.config.decoders.upsert(event.descriptor))
    return state, [SaveConfig(config=config, reconnect=False)]


@_handles(DisplayChanged)
def _on_display_changed(state: ConsoleState, event: DisplayChanged) -> Transition:
    if state.config is None:
        return state.evolve(notice=NO_CONFIG), []
    changes = {}
    if event.address_base is not None:
        if event.address_base not in (0, 1):
            return state.evolve(notice="Address base must be 0 or 1"), []
        changes["address_base"] = event.address_base
    for name in ("address_format", "value_base"):
        value = getattr(event, name)
        if value is None:
            continue
        if value not in (10, 16):
            return state.evolve(notice=f"{name.replace('_', ' ').capitalize()} must be 10 or 16"), []
        changes[name] = value
    if not changes:
        return state, []
    return state, [SaveConfig(config=state.config.evolve(**changes), reconnect=False)]


# --- remote data ---

@_handles(StatsPushed, StatsFetched)
def _on_stats(state: ConsoleState, event: Any) -> Transition:
    return state.evolve(stats=event.stats), []


@_handles(LogPushed)
def _on_log(state: ConsoleState, event: LogPushed) -> Transition:
    logs = state.logs[-(LOG_CAPACITY - 1):] + (event.entry,)
    return state.evolve(logs=logs), []


@_handles(VersionFetched)
def _on_version(state: ConsoleState, event: VersionFetched) -> Transition:
    return state.evolve(version=event.version), []


@_handles(SerialDevicesFetched)
def _on_serial_devices(state: ConsoleState, event: SerialDevicesFetched) -> Transition:
    return state.evolve(serial_devices=tuple(event.devices)), []


# --- failures ---

@_handles(RequestFailed)
def _on_request_failed(state: ConsoleState, event: RequestFailed) -> Transition:
    changes: Dict[str, Any] = {"notice": event.message}
    if isinstance(event.command, Connect) and state.connection not in (
        ConnectionState.CONNECTING,
        ConnectionState.ONLINE,
    ):
        # the attempt the pending read was waiting on never started
        changes["pending_read"] = None
        changes["last_error"] = event.message
    return state.evolve(**changes), []


@_handles(Unauthorized)
def _on_unauthorized(state: ConsoleState, event: Unauthorized) -> Transition:
    return state.evolve(locked=True, pending_read=None), []
