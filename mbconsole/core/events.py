"""Events consumed and commands emitted by the reconciler.

Events come from three sources: the push channel, completions of
commands, and the operator. Commands are the outbound side effects the
controller performs against the remote service.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple, Union

from mbconsole.core.data_types import ReadKind
from mbconsole.core.models import (
    ConnectionStatus,
    DeviceConfig,
    LogEntry,
    ReadRequest,
    ReadResult,
    Stats,
)
from mbconsole.utils.decoding import DecoderDescriptor


class Event:
    """Base class for everything fed to `reduce`."""

    __slots__ = ()


class Command:
    """Base class for outbound side effects."""

    __slots__ = ()


# --- commands ---

@dataclass(frozen=True)
class FetchConfig(Command):
    pass


@dataclass(frozen=True)
class SaveConfig(Command):
    config: DeviceConfig
    reconnect: bool = False


@dataclass(frozen=True)
class FetchStats(Command):
    pass


@dataclass(frozen=True)
class FetchStatus(Command):
    pass


@dataclass(frozen=True)
class FetchVersion(Command):
    pass


@dataclass(frozen=True)
class FetchSerialDevices(Command):
    pass


@dataclass(frozen=True)
class Connect(Command):
    pass


@dataclass(frozen=True)
class Disconnect(Command):
    pass


@dataclass(frozen=True)
class Read(Command):
    request: ReadRequest


# --- push channel ---

@dataclass(frozen=True)
class StatusPushed(Event):
    status: ConnectionStatus


@dataclass(frozen=True)
class ResultPushed(Event):
    """`data` and `error` pushes; both carry a read result."""

    result: ReadResult


@dataclass(frozen=True)
class LogPushed(Event):
    entry: LogEntry


@dataclass(frozen=True)
class StatsPushed(Event):
    stats: Stats


@dataclass(frozen=True)
class ChannelClosed(Event):
    reason: str = ""


# --- command completions ---

@dataclass(frozen=True)
class ConfigLoaded(Event):
    config: DeviceConfig
    invocation: str = ""


@dataclass(frozen=True)
class ConfigSaved(Event):
    config: DeviceConfig
    invocation: str = ""
    reconnect: bool = False


@dataclass(frozen=True)
class StatusAcked(Event):
    """Acknowledgement of connect/disconnect, or a polled status."""

    status: ConnectionStatus
    command: Optional[Command] = None


@dataclass(frozen=True)
class StatsFetched(Event):
    stats: Stats


@dataclass(frozen=True)
class VersionFetched(Event):
    version: str


@dataclass(frozen=True)
class SerialDevicesFetched(Event):
    devices: Tuple[str, ...]


@dataclass(frozen=True)
class ReadCompleted(Event):
    result: ReadResult


@dataclass(frozen=True)
class RequestFailed(Event):
    command: Command
    message: str


@dataclass(frozen=True)
class Unauthorized(Event):
    pass


# --- operator actions ---

@dataclass(frozen=True)
class Started(Event):
    pass


@dataclass(frozen=True)
class ReadRequested(Event):
    kind: ReadKind
    address: str
    quantity: Any


@dataclass(frozen=True)
class KindChanged(Event):
    kind: ReadKind


@dataclass(frozen=True)
class AddressChanged(Event):
    address: str


@dataclass(frozen=True)
class QuantityChanged(Event):
    quantity: Any


@dataclass(frozen=True)
class AutoConnectChanged(Event):
    enabled: bool


@dataclass(frozen=True)
class ColumnsChanged(Event):
    columns: int


@dataclass(frozen=True)
class ConnectRequested(Event):
    pass


@dataclass(frozen=True)
class DisconnectRequested(Event):
    pass


@dataclass(frozen=True)
class ConfigSubmitted(Event):
    config: DeviceConfig


@dataclass(frozen=True)
class DecoderUpdated(Event):
    descriptor: DecoderDescriptor


@dataclass(frozen=True)
class DisplayChanged(Event):
    """Address base, address format or value base; None leaves a field as is."""

    address_base: Optional[int] = None
    address_format: Optional[int] = None
    value_base: Optional[int] = None


PushEvent = Union[StatusPushed, ResultPushed, LogPushed, StatsPushed]


def push_event_from_message(message: Dict[str, Any]) -> Optional[PushEvent]:
    """Translate one `{type, payload}` push message into an event.

    Returns None for unknown message types.
    """
    kind = message.get("type")
    payload = message.get("payload") or {}
    if kind in ("data", "error"):
        return ResultPushed(ReadResult.from_dict(payload))
    if kind == "status":
        return StatusPushed(ConnectionStatus.from_dict(payload))
    if kind == "log":
        return LogPushed(LogEntry.from_dict(payload))
    if kind == "stats":
        return StatsPushed(Stats.from_dict(payload))
    return None
