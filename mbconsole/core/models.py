"""Wire models exchanged with the register access service.

Every model parses from and serializes to the service's JSON field names
(camelCase). Parsing is lenient about missing optional fields and strict
about enum values.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from mbconsole.core.data_types import ReadKind, is_bit_kind
from mbconsole.utils.decoding import DecoderDescriptor, DecoderSet, DecoderType

logger = logging.getLogger("mbconsole.models")

_FRACTION = re.compile(r"\.(\d+)")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse RFC 3339 text (nanosecond precision allowed) into a datetime."""
    if not isinstance(value, str) or not value:
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    # fromisoformat accepts at most microseconds
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        logger.debug("unparseable timestamp %r", value)
        return None


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat().replace("+00:00", "Z")


class ConnectionState(str, Enum):
    OFFLINE = "offline"
    CONNECTING = "connecting"
    ONLINE = "online"


@dataclass(frozen=True)
class ConnectionStatus:
    """Connection report carried by status pushes and command acknowledgements."""

    connected: bool = False
    connecting: bool = False
    last_error: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConnectionStatus":
        last_error = data.get("lastError")
        return cls(
            connected=bool(data.get("connected", False)),
            connecting=bool(data.get("connecting", False)),
            last_error=last_error if isinstance(last_error, str) and last_error else None,
        )

    @property
    def state(self) -> ConnectionState:
        if self.connected:
            return ConnectionState.ONLINE
        if self.connecting:
            return ConnectionState.CONNECTING
        return ConnectionState.OFFLINE


@dataclass(frozen=True)
class ReadRequest:
    """A read to issue, or one deferred until the connection comes up."""

    kind: ReadKind
    address: int
    quantity: int
    unit_id: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "address": self.address,
            "quantity": self.quantity,
            "unitId": self.unit_id,
        }


@dataclass(frozen=True)
class DecodedValue:
    type: str
    value: Any


@dataclass(frozen=True)
class ReadResult:
    """Snapshot of one completed read; exactly one of the value lists is set."""

    kind: ReadKind
    address: int
    quantity: int
    bool_values: Optional[Tuple[bool, ...]] = None
    reg_values: Optional[Tuple[int, ...]] = None
    decoded: Tuple[DecodedValue, ...] = ()
    latency_ms: int = 0
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None

    @staticmethod
    def looks_like(data: Any) -> bool:
        """True when a JSON body has the shape of a read result."""
        return isinstance(data, dict) and "kind" in data and (
            "errorMessage" in data or "regValues" in data or "boolValues" in data or "completedAt" in data
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReadResult":
        kind = ReadKind(data["kind"])
        bool_values = None
        reg_values = None
        if is_bit_kind(kind):
            bool_values = tuple(bool(v) for v in (data.get("boolValues") or []))
        else:
            reg_values = tuple(int(v) & 0xFFFF for v in (data.get("regValues") or []))
        decoded = tuple(
            DecodedValue(type=str(item.get("type", "")), value=item.get("value"))
            for item in (data.get("decoded") or [])
            if isinstance(item, dict)
        )
        error_message = data.get("errorMessage")
        return cls(
            kind=kind,
            address=int(data.get("address", 0)),
            quantity=int(data.get("quantity", 0)),
            bool_values=bool_values,
            reg_values=reg_values,
            decoded=decoded,
            latency_ms=int(data.get("latencyMs", 0) or 0),
            completed_at=parse_timestamp(data.get("completedAt")),
            error_message=error_message if isinstance(error_message, str) and error_message else None,
        )


@dataclass(frozen=True)
class Stats:
    read_count: int = 0
    error_count: int = 0
    last_latency_ms: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Stats":
        return cls(
            read_count=int(data.get("readCount", 0) or 0),
            error_count=int(data.get("errorCount", 0) or 0),
            last_latency_ms=int(data.get("lastLatencyMs", 0) or 0),
        )


@dataclass(frozen=True)
class LogEntry:
    time: Optional[datetime]
    direction: str
    message: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LogEntry":
        return cls(
            time=parse_timestamp(data.get("time")),
            direction=str(data.get("direction", "")),
            message=str(data.get("message", "")),
        )


class Protocol(str, Enum):
    TCP = "tcp"
    RTU = "rtu"


@dataclass(frozen=True)
class SerialConfig:
    device: str = "/dev/ttyUSB0"
    speed: int = 9600
    data_bits: int = 8
    parity: str = "none"
    stop_bits: int = 1

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SerialConfig":
        data = data or {}
        defaults = cls()
        return cls(
            device=str(data.get("device", defaults.device)),
            speed=int(data.get("speed", defaults.speed)),
            data_bits=int(data.get("dataBits", defaults.data_bits)),
            parity=str(data.get("parity", defaults.parity)),
            stop_bits=int(data.get("stopBits", defaults.stop_bits)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "device": self.device,
            "speed": self.speed,
            "dataBits": self.data_bits,
            "parity": self.parity,
            "stopBits": self.stop_bits,
        }


@dataclass(frozen=True)
class TcpConfig:
    host: str = "127.0.0.1"
    port: int = 502

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "TcpConfig":
        data = data or {}
        return cls(host=str(data.get("host", "127.0.0.1")), port=int(data.get("port", 502)))

    def to_dict(self) -> Dict[str, Any]:
        return {"host": self.host, "port": self.port}


def default_decoders() -> DecoderSet:
    return DecoderSet(DecoderDescriptor(type=t) for t in DecoderType)


_CONFIG_KEYS = {
    "protocol", "unitId", "timeoutMs", "addressBase", "addressFormat", "valueBase",
    "serial", "tcp", "listenAddr", "requireToken", "token", "decoders",
}


@dataclass(frozen=True)
class DeviceConfig:
    """Remote service configuration.

    Keys this client does not model are kept in `extra` and sent back
    unchanged on submit.
    """

    protocol: Protocol = Protocol.TCP
    unit_id: int = 1
    timeout_ms: int = 1000
    address_base: int = 0
    address_format: int = 10
    value_base: int = 10
    serial: SerialConfig = field(default_factory=SerialConfig)
    tcp: TcpConfig = field(default_factory=TcpConfig)
    listen_addr: str = "0.0.0.0:8502"
    require_token: bool = True
    token: str = ""
    decoders: DecoderSet = field(default_factory=default_decoders)
    extra: Tuple[Tuple[str, Any], ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeviceConfig":
        if not isinstance(data, dict):
            raise ValueError("Configuration must be an object/dict")
        defaults = cls()
        decoders = data.get("decoders")
        return cls(
            protocol=Protocol(data.get("protocol") or Protocol.TCP),
            unit_id=int(data.get("unitId", defaults.unit_id)),
            timeout_ms=int(data.get("timeoutMs", defaults.timeout_ms)),
            address_base=int(data.get("addressBase", defaults.address_base)),
            address_format=int(data.get("addressFormat", defaults.address_format)),
            value_base=int(data.get("valueBase", defaults.value_base)),
            serial=SerialConfig.from_dict(data.get("serial")),
            tcp=TcpConfig.from_dict(data.get("tcp")),
            listen_addr=str(data.get("listenAddr", defaults.listen_addr)),
            require_token=bool(data.get("requireToken", defaults.require_token)),
            token=str(data.get("token") or ""),
            decoders=default_decoders() if decoders is None else DecoderSet.from_list(decoders),
            extra=tuple((k, v) for k, v in data.items() if k not in _CONFIG_KEYS),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = dict(self.extra)
        out.update({
            "protocol": self.protocol.value,
            "unitId": self.unit_id,
            "timeoutMs": self.timeout_ms,
            "addressBase": self.address_base,
            "addressFormat": self.address_format,
            "valueBase": self.value_base,
            "serial": self.serial.to_dict(),
            "tcp": self.tcp.to_dict(),
            "listenAddr": self.listen_addr,
            "requireToken": self.require_token,
            "token": self.token,
            "decoders": self.decoders.to_list(),
        })
        return out

    def evolve(self, **changes) -> "DeviceConfig":
        return replace(self, **changes)

    @property
    def target(self) -> str:
        if self.protocol == Protocol.RTU:
            return self.serial.device
        return f"{self.tcp.host}:{self.tcp.port}"
