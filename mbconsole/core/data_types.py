from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional


class ReadKind(str, Enum):
    """Readable Modbus spaces, valued by their wire names."""

    COILS = "coils"
    DISCRETE_INPUTS = "discrete_inputs"
    HOLDING_REGISTERS = "holding_registers"
    INPUT_REGISTERS = "input_registers"


@dataclass(frozen=True)
class ReadKindProperties:
    label: str
    bit_based: bool


READ_KIND_PROPERTIES: Dict[ReadKind, ReadKindProperties] = {
    ReadKind.COILS: ReadKindProperties(label="Coils", bit_based=True),
    ReadKind.DISCRETE_INPUTS: ReadKindProperties(label="Discrete Inputs", bit_based=True),
    ReadKind.HOLDING_REGISTERS: ReadKindProperties(label="Holding Registers", bit_based=False),
    ReadKind.INPUT_REGISTERS: ReadKindProperties(label="Input Registers", bit_based=False),
}


_READ_KIND_ALIASES = {
    "h": ReadKind.HOLDING_REGISTERS,
    "holding": ReadKind.HOLDING_REGISTERS,
    "hr": ReadKind.HOLDING_REGISTERS,
    "holding_registers": ReadKind.HOLDING_REGISTERS,
    "03": ReadKind.HOLDING_REGISTERS,
    "input": ReadKind.INPUT_REGISTERS,
    "ir": ReadKind.INPUT_REGISTERS,
    "input_registers": ReadKind.INPUT_REGISTERS,
    "04": ReadKind.INPUT_REGISTERS,
    "coil": ReadKind.COILS,
    "coils": ReadKind.COILS,
    "c": ReadKind.COILS,
    "01": ReadKind.COILS,
    "discrete": ReadKind.DISCRETE_INPUTS,
    "discrete_inputs": ReadKind.DISCRETE_INPUTS,
    "di": ReadKind.DISCRETE_INPUTS,
    "02": ReadKind.DISCRETE_INPUTS,
}


def parse_read_kind(value: Optional[str]) -> ReadKind:
    if not value:
        return default_read_kind()
    key = value.strip().lower().replace("-", "_")
    kind = _READ_KIND_ALIASES.get(key)
    if kind is None:
        raise ValueError(f"Unknown read kind '{value}'")
    return kind


def is_bit_kind(kind: ReadKind) -> bool:
    return READ_KIND_PROPERTIES[kind].bit_based


def default_read_kind() -> ReadKind:
    return ReadKind.HOLDING_REGISTERS
