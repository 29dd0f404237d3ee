"""Register decoding helpers for read results.

Centralizes the logic for tiling raw read values into display rows and
overlaying per-type interpretations (UInt16, Int16, UInt32, Int32, Float32)
under a configurable endianness and word order.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Iterable, Iterator, List, Optional, Tuple, Union

from mbconsole.errors import RemoteReadError
from mbconsole.utils.address import format_address, format_value
from mbconsole.utils.ieee754 import (
    Endianness,
    WordOrder,
    decode_pair,
    format_float32,
    int16_from_uint16,
)

if TYPE_CHECKING:
    from mbconsole.core.models import ReadResult


class DecoderType(str, Enum):
    """Interpretations that can be overlaid on register rows.

    Declaration order is the canonical display order.
    """

    UINT16 = "uint16"
    INT16 = "int16"
    UINT32 = "uint32"
    INT32 = "int32"
    FLOAT32 = "float32"


PLACEHOLDER = "—"


@dataclass(frozen=True)
class DecoderDescriptor:
    """How to decode registers for one type."""

    type: DecoderType
    endianness: Endianness = Endianness.BIG
    word_order: WordOrder = WordOrder.HIGH_FIRST
    enabled: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DecoderDescriptor":
        try:
            dtype = DecoderType(data["type"])
        except (KeyError, ValueError):
            raise ValueError(f"Unknown decoder type '{data.get('type')}'")
        return cls(
            type=dtype,
            endianness=Endianness(data.get("endianness") or Endianness.BIG),
            word_order=WordOrder(data.get("wordOrder") or WordOrder.HIGH_FIRST),
            enabled=bool(data.get("enabled", False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "endianness": self.endianness.value,
            "wordOrder": self.word_order.value,
            "enabled": self.enabled,
        }

    def evolve(self, **changes) -> "DecoderDescriptor":
        return replace(self, **changes)


class DecoderSet:
    """Immutable, ordered set of decoder descriptors keyed by type.

    `upsert` replaces an existing entry of the same type in place, keeping
    the position of every other entry, or appends when the type is absent.
    """

    __slots__ = ("_items",)

    def __init__(self, descriptors: Iterable[DecoderDescriptor] = ()) -> None:
        items: List[DecoderDescriptor] = []
        for descriptor in descriptors:
            _upsert_into(items, descriptor)
        self._items: Tuple[DecoderDescriptor, ...] = tuple(items)

    @classmethod
    def from_list(cls, raw: Optional[Iterable[Dict[str, Any]]]) -> "DecoderSet":
        return cls(DecoderDescriptor.from_dict(item) for item in (raw or []))

    def to_list(self) -> List[Dict[str, Any]]:
        return [d.to_dict() for d in self._items]

    def upsert(self, descriptor: DecoderDescriptor) -> "DecoderSet":
        items = list(self._items)
        _upsert_into(items, descriptor)
        return DecoderSet(items)

    def get(self, dtype: Union[DecoderType, str]) -> DecoderDescriptor:
        """Return the stored descriptor, or a disabled default when absent."""
        dtype = DecoderType(dtype)
        for descriptor in self._items:
            if descriptor.type == dtype:
                return descriptor
        return DecoderDescriptor(type=dtype)

    def enabled(self) -> List[DecoderDescriptor]:
        """Enabled descriptors in canonical type order."""
        by_type = {d.type: d for d in self._items if d.enabled}
        return [by_type[t] for t in DecoderType if t in by_type]

    def __iter__(self) -> Iterator[DecoderDescriptor]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DecoderSet):
            return NotImplemented
        return self._items == other._items

    def __hash__(self) -> int:
        return hash(self._items)

    def __repr__(self) -> str:
        return f"DecoderSet({list(self._items)!r})"


def _upsert_into(items: List[DecoderDescriptor], descriptor: DecoderDescriptor) -> None:
    for idx, existing in enumerate(items):
        if existing.type == descriptor.type:
            items[idx] = descriptor
            return
    items.append(descriptor)


@dataclass(frozen=True)
class Cell:
    """One table cell; `detail` keeps the unrounded value for inspection."""

    value: str
    col_span: int = 1
    detail: Optional[str] = None


@dataclass(frozen=True)
class RenderRow:
    label: str
    cells: Tuple[Cell, ...]
    decoder: Optional[DecoderType] = None  # None for base rows

    @property
    def is_decoded(self) -> bool:
        return self.decoder is not None


def decode_chunk(registers: List[int], descriptor: DecoderDescriptor, columns: int) -> List[Cell]:
    """Decode one chunk of registers with a single descriptor.

    16-bit types produce one cell per register. 32-bit types consume
    registers in pairs (a trailing odd register is dropped) and produce
    cells spanning two columns; a chunk without a complete pair yields a
    single placeholder cell spanning the whole row.
    """
    dtype = descriptor.type
    if dtype == DecoderType.UINT16:
        return [Cell(str(r & 0xFFFF)) for r in registers]
    if dtype == DecoderType.INT16:
        return [Cell(str(int16_from_uint16(r))) for r in registers]

    cells: List[Cell] = []
    for i in range(0, len(registers) - 1, 2):
        value = decode_pair(
            registers[i],
            registers[i + 1],
            dtype.value,
            descriptor.endianness,
            descriptor.word_order,
        )
        if dtype == DecoderType.FLOAT32:
            cells.append(Cell(format_float32(value), col_span=2, detail=repr(value)))
        else:
            cells.append(Cell(str(value), col_span=2))
    if not cells:
        cells.append(Cell(PLACEHOLDER, col_span=columns))
    return cells


def build_rows(
    result: Optional["ReadResult"],
    descriptors: Union[DecoderSet, Iterable[DecoderDescriptor]] = (),
    address_base: int = 0,
    address_format: int = 10,
    value_base: int = 10,
    columns: int = 8,
) -> List[RenderRow]:
    """Tile a read result into base rows plus decoded overlay rows.

    Args:
        result: Latest read result, or None when nothing was read yet
        descriptors: Decoder descriptors; only enabled ones produce rows
        address_base: Display address base (0 or 1); labels show the raw
            protocol address either way
        address_format: 10 or 16 for row labels
        value_base: 10 or 16 for base-row cells
        columns: Values per row

    Returns:
        List of RenderRow, each decoded row directly beneath its base row

    Raises:
        RemoteReadError: If the result carries an error message
        ValueError: If `columns` is less than 1
    """
    if result is None:
        return []
    if result.error_message:
        raise RemoteReadError(result.error_message)
    if columns < 1:
        raise ValueError("columns must be >= 1")

    if not isinstance(descriptors, DecoderSet):
        descriptors = DecoderSet(descriptors)
    enabled = descriptors.enabled()

    registers = result.reg_values
    if registers is not None:
        values = [int(v) & 0xFFFF for v in registers]
    else:
        values = [1 if v else 0 for v in (result.bool_values or [])]

    rows: List[RenderRow] = []
    for offset in range(0, len(values), columns):
        chunk = values[offset:offset + columns]
        rows.append(RenderRow(
            label=format_address(result.address + offset, address_format),
            cells=tuple(Cell(format_value(v, value_base)) for v in chunk),
        ))
        if registers is None:
            continue
        for descriptor in enabled:
            rows.append(RenderRow(
                label=f"↳ {descriptor.type.value}",
                cells=tuple(decode_chunk(chunk, descriptor, columns)),
                decoder=descriptor.type,
            ))
    return rows
