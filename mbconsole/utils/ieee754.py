import math
import struct
from enum import Enum
from typing import Union


class Endianness(str, Enum):
    """Byte order inside a single 16-bit register."""

    BIG = "big"
    LITTLE = "little"


class WordOrder(str, Enum):
    """Which register of a pair carries the high half of a 32-bit value."""

    HIGH_FIRST = "high-first"
    LOW_FIRST = "low-first"


def words_to_bytes32(
    reg_a: int,
    reg_b: int,
    endianness: Endianness = Endianness.BIG,
    word_order: WordOrder = WordOrder.HIGH_FIRST,
) -> bytes:
    """Assemble two 16-bit registers into a 4-byte big-endian buffer.

    `reg_a` is the first register received. With LOW_FIRST it holds the low
    word, so the pair is swapped before assembly. Each word contributes its
    high byte first for BIG and its low byte first for LITTLE; the high word
    always precedes the low word in the output.
    """
    reg_a &= 0xFFFF
    reg_b &= 0xFFFF
    high, low = (reg_b, reg_a) if word_order == WordOrder.LOW_FIRST else (reg_a, reg_b)
    out = bytearray()
    for word in (high, low):
        if endianness == Endianness.LITTLE:
            out.append(word & 0xFF)
            out.append((word >> 8) & 0xFF)
        else:
            out.append((word >> 8) & 0xFF)
            out.append(word & 0xFF)
    return bytes(out)


def from_bytes_to_uint32(b: bytes) -> int:
    """Interpret 4 bytes as a big-endian unsigned 32-bit integer."""
    if len(b) != 4:
        raise ValueError("uint32 requires exactly 4 bytes")
    return struct.unpack('>I', b)[0]


def from_bytes_to_int32(b: bytes) -> int:
    """Interpret 4 bytes as a big-endian two's-complement 32-bit integer."""
    if len(b) != 4:
        raise ValueError("int32 requires exactly 4 bytes")
    return struct.unpack('>i', b)[0]


def from_bytes_to_float32(b: bytes) -> float:
    """Interpret 4 bytes as a big-endian IEEE-754 float32.

    NaN and infinities are returned as-is; see `format_float32` for display.
    """
    if len(b) != 4:
        raise ValueError("float32 requires exactly 4 bytes")
    return struct.unpack('>f', b)[0]


def format_float32(value: float) -> str:
    """Render a decoded float for a table cell.

    Finite values use 3 decimal places, switching to exponential notation
    at magnitudes of 1e21 and above. NaN renders as "SENSOR FAULT" and
    infinities as "OVERFLOW".
    """
    if math.isnan(value):
        return "SENSOR FAULT"
    if math.isinf(value):
        return "OVERFLOW"
    if value == 0:
        # negative zero prints unsigned
        value = 0.0
    if abs(value) >= 1e21:
        return f"{value:.3e}"
    return f"{value:.3f}"


def int16_from_uint16(value: int) -> int:
    value &= 0xFFFF
    return value - 0x10000 if value & 0x8000 else value


def decode_pair(
    reg_a: int,
    reg_b: int,
    type_name: str,
    endianness: Endianness = Endianness.BIG,
    word_order: WordOrder = WordOrder.HIGH_FIRST,
) -> Union[int, float]:
    """Decode a register pair as "uint32", "int32" or "float32"."""
    b = words_to_bytes32(reg_a, reg_b, endianness, word_order)
    if type_name == "uint32":
        return from_bytes_to_uint32(b)
    if type_name == "int32":
        return from_bytes_to_int32(b)
    if type_name == "float32":
        return from_bytes_to_float32(b)
    raise ValueError(f"Unsupported 32-bit type '{type_name}'")
