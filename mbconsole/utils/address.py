"""Address parsing and formatting helpers.

Centralizes logic for parsing operator-entered Modbus addresses and
formatting addresses and register values for display.
"""

import math
import re
from typing import Any, Optional

_HEX_DIGITS = re.compile(r"[0-9a-f]+")
_DEC_DIGITS = re.compile(r"[0-9]+")


def parse_address(s: Any) -> Optional[int]:
    """Parse an address string into its numeric value.

    Supports decimal (e.g., "100") and ``0x``-prefixed hexadecimal
    (e.g., "0x64") input. Leading/trailing whitespace and letter case are
    ignored. Anything else, including partial matches, signs and a bare
    ``0x`` prefix, is rejected.

    Args:
        s: Address text to parse

    Returns:
        The numeric address, or None if the text is not a valid address

    Examples:
        >>> parse_address("100")
        100
        >>> parse_address("0x1A")
        26
        >>> parse_address("12x") is None
        True
    """
    if not isinstance(s, str):
        return None

    text = s.strip().lower()
    if not text:
        return None

    if text.startswith("0x"):
        digits = text[2:]
        if not _HEX_DIGITS.fullmatch(digits):
            return None
        return int(digits, 16)

    if not _DEC_DIGITS.fullmatch(text):
        return None
    return int(text, 10)


def parse_quantity(value: Any) -> Optional[int]:
    """Parse a read quantity; returns None unless it is a finite integer >= 1."""
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        text = value.strip()
        if not _DEC_DIGITS.fullmatch(text):
            return None
        value = int(text, 10)
    if isinstance(value, float):
        if not math.isfinite(value) or not value.is_integer():
            return None
        value = int(value)
    if not isinstance(value, int) or value < 1:
        return None
    return value


def format_address(value: int, fmt: int = 10) -> str:
    """Format an address value as a string.

    Args:
        value: Numeric address value
        fmt: 16 for zero-padded hex (e.g., "0x0064"); anything else is decimal

    Returns:
        Formatted address string

    Examples:
        >>> format_address(100, 10)
        '100'
        >>> format_address(100, 16)
        '0x0064'
    """
    if fmt == 16:
        return f"0x{value:04x}"
    return str(value)


def format_value(value: int, base: int = 10) -> str:
    """Format a register or bit value in the given display base (10 or 16)."""
    if base == 16:
        return f"0x{value:04x}"
    return str(value)
