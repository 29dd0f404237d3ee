from typing import Any

from mbconsole.errors import ValidationError
from mbconsole.utils.address import parse_address, parse_quantity

ADDRESS_ERROR = "Invalid address"
QUANTITY_ERROR = "Quantity must be >= 1"


def validate_address(text: Any) -> int:
    address = parse_address(text)
    if address is None:
        raise ValidationError("address", ADDRESS_ERROR)
    return address


def validate_quantity(value: Any) -> int:
    quantity = parse_quantity(value)
    if quantity is None:
        raise ValidationError("quantity", QUANTITY_ERROR)
    return quantity
