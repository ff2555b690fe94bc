"""Modbus address text grammar.

Addresses are written as ``"station;function;address[.bit]"``::

    "1;3;100"        station 1, read holding registers, register 100
    "1;3;10.15"      same, bit 15 of register 10
    "s:2;f:4;0x10"   prefixes and hexadecimal are accepted

Whitespace is ignored and the text is case-insensitive.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .exceptions import ParseError

_LOGGER = logging.getLogger(__name__)

FIELD_SEPARATOR = ";"
BIT_SEPARATOR = "."
STATION_PREFIX = "s:"
FUNCTION_PREFIX = "f:"

MAX_BYTE = 0xFF
MAX_ADDRESS = 0xFFFF
MAX_BIT_INDEX = 15


@dataclass(frozen=True)
class AddressHeader:
    """Parsed Modbus address.

    Attributes:
        station_number: Unit/slave id (0-255)
        function_code: Modbus function code (0-255)
        address: Register or coil address (0-65535)
        bit_index: Bit within the 16-bit register for single-bit access
        bit_from_left: Count ``bit_index`` from the most-significant bit
    """

    station_number: int
    function_code: int
    address: int
    bit_index: int | None = None
    bit_from_left: bool = True

    def __post_init__(self) -> None:
        text = format_address(self)
        if not 0 <= self.station_number <= MAX_BYTE:
            raise ParseError(text, f"station number {self.station_number} out of range 0-255")
        if not 0 <= self.function_code <= MAX_BYTE:
            raise ParseError(text, f"function code {self.function_code} out of range 0-255")
        if not 0 <= self.address <= MAX_ADDRESS:
            raise ParseError(text, f"address {self.address} out of range 0-65535")
        if self.bit_index is not None and not 0 <= self.bit_index <= MAX_BIT_INDEX:
            raise ParseError(text, f"bit index {self.bit_index} out of range 0-15")

    def __str__(self) -> str:
        return format_address(self)


def _parse_number(text: str, field: str, original: str) -> int:
    """Parse a decimal or ``0x`` hexadecimal unsigned integer."""
    try:
        if text.startswith("0x"):
            value = int(text[2:], 16)
        elif text.isdigit():
            value = int(text)
        else:
            raise ValueError(text)
    except ValueError:
        raise ParseError(original, f"{field} {text!r} is not an unsigned integer") from None
    return value


def parse_address(text: str) -> AddressHeader:
    """Parse address text into an :class:`AddressHeader`.

    Args:
        text: Address in ``"station;function;address[.bit]"`` form

    Returns:
        Parsed header

    Raises:
        ParseError: On wrong field count, non-numeric content or
            out-of-range values. No partial header is ever returned.
    """
    if not isinstance(text, str):
        raise ParseError(repr(text), "address must be a string")

    normalized = "".join(text.split()).lower()
    parts = normalized.split(FIELD_SEPARATOR)
    if len(parts) != 3:
        raise ParseError(text, f"expected 3 fields separated by ';', got {len(parts)}")

    station_text, function_text, address_text = parts
    station_text = station_text.removeprefix(STATION_PREFIX)
    function_text = function_text.removeprefix(FUNCTION_PREFIX)

    bit_index: int | None = None
    if BIT_SEPARATOR in address_text:
        address_text, _, bit_text = address_text.partition(BIT_SEPARATOR)
        bit_index = _parse_number(bit_text, "bit index", text)

    return AddressHeader(
        station_number=_parse_number(station_text, "station number", text),
        function_code=_parse_number(function_text, "function code", text),
        address=_parse_number(address_text, "address", text),
        bit_index=bit_index,
    )


def try_parse_address(text: str) -> AddressHeader | None:
    """Parse address text, returning None instead of raising."""
    try:
        return parse_address(text)
    except ParseError as err:
        _LOGGER.debug("Rejected address %r: %s", text, err.reason)
        return None


def format_address(header: AddressHeader) -> str:
    """Render a header back into address text (inverse of parsing)."""
    text = f"{header.station_number};{header.function_code};{header.address}"
    if header.bit_index is not None:
        text += f"{BIT_SEPARATOR}{header.bit_index}"
    return text


__all__ = [
    "AddressHeader",
    "format_address",
    "parse_address",
    "try_parse_address",
]
