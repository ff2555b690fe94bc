"""Modbus protocol constants.

Function codes, exception-code descriptions and the size limits the
frame codec and batch coalescer work within.
"""

from __future__ import annotations

from enum import IntEnum


class FunctionCode(IntEnum):
    """Modbus function codes served by the engine."""

    READ_COILS = 0x01
    READ_DISCRETE_INPUTS = 0x02
    READ_HOLDING_REGISTERS = 0x03
    READ_INPUT_REGISTERS = 0x04
    WRITE_SINGLE_COIL = 0x05
    WRITE_SINGLE_REGISTER = 0x06
    WRITE_MULTIPLE_COILS = 0x0F
    WRITE_MULTIPLE_REGISTERS = 0x10


READ_FUNCTION_CODES = frozenset(
    {
        FunctionCode.READ_COILS,
        FunctionCode.READ_DISCRETE_INPUTS,
        FunctionCode.READ_HOLDING_REGISTERS,
        FunctionCode.READ_INPUT_REGISTERS,
    }
)

# Function codes whose data is bit-packed (coils and discrete inputs)
BIT_READ_FUNCTION_CODES = frozenset(
    {FunctionCode.READ_COILS, FunctionCode.READ_DISCRETE_INPUTS}
)

WRITE_FUNCTION_CODES = frozenset(
    {
        FunctionCode.WRITE_SINGLE_COIL,
        FunctionCode.WRITE_SINGLE_REGISTER,
        FunctionCode.WRITE_MULTIPLE_COILS,
        FunctionCode.WRITE_MULTIPLE_REGISTERS,
    }
)

# High bit set on the echoed function code of an exception response
EXCEPTION_FLAG = 0x80

# Single-coil write payloads
COIL_ON = 0xFF00
COIL_OFF = 0x0000

# Protocol limits
MAX_READ_REGISTERS = 125
BATCH_SAFETY_MARGIN = 4
BATCH_WINDOW_REGISTERS = MAX_READ_REGISTERS - BATCH_SAFETY_MARGIN  # 121

# Frame layout
TCP_HEADER_SIZE = 8  # check-head(2) + protocol(2) + length(2) + unit(1) + function(1)
TCP_DATA_OFFSET = 9  # TCP header + byte count
RTU_PREFIX_SIZE = 3  # unit(1) + function(1) + byte count / exception code(1)
RTU_WRITE_ECHO_SIZE = 8  # unit + function + address(2) + value/quantity(2) + crc(2)
CRC_SIZE = 2

DEFAULT_TCP_PORT = 502

# Numeric error codes carried on results
ERROR_CODE_TIMEOUT = 408

EXCEPTION_MESSAGES: dict[int, str] = {
    0x01: "Illegal function",
    0x02: "Illegal data address",
    0x03: "Illegal data value",
    0x04: "Slave device failure",
    0x05: "Acknowledge",
    0x06: "Slave device busy",
    0x08: "Memory parity error",
    0x0A: "Gateway path unavailable",
    0x0B: "Gateway target device failed to respond",
}


def exception_message(exception_code: int) -> str:
    """Describe a Modbus exception code.

    Args:
        exception_code: Exception byte from an exception response

    Returns:
        Human-readable message, e.g. "Exception code 2: Illegal data address"
    """
    description = EXCEPTION_MESSAGES.get(exception_code)
    if description is None:
        return f"Exception code {exception_code}: Unknown exception"
    return f"Exception code {exception_code}: {description}"


__all__ = [
    "BATCH_SAFETY_MARGIN",
    "BATCH_WINDOW_REGISTERS",
    "BIT_READ_FUNCTION_CODES",
    "COIL_OFF",
    "COIL_ON",
    "CRC_SIZE",
    "DEFAULT_TCP_PORT",
    "ERROR_CODE_TIMEOUT",
    "EXCEPTION_FLAG",
    "EXCEPTION_MESSAGES",
    "FunctionCode",
    "MAX_READ_REGISTERS",
    "READ_FUNCTION_CODES",
    "RTU_PREFIX_SIZE",
    "RTU_WRITE_ECHO_SIZE",
    "TCP_DATA_OFFSET",
    "TCP_HEADER_SIZE",
    "WRITE_FUNCTION_CODES",
    "exception_message",
]
