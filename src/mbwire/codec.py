"""Modbus frame construction and response validation.

Two framings are supported:

TCP (MBAP-style)::

    check-head(2) | protocol(2)=0 | length(2) | unit(1) | function(1) | pdu

    ``length`` counts unit + function + pdu. The check-head rides in the
    transaction-id slot and must be echoed unchanged by the device.

RTU::

    unit(1) | function(1) | pdu | crc(2, low byte first)

Everything here is pure: codecs build bytes and validate bytes, the engine
does the I/O. Responses are read in two steps: first
``initial_response_size`` bytes, then ``remaining_response_size(request,
prefix)`` more, so a transport only has to offer ``receive_exact(n)``.
"""

from __future__ import annotations

import logging
import struct
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol, Union

from .constants import (
    BIT_READ_FUNCTION_CODES,
    COIL_OFF,
    COIL_ON,
    CRC_SIZE,
    EXCEPTION_FLAG,
    READ_FUNCTION_CODES,
    RTU_PREFIX_SIZE,
    RTU_WRITE_ECHO_SIZE,
    TCP_DATA_OFFSET,
    TCP_HEADER_SIZE,
    WRITE_FUNCTION_CODES,
)
from .crc import check_crc16, compute_crc16
from .exceptions import (
    CheckHeadMismatchError,
    CrcMismatchError,
    FrameValidationError,
    ModbusExceptionResponse,
    ProtocolConfigError,
    UnexpectedFunctionCodeError,
)
from .marshal import encode_bools
from .transaction import RandomTransactionIdGenerator, TransactionIdGenerator

_LOGGER = logging.getLogger(__name__)

MBAP_PROTOCOL_ID = 0x0000

# unit + function, counted by the MBAP length field on top of the pdu
MBAP_LENGTH_OVERHEAD = 2

# Largest MBAP length a conforming device can announce (unit + 253-byte PDU)
MAX_MBAP_LENGTH = 254

MAX_WRITE_REGISTERS = 123
MAX_WRITE_COILS = 1968


@dataclass(frozen=True)
class TcpFrame:
    """TCP request or response frame."""

    check_head: bytes
    unit_id: int
    function_code: int
    pdu: bytes = b""

    def to_bytes(self) -> bytes:
        """Serialize to wire bytes."""
        header = struct.pack(
            ">HHBB",
            MBAP_PROTOCOL_ID,
            MBAP_LENGTH_OVERHEAD + len(self.pdu),
            self.unit_id,
            self.function_code,
        )
        return bytes(self.check_head) + header + bytes(self.pdu)


@dataclass(frozen=True)
class RtuFrame:
    """RTU request or response frame; the CRC is derived on construction."""

    unit_id: int
    function_code: int
    pdu: bytes = b""
    crc: int = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "crc", compute_crc16(self._body()))

    def _body(self) -> bytes:
        return bytes((self.unit_id, self.function_code)) + bytes(self.pdu)

    def to_bytes(self) -> bytes:
        """Serialize to wire bytes."""
        return self._body() + struct.pack("<H", self.crc)


Frame = Union[TcpFrame, RtuFrame]


# ============================================================================
# PDU builders (the bytes following the function code)
# ============================================================================


def build_read_pdu(address: int, quantity: int) -> bytes:
    """Read request body for function codes 1-4."""
    if quantity < 1:
        raise ProtocolConfigError(f"Read quantity must be at least 1, got {quantity}")
    return struct.pack(">HH", address, quantity)


def build_write_single_coil_pdu(address: int, value: bool) -> bytes:
    """Function 5 body: ``0xFF00`` switches the coil on, ``0x0000`` off."""
    return struct.pack(">HH", address, COIL_ON if value else COIL_OFF)


def build_write_single_register_pdu(address: int, data: bytes) -> bytes:
    """Function 6 body carrying exactly one register (2 bytes)."""
    if len(data) != 2:
        raise ProtocolConfigError(
            f"Single register write needs exactly 2 bytes, got {len(data)}"
        )
    return struct.pack(">H", address) + bytes(data)


def build_write_multiple_registers_pdu(address: int, data: bytes) -> bytes:
    """Function 16 body: address, register count, byte count, data."""
    if not data or len(data) % 2:
        raise ProtocolConfigError(
            f"Register write data must be a non-empty even number of bytes, got {len(data)}"
        )
    quantity = len(data) // 2
    if quantity > MAX_WRITE_REGISTERS:
        raise ProtocolConfigError(
            f"Cannot write {quantity} registers in one request (max {MAX_WRITE_REGISTERS})"
        )
    return struct.pack(">HHB", address, quantity, len(data)) + bytes(data)


def build_write_multiple_coils_pdu(address: int, values: Sequence[bool]) -> bytes:
    """Function 15 body: address, coil count, byte count, packed coil bits."""
    if not values:
        raise ProtocolConfigError("Coil write needs at least one value")
    if len(values) > MAX_WRITE_COILS:
        raise ProtocolConfigError(
            f"Cannot write {len(values)} coils in one request (max {MAX_WRITE_COILS})"
        )
    packed = encode_bools(values)
    return struct.pack(">HHB", address, len(values), len(packed)) + packed


# ============================================================================
# Codecs
# ============================================================================


class FrameCodec(Protocol):
    """Builds requests and validates responses for one framing."""

    name: str

    def build_request(self, unit_id: int, function_code: int, pdu: bytes) -> Frame:
        """Wrap a PDU into a request frame."""
        ...

    @property
    def initial_response_size(self) -> int:
        """Bytes to read before the response size is known."""
        ...

    def remaining_response_size(self, request: Frame, prefix: bytes) -> int:
        """Bytes still to read after the initial prefix."""
        ...

    def parse_response(self, request: Frame, raw: bytes) -> bytes:
        """Validate a complete response and return its data payload."""
        ...


def _check_byte_count(function_code: int, declared: int, data: bytes) -> None:
    if function_code in READ_FUNCTION_CODES and declared != len(data):
        raise FrameValidationError(
            f"Byte count mismatch: header declares {declared}, frame carries {len(data)}"
        )


class TcpFrameCodec:
    """MBAP-style TCP framing with check-head validation."""

    name = "tcp"

    def __init__(self, id_generator: TransactionIdGenerator | None = None) -> None:
        """Initialize the codec.

        Args:
            id_generator: Check-head source; random per call when omitted
        """
        self._id_generator = id_generator or RandomTransactionIdGenerator()

    @property
    def initial_response_size(self) -> int:
        return TCP_HEADER_SIZE

    def build_request(self, unit_id: int, function_code: int, pdu: bytes) -> TcpFrame:
        check_head = self._id_generator.next_id(function_code)
        _LOGGER.debug("TCP check-head %s for function %d", check_head.hex(), function_code)
        return TcpFrame(
            check_head=check_head,
            unit_id=unit_id,
            function_code=function_code,
            pdu=pdu,
        )

    def remaining_response_size(self, request: Frame, prefix: bytes) -> int:
        if len(prefix) < TCP_HEADER_SIZE:
            raise FrameValidationError(
                f"Response header too short: {len(prefix)} bytes, need {TCP_HEADER_SIZE}"
            )
        (length,) = struct.unpack(">H", prefix[4:6])
        if not MBAP_LENGTH_OVERHEAD <= length <= MAX_MBAP_LENGTH:
            raise FrameValidationError(f"Invalid MBAP length field: {length}")
        return length - MBAP_LENGTH_OVERHEAD

    def parse_response(self, request: Frame, raw: bytes) -> bytes:
        if not isinstance(request, TcpFrame):
            raise TypeError(f"TCP codec cannot validate {type(request).__name__}")
        if not raw:
            raise FrameValidationError("Empty response")
        if len(raw) < TCP_HEADER_SIZE:
            raise FrameValidationError(f"Response too short: {len(raw)} bytes")

        received_head = bytes(raw[0:2])
        if received_head != bytes(request.check_head):
            raise CheckHeadMismatchError(bytes(request.check_head), received_head)

        function_code = raw[7]
        if function_code & EXCEPTION_FLAG:
            if len(raw) < TCP_DATA_OFFSET:
                raise FrameValidationError("Exception response carries no exception code")
            raise ModbusExceptionResponse(request.function_code, raw[8])
        if function_code != request.function_code:
            raise UnexpectedFunctionCodeError(
                f"Response function code {function_code} does not match "
                f"request function code {request.function_code}"
            )

        if function_code in READ_FUNCTION_CODES:
            if len(raw) < TCP_DATA_OFFSET:
                raise FrameValidationError("Read response carries no byte count")
            data = bytes(raw[TCP_DATA_OFFSET:])
            _check_byte_count(function_code, raw[8], data)
            return data
        # Write echoes and other functions: everything after the function code
        return bytes(raw[TCP_HEADER_SIZE:])


class RtuFrameCodec:
    """RTU framing with CRC16 validation."""

    name = "rtu"

    def __init__(self, strict_crc: bool = True) -> None:
        """Initialize the codec.

        Args:
            strict_crc: Reject responses whose CRC does not verify. When
                False the mismatch is logged and the frame is accepted.
                An engine overrides this with its ``EngineConfig.strict_crc``.
        """
        self._strict_crc = strict_crc

    @property
    def strict_crc(self) -> bool:
        return self._strict_crc

    @strict_crc.setter
    def strict_crc(self, value: bool) -> None:
        self._strict_crc = value

    @property
    def initial_response_size(self) -> int:
        return RTU_PREFIX_SIZE

    def build_request(self, unit_id: int, function_code: int, pdu: bytes) -> RtuFrame:
        return RtuFrame(unit_id=unit_id, function_code=function_code, pdu=pdu)

    def remaining_response_size(self, request: Frame, prefix: bytes) -> int:
        if len(prefix) < RTU_PREFIX_SIZE:
            raise FrameValidationError(
                f"Response prefix too short: {len(prefix)} bytes, need {RTU_PREFIX_SIZE}"
            )
        function_code = prefix[1]
        if function_code & EXCEPTION_FLAG:
            return CRC_SIZE
        if function_code in READ_FUNCTION_CODES:
            return prefix[2] + CRC_SIZE
        if function_code in WRITE_FUNCTION_CODES:
            return RTU_WRITE_ECHO_SIZE - RTU_PREFIX_SIZE
        raise UnexpectedFunctionCodeError(
            f"Cannot size RTU response for function code {function_code}"
        )

    def parse_response(self, request: Frame, raw: bytes) -> bytes:
        if not isinstance(request, RtuFrame):
            raise TypeError(f"RTU codec cannot validate {type(request).__name__}")
        if not raw:
            raise FrameValidationError("Empty response")
        if len(raw) < RTU_PREFIX_SIZE + CRC_SIZE:
            raise FrameValidationError(f"Response too short: {len(raw)} bytes")

        if not check_crc16(raw):
            computed = compute_crc16(raw[:-CRC_SIZE])
            (received,) = struct.unpack("<H", raw[-CRC_SIZE:])
            if self._strict_crc:
                raise CrcMismatchError(computed, received)
            _LOGGER.warning(
                "CRC mismatch accepted (strict_crc disabled): computed 0x%04X, "
                "received 0x%04X, frame %s",
                computed,
                received,
                raw.hex(),
            )

        if raw[0] != request.unit_id:
            raise UnexpectedFunctionCodeError(
                f"Response from unit {raw[0]} does not match request unit {request.unit_id}"
            )

        function_code = raw[1]
        if function_code & EXCEPTION_FLAG:
            raise ModbusExceptionResponse(request.function_code, raw[2])
        if function_code != request.function_code:
            raise UnexpectedFunctionCodeError(
                f"Response function code {function_code} does not match "
                f"request function code {request.function_code}"
            )

        if function_code in READ_FUNCTION_CODES:
            data = bytes(raw[RTU_PREFIX_SIZE:-CRC_SIZE])
            _check_byte_count(function_code, raw[2], data)
            return data
        return bytes(raw[2:-CRC_SIZE])


def is_bit_function(function_code: int) -> bool:
    """True for coil and discrete-input reads."""
    return function_code in BIT_READ_FUNCTION_CODES


__all__ = [
    "Frame",
    "FrameCodec",
    "RtuFrame",
    "RtuFrameCodec",
    "TcpFrame",
    "TcpFrameCodec",
    "build_read_pdu",
    "build_write_multiple_coils_pdu",
    "build_write_multiple_registers_pdu",
    "build_write_single_coil_pdu",
    "build_write_single_register_pdu",
    "is_bit_function",
]
