"""Exceptions raised by the Modbus engine and its collaborators.

All exceptions inherit from :class:`ModbusError` so callers can use a
single ``except ModbusError`` to catch address, transport and framing
failures alike.

The engine's public coroutines never let these escape: they are captured
into a failed :class:`~mbwire.result.ExchangeResult`. The one exception is
:class:`ProtocolConfigError`, which signals a caller bug and propagates.
"""

from __future__ import annotations

from .constants import ERROR_CODE_TIMEOUT, exception_message


class ModbusError(Exception):
    """Base exception for all mbwire errors."""

    error_code: int | None = None


class ParseError(ModbusError, ValueError):
    """Address text could not be parsed into an AddressHeader."""

    def __init__(self, text: str, reason: str) -> None:
        """Initialize with the offending text and the reason it was rejected.

        Args:
            text: The address text as supplied by the caller
            reason: Short human-readable explanation
        """
        self.text = text
        self.reason = reason
        super().__init__(
            f"Malformed Modbus address {text!r}: {reason}. "
            "Expected format is 'station;function;address[.bit]', e.g. '1;3;0'"
        )


class ConnectError(ModbusError):
    """Failed to connect to the device."""

    def __init__(self, message: str, *, timeout: bool = False) -> None:
        self.timeout = timeout
        if timeout:
            self.error_code = ERROR_CODE_TIMEOUT
        super().__init__(message)


class TransportError(ModbusError):
    """Failed to send to or receive from the device."""

    pass


class TransportTimeoutError(TransportError):
    """Device did not answer within the transport timeout."""

    error_code = ERROR_CODE_TIMEOUT


class TransportResetError(TransportError):
    """Connection was closed or reset while exchanging a frame."""

    pass


class FrameValidationError(ModbusError):
    """Response frame failed validation against its request."""

    pass


class CheckHeadMismatchError(FrameValidationError):
    """TCP response check-head does not match the request's."""

    def __init__(self, expected: bytes, received: bytes) -> None:
        self.expected = expected
        self.received = received
        super().__init__(
            f"Response check-head mismatch: expected {expected.hex().upper()}, "
            f"got {received.hex().upper()}"
        )


class CrcMismatchError(FrameValidationError):
    """RTU response CRC16 does not match its contents."""

    def __init__(self, computed: int, received: int) -> None:
        self.computed = computed
        self.received = received
        super().__init__(
            f"CRC verification failed: computed 0x{computed:04X}, received 0x{received:04X}"
        )


class UnexpectedFunctionCodeError(FrameValidationError):
    """Response echoes a different function code or unit id than requested."""

    pass


class ModbusExceptionResponse(FrameValidationError):
    """Device answered with a Modbus exception (function code | 0x80)."""

    def __init__(self, function_code: int, exception_code: int) -> None:
        """Initialize from the request function code and the exception byte.

        Args:
            function_code: Function code of the failed request
            exception_code: Exception code reported by the device
        """
        self.function_code = function_code
        self.exception_code = exception_code
        self.error_code = exception_code
        super().__init__(exception_message(exception_code))


class ProtocolConfigError(ModbusError):
    """Request combination the engine cannot serve (caller bug).

    Raised, for example, when a batch contains a data type that cannot be
    demultiplexed from a shared window. Never converted into a result.
    """

    pass


__all__ = [
    "CheckHeadMismatchError",
    "ConnectError",
    "CrcMismatchError",
    "FrameValidationError",
    "ModbusError",
    "ModbusExceptionResponse",
    "ParseError",
    "ProtocolConfigError",
    "TransportError",
    "TransportResetError",
    "TransportTimeoutError",
    "UnexpectedFunctionCodeError",
]
