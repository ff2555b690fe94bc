"""Modbus exchange orchestration.

:class:`ModbusEngine` composes a :class:`~mbwire.transports.base.FrameTransport`
with a frame codec and drives every logical operation through one
exclusive section per engine::

    acquire lock -> connect if needed -> send -> await response
        -> validate -> decode -> disconnect unless long-lived -> release

Modbus has no multiplexing, so a second request on the wire before the
first response arrives would corrupt both. The lock makes each physical
exchange atomic; connect and disconnect go through the same lock.

Public coroutines return :class:`~mbwire.result.ExchangeResult` and do not
raise for address, transport or protocol failures. Only
:class:`~mbwire.exceptions.ProtocolConfigError` (a caller bug) propagates.

Example:
    engine = create_tcp_engine("192.168.1.50")
    async with engine:
        result = await engine.read_value("1;3;100", DataType.FLOAT)
        if result.success:
            print(result.value)
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Sequence
from typing import Any, TypeVar

from .address import AddressHeader, format_address, parse_address
from .batch import BatchCoalescer, BatchOutput, BatchRequest, WarningCallback
from .codec import (
    Frame,
    FrameCodec,
    RtuFrameCodec,
    build_read_pdu,
    build_write_multiple_coils_pdu,
    build_write_multiple_registers_pdu,
    build_write_single_coil_pdu,
    build_write_single_register_pdu,
    is_bit_function,
)
from .config import EngineConfig
from .constants import READ_FUNCTION_CODES, FunctionCode
from .exceptions import (
    FrameValidationError,
    ModbusError,
    ModbusExceptionResponse,
    ParseError,
    ProtocolConfigError,
    TransportError,
)
from .marshal import (
    REGISTER_SIZE,
    DataType,
    decode,
    decode_bit,
    decode_bools,
    encode,
)
from .result import ExchangeResult, hex_trace
from .transports.base import FrameTransport

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

# Attempts per exchange on RTU framing (one local retry)
RTU_EXCHANGE_ATTEMPTS = 2

# Echoed address + value/quantity of a write response
WRITE_ECHO_SIZE = 4


class ModbusEngine:
    """Modbus master bound to one transport.

    Example:
        engine = ModbusEngine(TcpTransport("10.0.0.5"), TcpFrameCodec())
        result = await engine.read("1;3;0", length=10)
        print(result.value.hex(), result.requests, result.responses)
    """

    def __init__(
        self,
        transport: FrameTransport,
        codec: FrameCodec,
        config: EngineConfig | None = None,
        *,
        on_warning: WarningCallback | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            transport: Byte-stream connection to the device
            codec: Framing matching the transport (TCP or RTU); an RTU
                codec takes its CRC strictness from ``config``
            config: Protocol settings; defaults when omitted
            on_warning: Called with (message, exception) when an exchange is
                retried
        """
        self._transport = transport
        self._codec = codec
        self._config = config or EngineConfig()
        self._config.validate()
        if isinstance(codec, RtuFrameCodec):
            codec.strict_crc = self._config.strict_crc
        self._on_warning = on_warning
        self._lock = asyncio.Lock()
        self._has_connected = False
        self._coalescer = BatchCoalescer(
            self._read_window,
            data_format=self._config.data_format,
            reverse=self._config.reverse,
            retry_count=self._config.retry_count,
            on_warning=on_warning,
        )

    @property
    def transport(self) -> FrameTransport:
        return self._transport

    @property
    def codec(self) -> FrameCodec:
        return self._codec

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def connected(self) -> bool:
        return self._transport.connected

    async def __aenter__(self) -> ModbusEngine:
        """Connect on entering the context; raises ConnectError on failure."""
        (await self.connect()).unwrap()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.disconnect()

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def _warn(self, message: str, error: BaseException | None) -> None:
        _LOGGER.warning("%s", message)
        if self._on_warning is not None:
            self._on_warning(message, error)

    async def _ensure_connected(self) -> None:
        if self._transport.connected:
            return
        if self._has_connected and self._config.long_lived:
            _LOGGER.info("Reconnecting to %s", self._transport.description)
        await self._transport.connect()
        self._has_connected = True
        _LOGGER.debug("Connected to %s", self._transport.description)

    async def connect(self) -> ExchangeResult[None]:
        """Open the connection."""
        result: ExchangeResult[None] = ExchangeResult()
        try:
            async with self._lock:
                await self._ensure_connected()
        except ModbusError as err:
            result.fail(err)
        return result.complete()

    async def disconnect(self) -> ExchangeResult[None]:
        """Close the connection."""
        async with self._lock:
            await self._transport.close()
        return ExchangeResult.ok()

    @contextlib.asynccontextmanager
    async def _session(self) -> AsyncIterator[None]:
        """Hold the exclusive section across one exchange.

        Connects on entry when needed. On exit the connection is closed
        unless it is long-lived; a long-lived connection is also closed
        after a transport or framing error, or when the exchange is
        cancelled, so the next call starts on a clean stream.
        """
        async with self._lock:
            await self._ensure_connected()
            try:
                yield
            except ModbusExceptionResponse:
                raise
            except (TransportError, FrameValidationError, asyncio.CancelledError) as err:
                # A cancelled exchange may leave its response unread on the stream
                if self._config.long_lived:
                    _LOGGER.debug(
                        "Dropping connection to %s after error: %s",
                        self._transport.description,
                        str(err) or type(err).__name__,
                    )
                    await self._transport.close()
                raise
            finally:
                if not self._config.long_lived:
                    await self._transport.close()

    # ------------------------------------------------------------------
    # Physical exchange
    # ------------------------------------------------------------------

    async def _send_receive(self, frame: Frame, result: ExchangeResult[Any]) -> bytes:
        request = frame.to_bytes()
        result.record_request(request)
        _LOGGER.debug("TX %s: %s", self._transport.description, hex_trace(request))
        await self._transport.send(request)

        prefix = await self._transport.receive_exact(self._codec.initial_response_size)
        try:
            remaining = self._codec.remaining_response_size(frame, prefix)
        except FrameValidationError:
            result.record_response(prefix)
            raise
        response = prefix
        if remaining:
            response += await self._transport.receive_exact(remaining)
        result.record_response(response)
        _LOGGER.debug("RX %s: %s", self._transport.description, hex_trace(response))
        return response

    async def _exchange(
        self,
        station_number: int,
        function_code: int,
        pdu: bytes,
        result: ExchangeResult[Any],
    ) -> bytes:
        """Send one request and return the validated response payload.

        Must be called inside :meth:`_session`. RTU framing gets one local
        retry of the send and receive after a transport error.
        """
        frame = self._codec.build_request(station_number, function_code, pdu)
        attempts = RTU_EXCHANGE_ATTEMPTS if self._codec.name == "rtu" else 1
        for attempt in range(1, attempts + 1):
            try:
                response = await self._send_receive(frame, result)
                break
            except TransportError as err:
                if attempt >= attempts:
                    raise
                self._warn(
                    f"RTU exchange with {self._transport.description} failed, retrying: {err}",
                    err,
                )
                await self._transport.discard_input()
        return self._codec.parse_response(frame, response)

    async def _run(
        self,
        operation: Callable[[ExchangeResult[Any]], Awaitable[T]],
    ) -> ExchangeResult[T]:
        """Run an operation, capturing ModbusError into the result."""
        result: ExchangeResult[T] = ExchangeResult()
        try:
            result.value = await operation(result)
        except ProtocolConfigError:
            raise
        except ModbusError as err:
            _LOGGER.debug("Operation failed: %s", err)
            result.fail(err)
        return result.complete()

    async def _read_window(
        self, header: AddressHeader, length: int, result: ExchangeResult[Any]
    ) -> bytes:
        if header.function_code not in READ_FUNCTION_CODES:
            raise ProtocolConfigError(
                f"Function code {header.function_code} is not a read function "
                f"({format_address(header)})"
            )
        async with self._session():
            return await self._exchange(
                header.station_number,
                header.function_code,
                build_read_pdu(header.address, length),
                result,
            )

    @staticmethod
    def _header(address: str | AddressHeader) -> AddressHeader:
        return parse_address(address) if isinstance(address, str) else address

    @staticmethod
    def _check_echo(pdu: bytes, payload: bytes) -> None:
        if payload[:WRITE_ECHO_SIZE] != pdu[:WRITE_ECHO_SIZE]:
            raise FrameValidationError(
                f"Write echo {payload[:WRITE_ECHO_SIZE].hex()} does not match "
                f"request {pdu[:WRITE_ECHO_SIZE].hex()}"
            )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def read(self, address: str | AddressHeader, length: int = 1) -> ExchangeResult[bytes]:
        """Read raw data bytes.

        Args:
            address: Address text or header; its function code selects the
                table (1 coils, 2 discrete inputs, 3 holding, 4 input)
            length: Registers (or coils) to read

        Returns:
            Result holding the response data payload
        """

        async def operation(result: ExchangeResult[Any]) -> bytes:
            header = self._header(address)
            return await self._read_window(header, length, result)

        return await self._run(operation)

    async def read_values(
        self,
        address: str | AddressHeader,
        data_type: DataType,
        count: int = 1,
    ) -> ExchangeResult[list[Any]]:
        """Read ``count`` consecutive values of ``data_type``.

        Coil and discrete-input addresses only yield ``BOOL``. On register
        tables ``BOOL`` reads each register as a flag (non-zero is true),
        unless the address carries a ``.bit`` suffix.
        """

        async def operation(result: ExchangeResult[Any]) -> list[Any]:
            header = self._header(address)
            if is_bit_function(header.function_code):
                if data_type is not DataType.BOOL:
                    raise ProtocolConfigError(
                        f"Function code {header.function_code} reads bits, "
                        f"not {data_type.value}"
                    )
                payload = await self._read_window(header, count, result)
                return decode_bools(payload, count)

            if data_type is DataType.BOOL:
                if header.bit_index is not None:
                    payload = await self._read_window(header, 1, result)
                    bit = decode_bit(
                        payload,
                        0,
                        header.bit_index,
                        header.bit_from_left,
                        self._config.reverse,
                    )
                    return [bit]
                payload = await self._read_window(header, count, result)
                words = decode(payload, DataType.UINT16, count=count, reverse=self._config.reverse)
                return [word != 0 for word in words]

            if data_type is DataType.BYTE:
                quantity = (count + REGISTER_SIZE - 1) // REGISTER_SIZE
            else:
                quantity = data_type.register_count * count
            payload = await self._read_window(header, quantity, result)
            return decode(
                payload,
                data_type,
                count=count,
                data_format=self._config.data_format,
                reverse=self._config.reverse,
            )

        return await self._run(operation)

    async def read_value(
        self, address: str | AddressHeader, data_type: DataType
    ) -> ExchangeResult[Any]:
        """Read a single value of ``data_type``."""
        result = await self.read_values(address, data_type, 1)
        if result.success and result.value:
            result.value = result.value[0]
        return result

    async def read_bit(
        self,
        address: str | AddressHeader,
        from_left: bool | None = None,
    ) -> ExchangeResult[bool]:
        """Read one bit of a 16-bit register, e.g. ``"1;3;10.15"``.

        Args:
            address: Address whose ``.bit`` suffix names the bit
            from_left: Count the bit from the most-significant end; the
                header's setting when None

        Returns:
            Result holding the bit
        """

        async def operation(result: ExchangeResult[Any]) -> bool:
            header = self._header(address)
            if is_bit_function(header.function_code):
                payload = await self._read_window(header, 1, result)
                return decode_bools(payload, 1)[0]
            if header.bit_index is None:
                raise ParseError(format_address(header), "a '.bit' suffix is required")
            payload = await self._read_window(header, 1, result)
            left = header.bit_from_left if from_left is None else from_left
            return decode_bit(payload, 0, header.bit_index, left, self._config.reverse)

        return await self._run(operation)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def _write_registers(
        self, header: AddressHeader, data: bytes, result: ExchangeResult[Any]
    ) -> None:
        multiple = header.function_code == FunctionCode.WRITE_MULTIPLE_REGISTERS
        if multiple or len(data) > REGISTER_SIZE:
            function_code = FunctionCode.WRITE_MULTIPLE_REGISTERS
            pdu = build_write_multiple_registers_pdu(header.address, data)
        else:
            function_code = FunctionCode.WRITE_SINGLE_REGISTER
            pdu = build_write_single_register_pdu(header.address, data)
        async with self._session():
            payload = await self._exchange(header.station_number, function_code, pdu, result)
        self._check_echo(pdu, payload)

    async def _write_coils(
        self, header: AddressHeader, values: Sequence[bool], result: ExchangeResult[Any]
    ) -> None:
        multiple = header.function_code == FunctionCode.WRITE_MULTIPLE_COILS
        if multiple or len(values) > 1:
            function_code = FunctionCode.WRITE_MULTIPLE_COILS
            pdu = build_write_multiple_coils_pdu(header.address, values)
        else:
            function_code = FunctionCode.WRITE_SINGLE_COIL
            pdu = build_write_single_coil_pdu(header.address, bool(values[0]))
        async with self._session():
            payload = await self._exchange(header.station_number, function_code, pdu, result)
        self._check_echo(pdu, payload)

    async def write(self, address: str | AddressHeader, data: bytes) -> ExchangeResult[None]:
        """Write raw register bytes.

        Two bytes use function 6, anything longer (or an address naming
        function 16) uses function 16.
        """

        async def operation(result: ExchangeResult[Any]) -> None:
            await self._write_registers(self._header(address), bytes(data), result)

        return await self._run(operation)

    async def write_values(
        self,
        address: str | AddressHeader,
        values: Sequence[Any],
        data_type: DataType,
    ) -> ExchangeResult[None]:
        """Encode and write consecutive values; ``BOOL`` values go to coils."""
        if data_type is DataType.BOOL:
            return await self.write_coils(address, [bool(value) for value in values])
        data = encode(values, data_type, self._config.data_format, self._config.reverse)
        return await self.write(address, data)

    async def write_value(
        self, address: str | AddressHeader, value: Any, data_type: DataType
    ) -> ExchangeResult[None]:
        """Encode and write a single value."""
        if data_type is DataType.BOOL:
            return await self.write_coil(address, bool(value))
        return await self.write_values(address, [value], data_type)

    async def write_coil(self, address: str | AddressHeader, value: bool) -> ExchangeResult[None]:
        """Switch one coil on or off (function 5)."""

        async def operation(result: ExchangeResult[Any]) -> None:
            await self._write_coils(self._header(address), [value], result)

        return await self._run(operation)

    async def write_coils(
        self, address: str | AddressHeader, values: Sequence[bool]
    ) -> ExchangeResult[None]:
        """Write consecutive coils (function 15 for more than one)."""
        if not values:
            raise ProtocolConfigError("Coil write needs at least one value")

        async def operation(result: ExchangeResult[Any]) -> None:
            await self._write_coils(self._header(address), list(values), result)

        return await self._run(operation)

    # ------------------------------------------------------------------
    # Batch and raw commands
    # ------------------------------------------------------------------

    async def batch_read(
        self,
        requests: Iterable[BatchRequest],
        retry_count: int | None = None,
    ) -> ExchangeResult[list[BatchOutput]]:
        """Read many values with as few physical reads as possible.

        Args:
            requests: Values to read, any mix of stations and read functions
            retry_count: Whole-batch retries; the configured count when None

        Returns:
            Result holding one output per distinct (function, station,
            address), ordered by group then address

        Raises:
            ProtocolConfigError: If a request cannot be batched
        """
        return await self._coalescer.read(requests, retry_count)

    async def execute(
        self, station_number: int, function_code: int, payload: bytes
    ) -> ExchangeResult[bytes]:
        """Send a caller-built request body and return the response payload.

        Args:
            station_number: Unit id
            function_code: Function code
            payload: Request bytes following the function code

        Returns:
            Result holding the validated response payload
        """

        async def operation(result: ExchangeResult[Any]) -> bytes:
            async with self._session():
                return await self._exchange(station_number, function_code, bytes(payload), result)

        return await self._run(operation)


__all__ = ["ModbusEngine", "RTU_EXCHANGE_ATTEMPTS"]
