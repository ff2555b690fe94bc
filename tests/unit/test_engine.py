"""Unit tests for ModbusEngine against an in-memory device."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest
from conftest import FakeSlave, FakeTransport

from mbwire.address import AddressHeader
from mbwire.batch import BatchRequest
from mbwire.codec import RtuFrameCodec, TcpFrameCodec, build_read_pdu
from mbwire.config import EngineConfig
from mbwire.engine import ModbusEngine
from mbwire.exceptions import (
    ConnectError,
    CrcMismatchError,
    FrameValidationError,
    ModbusExceptionResponse,
    ParseError,
    ProtocolConfigError,
    TransportResetError,
    TransportTimeoutError,
)
from mbwire.marshal import DataFormat, DataType, encode_value


class TestReads:
    """Tests for register and coil reads."""

    @pytest.mark.asyncio
    async def test_read_raw(self, tcp_engine: ModbusEngine, slave: FakeSlave) -> None:
        """Test raw read returns the data payload and records traces."""
        slave.holding_registers[100] = 0x1234
        slave.holding_registers[101] = 0x5678

        result = await tcp_engine.read("1;3;100", length=2)

        assert result.success is True
        assert result.value == bytes.fromhex("12345678")
        assert len(result.requests) == 1
        assert result.requests[0].endswith("01 03 00 64 00 02")
        assert result.responses[0].endswith("04 12 34 56 78")
        assert result.elapsed_ms is not None

    @pytest.mark.asyncio
    async def test_read_value_float(self, tcp_engine: ModbusEngine, slave: FakeSlave) -> None:
        slave.set_registers(100, bytes.fromhex("4048F5C3"))

        result = await tcp_engine.read_value("1;3;100", DataType.FLOAT)

        assert result.value == pytest.approx(3.14, rel=1e-6)

    @pytest.mark.asyncio
    async def test_read_input_registers(self, tcp_engine: ModbusEngine, slave: FakeSlave) -> None:
        slave.input_registers[7] = 0xFFFE

        result = await tcp_engine.read_value(AddressHeader(1, 4, 7), DataType.INT16)

        assert result.value == -2

    @pytest.mark.asyncio
    async def test_read_values_respects_format(
        self, tcp_transport: FakeTransport, slave: FakeSlave
    ) -> None:
        """Test the engine's data format applies to every value."""
        engine = ModbusEngine(
            tcp_transport, TcpFrameCodec(), EngineConfig(data_format=DataFormat.CDAB)
        )
        slave.set_registers(0, encode_value(100000, DataType.INT32, DataFormat.CDAB))
        slave.set_registers(2, encode_value(-5, DataType.INT32, DataFormat.CDAB))

        result = await engine.read_values("1;3;0", DataType.INT32, count=2)

        assert result.value == [100000, -5]
        assert slave.requests[-1][2] == build_read_pdu(0, 4)

    @pytest.mark.asyncio
    async def test_read_bytes(self, tcp_engine: ModbusEngine, slave: FakeSlave) -> None:
        """Test an odd byte count rounds up to whole registers."""
        slave.set_registers(0, bytes([1, 2, 3, 0]))

        result = await tcp_engine.read_values("1;3;0", DataType.BYTE, count=3)

        assert result.value == [1, 2, 3]
        assert slave.requests[-1][2] == build_read_pdu(0, 2)

    @pytest.mark.asyncio
    async def test_read_coils(self, tcp_engine: ModbusEngine, slave: FakeSlave) -> None:
        slave.coils.update({0: True, 2: True, 9: True})

        result = await tcp_engine.read_values("1;1;0", DataType.BOOL, count=10)

        assert result.value == [True, False, True] + [False] * 6 + [True]

    @pytest.mark.asyncio
    async def test_read_discrete_inputs(
        self, tcp_engine: ModbusEngine, slave: FakeSlave
    ) -> None:
        slave.discrete_inputs[4] = True

        result = await tcp_engine.read_value("1;2;4", DataType.BOOL)

        assert result.value is True

    @pytest.mark.asyncio
    async def test_non_bool_from_coils_rejected(self, tcp_engine: ModbusEngine) -> None:
        with pytest.raises(ProtocolConfigError):
            await tcp_engine.read_value("1;1;0", DataType.UINT16)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("function_code", [5, 6, 15, 16])
    async def test_read_with_write_function_rejected(
        self,
        tcp_engine: ModbusEngine,
        tcp_transport: FakeTransport,
        slave: FakeSlave,
        function_code: int,
    ) -> None:
        """Test a read addressed with a write function never reaches the device."""
        slave.holding_registers[100] = 1234

        with pytest.raises(ProtocolConfigError, match="not a read function"):
            await tcp_engine.read_value(f"1;{function_code};100", DataType.UINT16)
        with pytest.raises(ProtocolConfigError):
            await tcp_engine.read(f"1;{function_code};100", 2)
        with pytest.raises(ProtocolConfigError):
            await tcp_engine.read_bit(f"1;{function_code};100.3")

        assert slave.holding_registers[100] == 1234
        assert slave.requests == []
        assert tcp_transport.sent == []

    @pytest.mark.asyncio
    async def test_bool_on_registers_is_non_zero(
        self, tcp_engine: ModbusEngine, slave: FakeSlave
    ) -> None:
        slave.holding_registers[1] = 5

        result = await tcp_engine.read_values("1;3;0", DataType.BOOL, count=2)

        assert result.value == [False, True]

    @pytest.mark.asyncio
    async def test_bool_with_bit_suffix(self, tcp_engine: ModbusEngine, slave: FakeSlave) -> None:
        slave.holding_registers[10] = 0x8000

        result = await tcp_engine.read_value("1;3;10.0", DataType.BOOL)

        assert result.value is True

    @pytest.mark.asyncio
    async def test_rtu_read(self, rtu_engine: ModbusEngine, slave: FakeSlave) -> None:
        slave.set_registers(20, encode_value(-123456, DataType.INT32))

        result = await rtu_engine.read_value("1;3;20", DataType.INT32)

        assert result.success is True
        assert result.value == -123456


class TestReadBit:
    """Tests for single-bit reads."""

    @pytest.mark.asyncio
    async def test_from_left(self, tcp_engine: ModbusEngine, slave: FakeSlave) -> None:
        slave.holding_registers[10] = 0x8001

        assert (await tcp_engine.read_bit("1;3;10.0")).value is True
        assert (await tcp_engine.read_bit("1;3;10.15")).value is True
        assert (await tcp_engine.read_bit("1;3;10.1")).value is False

    @pytest.mark.asyncio
    async def test_from_right(self, tcp_engine: ModbusEngine, slave: FakeSlave) -> None:
        slave.holding_registers[10] = 0x0002

        result = await tcp_engine.read_bit("1;3;10.1", from_left=False)

        assert result.value is True

    @pytest.mark.asyncio
    async def test_coil(self, tcp_engine: ModbusEngine, slave: FakeSlave) -> None:
        slave.coils[3] = True

        result = await tcp_engine.read_bit("1;1;3")

        assert result.value is True

    @pytest.mark.asyncio
    async def test_missing_bit_index(
        self, tcp_engine: ModbusEngine, tcp_transport: FakeTransport
    ) -> None:
        """Test a register address without '.bit' fails before any I/O."""
        result = await tcp_engine.read_bit("1;3;10")

        assert result.success is False
        assert isinstance(result.exception, ParseError)
        assert tcp_transport.sent == []


class TestWrites:
    """Tests for register and coil writes."""

    @pytest.mark.asyncio
    async def test_float_write_then_read(
        self, tcp_engine: ModbusEngine, slave: FakeSlave
    ) -> None:
        """Test a float written with function 16 reads back unchanged."""
        write = await tcp_engine.write_value("1;16;100", 3.14, DataType.FLOAT)
        read = await tcp_engine.read_value("1;3;100", DataType.FLOAT)

        assert write.success is True
        assert slave.requests[0][1] == 16
        assert read.value == pytest.approx(3.14, rel=1e-6)

    @pytest.mark.asyncio
    async def test_single_register_uses_function_6(
        self, tcp_engine: ModbusEngine, slave: FakeSlave
    ) -> None:
        result = await tcp_engine.write("1;6;3", b"\x00\x07")

        assert result.success is True
        assert slave.requests[-1][1] == 6
        assert slave.holding_registers[3] == 7

    @pytest.mark.asyncio
    async def test_multiple_registers_use_function_16(
        self, tcp_engine: ModbusEngine, slave: FakeSlave
    ) -> None:
        await tcp_engine.write("1;3;3", b"\x00\x07\x00\x08")

        assert slave.requests[-1][1] == 16
        assert (slave.holding_registers[3], slave.holding_registers[4]) == (7, 8)

    @pytest.mark.asyncio
    async def test_function_16_for_single_register(
        self, tcp_engine: ModbusEngine, slave: FakeSlave
    ) -> None:
        await tcp_engine.write_value("1;16;0", 9, DataType.UINT16)

        assert slave.requests[-1][1] == 16

    @pytest.mark.asyncio
    async def test_write_coil(self, tcp_engine: ModbusEngine, slave: FakeSlave) -> None:
        result = await tcp_engine.write_coil("1;5;7", True)

        assert result.success is True
        assert slave.requests[-1][1] == 5
        assert slave.coils[7] is True

    @pytest.mark.asyncio
    async def test_write_coils(self, rtu_engine: ModbusEngine, slave: FakeSlave) -> None:
        result = await rtu_engine.write_coils("1;15;0", [True, False, True])

        assert result.success is True
        assert slave.requests[-1][1] == 15
        assert [slave.coils[i] for i in range(3)] == [True, False, True]

    @pytest.mark.asyncio
    async def test_write_bool_values_go_to_coils(
        self, tcp_engine: ModbusEngine, slave: FakeSlave
    ) -> None:
        await tcp_engine.write_values("1;15;4", [True, True], DataType.BOOL)

        assert slave.coils[4] is True
        assert slave.coils[5] is True

    @pytest.mark.asyncio
    async def test_empty_coil_write_rejected(self, tcp_engine: ModbusEngine) -> None:
        with pytest.raises(ProtocolConfigError):
            await tcp_engine.write_coils("1;15;0", [])

    @pytest.mark.asyncio
    async def test_write_echo_mismatch(
        self, tcp_engine: ModbusEngine, tcp_transport: FakeTransport
    ) -> None:
        """Test a write response echoing a different value fails."""
        tcp_transport.response_hook = lambda raw: raw[:-1] + bytes([raw[-1] ^ 0x01])

        result = await tcp_engine.write("1;6;3", b"\x00\x07")

        assert result.success is False
        assert isinstance(result.exception, FrameValidationError)
        assert "echo" in result.message


class TestFailures:
    """Tests for error capture into results."""

    @pytest.mark.asyncio
    async def test_exception_response(self, tcp_engine: ModbusEngine, slave: FakeSlave) -> None:
        """Test an exception response maps to its message and code."""
        result = await tcp_engine.read("1;3;9999", length=2)

        assert result.success is False
        assert result.value is None
        assert result.error_code == 2
        assert result.message == "Exception code 2: Illegal data address"
        assert isinstance(result.exception, ModbusExceptionResponse)
        assert len(result.responses) == 1

    @pytest.mark.asyncio
    async def test_rtu_exception_response(
        self, rtu_engine: ModbusEngine, slave: FakeSlave
    ) -> None:
        slave.forced_exception = 1

        result = await rtu_engine.read("1;3;0")

        assert result.error_code == 1
        assert "Illegal function" in result.message

    @pytest.mark.asyncio
    async def test_malformed_address(
        self, tcp_engine: ModbusEngine, tcp_transport: FakeTransport
    ) -> None:
        result = await tcp_engine.read("1;3")

        assert result.success is False
        assert isinstance(result.exception, ParseError)
        assert tcp_transport.connect_count == 0

    @pytest.mark.asyncio
    async def test_connect_timeout(
        self, tcp_engine: ModbusEngine, tcp_transport: FakeTransport
    ) -> None:
        tcp_transport.connect_error = ConnectError("Connection timed out", timeout=True)

        result = await tcp_engine.read("1;3;0")

        assert result.success is False
        assert result.error_code == 408
        assert tcp_transport.sent == []

    @pytest.mark.asyncio
    async def test_tcp_timeout_not_retried(self, tcp_transport: FakeTransport) -> None:
        on_warning = MagicMock()
        engine = ModbusEngine(tcp_transport, TcpFrameCodec(), on_warning=on_warning)
        tcp_transport.receive_failures.append(TransportTimeoutError("no answer"))

        result = await engine.read("1;3;0")

        assert result.error_code == 408
        assert len(tcp_transport.sent) == 1
        assert tcp_transport.discard_count == 0
        on_warning.assert_not_called()

    @pytest.mark.asyncio
    async def test_rtu_local_retry(self, rtu_transport: FakeTransport, slave: FakeSlave) -> None:
        """Test RTU discards input and resends once after a transport error."""
        on_warning = MagicMock()
        engine = ModbusEngine(rtu_transport, RtuFrameCodec(), on_warning=on_warning)
        slave.holding_registers[0] = 42
        rtu_transport.receive_failures.append(TransportTimeoutError("no answer"))

        result = await engine.read_value("1;3;0", DataType.UINT16)

        assert result.success is True
        assert result.value == 42
        assert len(rtu_transport.sent) == 2
        assert rtu_transport.discard_count == 1
        assert len(result.requests) == 2
        on_warning.assert_called_once()
        assert isinstance(on_warning.call_args.args[1], TransportTimeoutError)

    @pytest.mark.asyncio
    async def test_rtu_retry_exhausted(
        self, rtu_engine: ModbusEngine, rtu_transport: FakeTransport
    ) -> None:
        rtu_transport.receive_failures.extend(
            [TransportTimeoutError("no answer"), TransportResetError("reset")]
        )

        result = await rtu_engine.read("1;3;0")

        assert result.success is False
        assert isinstance(result.exception, TransportResetError)
        assert len(rtu_transport.sent) == 2

    @pytest.mark.asyncio
    async def test_rtu_crc_error(
        self, rtu_engine: ModbusEngine, rtu_transport: FakeTransport
    ) -> None:
        rtu_transport.response_hook = lambda raw: raw[:-2] + b"\x00\x00"

        result = await rtu_engine.read("1;3;0")

        assert isinstance(result.exception, CrcMismatchError)
        assert len(rtu_transport.sent) == 1

    @pytest.mark.asyncio
    async def test_lenient_crc_from_engine_config(
        self, rtu_transport: FakeTransport, slave: FakeSlave
    ) -> None:
        """Test strict_crc=False in the engine config reaches a directly built codec."""
        slave.holding_registers[0] = 77
        rtu_transport.response_hook = lambda raw: raw[:-2] + b"\x00\x00"
        engine = ModbusEngine(rtu_transport, RtuFrameCodec(), EngineConfig(strict_crc=False))

        result = await engine.read_value("1;3;0", DataType.UINT16)

        assert engine.codec.strict_crc is False
        assert result.success is True
        assert result.value == 77

    def test_engine_config_overrides_codec_crc_setting(self, rtu_transport: FakeTransport) -> None:
        engine = ModbusEngine(rtu_transport, RtuFrameCodec(strict_crc=False))

        assert engine.codec.strict_crc is True


class TestConnectionLifecycle:
    """Tests for short-lived and long-lived connections."""

    @pytest.mark.asyncio
    async def test_short_lived_closes_after_each_operation(
        self, tcp_engine: ModbusEngine, tcp_transport: FakeTransport
    ) -> None:
        await tcp_engine.read("1;3;0")
        await tcp_engine.read("1;3;1")

        assert tcp_engine.connected is False
        assert tcp_transport.connect_count == 2
        assert tcp_transport.close_count == 2

    @pytest.mark.asyncio
    async def test_short_lived_closes_after_failure(
        self, tcp_engine: ModbusEngine, tcp_transport: FakeTransport
    ) -> None:
        await tcp_engine.read("1;3;9999", length=2)

        assert tcp_engine.connected is False

    @pytest.mark.asyncio
    async def test_long_lived_reuses_connection(
        self, long_lived_engine: ModbusEngine, tcp_transport: FakeTransport
    ) -> None:
        await long_lived_engine.read("1;3;0")
        await long_lived_engine.read("1;3;1")

        assert long_lived_engine.connected is True
        assert tcp_transport.connect_count == 1
        assert tcp_transport.close_count == 0

    @pytest.mark.asyncio
    async def test_long_lived_reconnects_after_transport_error(
        self, long_lived_engine: ModbusEngine, tcp_transport: FakeTransport
    ) -> None:
        """Test a transport error drops the connection and the next call reopens it."""
        tcp_transport.receive_failures.append(TransportTimeoutError("no answer"))

        failed = await long_lived_engine.read("1;3;0")
        assert failed.success is False
        assert long_lived_engine.connected is False

        recovered = await long_lived_engine.read("1;3;0")
        assert recovered.success is True
        assert tcp_transport.connect_count == 2

    @pytest.mark.asyncio
    async def test_long_lived_keeps_connection_after_exception_response(
        self, long_lived_engine: ModbusEngine, slave: FakeSlave
    ) -> None:
        slave.forced_exception = 4

        result = await long_lived_engine.read("1;3;0")

        assert result.error_code == 4
        assert long_lived_engine.connected is True

    @pytest.mark.asyncio
    async def test_long_lived_drops_connection_when_cancelled(
        self, rtu_transport: FakeTransport, slave: FakeSlave
    ) -> None:
        """Test a cancelled exchange cannot leave its response for the next read."""
        slave.holding_registers[0] = 1111
        slave.holding_registers[5] = 5555
        engine = ModbusEngine(rtu_transport, RtuFrameCodec(), EngineConfig(long_lived=True))
        receive = rtu_transport.receive_exact
        stalled: list[int] = []

        async def stall_once(size: int) -> bytes:
            if not stalled:
                stalled.append(size)
                await asyncio.sleep(10)
            return await receive(size)

        rtu_transport.receive_exact = stall_once  # type: ignore[method-assign]

        with pytest.raises(TimeoutError):
            await asyncio.wait_for(engine.read_value("1;3;0", DataType.UINT16), 0.05)

        assert engine.connected is False
        assert rtu_transport.close_count == 1

        result = await engine.read_value("1;3;5", DataType.UINT16)

        assert result.success is True
        assert result.value == 5555

    @pytest.mark.asyncio
    async def test_context_manager(
        self, long_lived_engine: ModbusEngine, tcp_transport: FakeTransport
    ) -> None:
        async with long_lived_engine as engine:
            assert engine.connected is True
            await engine.read("1;3;0")

        assert long_lived_engine.connected is False
        assert tcp_transport.connect_count == 1

    @pytest.mark.asyncio
    async def test_context_manager_connect_failure(
        self, tcp_engine: ModbusEngine, tcp_transport: FakeTransport
    ) -> None:
        tcp_transport.connect_error = ConnectError("refused")

        with pytest.raises(ConnectError):
            async with tcp_engine:
                pass

    @pytest.mark.asyncio
    async def test_explicit_connect_and_disconnect(
        self, long_lived_engine: ModbusEngine
    ) -> None:
        connected = await long_lived_engine.connect()
        assert connected.success is True
        assert long_lived_engine.connected is True

        await long_lived_engine.disconnect()
        assert long_lived_engine.connected is False


class TestConcurrency:
    """Concurrent callers never interleave frames on the wire."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("long_lived", [False, True])
    async def test_exchanges_are_atomic(
        self, tcp_transport: FakeTransport, slave: FakeSlave, long_lived: bool
    ) -> None:
        engine = ModbusEngine(
            tcp_transport, TcpFrameCodec(), EngineConfig(long_lived=long_lived)
        )
        for address in range(10):
            slave.holding_registers[address] = address * 11

        results = await asyncio.gather(
            *(engine.read_value(f"1;3;{address}", DataType.UINT16) for address in range(10))
        )

        assert [r.value for r in results] == [address * 11 for address in range(10)]
        kinds = [kind for kind, _ in tcp_transport.events]
        assert kinds == ["send", "recv", "recv"] * 10
        for index in range(0, len(tcp_transport.events), 3):
            request = tcp_transport.events[index][1]
            prefix = tcp_transport.events[index + 1][1]
            assert prefix[:2] == request[:2]

    @pytest.mark.asyncio
    async def test_writes_and_reads_interleave_safely(
        self, rtu_engine: ModbusEngine, rtu_transport: FakeTransport
    ) -> None:
        results = await asyncio.gather(
            rtu_engine.write_value("1;6;0", 1, DataType.UINT16),
            rtu_engine.read("1;3;0", length=4),
            rtu_engine.write_coil("1;5;0", True),
            rtu_engine.read_values("1;1;0", DataType.BOOL, count=8),
        )

        assert all(result.success for result in results)
        kinds = [kind for kind, _ in rtu_transport.events]
        assert kinds == ["send", "recv", "recv"] * 4


class TestBatchAndExecute:
    """Tests for batch reads and raw commands through the engine."""

    @pytest.mark.asyncio
    async def test_batch_retry_warns(self, tcp_transport: FakeTransport, slave: FakeSlave) -> None:
        on_warning = MagicMock()
        engine = ModbusEngine(
            tcp_transport, TcpFrameCodec(), EngineConfig(retry_count=1), on_warning=on_warning
        )
        slave.holding_registers[5] = 77
        tcp_transport.receive_failures.append(TransportTimeoutError("no answer"))

        result = await engine.batch_read([BatchRequest(1, 3, 5, DataType.UINT16)])

        assert result.success is True
        assert result.value[0].value == 77
        assert len(result.requests) == 2
        on_warning.assert_called_once()

    @pytest.mark.asyncio
    async def test_batch_failure_keeps_traces(
        self, tcp_engine: ModbusEngine, slave: FakeSlave
    ) -> None:
        slave.forced_exception = 2

        result = await tcp_engine.batch_read(
            [BatchRequest(1, 3, 0, DataType.UINT16)], retry_count=2
        )

        assert result.success is False
        assert result.error_code == 2
        assert len(result.requests) == 3
        assert len(result.responses) == 3

    @pytest.mark.asyncio
    async def test_execute(self, tcp_engine: ModbusEngine, slave: FakeSlave) -> None:
        slave.holding_registers[0] = 0xABCD

        result = await tcp_engine.execute(1, 3, build_read_pdu(0, 1))

        assert result.value == b"\xab\xcd"

    @pytest.mark.asyncio
    async def test_execute_other_station(self, rtu_engine: ModbusEngine, slave: FakeSlave) -> None:
        result = await rtu_engine.execute(7, 6, bytes.fromhex("0002 0010"))

        assert result.success is True
        assert result.value == bytes.fromhex("0002 0010")
        assert slave.requests[-1][0] == 7
