"""Pytest configuration and fixtures for mbwire tests."""

from __future__ import annotations

import asyncio
import struct
from collections.abc import Callable

import pytest

from mbwire.codec import RtuFrameCodec, TcpFrameCodec
from mbwire.config import EngineConfig
from mbwire.crc import append_crc16
from mbwire.engine import ModbusEngine
from mbwire.exceptions import TransportResetError, TransportTimeoutError
from mbwire.marshal import decode_bools, encode_bools


class FakeSlave:
    """In-memory Modbus device with coil, discrete, holding and input tables."""

    def __init__(self, max_address: int = 10000) -> None:
        self.coils: dict[int, bool] = {}
        self.discrete_inputs: dict[int, bool] = {}
        self.holding_registers: dict[int, int] = {}
        self.input_registers: dict[int, int] = {}
        self.max_address = max_address
        self.forced_exception: int | None = None
        self.requests: list[tuple[int, int, bytes]] = []

    def set_registers(self, address: int, data: bytes) -> None:
        """Store raw big-endian register bytes starting at ``address``."""
        for i in range(0, len(data), 2):
            (self.holding_registers[address + i // 2],) = struct.unpack(">H", data[i : i + 2])

    def handle(self, unit_id: int, function_code: int, pdu: bytes) -> tuple[int, bytes]:
        """Serve one request; returns (response function code, response body)."""
        self.requests.append((unit_id, function_code, pdu))
        if self.forced_exception is not None:
            return function_code | 0x80, bytes([self.forced_exception])

        if function_code in (1, 2, 3, 4):
            address, quantity = struct.unpack(">HH", pdu[:4])
            if address + quantity > self.max_address:
                return function_code | 0x80, bytes([0x02])
            if function_code in (1, 2):
                table = self.coils if function_code == 1 else self.discrete_inputs
                packed = encode_bools([table.get(address + i, False) for i in range(quantity)])
                return function_code, bytes([len(packed)]) + packed
            table = self.holding_registers if function_code == 3 else self.input_registers
            data = b"".join(
                struct.pack(">H", table.get(address + i, 0)) for i in range(quantity)
            )
            return function_code, bytes([len(data)]) + data

        if function_code == 5:
            address, value = struct.unpack(">HH", pdu[:4])
            self.coils[address] = value == 0xFF00
            return function_code, pdu[:4]
        if function_code == 6:
            address, value = struct.unpack(">HH", pdu[:4])
            self.holding_registers[address] = value
            return function_code, pdu[:4]
        if function_code == 15:
            address, quantity, _ = struct.unpack(">HHB", pdu[:5])
            for i, flag in enumerate(decode_bools(pdu[5:], quantity)):
                self.coils[address + i] = flag
            return function_code, pdu[:4]
        if function_code == 16:
            address, _, _ = struct.unpack(">HHB", pdu[:5])
            self.set_registers(address, pdu[5:])
            return function_code, pdu[:4]
        return function_code | 0x80, bytes([0x01])


class FakeTransport:
    """Transport double answering real TCP or RTU frames from a FakeSlave.

    Every call yields to the event loop so concurrent callers get a chance
    to interleave if nothing serializes them.
    """

    def __init__(self, slave: FakeSlave, framing: str = "tcp") -> None:
        self.slave = slave
        self.framing = framing
        self.events: list[tuple[str, bytes]] = []
        self.sent: list[bytes] = []
        self.receive_failures: list[Exception] = []
        self.connect_error: Exception | None = None
        self.response_hook: Callable[[bytes], bytes] | None = None
        self.connect_count = 0
        self.close_count = 0
        self.discard_count = 0
        self._connected = False
        self._buffer = bytearray()

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def description(self) -> str:
        return f"fake-{self.framing}"

    async def connect(self) -> None:
        await asyncio.sleep(0)
        if self.connect_error is not None:
            raise self.connect_error
        self._connected = True
        self.connect_count += 1

    async def close(self) -> None:
        if self._connected:
            self.close_count += 1
        self._connected = False
        self._buffer.clear()

    async def send(self, data: bytes) -> None:
        if not self._connected:
            raise TransportResetError("fake transport not connected")
        await asyncio.sleep(0)
        self.events.append(("send", data))
        self.sent.append(data)
        response = self._respond(data)
        if self.response_hook is not None:
            response = self.response_hook(response)
        self._buffer += response

    async def receive_exact(self, size: int) -> bytes:
        await asyncio.sleep(0)
        if self.receive_failures:
            raise self.receive_failures.pop(0)
        if len(self._buffer) < size:
            raise TransportTimeoutError(f"fake transport has {len(self._buffer)} of {size} bytes")
        chunk = bytes(self._buffer[:size])
        del self._buffer[:size]
        self.events.append(("recv", chunk))
        return chunk

    async def discard_input(self) -> None:
        self.discard_count += 1
        self._buffer.clear()

    def _respond(self, data: bytes) -> bytes:
        if self.framing == "tcp":
            unit_id, function_code = data[6], data[7]
            response_fc, body = self.slave.handle(unit_id, function_code, data[8:])
            header = struct.pack(">HHBB", 0, 2 + len(body), unit_id, response_fc)
            return data[:2] + header + body
        unit_id, function_code = data[0], data[1]
        response_fc, body = self.slave.handle(unit_id, function_code, data[2:-2])
        return append_crc16(bytes([unit_id, response_fc]) + body)


@pytest.fixture
def slave() -> FakeSlave:
    """Fresh in-memory device."""
    return FakeSlave()


@pytest.fixture
def tcp_transport(slave: FakeSlave) -> FakeTransport:
    return FakeTransport(slave, "tcp")


@pytest.fixture
def rtu_transport(slave: FakeSlave) -> FakeTransport:
    return FakeTransport(slave, "rtu")


@pytest.fixture
def tcp_engine(tcp_transport: FakeTransport) -> ModbusEngine:
    """Short-lived TCP engine on a fake device."""
    return ModbusEngine(tcp_transport, TcpFrameCodec())


@pytest.fixture
def rtu_engine(rtu_transport: FakeTransport) -> ModbusEngine:
    """Short-lived RTU engine on a fake device."""
    return ModbusEngine(rtu_transport, RtuFrameCodec())


@pytest.fixture
def long_lived_engine(tcp_transport: FakeTransport) -> ModbusEngine:
    """TCP engine keeping its connection open between operations."""
    return ModbusEngine(tcp_transport, TcpFrameCodec(), EngineConfig(long_lived=True))
