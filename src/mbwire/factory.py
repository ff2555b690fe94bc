"""Factory functions for creating ready-to-use engines.

Example:
    # Modbus TCP
    engine = create_tcp_engine("192.168.1.50")

    # Modbus RTU on a USB-RS485 adapter
    engine = create_rtu_engine("/dev/ttyUSB0", baudrate=19200, parity="E")

    # From stored configuration
    engine = create_engine(TransportConfig.from_dict(data), EngineConfig.from_dict(opts))
"""

from __future__ import annotations

from .batch import WarningCallback
from .blocking import BlockingModbusEngine
from .codec import RtuFrameCodec, TcpFrameCodec
from .config import (
    DEFAULT_BAUDRATE,
    DEFAULT_SERIAL_TIMEOUT,
    DEFAULT_TCP_TIMEOUT,
    EngineConfig,
    TransportConfig,
    TransportType,
)
from .constants import DEFAULT_TCP_PORT
from .engine import ModbusEngine
from .transaction import TransactionIdGenerator
from .transports import SerialTransport, TcpTransport


def create_tcp_engine(
    host: str,
    port: int = DEFAULT_TCP_PORT,
    *,
    timeout: float = DEFAULT_TCP_TIMEOUT,
    config: EngineConfig | None = None,
    id_generator: TransactionIdGenerator | None = None,
    on_warning: WarningCallback | None = None,
) -> ModbusEngine:
    """Create an engine speaking Modbus TCP.

    Args:
        host: IP address or hostname of the device or gateway
        port: TCP port (default 502)
        timeout: Connect and read timeout in seconds
        config: Protocol settings
        id_generator: Check-head strategy; random per call when omitted
        on_warning: Retry warning callback

    Returns:
        ModbusEngine instance ready for use
    """
    return ModbusEngine(
        TcpTransport(host, port, timeout),
        TcpFrameCodec(id_generator),
        config,
        on_warning=on_warning,
    )


def create_rtu_engine(
    port: str,
    baudrate: int = DEFAULT_BAUDRATE,
    *,
    bytesize: int = 8,
    parity: str = "N",
    stopbits: float = 1,
    timeout: float = DEFAULT_SERIAL_TIMEOUT,
    config: EngineConfig | None = None,
    on_warning: WarningCallback | None = None,
) -> ModbusEngine:
    """Create an engine speaking Modbus RTU over a serial port.

    Args:
        port: Serial port path (e.g., /dev/ttyUSB0, COM3)
        baudrate: Serial baud rate
        bytesize: Data bits per byte
        parity: 'N' (none), 'E' (even), 'O' (odd)
        stopbits: Number of stop bits
        timeout: Read timeout in seconds
        config: Protocol settings
        on_warning: Retry warning callback

    Returns:
        ModbusEngine instance ready for use
    """
    return ModbusEngine(
        SerialTransport(port, baudrate, bytesize, parity, stopbits, timeout),
        RtuFrameCodec(),
        config,
        on_warning=on_warning,
    )


def create_rtu_over_tcp_engine(
    host: str,
    port: int = DEFAULT_TCP_PORT,
    *,
    timeout: float = DEFAULT_TCP_TIMEOUT,
    config: EngineConfig | None = None,
    on_warning: WarningCallback | None = None,
) -> ModbusEngine:
    """Create an engine sending RTU frames through a TCP serial server."""
    return ModbusEngine(
        TcpTransport(host, port, timeout),
        RtuFrameCodec(),
        config,
        on_warning=on_warning,
    )


def create_engine(
    transport_config: TransportConfig,
    engine_config: EngineConfig | None = None,
    *,
    on_warning: WarningCallback | None = None,
) -> ModbusEngine:
    """Create an engine from configuration objects.

    Args:
        transport_config: Which transport to open and where
        engine_config: Protocol settings

    Returns:
        ModbusEngine instance ready for use

    Raises:
        ValueError: If either configuration is invalid
    """
    transport_config.validate()
    engine_config = engine_config or EngineConfig()
    engine_config.validate()
    timeout = transport_config.effective_timeout

    if transport_config.transport_type == TransportType.MODBUS_RTU:
        if transport_config.serial_port is None:
            raise ValueError("serial_port required for MODBUS_RTU transport")
        return create_rtu_engine(
            transport_config.serial_port,
            transport_config.baudrate,
            bytesize=transport_config.bytesize,
            parity=transport_config.parity,
            stopbits=transport_config.stopbits,
            timeout=timeout,
            config=engine_config,
            on_warning=on_warning,
        )

    if transport_config.host is None:
        raise ValueError(f"host required for {transport_config.transport_type.name} transport")
    if transport_config.transport_type == TransportType.RTU_OVER_TCP:
        return create_rtu_over_tcp_engine(
            transport_config.host,
            transport_config.port,
            timeout=timeout,
            config=engine_config,
            on_warning=on_warning,
        )
    return create_tcp_engine(
        transport_config.host,
        transport_config.port,
        timeout=timeout,
        config=engine_config,
        on_warning=on_warning,
    )


def create_blocking_engine(
    transport_config: TransportConfig,
    engine_config: EngineConfig | None = None,
    *,
    on_warning: WarningCallback | None = None,
    call_timeout: float | None = None,
) -> BlockingModbusEngine:
    """Create a :class:`BlockingModbusEngine` for synchronous callers."""
    engine = create_engine(transport_config, engine_config, on_warning=on_warning)
    return BlockingModbusEngine(engine, call_timeout=call_timeout)


__all__ = [
    "create_blocking_engine",
    "create_engine",
    "create_rtu_engine",
    "create_rtu_over_tcp_engine",
    "create_tcp_engine",
]
