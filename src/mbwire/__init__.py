"""Modbus TCP/RTU protocol engine.

Usage:
    Async engine:
        from mbwire import DataType, create_tcp_engine

        async with create_tcp_engine("192.168.1.50") as engine:
            result = await engine.read_value("1;3;100", DataType.FLOAT)
            print(result.value if result.success else result.message)

    Batch reads:
        from mbwire import BatchRequest, DataType

        requests = [
            BatchRequest.from_address("1;3;0", DataType.INT16),
            BatchRequest.from_address("1;3;5", DataType.FLOAT),
        ]
        result = await engine.batch_read(requests)

    Blocking code:
        from mbwire import BlockingModbusEngine

        with BlockingModbusEngine(create_rtu_engine("/dev/ttyUSB0")) as client:
            client.write_value("1;16;100", 3.14, DataType.FLOAT)
"""

from __future__ import annotations

from .address import AddressHeader, format_address, parse_address, try_parse_address
from .batch import BatchOutput, BatchRequest, ReadWindow, plan_windows
from .blocking import BlockingModbusEngine
from .codec import RtuFrame, RtuFrameCodec, TcpFrame, TcpFrameCodec
from .config import EngineConfig, TransportConfig, TransportType
from .constants import FunctionCode
from .crc import check_crc16, compute_crc16
from .engine import ModbusEngine
from .exceptions import (
    CheckHeadMismatchError,
    ConnectError,
    CrcMismatchError,
    FrameValidationError,
    ModbusError,
    ModbusExceptionResponse,
    ParseError,
    ProtocolConfigError,
    TransportError,
    TransportResetError,
    TransportTimeoutError,
    UnexpectedFunctionCodeError,
)
from .factory import (
    create_blocking_engine,
    create_engine,
    create_rtu_engine,
    create_rtu_over_tcp_engine,
    create_tcp_engine,
)
from .marshal import DataFormat, DataType
from .result import ExchangeResult
from .transaction import (
    RandomTransactionIdGenerator,
    SequentialTransactionIdGenerator,
    TransactionIdGenerator,
)
from .transports import FrameTransport, SerialTransport, TcpTransport

__version__ = "0.1.0"

__all__ = [
    # Engine
    "BlockingModbusEngine",
    "ModbusEngine",
    "create_blocking_engine",
    "create_engine",
    "create_rtu_engine",
    "create_rtu_over_tcp_engine",
    "create_tcp_engine",
    # Configuration
    "DataFormat",
    "DataType",
    "EngineConfig",
    "TransportConfig",
    "TransportType",
    # Addressing and results
    "AddressHeader",
    "BatchOutput",
    "BatchRequest",
    "ExchangeResult",
    "FunctionCode",
    "ReadWindow",
    "format_address",
    "parse_address",
    "plan_windows",
    "try_parse_address",
    # Framing
    "RandomTransactionIdGenerator",
    "RtuFrame",
    "RtuFrameCodec",
    "SequentialTransactionIdGenerator",
    "TcpFrame",
    "TcpFrameCodec",
    "TransactionIdGenerator",
    "check_crc16",
    "compute_crc16",
    # Transports
    "FrameTransport",
    "SerialTransport",
    "TcpTransport",
    # Exceptions
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
    "__version__",
]
