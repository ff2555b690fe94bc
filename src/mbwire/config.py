"""Engine and transport configuration.

Both dataclasses are frozen: a configuration is fixed for the lifetime of
the engine built from it. ``to_dict``/``from_dict`` allow storing them in
a host application's own config file.

Example:
    transport = TransportConfig(
        transport_type=TransportType.MODBUS_TCP,
        host="192.168.1.50",
    )
    engine_config = EngineConfig(data_format=DataFormat.CDAB, long_lived=True)
    engine = create_engine(transport, engine_config)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from .constants import DEFAULT_TCP_PORT
from .marshal import DataFormat

DEFAULT_TCP_TIMEOUT = 3.0
DEFAULT_SERIAL_TIMEOUT = 1.0
DEFAULT_BAUDRATE = 9600

VALID_PARITIES = frozenset({"N", "E", "O", "M", "S"})
VALID_BYTESIZES = frozenset({5, 6, 7, 8})
VALID_STOPBITS = frozenset({1, 1.5, 2})


class TransportType(str, Enum):
    """Transport type enumeration.

    String enum for easy serialization and comparison.
    """

    # Modbus TCP (MBAP-style framing over a socket)
    MODBUS_TCP = "modbus_tcp"

    # Modbus RTU over a serial line
    MODBUS_RTU = "modbus_rtu"

    # Modbus RTU frames carried over a TCP socket (serial device servers)
    RTU_OVER_TCP = "rtu_over_tcp"


@dataclass(frozen=True)
class EngineConfig:
    """Per-connection protocol settings.

    Attributes:
        data_format: Byte layout of multi-register values
        reverse: Decode 16-bit registers little-endian and reverse register
            order of wider values before applying ``data_format``
        long_lived: Keep the connection open between operations
        strict_crc: Reject RTU responses with a bad CRC (False logs and
            accepts them)
        retry_count: Extra attempts for a failed batch read
    """

    data_format: DataFormat = DataFormat.ABCD
    reverse: bool = False
    long_lived: bool = False
    strict_crc: bool = True
    retry_count: int = 1

    def validate(self) -> None:
        """Validate configuration values.

        Raises:
            ValueError: If configuration is invalid
        """
        if not isinstance(self.data_format, DataFormat):
            raise ValueError(f"data_format must be a DataFormat, got {self.data_format!r}")
        if self.retry_count < 0:
            raise ValueError("retry_count must not be negative")

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary for serialization."""
        return {
            "data_format": self.data_format.value,
            "reverse": self.reverse,
            "long_lived": self.long_lived,
            "strict_crc": self.strict_crc,
            "retry_count": self.retry_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EngineConfig:
        """Create configuration from dictionary.

        Args:
            data: Dictionary with configuration values (from to_dict())

        Returns:
            EngineConfig with missing keys left at their defaults
        """
        return cls(
            data_format=DataFormat(data.get("data_format", DataFormat.ABCD.value)),
            reverse=bool(data.get("reverse", False)),
            long_lived=bool(data.get("long_lived", False)),
            strict_crc=bool(data.get("strict_crc", True)),
            retry_count=int(data.get("retry_count", 1)),
        )


@dataclass(frozen=True)
class TransportConfig:
    """Configuration for a single transport connection.

    Attributes:
        transport_type: Which transport and framing to use
        host: IP address or hostname (TCP transports)
        port: TCP port (default 502)
        serial_port: Serial device path, e.g. ``/dev/ttyUSB0`` or ``COM3``
        baudrate: Serial baud rate
        bytesize: Serial data bits
        parity: Serial parity (``N``, ``E``, ``O``, ``M``, ``S``)
        stopbits: Serial stop bits
        timeout: I/O timeout in seconds; transport default when None

    Example:
        rtu_config = TransportConfig(
            transport_type=TransportType.MODBUS_RTU,
            serial_port="/dev/ttyUSB0",
            baudrate=19200,
            parity="E",
        )
    """

    transport_type: TransportType = TransportType.MODBUS_TCP
    host: str | None = None
    port: int = DEFAULT_TCP_PORT
    serial_port: str | None = None
    baudrate: int = DEFAULT_BAUDRATE
    bytesize: int = 8
    parity: str = "N"
    stopbits: float = 1
    timeout: float | None = None

    @property
    def is_serial(self) -> bool:
        return self.transport_type == TransportType.MODBUS_RTU

    @property
    def effective_timeout(self) -> float:
        if self.timeout is not None:
            return self.timeout
        return DEFAULT_SERIAL_TIMEOUT if self.is_serial else DEFAULT_TCP_TIMEOUT

    def validate(self) -> None:
        """Validate configuration completeness.

        Checks that the fields required by ``transport_type`` are present
        and within range.

        Raises:
            ValueError: If configuration is invalid
        """
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be positive")

        if self.is_serial:
            if not self.serial_port:
                raise ValueError("serial_port required for MODBUS_RTU transport")
            if self.baudrate <= 0:
                raise ValueError("baudrate must be positive")
            if self.bytesize not in VALID_BYTESIZES:
                raise ValueError(f"bytesize must be one of {sorted(VALID_BYTESIZES)}")
            if self.parity not in VALID_PARITIES:
                raise ValueError(f"parity must be one of {sorted(VALID_PARITIES)}")
            if self.stopbits not in VALID_STOPBITS:
                raise ValueError(f"stopbits must be one of {sorted(VALID_STOPBITS)}")
            return

        if not self.host:
            raise ValueError(f"host required for {self.transport_type.name} transport")
        if not 0 < self.port <= 0xFFFF:
            raise ValueError("port must be between 1 and 65535")

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary for serialization."""
        return {
            "transport_type": self.transport_type.value,
            "host": self.host,
            "port": self.port,
            "serial_port": self.serial_port,
            "baudrate": self.baudrate,
            "bytesize": self.bytesize,
            "parity": self.parity,
            "stopbits": self.stopbits,
            "timeout": self.timeout,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TransportConfig:
        """Create configuration from dictionary.

        Args:
            data: Dictionary with configuration values (from to_dict())

        Returns:
            TransportConfig instance with values from dictionary
        """
        return cls(
            transport_type=TransportType(data.get("transport_type", "modbus_tcp")),
            host=data.get("host"),
            port=data.get("port", DEFAULT_TCP_PORT),
            serial_port=data.get("serial_port"),
            baudrate=data.get("baudrate", DEFAULT_BAUDRATE),
            bytesize=data.get("bytesize", 8),
            parity=data.get("parity", "N"),
            stopbits=data.get("stopbits", 1),
            timeout=data.get("timeout"),
        )


__all__ = [
    "DEFAULT_BAUDRATE",
    "DEFAULT_SERIAL_TIMEOUT",
    "DEFAULT_TCP_TIMEOUT",
    "EngineConfig",
    "TransportConfig",
    "TransportType",
]
