"""Serial-port transport for Modbus RTU.

pyserial is blocking, so every port call runs in a worker thread via
``asyncio.to_thread``. The engine's lock guarantees only one call touches
the port at a time.

IMPORTANT: Single-Client Limitation
------------------------------------
A serial port can be opened by only one process. Make sure no other
application holds the port before connecting.

Example:
    transport = SerialTransport("/dev/ttyUSB0", baudrate=19200, parity="E")
    await transport.connect()
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from ..exceptions import (
    ConnectError,
    TransportError,
    TransportResetError,
    TransportTimeoutError,
)

if TYPE_CHECKING:
    from serial import Serial

_LOGGER = logging.getLogger(__name__)

DEFAULT_BAUDRATE = 9600
DEFAULT_TIMEOUT = 1.0


class SerialTransport:
    """RS-485/RS-232 connection driven through pyserial."""

    def __init__(
        self,
        port: str,
        baudrate: int = DEFAULT_BAUDRATE,
        bytesize: int = 8,
        parity: str = "N",
        stopbits: float = 1,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        """Initialize serial transport.

        Args:
            port: Serial port path (e.g., /dev/ttyUSB0, COM3)
            baudrate: Serial baud rate (default 9600)
            bytesize: Data bits per byte (default 8)
            parity: Parity setting - 'N' (none), 'E' (even), 'O' (odd)
            stopbits: Number of stop bits (default 1)
            timeout: Read timeout in seconds for one receive call
        """
        self._port = port
        self._baudrate = baudrate
        self._bytesize = bytesize
        self._parity = parity
        self._stopbits = stopbits
        self._timeout = timeout
        self._serial: Serial | None = None

    @property
    def port(self) -> str:
        return self._port

    @property
    def baudrate(self) -> int:
        return self._baudrate

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def description(self) -> str:
        return f"{self._port}@{self._baudrate}"

    @property
    def connected(self) -> bool:
        return self._serial is not None and self._serial.is_open

    def _open(self) -> Serial:
        import serial

        return serial.Serial(
            port=self._port,
            baudrate=self._baudrate,
            bytesize=self._bytesize,
            parity=self._parity,
            stopbits=self._stopbits,
            timeout=self._timeout,
            write_timeout=self._timeout,
        )

    async def connect(self) -> None:
        """Open the serial port.

        Raises:
            ConnectError: If pyserial is missing or the port cannot be opened
        """
        try:
            self._serial = await asyncio.to_thread(self._open)
        except ImportError as err:
            raise ConnectError(
                "pyserial package not installed. Install with: pip install pyserial"
            ) from err
        except PermissionError as err:
            _LOGGER.error("Permission denied opening serial port %s: %s", self._port, err)
            raise ConnectError(
                f"Permission denied for {self._port}. "
                "On Linux, add user to 'dialout' group: "
                "sudo usermod -a -G dialout $USER"
            ) from err
        except (ValueError, OSError) as err:
            # serial.SerialException derives from OSError
            _LOGGER.error("Failed to open serial port %s: %s", self._port, err)
            raise ConnectError(
                f"Failed to open {self._port}: {err}. "
                "Verify the port exists and is not in use by another application."
            ) from err
        _LOGGER.debug("Serial transport opened %s", self.description)

    async def close(self) -> None:
        port = self._serial
        self._serial = None
        if port is None:
            return
        try:
            await asyncio.to_thread(port.close)
        except OSError as err:
            _LOGGER.debug("Error closing %s: %s", self._port, err)
        _LOGGER.debug("Serial transport closed %s", self.description)

    def _require_port(self) -> Serial:
        if self._serial is None or not self._serial.is_open:
            raise TransportResetError(f"Serial port {self._port} is not open")
        return self._serial

    async def send(self, data: bytes) -> None:
        port = self._require_port()
        try:
            await asyncio.to_thread(port.write, data)
            await asyncio.to_thread(port.flush)
        except OSError as err:
            from serial import SerialTimeoutException

            if isinstance(err, SerialTimeoutException):
                raise TransportTimeoutError(f"Timeout writing to {self._port}") from err
            raise TransportResetError(f"Write to {self._port} failed: {err}") from err

    async def receive_exact(self, size: int) -> bytes:
        port = self._require_port()
        try:
            data = await asyncio.to_thread(port.read, size)
        except OSError as err:
            raise TransportResetError(f"Read from {self._port} failed: {err}") from err
        if len(data) < size:
            raise TransportTimeoutError(
                f"Timeout waiting for {size} bytes from {self._port}: "
                f"received {len(data)} after {self._timeout}s"
            )
        return bytes(data)

    async def discard_input(self) -> None:
        if self._serial is None or not self._serial.is_open:
            return
        try:
            await asyncio.to_thread(self._serial.reset_input_buffer)
        except OSError as err:
            raise TransportError(f"Failed to flush input of {self._port}: {err}") from err


__all__ = ["SerialTransport"]
