"""Byte-stream transports for the Modbus engine.

Usage:
    from mbwire.transports import SerialTransport, TcpTransport

    tcp = TcpTransport("192.168.1.50")
    rtu = SerialTransport("/dev/ttyUSB0", baudrate=19200)
"""

from __future__ import annotations

from .base import FrameTransport
from .serial import SerialTransport
from .tcp import TcpTransport

__all__ = [
    "FrameTransport",
    "SerialTransport",
    "TcpTransport",
]
