"""CRC-16/Modbus checksum for RTU frames."""

from __future__ import annotations

import struct

from .constants import CRC_SIZE

CRC16_INITIAL = 0xFFFF
CRC16_POLYNOMIAL = 0xA001


def compute_crc16(data: bytes) -> int:
    """Compute CRC-16/Modbus checksum.

    Args:
        data: Bytes to compute CRC for

    Returns:
        16-bit CRC value
    """
    crc = CRC16_INITIAL
    for byte in data:
        crc ^= byte
        for _ in range(8):
            if crc & 1:
                crc = (crc >> 1) ^ CRC16_POLYNOMIAL
            else:
                crc >>= 1
    return crc & 0xFFFF


def crc16_bytes(data: bytes) -> bytes:
    """CRC of *data* as it travels on the wire (low byte first)."""
    return struct.pack("<H", compute_crc16(data))


def append_crc16(frame: bytes) -> bytes:
    """Return *frame* with its CRC appended."""
    return bytes(frame) + crc16_bytes(frame)


def check_crc16(frame: bytes) -> bool:
    """Verify the trailing CRC of a complete RTU frame.

    The CRC is recomputed over everything but the last two bytes and
    compared with them. Frames too short to hold a CRC never verify.
    """
    if len(frame) <= CRC_SIZE:
        return False
    return crc16_bytes(frame[:-CRC_SIZE]) == bytes(frame[-CRC_SIZE:])


__all__ = ["append_crc16", "check_crc16", "compute_crc16", "crc16_bytes"]
