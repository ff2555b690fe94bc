"""Conversion between register bytes and typed values.

Registers arrive as a flat buffer of 16-bit big-endian words. Values wider
than one register are reassembled according to a :class:`DataFormat`
(the order in which the device lays out the bytes ``A B C D`` of a
big-endian 32-bit value) and the connection's ``reverse`` flag:

- 16-bit values: ``reverse`` decodes each register little-endian.
- wider values: ``reverse`` reverses the register order first, then the
  ``DataFormat`` permutation is applied.

Bit-packed data (coils, discrete inputs) carries the first point in bit 0
of the first byte.
"""

from __future__ import annotations

import struct
from collections.abc import Iterable, Sequence
from enum import Enum

from .exceptions import FrameValidationError, ProtocolConfigError

REGISTER_SIZE = 2
BITS_PER_BYTE = 8
BITS_PER_REGISTER = 16


class DataFormat(str, Enum):
    """Byte layout of multi-register values on the wire.

    Letters name the bytes of the big-endian value, most significant first.
    """

    ABCD = "ABCD"  # big-endian
    BADC = "BADC"  # big-endian words, bytes swapped within each word
    CDAB = "CDAB"  # word-swapped
    DCBA = "DCBA"  # little-endian


class DataType(str, Enum):
    """Value types the marshaler converts."""

    BOOL = "bool"
    BYTE = "byte"
    INT16 = "int16"
    UINT16 = "uint16"
    INT32 = "int32"
    UINT32 = "uint32"
    INT64 = "int64"
    UINT64 = "uint64"
    FLOAT = "float"
    DOUBLE = "double"

    @property
    def byte_width(self) -> int:
        """Bytes one value occupies in a register buffer."""
        return _BYTE_WIDTHS[self]

    @property
    def register_count(self) -> int:
        """Registers one value occupies."""
        return max(1, self.byte_width // REGISTER_SIZE)


_BYTE_WIDTHS: dict[DataType, int] = {
    DataType.BOOL: 1,
    DataType.BYTE: 1,
    DataType.INT16: 2,
    DataType.UINT16: 2,
    DataType.INT32: 4,
    DataType.UINT32: 4,
    DataType.INT64: 8,
    DataType.UINT64: 8,
    DataType.FLOAT: 4,
    DataType.DOUBLE: 8,
}

_STRUCT_CODES: dict[DataType, str] = {
    DataType.INT16: "h",
    DataType.UINT16: "H",
    DataType.INT32: "i",
    DataType.UINT32: "I",
    DataType.INT64: "q",
    DataType.UINT64: "Q",
    DataType.FLOAT: "f",
    DataType.DOUBLE: "d",
}


# ============================================================================
# Byte-order permutations
# ============================================================================


def _words(chunk: bytes) -> list[bytes]:
    return [chunk[i : i + REGISTER_SIZE] for i in range(0, len(chunk), REGISTER_SIZE)]


def _reverse_words(chunk: bytes) -> bytes:
    return b"".join(reversed(_words(chunk)))


def _swap_word_bytes(chunk: bytes) -> bytes:
    return b"".join(word[::-1] for word in _words(chunk))


def _apply_format(chunk: bytes, data_format: DataFormat) -> bytes:
    """Permute between wire layout and big-endian layout.

    Every permutation is its own inverse, so the same call serves both
    directions.
    """
    if data_format is DataFormat.ABCD:
        return chunk
    if data_format is DataFormat.BADC:
        return _swap_word_bytes(chunk)
    if data_format is DataFormat.CDAB:
        return _reverse_words(chunk)
    return chunk[::-1]


def to_canonical(chunk: bytes, data_format: DataFormat, reverse: bool) -> bytes:
    """Reorder one value's wire bytes into big-endian order."""
    if len(chunk) <= REGISTER_SIZE:
        return chunk[::-1] if reverse else chunk
    if reverse:
        chunk = _reverse_words(chunk)
    return _apply_format(chunk, data_format)


def from_canonical(chunk: bytes, data_format: DataFormat, reverse: bool) -> bytes:
    """Reorder one value's big-endian bytes into wire order."""
    if len(chunk) <= REGISTER_SIZE:
        return chunk[::-1] if reverse else chunk
    chunk = _apply_format(chunk, data_format)
    if reverse:
        chunk = _reverse_words(chunk)
    return chunk


# ============================================================================
# Bits
# ============================================================================


def decode_bools(
    buffer: bytes,
    count: int,
    offset: int = 0,
    *,
    msb_first: bool = False,
) -> list[bool]:
    """Unpack ``count`` flags from bit-packed bytes starting at byte ``offset``.

    Args:
        buffer: Packed bytes
        count: Number of flags to unpack
        offset: First byte to read
        msb_first: Take flags from bit 7 downwards instead of bit 0 upwards

    Returns:
        List of flags

    Raises:
        FrameValidationError: If the buffer holds fewer than ``count`` bits
    """
    needed = (count + BITS_PER_BYTE - 1) // BITS_PER_BYTE
    if offset < 0 or len(buffer) - offset < needed:
        raise FrameValidationError(
            f"Buffer holds {max(0, len(buffer) - offset)} bytes, {needed} needed for {count} flags"
        )
    flags: list[bool] = []
    for i in range(count):
        byte = buffer[offset + i // BITS_PER_BYTE]
        shift = (BITS_PER_BYTE - 1 - i % BITS_PER_BYTE) if msb_first else i % BITS_PER_BYTE
        flags.append(bool((byte >> shift) & 1))
    return flags


def encode_bools(values: Iterable[bool], *, msb_first: bool = False) -> bytes:
    """Pack flags into bytes, padding the last byte with zeros."""
    packed = bytearray()
    for i, value in enumerate(values):
        if i % BITS_PER_BYTE == 0:
            packed.append(0)
        if value:
            shift = (BITS_PER_BYTE - 1 - i % BITS_PER_BYTE) if msb_first else i % BITS_PER_BYTE
            packed[-1] |= 1 << shift
    return bytes(packed)


def decode_bit(
    buffer: bytes,
    register_index: int,
    bit_index: int,
    from_left: bool = True,
    reverse: bool = False,
) -> bool:
    """Extract one bit of a 16-bit register.

    Args:
        buffer: Register bytes
        register_index: Register within the buffer
        bit_index: Bit number 0-15
        from_left: Count from the most-significant bit instead of the least
        reverse: Register is stored little-endian

    Returns:
        The bit value
    """
    if not 0 <= bit_index < BITS_PER_REGISTER:
        raise ProtocolConfigError(f"Bit index {bit_index} out of range 0-15")
    offset = register_index * REGISTER_SIZE
    (word,) = decode(buffer, DataType.UINT16, offset=offset, reverse=reverse)
    shift = BITS_PER_REGISTER - 1 - bit_index if from_left else bit_index
    return bool((word >> shift) & 1)


# ============================================================================
# Scalars and arrays
# ============================================================================


def decode(
    buffer: bytes,
    data_type: DataType,
    offset: int = 0,
    count: int = 1,
    data_format: DataFormat = DataFormat.ABCD,
    reverse: bool = False,
) -> list:
    """Decode ``count`` consecutive values of ``data_type``.

    ``offset`` is in bytes. ``BOOL`` values are unpacked bit-wise from
    ``offset``; ``BYTE`` values are the raw bytes.

    Raises:
        FrameValidationError: If the buffer is too short
    """
    if data_type is DataType.BOOL:
        return decode_bools(buffer, count, offset)

    width = data_type.byte_width
    end = offset + width * count
    if offset < 0 or end > len(buffer):
        raise FrameValidationError(
            f"Buffer holds {len(buffer)} bytes, {end} needed to decode "
            f"{count} x {data_type.value} at offset {offset}"
        )
    if data_type is DataType.BYTE:
        return list(buffer[offset:end])

    code = ">" + _STRUCT_CODES[data_type]
    values = []
    for start in range(offset, end, width):
        chunk = to_canonical(bytes(buffer[start : start + width]), data_format, reverse)
        values.append(struct.unpack(code, chunk)[0])
    return values


def decode_value(
    buffer: bytes,
    data_type: DataType,
    offset: int = 0,
    data_format: DataFormat = DataFormat.ABCD,
    reverse: bool = False,
):
    """Decode a single value; see :func:`decode`."""
    return decode(buffer, data_type, offset, 1, data_format, reverse)[0]


def encode(
    values: Sequence,
    data_type: DataType,
    data_format: DataFormat = DataFormat.ABCD,
    reverse: bool = False,
) -> bytes:
    """Encode values of ``data_type`` into wire bytes.

    Raises:
        ProtocolConfigError: If a value does not fit ``data_type``
    """
    if data_type is DataType.BOOL:
        return encode_bools(values)
    if data_type is DataType.BYTE:
        try:
            return bytes(values)
        except (TypeError, ValueError) as err:
            raise ProtocolConfigError(f"Cannot encode {values!r} as bytes: {err}") from err

    code = ">" + _STRUCT_CODES[data_type]
    out = bytearray()
    for value in values:
        try:
            chunk = struct.pack(code, value)
        except struct.error as err:
            raise ProtocolConfigError(
                f"Cannot encode {value!r} as {data_type.value}: {err}"
            ) from err
        out += from_canonical(chunk, data_format, reverse)
    return bytes(out)


def encode_value(
    value,
    data_type: DataType,
    data_format: DataFormat = DataFormat.ABCD,
    reverse: bool = False,
) -> bytes:
    """Encode a single value; see :func:`encode`."""
    return encode([value], data_type, data_format, reverse)


def extract_from_batch(
    batch_start_address: int,
    target_address: int,
    batch_buffer: bytes,
    data_type: DataType,
    *,
    bit_addressed: bool = False,
    data_format: DataFormat = DataFormat.ABCD,
    reverse: bool = False,
):
    """Pull one value out of a buffer read for a whole window.

    Args:
        batch_start_address: First address the window read
        target_address: Address of the wanted value
        batch_buffer: Data payload returned for the window
        data_type: Type of the wanted value
        bit_addressed: Buffer is bit-packed (coils or discrete inputs)
        data_format: Multi-register byte layout
        reverse: Connection reverse flag

    Returns:
        The decoded value

    Raises:
        ProtocolConfigError: For ``BYTE`` values, and for non-``BOOL`` values
            in a bit-packed buffer
        FrameValidationError: If the buffer does not reach the value
    """
    interval = target_address - batch_start_address
    if interval < 0:
        raise ProtocolConfigError(
            f"Address {target_address} lies before window start {batch_start_address}"
        )

    if bit_addressed:
        if data_type is not DataType.BOOL:
            raise ProtocolConfigError(
                f"Bit-packed reads only yield bool values, not {data_type.value}"
            )
        byte_index, bit = divmod(interval, BITS_PER_BYTE)
        if byte_index >= len(batch_buffer):
            raise FrameValidationError(
                f"Buffer holds {len(batch_buffer)} bytes, bit {interval} needs {byte_index + 1}"
            )
        return bool((batch_buffer[byte_index] >> bit) & 1)

    if data_type is DataType.BYTE:
        raise ProtocolConfigError("Byte values cannot be extracted from a register window")

    offset = interval * REGISTER_SIZE
    if data_type is DataType.BOOL:
        # A register read as a flag: any non-zero value is true
        return decode_value(batch_buffer, DataType.UINT16, offset, reverse=reverse) != 0
    return decode_value(batch_buffer, data_type, offset, data_format, reverse)


__all__ = [
    "DataFormat",
    "DataType",
    "decode",
    "decode_bit",
    "decode_bools",
    "decode_value",
    "encode",
    "encode_bools",
    "encode_value",
    "extract_from_batch",
    "from_canonical",
    "to_canonical",
]
