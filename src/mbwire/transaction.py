"""Check-head generation for TCP frames.

The two bytes in the MBAP transaction-id slot are used as a check-head:
the device echoes them and the codec rejects any response whose
check-head differs, which catches stale or crossed responses.

The default strategy draws the check-head from a generator seeded with the
wall-clock millisecond mixed with the function code, so it is *not* a
sequential MBAP transaction id. Devices or gateways that insist on strict
MBAP semantics can be given :class:`SequentialTransactionIdGenerator`.
"""

from __future__ import annotations

import random
import struct
import threading
import time
from collections.abc import Callable
from typing import Protocol, runtime_checkable


def _wall_clock_ms() -> int:
    return time.time_ns() // 1_000_000


@runtime_checkable
class TransactionIdGenerator(Protocol):
    """Produces the 2-byte check-head for each TCP transaction."""

    def next_id(self, function_code: int) -> bytes:
        """Return the check-head for a request with *function_code*."""
        ...


class RandomTransactionIdGenerator:
    """Pseudo-random check-head seeded per call.

    Each call seeds a fresh generator from the wall-clock milliseconds, the
    function code and a per-instance salt, then draws two bytes.
    """

    def __init__(
        self,
        *,
        salt: int | None = None,
        clock: Callable[[], int] = _wall_clock_ms,
    ) -> None:
        """Initialize the generator.

        Args:
            salt: Extra seed material; random per instance when omitted
            clock: Millisecond clock, injectable for tests
        """
        self._salt = random.getrandbits(32) if salt is None else salt
        self._clock = clock

    def next_id(self, function_code: int) -> bytes:
        seed = self._clock() ^ (function_code << 24) ^ self._salt
        rng = random.Random(seed)
        return bytes((rng.randrange(256), rng.randrange(256)))


class SequentialTransactionIdGenerator:
    """Strict MBAP-style transaction ids: 1, 2, ... wrapping at 0xFFFF."""

    def __init__(self, start: int = 1) -> None:
        self._next = start & 0xFFFF
        self._lock = threading.Lock()

    def next_id(self, function_code: int) -> bytes:
        with self._lock:
            value = self._next
            self._next = (self._next + 1) & 0xFFFF
        return struct.pack(">H", value)


__all__ = [
    "RandomTransactionIdGenerator",
    "SequentialTransactionIdGenerator",
    "TransactionIdGenerator",
]
