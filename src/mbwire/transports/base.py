"""Byte-stream collaborator contract used by the engine."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class FrameTransport(Protocol):
    """A connection that moves raw frame bytes.

    Implementations do not interpret frames. They report failures with
    :class:`~mbwire.exceptions.ConnectError` on connect and
    :class:`~mbwire.exceptions.TransportError` subclasses on I/O, keeping
    timeouts (``TransportTimeoutError``) apart from a closed or reset
    connection (``TransportResetError``).
    """

    @property
    def connected(self) -> bool:
        """True while the connection is open."""
        ...

    @property
    def description(self) -> str:
        """Human-readable endpoint, used in log and error messages."""
        ...

    async def connect(self) -> None:
        """Open the connection."""
        ...

    async def close(self) -> None:
        """Close the connection; safe to call when already closed."""
        ...

    async def send(self, data: bytes) -> None:
        """Write all of ``data``."""
        ...

    async def receive_exact(self, size: int) -> bytes:
        """Read exactly ``size`` bytes or raise."""
        ...

    async def discard_input(self) -> None:
        """Drop any bytes already waiting to be read."""
        ...


__all__ = ["FrameTransport"]
