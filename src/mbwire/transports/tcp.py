"""TCP socket transport.

Carries either Modbus TCP frames or, for serial device servers, RTU frames
over a plain socket. Framing is the codec's business; this class only
moves bytes.

Example:
    transport = TcpTransport("192.168.1.50", port=502)
    await transport.connect()
    await transport.send(frame)
    header = await transport.receive_exact(8)
"""

from __future__ import annotations

import asyncio
import logging

from ..constants import DEFAULT_TCP_PORT
from ..exceptions import (
    ConnectError,
    TransportError,
    TransportResetError,
    TransportTimeoutError,
)

_LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 3.0
CLOSE_TIMEOUT = 5.0
DRAIN_TIMEOUT = 0.05
DRAIN_CHUNK_SIZE = 512


class TcpTransport:
    """asyncio stream connection to a Modbus device or gateway."""

    def __init__(
        self,
        host: str,
        port: int = DEFAULT_TCP_PORT,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        """Initialize TCP transport.

        Args:
            host: IP address or hostname of the device
            port: TCP port (default 502)
            timeout: Connect and read timeout in seconds
        """
        self._host = host
        self._port = port
        self._timeout = timeout
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None

    @property
    def host(self) -> str:
        return self._host

    @property
    def port(self) -> int:
        return self._port

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def description(self) -> str:
        return f"{self._host}:{self._port}"

    @property
    def connected(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    async def connect(self) -> None:
        """Open the TCP connection.

        Raises:
            ConnectError: If the connection fails; ``timeout`` is set when
                the device did not answer in time
        """
        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(self._host, self._port),
                timeout=self._timeout,
            )
        except TimeoutError as err:
            _LOGGER.error("Timeout connecting to %s", self.description)
            raise ConnectError(
                f"Timeout connecting to {self.description} after {self._timeout}s",
                timeout=True,
            ) from err
        except OSError as err:
            _LOGGER.error("Failed to connect to %s: %s", self.description, err)
            raise ConnectError(f"Failed to connect to {self.description}: {err}") from err
        _LOGGER.debug("TCP transport connected to %s", self.description)

    async def close(self) -> None:
        """Close the connection.

        Waits a bounded time for the socket to close so a wedged peer
        cannot hang the caller.
        """
        writer = self._writer
        self._reader = None
        self._writer = None
        if writer is None:
            return
        try:
            writer.close()
            await asyncio.wait_for(writer.wait_closed(), timeout=CLOSE_TIMEOUT)
        except TimeoutError:
            _LOGGER.warning("Timeout waiting for connection close to %s", self.description)
        except OSError as err:
            _LOGGER.debug("Error closing connection to %s: %s", self.description, err)
        _LOGGER.debug("TCP transport disconnected from %s", self.description)

    def _require_streams(self) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        if self._reader is None or self._writer is None:
            raise TransportResetError(f"Not connected to {self.description}")
        return self._reader, self._writer

    async def send(self, data: bytes) -> None:
        _, writer = self._require_streams()
        try:
            writer.write(data)
            await asyncio.wait_for(writer.drain(), timeout=self._timeout)
        except TimeoutError as err:
            raise TransportTimeoutError(
                f"Timeout sending to {self.description} after {self._timeout}s"
            ) from err
        except (ConnectionError, OSError) as err:
            raise TransportResetError(f"Connection to {self.description} lost: {err}") from err

    async def receive_exact(self, size: int) -> bytes:
        reader, _ = self._require_streams()
        try:
            return await asyncio.wait_for(reader.readexactly(size), timeout=self._timeout)
        except TimeoutError as err:
            raise TransportTimeoutError(
                f"Timeout waiting for {size} bytes from {self.description} "
                f"after {self._timeout}s"
            ) from err
        except asyncio.IncompleteReadError as err:
            raise TransportResetError(
                f"Connection to {self.description} closed after "
                f"{len(err.partial)} of {size} bytes"
            ) from err
        except (ConnectionError, OSError) as err:
            raise TransportResetError(f"Connection to {self.description} lost: {err}") from err

    async def discard_input(self) -> None:
        """Drain stale bytes left over from a previous exchange."""
        if self._reader is None:
            return
        while True:
            try:
                junk = await asyncio.wait_for(
                    self._reader.read(DRAIN_CHUNK_SIZE), timeout=DRAIN_TIMEOUT
                )
            except TimeoutError:
                return
            except (ConnectionError, OSError) as err:
                raise TransportError(f"Error draining {self.description}: {err}") from err
            if not junk:
                return
            _LOGGER.debug("Discarded %d stale bytes: %s", len(junk), junk.hex())


__all__ = ["TcpTransport"]
