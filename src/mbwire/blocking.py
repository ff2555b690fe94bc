"""Blocking call path for synchronous code.

:class:`BlockingModbusEngine` owns a private event loop running in a
daemon thread and submits the wrapped engine's coroutines to it with
``asyncio.run_coroutine_threadsafe``. Blocking callers from any thread and
async callers using :meth:`BlockingModbusEngine.submit` therefore all go
through the same engine lock.

The wrapped engine must only be driven through this wrapper once it is
wrapped; its lock belongs to the wrapper's loop.

Example:
    with BlockingModbusEngine(create_tcp_engine("192.168.1.50")) as client:
        result = client.read_value("1;3;100", DataType.UINT16)
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
from collections.abc import Coroutine, Iterable, Sequence
from typing import Any, TypeVar

from .address import AddressHeader
from .batch import BatchOutput, BatchRequest
from .engine import ModbusEngine
from .exceptions import TransportTimeoutError
from .marshal import DataType
from .result import ExchangeResult

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

SHUTDOWN_TIMEOUT = 5.0


class BlockingModbusEngine:
    """Synchronous facade over a :class:`ModbusEngine`."""

    def __init__(self, engine: ModbusEngine, *, call_timeout: float | None = None) -> None:
        """Start the private event loop.

        Args:
            engine: Engine to drive; not yet used from another loop
            call_timeout: Upper bound in seconds for one blocking call;
                unbounded when None (transport timeouts still apply)
        """
        self._engine = engine
        self._call_timeout = call_timeout
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._loop.run_forever,
            name="mbwire-engine-loop",
            daemon=True,
        )
        self._thread.start()
        self._closed = False

    @property
    def engine(self) -> ModbusEngine:
        return self._engine

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop

    @property
    def closed(self) -> bool:
        return self._closed

    def __enter__(self) -> BlockingModbusEngine:
        self.connect().unwrap()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def submit(self, coro: Coroutine[Any, Any, T]) -> concurrent.futures.Future[T]:
        """Schedule a coroutine on the engine loop without waiting.

        Async code running on another loop can await the outcome with
        ``await asyncio.wrap_future(client.submit(...))``.
        """
        if self._closed:
            coro.close()
            raise RuntimeError("BlockingModbusEngine is closed")
        return asyncio.run_coroutine_threadsafe(coro, self._loop)

    def _call(self, coro: Coroutine[Any, Any, ExchangeResult[T]]) -> ExchangeResult[T]:
        """Run an engine operation, turning an overrun of call_timeout into a failed result.

        The overrunning operation is cancelled on the engine loop, which
        drops a long-lived connection before the next call gets the lock.
        """
        future = self.submit(coro)
        try:
            return future.result(self._call_timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            message = f"Blocking call did not finish within {self._call_timeout}s"
            _LOGGER.warning("%s on %s", message, self._engine.transport.description)
            return ExchangeResult.from_error(TransportTimeoutError(message))

    def close(self) -> None:
        """Disconnect and stop the private loop."""
        if self._closed:
            return
        try:
            self._call(self._engine.disconnect())
        finally:
            self._closed = True
            self._loop.call_soon_threadsafe(self._loop.stop)
            self._thread.join(SHUTDOWN_TIMEOUT)
            if self._thread.is_alive():
                _LOGGER.warning("Engine loop thread did not stop within %ss", SHUTDOWN_TIMEOUT)
            else:
                self._loop.close()

    # Blocking mirrors of the engine operations

    def connect(self) -> ExchangeResult[None]:
        return self._call(self._engine.connect())

    def disconnect(self) -> ExchangeResult[None]:
        return self._call(self._engine.disconnect())

    def read(self, address: str | AddressHeader, length: int = 1) -> ExchangeResult[bytes]:
        return self._call(self._engine.read(address, length))

    def read_values(
        self, address: str | AddressHeader, data_type: DataType, count: int = 1
    ) -> ExchangeResult[list[Any]]:
        return self._call(self._engine.read_values(address, data_type, count))

    def read_value(self, address: str | AddressHeader, data_type: DataType) -> ExchangeResult[Any]:
        return self._call(self._engine.read_value(address, data_type))

    def read_bit(
        self, address: str | AddressHeader, from_left: bool | None = None
    ) -> ExchangeResult[bool]:
        return self._call(self._engine.read_bit(address, from_left))

    def write(self, address: str | AddressHeader, data: bytes) -> ExchangeResult[None]:
        return self._call(self._engine.write(address, data))

    def write_values(
        self, address: str | AddressHeader, values: Sequence[Any], data_type: DataType
    ) -> ExchangeResult[None]:
        return self._call(self._engine.write_values(address, values, data_type))

    def write_value(
        self, address: str | AddressHeader, value: Any, data_type: DataType
    ) -> ExchangeResult[None]:
        return self._call(self._engine.write_value(address, value, data_type))

    def write_coil(self, address: str | AddressHeader, value: bool) -> ExchangeResult[None]:
        return self._call(self._engine.write_coil(address, value))

    def write_coils(
        self, address: str | AddressHeader, values: Sequence[bool]
    ) -> ExchangeResult[None]:
        return self._call(self._engine.write_coils(address, values))

    def batch_read(
        self, requests: Iterable[BatchRequest], retry_count: int | None = None
    ) -> ExchangeResult[list[BatchOutput]]:
        return self._call(self._engine.batch_read(list(requests), retry_count))

    def execute(
        self, station_number: int, function_code: int, payload: bytes
    ) -> ExchangeResult[bytes]:
        return self._call(self._engine.execute(station_number, function_code, payload))


__all__ = ["BlockingModbusEngine"]
