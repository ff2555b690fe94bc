"""Outcome of an engine operation.

Engine coroutines never raise for protocol or transport failures. They
return an :class:`ExchangeResult` that carries either the value or the
failure (message, numeric code, exception) together with hex traces of
every frame sent and received while producing it.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from .exceptions import ModbusError

T = TypeVar("T")


def hex_trace(data: bytes) -> str:
    """Render bytes as spaced upper-case hex, e.g. ``"01 03 00 64"``."""
    return bytes(data).hex(" ").upper()


@dataclass
class ExchangeResult(Generic[T]):
    """Result of one logical read or write.

    Attributes:
        success: True when the operation completed
        value: Decoded value (None on failure or for writes)
        message: Last failure message
        error_code: Numeric failure code (exception code, 408 for timeouts)
        exception: Exception that caused the failure
        requests: Hex trace of every request frame sent
        responses: Hex trace of every response frame received
        messages: All distinct messages recorded, oldest first
        elapsed_ms: Wall time from creation to :meth:`complete`
    """

    success: bool = True
    value: T | None = None
    message: str | None = None
    error_code: int | None = None
    exception: BaseException | None = None
    requests: list[str] = field(default_factory=list)
    responses: list[str] = field(default_factory=list)
    messages: list[str] = field(default_factory=list)
    elapsed_ms: float | None = None
    _started: float = field(default_factory=time.perf_counter, repr=False, compare=False)

    @classmethod
    def ok(cls, value: T | None = None) -> ExchangeResult[T]:
        """Successful, already completed result."""
        return cls(value=value).complete()

    @classmethod
    def from_error(cls, error: BaseException | str) -> ExchangeResult[T]:
        """Failed, already completed result."""
        return cls().fail(error).complete()

    def failed(self) -> bool:
        return not self.success

    def add_message(self, message: str) -> None:
        if message and message not in self.messages:
            self.messages.append(message)

    def fail(self, error: BaseException | str, error_code: int | None = None) -> ExchangeResult[T]:
        """Mark as failed from an exception or a plain message."""
        self.success = False
        self.value = None
        if isinstance(error, BaseException):
            self.exception = error
            self.message = str(error) or type(error).__name__
            if error_code is None and isinstance(error, ModbusError):
                error_code = error.error_code
        else:
            self.message = error
        if error_code is not None:
            self.error_code = error_code
        self.add_message(self.message)
        return self

    def record_request(self, frame: bytes) -> None:
        self.requests.append(hex_trace(frame))

    def record_response(self, frame: bytes) -> None:
        self.responses.append(hex_trace(frame))

    def absorb(self, other: ExchangeResult[Any]) -> ExchangeResult[T]:
        """Append another result's traces and take over its failure, if any."""
        self.requests.extend(other.requests)
        self.responses.extend(other.responses)
        for message in other.messages:
            self.add_message(message)
        if not other.success:
            self.success = False
            self.value = None
            self.message = other.message
            self.error_code = other.error_code
            self.exception = other.exception
        return self

    def complete(self) -> ExchangeResult[T]:
        """Stamp the elapsed time; returns self for chaining."""
        self.elapsed_ms = (time.perf_counter() - self._started) * 1000
        return self

    def unwrap(self) -> T:
        """Return the value, raising the recorded failure instead if there is one."""
        if self.success:
            return self.value  # type: ignore[return-value]
        if self.exception is not None:
            raise self.exception
        raise ModbusError(self.message or "Operation failed")


__all__ = ["ExchangeResult", "hex_trace"]
