"""Batch read coalescing.

Many logical reads are packed into as few physical reads as possible.
Requests are grouped by (function code, station). Within a group the
addresses are deduplicated and sorted, then swept into windows:

1. the window starts at the lowest address not yet covered;
2. every address within ``BATCH_WINDOW_REGISTERS`` of the start joins it;
3. the window is sized to reach the end of its furthest item;
4. the next window starts at the first address past the end.

Each window is one read. Its payload is then split back into the
individual values with :func:`~mbwire.marshal.extract_from_batch`.

A failed window aborts the whole batch attempt; the batch is retried as a
unit and never returns partial results.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any

from .address import AddressHeader, format_address, parse_address
from .constants import (
    BATCH_WINDOW_REGISTERS,
    BIT_READ_FUNCTION_CODES,
    MAX_READ_REGISTERS,
    READ_FUNCTION_CODES,
)
from .exceptions import ModbusError, ProtocolConfigError
from .marshal import DataFormat, DataType, extract_from_batch
from .result import ExchangeResult

_LOGGER = logging.getLogger(__name__)

# Reads one window: (synthesized header, register/coil count, result for traces)
WindowReader = Callable[[AddressHeader, int, ExchangeResult[Any]], Awaitable[bytes]]
WarningCallback = Callable[[str, "BaseException | None"], None]


@dataclass(frozen=True)
class BatchRequest:
    """One logical value to read as part of a batch."""

    station_number: int
    function_code: int
    address: int
    data_type: DataType

    @classmethod
    def from_address(cls, address: str | AddressHeader, data_type: DataType) -> BatchRequest:
        """Build a request from address text such as ``"1;3;100"``."""
        header = parse_address(address) if isinstance(address, str) else address
        return cls(header.station_number, header.function_code, header.address, data_type)

    @property
    def group(self) -> tuple[int, int]:
        return (self.function_code, self.station_number)


@dataclass(frozen=True)
class BatchOutput:
    """One value produced by a batch read."""

    station_number: int
    function_code: int
    address: int
    data_type: DataType
    value: Any


@dataclass(frozen=True)
class BatchItem:
    """Address and type within a single (function, station) group."""

    address: int
    data_type: DataType

    def width(self, bit_addressed: bool) -> int:
        """Points (registers or bits) the item occupies."""
        return 1 if bit_addressed else self.data_type.register_count


@dataclass(frozen=True)
class ReadWindow:
    """One physical read covering a contiguous address range."""

    start_address: int
    length: int
    items: tuple[BatchItem, ...]

    @property
    def end_address(self) -> int:
        """First address past the window."""
        return self.start_address + self.length


@dataclass(frozen=True)
class BatchGroup:
    """Planned windows for one (function, station) pair."""

    station_number: int
    function_code: int
    windows: tuple[ReadWindow, ...]

    @property
    def bit_addressed(self) -> bool:
        return self.function_code in BIT_READ_FUNCTION_CODES


def _check_item(function_code: int, data_type: DataType) -> None:
    if function_code not in READ_FUNCTION_CODES:
        raise ProtocolConfigError(f"Function code {function_code} cannot be used for batch reads")
    if data_type is DataType.BYTE:
        raise ProtocolConfigError("Byte values are not supported in batch reads")
    if function_code in BIT_READ_FUNCTION_CODES and data_type is not DataType.BOOL:
        raise ProtocolConfigError(
            f"Function code {function_code} reads bits; {data_type.value} is not supported"
        )


def plan_windows(
    items: Iterable[BatchItem],
    *,
    bit_addressed: bool = False,
    window_size: int = BATCH_WINDOW_REGISTERS,
) -> list[ReadWindow]:
    """Pack items of one group into read windows.

    Args:
        items: Items to cover; duplicates by address keep the first
        bit_addressed: Items are coils/discrete inputs (one bit each)
        window_size: How far past the window start an item may begin

    Returns:
        Windows in ascending address order
    """
    unique: dict[int, BatchItem] = {}
    for item in items:
        unique.setdefault(item.address, item)
    ordered = sorted(unique.values(), key=lambda item: item.address)

    windows: list[ReadWindow] = []
    index = 0
    while index < len(ordered):
        start = ordered[index].address
        candidates: list[BatchItem] = []
        while index < len(ordered) and ordered[index].address <= start + window_size:
            candidates.append(ordered[index])
            index += 1
        length = max(item.address - start + item.width(bit_addressed) for item in candidates)
        length = min(length, MAX_READ_REGISTERS)
        windows.append(ReadWindow(start, length, tuple(candidates)))
    return windows


def plan_batch(requests: Iterable[BatchRequest]) -> list[BatchGroup]:
    """Group, validate and plan a batch.

    Raises:
        ProtocolConfigError: For a function code or data type a batch
            cannot serve
    """
    grouped: dict[tuple[int, int], list[BatchItem]] = {}
    for request in requests:
        _check_item(request.function_code, request.data_type)
        grouped.setdefault(request.group, []).append(
            BatchItem(request.address, request.data_type)
        )

    groups = []
    for (function_code, station_number), items in grouped.items():
        windows = plan_windows(
            items, bit_addressed=function_code in BIT_READ_FUNCTION_CODES
        )
        groups.append(BatchGroup(station_number, function_code, tuple(windows)))
    return groups


class BatchCoalescer:
    """Executes planned batches through a window reader."""

    def __init__(
        self,
        read_window: WindowReader,
        *,
        data_format: DataFormat = DataFormat.ABCD,
        reverse: bool = False,
        retry_count: int = 1,
        on_warning: WarningCallback | None = None,
    ) -> None:
        """Initialize the coalescer.

        Args:
            read_window: Coroutine performing one physical read and
                returning its data payload; raises ModbusError on failure
            data_format: Multi-register byte layout
            reverse: Connection reverse flag
            retry_count: Extra whole-batch attempts after a failure
            on_warning: Called with (message, exception) before each retry
        """
        self._read_window = read_window
        self._data_format = data_format
        self._reverse = reverse
        self._retry_count = retry_count
        self._on_warning = on_warning

    async def _read_group(
        self, group: BatchGroup, result: ExchangeResult[Any]
    ) -> list[BatchOutput]:
        outputs: list[BatchOutput] = []
        for window in group.windows:
            header = AddressHeader(group.station_number, group.function_code, window.start_address)
            _LOGGER.debug(
                "Batch window %s length %d covering %d items",
                format_address(header),
                window.length,
                len(window.items),
            )
            buffer = await self._read_window(header, window.length, result)
            for item in window.items:
                value = extract_from_batch(
                    window.start_address,
                    item.address,
                    buffer,
                    item.data_type,
                    bit_addressed=group.bit_addressed,
                    data_format=self._data_format,
                    reverse=self._reverse,
                )
                outputs.append(
                    BatchOutput(
                        group.station_number,
                        group.function_code,
                        item.address,
                        item.data_type,
                        value,
                    )
                )
        return outputs

    async def read_once(
        self, groups: list[BatchGroup], result: ExchangeResult[Any]
    ) -> list[BatchOutput]:
        """One attempt over every window; raises on the first failure."""
        outputs: list[BatchOutput] = []
        for group in groups:
            outputs.extend(await self._read_group(group, result))
        return outputs

    async def read(
        self,
        requests: Iterable[BatchRequest],
        retry_count: int | None = None,
    ) -> ExchangeResult[list[BatchOutput]]:
        """Read a batch, retrying the whole batch on failure.

        Args:
            requests: Values to read
            retry_count: Override for the configured retry count

        Returns:
            Result holding outputs ordered by group then address; on
            failure it carries the last error and every attempt's traces

        Raises:
            ProtocolConfigError: If the batch cannot be planned
        """
        groups = plan_batch(requests)
        retries = self._retry_count if retry_count is None else retry_count
        result: ExchangeResult[list[BatchOutput]] = ExchangeResult()

        if not groups:
            result.value = []
            return result.complete()

        attempts = retries + 1
        for attempt in range(1, attempts + 1):
            try:
                result.value = await self.read_once(groups, result)
            except ProtocolConfigError:
                raise
            except ModbusError as err:
                if attempt < attempts:
                    message = f"Batch read attempt {attempt}/{attempts} failed: {err}"
                    _LOGGER.warning("%s", message)
                    result.add_message(message)
                    if self._on_warning is not None:
                        self._on_warning(message, err)
                    continue
                _LOGGER.error("Batch read failed after %d attempts: %s", attempts, err)
                result.fail(err)
            break
        return result.complete()


__all__ = [
    "BatchCoalescer",
    "BatchGroup",
    "BatchItem",
    "BatchOutput",
    "BatchRequest",
    "ReadWindow",
    "plan_batch",
    "plan_windows",
]
