"""Time budgets for command execution.

Three budgets apply to one HTTP exchange:

    connect   handed to httpx as the connect timeout; httpx.ConnectTimeout is
              classified as ``CancellationSource.CONNECT_TIMEOUT``
    request   a timer armed on the running loop that fires the request signal
    bulk      a timer armed once per bulk operation by the orchestrator and
              passed to every chunk/page through ``OptionsLayer.bulk_cancellation``

Unset or zero budgets are unlimited, each independently of the others.

Examples:
    >>> budgets = TimeoutBudgets.from_options(merge_options([]))
    >>> budgets.request_seconds
    10.0
    >>> timeout_error(CancellationSource.REQUEST_TIMEOUT, budgets, "find")
    RequestTimeoutError("Command 'find' timed out after 10000 ms (request timeout)", category=TIMEOUT)
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field

from dataspine.core.errors import (
    BulkOperationTimeoutError,
    ConnectTimeoutError,
    DataApiError,
    OperationCancelledError,
    RequestTimeoutError,
)
from dataspine.core.options import EffectiveOptions
from dataspine.execution.cancellation import CancellationSource


def _seconds(ms: int | None) -> float | None:
    return ms / 1000.0 if ms else None


@dataclass(frozen=True)
class TimeoutBudgets:
    """Resolved budgets in milliseconds, ``None`` meaning no limit."""

    connect_ms: int | None = None
    request_ms: int | None = None
    bulk_ms: int | None = None

    @classmethod
    def from_options(cls, options: EffectiveOptions) -> TimeoutBudgets:
        return cls(
            connect_ms=options.connect_timeout_ms,
            request_ms=options.request_timeout_ms,
            bulk_ms=options.bulk_operation_timeout_ms,
        )

    @property
    def connect_seconds(self) -> float | None:
        return _seconds(self.connect_ms)

    @property
    def request_seconds(self) -> float | None:
        return _seconds(self.request_ms)

    @property
    def bulk_seconds(self) -> float | None:
        return _seconds(self.bulk_ms)

    def for_source(self, source: CancellationSource) -> int | None:
        return {
            CancellationSource.CONNECT_TIMEOUT: self.connect_ms,
            CancellationSource.REQUEST_TIMEOUT: self.request_ms,
            CancellationSource.BULK_OPERATION_TIMEOUT: self.bulk_ms,
        }.get(source)


@dataclass
class Stopwatch:
    """Monotonic elapsed-time tracker for log fields and error messages."""

    start_time: float = field(default_factory=time.monotonic)

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.start_time) * 1000)


_TIMEOUT_ERRORS = {
    CancellationSource.CONNECT_TIMEOUT: (ConnectTimeoutError, "connect timeout"),
    CancellationSource.REQUEST_TIMEOUT: (RequestTimeoutError, "request timeout"),
    CancellationSource.BULK_OPERATION_TIMEOUT: (
        BulkOperationTimeoutError,
        "bulk operation timeout",
    ),
}


def timeout_error(
    source: CancellationSource,
    budgets: TimeoutBudgets,
    command: str | None = None,
) -> DataApiError:
    """Map the source of a fired signal to the matching error."""
    label = f"Command '{command}'" if command else "Command"
    if source is CancellationSource.CALLER:
        return OperationCancelledError(f"{label} was cancelled by the caller")
    error_cls, kind = _TIMEOUT_ERRORS[source]
    timeout_ms = budgets.for_source(source)
    limit = f" after {timeout_ms} ms" if timeout_ms else ""
    return error_cls(
        f"{label} timed out{limit} ({kind})",
        source=source,
        timeout_ms=timeout_ms,
    )


__all__ = ["TimeoutBudgets", "Stopwatch", "timeout_error"]
