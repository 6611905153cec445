"""
Cancellation signals with source tags.

WHY
───
A command can be stopped by three independent things: the caller, the
single-request budget and the whole-bulk-operation budget (a fourth, the
connect budget, is enforced by the HTTP layer and tagged the same way). They
must collapse into one decision without losing which one fired, because a
request timeout and a bulk timeout are reported as different errors.

ARCHITECTURE
────────────
::

    caller signal ─────┐
    request timer ─────┼──▶ LinkedCancellation ──▶ executor
    bulk signal ───────┘        (first fire wins, source preserved)

A ``CancellationSignal`` is monotonic: the first ``cancel`` records its source
and every later call is ignored. Signals are thread-safe so a caller on one
thread can cancel work running on the background event loop.

Examples:
    >>> parent = CancellationSignal()
    >>> linked = LinkedCancellation(parent)
    >>> parent.cancel(CancellationSource.CALLER)
    True
    >>> linked.source
    <CancellationSource.CALLER: 'caller'>
"""

from __future__ import annotations

import asyncio
import threading
from enum import Enum
from typing import Callable


class CancellationSource(str, Enum):
    """Which budget or actor stopped the operation."""

    CALLER = "caller"
    CONNECT_TIMEOUT = "connect_timeout"
    REQUEST_TIMEOUT = "request_timeout"
    BULK_OPERATION_TIMEOUT = "bulk_operation_timeout"


Listener = Callable[[CancellationSource], None]


class CancellationSignal:
    """A one-shot, thread-safe cancellation flag that remembers its source."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._source: CancellationSource | None = None
        self._listeners: list[Listener] = []

    @property
    def cancelled(self) -> bool:
        return self._source is not None

    @property
    def source(self) -> CancellationSource | None:
        return self._source

    def cancel(self, source: CancellationSource = CancellationSource.CALLER) -> bool:
        """Fire the signal. Returns False if it had already fired."""
        with self._lock:
            if self._source is not None:
                return False
            self._source = source
            listeners, self._listeners = self._listeners, []
        for listener in listeners:
            listener(source)
        return True

    def register(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener(source)`` on cancellation; returns an unregister callable.

        If the signal already fired the listener runs immediately.
        """
        with self._lock:
            fired = self._source
            if fired is None:
                self._listeners.append(listener)
        if fired is not None:
            listener(fired)
            return lambda: None

        def unregister() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unregister

    async def wait(self) -> CancellationSource:
        """Suspend until the signal fires, from any thread."""
        loop = asyncio.get_running_loop()
        fired: asyncio.Future[CancellationSource] = loop.create_future()

        def resolve(source: CancellationSource) -> None:
            if not fired.done():
                fired.set_result(source)

        unregister = self.register(lambda source: loop.call_soon_threadsafe(resolve, source))
        try:
            return await fired
        finally:
            unregister()

    def cancel_after(self, seconds: float, source: CancellationSource) -> asyncio.TimerHandle:
        """Arm a timer on the running loop that fires this signal with ``source``."""
        loop = asyncio.get_running_loop()
        return loop.call_later(seconds, self.cancel, source)

    def __repr__(self) -> str:
        state = self._source.value if self._source else "active"
        return f"{type(self).__name__}({state})"


class LinkedCancellation(CancellationSignal):
    """A signal that fires as soon as any of its parents fires.

    ``None`` parents are skipped so optional sources can be passed as-is. Call
    ``close()`` (or use as a context manager) to detach from the parents.
    """

    def __init__(self, *parents: CancellationSignal | None):
        super().__init__()
        self._detach = [p.register(self.cancel) for p in parents if p is not None]

    def close(self) -> None:
        for detach in self._detach:
            detach()
        self._detach = []

    def __enter__(self) -> LinkedCancellation:
        return self

    def __exit__(self, *args) -> None:
        self.close()


__all__ = ["CancellationSource", "CancellationSignal", "LinkedCancellation"]
