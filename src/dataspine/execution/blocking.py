"""Blocking call path.

Blocking methods run the same coroutine as their ``*_async`` twins, on a
dedicated event loop in a daemon thread, and wait on the resulting future.
The caller's own event loop (if any) is never blocked from inside itself:
calling ``run`` from the runner thread raises instead of deadlocking.
"""

from __future__ import annotations

import asyncio
import threading
from typing import Any, Coroutine, TypeVar

from dataspine.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class BlockingRunner:
    """Runs coroutines to completion on a background event loop."""

    def __init__(self, name: str = "dataspine-io"):
        self._name = name
        self._lock = threading.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _ensure_started(self) -> asyncio.AbstractEventLoop:
        with self._lock:
            if self._loop is not None and self.running:
                return self._loop
            loop = asyncio.new_event_loop()
            started = threading.Event()

            def serve() -> None:
                asyncio.set_event_loop(loop)
                loop.call_soon(started.set)
                loop.run_forever()

            thread = threading.Thread(target=serve, name=self._name, daemon=True)
            thread.start()
            started.wait()
            self._loop, self._thread = loop, thread
            logger.debug("blocking_runner.started", thread=self._name)
            return loop

    def run(self, coro: Coroutine[Any, Any, T]) -> T:
        """Run ``coro`` on the background loop and block until it finishes."""
        if threading.current_thread() is self._thread:
            coro.close()
            raise RuntimeError(
                "Blocking Data API call made from the blocking runner's own thread; "
                "use the *_async method instead"
            )
        loop = self._ensure_started()
        future = asyncio.run_coroutine_threadsafe(coro, loop)
        try:
            return future.result()
        except BaseException:
            future.cancel()
            raise

    def close(self) -> None:
        """Stop the loop and join the thread."""
        with self._lock:
            loop, thread = self._loop, self._thread
            self._loop = self._thread = None
        if loop is None or thread is None:
            return
        loop.call_soon_threadsafe(loop.stop)
        thread.join(timeout=5.0)
        if not loop.is_running():
            loop.close()
        logger.debug("blocking_runner.stopped", thread=self._name)


__all__ = ["BlockingRunner"]
