"""
Shared HTTP transport.

WHY
───
Opening a connection pool per request throws away keep-alive and HTTP/2
multiplexing. ``HttpTransport`` keeps one ``httpx.AsyncClient`` per event loop
and HTTP version and reuses it across calls. Redirect-following and the
connect timeout are passed per request, read from the effective options at
call time.

ARCHITECTURE
────────────
::

    HttpTransport
      └── {event loop → {http2: bool → httpx.AsyncClient}}
             async clients are bound to the loop that created them; the
             blocking API runs on its own loop and gets its own pool

Tests inject ``httpx.MockTransport`` through ``transport=``.
"""

from __future__ import annotations

import asyncio
import threading
import weakref

import httpx

from dataspine.core.logging import get_logger

logger = get_logger(__name__)


class HttpTransport:
    """Per-loop pool of ``httpx.AsyncClient`` instances."""

    def __init__(
        self,
        transport: httpx.AsyncBaseTransport | None = None,
        *,
        limits: httpx.Limits | None = None,
    ):
        self._transport = transport
        self._limits = limits or httpx.Limits(max_connections=100, max_keepalive_connections=20)
        self._clients: weakref.WeakKeyDictionary[
            asyncio.AbstractEventLoop, dict[bool, httpx.AsyncClient]
        ] = weakref.WeakKeyDictionary()
        self._lock = threading.Lock()

    def client(self, http2: bool) -> httpx.AsyncClient:
        """Client for the running loop, created on first use."""
        loop = asyncio.get_running_loop()
        with self._lock:
            per_loop = self._clients.setdefault(loop, {})
            client = per_loop.get(http2)
            if client is None or client.is_closed:
                client = httpx.AsyncClient(
                    transport=self._transport,
                    http2=http2 and self._transport is None,
                    limits=self._limits,
                    timeout=httpx.Timeout(None),
                )
                per_loop[http2] = client
                logger.debug("transport.client_created", http2=http2)
        return client

    async def post(
        self,
        url: str,
        content: bytes,
        headers: dict[str, str],
        *,
        http2: bool,
        follow_redirects: bool,
        connect_timeout: float | None,
    ) -> httpx.Response:
        client = self.client(http2)
        request = client.build_request(
            "POST",
            url,
            content=content,
            headers=headers,
            timeout=httpx.Timeout(None, connect=connect_timeout),
        )
        return await client.send(request, follow_redirects=follow_redirects)

    async def aclose(self) -> None:
        """Close the clients that belong to the running loop."""
        loop = asyncio.get_running_loop()
        with self._lock:
            clients = list(self._clients.pop(loop, {}).values())
        for client in clients:
            await client.aclose()


__all__ = ["HttpTransport"]
