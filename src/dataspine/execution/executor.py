"""
Command executor: one logical command, one HTTP exchange.

WHY
───
Every CRUD call reduces to the same pipeline: merge options, encode the
payload, build the URL, race the request against its cancellation sources,
classify the outcome and decode the envelope. Keeping that pipeline in one
place keeps the timeout and error semantics identical across operations.

ARCHITECTURE
────────────
::

    Command ──▶ options (merged once) ──▶ ValueCodec.encode ──▶ url + body
                                                                  │
    caller signal ┐                                               ▼
    request timer ┼─▶ LinkedCancellation ── race ──▶ HttpTransport.post
    bulk signal   ┘         │                                     │
                            ▼                                     ▼
                  Connect/Request/BulkOperation      status classification
                  TimeoutError, OperationCancelled   408/504 · 401 · non-2xx
                                                                  │
                                                                  ▼
                                              envelope ──▶ CommandError if errors
                                                       └─▶ ApiResponse

No retries happen here. Pagination continuation lives in the orchestrator.

Examples:
    >>> executor = CommandExecutor()
    >>> command = Command("findOne", DatabaseUrlBuilder(endpoint, ("users",)), layers)
    >>> response = await executor.execute_async(command.with_payload({"filter": {}}))
    >>> response.data["document"]
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx

from dataspine.codec.codec import ValueCodec
from dataspine.codec.wire import dump_json
from dataspine.core.enums import HttpVersion, RunMode
from dataspine.core.errors import (
    AuthenticationError,
    CodecError,
    CommandError,
    DataApiError,
    RequestTimeoutError,
    TransportError,
)
from dataspine.core.logging import get_logger, redact_headers
from dataspine.core.options import EffectiveOptions
from dataspine.execution.blocking import BlockingRunner
from dataspine.execution.cancellation import (
    CancellationSignal,
    CancellationSource,
    LinkedCancellation,
)
from dataspine.execution.command import Command
from dataspine.execution.response import ApiResponse, ResultShape, decode_response, parse_envelope
from dataspine.execution.timeout import Stopwatch, TimeoutBudgets, timeout_error
from dataspine.execution.transport import HttpTransport

logger = get_logger(__name__)

USER_AGENT = "dataspine-python"
TIMEOUT_STATUSES = frozenset({408, 504})
MAX_LOGGED_BODY = 2_000


def build_headers(options: EffectiveOptions) -> dict[str, str]:
    headers = {
        "Accept": "application/json",
        "Content-Type": "application/json",
        "User-Agent": USER_AGENT,
    }
    if options.token:
        headers["Authorization"] = f"Bearer {options.token}"
        headers["Token"] = options.token
    if options.headers:
        headers.update(options.headers)
    return headers


def _clip(text: str) -> str:
    return text if len(text) <= MAX_LOGGED_BODY else text[:MAX_LOGGED_BODY] + "..."


class CommandExecutor:
    """Executes commands over a shared ``HttpTransport``.

    ``execute_async`` suspends only at the network exchange. ``execute`` runs
    the same coroutine on the ``BlockingRunner`` and waits for it.
    """

    def __init__(
        self,
        transport: HttpTransport | None = None,
        runner: BlockingRunner | None = None,
    ):
        self.transport = transport or HttpTransport()
        self.runner = runner or BlockingRunner()

    def execute(self, command: Command, result_shape: ResultShape | None = None) -> ApiResponse:
        """Blocking twin of ``execute_async``."""
        return self.runner.run(self.execute_async(command, result_shape))

    async def execute_async(
        self, command: Command, result_shape: ResultShape | None = None
    ) -> ApiResponse:
        options = command.options
        codec = ValueCodec.from_options(options)
        body = command.build_body(codec)
        url = command.build_url()
        budgets = TimeoutBudgets.from_options(options)
        context = {"command": command.name or None, "url": url, "keyspace": options.keyspace}

        try:
            content = dump_json(body).encode("utf-8")
        except (TypeError, ValueError) as exc:
            raise CodecError(f"Payload is not JSON-serializable: {exc}", cause=exc).with_context(**context) from exc

        headers = build_headers(options)
        debug = options.run_mode is RunMode.DEBUG
        if debug:
            logger.info(
                "command.request",
                command=command.name,
                url=url,
                headers=redact_headers(headers),
                body=_clip(content.decode("utf-8")),
            )
        else:
            logger.debug("command.send", command=command.name, url=url)

        stopwatch = Stopwatch()
        try:
            response = await self._send(command, options, url, content, headers, budgets)
        except DataApiError as exc:
            exc.with_context(**context)
            logger.warning("command.failed", elapsed_ms=stopwatch.elapsed_ms, **exc.to_dict())
            raise

        text = response.text
        if debug:
            logger.info("command.response", command=command.name, status_code=response.status_code, body=_clip(text))
        self._raise_for_status(response, text, context)

        envelope = parse_envelope(response.content)
        result = decode_response(envelope, codec, result_shape)
        if result.errors:
            error = CommandError(list(result.errors)).with_context(**context)
            logger.warning("command.errors", elapsed_ms=stopwatch.elapsed_ms, **error.to_dict())
            raise error
        logger.debug(
            "command.complete",
            command=command.name,
            status_code=response.status_code,
            elapsed_ms=stopwatch.elapsed_ms,
        )
        return result

    # ── Exchange ─────────────────────────────────────────────────────

    async def _send(
        self,
        command: Command,
        options: EffectiveOptions,
        url: str,
        content: bytes,
        headers: dict[str, str],
        budgets: TimeoutBudgets,
    ) -> httpx.Response:
        request_signal = CancellationSignal()
        timer = None
        if budgets.request_seconds is not None:
            timer = request_signal.cancel_after(
                budgets.request_seconds, CancellationSource.REQUEST_TIMEOUT
            )
        http = options.http
        try:
            with LinkedCancellation(
                options.cancellation, request_signal, options.bulk_cancellation
            ) as signal:
                if signal.cancelled:
                    raise timeout_error(signal.source, budgets, command.name)
                return await self._race(
                    self.transport.post(
                        url,
                        content,
                        headers,
                        http2=http is not None and http.http_version is HttpVersion.HTTP_2,
                        follow_redirects=bool(http and http.follow_redirects),
                        connect_timeout=budgets.connect_seconds,
                    ),
                    signal,
                    budgets,
                    command.name,
                )
        finally:
            if timer is not None:
                timer.cancel()

    async def _race(
        self,
        exchange: Any,
        signal: CancellationSignal,
        budgets: TimeoutBudgets,
        name: str,
    ) -> httpx.Response:
        send = asyncio.ensure_future(exchange)
        fired = asyncio.ensure_future(signal.wait())
        try:
            done, _ = await asyncio.wait({send, fired}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (send, fired):
                if not task.done():
                    task.cancel()
            await asyncio.gather(send, fired, return_exceptions=True)

        if send not in done:
            raise timeout_error(fired.result(), budgets, name)
        if send.cancelled() and signal.source is not None:
            raise timeout_error(signal.source, budgets, name)
        try:
            return send.result()
        except httpx.ConnectTimeout as exc:
            raise timeout_error(CancellationSource.CONNECT_TIMEOUT, budgets, name) from exc
        except httpx.TimeoutException as exc:
            raise timeout_error(CancellationSource.REQUEST_TIMEOUT, budgets, name) from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"HTTP exchange failed: {exc}", cause=exc) from exc

    @staticmethod
    def _raise_for_status(response: httpx.Response, text: str, context: dict[str, Any]) -> None:
        status = response.status_code
        if 200 <= status < 300:
            return
        if status in TIMEOUT_STATUSES:
            error: DataApiError = RequestTimeoutError(
                f"Server reported a timeout (HTTP {status})",
                source=CancellationSource.REQUEST_TIMEOUT,
            )
        elif status == 401:
            error = AuthenticationError("Unauthorized: check the application token")
        else:
            error = TransportError(f"HTTP {status}: {_clip(text)}", status_code=status, body=text)
        error.with_context(http_status=status, **context)
        logger.warning("command.http_error", **error.to_dict())
        raise error

    # ── Lifecycle ────────────────────────────────────────────────────

    async def aclose(self) -> None:
        await self.transport.aclose()

    def close(self) -> None:
        """Close pooled connections of the blocking path and stop its loop."""
        if self.runner.running:
            self.runner.run(self.transport.aclose())
        self.runner.close()


__all__ = ["CommandExecutor", "build_headers", "USER_AGENT"]
