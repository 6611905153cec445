"""
Structured logging for the Data API client.

Library loggers are structlog bound loggers wrapping stdlib ``logging``
loggers under the ``dataspine`` namespace. Nothing is printed until either
the host application configures stdlib logging or ``configure_logging`` is
called; level filtering is always the stdlib logger's. Command execution and
bulk orchestration log dotted event names with key/value fields
(``command.send``, ``bulk.insert_many.chunk``); secrets never reach the
renderer because token-bearing headers are redacted by a processor.

Architecture:
    ::

        get_logger("dataspine.execution.executor")
            │
            ▼
        processor chain (shared by every library logger)
          1. filter_by_level         ← stdlib logger level
          2. TimeStamper (iso)
          3. merge_contextvars       ← bind_context / LogContext
          4. add_log_level
          5. _redact_secrets          ← Authorization, Token
          6. _add_service_metadata
          7. JSONRenderer | ConsoleRenderer
            │
            ▼
        logging.getLogger("dataspine...")  → host handlers, or the stdout
                                             handler configure_logging adds

Examples:
    >>> from dataspine.core.logging import configure_logging, get_logger
    >>> configure_logging(level="DEBUG", json_format=False)
    >>> logger = get_logger(__name__)
    >>> logger.info("command.send", command="insertMany", chunk=3)

Tags:
    logging, structlog, observability, redaction, dataspine

Doc-Types:
    - API Reference
    - Observability Guide
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

ROOT_LOGGER = "dataspine"

_SERVICE_NAME = "dataspine"
_HANDLER: logging.Handler | None = None

REDACTED = "***"
SECRET_KEYS = frozenset({"authorization", "token", "x-cassandra-token"})


def _add_service_metadata(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add service-level metadata to all logs."""
    event_dict.setdefault("service.name", _SERVICE_NAME)
    return event_dict


def redact_headers(headers: dict[str, str]) -> dict[str, str]:
    """Copy of ``headers`` with secret values masked."""
    return {
        name: (REDACTED if name.lower() in SECRET_KEYS else value)
        for name, value in headers.items()
    }


def _redact_secrets(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Mask token values wherever they appear as top-level or header fields."""
    for key in list(event_dict):
        if key.lower() in SECRET_KEYS:
            event_dict[key] = REDACTED
    headers = event_dict.get("headers")
    if isinstance(headers, dict):
        event_dict["headers"] = redact_headers(headers)
    return event_dict


def _build_processors(json_format: bool, add_timestamp: bool, colors: bool = False) -> list[Processor]:
    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _redact_secrets,
        _add_service_metadata,
    ]
    if add_timestamp:
        processors.insert(1, structlog.processors.TimeStamper(fmt="iso"))

    if json_format:
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=colors))
    return processors


# Shared by every library logger; configure_logging rebuilds it in place.
_PROCESSORS: list[Processor] = _build_processors(json_format=False, add_timestamp=True)


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "dataspine",
    add_timestamp: bool = True,
) -> None:
    """Send library logs to stdout at ``level``.

    Only the ``dataspine`` stdlib logger is touched; the global structlog
    configuration and the host's root logger are left alone. Calling again
    replaces the previous handler.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: True for JSON, False for console, None for auto (JSON if not tty)
        service: Service name to include in logs
        add_timestamp: Include ISO timestamp in logs
    """
    global _SERVICE_NAME, _HANDLER
    _SERVICE_NAME = service

    if json_format is None:
        json_format = not sys.stdout.isatty()
    _PROCESSORS[:] = _build_processors(json_format, add_timestamp, colors=sys.stdout.isatty())

    root = logging.getLogger(ROOT_LOGGER)
    if _HANDLER is not None:
        root.removeHandler(_HANDLER)
    _HANDLER = logging.StreamHandler(sys.stdout)
    _HANDLER.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(_HANDLER)
    root.setLevel(getattr(logging, level.upper()))
    root.propagate = False


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger (usually ``get_logger(__name__)``)."""
    return structlog.wrap_logger(
        logging.getLogger(name or ROOT_LOGGER),
        processors=_PROCESSORS,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
    )


def bind_context(**kwargs: Any) -> None:
    """Bind context to include in all subsequent logs of this context."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    """Remove specific keys from logging context."""
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    """Clear all bound context."""
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Context manager for scoped logging context.

    Example:
        async with LogContext(keyspace="default_keyspace", collection="users"):
            await orchestrator.insert_many_async(...)
    """

    def __init__(self, **kwargs: Any):
        self._context = kwargs

    def __enter__(self) -> LogContext:
        bind_context(**self._context)
        return self

    def __exit__(self, *args) -> None:
        unbind_context(*self._context.keys())

    async def __aenter__(self) -> LogContext:
        bind_context(**self._context)
        return self

    async def __aexit__(self, *args) -> None:
        unbind_context(*self._context.keys())


__all__ = [
    "configure_logging",
    "get_logger",
    "bind_context",
    "unbind_context",
    "clear_context",
    "redact_headers",
    "LogContext",
]
