"""
Structured error types for the Data API client core.

Provides a typed hierarchy of errors carrying the metadata callers need to
tell a timeout from an authentication failure, a failed remote command from
a broken wire payload, and a partially completed bulk write from a clean
failure.

Every error raised by dataspine derives from DataApiError and carries:
- **Category:** What kind of failure (timeout, auth, transport, command, ...)
- **Retryable:** Whether repeating the call could reasonably succeed
- **Context:** Command name, URL, HTTP status, keyspace and custom fields
- **Cause:** Chained underlying exception for root cause analysis

Manifesto:
    - **Typed Error Hierarchy:** One class per failure family
    - **Distinguishable Timeouts:** Connect, request and bulk timeouts are
      separate classes, each tagged with the cancellation source that fired
    - **Partial Results Survive:** Bulk failures expose what completed
    - **Nothing Swallowed:** No automatic retry, no silent downgrade

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────────┐
        │                        DataApiError                              │
        │         (category, retryable, context, cause)                    │
        ├──────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  DataApiTimeoutError      OperationCancelledError                │
        │  (TIMEOUT, retryable)     (CANCELLED)                            │
        │       │                                                          │
        │  ConnectTimeoutError      AuthenticationError   TransportError   │
        │  RequestTimeoutError      (AUTH)                (NETWORK)        │
        │  BulkOperationTimeoutError                                       │
        │                                                                  │
        │  CommandError             CodecError            ValidationError  │
        │  (COMMAND)                (CODEC)               (VALIDATION)     │
        │                                                                  │
        │  ConfigError              BulkOperationError                     │
        │  (CONFIG)                 (BULK, partial_result)                 │
        │       │                                                          │
        │  InvalidConfigError                                              │
        └──────────────────────────────────────────────────────────────────┘

Propagation:
    - Timeout, transport and codec errors abort the current command at once
    - CommandError is raised after a structurally successful HTTP exchange
    - ValidationError is raised before any network call is made
    - Bulk operations wrap any of the above in BulkOperationError together
      with the partial accumulator

Examples:
    >>> error = TransportError("HTTP 503", status_code=503, body="unavailable")
    >>> error.category
    <ErrorCategory.NETWORK: 'NETWORK'>
    >>> error.with_context(command="insertMany").context.command
    'insertMany'

    >>> err = CommandError([ApiErrorDescriptor(message="bad", error_code="X")])
    >>> err.error_codes
    ['X']

Tags:
    error-handling, exception-hierarchy, timeouts, bulk-operations,
    dataspine, observability

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from dataspine.execution.cancellation import CancellationSource


class ErrorCategory(str, Enum):
    """
    Standard error categories for classification and routing.

    Attributes:
        TIMEOUT: Connect, request or bulk-operation budget exhausted
        CANCELLED: Caller-supplied cancellation fired
        AUTH: Unauthorized response from the service
        NETWORK: Non-success HTTP status or failed connection
        COMMAND: The service answered with a non-empty ``errors`` array
        CODEC: Malformed or unrecognized wire payload
        VALIDATION: Caller-side misuse detected before sending
        CONFIG: Invalid configuration or settings
        BULK: A multi-request operation failed part-way
        INTERNAL: Bugs, unexpected state
        UNKNOWN: Uncategorized errors
    """

    TIMEOUT = "TIMEOUT"
    CANCELLED = "CANCELLED"
    AUTH = "AUTH"
    NETWORK = "NETWORK"
    COMMAND = "COMMAND"
    CODEC = "CODEC"
    VALIDATION = "VALIDATION"
    CONFIG = "CONFIG"
    BULK = "BULK"
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Fields map onto the places a Data API failure can be located: which
    command ran, which URL it was posted to, what the server answered and
    in which keyspace. Anything else goes into ``metadata``.
    """

    command: str | None = None
    url: str | None = None
    http_status: int | None = None
    keyspace: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, excluding unset fields."""
        result: dict[str, Any] = {}
        if self.command:
            result["command"] = self.command
        if self.url:
            result["url"] = self.url
        if self.http_status is not None:
            result["http_status"] = self.http_status
        if self.keyspace:
            result["keyspace"] = self.keyspace
        if self.metadata:
            result.update(self.metadata)
        return result


class DataApiError(Exception):
    """
    Base exception for all dataspine errors.

    Subclasses set ``default_category`` and ``default_retryable``; both can be
    overridden per instance. ``with_context`` updates the context in place and
    returns the error so it can be used inline in a ``raise`` statement.
    """

    default_category: ErrorCategory = ErrorCategory.UNKNOWN
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> DataApiError:
        """Add context fields, unknown keys go to ``metadata``."""
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Serialize for structured logging."""
        result: dict[str, Any] = {
            "error_type": type(self).__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
            "context": self.context.to_dict(),
        }
        if self.cause is not None:
            result["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return result

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# TIMEOUTS AND CANCELLATION
# =============================================================================


class DataApiTimeoutError(DataApiError):
    """A time budget expired before the operation finished.

    ``source`` names the cancellation source that fired first, ``timeout_ms``
    the configured budget for that source.
    """

    default_category = ErrorCategory.TIMEOUT
    default_retryable = True

    def __init__(
        self,
        message: str,
        *,
        source: CancellationSource | None = None,
        timeout_ms: int | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.source = source
        self.timeout_ms = timeout_ms

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.source is not None:
            result["source"] = self.source.value
        if self.timeout_ms is not None:
            result["timeout_ms"] = self.timeout_ms
        return result


class ConnectTimeoutError(DataApiTimeoutError):
    """Connection could not be established within the connect budget."""


class RequestTimeoutError(DataApiTimeoutError):
    """A single request exceeded its budget, or the server answered 408/504."""


class BulkOperationTimeoutError(DataApiTimeoutError):
    """The overall deadline of a chunked or paginated operation expired."""


class OperationCancelledError(DataApiError):
    """The caller-supplied cancellation signal fired."""

    default_category = ErrorCategory.CANCELLED


# =============================================================================
# TRANSPORT
# =============================================================================


class AuthenticationError(DataApiError):
    """The service rejected the token (HTTP 401)."""

    default_category = ErrorCategory.AUTH


class TransportError(DataApiError):
    """Non-success HTTP status, or the exchange failed below HTTP.

    ``status_code`` is ``None`` when no response was received at all.
    """

    default_category = ErrorCategory.NETWORK

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        body: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.status_code = status_code
        self.body = body
        if status_code is not None:
            self.context.http_status = status_code
        # 5xx may clear up on its own, 4xx will not
        if kwargs.get("retryable") is None:
            self.retryable = status_code is None or status_code >= 500


# =============================================================================
# PROTOCOL
# =============================================================================


@dataclass(frozen=True)
class ApiErrorDescriptor:
    """One entry of the response envelope's ``errors`` array."""

    message: str = ""
    error_code: str | None = None
    exception_class: str | None = None
    family: str | None = None
    scope: str | None = None
    title: str | None = None
    id: str | None = None

    @classmethod
    def from_wire(cls, entry: dict[str, Any]) -> ApiErrorDescriptor:
        return cls(
            message=str(entry.get("message", "")),
            error_code=entry.get("errorCode"),
            exception_class=entry.get("exceptionClass"),
            family=entry.get("family"),
            scope=entry.get("scope"),
            title=entry.get("title"),
            id=entry.get("id"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in self.__dict__.items() if v not in (None, "")}


class CommandError(DataApiError):
    """The HTTP exchange succeeded but the remote command reported errors.

    Every entry of the ``errors`` array is kept in ``descriptors``. The
    message joins all entry messages so a single log line shows them.
    """

    default_category = ErrorCategory.COMMAND

    def __init__(self, descriptors: list[ApiErrorDescriptor], **kwargs: Any):
        messages = [d.message or d.error_code or "unknown error" for d in descriptors]
        super().__init__("; ".join(messages) or "Command failed", **kwargs)
        self.descriptors = list(descriptors)

    @property
    def error_codes(self) -> list[str]:
        return [d.error_code for d in self.descriptors if d.error_code]

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["errors"] = [d.to_dict() for d in self.descriptors]
        return result


class CodecError(DataApiError):
    """Malformed or unrecognized extended-JSON value."""

    default_category = ErrorCategory.CODEC


# =============================================================================
# CALLER ERRORS
# =============================================================================


class ValidationError(DataApiError):
    """Caller-side misuse detected before any network call."""

    default_category = ErrorCategory.VALIDATION

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        value: Any = None,
        constraint: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value
        self.constraint = constraint
        if field:
            self.context.metadata["field"] = field
        if constraint:
            self.context.metadata["constraint"] = constraint


class ConfigError(DataApiError):
    """Configuration error."""

    default_category = ErrorCategory.CONFIG


class InvalidConfigError(ConfigError):
    """A configuration value is out of range or contradicts another one."""


# =============================================================================
# BULK
# =============================================================================


class BulkOperationError(DataApiError):
    """A chunked or paginated operation failed after doing some work.

    ``partial_result`` is the frozen accumulator at the moment the failure
    was observed (an InsertManyResult, DeleteResult or UpdateResult).
    ``cause`` is the error that stopped the operation. Retryability follows
    the cause.
    """

    default_category = ErrorCategory.BULK

    def __init__(
        self,
        message: str,
        *,
        partial_result: Any,
        cause: BaseException | None = None,
        **kwargs: Any,
    ):
        if kwargs.get("retryable") is None and cause is not None:
            kwargs["retryable"] = is_retryable(cause)
        super().__init__(message, cause=cause, **kwargs)
        self.partial_result = partial_result


# =============================================================================
# HELPERS
# =============================================================================


def is_retryable(error: BaseException) -> bool:
    """True when the error is a DataApiError flagged retryable."""
    if isinstance(error, DataApiError):
        return error.retryable
    return False


def categorize_error(error: BaseException) -> ErrorCategory:
    """Best-effort category for any exception."""
    if isinstance(error, DataApiError):
        return error.category
    if isinstance(error, TimeoutError):
        return ErrorCategory.TIMEOUT
    if isinstance(error, ConnectionError):
        return ErrorCategory.NETWORK
    if isinstance(error, ValueError):
        return ErrorCategory.VALIDATION
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "DataApiError",
    "DataApiTimeoutError",
    "ConnectTimeoutError",
    "RequestTimeoutError",
    "BulkOperationTimeoutError",
    "OperationCancelledError",
    "AuthenticationError",
    "TransportError",
    "ApiErrorDescriptor",
    "CommandError",
    "CodecError",
    "ValidationError",
    "ConfigError",
    "InvalidConfigError",
    "BulkOperationError",
    "is_retryable",
    "categorize_error",
]
