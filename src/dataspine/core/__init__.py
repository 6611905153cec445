"""Errors, logging, enums, layered options and settings."""

from dataspine.core.enums import ApiVersion, Destination, HttpVersion, RunMode, TextAnalyzer
from dataspine.core.errors import (
    ApiErrorDescriptor,
    AuthenticationError,
    BulkOperationError,
    BulkOperationTimeoutError,
    CodecError,
    CommandError,
    ConfigError,
    ConnectTimeoutError,
    DataApiError,
    DataApiTimeoutError,
    ErrorCategory,
    ErrorContext,
    InvalidConfigError,
    OperationCancelledError,
    RequestTimeoutError,
    TransportError,
    ValidationError,
)
from dataspine.core.options import (
    EffectiveOptions,
    HttpClientOptions,
    OptionsLayer,
    SerdesOptions,
    TimeoutDefaults,
    TimeoutOptions,
    merge_options,
)

__all__ = [
    "ApiVersion",
    "Destination",
    "HttpVersion",
    "RunMode",
    "TextAnalyzer",
    "ApiErrorDescriptor",
    "AuthenticationError",
    "BulkOperationError",
    "BulkOperationTimeoutError",
    "CodecError",
    "CommandError",
    "ConfigError",
    "ConnectTimeoutError",
    "DataApiError",
    "DataApiTimeoutError",
    "ErrorCategory",
    "ErrorContext",
    "InvalidConfigError",
    "OperationCancelledError",
    "RequestTimeoutError",
    "TransportError",
    "ValidationError",
    "EffectiveOptions",
    "HttpClientOptions",
    "OptionsLayer",
    "SerdesOptions",
    "TimeoutDefaults",
    "TimeoutOptions",
    "merge_options",
]
