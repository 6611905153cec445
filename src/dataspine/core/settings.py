"""Environment-driven settings for the Data API client.

``DataApiSettings`` reads ``DATAAPI_*`` environment variables (and a ``.env``
file) and turns them into the client-level ``OptionsLayer``. Everything is
validated at construction time, so a bad timeout fails at startup rather than
on the first request.

Examples:
    >>> import os
    >>> os.environ["DATAAPI_TOKEN"] = "AstraCS:..."
    >>> os.environ["DATAAPI_REQUEST_TIMEOUT_MS"] = "2500"
    >>> settings = DataApiSettings()
    >>> settings.to_options_layer().timeouts.request_timeout_ms
    2500

Tags:
    settings, configuration, pydantic, environment, dataspine
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, ValidationError as PydanticValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from dataspine.core.enums import ApiVersion, Destination, HttpVersion, RunMode
from dataspine.core.errors import InvalidConfigError
from dataspine.core.options import (
    DEFAULT_KEYSPACE,
    HttpClientOptions,
    OptionsLayer,
    TimeoutOptions,
)

MAX_INSERT_CHUNK_SIZE = 100
DEFAULT_INSERT_CHUNK_SIZE = 50
DEFAULT_INSERT_CONCURRENCY = 20


class DataApiSettings(BaseSettings):
    """Client configuration loaded from the environment.

    Fields
    ──────
    token / endpoint / keyspace : where to connect and how to authenticate
    *_timeout_ms                : per-phase budgets, 0 disables a budget
    insert_chunk_size           : documents per insertMany request
    insert_concurrency          : max chunk requests in flight (unordered)
    log_level / log_format      : structlog configuration
    """

    model_config = SettingsConfigDict(
        env_prefix="DATAAPI_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Connection ───────────────────────────────────────────────
    token: str | None = Field(default=None, repr=False, description="Application token")
    endpoint: str | None = Field(default=None, description="Database API endpoint")
    keyspace: str = Field(default=DEFAULT_KEYSPACE, min_length=1)
    api_version: ApiVersion = ApiVersion.V1
    destination: Destination = Destination.ASTRA
    run_mode: RunMode = RunMode.NORMAL
    include_keyspace_in_url: bool = True

    # ── HTTP ─────────────────────────────────────────────────────
    follow_redirects: bool = True
    http_version: HttpVersion = HttpVersion.HTTP_2

    # ── Timeouts (milliseconds) ──────────────────────────────────
    connect_timeout_ms: int | None = Field(default=None, ge=0)
    request_timeout_ms: int | None = Field(default=None, ge=0)
    bulk_operation_timeout_ms: int | None = Field(default=None, ge=0)

    # ── Bulk insert ──────────────────────────────────────────────
    insert_chunk_size: int = Field(
        default=DEFAULT_INSERT_CHUNK_SIZE, ge=1, le=MAX_INSERT_CHUNK_SIZE
    )
    insert_concurrency: int = Field(default=DEFAULT_INSERT_CONCURRENCY, ge=1)

    # ── Observability ────────────────────────────────────────────
    log_level: str = Field(default="INFO", pattern="(?i)^(debug|info|warning|error|critical)$")
    log_format: str = Field(default="auto", pattern="^(auto|json|console)$")

    @model_validator(mode="after")
    def _check_timeouts(self) -> DataApiSettings:
        request = self.request_timeout_ms
        bulk = self.bulk_operation_timeout_ms
        if request and bulk and bulk < request:
            raise ValueError(
                "bulk_operation_timeout_ms must not be shorter than request_timeout_ms"
            )
        return self

    @property
    def json_logs(self) -> bool | None:
        return {"json": True, "console": False}.get(self.log_format)

    def to_options_layer(self) -> OptionsLayer:
        """Client-level options layer built from these settings."""
        return OptionsLayer(
            token=self.token,
            destination=self.destination,
            run_mode=self.run_mode,
            api_version=self.api_version,
            keyspace=self.keyspace,
            include_keyspace_in_url=self.include_keyspace_in_url,
            http=HttpClientOptions(
                follow_redirects=self.follow_redirects,
                http_version=self.http_version,
            ),
            timeouts=TimeoutOptions(
                connect_timeout_ms=self.connect_timeout_ms,
                request_timeout_ms=self.request_timeout_ms,
                bulk_operation_timeout_ms=self.bulk_operation_timeout_ms,
            ),
        )


def load_settings(**overrides) -> DataApiSettings:
    """Build settings, converting pydantic validation failures to InvalidConfigError."""
    try:
        return DataApiSettings(**overrides)
    except PydanticValidationError as exc:
        raise InvalidConfigError(f"Invalid Data API settings: {exc}", cause=exc) from exc


@lru_cache(maxsize=1)
def get_settings() -> DataApiSettings:
    """Process-wide settings, read once from the environment."""
    return load_settings()


__all__ = [
    "DataApiSettings",
    "load_settings",
    "get_settings",
    "MAX_INSERT_CHUNK_SIZE",
    "DEFAULT_INSERT_CHUNK_SIZE",
    "DEFAULT_INSERT_CONCURRENCY",
]
