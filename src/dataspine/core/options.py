"""
Layered, immutable command options.

A client, a database, a collection and a single call may each carry a sparse
``OptionsLayer``. ``merge_options`` folds an ordered list of layers, least
specific first, on top of ``DEFAULT_LAYER`` and returns one
``EffectiveOptions`` per executed command.

Merge rules
───────────
    plain field        later non-None value wins, None falls through
    nested record      http / timeouts / timeouts.defaults / serdes merge
                       field-by-field with the same rule
    headers            union across layers, later names override earlier ones
    serdes.converters  most specific non-None tuple wins; the base protocol
                       converters are appended by ``codec_converters`` and are
                       never stored in a layer, so re-merging stays idempotent

Examples:
    >>> client = OptionsLayer(token="t1", timeouts=TimeoutOptions(request_timeout_ms=500))
    >>> call = OptionsLayer(timeouts=TimeoutOptions(connect_timeout_ms=100))
    >>> eff = merge_options([client, call])
    >>> eff.timeouts.request_timeout_ms, eff.timeouts.connect_timeout_ms
    (500, 100)
    >>> merge_options([eff.as_layer(), call]) == eff
    True
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, is_dataclass, replace
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Iterable, Mapping

from dataspine.core.enums import ApiVersion, Destination, HttpVersion, RunMode

if TYPE_CHECKING:
    from dataspine.codec.converters import Converter
    from dataspine.execution.cancellation import CancellationSignal

DEFAULT_KEYSPACE = "default_keyspace"
DEFAULT_REQUEST_TIMEOUT_MS = 10_000
DEFAULT_CONNECT_TIMEOUT_MS = 5_000
DEFAULT_BULK_OPERATION_TIMEOUT_MS = 30_000

_NESTED = {"merge": "nested"}
_UNION = {"merge": "union"}


@dataclass(frozen=True)
class HttpClientOptions:
    follow_redirects: bool | None = None
    http_version: HttpVersion | None = None


@dataclass(frozen=True)
class TimeoutDefaults:
    """Fallback budgets used when a ``TimeoutOptions`` field is unset."""

    request_timeout_ms: int | None = None
    connect_timeout_ms: int | None = None
    bulk_operation_timeout_ms: int | None = None


@dataclass(frozen=True)
class TimeoutOptions:
    """Per-phase time budgets in milliseconds. ``0`` means no limit."""

    connect_timeout_ms: int | None = None
    request_timeout_ms: int | None = None
    bulk_operation_timeout_ms: int | None = None
    defaults: TimeoutDefaults | None = field(default=None, metadata=_NESTED)

    def resolve(self, name: str) -> int | None:
        """Explicit value, else the default, else None. Zero maps to None."""
        value = getattr(self, name)
        if value is None and self.defaults is not None:
            value = getattr(self.defaults, name)
        if not value:
            return None
        return value


@dataclass(frozen=True)
class SerdesOptions:
    """Encode/decode hooks.

    ``dates_as_epoch`` writes dates as bare epoch milliseconds instead of
    ``{"$date": ...}``; ``uuids_as_wrapper=False`` writes UUIDs as bare
    strings. ``converters`` are consulted before the base converters.
    """

    dates_as_epoch: bool | None = None
    uuids_as_wrapper: bool | None = None
    converters: tuple[Converter, ...] | None = None


@dataclass(frozen=True)
class OptionsLayer:
    """One sparse level of configuration. Unset fields are ``None``."""

    token: str | None = field(default=None, repr=False)
    destination: Destination | None = None
    run_mode: RunMode | None = None
    api_version: ApiVersion | None = None
    keyspace: str | None = None
    include_keyspace_in_url: bool | None = None
    http: HttpClientOptions | None = field(default=None, metadata=_NESTED)
    timeouts: TimeoutOptions | None = field(default=None, metadata=_NESTED)
    serdes: SerdesOptions | None = field(default=None, metadata=_NESTED)
    headers: Mapping[str, str] | None = field(default=None, metadata=_UNION)
    cancellation: CancellationSignal | None = field(default=None, compare=False)
    bulk_cancellation: CancellationSignal | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if self.headers is not None and not isinstance(self.headers, MappingProxyType):
            object.__setattr__(self, "headers", MappingProxyType(dict(self.headers)))


@dataclass(frozen=True)
class EffectiveOptions(OptionsLayer):
    """Fully merged options for exactly one command execution."""

    @property
    def connect_timeout_ms(self) -> int | None:
        return self._timeouts.resolve("connect_timeout_ms")

    @property
    def request_timeout_ms(self) -> int | None:
        return self._timeouts.resolve("request_timeout_ms")

    @property
    def bulk_operation_timeout_ms(self) -> int | None:
        return self._timeouts.resolve("bulk_operation_timeout_ms")

    @property
    def _timeouts(self) -> TimeoutOptions:
        return self.timeouts or TimeoutOptions()

    @property
    def codec_converters(self) -> tuple[Converter, ...]:
        """Custom converters followed by the base protocol converters."""
        from dataspine.codec.converters import BASE_CONVERTERS

        custom = self.serdes.converters if self.serdes and self.serdes.converters else ()
        return tuple(custom) + BASE_CONVERTERS

    def as_layer(self) -> OptionsLayer:
        """Re-express these options as a layer that can be overlaid again."""
        return OptionsLayer(**{f.name: getattr(self, f.name) for f in fields(OptionsLayer)})


DEFAULT_LAYER = OptionsLayer(
    destination=Destination.ASTRA,
    run_mode=RunMode.NORMAL,
    api_version=ApiVersion.V1,
    keyspace=DEFAULT_KEYSPACE,
    include_keyspace_in_url=True,
    http=HttpClientOptions(follow_redirects=True, http_version=HttpVersion.HTTP_2),
    timeouts=TimeoutOptions(
        defaults=TimeoutDefaults(
            request_timeout_ms=DEFAULT_REQUEST_TIMEOUT_MS,
            connect_timeout_ms=DEFAULT_CONNECT_TIMEOUT_MS,
            bulk_operation_timeout_ms=DEFAULT_BULK_OPERATION_TIMEOUT_MS,
        )
    ),
    serdes=SerdesOptions(dates_as_epoch=False, uuids_as_wrapper=True, converters=()),
    headers={},
)


def _overlay(base: Any, top: Any) -> Any:
    changes: dict[str, Any] = {}
    for f in fields(top):
        value = getattr(top, f.name)
        if value is None:
            continue
        current = getattr(base, f.name)
        rule = f.metadata.get("merge")
        if current is not None and rule == "union":
            value = {**current, **value}
        elif current is not None and rule == "nested" and is_dataclass(value):
            value = _overlay(current, value)
        changes[f.name] = value
    return replace(base, **changes) if changes else base


def merge_options(layers: Iterable[OptionsLayer | None]) -> EffectiveOptions:
    """Fold ``layers`` (least specific first) over the defaults."""
    merged = DEFAULT_LAYER
    for layer in layers:
        if layer is not None:
            merged = _overlay(merged, layer)
    return EffectiveOptions(**{f.name: getattr(merged, f.name) for f in fields(OptionsLayer)})


__all__ = [
    "DEFAULT_KEYSPACE",
    "DEFAULT_LAYER",
    "HttpClientOptions",
    "TimeoutDefaults",
    "TimeoutOptions",
    "SerdesOptions",
    "OptionsLayer",
    "EffectiveOptions",
    "merge_options",
]
