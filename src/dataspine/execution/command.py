"""
One logical Data API operation.

A ``Command`` bundles a name, a payload, extra URL path segments and the
option layers that apply to it. It is created per call and never reused.
Effective options are merged on first access and memoised until another
layer is added.

Request shape::

    POST {endpoint}/api/json/{version}/{keyspace}/{resource...}/{extra...}
    {"<name>": <payload>}        or the bare payload when name is ""
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

from dataspine.codec.codec import FieldConverters, ValueCodec
from dataspine.core.options import EffectiveOptions, OptionsLayer, merge_options


def _trim(segment: str) -> str:
    return segment.strip().strip("/")


@dataclass(frozen=True)
class DatabaseUrlBuilder:
    """Builds command URLs for one database endpoint and resource path.

    ``resource`` is empty for database-level commands and holds the
    collection or table name for collection-level ones.
    """

    endpoint: str
    resource: tuple[str, ...] = ()

    def child(self, *segments: str) -> DatabaseUrlBuilder:
        return DatabaseUrlBuilder(self.endpoint, self.resource + tuple(segments))

    def build(self, options: EffectiveOptions, extra: Sequence[str] = ()) -> str:
        segments = ["api", "json", options.api_version.value]
        if options.include_keyspace_in_url and options.keyspace:
            segments.append(options.keyspace)
        segments.extend(self.resource)
        segments.extend(extra)
        path = "/".join(s for s in (_trim(seg) for seg in segments) if s)
        return f"{self.endpoint.strip().rstrip('/')}/{path}"


class Command:
    """A named operation with its payload, URL and option layers."""

    def __init__(
        self,
        name: str,
        url_builder: DatabaseUrlBuilder,
        layers: Sequence[OptionsLayer | None] = (),
        *,
        payload: Any = None,
        field_converters: FieldConverters | None = None,
    ):
        self.name = name
        self.url_builder = url_builder
        self.payload = payload
        self.field_converters = field_converters
        self._layers: list[OptionsLayer] = [layer for layer in layers if layer is not None]
        self._url_paths: list[str] = []
        self._options: EffectiveOptions | None = None

    # ── Building ─────────────────────────────────────────────────────

    def with_payload(self, payload: Any) -> Command:
        self.payload = payload
        return self

    def with_field_converters(self, field_converters: FieldConverters) -> Command:
        self.field_converters = field_converters
        return self

    def add_url_path(self, *segments: str) -> Command:
        self._url_paths.extend(segments)
        return self

    def add_options(self, layer: OptionsLayer | None) -> Command:
        """Append a more specific layer (the last added wins)."""
        if layer is not None:
            self._layers.append(layer)
            self._options = None
        return self

    # ── Resolution ───────────────────────────────────────────────────

    @property
    def layers(self) -> tuple[OptionsLayer, ...]:
        return tuple(self._layers)

    @property
    def options(self) -> EffectiveOptions:
        if self._options is None:
            self._options = merge_options(self._layers)
        return self._options

    def build_body(self, codec: ValueCodec) -> Any:
        encoded = codec.encode(self.payload, self.field_converters)
        if not self.name:
            return encoded if encoded is not None else {}
        return {self.name: encoded if encoded is not None else {}}

    def build_url(self) -> str:
        return self.url_builder.build(self.options, self._url_paths)

    def __repr__(self) -> str:
        return f"Command({self.name or '<raw>'!r}, layers={len(self._layers)})"


__all__ = ["Command", "DatabaseUrlBuilder"]
