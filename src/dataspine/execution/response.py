"""Response envelope decoding."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from dataspine.codec.codec import ValueCodec
from dataspine.codec.wire import load_json
from dataspine.core.errors import ApiErrorDescriptor, CodecError


@dataclass(frozen=True)
class ResultShape:
    """Decode targets for ``status`` and for returned documents.

    ``None`` decodes generically; ``RawJson`` keeps the wire value.
    """

    status: Any = None
    document: Any = None


@dataclass(frozen=True)
class ApiResponse:
    """Decoded ``{status, data, errors, warnings}`` envelope."""

    status: Any = None
    data: Any = None
    errors: tuple[ApiErrorDescriptor, ...] = ()
    warnings: tuple[Any, ...] = ()
    raw: Mapping[str, Any] | None = field(default=None, repr=False, compare=False)

    @property
    def is_empty(self) -> bool:
        return self.raw is None

    @property
    def next_page_state(self) -> str | None:
        """Paging cursor from ``data`` or ``status``; empty means done."""
        if not self.raw:
            return None
        for section in ("data", "status"):
            part = self.raw.get(section)
            if isinstance(part, Mapping) and part.get("nextPageState"):
                return part["nextPageState"]
        return None

    @property
    def more_data(self) -> bool:
        status = self.raw.get("status") if self.raw else None
        return bool(isinstance(status, Mapping) and status.get("moreData"))


def parse_envelope(content: bytes) -> Mapping[str, Any] | None:
    """Parse a response body; an empty body is a valid no-content result."""
    if not content or not content.strip():
        return None
    try:
        envelope = load_json(content)
    except (ValueError, UnicodeDecodeError) as exc:
        raise CodecError(f"Response body is not valid JSON: {exc}", cause=exc) from exc
    if not isinstance(envelope, Mapping):
        raise CodecError(f"Response envelope must be an object, got {type(envelope).__name__}")
    return envelope


def _decode_data(data: Any, codec: ValueCodec, shape: ResultShape) -> Any:
    if shape.document is None or not isinstance(data, Mapping):
        return codec.decode(data, shape.document)
    decoded = dict(data)
    if data.get("document") is not None:
        decoded["document"] = codec.decode(data["document"], shape.document)
    if isinstance(data.get("documents"), list):
        decoded["documents"] = [codec.decode(d, shape.document) for d in data["documents"]]
    return decoded


def decode_response(
    envelope: Mapping[str, Any] | None,
    codec: ValueCodec,
    shape: ResultShape | None = None,
) -> ApiResponse:
    if envelope is None:
        return ApiResponse()
    shape = shape or ResultShape()
    errors = envelope.get("errors") or []
    if not isinstance(errors, list):
        raise CodecError("Response 'errors' must be an array")
    raw_status = envelope.get("status")
    warnings = raw_status.get("warnings") or () if isinstance(raw_status, Mapping) else ()
    return ApiResponse(
        status=codec.decode(raw_status, shape.status),
        data=_decode_data(envelope.get("data"), codec, shape),
        errors=tuple(
            ApiErrorDescriptor.from_wire(e) if isinstance(e, Mapping) else ApiErrorDescriptor(message=str(e))
            for e in errors
        ),
        warnings=tuple(warnings),
        raw=envelope,
    )


__all__ = ["ResultShape", "ApiResponse", "parse_envelope", "decode_response"]
