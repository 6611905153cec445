"""
Type-directed extended-JSON codec.

``ValueCodec`` converts host values into JSON-compatible structures using the
protocol's wrapper objects, and back. It is immutable and holds no per-call
state, so one instance can serve concurrent calls.

Lookup order
────────────
encode      field converter → custom/base converter by host type →
            JSON scalar → dataclass document → mapping → sequence/set
decode      RawJson / untyped → generic (wrapper key) ;
            union → wrapper key, else bare-string heuristic, else first fit ;
            list/set/tuple/dict shapes → element-wise ;
            converter by shape → dataclass document → JSON scalar

Bare-string heuristic (untyped ids and unions only): UUID, then ObjectId,
then date, then plain string.

Examples:
    >>> codec = ValueCodec()
    >>> codec.encode({"when": datetime(1970, 1, 1, tzinfo=UTC)})
    {'when': {'$date': 0}}
    >>> codec.decode({"$uuid": "2e9b4d07-9c5c-4f0f-8f6f-2f5e3c1e0c11"})
    UUID('2e9b4d07-9c5c-4f0f-8f6f-2f5e3c1e0c11')
"""

from __future__ import annotations

import dataclasses
import re
import types
import typing
import uuid
from collections.abc import Mapping, Sequence
from datetime import UTC, date, datetime
from typing import TYPE_CHECKING, Any

from bson import ObjectId

from dataspine.codec import keywords
from dataspine.codec.converters import BASE_CONVERTERS, Converter, EncodeSettings
from dataspine.codec.schema import DocumentSchema, PrimaryKeySchema
from dataspine.codec.types import RawJson
from dataspine.codec.wire import WireNumber
from dataspine.core.errors import CodecError

if TYPE_CHECKING:
    from dataspine.core.options import EffectiveOptions

FieldConverters = Mapping[str, Converter]

_UUID_PATTERN = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)
_OBJECT_ID_PATTERN = re.compile(r"^[0-9a-fA-F]{24}$")
_DATE_PATTERN = re.compile(
    r"^\d{4}-\d{2}-\d{2}"
    r"(?:[T ]\d{2}:\d{2}(?::\d{2}(?:\.\d{1,6})?)?(?:Z|[+-]\d{2}:?\d{2})?)?$"
)

# Priority for ambiguous bare strings
HEURISTIC_ORDER: tuple[type, ...] = (uuid.UUID, ObjectId, datetime, str)

_UNION_ORIGINS = (typing.Union, types.UnionType)
_SEQUENCE_ORIGINS = (list, tuple, set, frozenset, Sequence)


class ValueCodec:
    """Encoder/decoder between host values and extended JSON."""

    def __init__(
        self,
        converters: Sequence[Converter] = BASE_CONVERTERS,
        *,
        dates_as_epoch: bool = False,
        uuids_as_wrapper: bool = True,
    ):
        self._converters = tuple(converters)
        self._settings = EncodeSettings(
            dates_as_epoch=dates_as_epoch, uuids_as_wrapper=uuids_as_wrapper
        )
        self._by_wrapper: dict[str, Converter] = {}
        for converter in self._converters:
            if converter.wrapper is not None:
                self._by_wrapper.setdefault(converter.wrapper, converter)

    @classmethod
    def from_options(cls, options: EffectiveOptions) -> ValueCodec:
        serdes = options.serdes
        return cls(
            options.codec_converters,
            dates_as_epoch=bool(serdes and serdes.dates_as_epoch),
            uuids_as_wrapper=not serdes or serdes.uuids_as_wrapper is not False,
        )

    # ── Encoding ─────────────────────────────────────────────────────

    def encode(self, value: Any, field_converters: FieldConverters | None = None) -> Any:
        """Encode ``value`` into JSON-compatible structures.

        ``field_converters`` override type lookup for mapping keys or document
        attributes of the given name, at any depth.
        """
        fc = field_converters or {}
        if value is None:
            return None
        converter = self._converter_for_value(value)
        if converter is not None:
            return converter.encode(value, self._settings)
        if isinstance(value, (bool, int, float, str)):
            return value
        if dataclasses.is_dataclass(value) and not isinstance(value, type):
            return self.encode_document(value, fc)
        if isinstance(value, Mapping):
            return self._encode_mapping(value, fc)
        if isinstance(value, (list, tuple, set, frozenset)):
            return [self.encode(item, fc) for item in value]
        raise CodecError(f"Cannot encode value of type {type(value).__name__}")

    def encode_document(self, document: Any, field_converters: FieldConverters | None = None) -> dict[str, Any]:
        """Encode a dataclass document using its field-mapping table."""
        fc = field_converters or {}
        schema = DocumentSchema.for_type(type(document))
        encoded: dict[str, Any] = {}
        for mapping in schema.fields:
            if mapping.read_only:
                continue
            value = getattr(document, mapping.attr)
            # Unset special fields are omitted; the server assigns ids
            if value is None and mapping.role is not None:
                continue
            converter = fc.get(mapping.attr) or mapping.converter
            if converter is not None and value is not None:
                encoded[mapping.wire_name] = converter.encode(value, self._settings)
            else:
                encoded[mapping.wire_name] = self.encode(value, fc)
        return encoded

    def _encode_mapping(self, value: Mapping[Any, Any], fc: FieldConverters) -> Any:
        if all(isinstance(key, str) for key in value):
            encoded = {}
            for key, item in value.items():
                converter = fc.get(key)
                if converter is not None and item is not None:
                    encoded[key] = converter.encode(item, self._settings)
                else:
                    encoded[key] = self.encode(item, fc)
            return encoded
        # Non-string keys travel as [key, value] pairs
        return [[self.encode(k, fc), self.encode(v, fc)] for k, v in value.items()]

    def _converter_for_value(self, value: Any) -> Converter | None:
        for converter in self._converters:
            if converter.handles_value(value):
                return converter
        return None

    # ── Decoding ─────────────────────────────────────────────────────

    def decode(
        self,
        wire: Any,
        shape: Any = None,
        field_converters: FieldConverters | None = None,
    ) -> Any:
        """Decode ``wire`` into ``shape``.

        ``shape=None`` decodes generically: single-key wrapper objects become
        their host values, everything else stays JSON.
        """
        fc = field_converters or {}
        if shape is RawJson:
            return wire
        if shape is None or shape is Any or shape is object:
            return self._decode_generic(wire, fc)
        if wire is None:
            return None

        origin = typing.get_origin(shape)
        if origin is typing.Annotated:
            return self.decode(wire, typing.get_args(shape)[0], fc)
        if origin in _UNION_ORIGINS:
            return self._decode_union(wire, shape, fc)
        if origin in _SEQUENCE_ORIGINS:
            return self._decode_sequence(wire, origin, typing.get_args(shape), fc)
        if origin in (dict, Mapping):
            key_shape, value_shape = typing.get_args(shape) or (str, Any)
            return self._decode_mapping(wire, key_shape, value_shape, fc)

        converter = self._converter_for_shape(shape)
        if converter is not None:
            return converter.decode(wire, shape)
        if dataclasses.is_dataclass(shape):
            return self.decode_document(wire, shape, fc)
        if shape in (list, tuple, set, frozenset):
            return self._decode_sequence(wire, shape, (), fc)
        if shape is dict:
            return self._decode_mapping(wire, str, Any, fc)
        return self._decode_scalar(wire, shape)

    def decode_document(self, wire: Any, doc_type: type, field_converters: FieldConverters | None = None) -> Any:
        """Build a dataclass document from its wire form."""
        fc = field_converters or {}
        if not isinstance(wire, Mapping):
            raise CodecError(f"Expected object for {doc_type.__name__}, got {type(wire).__name__}")
        schema = DocumentSchema.for_type(doc_type)
        kwargs: dict[str, Any] = {}
        for mapping in schema.fields:
            if mapping.wire_name not in wire:
                continue
            raw = wire[mapping.wire_name]
            converter = fc.get(mapping.attr) or mapping.converter
            if converter is not None and raw is not None:
                kwargs[mapping.attr] = converter.decode(raw, mapping.shape)
            else:
                kwargs[mapping.attr] = self.decode(raw, mapping.shape, fc)
        try:
            return doc_type(**kwargs)
        except TypeError as exc:
            raise CodecError(f"Cannot build {doc_type.__name__}: {exc}", cause=exc) from exc

    def decode_id(self, wire: Any) -> Any:
        """Decode an identifier whose type is not known statically.

        Best effort: wrapper objects are decoded by key, bare strings go
        through the UUID → ObjectId → date → string heuristic.
        """
        if isinstance(wire, WireNumber):
            return float(wire)
        if wire is None or isinstance(wire, (bool, int, float)):
            return wire
        if isinstance(wire, str):
            return self._decode_bare_string(wire, HEURISTIC_ORDER)
        if isinstance(wire, Mapping) and len(wire) == 1:
            (key,) = wire
            if key in keywords.ID_WRAPPERS:
                return self._by_wrapper[key].decode(wire, self._by_wrapper[key].host_types[0])
        raise CodecError(f"Unsupported object type for identifier: {wire!r}")

    def decode_row(self, values: Sequence[Any], schema: PrimaryKeySchema) -> tuple[Any, ...]:
        """Decode one primary-key row, column by column, from its declared types."""
        if len(values) != len(schema.columns):
            raise CodecError(
                f"Row has {len(values)} values but the primary key has {len(schema.columns)} columns"
            )
        return tuple(
            self.decode(value, definition.shape())
            for value, (_, definition) in zip(values, schema.columns)
        )

    # ── Decoding helpers ─────────────────────────────────────────────

    def _converter_for_shape(self, shape: Any) -> Converter | None:
        for converter in self._converters:
            if converter.handles_shape(shape):
                return converter
        return None

    def _decode_generic(self, wire: Any, fc: FieldConverters) -> Any:
        if isinstance(wire, list):
            return [self._decode_generic(item, fc) for item in wire]
        if isinstance(wire, WireNumber):
            return float(wire)
        if not isinstance(wire, Mapping):
            return wire
        if len(wire) == 1:
            (key,) = wire
            converter = self._by_wrapper.get(key)
            if converter is not None:
                return converter.decode(wire, converter.host_types[0])
        decoded = {}
        for key, item in wire.items():
            converter = fc.get(key)
            if converter is not None and item is not None:
                decoded[key] = converter.decode(item, converter.host_types[0])
            else:
                decoded[key] = self._decode_generic(item, fc)
        return decoded

    def _decode_union(self, wire: Any, shape: Any, fc: FieldConverters) -> Any:
        members = [m for m in typing.get_args(shape) if m is not type(None)]
        if len(members) == 1:
            return self.decode(wire, members[0], fc)

        if isinstance(wire, Mapping) and len(wire) == 1:
            (key,) = wire
            if isinstance(key, str) and key.startswith("$"):
                for member in members:
                    converter = self._converter_for_shape(member)
                    if converter is not None and converter.wrapper == key:
                        return converter.decode(wire, member)
                if key in self._by_wrapper:
                    raise CodecError(f"Wrapper '{key}' does not match any of {shape}")

        if isinstance(wire, str):
            candidates = tuple(
                t for t in HEURISTIC_ORDER
                if any(
                    isinstance(m, type) and typing.get_origin(m) is None and issubclass(t, m)
                    for m in members
                )
            )
            if candidates:
                return self._decode_bare_string(wire, candidates)

        errors = []
        for member in members:
            try:
                return self.decode(wire, member, fc)
            except CodecError as exc:
                errors.append(str(exc))
        raise CodecError(f"Value {wire!r} does not match {shape}: {'; '.join(errors)}")

    def _decode_bare_string(self, text: str, candidates: tuple[type, ...]) -> Any:
        for candidate in candidates:
            if candidate is uuid.UUID and _UUID_PATTERN.match(text):
                return uuid.UUID(text)
            if candidate is ObjectId and _OBJECT_ID_PATTERN.match(text):
                return ObjectId(text)
            if candidate in (datetime, date) and _DATE_PATTERN.match(text):
                try:
                    parsed = datetime.fromisoformat(text)
                except ValueError:
                    continue
                return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
            if candidate is str:
                return text
        raise CodecError(f"String {text!r} matches none of the expected identifier types")

    def _decode_sequence(self, wire: Any, origin: Any, args: tuple[Any, ...], fc: FieldConverters) -> Any:
        if not isinstance(wire, list):
            raise CodecError(f"Expected array, got {type(wire).__name__}")
        if origin is tuple and args and args[-1] is not Ellipsis:
            if len(args) != len(wire):
                raise CodecError(f"Expected {len(args)} items, got {len(wire)}")
            return tuple(self.decode(item, arg, fc) for item, arg in zip(wire, args))
        item_shape = args[0] if args else None
        items = [self.decode(item, item_shape, fc) for item in wire]
        if origin in (set, frozenset):
            return origin(items)
        if origin is tuple:
            return tuple(items)
        return items

    def _decode_mapping(self, wire: Any, key_shape: Any, value_shape: Any, fc: FieldConverters) -> dict[Any, Any]:
        if isinstance(wire, list):
            pairs = []
            for pair in wire:
                if not isinstance(pair, list) or len(pair) != 2:
                    raise CodecError(f"Invalid map entry: {pair!r}")
                pairs.append((self.decode(pair[0], key_shape, fc), self.decode(pair[1], value_shape, fc)))
            return dict(pairs)
        if not isinstance(wire, Mapping):
            raise CodecError(f"Expected object, got {type(wire).__name__}")
        return {
            self._decode_key(key, key_shape, fc): self.decode(item, value_shape, fc)
            for key, item in wire.items()
        }

    def _decode_key(self, key: str, key_shape: Any, fc: FieldConverters) -> Any:
        if key_shape in (int, float):
            try:
                return key_shape(key)
            except ValueError as exc:
                raise CodecError(f"Invalid map key {key!r}", cause=exc) from exc
        return self.decode(key, key_shape, fc)

    def _decode_scalar(self, wire: Any, shape: Any) -> Any:
        if shape is bool:
            if isinstance(wire, bool):
                return wire
        elif shape is int:
            if isinstance(wire, int) and not isinstance(wire, bool):
                return wire
            if isinstance(wire, float) and wire.is_integer():
                return int(wire)
        elif shape is float:
            if isinstance(wire, (int, float)) and not isinstance(wire, bool):
                return float(wire)
            if wire in ("NaN", "Infinity", "-Infinity"):
                return float(wire)
        elif shape is str:
            if isinstance(wire, str):
                return wire
        else:
            raise CodecError(f"No converter registered for {shape!r}")
        raise CodecError(f"Expected {shape.__name__}, got {wire!r}")


__all__ = ["ValueCodec", "HEURISTIC_ORDER", "FieldConverters"]
