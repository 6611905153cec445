"""
Schema descriptors consulted by the codec.

Documents
─────────
A dataclass document declares its special fields once, with
``document_field``. ``DocumentSchema.for_type`` turns the declaration into a
field-mapping table the first time a type is seen and caches it, so the codec
never re-inspects the class on each encode/decode::

    @dataclass
    class Product:
        id: UUID | None = document_field(DocumentField.ID, default=None)
        name: str = ""
        embedding: DataApiVector | None = document_field(DocumentField.VECTOR, default=None)
        score: float | None = document_field(DocumentField.SIMILARITY, default=None)

A field literally named ``_id`` is the id without further declaration.

Rows
────
Table responses describe their primary key with ``primaryKeySchema``. Each
declared column type selects exactly one decode shape, so rows never go
through the bare-string heuristic.
"""

from __future__ import annotations

import dataclasses
import functools
import ipaddress
import types
import typing
import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping

from bson import ObjectId

from dataspine.codec import keywords
from dataspine.codec.converters import Converter
from dataspine.codec.types import DataApiVector
from dataspine.core.errors import CodecError, ValidationError

_METADATA_KEY = "dataspine"


class DocumentField(str, Enum):
    """Special document fields and the wire key each is written under."""

    ID = keywords.ID
    VECTOR = keywords.VECTOR
    VECTORIZE = keywords.VECTORIZE
    SIMILARITY = keywords.SIMILARITY


@dataclass(frozen=True)
class FieldSpec:
    role: DocumentField | None = None
    name: str | None = None
    converter: Converter | None = None


def document_field(
    role: DocumentField | None = None,
    *,
    name: str | None = None,
    converter: Converter | None = None,
    **kwargs: Any,
) -> Any:
    """``dataclasses.field`` carrying the wire mapping of one attribute.

    Args:
        role: Special field this attribute maps to, if any
        name: Wire name for an ordinary field (defaults to the attribute name)
        converter: Converter used for this field instead of type lookup
        **kwargs: Passed through to ``dataclasses.field``
    """
    metadata = dict(kwargs.pop("metadata", None) or {})
    metadata[_METADATA_KEY] = FieldSpec(role=role, name=name, converter=converter)
    return dataclasses.field(metadata=metadata, **kwargs)


@dataclass(frozen=True)
class FieldMapping:
    attr: str
    wire_name: str
    shape: Any
    role: DocumentField | None = None
    converter: Converter | None = None

    @property
    def read_only(self) -> bool:
        return self.role is DocumentField.SIMILARITY


@dataclass(frozen=True)
class DocumentSchema:
    """Field-mapping table for one dataclass document type."""

    doc_type: type
    fields: tuple[FieldMapping, ...]

    @property
    def id_field(self) -> FieldMapping | None:
        for mapping in self.fields:
            if mapping.role is DocumentField.ID:
                return mapping
        return None

    @classmethod
    def for_type(cls, doc_type: type) -> DocumentSchema:
        return _build_schema(doc_type)


@functools.cache
def _build_schema(doc_type: type) -> DocumentSchema:
    if not dataclasses.is_dataclass(doc_type):
        raise CodecError(f"{doc_type.__name__} is not a dataclass document type")
    hints = typing.get_type_hints(doc_type)
    mappings = []
    seen_roles: set[DocumentField] = set()
    for f in dataclasses.fields(doc_type):
        spec: FieldSpec = f.metadata.get(_METADATA_KEY) or FieldSpec()
        role = spec.role
        if role is None and f.name == keywords.ID:
            role = DocumentField.ID
        if role is not None:
            if role in seen_roles:
                raise CodecError(f"{doc_type.__name__} declares {role.value} more than once")
            seen_roles.add(role)
        wire_name = role.value if role is not None else (spec.name or f.name)
        mappings.append(
            FieldMapping(
                attr=f.name,
                wire_name=wire_name,
                shape=hints.get(f.name, Any),
                role=role,
                converter=spec.converter,
            )
        )
    return DocumentSchema(doc_type=doc_type, fields=tuple(mappings))


# ── Insert validation ────────────────────────────────────────────────

AUTO_ID_TYPES = (uuid.UUID, ObjectId)


def strip_optional(shape: Any) -> tuple[Any, ...]:
    """Members of a union shape, without ``None``."""
    if typing.get_origin(shape) in (typing.Union, types.UnionType):
        return tuple(a for a in typing.get_args(shape) if a is not type(None))
    return (shape,)


def _is_auto_id_shape(shape: Any) -> bool:
    members = strip_optional(shape)
    return all(isinstance(m, type) and issubclass(m, AUTO_ID_TYPES) for m in members)


def validate_document(document: Any, index: int | None = None) -> None:
    """Reject documents whose id is null/empty and not auto-generatable.

    An absent id is always fine, the server assigns one. A present but
    ``None``/empty id is only allowed when the declared id type is UUID or
    ObjectId, since those are left for the server to generate.
    """
    where = f" (document {index})" if index is not None else ""
    if dataclasses.is_dataclass(document) and not isinstance(document, type):
        mapping = DocumentSchema.for_type(type(document)).id_field
        if mapping is None:
            return
        value = getattr(document, mapping.attr)
        if (value is None or value == "") and not _is_auto_id_shape(mapping.shape):
            raise ValidationError(
                f"Document id cannot be null or empty{where}",
                field=keywords.ID,
                value=value,
                constraint="id must be set unless it is a UUID or ObjectId",
            )
        return
    if isinstance(document, Mapping):
        if keywords.ID in document and document[keywords.ID] in (None, ""):
            raise ValidationError(
                f"Document id cannot be null or empty{where}",
                field=keywords.ID,
                value=document[keywords.ID],
                constraint="omit _id to let the server generate one",
            )
        return
    raise ValidationError(
        f"Unsupported document type {type(document).__name__}{where}",
        constraint="documents must be mappings or dataclasses",
    )


# ── Table columns ────────────────────────────────────────────────────


class ColumnType(str, Enum):
    TEXT = "text"
    ASCII = "ascii"
    VARCHAR = "varchar"
    INT = "int"
    TINYINT = "tinyint"
    SMALLINT = "smallint"
    VARINT = "varint"
    BIGINT = "bigint"
    COUNTER = "counter"
    DECIMAL = "decimal"
    DOUBLE = "double"
    FLOAT = "float"
    BOOLEAN = "boolean"
    TIMESTAMP = "timestamp"
    DATE = "date"
    TIME = "time"
    UUID = "uuid"
    TIMEUUID = "timeuuid"
    BLOB = "blob"
    INET = "inet"
    DURATION = "duration"
    VECTOR = "vector"
    LIST = "list"
    SET = "set"
    MAP = "map"


_SCALAR_SHAPES: dict[ColumnType, Any] = {
    ColumnType.TEXT: str,
    ColumnType.ASCII: str,
    ColumnType.VARCHAR: str,
    ColumnType.INT: int,
    ColumnType.TINYINT: int,
    ColumnType.SMALLINT: int,
    ColumnType.VARINT: int,
    ColumnType.BIGINT: int,
    ColumnType.COUNTER: int,
    ColumnType.DECIMAL: Decimal,
    ColumnType.DOUBLE: float,
    ColumnType.FLOAT: float,
    ColumnType.BOOLEAN: bool,
    ColumnType.TIMESTAMP: datetime,
    ColumnType.DATE: date,
    ColumnType.TIME: time,
    ColumnType.UUID: uuid.UUID,
    ColumnType.TIMEUUID: uuid.UUID,
    ColumnType.BLOB: bytes,
    ColumnType.INET: ipaddress.IPv4Address | ipaddress.IPv6Address,
    ColumnType.DURATION: timedelta,
    ColumnType.VECTOR: DataApiVector,
}


def _column_type(name: Any) -> ColumnType:
    try:
        return ColumnType(name)
    except ValueError as exc:
        raise CodecError(f"Unsupported column type: {name!r}", cause=exc) from exc


@dataclass(frozen=True)
class ColumnDefinition:
    type: ColumnType
    key_type: ColumnType | None = None
    value_type: ColumnType | None = None
    dimension: int | None = None

    @classmethod
    def from_wire(cls, definition: Mapping[str, Any] | str) -> ColumnDefinition:
        if isinstance(definition, str):
            return cls(type=_column_type(definition))
        key_type = definition.get("keyType")
        value_type = definition.get("valueType")
        return cls(
            type=_column_type(definition.get("type")),
            key_type=_column_type(key_type) if key_type else None,
            value_type=_column_type(value_type) if value_type else None,
            dimension=definition.get("dimension"),
        )

    def shape(self) -> Any:
        """Decode shape selected by this column type."""
        if self.type in (ColumnType.LIST, ColumnType.SET):
            if self.value_type is None:
                raise CodecError(f"{self.type.value} column without valueType")
            inner = _SCALAR_SHAPES[self.value_type]
            return list[inner] if self.type is ColumnType.LIST else set[inner]
        if self.type is ColumnType.MAP:
            if self.key_type is None or self.value_type is None:
                raise CodecError("map column without keyType/valueType")
            return dict[_SCALAR_SHAPES[self.key_type], _SCALAR_SHAPES[self.value_type]]
        return _SCALAR_SHAPES[self.type]


@dataclass(frozen=True)
class PrimaryKeySchema:
    """Ordered primary-key columns of a table, as returned by the server."""

    columns: tuple[tuple[str, ColumnDefinition], ...]

    @classmethod
    def from_wire(cls, schema: Mapping[str, Any]) -> PrimaryKeySchema:
        return cls(
            columns=tuple(
                (name, ColumnDefinition.from_wire(definition))
                for name, definition in schema.items()
            )
        )

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(name for name, _ in self.columns)


__all__ = [
    "DocumentField",
    "document_field",
    "FieldMapping",
    "DocumentSchema",
    "validate_document",
    "ColumnType",
    "ColumnDefinition",
    "PrimaryKeySchema",
]
