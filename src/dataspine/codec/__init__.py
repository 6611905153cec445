"""Extended-JSON codec: converters, schema descriptors and ``ValueCodec``."""

from dataspine.codec.codec import HEURISTIC_ORDER, ValueCodec
from dataspine.codec.converters import (
    BASE_CONVERTERS,
    EPOCH_DATE_CONVERTER,
    Converter,
    EncodeSettings,
)
from dataspine.codec.schema import (
    ColumnDefinition,
    ColumnType,
    DocumentField,
    DocumentSchema,
    PrimaryKeySchema,
    document_field,
    validate_document,
)
from dataspine.codec.types import DataApiVector, RawJson
from dataspine.codec.wire import WireNumber, dump_json, load_json

__all__ = [
    "ValueCodec",
    "HEURISTIC_ORDER",
    "Converter",
    "EncodeSettings",
    "BASE_CONVERTERS",
    "EPOCH_DATE_CONVERTER",
    "DocumentField",
    "DocumentSchema",
    "document_field",
    "validate_document",
    "ColumnType",
    "ColumnDefinition",
    "PrimaryKeySchema",
    "DataApiVector",
    "RawJson",
    "WireNumber",
    "dump_json",
    "load_json",
]
