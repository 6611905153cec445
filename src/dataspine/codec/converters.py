"""
Converters for extended-JSON kinds.

Each extended kind registers one ``Converter``: the host types it handles, the
wrapper key it uses on the wire (if any) and a pair of encode/decode functions.
The codec looks converters up by host type when encoding, by requested shape
when decoding, and by wrapper key when the shape is unknown.

Wire shapes
───────────
    datetime / date      {"$date": <epoch ms>}  (bare ms with dates_as_epoch)
    time                 "HH:MM:SS[.ffffff]"
    UUID                 {"$uuid": "..."}        (bare string when unwrapped)
    ObjectId             {"$objectId": "<24 hex>"}
    bytes                {"$binary": "<base64>"}
    DataApiVector        [float, ...]            ({"$binary": ...} accepted)
    timedelta            "P1DT2H3M4.5S"          ("1d2h3m4s500ms" accepted)
    IPv4/IPv6 address    "10.0.0.1"
    Decimal              exact JSON number     ("NaN", "Infinity", "-Infinity")
    Enum                 member value
"""

from __future__ import annotations

import base64
import binascii
import ipaddress
import re
import struct
import uuid
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Callable

from bson import ObjectId
from bson.errors import InvalidId

from dataspine.codec import keywords
from dataspine.codec.types import DataApiVector
from dataspine.codec.wire import WireNumber
from dataspine.core.errors import CodecError

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


@dataclass(frozen=True)
class EncodeSettings:
    """Encode-time toggles taken from ``SerdesOptions``."""

    dates_as_epoch: bool = False
    uuids_as_wrapper: bool = True


Encoder = Callable[[Any, EncodeSettings], Any]
Decoder = Callable[[Any, type], Any]


@dataclass(frozen=True)
class Converter:
    """Encode/decode pair for one extended kind."""

    kind: str
    host_types: tuple[type, ...]
    encode: Encoder
    decode: Decoder
    wrapper: str | None = None

    def handles_value(self, value: Any) -> bool:
        return isinstance(value, self.host_types)

    def handles_shape(self, shape: Any) -> bool:
        return isinstance(shape, type) and issubclass(shape, self.host_types)


# ── Helpers ──────────────────────────────────────────────────────────


def unwrap(wire: Any, key: str, kind: str) -> Any:
    """Payload of ``{key: payload}``, or ``wire`` itself when not a mapping."""
    if isinstance(wire, dict):
        if len(wire) != 1 or key not in wire:
            found = ", ".join(wire) or "empty object"
            raise CodecError(f"Expected '{key}' wrapper for {kind}, found {found}")
        return wire[key]
    return wire


def to_epoch_millis(value: datetime | date) -> int:
    if not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day, tzinfo=UTC)
    elif value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return (value - EPOCH) // timedelta(milliseconds=1)


def from_epoch_millis(millis: int) -> datetime:
    return EPOCH + timedelta(milliseconds=millis)


def parse_iso_datetime(text: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise CodecError(f"Invalid date string: {text!r}", cause=exc) from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


# ── Dates ────────────────────────────────────────────────────────────


def _encode_datetime(value: datetime | date, settings: EncodeSettings) -> Any:
    millis = to_epoch_millis(value)
    return millis if settings.dates_as_epoch else {keywords.DATE: millis}


def _decode_datetime(wire: Any, shape: type) -> datetime:
    payload = unwrap(wire, keywords.DATE, "date")
    if isinstance(payload, bool):
        raise CodecError(f"Invalid date payload: {payload!r}")
    if isinstance(payload, (int, float)):
        return from_epoch_millis(int(payload))
    if isinstance(payload, str):
        return parse_iso_datetime(payload)
    raise CodecError(f"Invalid date payload: {payload!r}")


def _decode_date(wire: Any, shape: type) -> date:
    if isinstance(wire, str) and len(wire) == 10:
        try:
            return date.fromisoformat(wire)
        except ValueError as exc:
            raise CodecError(f"Invalid date string: {wire!r}", cause=exc) from exc
    return _decode_datetime(wire, datetime).date()


def _encode_time(value: time, settings: EncodeSettings) -> str:
    return value.isoformat()


def _decode_time(wire: Any, shape: type) -> time:
    if not isinstance(wire, str):
        raise CodecError(f"Invalid time payload: {wire!r}")
    try:
        return time.fromisoformat(wire)
    except ValueError as exc:
        raise CodecError(f"Invalid time string: {wire!r}", cause=exc) from exc


# ── Identifiers ──────────────────────────────────────────────────────


def _encode_uuid(value: uuid.UUID, settings: EncodeSettings) -> Any:
    return {keywords.UUID: str(value)} if settings.uuids_as_wrapper else str(value)


def _decode_uuid(wire: Any, shape: type) -> uuid.UUID:
    payload = unwrap(wire, keywords.UUID, "UUID")
    if not isinstance(payload, str):
        raise CodecError(f"Invalid UUID payload: {payload!r}")
    try:
        return uuid.UUID(payload)
    except ValueError as exc:
        raise CodecError(f"Invalid UUID string: {payload!r}", cause=exc) from exc


def _encode_object_id(value: ObjectId, settings: EncodeSettings) -> dict[str, str]:
    return {keywords.OBJECT_ID: str(value)}


def _decode_object_id(wire: Any, shape: type) -> ObjectId:
    payload = unwrap(wire, keywords.OBJECT_ID, "ObjectId")
    if not isinstance(payload, str):
        raise CodecError(f"Invalid ObjectId payload: {payload!r}")
    try:
        return ObjectId(payload)
    except (InvalidId, TypeError) as exc:
        raise CodecError(f"Invalid ObjectId payload: {payload!r}", cause=exc) from exc


# ── Binary and vectors ───────────────────────────────────────────────


def _encode_binary(value: bytes | bytearray | memoryview, settings: EncodeSettings) -> dict[str, str]:
    return {keywords.BINARY: base64.b64encode(bytes(value)).decode("ascii")}


def _decode_b64(payload: Any) -> bytes:
    if not isinstance(payload, str):
        raise CodecError(f"Invalid binary payload: {payload!r}")
    try:
        return base64.b64decode(payload, validate=True)
    except binascii.Error as exc:
        raise CodecError(f"Invalid base64 payload: {payload!r}", cause=exc) from exc


def _decode_binary(wire: Any, shape: type) -> bytes:
    return _decode_b64(unwrap(wire, keywords.BINARY, "binary"))


def _encode_vector(value: DataApiVector, settings: EncodeSettings) -> list[float]:
    return list(value.values)


def _decode_vector(wire: Any, shape: type) -> DataApiVector:
    if isinstance(wire, dict):
        packed = _decode_b64(unwrap(wire, keywords.BINARY, "vector"))
        if len(packed) % 4:
            raise CodecError("Packed vector length is not a multiple of 4 bytes")
        return DataApiVector(struct.unpack(f">{len(packed) // 4}f", packed))
    if not isinstance(wire, list) or not all(
        isinstance(v, (int, float)) and not isinstance(v, bool) for v in wire
    ):
        raise CodecError(f"Invalid vector payload: {wire!r}")
    return DataApiVector(wire)


# ── Durations ────────────────────────────────────────────────────────

_ISO_DURATION = re.compile(
    r"^(?P<sign>-)?P(?:(?P<weeks>\d+)W)?(?:(?P<days>\d+)D)?"
    r"(?:T(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+(?:\.\d+)?)S)?)?$"
)
_COMPACT_UNIT = re.compile(r"(\d+)(y|mo|w|d|h|ms|us|µs|ns|m|s)", re.IGNORECASE)
_COMPACT_FACTORS = {
    "w": timedelta(weeks=1),
    "d": timedelta(days=1),
    "h": timedelta(hours=1),
    "m": timedelta(minutes=1),
    "s": timedelta(seconds=1),
    "ms": timedelta(milliseconds=1),
    "us": timedelta(microseconds=1),
    "µs": timedelta(microseconds=1),
}


def format_duration(value: timedelta) -> str:
    """ISO-8601 form: days, hours, minutes and fractional seconds."""
    sign = "-" if value < timedelta(0) else ""
    value = abs(value)
    days = value.days
    hours, rem = divmod(value.seconds, 3600)
    minutes, seconds = divmod(rem, 60)
    text = f"{sign}P"
    if days:
        text += f"{days}D"
    clock = ""
    if hours:
        clock += f"{hours}H"
    if minutes:
        clock += f"{minutes}M"
    if seconds or value.microseconds:
        frac = f".{value.microseconds:06d}".rstrip("0") if value.microseconds else ""
        clock += f"{seconds}{frac}S"
    if clock:
        text += f"T{clock}"
    if text in ("P", "-P"):
        text = "PT0S"
    return text


def parse_duration(text: str) -> timedelta:
    """Parse ISO-8601 or compact (``1h30m``) durations.

    Years and months have no fixed length and are rejected.
    """
    match = _ISO_DURATION.match(text)
    if match and not text.endswith(("P", "T")):
        parts = match.groupdict()
        result = timedelta(
            weeks=int(parts["weeks"] or 0),
            days=int(parts["days"] or 0),
            hours=int(parts["hours"] or 0),
            minutes=int(parts["minutes"] or 0),
            seconds=float(parts["seconds"] or 0),
        )
        return -result if parts["sign"] else result

    body = text[1:] if text.startswith("-") else text
    units = _COMPACT_UNIT.findall(body)
    if not body or "".join(n + u for n, u in units) != body:
        raise CodecError(f"Invalid duration: {text!r}")
    result = timedelta(0)
    for amount, unit in units:
        unit = unit.lower()
        if unit in ("y", "mo"):
            raise CodecError(f"Duration {text!r} has calendar units that timedelta cannot hold")
        if unit == "ns":
            result += timedelta(microseconds=int(amount) / 1000)
        else:
            result += int(amount) * _COMPACT_FACTORS[unit]
    return -result if text.startswith("-") else result


def _encode_duration(value: timedelta, settings: EncodeSettings) -> str:
    return format_duration(value)


def _decode_duration(wire: Any, shape: type) -> timedelta:
    if not isinstance(wire, str):
        raise CodecError(f"Invalid duration payload: {wire!r}")
    return parse_duration(wire)


# ── Scalars ──────────────────────────────────────────────────────────


def _encode_ip(value: ipaddress.IPv4Address | ipaddress.IPv6Address, settings: EncodeSettings) -> str:
    return str(value)


def _decode_ip(wire: Any, shape: type) -> ipaddress.IPv4Address | ipaddress.IPv6Address:
    try:
        return ipaddress.ip_address(wire)
    except ValueError as exc:
        raise CodecError(f"Invalid IP address: {wire!r}", cause=exc) from exc


def _encode_decimal(value: Decimal, settings: EncodeSettings) -> Decimal | str:
    if value.is_finite():
        return value
    if value.is_nan():
        return "NaN"
    return "-Infinity" if value.is_signed() else "Infinity"


def _decode_decimal(wire: Any, shape: type) -> Decimal:
    if isinstance(wire, bool) or not isinstance(wire, (int, float, str, Decimal)):
        raise CodecError(f"Invalid decimal payload: {wire!r}")
    try:
        return Decimal(wire.literal if isinstance(wire, WireNumber) else str(wire))
    except ArithmeticError as exc:
        raise CodecError(f"Invalid decimal payload: {wire!r}", cause=exc) from exc


def _encode_enum(value: Enum, settings: EncodeSettings) -> Any:
    return value.value


def _decode_enum(wire: Any, shape: type) -> Enum:
    try:
        return shape(wire)
    except ValueError as exc:
        raise CodecError(f"{wire!r} is not a valid {shape.__name__}", cause=exc) from exc


DATETIME_CONVERTER = Converter("date", (datetime,), _encode_datetime, _decode_datetime, keywords.DATE)
DATE_CONVERTER = Converter("date", (date,), _encode_datetime, _decode_date, keywords.DATE)
UUID_CONVERTER = Converter("uuid", (uuid.UUID,), _encode_uuid, _decode_uuid, keywords.UUID)
OBJECT_ID_CONVERTER = Converter(
    "objectId", (ObjectId,), _encode_object_id, _decode_object_id, keywords.OBJECT_ID
)
BINARY_CONVERTER = Converter(
    "binary", (bytes, bytearray, memoryview), _encode_binary, _decode_binary, keywords.BINARY
)
VECTOR_CONVERTER = Converter("vector", (DataApiVector,), _encode_vector, _decode_vector)
TIME_CONVERTER = Converter("time", (time,), _encode_time, _decode_time)
DURATION_CONVERTER = Converter("duration", (timedelta,), _encode_duration, _decode_duration)
IP_CONVERTER = Converter(
    "inet", (ipaddress.IPv4Address, ipaddress.IPv6Address), _encode_ip, _decode_ip
)
DECIMAL_CONVERTER = Converter("decimal", (Decimal,), _encode_decimal, _decode_decimal)
ENUM_CONVERTER = Converter("enum", (Enum,), _encode_enum, _decode_enum)

# Always consulted after any custom converters. datetime precedes date
# because datetime is a subclass of date.
BASE_CONVERTERS: tuple[Converter, ...] = (
    DATETIME_CONVERTER,
    DATE_CONVERTER,
    UUID_CONVERTER,
    OBJECT_ID_CONVERTER,
    BINARY_CONVERTER,
    VECTOR_CONVERTER,
    TIME_CONVERTER,
    DURATION_CONVERTER,
    IP_CONVERTER,
    DECIMAL_CONVERTER,
    ENUM_CONVERTER,
)

# Per-field override writing dates as bare epoch milliseconds
EPOCH_DATE_CONVERTER = Converter(
    "date",
    (datetime, date),
    lambda value, settings: to_epoch_millis(value),
    _decode_datetime,
)

__all__ = [
    "Converter",
    "EncodeSettings",
    "BASE_CONVERTERS",
    "EPOCH_DATE_CONVERTER",
    "format_duration",
    "parse_duration",
    "parse_iso_datetime",
    "to_epoch_millis",
    "from_epoch_millis",
]
