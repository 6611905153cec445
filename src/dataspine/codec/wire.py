"""
JSON text of request and response bodies.

Numbers keep their literal text when a body is read, and ``Decimal`` values
are written as exact numeric literals, so ``decimal`` columns survive the
round trip digit for digit. Everything else is plain ``json``.
"""

from __future__ import annotations

import json
from decimal import Decimal
from typing import Any, Iterator

_SEPARATORS = (",", ":")


class WireNumber(float):
    """A JSON fraction that remembers its literal text."""

    __slots__ = ("literal",)

    def __new__(cls, literal: str) -> WireNumber:
        number = super().__new__(cls, literal)
        number.literal = literal
        return number


class _ExactNumbersNeeded(Exception):
    pass


def _default(value: Any) -> Any:
    if isinstance(value, Decimal):
        raise _ExactNumbersNeeded
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def load_json(content: bytes | str) -> Any:
    return json.loads(content, parse_float=WireNumber)


def dump_json(value: Any) -> str:
    """Compact JSON text; non-finite floats and decimals raise ``ValueError``."""
    try:
        return json.dumps(value, separators=_SEPARATORS, allow_nan=False, default=_default)
    except _ExactNumbersNeeded:
        return "".join(_iter_exact(value))


def _iter_exact(value: Any) -> Iterator[str]:
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise ValueError(f"Out of range decimal is not JSON compliant: {value}")
        yield str(value)
    elif isinstance(value, dict):
        yield "{"
        for index, (key, item) in enumerate(value.items()):
            if not isinstance(key, str):
                raise TypeError(f"Keys must be str, not {type(key).__name__}")
            if index:
                yield ","
            yield json.dumps(key)
            yield ":"
            yield from _iter_exact(item)
        yield "}"
    elif isinstance(value, (list, tuple)):
        yield "["
        for index, item in enumerate(value):
            if index:
                yield ","
            yield from _iter_exact(item)
        yield "]"
    else:
        yield json.dumps(value, separators=_SEPARATORS, allow_nan=False, default=_default)


__all__ = ["WireNumber", "load_json", "dump_json"]
