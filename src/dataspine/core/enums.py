"""Enumerations shared by options, codec and execution."""

from __future__ import annotations

from enum import Enum


class ApiVersion(str, Enum):
    """Data API version segment of the URL."""

    V1 = "v1"


class Destination(str, Enum):
    """Kind of deployment the client talks to."""

    ASTRA = "astra"
    DSE = "dse"
    HCD = "hcd"
    CASSANDRA = "cassandra"
    OTHERS = "others"


class RunMode(str, Enum):
    """NORMAL, or DEBUG to log every request and response body."""

    NORMAL = "normal"
    DEBUG = "debug"


class HttpVersion(str, Enum):
    HTTP_1_1 = "1.1"
    HTTP_2 = "2"


class TextAnalyzer(str, Enum):
    """Built-in analyzers accepted by text indexes."""

    STANDARD = "standard"
    SIMPLE = "simple"
    WHITESPACE = "whitespace"
    STOP = "stop"
    LOWERCASE = "lowercase"
    KEYWORD = "keyword"


__all__ = ["ApiVersion", "Destination", "RunMode", "HttpVersion", "TextAnalyzer"]
