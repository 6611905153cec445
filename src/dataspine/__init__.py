"""
dataspine - command execution and extended-JSON codec for Data API clients.

Layers:
    core        errors, structlog logging, layered options, settings
    codec       ValueCodec, converters, document and row schemas
    execution   cancellation, timeouts, HTTP transport, executor, bulk
    client      DataApiClient → Database → Collection handles
"""

__version__ = "0.4.0"

from dataspine.client import Collection, DataApiClient, Database
from dataspine.codec import DataApiVector, DocumentField, ValueCodec, document_field
from dataspine.core.options import OptionsLayer, TimeoutOptions, merge_options

__all__ = [
    "__version__",
    "DataApiClient",
    "Database",
    "Collection",
    "ValueCodec",
    "DataApiVector",
    "DocumentField",
    "document_field",
    "OptionsLayer",
    "TimeoutOptions",
    "merge_options",
]
