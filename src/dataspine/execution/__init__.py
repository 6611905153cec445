"""Command execution: cancellation, timeouts, transport, executor and bulk orchestration."""

from dataspine.execution.blocking import BlockingRunner
from dataspine.execution.bulk import BulkOrchestrator, InsertManyOptions
from dataspine.execution.cancellation import (
    CancellationSignal,
    CancellationSource,
    LinkedCancellation,
)
from dataspine.execution.command import Command, DatabaseUrlBuilder
from dataspine.execution.executor import CommandExecutor
from dataspine.execution.response import ApiResponse, ResultShape
from dataspine.execution.results import DeleteResult, InsertManyResult, UpdateResult
from dataspine.execution.timeout import TimeoutBudgets
from dataspine.execution.transport import HttpTransport

__all__ = [
    "BlockingRunner",
    "BulkOrchestrator",
    "InsertManyOptions",
    "CancellationSignal",
    "CancellationSource",
    "LinkedCancellation",
    "Command",
    "DatabaseUrlBuilder",
    "CommandExecutor",
    "ApiResponse",
    "ResultShape",
    "DeleteResult",
    "InsertManyResult",
    "UpdateResult",
    "TimeoutBudgets",
    "HttpTransport",
]
