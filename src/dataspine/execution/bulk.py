"""
Bulk orchestration: chunked concurrent inserts and cursor-paginated writes.

WHY
───
One insertMany request carries at most ``MAX_INSERT_CHUNK_SIZE`` documents,
and deleteMany/updateMany stop after one page of matches. Callers want a
single logical call with one overall deadline and, when something breaks
half-way, the part that already succeeded.

ARCHITECTURE
────────────
::

    insert_many                               delete_many / update_many
    ───────────                               ─────────────────────────
    validate (options, ids) ── no I/O         loop:
    chunk documents                             request(page_state)
    Semaphore(concurrency)                      accumulate counts
      └─ chunk ─▶ executor ─▶ ids ─▶ Lock       page_state = nextPageState
    first failure ─▶ snapshot, cancel rest      until no cursor and no moreData
                                              no page cap, bounded by the bulk timeout

    bulk timeout: one CancellationSignal per call, armed with loop.call_later,
    handed to every chunk/page through OptionsLayer.bulk_cancellation

Failures of any kind surface as ``BulkOperationError`` carrying the frozen
partial result and the original error as ``cause``.

Examples:
    >>> orchestrator = BulkOrchestrator(executor)
    >>> result = await orchestrator.insert_many_async(
    ...     collection.command, docs, InsertManyOptions(concurrency=8)
    ... )
    >>> result.inserted_count
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Sequence

from dataspine.codec.codec import ValueCodec
from dataspine.codec.schema import PrimaryKeySchema, validate_document
from dataspine.codec.types import RawJson
from dataspine.core.errors import (
    BulkOperationError,
    BulkOperationTimeoutError,
    DataApiError,
    ValidationError,
)
from dataspine.core.logging import get_logger
from dataspine.core.options import OptionsLayer
from dataspine.core.settings import (
    DEFAULT_INSERT_CHUNK_SIZE,
    DEFAULT_INSERT_CONCURRENCY,
    MAX_INSERT_CHUNK_SIZE,
)
from dataspine.execution.cancellation import CancellationSignal, CancellationSource
from dataspine.execution.command import Command
from dataspine.execution.executor import CommandExecutor
from dataspine.execution.response import ResultShape
from dataspine.execution.results import DeleteResult, InsertManyResult, UpdateResult
from dataspine.execution.timeout import Stopwatch, TimeoutBudgets

logger = get_logger(__name__)

CommandFactory = Callable[[str], Command]
RAW_STATUS = ResultShape(status=RawJson)


@dataclass(frozen=True)
class InsertManyOptions:
    """Chunking and ordering of an insert_many call.

    ``concurrency=None`` means 1 when ordered and
    ``DEFAULT_INSERT_CONCURRENCY`` otherwise.
    """

    ordered: bool = False
    concurrency: int | None = None
    chunk_size: int | None = None

    def resolve(self) -> tuple[int, int]:
        """Validated ``(chunk_size, concurrency)``."""
        chunk_size = self.chunk_size if self.chunk_size is not None else DEFAULT_INSERT_CHUNK_SIZE
        if self.concurrency is not None:
            concurrency = self.concurrency
        else:
            concurrency = 1 if self.ordered else DEFAULT_INSERT_CONCURRENCY
        if not 1 <= chunk_size <= MAX_INSERT_CHUNK_SIZE:
            raise ValidationError(
                f"Chunk size must be between 1 and {MAX_INSERT_CHUNK_SIZE}",
                field="chunk_size",
                value=chunk_size,
            )
        if concurrency < 1:
            raise ValidationError(
                "Concurrency must be at least 1", field="concurrency", value=concurrency
            )
        if self.ordered and concurrency > 1:
            raise ValidationError(
                "Cannot run ordered insert_many concurrently.",
                field="concurrency",
                value=concurrency,
                constraint="ordered inserts require concurrency=1",
            )
        return chunk_size, concurrency


class _InsertAccumulator:
    """Inserted ids shared by concurrently running chunk tasks."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._ids: list[Any] = []

    async def add(self, ids: Sequence[Any]) -> None:
        async with self._lock:
            self._ids.extend(ids)

    async def snapshot(self) -> InsertManyResult:
        async with self._lock:
            return InsertManyResult(inserted_ids=tuple(self._ids))


def decode_inserted_ids(status: Any, codec: ValueCodec) -> list[Any]:
    """Ids from an insertMany status: schema-directed rows for tables,
    heuristic ids for collections."""
    if not isinstance(status, Mapping):
        return []
    ids = status.get("insertedIds") or []
    schema = status.get("primaryKeySchema")
    if schema:
        primary_key = PrimaryKeySchema.from_wire(schema)
        return [codec.decode_row(row, primary_key) for row in ids]
    return [codec.decode_id(value) for value in ids]


class BulkOrchestrator:
    """Runs multi-request operations on top of a ``CommandExecutor``.

    Every operation takes a ``new_command(name)`` factory so that each chunk
    or page gets its own short-lived Command carrying the caller's layers.
    """

    def __init__(self, executor: CommandExecutor):
        self._executor = executor

    # ── Bulk deadline ────────────────────────────────────────────────

    @staticmethod
    def _arm_bulk_timeout(
        template: Command,
    ) -> tuple[OptionsLayer, asyncio.TimerHandle | None, TimeoutBudgets]:
        budgets = TimeoutBudgets.from_options(template.options)
        signal = CancellationSignal()
        timer = None
        if budgets.bulk_seconds is not None:
            timer = signal.cancel_after(budgets.bulk_seconds, CancellationSource.BULK_OPERATION_TIMEOUT)
        return OptionsLayer(bulk_cancellation=signal), timer, budgets

    @staticmethod
    def _failure_message(operation: str, cause: BaseException, budgets: TimeoutBudgets) -> str:
        if isinstance(cause, BulkOperationTimeoutError):
            return (
                f"{operation} timed out after {budgets.bulk_ms} ms. Consider increasing "
                "the timeout with TimeoutOptions.bulk_operation_timeout_ms"
            )
        return f"{operation} failed: {cause}"

    # ── insert_many ──────────────────────────────────────────────────

    def insert_many(
        self,
        new_command: CommandFactory,
        documents: Sequence[Any],
        options: InsertManyOptions | None = None,
    ) -> InsertManyResult:
        return self._executor.runner.run(self.insert_many_async(new_command, documents, options))

    async def insert_many_async(
        self,
        new_command: CommandFactory,
        documents: Sequence[Any],
        options: InsertManyOptions | None = None,
    ) -> InsertManyResult:
        options = options or InsertManyOptions()
        chunk_size, concurrency = options.resolve()
        if documents is None or len(documents) == 0:
            raise ValidationError("insert_many requires at least one document", field="documents")
        documents = list(documents)
        for index, document in enumerate(documents):
            validate_document(document, index)

        chunks = [documents[i:i + chunk_size] for i in range(0, len(documents), chunk_size)]
        template = new_command("insertMany")
        codec = ValueCodec.from_options(template.options)
        bulk_layer, timer, budgets = self._arm_bulk_timeout(template)
        accumulator = _InsertAccumulator()
        semaphore = asyncio.Semaphore(concurrency)
        stopwatch = Stopwatch()

        logger.info(
            "bulk.insert_many.start",
            documents=len(documents),
            chunks=len(chunks),
            chunk_size=chunk_size,
            concurrency=concurrency,
            ordered=options.ordered,
        )

        async def run_chunk(index: int, chunk: list[Any]) -> None:
            async with semaphore:
                command = (
                    new_command("insertMany")
                    .with_payload({"documents": chunk, "options": {"ordered": options.ordered}})
                    .add_options(bulk_layer)
                )
                response = await self._executor.execute_async(command, RAW_STATUS)
                ids = decode_inserted_ids(response.status, codec)
                await accumulator.add(ids)
                logger.debug("bulk.insert_many.chunk", chunk=index, inserted=len(ids))

        try:
            if concurrency == 1:
                failure = await self._run_sequential(run_chunk, chunks)
                pending: set[asyncio.Task] = set()
            else:
                failure, pending = await self._run_concurrent(run_chunk, chunks)
            if failure is not None:
                partial = await accumulator.snapshot()
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
                if not isinstance(failure, DataApiError):
                    raise failure
                logger.warning(
                    "bulk.insert_many.failed",
                    inserted=partial.inserted_count,
                    error=str(failure),
                    elapsed_ms=stopwatch.elapsed_ms,
                )
                raise BulkOperationError(
                    self._failure_message("insertMany", failure, budgets),
                    partial_result=partial,
                    cause=failure,
                )
        finally:
            if timer is not None:
                timer.cancel()

        result = await accumulator.snapshot()
        logger.info(
            "bulk.insert_many.complete",
            inserted=result.inserted_count,
            elapsed_ms=stopwatch.elapsed_ms,
        )
        return result

    @staticmethod
    async def _run_sequential(run_chunk, chunks) -> BaseException | None:
        for index, chunk in enumerate(chunks):
            try:
                await run_chunk(index, chunk)
            except Exception as exc:
                return exc
        return None

    @staticmethod
    async def _run_concurrent(run_chunk, chunks) -> tuple[BaseException | None, set[asyncio.Task]]:
        tasks = [asyncio.ensure_future(run_chunk(i, c)) for i, c in enumerate(chunks)]
        try:
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            raise
        for task in tasks:
            if task in done and not task.cancelled() and task.exception() is not None:
                return task.exception(), pending
        return None, pending

    # ── Paginated writes ─────────────────────────────────────────────

    async def _paginate(
        self,
        operation: str,
        new_command: CommandFactory,
        build_payload: Callable[[str | None], dict[str, Any]],
        on_page: Callable[[Mapping[str, Any]], None],
        snapshot: Callable[[], Any],
    ) -> int:
        template = new_command(operation)
        bulk_layer, timer, budgets = self._arm_bulk_timeout(template)
        stopwatch = Stopwatch()
        page_state: str | None = None
        pages = 0
        try:
            while True:
                command = new_command(operation).with_payload(build_payload(page_state)).add_options(bulk_layer)
                response = await self._executor.execute_async(command, RAW_STATUS)
                pages += 1
                on_page(response.status if isinstance(response.status, Mapping) else {})
                page_state = response.next_page_state
                logger.debug(f"bulk.{operation}.page", page=pages, has_cursor=bool(page_state))
                if not page_state and not response.more_data:
                    break
        except DataApiError as exc:
            partial = snapshot()
            logger.warning(f"bulk.{operation}.failed", pages=pages, error=str(exc), elapsed_ms=stopwatch.elapsed_ms)
            raise BulkOperationError(
                self._failure_message(operation, exc, budgets),
                partial_result=partial,
                cause=exc,
            ) from exc
        finally:
            if timer is not None:
                timer.cancel()
        logger.info(f"bulk.{operation}.complete", pages=pages, elapsed_ms=stopwatch.elapsed_ms)
        return pages

    def delete_many(self, new_command: CommandFactory, filter: Mapping[str, Any] | None = None) -> DeleteResult:
        return self._executor.runner.run(self.delete_many_async(new_command, filter))

    async def delete_many_async(
        self, new_command: CommandFactory, filter: Mapping[str, Any] | None = None
    ) -> DeleteResult:
        deleted = 0

        def build_payload(page_state: str | None) -> dict[str, Any]:
            payload: dict[str, Any] = {"filter": dict(filter or {})}
            if page_state:
                payload["options"] = {"pageState": page_state}
            return payload

        def on_page(status: Mapping[str, Any]) -> None:
            nonlocal deleted
            deleted += int(status.get("deletedCount") or 0)

        await self._paginate(
            "deleteMany", new_command, build_payload, on_page, lambda: DeleteResult(deleted)
        )
        return DeleteResult(deleted_count=deleted)

    def update_many(
        self,
        new_command: CommandFactory,
        filter: Mapping[str, Any],
        update: Mapping[str, Any],
        *,
        upsert: bool = False,
    ) -> UpdateResult:
        return self._executor.runner.run(
            self.update_many_async(new_command, filter, update, upsert=upsert)
        )

    async def update_many_async(
        self,
        new_command: CommandFactory,
        filter: Mapping[str, Any],
        update: Mapping[str, Any],
        *,
        upsert: bool = False,
    ) -> UpdateResult:
        if not update:
            raise ValidationError("update_many requires a non-empty update", field="update")
        template = new_command("updateMany")
        codec = ValueCodec.from_options(template.options)
        matched = modified = 0
        upserted_id: Any = None

        def build_payload(page_state: str | None) -> dict[str, Any]:
            request_options: dict[str, Any] = {"upsert": upsert}
            if page_state:
                request_options["pageState"] = page_state
            return {"filter": dict(filter or {}), "update": dict(update), "options": request_options}

        def on_page(status: Mapping[str, Any]) -> None:
            nonlocal matched, modified, upserted_id
            matched += int(status.get("matchedCount") or 0)
            modified += int(status.get("modifiedCount") or 0)
            if status.get("upsertedId") is not None:
                upserted_id = codec.decode_id(status["upsertedId"])

        await self._paginate(
            "updateMany",
            new_command,
            build_payload,
            on_page,
            lambda: UpdateResult(matched, modified, upserted_id),
        )
        return UpdateResult(matched_count=matched, modified_count=modified, upserted_id=upserted_id)


__all__ = ["BulkOrchestrator", "InsertManyOptions", "decode_inserted_ids", "CommandFactory"]
