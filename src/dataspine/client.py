"""
Client, database and collection handles.

These classes only own the option-layer hierarchy and forward to the
execution core; they are not a CRUD surface. Each handle appends its own
layer, so a command built from a collection carries, least specific first::

    client layer → database layer → collection layer → per-call layer

Examples:
    >>> client = DataApiClient.from_settings()
    >>> users = client.get_database().get_collection("users")
    >>> users.insert_many([{"name": "ada"}, {"name": "grace"}]).inserted_count
    2
    >>> users.delete_many({"name": "ada"}).deleted_count
    1
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Mapping, Sequence

import httpx

from dataspine.codec.codec import FieldConverters
from dataspine.core.errors import ConfigError
from dataspine.core.logging import configure_logging
from dataspine.core.options import OptionsLayer
from dataspine.core.settings import DataApiSettings, get_settings
from dataspine.execution.blocking import BlockingRunner
from dataspine.execution.bulk import BulkOrchestrator, InsertManyOptions
from dataspine.execution.command import Command, DatabaseUrlBuilder
from dataspine.execution.executor import CommandExecutor
from dataspine.execution.response import ApiResponse, ResultShape
from dataspine.execution.results import DeleteResult, InsertManyResult, UpdateResult
from dataspine.execution.transport import HttpTransport


def _layers(*layers: OptionsLayer | None) -> tuple[OptionsLayer, ...]:
    return tuple(layer for layer in layers if layer is not None)


class DataApiClient:
    """Entry point: owns the executor, its connection pools and the client layer."""

    def __init__(
        self,
        token: str | None = None,
        *,
        options: OptionsLayer | None = None,
        endpoint: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        insert_chunk_size: int | None = None,
        insert_concurrency: int | None = None,
    ):
        self.layers = _layers(options, OptionsLayer(token=token) if token else None)
        self.default_endpoint = endpoint
        self.insert_chunk_size = insert_chunk_size
        self.insert_concurrency = insert_concurrency
        self.executor = CommandExecutor(HttpTransport(transport), BlockingRunner())
        self.bulk = BulkOrchestrator(self.executor)

    @classmethod
    def from_settings(cls, settings: DataApiSettings | None = None, **kwargs: Any) -> DataApiClient:
        """Build a client from ``DataApiSettings`` and apply its logging settings."""
        settings = settings or get_settings()
        configure_logging(level=settings.log_level, json_format=settings.json_logs)
        return cls(
            options=settings.to_options_layer(),
            endpoint=settings.endpoint,
            insert_chunk_size=settings.insert_chunk_size,
            insert_concurrency=settings.insert_concurrency,
            **kwargs,
        )

    def insert_options(
        self, ordered: bool, concurrency: int | None, chunk_size: int | None
    ) -> InsertManyOptions:
        """Per-call insert options, falling back to the client-wide defaults.

        The client-wide concurrency only applies to unordered inserts.
        """
        if concurrency is None and not ordered:
            concurrency = self.insert_concurrency
        return InsertManyOptions(
            ordered=ordered,
            concurrency=concurrency,
            chunk_size=chunk_size if chunk_size is not None else self.insert_chunk_size,
        )

    def get_database(
        self,
        endpoint: str | None = None,
        *,
        keyspace: str | None = None,
        options: OptionsLayer | None = None,
    ) -> Database:
        endpoint = endpoint or self.default_endpoint
        if not endpoint:
            raise ConfigError("No database endpoint given and none configured")
        layer = options
        if keyspace:
            layer = OptionsLayer(keyspace=keyspace) if options is None else replace(options, keyspace=keyspace)
        return Database(self, DatabaseUrlBuilder(endpoint), self.layers + _layers(layer))

    # ── Lifecycle ────────────────────────────────────────────────────

    def close(self) -> None:
        self.executor.close()

    async def aclose(self) -> None:
        await self.executor.aclose()

    def __enter__(self) -> DataApiClient:
        return self

    def __exit__(self, *args) -> None:
        self.close()

    async def __aenter__(self) -> DataApiClient:
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()


class Database:
    """Database-level handle: adds the database layer and endpoint."""

    def __init__(self, client: DataApiClient, url_builder: DatabaseUrlBuilder, layers: Sequence[OptionsLayer]):
        self.client = client
        self.url_builder = url_builder
        self.layers = tuple(layers)

    def command(self, name: str = "", options: OptionsLayer | None = None) -> Command:
        return Command(name, self.url_builder, self.layers + _layers(options))

    def get_collection(self, name: str, *, options: OptionsLayer | None = None) -> Collection:
        return Collection(self, name, self.layers + _layers(options))

    def run_command(
        self,
        name: str,
        payload: Any = None,
        *,
        options: OptionsLayer | None = None,
        result_shape: ResultShape | None = None,
    ) -> ApiResponse:
        return self.client.executor.execute(self.command(name, options).with_payload(payload), result_shape)

    async def run_command_async(
        self,
        name: str,
        payload: Any = None,
        *,
        options: OptionsLayer | None = None,
        result_shape: ResultShape | None = None,
    ) -> ApiResponse:
        return await self.client.executor.execute_async(
            self.command(name, options).with_payload(payload), result_shape
        )


class Collection:
    """Collection-level handle: a resource path and one more layer.

    Works for tables too; insert results then come back as primary-key tuples.
    """

    def __init__(self, database: Database, name: str, layers: Sequence[OptionsLayer]):
        self.database = database
        self.name = name
        self.layers = tuple(layers)
        self.url_builder = database.url_builder.child(name)
        self.field_converters: FieldConverters | None = None

    def command(self, name: str, options: OptionsLayer | None = None) -> Command:
        command = Command(name, self.url_builder, self.layers + _layers(options))
        if self.field_converters:
            command.with_field_converters(self.field_converters)
        return command

    def _factory(self, options: OptionsLayer | None):
        return lambda name: self.command(name, options)

    @property
    def _executor(self) -> CommandExecutor:
        return self.database.client.executor

    @property
    def _bulk(self) -> BulkOrchestrator:
        return self.database.client.bulk

    # ── Commands ─────────────────────────────────────────────────────

    def run_command(
        self,
        name: str,
        payload: Any = None,
        *,
        options: OptionsLayer | None = None,
        result_shape: ResultShape | None = None,
    ) -> ApiResponse:
        return self._executor.execute(self.command(name, options).with_payload(payload), result_shape)

    async def run_command_async(
        self,
        name: str,
        payload: Any = None,
        *,
        options: OptionsLayer | None = None,
        result_shape: ResultShape | None = None,
    ) -> ApiResponse:
        return await self._executor.execute_async(
            self.command(name, options).with_payload(payload), result_shape
        )

    # ── Bulk ─────────────────────────────────────────────────────────

    def insert_many(
        self,
        documents: Sequence[Any],
        *,
        ordered: bool = False,
        concurrency: int | None = None,
        chunk_size: int | None = None,
        options: OptionsLayer | None = None,
    ) -> InsertManyResult:
        return self._bulk.insert_many(
            self._factory(options),
            documents,
            self.database.client.insert_options(ordered, concurrency, chunk_size),
        )

    async def insert_many_async(
        self,
        documents: Sequence[Any],
        *,
        ordered: bool = False,
        concurrency: int | None = None,
        chunk_size: int | None = None,
        options: OptionsLayer | None = None,
    ) -> InsertManyResult:
        return await self._bulk.insert_many_async(
            self._factory(options),
            documents,
            self.database.client.insert_options(ordered, concurrency, chunk_size),
        )

    def delete_many(
        self, filter: Mapping[str, Any] | None = None, *, options: OptionsLayer | None = None
    ) -> DeleteResult:
        return self._bulk.delete_many(self._factory(options), filter)

    async def delete_many_async(
        self, filter: Mapping[str, Any] | None = None, *, options: OptionsLayer | None = None
    ) -> DeleteResult:
        return await self._bulk.delete_many_async(self._factory(options), filter)

    def update_many(
        self,
        filter: Mapping[str, Any],
        update: Mapping[str, Any],
        *,
        upsert: bool = False,
        options: OptionsLayer | None = None,
    ) -> UpdateResult:
        return self._bulk.update_many(self._factory(options), filter, update, upsert=upsert)

    async def update_many_async(
        self,
        filter: Mapping[str, Any],
        update: Mapping[str, Any],
        *,
        upsert: bool = False,
        options: OptionsLayer | None = None,
    ) -> UpdateResult:
        return await self._bulk.update_many_async(
            self._factory(options), filter, update, upsert=upsert
        )


__all__ = ["DataApiClient", "Database", "Collection"]
