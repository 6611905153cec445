"""Tests for BulkOrchestrator: chunked inserts and paginated writes."""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass

import httpx
import pytest
from bson import ObjectId

from dataspine.codec import DocumentField, document_field
from dataspine.core.errors import (
    BulkOperationError,
    BulkOperationTimeoutError,
    TransportError,
    ValidationError,
)
from dataspine.core.options import OptionsLayer, TimeoutOptions
from dataspine.execution.bulk import InsertManyOptions
from dataspine.execution.results import DeleteResult

from tests._support import envelope

UUID_TEXT = "2e9b4d07-9c5c-4f0f-8f6f-2f5e3c1e0c11"
OID_TEXT = "65f0c0ffee0123456789abcd"
BULK_50MS = OptionsLayer(timeouts=TimeoutOptions(bulk_operation_timeout_ms=50))


@dataclass
class Note:
    key: str | None = document_field(DocumentField.ID, default=None)
    text: str = ""


def _docs(n: int) -> list[dict]:
    return [{"_id": f"d{i}"} for i in range(n)]


def _echo_ids(request, body):
    documents = body["insertMany"]["documents"]
    return envelope(status={"insertedIds": [d["_id"] for d in documents]})


def _stuck(seconds: float = 5):
    async def handler(request, body):
        await asyncio.sleep(seconds)
        return envelope(status={})

    return handler


def _page_state(body, name):
    return (body[name].get("options") or {}).get("pageState")


class TestInsertManyOptions:
    """Option resolution and validation."""

    def test_defaults(self):
        assert InsertManyOptions().resolve() == (50, 20)
        assert InsertManyOptions(ordered=True).resolve() == (50, 1)

    @pytest.mark.parametrize("chunk_size", [0, 101])
    def test_chunk_size_bounds(self, chunk_size):
        with pytest.raises(ValidationError):
            InsertManyOptions(chunk_size=chunk_size).resolve()

    def test_zero_concurrency(self):
        with pytest.raises(ValidationError):
            InsertManyOptions(concurrency=0).resolve()


class TestInsertMany:
    """Chunking, concurrency and id collection."""

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, make_client):
        concurrency = 3
        in_flight = 0
        peak = 0

        async def handler(request, body):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.02)
            in_flight -= 1
            return _echo_ids(request, body)

        client, api = make_client(handler)
        users = client.get_database().get_collection("users")
        docs = _docs(3 * concurrency + 1)
        result = await users.insert_many_async(docs, chunk_size=1, concurrency=concurrency)

        assert api.calls == len(docs)
        assert 1 < peak <= concurrency
        assert result.inserted_count == len(docs)
        assert set(result.inserted_ids) == {d["_id"] for d in docs}

    @pytest.mark.asyncio
    async def test_chunks_and_wire_shape(self, make_client):
        client, api = make_client(_echo_ids)
        users = client.get_database().get_collection("users")
        result = await users.insert_many_async(_docs(5), chunk_size=2, ordered=True)

        assert api.calls == 3
        assert [len(b["insertMany"]["documents"]) for b in api.bodies] == [2, 2, 1]
        assert all(b["insertMany"]["options"] == {"ordered": True} for b in api.bodies)
        assert str(api.requests[0].url).endswith("/api/json/v1/default_keyspace/users")
        assert result.inserted_ids == ("d0", "d1", "d2", "d3", "d4")

    @pytest.mark.asyncio
    async def test_ordered_concurrent_rejected_before_io(self, make_client):
        client, api = make_client(_echo_ids)
        users = client.get_database().get_collection("users")
        with pytest.raises(ValidationError, match="Cannot run ordered insert_many concurrently"):
            await users.insert_many_async(_docs(4), ordered=True, concurrency=2)
        assert api.calls == 0

    @pytest.mark.asyncio
    async def test_empty_documents_rejected(self, make_client):
        client, api = make_client(_echo_ids)
        with pytest.raises(ValidationError):
            await client.get_database().get_collection("users").insert_many_async([])
        assert api.calls == 0

    @pytest.mark.asyncio
    async def test_invalid_id_rejected_before_io(self, make_client):
        client, api = make_client(_echo_ids)
        users = client.get_database().get_collection("users")
        with pytest.raises(ValidationError, match="document 1"):
            await users.insert_many_async([{"_id": "ok"}, {"_id": None}])
        with pytest.raises(ValidationError):
            await users.insert_many_async([Note(key=None, text="x")])
        assert api.calls == 0

    @pytest.mark.asyncio
    async def test_collection_ids_decoded(self, make_client):
        client, _ = make_client(
            lambda request, body: envelope(
                status={"insertedIds": [UUID_TEXT, {"$objectId": OID_TEXT}, "plain"]}
            )
        )
        users = client.get_database().get_collection("users")
        result = await users.insert_many_async([{"a": 1}, {"a": 2}, {"a": 3}])
        assert result.inserted_ids == (uuid.UUID(UUID_TEXT), ObjectId(OID_TEXT), "plain")

    @pytest.mark.asyncio
    async def test_table_ids_decoded_by_schema(self, make_client):
        client, _ = make_client(
            lambda request, body: envelope(
                status={
                    "primaryKeySchema": {"id": {"type": "int"}, "uid": {"type": "uuid"}},
                    "insertedIds": [[1, UUID_TEXT], [2, UUID_TEXT]],
                }
            )
        )
        table = client.get_database().get_collection("events")
        result = await table.insert_many_async([{"id": 1}, {"id": 2}])
        assert result.inserted_ids == ((1, uuid.UUID(UUID_TEXT)), (2, uuid.UUID(UUID_TEXT)))

    def test_blocking_insert_many(self, make_client):
        client, api = make_client(_echo_ids)
        result = client.get_database().get_collection("users").insert_many(_docs(3), chunk_size=2)
        assert result.inserted_count == 3
        assert api.calls == 2


class TestInsertManyFailures:
    """Failures keep the partial result."""

    @pytest.mark.asyncio
    async def test_ordered_failure_keeps_earlier_chunks(self, make_client):
        def handler(request, body):
            if body["insertMany"]["documents"][0]["_id"] == "d2":
                return httpx.Response(500, text="chunk failed")
            return _echo_ids(request, body)

        client, api = make_client(handler)
        users = client.get_database().get_collection("users")
        with pytest.raises(BulkOperationError) as exc_info:
            await users.insert_many_async(_docs(6), chunk_size=2, ordered=True)

        error = exc_info.value
        assert api.calls == 2
        assert error.partial_result.inserted_ids == ("d0", "d1")
        assert isinstance(error.cause, TransportError)
        assert error.retryable is True

    @pytest.mark.asyncio
    async def test_unordered_failure_cancels_the_rest(self, make_client):
        async def handler(request, body):
            doc_id = body["insertMany"]["documents"][0]["_id"]
            if doc_id == "d1":
                return httpx.Response(500)
            if doc_id != "d0":
                await asyncio.sleep(5)
            return _echo_ids(request, body)

        client, _ = make_client(handler)
        users = client.get_database().get_collection("users")
        loop = asyncio.get_running_loop()
        started = loop.time()
        with pytest.raises(BulkOperationError) as exc_info:
            await users.insert_many_async(_docs(4), chunk_size=1, concurrency=4)

        assert loop.time() - started < 2
        assert set(exc_info.value.partial_result.inserted_ids) <= {"d0"}

    @pytest.mark.asyncio
    async def test_bulk_timeout(self, make_client):
        client, _ = make_client(_stuck(), options=BULK_50MS)
        users = client.get_database().get_collection("users")
        with pytest.raises(BulkOperationError, match="bulk_operation_timeout_ms") as exc_info:
            await users.insert_many_async(_docs(3), chunk_size=1)

        assert isinstance(exc_info.value.cause, BulkOperationTimeoutError)
        assert exc_info.value.partial_result.inserted_count == 0


class TestDeleteMany:
    """Cursor-paginated deletes."""

    @pytest.mark.asyncio
    async def test_follows_page_state(self, make_client):
        def handler(request, body):
            state = _page_state(body, "deleteMany")
            following = {None: "p1", "p1": "p2", "p2": None}[state]
            status = {"deletedCount": 10}
            if following:
                status["nextPageState"] = following
            return envelope(status=status)

        client, api = make_client(handler)
        users = client.get_database().get_collection("users")
        result = await users.delete_many_async({"status": "stale"})

        assert result == DeleteResult(deleted_count=30)
        assert api.calls == 3
        assert [_page_state(b, "deleteMany") for b in api.bodies] == [None, "p1", "p2"]
        assert all(b["deleteMany"]["filter"] == {"status": "stale"} for b in api.bodies)

    @pytest.mark.asyncio
    async def test_follows_more_data(self, make_client):
        pages = iter([{"deletedCount": 20, "moreData": True}] * 2 + [{"deletedCount": 5}])
        client, api = make_client(lambda request, body: envelope(status=next(pages)))
        result = await client.get_database().get_collection("users").delete_many_async()
        assert result.deleted_count == 45
        assert api.calls == 3

    @pytest.mark.asyncio
    async def test_failure_keeps_partial_count(self, make_client):
        def handler(request, body):
            if _page_state(body, "deleteMany"):
                return httpx.Response(503)
            return envelope(status={"deletedCount": 10, "nextPageState": "p1"})

        client, _ = make_client(handler)
        with pytest.raises(BulkOperationError) as exc_info:
            await client.get_database().get_collection("users").delete_many_async({})
        assert exc_info.value.partial_result == DeleteResult(deleted_count=10)

    @pytest.mark.asyncio
    async def test_bulk_timeout_bounds_pagination(self, make_client):
        async def handler(request, body):
            await asyncio.sleep(0.02)
            return envelope(status={"deletedCount": 1, "moreData": True})

        client, _ = make_client(handler, options=BULK_50MS)
        with pytest.raises(BulkOperationError) as exc_info:
            await client.get_database().get_collection("users").delete_many_async({})
        assert isinstance(exc_info.value.cause, BulkOperationTimeoutError)
        assert exc_info.value.partial_result.deleted_count >= 1

    def test_blocking_delete_many(self, make_client):
        client, _ = make_client(lambda request, body: envelope(status={"deletedCount": 2}))
        assert client.get_database().get_collection("users").delete_many({}).deleted_count == 2


class TestUpdateMany:
    """Cursor-paginated updates."""

    @pytest.mark.asyncio
    async def test_sums_pages(self, make_client):
        def handler(request, body):
            if _page_state(body, "updateMany") is None:
                return envelope(
                    status={"matchedCount": 3, "modifiedCount": 2, "nextPageState": "p1"}
                )
            return envelope(status={"matchedCount": 1, "modifiedCount": 1})

        client, api = make_client(handler)
        users = client.get_database().get_collection("users")
        result = await users.update_many_async({"a": 1}, {"$set": {"b": 2}})

        assert (result.matched_count, result.modified_count) == (4, 3)
        assert result.upserted_id is None
        assert api.calls == 2
        assert api.bodies[0]["updateMany"]["update"] == {"$set": {"b": 2}}
        assert api.bodies[0]["updateMany"]["options"] == {"upsert": False}

    @pytest.mark.asyncio
    async def test_upserted_id(self, make_client):
        client, api = make_client(
            lambda request, body: envelope(
                status={"matchedCount": 0, "modifiedCount": 0, "upsertedId": {"$uuid": UUID_TEXT}}
            )
        )
        users = client.get_database().get_collection("users")
        result = await users.update_many_async({"a": 1}, {"$set": {"b": 2}}, upsert=True)
        assert result.upserted_id == uuid.UUID(UUID_TEXT)
        assert api.bodies[0]["updateMany"]["options"]["upsert"] is True

    @pytest.mark.asyncio
    async def test_empty_update_rejected(self, make_client):
        client, api = make_client(lambda request, body: envelope())
        with pytest.raises(ValidationError):
            await client.get_database().get_collection("users").update_many_async({}, {})
        assert api.calls == 0
