"""Tests for CommandExecutor against a fake Data API."""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal

import httpx
import pytest

from dataspine.core.enums import RunMode
from dataspine.core.errors import (
    AuthenticationError,
    CodecError,
    CommandError,
    ConnectTimeoutError,
    OperationCancelledError,
    RequestTimeoutError,
    TransportError,
)
from dataspine.core.options import OptionsLayer, TimeoutOptions, merge_options
from dataspine.execution.cancellation import CancellationSignal, CancellationSource
from dataspine.execution.executor import build_headers
from dataspine.execution.response import ResultShape

from tests._support import ENDPOINT, TOKEN, envelope


def _slow(seconds: float):
    async def handler(request, body):
        await asyncio.sleep(seconds)
        return envelope(status={"ok": 1})

    return handler


class TestHeaders:
    """Request headers carry the token and caller extras."""

    def test_build_headers(self):
        eff = merge_options([OptionsLayer(token="t", headers={"X-Extra": "1"})])
        headers = build_headers(eff)
        assert headers["Authorization"] == "Bearer t"
        assert headers["Token"] == "t"
        assert headers["X-Extra"] == "1"
        assert headers["Content-Type"] == "application/json"

    def test_no_token(self):
        assert "Authorization" not in build_headers(merge_options([]))


class TestSuccess:
    """Happy-path exchanges."""

    @pytest.mark.asyncio
    async def test_request_shape_and_decoding(self, make_client):
        client, api = make_client(
            lambda request, body: envelope(
                status={"count": 3}, data={"document": {"at": {"$date": 0}}}
            )
        )
        db = client.get_database()
        response = await db.run_command_async("countDocuments", {"filter": {}})
        request = api.requests[0]
        assert str(request.url) == f"{ENDPOINT}/api/json/v1/default_keyspace"
        assert request.headers["Token"] == TOKEN
        assert api.bodies[0] == {"countDocuments": {"filter": {}}}
        assert response.status == {"count": 3}
        assert response.data["document"]["at"] == datetime(1970, 1, 1, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_empty_body_is_valid(self, make_client):
        client, _ = make_client(lambda request, body: httpx.Response(200))
        response = await client.get_database().run_command_async("noop")
        assert response.is_empty
        assert response.status is None

    @pytest.mark.asyncio
    async def test_debug_mode_runs(self, make_client):
        client, api = make_client(
            lambda request, body: envelope(status={"ok": 1}),
            options=OptionsLayer(run_mode=RunMode.DEBUG),
        )
        response = await client.get_database().run_command_async("ping")
        assert response.status == {"ok": 1}
        assert api.calls == 1

    def test_blocking_execute(self, make_client):
        client, api = make_client(lambda request, body: envelope(status={"collections": ["a"]}))
        response = client.get_database().run_command("findCollections")
        assert response.status == {"collections": ["a"]}
        assert api.calls == 1


class TestStatusClassification:
    """HTTP status codes map to distinct errors."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [408, 504])
    async def test_timeout_statuses(self, make_client, status):
        client, _ = make_client(lambda request, body: httpx.Response(status))
        with pytest.raises(RequestTimeoutError) as exc_info:
            await client.get_database().run_command_async("find")
        assert exc_info.value.context.http_status == status

    @pytest.mark.asyncio
    async def test_unauthorized(self, make_client):
        client, _ = make_client(lambda request, body: httpx.Response(401))
        with pytest.raises(AuthenticationError):
            await client.get_database().run_command_async("find")

    @pytest.mark.asyncio
    async def test_server_error(self, make_client):
        client, _ = make_client(lambda request, body: httpx.Response(500, text="kaput"))
        with pytest.raises(TransportError) as exc_info:
            await client.get_database().run_command_async("find")
        assert exc_info.value.status_code == 500
        assert exc_info.value.body == "kaput"
        assert exc_info.value.context.command == "find"

    @pytest.mark.asyncio
    async def test_envelope_errors(self, make_client):
        client, _ = make_client(
            lambda request, body: envelope(
                errors=[
                    {"message": "first", "errorCode": "A"},
                    {"message": "second", "errorCode": "B"},
                ]
            )
        )
        with pytest.raises(CommandError) as exc_info:
            await client.get_database().run_command_async("find")
        assert exc_info.value.error_codes == ["A", "B"]

    @pytest.mark.asyncio
    async def test_invalid_json_body(self, make_client):
        client, _ = make_client(lambda request, body: httpx.Response(200, content=b"<html>"))
        with pytest.raises(CodecError):
            await client.get_database().run_command_async("find")


class TestTransportFailures:
    """Exceptions raised by httpx are classified."""

    @pytest.mark.asyncio
    async def test_connect_timeout(self, make_client):
        def handler(request, body):
            raise httpx.ConnectTimeout("slow handshake", request=request)

        client, _ = make_client(handler)
        with pytest.raises(ConnectTimeoutError) as exc_info:
            await client.get_database().run_command_async("find")
        assert exc_info.value.source is CancellationSource.CONNECT_TIMEOUT

    @pytest.mark.asyncio
    async def test_connection_refused(self, make_client):
        def handler(request, body):
            raise httpx.ConnectError("refused", request=request)

        client, _ = make_client(handler)
        with pytest.raises(TransportError) as exc_info:
            await client.get_database().run_command_async("find")
        assert exc_info.value.status_code is None
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_unserializable_payload_not_sent(self, make_client):
        client, api = make_client(lambda request, body: envelope())
        with pytest.raises(CodecError):
            await client.get_database().run_command_async("insertOne", {"x": math.nan})
        assert api.calls == 0


class TestTimeoutsAndCancellation:
    """Budgets and caller signals abort the exchange."""

    @pytest.mark.asyncio
    async def test_request_timeout(self, make_client):
        client, _ = make_client(
            _slow(5), options=OptionsLayer(timeouts=TimeoutOptions(request_timeout_ms=50))
        )
        loop = asyncio.get_running_loop()
        started = loop.time()
        with pytest.raises(RequestTimeoutError) as exc_info:
            await client.get_database().run_command_async("find")
        assert loop.time() - started < 2
        assert exc_info.value.source is CancellationSource.REQUEST_TIMEOUT
        assert exc_info.value.timeout_ms == 50

    @pytest.mark.asyncio
    async def test_zero_request_timeout_is_unlimited(self, make_client):
        client, _ = make_client(
            _slow(0.1),
            options=OptionsLayer(
                timeouts=TimeoutOptions(request_timeout_ms=0, bulk_operation_timeout_ms=0)
            ),
        )
        response = await client.get_database().run_command_async("find")
        assert response.status == {"ok": 1}

    @pytest.mark.asyncio
    async def test_most_specific_timeout_applies(self, make_client):
        client, _ = make_client(
            _slow(0.2), options=OptionsLayer(timeouts=TimeoutOptions(request_timeout_ms=50))
        )
        db = client.get_database()
        per_call = OptionsLayer(timeouts=TimeoutOptions(request_timeout_ms=2_000))
        response = await db.run_command_async("find", options=per_call)
        assert response.status == {"ok": 1}

    @pytest.mark.asyncio
    async def test_cancelled_before_send(self, make_client):
        client, api = make_client(lambda request, body: envelope())
        signal = CancellationSignal()
        signal.cancel()
        with pytest.raises(OperationCancelledError):
            await client.get_database().run_command_async(
                "find", options=OptionsLayer(cancellation=signal)
            )
        assert api.calls == 0

    @pytest.mark.asyncio
    async def test_cancelled_in_flight(self, make_client):
        client, _ = make_client(_slow(5))
        signal = CancellationSignal()
        asyncio.get_running_loop().call_later(0.05, signal.cancel)
        with pytest.raises(OperationCancelledError):
            await client.get_database().run_command_async(
                "find", options=OptionsLayer(cancellation=signal)
            )


@dataclass
class Ledger:
    amount: Decimal


class TestExactDecimals:
    """Decimal values cross the wire without losing digits."""

    @pytest.mark.asyncio
    async def test_decimal_round_trip(self, make_client):
        amount = Decimal("12345678901234567890.123456789")
        client, api = make_client(
            lambda request, body: httpx.Response(
                200, content=b'{"data":{"document":{"amount":12345678901234567890.123456789}}}'
            )
        )
        ledger = client.get_database().get_collection("ledger")
        response = await ledger.run_command_async(
            "findOneAndUpdate",
            {"update": {"$set": {"amount": amount}}},
            result_shape=ResultShape(document=Ledger),
        )
        assert b'"amount":12345678901234567890.123456789' in api.requests[0].content
        assert response.data["document"] == Ledger(amount)

    @pytest.mark.asyncio
    async def test_non_finite_decimal_sent_as_string(self, make_client):
        client, api = make_client(lambda request, body: envelope(status={"ok": 1}))
        await client.get_database().run_command_async("insertOne", {"x": Decimal("-Infinity")})
        assert api.bodies[0] == {"insertOne": {"x": "-Infinity"}}
