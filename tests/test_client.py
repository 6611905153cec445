"""Tests for the client → database → collection layer cascade."""

from __future__ import annotations

import logging

import pytest

from dataspine import DataApiClient, OptionsLayer, TimeoutOptions
from dataspine.codec import EPOCH_DATE_CONVERTER
from dataspine.core.errors import ConfigError
from dataspine.core.logging import ROOT_LOGGER
from dataspine.core.settings import DataApiSettings

from tests._support import ENDPOINT, TOKEN, envelope


def _ok(request, body):
    return envelope(status={"ok": 1})


class TestLayerCascade:
    """Each handle appends its own layer; the last one wins."""

    def test_layers_accumulate(self, make_client):
        client, _ = make_client(_ok, options=OptionsLayer(keyspace="client_ks"))
        db = client.get_database(options=OptionsLayer(headers={"X-Db": "1"}))
        users = db.get_collection(
            "users", options=OptionsLayer(timeouts=TimeoutOptions(request_timeout_ms=1_234))
        )
        command = users.command("find", OptionsLayer(keyspace="call_ks"))
        eff = command.options
        assert eff.token == TOKEN
        assert eff.keyspace == "call_ks"
        assert dict(eff.headers) == {"X-Db": "1"}
        assert eff.request_timeout_ms == 1_234

    def test_token_argument_overrides_options(self, make_client):
        client, _ = make_client(_ok, options=OptionsLayer(token="from-options"))
        assert client.get_database().command().options.token == TOKEN

    def test_keyspace_argument(self, make_client):
        client, _ = make_client(_ok)
        db = client.get_database(keyspace="analytics", options=OptionsLayer(headers={"X": "1"}))
        assert db.command().options.keyspace == "analytics"
        assert db.command().options.headers["X"] == "1"

    @pytest.mark.asyncio
    async def test_keyspace_in_url(self, make_client):
        client, api = make_client(_ok)
        users = client.get_database(keyspace="analytics").get_collection("users")
        await users.run_command_async("findOne", {"filter": {}})
        assert str(api.requests[0].url) == f"{ENDPOINT}/api/json/v1/analytics/users"
        assert api.bodies[0] == {"findOne": {"filter": {}}}

    def test_collection_field_converters(self, make_client):
        client, _ = make_client(_ok)
        users = client.get_database().get_collection("users")
        users.field_converters = {"ts": EPOCH_DATE_CONVERTER}
        assert users.command("insertOne").field_converters == {"ts": EPOCH_DATE_CONVERTER}


class TestClientConstruction:
    """Endpoints and settings."""

    def test_missing_endpoint(self):
        client = DataApiClient(TOKEN)
        with pytest.raises(ConfigError):
            client.get_database()
        client.close()

    def test_from_settings(self):
        settings = DataApiSettings(token="AstraCS:x", endpoint=ENDPOINT, keyspace="ks")
        with DataApiClient.from_settings(settings) as client:
            options = client.get_database().command().options
            assert options.token == "AstraCS:x"
            assert options.keyspace == "ks"

    def test_insert_defaults_from_settings(self):
        settings = DataApiSettings(endpoint=ENDPOINT, insert_chunk_size=10, insert_concurrency=4)
        with DataApiClient.from_settings(settings) as client:
            assert client.insert_options(False, None, None).resolve() == (10, 4)
            assert client.insert_options(True, None, None).resolve() == (10, 1)
            assert client.insert_options(False, 2, 5).resolve() == (5, 2)

    def test_from_settings_applies_log_level(self):
        settings = DataApiSettings(endpoint=ENDPOINT, log_level="DEBUG", log_format="json")
        with DataApiClient.from_settings(settings):
            assert logging.getLogger(ROOT_LOGGER).level == logging.DEBUG
