"""Tests for Command URL and body construction."""

from __future__ import annotations

from datetime import UTC, datetime

from dataspine.codec import EPOCH_DATE_CONVERTER, ValueCodec
from dataspine.core.options import OptionsLayer, merge_options
from dataspine.execution.command import Command, DatabaseUrlBuilder

ENDPOINT = "https://db.example.com"


class TestDatabaseUrlBuilder:
    """URL layout and segment trimming."""

    def test_database_level(self):
        url = DatabaseUrlBuilder(ENDPOINT).build(merge_options([]))
        assert url == "https://db.example.com/api/json/v1/default_keyspace"

    def test_collection_level_with_extra(self):
        builder = DatabaseUrlBuilder(ENDPOINT + "/").child("users")
        url = builder.build(merge_options([OptionsLayer(keyspace="ks")]), ["/extra/ ", ""])
        assert url == "https://db.example.com/api/json/v1/ks/users/extra"

    def test_keyspace_omitted(self):
        options = merge_options([OptionsLayer(include_keyspace_in_url=False)])
        url = DatabaseUrlBuilder(ENDPOINT).child("users").build(options)
        assert url == "https://db.example.com/api/json/v1/users"


class TestCommand:
    """Body encoding and option layering."""

    def test_named_body(self):
        cmd = Command("insertOne", DatabaseUrlBuilder(ENDPOINT), payload={"document": {"a": 1}})
        assert cmd.build_body(ValueCodec()) == {"insertOne": {"document": {"a": 1}}}

    def test_named_body_without_payload(self):
        cmd = Command("findCollections", DatabaseUrlBuilder(ENDPOINT))
        assert cmd.build_body(ValueCodec()) == {"findCollections": {}}

    def test_raw_body(self):
        cmd = Command("", DatabaseUrlBuilder(ENDPOINT), payload={"count": {}})
        assert cmd.build_body(ValueCodec()) == {"count": {}}

    def test_field_converters_applied(self):
        cmd = Command("insertOne", DatabaseUrlBuilder(ENDPOINT)).with_payload(
            {"document": {"ts": datetime(1970, 1, 1, tzinfo=UTC)}}
        ).with_field_converters({"ts": EPOCH_DATE_CONVERTER})
        assert cmd.build_body(ValueCodec()) == {"insertOne": {"document": {"ts": 0}}}

    def test_add_options_invalidates_memo(self):
        cmd = Command("find", DatabaseUrlBuilder(ENDPOINT), [None, OptionsLayer(keyspace="a")])
        assert cmd.options.keyspace == "a"
        cmd.add_options(OptionsLayer(keyspace="b"))
        assert cmd.options.keyspace == "b"
        assert len(cmd.layers) == 2

    def test_build_url_with_paths(self):
        cmd = Command("find", DatabaseUrlBuilder(ENDPOINT).child("t")).add_url_path("x")
        assert cmd.build_url() == "https://db.example.com/api/json/v1/default_keyspace/t/x"
