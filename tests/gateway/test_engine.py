# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Tests for gateway.engine - parameter binding, execution and result caching."""

from __future__ import annotations

import pytest
import pytest_asyncio

from api_broker.errors import InactiveError, NotFoundError, ParameterError
from api_broker.gateway.engine import DynamicQueryEngine, bind_parameters


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


async def add_query(broker, **fields) -> str:
    record = {
        "connection_id": "C1",
        "name": fields.get("id", "query"),
        "method": "GET",
        **fields,
    }
    async with broker.db.connection():
        await broker.db.table("dynamic_queries").insert(record)
    return record["id"]


@pytest_asyncio.fixture
async def users_query(broker, sqlite_connection) -> str:
    """Cached query over users filtered by active (default 1)."""
    return await add_query(
        broker,
        id="Q1",
        query="SELECT id, name FROM users WHERE active = ? ORDER BY id",
        path="users/by-status",
        parameters=[{"name": "active", "default": 1}],
        cache_enabled=1,
        cache_duration=60,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine(broker, clock) -> DynamicQueryEngine:
    return DynamicQueryEngine(broker.db, broker.connections, broker.call_logger, clock=clock)


class TestBindParameters:
    """Mapping caller params onto the declared list."""

    def test_list_is_positional(self):
        assert bind_parameters(["a", "b"], [1, 2]) == [1, 2]

    def test_dict_follows_declaration_order(self):
        assert bind_parameters(["a", "b"], {"b": 2, "a": 1}) == [1, 2]

    def test_defaults_and_optional(self):
        """Defaults fill gaps; optional params without default bind None."""
        declared = [{"name": "limit", "default": 10}, {"name": "q", "required": False}]
        assert bind_parameters(declared, {}) == [10, None]

    def test_missing_required(self):
        """Missing required names are reported together."""
        with pytest.raises(ParameterError) as exc_info:
            bind_parameters(["a", {"name": "b"}, {"name": "c", "default": 0}], {})
        assert exc_info.value.context["missing"] == ["a", "b"]

    def test_named_params_without_declaration(self):
        with pytest.raises(ParameterError, match="declares no parameters"):
            bind_parameters([], {"x": 1})

    def test_none_means_no_values(self):
        assert bind_parameters(None, None) == []
        assert bind_parameters([{"name": "a", "default": 3}], None) == [3]


class TestExecute:
    """execute() and the per-query result cache."""

    async def test_rows_and_response(self, engine, users_query):
        result = await engine.execute(users_query, {"active": 1})
        assert result.data == [{"id": 1, "name": "ada"}, {"id": 5, "name": "eve"}]
        assert result.cached is False
        body = result.to_response()
        assert body["success"] is True
        assert body["metadata"]["responseSize"] == result.response_size
        assert body["metadata"]["cached"] is False

    async def test_default_parameter(self, engine, users_query):
        """Omitted params take their declared default."""
        result = await engine.execute(users_query)
        assert [row["name"] for row in result.data] == ["ada", "eve"]

    async def test_second_call_is_cached(self, engine, users_query, call_records):
        """Within cache_duration the same params are served from the cache."""
        first = await engine.execute(users_query, {"active": 0})
        second = await engine.execute(users_query, {"active": 0})
        assert second.cached is True
        assert second.data == first.data == [{"id": 2, "name": "bob"}]

        queries = await call_records(kind="query")
        assert sorted(r["cached"] for r in queries) == [False, True]
        assert len(await call_records(kind="connection")) == 1

    async def test_cache_expires(self, engine, users_query, clock):
        """After cache_duration the query runs again."""
        await engine.execute(users_query)
        clock.now = 61
        assert (await engine.execute(users_query)).cached is False

    async def test_cache_is_per_parameter_set(self, engine, users_query):
        """Different values are cached separately and invalidate() drops them all."""
        await engine.execute(users_query, {"active": 0})
        await engine.execute(users_query, [1])
        assert (await engine.execute(users_query, [0])).cached is True
        assert engine.invalidate(users_query) == 2
        assert engine.invalidate(users_query) == 0
        assert (await engine.execute(users_query, [1])).cached is False

    async def test_uncached_query(self, broker, engine, sqlite_connection):
        """With cache_enabled off every call hits the database."""
        query_id = await add_query(broker, id="Q2", query="SELECT COUNT(*) AS n FROM users", path="count")
        await engine.execute(query_id)
        result = await engine.execute(query_id)
        assert result.cached is False
        assert result.data == [{"n": 3}]
        assert engine.invalidate(query_id) == 0

    async def test_unknown_query(self, engine):
        with pytest.raises(NotFoundError):
            await engine.execute("missing")

    async def test_inactive_query(self, broker, engine, sqlite_connection):
        query_id = await add_query(broker, id="Q3", query="SELECT 1", path="one", active=0)
        with pytest.raises(InactiveError, match="Query is inactive"):
            await engine.execute(query_id)

    async def test_missing_parameter(self, broker, engine, sqlite_connection):
        query_id = await add_query(
            broker,
            id="Q4",
            query="SELECT * FROM users WHERE id = ?",
            path="users/one",
            parameters=["id"],
        )
        with pytest.raises(ParameterError) as exc_info:
            await engine.execute(query_id, {})
        assert exc_info.value.context["missing"] == ["id"]


class TestTestDefinition:
    """Dry runs of stored or unsaved queries."""

    async def test_stored_query(self, broker, engine, sqlite_connection):
        query_id = await add_query(broker, id="Q5", query="SELECT * FROM users ORDER BY id", path="all")
        result = await engine.test_definition(query_id)
        assert result["success"] is True
        assert result["row_count"] == 3
        assert [row["id"] for row in result["sample_data"]] == [1, 2, 5]

    async def test_unsaved_query_failure(self, engine, sqlite_connection):
        """SQL errors are reported, not raised."""
        result = await engine.test_definition(connection_id=sqlite_connection, query="SELECT * FROM nope")
        assert result["success"] is False
        assert "no such table" in result["message"]
        assert result["sample_data"] == []

    async def test_requires_a_query(self, engine):
        with pytest.raises(ParameterError):
            await engine.test_definition()
