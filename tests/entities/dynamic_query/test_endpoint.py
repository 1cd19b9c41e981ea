# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Tests for DynamicQueryEndpoint - CRUD with dry runs, execute and cache eviction."""

from __future__ import annotations

import pytest


async def add_users_query(invoke, **fields):
    return await invoke(
        "dynamic_queries",
        "add",
        **{
            "id": "Q1",
            "connection_id": "C1",
            "name": "users by status",
            "query": "SELECT id, name FROM users WHERE active = ? ORDER BY id",
            "path": "/users/by-status",
            "parameters": [{"name": "active", "default": 1}],
            "cache_enabled": True,
            "cache_duration": 60,
            **fields,
        },
    )


class TestDynamicQueryEndpoint:
    async def test_add_reports_dry_run(self, invoke, sqlite_connection):
        """add() stores the query and returns the outcome of a test run."""
        result = await invoke(
            "dynamic_queries",
            "add",
            connection_id=sqlite_connection,
            name="all users",
            query="SELECT * FROM users",
            path="users",
        )
        assert result["path"] == "/users"
        assert result["test"]["success"] is True
        assert result["test"]["row_count"] == 3

    async def test_add_keeps_query_when_dry_run_fails(self, invoke, sqlite_connection):
        result = await invoke(
            "dynamic_queries",
            "add",
            connection_id=sqlite_connection,
            name="broken",
            query="SELECT * FROM nope",
            path="broken",
        )
        assert result["test"]["success"] is False
        assert (await invoke("dynamic_queries", "get", id=result["id"]))["name"] == "broken"

    async def test_add_unknown_connection(self, invoke):
        with pytest.raises(ValueError, match="Database connection 'nope' not found"):
            await invoke(
                "dynamic_queries", "add", connection_id="nope", name="x", query="SELECT 1", path="x"
            )

    async def test_execute_with_named_and_positional_params(self, invoke, sqlite_connection):
        await add_users_query(invoke)
        named = await invoke("dynamic_queries", "execute", id="Q1", params={"active": 0})
        assert named["data"] == [{"id": 2, "name": "bob"}]
        assert named["cached"] is False
        positional = await invoke("dynamic_queries", "execute", id="Q1", params=[0])
        assert positional["cached"] is True

    async def test_execute_params_as_json_text(self, invoke, sqlite_connection):
        await add_users_query(invoke)
        result = await invoke("dynamic_queries", "execute", id="Q1", params='{"active": 1}')
        assert [row["id"] for row in result["data"]] == [1, 5]

    async def test_update_evicts_cache_and_retests(self, broker, invoke, sqlite_connection):
        await add_users_query(invoke)
        await invoke("dynamic_queries", "execute", id="Q1")
        assert (await invoke("dynamic_queries", "execute", id="Q1"))["cached"] is True

        renamed = await invoke("dynamic_queries", "update", id="Q1", name="renamed")
        assert "test" not in renamed
        assert (await invoke("dynamic_queries", "execute", id="Q1"))["cached"] is False

        changed = await invoke(
            "dynamic_queries", "update", id="Q1", query="SELECT COUNT(*) AS n FROM users"
        )
        assert changed["test"]["sample_data"] == [{"n": 3}]

    async def test_invalidate_and_delete(self, broker, invoke, sqlite_connection):
        await add_users_query(invoke)
        await invoke("dynamic_queries", "execute", id="Q1")
        assert await invoke("dynamic_queries", "invalidate", id="Q1") == {"id": "Q1", "evicted": 1}

        await invoke("dynamic_queries", "execute", id="Q1")
        assert await invoke("dynamic_queries", "delete", id="Q1") is True
        assert broker.engine.invalidate("Q1") == 0

    async def test_test_stored_query(self, invoke, sqlite_connection):
        await add_users_query(invoke, query="SELECT name FROM users ORDER BY id", parameters=[])
        result = await invoke("dynamic_queries", "test", id="Q1")
        assert result["sample_data"] == [{"name": "ada"}, {"name": "bob"}, {"name": "eve"}]

    async def test_list_by_connection(self, invoke, sqlite_connection):
        await add_users_query(invoke)
        assert [q["id"] for q in await invoke("dynamic_queries", "list", connection_id="C1")] == ["Q1"]
        assert await invoke("dynamic_queries", "list", connection_id="other") == []
