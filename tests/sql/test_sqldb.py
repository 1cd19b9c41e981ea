# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Tests for sql.sqldb module - SqlDb database manager."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from api_broker.sql import Integer, SqlDb, String
from api_broker.sql.table import Table


class DummyTable(Table):
    """Minimal table for testing."""

    name = "dummy"


class ParentTable(Table):
    name = "parents"
    pkey = "id"

    def configure(self) -> None:
        self.columns.column("id", String)


class ChildTable(Table):
    name = "children"
    pkey = "id"

    def configure(self) -> None:
        self.columns.column("id", String)
        self.columns.column("parent_id", String).relation("parents", sql=True)
        self.columns.column("rank", Integer)


class TestSqlDbInit:
    """Tests for SqlDb initialization."""

    def test_init_creates_adapter(self):
        """SqlDb creates adapter from connection string."""
        db = SqlDb(":memory:")
        assert db.adapter is not None
        assert db.tables == {}

    def test_init_with_parent(self):
        """SqlDb stores parent reference."""
        parent = MagicMock()
        db = SqlDb(":memory:", parent=parent)
        assert db.parent is parent


class TestSqlDbEncryptionKey:
    """Tests for encryption_key property."""

    def test_encryption_key_none_without_parent(self):
        """encryption_key returns None when no parent."""
        db = SqlDb(":memory:")
        assert db.encryption_key is None

    def test_encryption_key_from_parent(self):
        """encryption_key is fetched from parent."""
        parent = MagicMock()
        parent.encryption_key = b"k" * 32
        db = SqlDb(":memory:", parent=parent)
        assert db.encryption_key == b"k" * 32

    def test_encryption_key_none_if_parent_has_no_attr(self):
        """encryption_key returns None if parent lacks attribute."""
        db = SqlDb(":memory:", parent=object())
        assert db.encryption_key is None


class TestSqlDbTableManagement:
    """Tests for add_table and table methods."""

    def test_add_table_registers_table(self):
        """add_table registers and instantiates table."""
        db = SqlDb(":memory:")
        table = db.add_table(DummyTable)
        assert "dummy" in db.tables
        assert isinstance(table, DummyTable)

    def test_add_table_without_name_raises(self):
        """add_table raises if table has no name."""

        class Nameless(Table):
            name = ""

        db = SqlDb(":memory:")
        with pytest.raises(ValueError, match="must define 'name'"):
            db.add_table(Nameless)

    def test_table_raises_for_unknown(self):
        """table() raises ValueError for unregistered table."""
        db = SqlDb(":memory:")
        with pytest.raises(ValueError, match="not registered"):
            db.table("nonexistent")


class TestSqlDbConnection:
    """Tests for connection context manager."""

    async def test_connection_provides_db(self):
        """connection() yields the SqlDb instance."""
        db = SqlDb(":memory:")
        async with db.connection() as yielded:
            assert yielded is db

    async def test_connection_commits_on_success(self, tmp_path):
        """connection() commits on successful exit."""
        db = SqlDb(str(tmp_path / "test.db"))
        async with db.connection():
            await db.execute("CREATE TABLE test (id INTEGER PRIMARY KEY, name TEXT)")
            await db.execute("INSERT INTO test (id, name) VALUES (1, 'Test')")

        async with db.connection():
            result = await db.fetch_one("SELECT * FROM test WHERE id = 1")
            assert result == {"id": 1, "name": "Test"}

    async def test_connection_rollbacks_on_exception(self, tmp_path):
        """connection() rolls back on exception."""
        db = SqlDb(str(tmp_path / "test.db"))
        async with db.connection():
            await db.execute("CREATE TABLE test (id INTEGER PRIMARY KEY, name TEXT)")

        with pytest.raises(ValueError):
            async with db.connection():
                await db.execute("INSERT INTO test (id, name) VALUES (1, 'Test')")
                raise ValueError("Test error")

        async with db.connection():
            assert await db.fetch_one("SELECT * FROM test WHERE id = 1") is None

    async def test_nested_connection_restores_outer(self, tmp_path):
        """A nested connection() block gets its own handle; the outer one comes back."""
        db = SqlDb(str(tmp_path / "test.db"))
        async with db.connection():
            outer = db.conn
            async with db.connection():
                assert db.conn is not outer
            assert db.conn is outer

    def test_conn_property_raises_outside_connection(self):
        """conn property raises RuntimeError outside connection context."""
        db = SqlDb(":memory:")
        with pytest.raises(RuntimeError, match="No active connection"):
            _ = db.conn


class TestSqlDbCrudHelpers:
    """Tests for the dict-based CRUD helpers."""

    async def test_insert_select_update_delete(self, sqlite_db):
        """Helpers build parameterized statements from dicts."""
        await sqlite_db.execute("CREATE TABLE items (id TEXT PRIMARY KEY, qty INTEGER)")
        await sqlite_db.insert("items", {"id": "a", "qty": 1})
        await sqlite_db.insert("items", {"id": "b", "qty": 2})

        rows = await sqlite_db.select("items", where={"qty": 2})
        assert rows == [{"id": "b", "qty": 2}]

        assert await sqlite_db.update("items", {"qty": 5}, {"id": "a"}) == 1
        assert await sqlite_db.count("items") == 2
        assert await sqlite_db.exists("items", {"qty": 5})

        assert await sqlite_db.delete("items", {"id": "a"}) == 1
        assert await sqlite_db.count("items") == 1

    async def test_select_order_and_limit(self, sqlite_db):
        """select() honours order_by and limit."""
        await sqlite_db.execute("CREATE TABLE items (id TEXT PRIMARY KEY, qty INTEGER)")
        for i in range(3):
            await sqlite_db.insert("items", {"id": f"i{i}", "qty": i})
        rows = await sqlite_db.select("items", ["id"], order_by="qty DESC", limit=2)
        assert [r["id"] for r in rows] == ["i2", "i1"]

    def test_where_clause(self):
        """Conditions are AND-ed; prefix renames the bound parameters."""
        db = SqlDb(":memory:")
        assert db.where_clause(None) == ("", {})
        assert db.where_clause({"id": "a", "qty": 2}) == (
            ' WHERE "id" = :id AND "qty" = :qty',
            {"id": "a", "qty": 2},
        )
        assert db.where_clause({"id": "a"}, prefix="whr_") == (
            ' WHERE "id" = :whr_id',
            {"whr_id": "a"},
        )


class TestSqlDbCheckStructure:
    """Tests for check_structure method."""

    async def test_check_structure_creates_all_tables(self):
        """check_structure() calls create_schema on all tables."""
        db = SqlDb(":memory:")
        db.add_table(DummyTable)
        db.tables["dummy"].create_schema = AsyncMock()

        async with db.connection():
            await db.check_structure()

        db.tables["dummy"].create_schema.assert_called_once()

    async def test_referenced_tables_are_created_first(self):
        """A table named in a FOREIGN KEY is created before the table that references it."""
        db = SqlDb(":memory:")
        db.add_table(ChildTable)
        db.add_table(ParentTable)
        order: list[str] = []
        for table in db.tables.values():
            table.create_schema = AsyncMock(
                side_effect=lambda name=table.name: order.append(name)
            )

        async with db.connection():
            await db.check_structure()

        assert order == ["parents", "children"]


class TestSqlDbDiscover:
    """Tests for discover method."""

    def test_discover_finds_registry_tables(self):
        """discover() registers every registry table of the broker."""
        db = SqlDb(":memory:")
        tables = db.discover("api_broker.entities")

        assert {t.name for t in tables} == {
            "providers",
            "provider_endpoints",
            "external_apis",
            "db_connections",
            "dynamic_queries",
            "api_keys",
            "call_log",
        }

    def test_discover_skips_already_registered(self):
        """A second discover() of the same package registers nothing new."""
        db = SqlDb(":memory:")
        count = len(db.discover("api_broker.entities"))
        assert db.discover("api_broker.entities") == []
        assert len(db.tables) == count

    def test_discover_empty_package(self):
        """discover() handles packages with no table modules."""
        db = SqlDb(":memory:")
        assert db.discover("api_broker.sql") == []

    def test_discover_unknown_package_raises(self):
        """discover() does not hide a misspelled package name."""
        db = SqlDb(":memory:")
        with pytest.raises(ModuleNotFoundError):
            db.discover("nonexistent.package")

    def test_discover_prefers_derived_table(self):
        """A subclass registered later replaces its base class."""
        from api_broker.entities.provider.table import ProvidersTable

        class AuditedProvidersTable(ProvidersTable):
            audited = True

        db = SqlDb(":memory:")
        db.discover("api_broker.entities")
        db.add_table(AuditedProvidersTable)
        assert getattr(db.table("providers"), "audited", False) is True


@pytest.mark.postgres
class TestSqlDbPostgres:
    """Registry tables on PostgreSQL."""

    async def test_provider_round_trip(self, pg_db):
        """Providers store and load on PostgreSQL with booleans and JSON intact."""
        table = pg_db.table("providers")
        await table.insert(
            {
                "id": "P1",
                "name": "Demo",
                "base_url": "https://api.example.com",
                "requires_auth": True,
                "auth_config": {"header_name": "X-Key", "header_value": "v"},
            }
        )
        record = await table.record(pkey="P1")
        assert record["requires_auth"] == 1
        assert record["auth_config"] == {"header_name": "X-Key", "header_value": "v"}
