# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Registry store: table registry, schema creation and per-task connections."""

from __future__ import annotations

import importlib
import pkgutil
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import TYPE_CHECKING, Any

from .adapters import DbAdapter, get_adapter

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Mapping

    from .table import Table

# Connection of the innermost connection() block of the running task
_current_conn: ContextVar[Any] = ContextVar("db_conn", default=None)


class SqlDb:
    """Async access to the registry database.

    The backend follows the connection string: a file path or
    ``sqlite:/path`` selects SQLite, ``postgresql://...`` PostgreSQL.

    Every query runs on the connection of the enclosing connection() block,
    which commits on success and rolls back on error. A nested block gets
    its own connection and transaction.

    Example:
        ::

            db = SqlDb("/data/broker.db", parent=broker)
            db.discover("api_broker.entities")
            async with db.connection():
                await db.check_structure()
                provider = await db.table("providers").record("P1")
            await db.shutdown()

    Args:
        connection_string: SQLite path or PostgreSQL URL.
        parent: Owner exposing ``encryption_key`` (the broker).
    """

    def __init__(self, connection_string: str, parent: Any = None):
        self.connection_string = connection_string
        self.parent = parent
        self.adapter: DbAdapter = get_adapter(connection_string)
        self.tables: dict[str, Table] = {}

    @property
    def encryption_key(self) -> bytes | None:
        return getattr(self.parent, "encryption_key", None) if self.parent is not None else None

    @property
    def conn(self) -> Any:
        """Connection of the current connection() block.

        Raises:
            RuntimeError: Called outside connection().
        """
        current = _current_conn.get()
        if current is None:
            raise RuntimeError("No active connection. Use 'async with db.connection():'")
        return current

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[SqlDb]:
        conn = await self.adapter.acquire()
        token = _current_conn.set(conn)
        try:
            yield self
            await self.adapter.commit(conn)
        except Exception:
            await self.adapter.rollback(conn)
            raise
        finally:
            _current_conn.reset(token)
            await self.adapter.release(conn)

    async def shutdown(self) -> None:
        await self.adapter.shutdown()

    # -------------------------------------------------------------------------
    # Tables
    # -------------------------------------------------------------------------

    def add_table(self, table_class: type[Table]) -> Table:
        if not getattr(table_class, "name", None):
            raise ValueError(f"Table class {table_class.__name__} must define 'name'")
        instance = table_class(self)
        self.tables[instance.name] = instance
        return instance

    def discover(self, *packages: str) -> list[Table]:
        """Register the Table classes found in ``<package>.<entity>.table`` modules.

        For a table name defined more than once, the most derived class wins,
        also over a table registered earlier.

        Returns:
            Tables registered by this call.
        """
        chosen: dict[str, type[Table]] = {}
        for package in packages:
            for cls in self._find_table_classes(package):
                current = chosen.get(cls.name)
                if current is None or issubclass(cls, current):
                    chosen[cls.name] = cls

        registered = []
        for cls in chosen.values():
            present = self.tables.get(cls.name)
            if present is None or (
                cls is not type(present) and issubclass(cls, type(present))
            ):
                registered.append(self.add_table(cls))
        return registered

    def table(self, name: str) -> Table:
        """Registered table by name.

        Raises:
            ValueError: Unknown table.
        """
        try:
            return self.tables[name]
        except KeyError:
            raise ValueError(f"Table '{name}' not registered. Use add_table() first.") from None

    async def check_structure(self) -> None:
        """Create missing tables, referenced tables before their referrers."""
        done: set[str] = set()

        async def create(table: Table) -> None:
            if table.name in done:
                return
            done.add(table.name)
            for col in table.columns.values():
                if col.relation_sql and col.relation_table in self.tables:
                    await create(self.tables[col.relation_table])
            await table.create_schema()

        for table in list(self.tables.values()):
            await create(table)

    # -------------------------------------------------------------------------
    # Queries on the current connection
    # -------------------------------------------------------------------------

    async def execute(self, query: str, params: dict[str, Any] | None = None) -> int:
        return await self.adapter.execute(self.conn, query, params)

    async def fetch_one(
        self, query: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any] | None:
        return await self.adapter.fetch_one(self.conn, query, params)

    async def fetch_all(
        self, query: str, params: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        return await self.adapter.fetch_all(self.conn, query, params)

    def _sql_name(self, name: str) -> str:
        return self.adapter._sql_name(name)

    def _placeholder(self, name: str) -> str:
        return self.adapter._placeholder(name)

    def where_clause(
        self, where: Mapping[str, Any] | None, prefix: str = ""
    ) -> tuple[str, dict[str, Any]]:
        """Equality conditions joined by AND, with their bound parameters.

        Returns ("", {}) for no conditions, else (" WHERE ...", params).
        prefix keeps parameter names apart from other clauses.
        """
        if not where:
            return "", {}
        conditions = " AND ".join(
            f"{self._sql_name(k)} = {self._placeholder(prefix + k)}" for k in where
        )
        return f" WHERE {conditions}", {prefix + k: v for k, v in where.items()}

    async def insert(self, table: str, values: dict[str, Any]) -> int:
        names = ", ".join(self._sql_name(k) for k in values)
        slots = ", ".join(self._placeholder(k) for k in values)
        return await self.execute(f"INSERT INTO {table} ({names}) VALUES ({slots})", values)

    async def insert_returning_id(
        self, table: str, values: dict[str, Any], pk_col: str = "id"
    ) -> Any:
        return await self.adapter.insert_returning_id(self.conn, table, values, pk_col)

    async def select(
        self,
        table: str,
        columns: list[str] | None = None,
        where: dict[str, Any] | None = None,
        order_by: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        names = ", ".join(self._sql_name(c) for c in columns) if columns else "*"
        clause, params = self.where_clause(where)
        query = f"SELECT {names} FROM {table}{clause}"
        if order_by:
            query += f" ORDER BY {order_by}"
        if limit:
            query += f" LIMIT {int(limit)}"
        return await self.fetch_all(query, params)

    async def update(self, table: str, values: dict[str, Any], where: dict[str, Any]) -> int:
        assignments = ", ".join(
            f"{self._sql_name(k)} = {self._placeholder('val_' + k)}" for k in values
        )
        clause, params = self.where_clause(where, prefix="whr_")
        params.update({f"val_{k}": v for k, v in values.items()})
        return await self.execute(f"UPDATE {table} SET {assignments}{clause}", params)

    async def delete(self, table: str, where: dict[str, Any]) -> int:
        clause, params = self.where_clause(where)
        return await self.execute(f"DELETE FROM {table}{clause}", params)

    async def exists(self, table: str, where: dict[str, Any]) -> bool:
        clause, params = self.where_clause(where)
        return await self.fetch_one(f"SELECT 1 FROM {table}{clause} LIMIT 1", params) is not None

    async def count(self, table: str, where: dict[str, Any] | None = None) -> int:
        clause, params = self.where_clause(where)
        row = await self.fetch_one(f"SELECT COUNT(*) AS cnt FROM {table}{clause}", params)
        return int(row["cnt"]) if row else 0

    def _find_table_classes(self, package_path: str) -> list[type[Table]]:
        """Table subclasses defined in the ``table`` module of each sub-package."""
        from .table import Table

        package = importlib.import_module(package_path)
        found: list[type[Table]] = []
        for _, name, is_pkg in pkgutil.iter_modules(getattr(package, "__path__", None) or []):
            if not is_pkg:
                continue
            module_path = f"{package_path}.{name}.table"
            try:
                module = importlib.import_module(module_path)
            except ModuleNotFoundError as e:
                if e.name != module_path:
                    raise
                continue
            found.extend(
                obj
                for attr, obj in vars(module).items()
                if not attr.startswith("_")
                and isinstance(obj, type)
                and issubclass(obj, Table)
                and obj is not Table
                and getattr(obj, "name", None)
                and obj.__module__ == module.__name__
            )
        return found


__all__ = ["SqlDb"]
