# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Base adapter class for async database backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class DbAdapter(ABC):
    """Abstract base class for async registry store adapters.

    Connection model:
    - acquire(): Returns a new connection (from pool or new file handle)
    - release(conn): Returns connection to pool or closes it
    - shutdown(): Closes connection pool (application shutdown only)

    SqlDb manages connection lifecycle via contextvars for per-request isolation.
    Subclasses set the placeholder attribute for parameter binding
    (`:name` for SQLite, `%(name)s` for PostgreSQL).
    """

    placeholder: str = ":name"

    def pk_column(self, name: str) -> str:
        """Return SQL definition for autoincrement primary key column."""
        return f'"{name}" INTEGER PRIMARY KEY'

    def for_update_clause(self) -> str:
        """Return FOR UPDATE clause if supported, empty string otherwise."""
        return ""

    @abstractmethod
    async def acquire(self) -> Any:
        """Acquire a new connection."""
        ...

    @abstractmethod
    async def release(self, conn: Any) -> None:
        """Release a connection (return to pool or close)."""
        ...

    @abstractmethod
    async def shutdown(self) -> None:
        """Close connection pool (application shutdown)."""
        ...

    @abstractmethod
    async def execute(
        self, conn: Any, query: str, params: dict[str, Any] | None = None
    ) -> int:
        """Execute query on connection, return affected row count."""
        ...

    @abstractmethod
    async def fetch_one(
        self, conn: Any, query: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any] | None:
        """Execute query on connection, return single row as dict or None."""
        ...

    @abstractmethod
    async def fetch_all(
        self, conn: Any, query: str, params: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """Execute query on connection, return all rows as list of dicts."""
        ...

    @abstractmethod
    async def commit(self, conn: Any) -> None:
        """Commit transaction on connection."""
        ...

    @abstractmethod
    async def rollback(self, conn: Any) -> None:
        """Rollback transaction on connection."""
        ...

    @abstractmethod
    async def insert_returning_id(
        self, conn: Any, table: str, values: dict[str, Any], pk_col: str = "id"
    ) -> Any:
        """Insert a row and return the generated primary key."""
        ...

    def _sql_name(self, name: str) -> str:
        """Return quoted SQL identifier for column/table name."""
        return f'"{name}"'

    def _placeholder(self, name: str) -> str:
        """Return placeholder for named parameter."""
        return self.placeholder.replace("name", name)
