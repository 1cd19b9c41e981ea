# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""PostgreSQL async adapter using psycopg3 with connection pooling.

Uses connection-per-request model: acquire() gets from pool,
release() returns to pool. Each request gets an isolated transaction.
"""

from __future__ import annotations

import asyncio
import re
from typing import Any

from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from .base import DbAdapter

_NAMED_PARAM = re.compile(r"(?<!:):([a-zA-Z_][a-zA-Z0-9_]*)")


def convert_named_placeholders(query: str) -> str:
    """Convert :name placeholders to %(name)s for psycopg."""
    return _NAMED_PARAM.sub(r"%(\1)s", query)


class PostgresAdapter(DbAdapter):
    """PostgreSQL async adapter with connection pooling.

    The pool is opened lazily on first acquire().
    """

    placeholder = "%(name)s"

    def __init__(self, dsn: str, pool_size: int = 10, connect_timeout: float = 10.0):
        self.dsn = dsn
        self.pool_size = pool_size
        self.connect_timeout = connect_timeout
        self._pool: AsyncConnectionPool | None = None

    def pk_column(self, name: str) -> str:
        """Return SQL definition for autoincrement primary key column (PostgreSQL)."""
        return f'"{name}" SERIAL PRIMARY KEY'

    def for_update_clause(self) -> str:
        return " FOR UPDATE"

    async def _ensure_pool(self) -> AsyncConnectionPool:
        if self._pool is not None:
            return self._pool

        pool = AsyncConnectionPool(self.dsn, min_size=1, max_size=self.pool_size, open=False)
        try:
            await asyncio.wait_for(
                pool.open(wait=True, timeout=self.connect_timeout),
                timeout=self.connect_timeout + 1,
            )
        except asyncio.TimeoutError:
            await pool.close()
            raise TimeoutError(
                f"PostgreSQL connection timed out after {self.connect_timeout}s. "
                "Check credentials and server availability."
            ) from None
        except Exception as e:
            await pool.close()
            raise ConnectionError(f"PostgreSQL connection failed: {e}") from e
        self._pool = pool
        return pool

    async def acquire(self) -> Any:
        """Acquire connection from pool."""
        pool = await self._ensure_pool()
        return await pool.getconn()

    async def release(self, conn: Any) -> None:
        """Return connection to pool."""
        if self._pool:
            await self._pool.putconn(conn)

    async def shutdown(self) -> None:
        """Close connection pool (application shutdown)."""
        if self._pool:
            await self._pool.close()
            self._pool = None

    async def commit(self, conn: Any) -> None:
        await conn.commit()

    async def rollback(self, conn: Any) -> None:
        await conn.rollback()

    async def execute(self, conn: Any, query: str, params: dict[str, Any] | None = None) -> int:
        """Execute query, return affected row count."""
        async with conn.cursor() as cur:
            await cur.execute(convert_named_placeholders(query), params or {})
            return cur.rowcount

    async def fetch_one(
        self, conn: Any, query: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any] | None:
        """Execute query, return single row as dict or None."""
        async with conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(convert_named_placeholders(query), params or {})
            return await cur.fetchone()

    async def fetch_all(
        self, conn: Any, query: str, params: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """Execute query, return all rows as list of dicts."""
        async with conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(convert_named_placeholders(query), params or {})
            return await cur.fetchall()

    async def insert_returning_id(
        self, conn: Any, table: str, values: dict[str, Any], pk_col: str = "id"
    ) -> Any:
        """Insert a row and return the generated primary key (RETURNING)."""
        cols = list(values.keys())
        placeholders = ", ".join(self._placeholder(c) for c in cols)
        col_list = ", ".join(self._sql_name(c) for c in cols)
        query = f'INSERT INTO {table} ({col_list}) VALUES ({placeholders}) RETURNING "{pk_col}"'
        async with conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(query, values)
            row = await cur.fetchone()
            return row[pk_col] if row else None
