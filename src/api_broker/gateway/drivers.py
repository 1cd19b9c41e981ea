# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Database drivers for user-registered data sources.

Every driver takes SQL with positional ``?`` placeholders and returns rows
as a list of dicts. Placeholders are rewritten to the driver's paramstyle
outside quoted literals.

Drivers:
    mysql: pymysql, blocking, run on the worker pool.
    postgresql: psycopg AsyncConnection.
    sqlite: aiosqlite; ``database`` is the file path.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import Any

import aiosqlite
import psycopg
import pymysql
import pymysql.cursors
from psycopg.rows import dict_row

from ..errors import ParameterError, UpstreamError
from .deadline import await_with_deadline, call_with_deadline, run_in_thread


def convert_qmarks(query: str, marker: str = "%s") -> str:
    """Rewrite ``?`` placeholders to marker, skipping quoted literals.

    Literal ``%`` outside quotes is doubled when marker is ``%s`` so that
    format-style drivers do not read it as a placeholder.
    """
    out: list[str] = []
    quote: str | None = None
    for ch in query:
        if quote:
            if ch == quote:
                quote = None
            out.append("%%" if ch == "%" and marker == "%s" else ch)
            continue
        if ch in ("'", '"', "`"):
            quote = ch
            out.append(ch)
        elif ch == "?":
            out.append(marker)
        elif ch == "%" and marker == "%s":
            out.append("%%")
        else:
            out.append(ch)
    return "".join(out)


@dataclass(frozen=True)
class ConnectionConfig:
    """Connection settings as stored in db_connections.

    ``host``/``port`` are the database address as seen from the tunnel's
    SSH gateway when use_tunnel is set.
    """

    database: str
    dialect: str = "mysql"
    host: str | None = None
    port: int | None = 3306
    username: str | None = None
    password: str | None = field(default=None, repr=False)
    use_ssl: bool = False
    use_tunnel: bool = False
    tunnel_config: dict[str, Any] | None = field(default=None, repr=False)
    id: str | None = None
    name: str | None = None
    active: bool = True

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> ConnectionConfig:
        return cls(
            id=record.get("id"),
            name=record.get("name"),
            dialect=str(record.get("dialect") or "mysql").lower(),
            host=record.get("host"),
            port=int(record["port"]) if record.get("port") is not None else None,
            database=str(record.get("database") or ""),
            username=record.get("username"),
            password=record.get("password"),
            use_ssl=bool(record.get("use_ssl")),
            use_tunnel=bool(record.get("use_tunnel")),
            tunnel_config=record.get("tunnel_config"),
            active=bool(record.get("active", True)),
        )

    def at(self, host: str, port: int) -> ConnectionConfig:
        """Return a copy pointing at another address (a tunnel's local end)."""
        return replace(self, host=host, port=port)


class DriverConnection(ABC):
    """An open database handle."""

    @abstractmethod
    async def execute(self, query: str, params: Sequence[Any] | None = None) -> list[dict[str, Any]]:
        """Run one statement. Returns result rows, or [] for statements without rows."""

    @abstractmethod
    async def close(self) -> None: ...


class Driver(ABC):
    dialect: str

    @abstractmethod
    async def connect(self, config: ConnectionConfig, timeout: float) -> DriverConnection:
        """Open a connection within timeout seconds.

        Raises:
            BrokerTimeoutError: Connect exceeded timeout.
            UpstreamError: The server refused or failed the connection.
        """


# -----------------------------------------------------------------------------
# MySQL
# -----------------------------------------------------------------------------


class MysqlConnection(DriverConnection):
    def __init__(self, conn: pymysql.connections.Connection):
        self._conn = conn

    def _execute(self, query: str, params: Sequence[Any] | None) -> list[dict[str, Any]]:
        with self._conn.cursor() as cursor:
            cursor.execute(convert_qmarks(query) if params else query, tuple(params) if params else None)
            rows = cursor.fetchall() if cursor.description else []
        return [dict(row) for row in rows]

    async def execute(self, query: str, params: Sequence[Any] | None = None) -> list[dict[str, Any]]:
        try:
            return await run_in_thread(self._execute, query, params)
        except pymysql.MySQLError as e:
            raise UpstreamError(str(e), error=str(e)) from e

    async def close(self) -> None:
        if self._conn.open:
            await run_in_thread(self._conn.close)


class MysqlDriver(Driver):
    dialect = "mysql"

    def _connect(self, config: ConnectionConfig, timeout: float) -> pymysql.connections.Connection:
        return pymysql.connect(
            host=config.host,
            port=config.port or 3306,
            user=config.username,
            password=config.password or "",
            database=config.database,
            connect_timeout=max(1, int(timeout)),
            ssl={"check_hostname": False} if config.use_ssl else None,
            cursorclass=pymysql.cursors.DictCursor,
            autocommit=True,
        )

    async def connect(self, config: ConnectionConfig, timeout: float) -> DriverConnection:
        try:
            conn = await call_with_deadline(
                self._connect,
                config,
                timeout,
                timeout=timeout,
                dispose=lambda late: late.close(),
                message=f"Database connection timeout after {timeout:g} seconds",
            )
        except pymysql.MySQLError as e:
            raise UpstreamError(f"Database connection failed: {e}", error=str(e)) from e
        return MysqlConnection(conn)


# -----------------------------------------------------------------------------
# PostgreSQL
# -----------------------------------------------------------------------------


class PostgresConnection(DriverConnection):
    def __init__(self, conn: psycopg.AsyncConnection):
        self._conn = conn

    async def execute(self, query: str, params: Sequence[Any] | None = None) -> list[dict[str, Any]]:
        try:
            async with self._conn.cursor() as cursor:
                await cursor.execute(
                    convert_qmarks(query) if params else query, tuple(params) if params else None
                )
                if cursor.description is None:
                    return []
                return list(await cursor.fetchall())
        except psycopg.Error as e:
            raise UpstreamError(str(e), error=str(e)) from e

    async def close(self) -> None:
        await self._conn.close()


class PostgresDriver(Driver):
    dialect = "postgresql"

    async def connect(self, config: ConnectionConfig, timeout: float) -> DriverConnection:
        pending = psycopg.AsyncConnection.connect(
            host=config.host,
            port=config.port or 5432,
            dbname=config.database,
            user=config.username,
            password=config.password,
            sslmode="require" if config.use_ssl else "prefer",
            connect_timeout=max(1, int(timeout)),
            autocommit=True,
            row_factory=dict_row,
        )
        try:
            conn = await await_with_deadline(
                pending,
                timeout,
                dispose=lambda late: late.close(),
                message=f"Database connection timeout after {timeout:g} seconds",
            )
        except psycopg.Error as e:
            raise UpstreamError(f"Database connection failed: {e}", error=str(e)) from e
        return PostgresConnection(conn)


# -----------------------------------------------------------------------------
# SQLite
# -----------------------------------------------------------------------------


class SqliteConnection(DriverConnection):
    def __init__(self, conn: aiosqlite.Connection):
        self._conn = conn

    async def execute(self, query: str, params: Sequence[Any] | None = None) -> list[dict[str, Any]]:
        try:
            async with self._conn.execute(query, tuple(params or ())) as cursor:
                rows = await cursor.fetchall()
                if cursor.description is None:
                    await self._conn.commit()
                    return []
                cols = [c[0] for c in cursor.description]
            await self._conn.commit()
            return [dict(zip(cols, row, strict=True)) for row in rows]
        except aiosqlite.Error as e:
            raise UpstreamError(str(e), error=str(e)) from e

    async def close(self) -> None:
        await self._conn.close()


class SqliteDriver(Driver):
    dialect = "sqlite"

    async def connect(self, config: ConnectionConfig, timeout: float) -> DriverConnection:
        try:
            conn = await await_with_deadline(
                aiosqlite.connect(config.database, timeout=timeout),
                timeout,
                dispose=lambda late: late.close(),
                message=f"Database connection timeout after {timeout:g} seconds",
            )
        except aiosqlite.Error as e:
            raise UpstreamError(f"Database connection failed: {e}", error=str(e)) from e
        return SqliteConnection(conn)


DRIVERS: dict[str, Driver] = {
    "mysql": MysqlDriver(),
    "postgresql": PostgresDriver(),
    "sqlite": SqliteDriver(),
}


def get_driver(dialect: str) -> Driver:
    """Return the driver for a dialect.

    Raises:
        ParameterError: Unknown dialect.
    """
    try:
        return DRIVERS[dialect]
    except KeyError:
        raise ParameterError(f"Unsupported dialect '{dialect}'") from None


__all__ = [
    "ConnectionConfig",
    "DRIVERS",
    "Driver",
    "DriverConnection",
    "MysqlDriver",
    "PostgresDriver",
    "SqliteDriver",
    "convert_qmarks",
    "get_driver",
]
