# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""On-demand connections to registered databases.

The ConnectionBroker resolves a stored connection configuration, opens a
direct or SSH-tunneled link and runs queries on it. Two acquisition modes
share one primitive, lease():

- cached: get_connection() keeps one link per connection id for ttl
  seconds. Concurrent misses on the same id await one in-flight connect.
  A link leaving the cache (expired, replaced, closed) is closed once no
  lease still holds it.
- ephemeral: execute_query() and test_connection() open a fresh link and
  close it (database handle first, then tunnel) when the block exits,
  including on the error path. Their tunnels bind a free local port, so
  they never clash with the cached link on a configured local_port.

Example:
    ::

        broker = ConnectionBroker(db, call_logger, TunnelManager())
        rows = await broker.execute_query("C1", "SELECT 1 AS ok")
        async with broker.lease("C1") as link:
            await link.execute("SELECT * FROM users WHERE id = ?", [5])
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Callable, Mapping, Sequence
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from ..errors import BrokerError, InactiveError, NotFoundError, UpstreamError
from .cache import SingleFlight, TtlCache
from .deadline import await_with_deadline
from .drivers import DRIVERS, ConnectionConfig, Driver, DriverConnection, get_driver
from .tunnel import Tunnel, TunnelManager

if TYPE_CHECKING:
    from ..sql import SqlDb
    from .call_logger import CallLogger

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_CONNECTION_TTL = 300.0

_SCHEMA_QUERIES = {
    "mysql": (
        "SELECT TABLE_NAME AS table_name, COLUMN_NAME AS column_name, "
        "DATA_TYPE AS data_type, IS_NULLABLE AS is_nullable "
        "FROM information_schema.COLUMNS WHERE TABLE_SCHEMA = DATABASE() "
        "ORDER BY TABLE_NAME, ORDINAL_POSITION"
    ),
    "postgresql": (
        "SELECT table_name, column_name, data_type, is_nullable "
        "FROM information_schema.columns WHERE table_schema = 'public' "
        "ORDER BY table_name, ordinal_position"
    ),
}


def elapsed_ms(start: float) -> int:
    return max(0, int((time.perf_counter() - start) * 1000))


class DatabaseLink:
    """A live driver connection plus its optional tunnel.

    close() is idempotent. While leases are held, close() only marks the
    link and the last release() performs the actual close.
    """

    def __init__(self, config: ConnectionConfig, conn: DriverConnection, tunnel: Tunnel | None = None):
        self.config = config
        self.conn = conn
        self.tunnel = tunnel
        self.opened_at = time.time()
        self.closed = False
        self._leases = 0
        self._close_requested = False

    async def execute(self, query: str, params: Sequence[Any] | None = None) -> list[dict[str, Any]]:
        if self.closed:
            raise UpstreamError("Database link is closed")
        return await self.conn.execute(query, params)

    def acquire(self) -> None:
        self._leases += 1

    async def release(self) -> None:
        self._leases -= 1
        if self._leases <= 0 and self._close_requested:
            await self.close()

    async def close(self) -> None:
        """Close the database handle, then the tunnel."""
        if self.closed:
            return
        if self._leases > 0:
            self._close_requested = True
            return
        self.closed = True
        try:
            await self.conn.close()
        except Exception as e:
            logger.warning("Closing database connection %s failed: %s", self.config.id, e)
        finally:
            if self.tunnel is not None:
                await self.tunnel.close()


class ConnectionBroker:
    """Open, cache and use database links.

    Args:
        db: Registry store with the db_connections table.
        call_logger: Recorder for connection call records.
        tunnels: TunnelManager used for use_tunnel connections.
        connect_timeout: Deadline for connection setup and tests, seconds.
        ttl: Lifetime of a cached link, seconds.
        clock: Monotonic clock for the link cache. Injectable for tests.
        drivers: Dialect to Driver map. Injectable for tests.
    """

    def __init__(
        self,
        db: SqlDb,
        call_logger: CallLogger,
        tunnels: TunnelManager,
        *,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        ttl: float = DEFAULT_CONNECTION_TTL,
        clock: Callable[[], float] = time.monotonic,
        drivers: Mapping[str, Driver] | None = None,
    ):
        self.db = db
        self.call_logger = call_logger
        self.tunnels = tunnels
        self.connect_timeout = connect_timeout
        self._drivers = dict(drivers) if drivers is not None else DRIVERS
        self._links: TtlCache[str, DatabaseLink] = TtlCache(ttl, clock=clock, on_evict=self._on_evict)
        self._flight = SingleFlight()
        self._closing: set[asyncio.Task[None]] = set()

    # -------------------------------------------------------------------------
    # Link lifecycle
    # -------------------------------------------------------------------------

    def _on_evict(self, connection_id: str, link: DatabaseLink) -> None:
        logger.debug("Evicting cached connection %s", connection_id)
        task = asyncio.get_running_loop().create_task(link.close())
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    def _driver(self, dialect: str) -> Driver:
        if dialect in self._drivers:
            return self._drivers[dialect]
        return get_driver(dialect)

    async def load_config(self, connection_id: str) -> ConnectionConfig:
        """Load a stored connection configuration.

        Raises:
            NotFoundError: Unknown connection id.
            InactiveError: Connection is disabled.
        """
        async with self.db.connection():
            record = await self.db.table("db_connections").record(
                pkey=connection_id, ignore_missing=True
            )
        if not record:
            raise NotFoundError("Database connection not found")
        if not record.get("active"):
            raise InactiveError("Database connection is not active")
        return ConnectionConfig.from_record(record)

    async def open_link(
        self, config: ConnectionConfig, *, ephemeral_port: bool = False
    ) -> DatabaseLink:
        """Open a direct or tunneled link. The caller owns and closes it.

        Args:
            config: Connection to open.
            ephemeral_port: Bind the tunnel to a free local port instead of
                the configured local_port, which belongs to the cached link.

        Raises:
            BrokerTimeoutError: SSH or database connect exceeded the deadline.
            UpstreamError: SSH or database connect failed.
        """
        driver = self._driver(config.dialect)
        tunnel: Tunnel | None = None
        target = config
        try:
            if config.use_tunnel:
                tunnel_config = dict(config.tunnel_config or {})
                if ephemeral_port:
                    tunnel_config["local_port"] = 0
                tunnel = await self.tunnels.open(
                    tunnel_config, config.host or "127.0.0.1", config.port or 3306
                )
                target = config.at(tunnel.local_host, tunnel.local_port)
            conn = await driver.connect(target, self.connect_timeout)
        except BaseException:
            if tunnel is not None:
                await tunnel.close()
            raise
        return DatabaseLink(config, conn, tunnel)

    async def _populate(self, connection_id: str, api_key_id: str | None) -> DatabaseLink:
        start = time.perf_counter()
        try:
            config = await self.load_config(connection_id)
            link = await self.open_link(config)
        except Exception as e:
            logger.warning("Connection %s failed: %s", connection_id, e)
            self.call_logger.record(
                "connection",
                target_id=connection_id,
                api_key_id=api_key_id,
                action="connect",
                success=False,
                duration_ms=elapsed_ms(start),
                error=str(e),
            )
            raise
        self._links.set(connection_id, link)
        self.call_logger.record(
            "connection",
            target_id=connection_id,
            api_key_id=api_key_id,
            action="connect",
            success=True,
            duration_ms=elapsed_ms(start),
        )
        return link

    async def get_connection(self, connection_id: str, api_key_id: str | None = None) -> DatabaseLink:
        """Return the cached link for connection_id, opening it on a miss.

        Raises:
            NotFoundError: Unknown connection id.
            InactiveError: Connection is disabled.
            BrokerTimeoutError: Connect exceeded the deadline.
            UpstreamError: Connect failed.
        """
        self._links.purge_expired()
        link = self._links.get(connection_id)
        if link is not None and not link.closed:
            return link
        return await self._flight.run(
            connection_id, lambda: self._populate(connection_id, api_key_id)
        )

    @asynccontextmanager
    async def lease(
        self, connection_id: str, *, ephemeral: bool = False, api_key_id: str | None = None
    ) -> AsyncIterator[DatabaseLink]:
        """Scoped acquisition of a link.

        Ephemeral leases open a fresh link and close it on exit. Cached
        leases hold the shared link; its close is deferred to cache eviction.
        """
        if ephemeral:
            config = await self.load_config(connection_id)
            async with self._ephemeral(config) as link:
                yield link
            return
        link = await self.get_connection(connection_id, api_key_id)
        link.acquire()
        try:
            yield link
        finally:
            await link.release()

    @asynccontextmanager
    async def _ephemeral(self, config: ConnectionConfig) -> AsyncIterator[DatabaseLink]:
        link = await self.open_link(config, ephemeral_port=True)
        try:
            yield link
        finally:
            await link.close()

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def execute_query(
        self,
        connection_id: str,
        query: str,
        params: Sequence[Any] | None = None,
        *,
        api_key_id: str | None = None,
    ) -> list[dict[str, Any]]:
        """Run query on a fresh link, closing it (and its tunnel) afterwards.

        Raises:
            NotFoundError: Unknown connection id.
            InactiveError: Connection is disabled.
            BrokerTimeoutError: Connect exceeded the deadline.
            UpstreamError: Connect or query failed.
        """
        start = time.perf_counter()
        try:
            config = await self.load_config(connection_id)
            async with self._ephemeral(config) as link:
                rows = await link.execute(query, params)
        except Exception as e:
            error = e if isinstance(e, BrokerError) else UpstreamError(str(e), error=str(e))
            self.call_logger.record(
                "connection",
                target_id=connection_id,
                api_key_id=api_key_id,
                action="query",
                success=False,
                duration_ms=elapsed_ms(start),
                error=error.message,
            )
            if error is e:
                raise
            raise error from e
        self.call_logger.record(
            "connection",
            target_id=connection_id,
            api_key_id=api_key_id,
            action="query",
            success=True,
            duration_ms=elapsed_ms(start),
        )
        return rows

    async def _open_and_ping(self, config: ConnectionConfig) -> None:
        async with self._ephemeral(config) as link:
            await link.execute("SELECT 1")

    async def test_connection(
        self, config: ConnectionConfig | Mapping[str, Any], *, api_key_id: str | None = None
    ) -> dict[str, Any]:
        """Open an ephemeral link from an unsaved config and run SELECT 1.

        Never touches the link cache. Connection problems are reported in
        the result, not raised.

        Returns:
            {"success": bool, "message": str, "duration_ms": int}
        """
        target_id = config.id if isinstance(config, ConnectionConfig) else config.get("id")
        start = time.perf_counter()
        try:
            if not isinstance(config, ConnectionConfig):
                from ..entities.db_connection.table import check_connection_config

                record = dict(config)
                check_connection_config(record)
                config = ConnectionConfig.from_record(record)
            await await_with_deadline(
                self._open_and_ping(config),
                self.connect_timeout,
                message=f"Connection timeout after {self.connect_timeout:g} seconds",
            )
        except Exception as e:
            message = e.message if isinstance(e, BrokerError) else str(e)
            duration = elapsed_ms(start)
            self.call_logger.record(
                "connection",
                target_id=target_id,
                api_key_id=api_key_id,
                action="test",
                success=False,
                duration_ms=duration,
                error=message,
            )
            return {"success": False, "message": message, "duration_ms": duration}
        duration = elapsed_ms(start)
        self.call_logger.record(
            "connection",
            target_id=target_id,
            api_key_id=api_key_id,
            action="test",
            success=True,
            duration_ms=duration,
        )
        return {"success": True, "message": "Connection successful", "duration_ms": duration}

    async def close_connection(self, connection_id: str) -> bool:
        """Drop and close the cached link for connection_id, if any."""
        link = self._links.pop(connection_id)
        if link is None:
            return False
        await link.close()
        return True

    async def get_schema(self, connection_id: str) -> dict[str, list[dict[str, Any]]]:
        """List tables and their columns through the cached link.

        Returns:
            {table_name: [{"name", "type", "nullable"}, ...]}
        """
        async with self.lease(connection_id) as link:
            if link.config.dialect == "sqlite":
                return await self._sqlite_schema(link)
            rows = await link.execute(_SCHEMA_QUERIES[link.config.dialect])
        schema: dict[str, list[dict[str, Any]]] = {}
        for row in rows:
            schema.setdefault(row["table_name"], []).append(
                {
                    "name": row["column_name"],
                    "type": row["data_type"],
                    "nullable": str(row["is_nullable"]).upper() == "YES",
                }
            )
        return schema

    async def _sqlite_schema(self, link: DatabaseLink) -> dict[str, list[dict[str, Any]]]:
        tables = await link.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table' "
            "AND name NOT LIKE 'sqlite_%' ORDER BY name"
        )
        schema: dict[str, list[dict[str, Any]]] = {}
        for table in tables:
            quoted = table["name"].replace('"', '""')
            columns = await link.execute(f'PRAGMA table_info("{quoted}")')
            schema[table["name"]] = [
                {"name": col["name"], "type": col["type"], "nullable": not col["notnull"]}
                for col in columns
            ]
        return schema

    @property
    def cached_ids(self) -> list[str]:
        return self._links.keys()

    async def shutdown(self) -> None:
        """Close every cached link and wait for pending closes."""
        for connection_id in self._links.keys():
            link = self._links.pop(connection_id)
            if link is not None:
                await link.close()
        if self._closing:
            await asyncio.gather(*list(self._closing), return_exceptions=True)


__all__ = ["ConnectionBroker", "DatabaseLink", "elapsed_ms"]
