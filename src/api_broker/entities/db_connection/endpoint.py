# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Database connection REST API endpoint.

Besides CRUD, exposes the Connection Broker operations an operator needs:
``test`` (stored connection), ``test_config`` (unsaved settings), ``schema``
and ``close`` (drop the cached link).

Editing or deleting a connection closes its cached link so the next query
reconnects with the new settings.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from ...interface.endpoint_base import POST, BaseEndpoint

if TYPE_CHECKING:
    from .table import DbConnectionsTable

SECRET_FIELDS = ("ssh_password", "ssh_private_key", "ssh_private_key_passphrase")
MASK = "********"


def redact(record: dict[str, Any]) -> dict[str, Any]:
    """Return a copy with the password and SSH credentials masked."""
    result = dict(record)
    if result.get("password"):
        result["password"] = MASK
    tunnel = result.get("tunnel_config")
    if isinstance(tunnel, dict):
        result["tunnel_config"] = {
            k: (MASK if k in SECRET_FIELDS and v else v) for k, v in tunnel.items()
        }
    return result


class DbConnectionEndpoint(BaseEndpoint):
    """Managed database connections. Secrets are never echoed back."""

    name = "db_connections"

    def __init__(self, table: DbConnectionsTable):
        super().__init__(table)

    async def _raw(self, id: str) -> dict[str, Any]:
        return await super().get(id)

    async def get(self, id: str) -> dict:
        """Get a connection with secrets masked."""
        return redact(await self._raw(id))

    @POST
    async def add(
        self,
        name: str,
        database: str,
        dialect: str = "mysql",
        host: str | None = None,
        port: int | None = None,
        username: str | None = None,
        password: str | None = None,
        use_ssl: bool = False,
        use_tunnel: bool = False,
        tunnel_config: dict[str, Any] | None = None,
        description: str | None = None,
        active: bool = True,
        id: str | None = None,
    ) -> dict:
        """Store a connection configuration.

        Args:
            dialect: "mysql" (default), "postgresql" or "sqlite".
            database: Schema name, or the file path for sqlite.
            port: Defaults to 3306 (mysql) or 5432 (postgresql).
            tunnel_config: SSH settings, required when use_tunnel is set:
                ssh_host, ssh_port, ssh_username, ssh_password or
                ssh_private_key (+ ssh_private_key_passphrase), local_port.
        """
        record: dict[str, Any] = {
            "id": id,
            "name": name,
            "description": description,
            "dialect": dialect,
            "host": host,
            "port": port,
            "database": database,
            "username": username,
            "password": password,
            "use_ssl": use_ssl,
            "use_tunnel": use_tunnel,
            "tunnel_config": tunnel_config,
            "active": active,
        }
        await self.table.insert(record)
        return await self.get(record["id"])

    async def list(self, active_only: bool = False) -> list[dict]:
        where = {"active": 1} if active_only else None
        rows = await self.table.select(where=where, order_by="name")
        return [redact(row) for row in rows]

    @POST
    async def update(
        self,
        id: str,
        name: str | None = None,
        database: str | None = None,
        dialect: str | None = None,
        host: str | None = None,
        port: int | None = None,
        username: str | None = None,
        password: str | None = None,
        use_ssl: bool | None = None,
        use_tunnel: bool | None = None,
        tunnel_config: dict[str, Any] | None = None,
        description: str | None = None,
        active: bool | None = None,
    ) -> dict:
        """Change the given fields and drop the cached link.

        A masked password (as returned by get) leaves the stored one unchanged.
        """
        await self._raw(id)
        if password == MASK:
            password = None
        await self._update_fields(
            id,
            {
                "name": name,
                "database": database,
                "dialect": dialect,
                "host": host,
                "port": port,
                "username": username,
                "password": password,
                "use_ssl": use_ssl,
                "use_tunnel": use_tunnel,
                "tunnel_config": tunnel_config,
                "description": description,
                "active": active,
            },
        )
        await self.broker.connections.close_connection(id)
        return await self.get(id)

    @POST
    async def delete(self, id: str) -> bool:
        """Delete a connection no dynamic query uses, closing its cached link."""
        deleted = await super().delete(id)
        await self.broker.connections.close_connection(id)
        return deleted

    @POST
    async def test(self, id: str) -> dict:
        """Connect to a stored connection and run SELECT 1.

        Returns:
            {"success", "message", "duration_ms"}; failures are not raised.
        """
        record = await self._raw(id)
        return await self.broker.connections.test_connection(record)

    @POST
    async def test_config(
        self,
        database: str,
        dialect: str = "mysql",
        host: str | None = None,
        port: int | None = None,
        username: str | None = None,
        password: str | None = None,
        use_ssl: bool = False,
        use_tunnel: bool = False,
        tunnel_config: dict[str, Any] | None = None,
    ) -> dict:
        """Test unsaved connection settings without storing them."""
        return await self.broker.connections.test_connection(
            {
                "name": "test",
                "dialect": dialect,
                "host": host,
                "port": port,
                "database": database,
                "username": username,
                "password": password,
                "use_ssl": use_ssl,
                "use_tunnel": use_tunnel,
                "tunnel_config": tunnel_config,
            }
        )

    async def schema(self, id: str) -> dict:
        """List tables and their columns through the cached link."""
        await self._raw(id)
        return await self.broker.connections.get_schema(id)

    @POST
    async def close(self, id: str) -> dict:
        """Close the cached link (and tunnel) of a connection, if any."""
        closed = await self.broker.connections.close_connection(id)
        return {"id": id, "closed": closed}

    async def cached(self) -> list[str]:
        """Ids of connections that currently hold a cached link."""
        return self.broker.connections.cached_ids


__all__ = ["DbConnectionEndpoint", "redact"]
