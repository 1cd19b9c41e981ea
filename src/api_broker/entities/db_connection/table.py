# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Stored database connection configurations.

Passwords and the SSH tunnel block are encrypted at rest when an
encryption key is configured. A connection with use_tunnel set must carry
a tunnel_config naming at least the SSH host, user and one credential.
"""

from __future__ import annotations

from typing import Any

from ...errors import ParameterError
from ...gateway.tunnel import TunnelConfig
from ...sql import Boolean, Integer, String, Table, Timestamp

DIALECTS = frozenset({"mysql", "postgresql", "sqlite"})
DEFAULT_PORTS = {"mysql": 3306, "postgresql": 5432}


def check_connection_config(record: dict[str, Any]) -> None:
    """Validate a full connection record (stored or unsaved).

    Raises:
        ParameterError: Unknown dialect, missing host or bad tunnel block.
    """
    dialect = str(record.get("dialect") or "mysql").lower()
    if dialect not in DIALECTS:
        raise ParameterError(f"Unsupported dialect '{dialect}'")
    record["dialect"] = dialect
    if dialect != "sqlite" and not record.get("host"):
        raise ParameterError("host is required")
    if not record.get("database"):
        raise ParameterError("database is required")
    if record.get("port") is None and dialect in DEFAULT_PORTS:
        record["port"] = DEFAULT_PORTS[dialect]
    if record.get("use_tunnel"):
        if dialect == "sqlite":
            raise ParameterError("SSH tunnels are not supported for sqlite")
        TunnelConfig.from_dict(record.get("tunnel_config"))


class DbConnectionsTable(Table):
    """Database connection storage table.

    Schema: id (PK), name, dialect, host, port, database, username,
    password (encrypted), use_ssl, use_tunnel, tunnel_config (JSON,
    encrypted), active, created_at.
    """

    name = "db_connections"
    pkey = "id"

    def configure(self) -> None:
        c = self.columns
        c.column("id", String)
        c.column("name", String, nullable=False)
        c.column("description", String)
        c.column("dialect", String, nullable=False, default="mysql")
        c.column("host", String)
        c.column("port", Integer)
        c.column("database", String, nullable=False)
        c.column("username", String)
        c.column("password", String, encrypted=True)
        c.column("use_ssl", Boolean, default=0)
        c.column("use_tunnel", Boolean, default=0)
        c.column("tunnel_config", String, json_encoded=True, encrypted=True)
        c.column("active", Boolean, default=1)
        c.column("created_at", Timestamp, default="CURRENT_TIMESTAMP")

    async def trigger_on_inserting(self, record: dict[str, Any]) -> dict[str, Any]:
        check_connection_config(record)
        return await super().trigger_on_inserting(record)

    async def trigger_on_updating(
        self, record: dict[str, Any], old_record: dict[str, Any]
    ) -> dict[str, Any]:
        merged = {**old_record, **record}
        check_connection_config(merged)
        record["dialect"] = merged["dialect"]
        if "port" in merged and merged["port"] is not None:
            record["port"] = merged["port"]
        return record

    async def trigger_on_deleting(self, record: dict[str, Any]) -> None:
        """Refuse to delete a connection that dynamic queries still use."""
        used = await self.db.count("dynamic_queries", {"connection_id": record["id"]})
        if used:
            raise ParameterError(
                f"Connection '{record['id']}' is used by {used} dynamic queries"
            )


__all__ = ["DEFAULT_PORTS", "DIALECTS", "DbConnectionsTable", "check_connection_config"]
