# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Stored parameterized queries exposed as REST endpoints.

A dynamic query binds SQL text with positional ``?`` placeholders to a
connection. ``parameters`` declares the values callers supply, each either
a bare name or ``{"name": ..., "required": bool, "default": ...}``.
(connection_id, method, path) is unique.
"""

from __future__ import annotations

from typing import Any

from ...errors import ParameterError
from ...sql import Boolean, Integer, String, Table, Timestamp
from ..provider_endpoint.table import HTTP_METHODS


def check_parameters(parameters: Any) -> list[Any]:
    """Validate a declared parameter list and return it.

    Raises:
        ParameterError: Not a list, or an entry without a name.
    """
    if parameters is None:
        return []
    if not isinstance(parameters, list):
        raise ParameterError("parameters must be a list")
    for item in parameters:
        if isinstance(item, str) and item:
            continue
        if isinstance(item, dict) and item.get("name"):
            continue
        raise ParameterError(f"Invalid parameter declaration: {item!r}")
    return parameters


class DynamicQueriesTable(Table):
    """Dynamic query storage table.

    Schema: id (PK), connection_id (FK), name, description, query, method,
    path, parameters (JSON), response_format (JSON), cache_enabled,
    cache_duration, rate_limit, active, created_at.
    """

    name = "dynamic_queries"
    pkey = "id"

    def configure(self) -> None:
        c = self.columns
        c.column("id", String)
        c.column("connection_id", String, nullable=False).relation("db_connections", sql=True)
        c.column("name", String, nullable=False)
        c.column("description", String)
        c.column("query", String, nullable=False)
        c.column("method", String, nullable=False, default="GET")
        c.column("path", String, nullable=False)
        c.column("parameters", String, json_encoded=True)
        c.column("response_format", String, json_encoded=True)
        c.column("cache_enabled", Boolean, default=0)
        c.column("cache_duration", Integer, default=300)
        c.column("rate_limit", Integer, default=1000)
        c.column("active", Boolean, default=1)
        c.column("created_at", Timestamp, default="CURRENT_TIMESTAMP")

    def _normalize(self, record: dict[str, Any]) -> None:
        method = str(record.get("method") or "GET").upper()
        if method not in HTTP_METHODS:
            raise ParameterError(f"Unsupported HTTP method '{method}'")
        record["method"] = method
        path = str(record.get("path") or "").strip()
        if not path:
            raise ParameterError("path is required")
        record["path"] = "/" + path.strip("/")
        record["parameters"] = check_parameters(record.get("parameters"))
        if int(record.get("cache_duration") or 0) < 0:
            raise ParameterError("cache_duration must not be negative")

    async def _check_unique(self, record: dict[str, Any], own_id: str | None = None) -> None:
        clash = await self.db.select(
            self.name,
            ["id"],
            where={
                "connection_id": record["connection_id"],
                "method": record["method"],
                "path": record["path"],
            },
        )
        if any(row["id"] != own_id for row in clash):
            raise ParameterError(
                f"Query {record['method']} {record['path']} already exists "
                f"for connection '{record['connection_id']}'"
            )

    async def trigger_on_inserting(self, record: dict[str, Any]) -> dict[str, Any]:
        self._normalize(record)
        if record.get("response_format") is None:
            record["response_format"] = {"type": "json"}
        await self._check_unique(record)
        return await super().trigger_on_inserting(record)

    async def trigger_on_updating(
        self, record: dict[str, Any], old_record: dict[str, Any]
    ) -> dict[str, Any]:
        merged = {**old_record, **record}
        self._normalize(merged)
        await self._check_unique(merged, own_id=old_record.get("id"))
        for key in ("method", "path", "parameters"):
            record[key] = merged[key]
        return record


__all__ = ["DynamicQueriesTable", "check_parameters"]
