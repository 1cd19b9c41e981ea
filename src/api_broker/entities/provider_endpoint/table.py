# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Endpoint templates registered under a provider.

Each row is an HTTP verb plus a path template such as ``/todos/{id}``.
(provider_id, method, normalized path) is unique, where the normalized
path drops outer slashes and placeholder names: ``/todos/{id}`` and
``todos/{todo}`` collide. Rows keep their registration order in
``position``, which is the matcher's tie-break.
"""

from __future__ import annotations

from typing import Any

from ...errors import ParameterError
from ...gateway.matcher import normalize_path
from ...sql import Boolean, Integer, String, Table, Timestamp

HTTP_METHODS = frozenset({"GET", "POST", "PUT", "DELETE", "PATCH"})


class ProviderEndpointsTable(Table):
    """Endpoint template storage table.

    Schema: id (PK), provider_id (FK), method, path, path_key, description,
    active, position, created_at.
    """

    name = "provider_endpoints"
    pkey = "id"

    def configure(self) -> None:
        c = self.columns
        c.column("id", String)
        c.column("provider_id", String, nullable=False).relation("providers", sql=True)
        c.column("method", String, nullable=False, default="GET")
        c.column("path", String, nullable=False)
        c.column("path_key", String, nullable=False)
        c.column("description", String)
        c.column("active", Boolean, default=1)
        c.column("position", Integer, default=0)
        c.column("created_at", Timestamp, default="CURRENT_TIMESTAMP")

    def _normalize(self, record: dict[str, Any]) -> None:
        method = str(record.get("method") or "GET").upper()
        if method not in HTTP_METHODS:
            raise ParameterError(f"Unsupported HTTP method '{method}'")
        record["method"] = method
        try:
            record["path_key"] = normalize_path(record["path"])
        except ValueError as e:
            raise ParameterError(str(e)) from e

    async def _check_unique(self, record: dict[str, Any], own_id: str | None = None) -> None:
        clash = await self.db.select(
            self.name,
            ["id"],
            where={
                "provider_id": record["provider_id"],
                "method": record["method"],
                "path_key": record["path_key"],
            },
        )
        if any(row["id"] != own_id for row in clash):
            raise ParameterError(
                f"Endpoint {record['method']} {record['path']} already registered "
                f"for provider '{record['provider_id']}'"
            )

    async def trigger_on_inserting(self, record: dict[str, Any]) -> dict[str, Any]:
        self._normalize(record)
        await self._check_unique(record)
        if record.get("position") is None:
            row = await self.db.fetch_one(
                f"SELECT MAX(position) AS last FROM {self.name} WHERE provider_id = "
                f"{self.db._placeholder('provider_id')}",
                {"provider_id": record["provider_id"]},
            )
            last = row["last"] if row else None
            record["position"] = 0 if last is None else int(last) + 1
        return await super().trigger_on_inserting(record)

    async def trigger_on_updating(
        self, record: dict[str, Any], old_record: dict[str, Any]
    ) -> dict[str, Any]:
        if "path" in record or "method" in record:
            merged = {**old_record, **record}
            self._normalize(merged)
            await self._check_unique(merged, own_id=old_record.get("id"))
            record["method"] = merged["method"]
            record["path_key"] = merged["path_key"]
        return record

    async def endpoints_for(self, provider_id: str, active_only: bool = True) -> list[dict[str, Any]]:
        """Return the provider's endpoint templates in registration order."""
        where: dict[str, Any] = {"provider_id": provider_id}
        if active_only:
            where["active"] = 1
        return await self.select(where=where, order_by="position, created_at")

    async def delete_for_provider(self, provider_id: str) -> int:
        return await self.db.delete(self.name, {"provider_id": provider_id})


__all__ = ["HTTP_METHODS", "ProviderEndpointsTable"]
