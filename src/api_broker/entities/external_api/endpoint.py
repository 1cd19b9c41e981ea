# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""External API REST API endpoint."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from ...interface.endpoint_base import POST, BaseEndpoint

if TYPE_CHECKING:
    from .table import ExternalApisTable


class ExternalApiEndpoint(BaseEndpoint):
    """CRUD for single fixed-endpoint APIs served at /proxy/dynamic/{id}."""

    name = "external_apis"

    def __init__(self, table: ExternalApisTable):
        super().__init__(table)

    @POST
    async def add(
        self,
        name: str,
        base_url: str,
        endpoint: str = "",
        method: str = "GET",
        description: str | None = None,
        requires_auth: bool = False,
        auth_config: dict[str, Any] | None = None,
        timeout_ms: int = 30000,
        active: bool = True,
        id: str | None = None,
    ) -> dict:
        """Register an external API.

        Args:
            endpoint: Path template appended to base_url, e.g. ``/users/{id}``.
            method: Verb used for every call, whatever the caller's verb.
        """
        record: dict[str, Any] = {
            "id": id,
            "name": name,
            "base_url": base_url,
            "endpoint": endpoint,
            "method": method,
            "description": description,
            "requires_auth": requires_auth,
            "auth_config": auth_config,
            "timeout_ms": timeout_ms,
            "active": active,
        }
        await self.table.insert(record)
        return await self.get(record["id"])

    async def list(self, active_only: bool = False) -> list[dict]:
        where = {"active": 1} if active_only else None
        return await self.table.select(where=where, order_by="name")

    @POST
    async def update(
        self,
        id: str,
        name: str | None = None,
        base_url: str | None = None,
        endpoint: str | None = None,
        method: str | None = None,
        description: str | None = None,
        requires_auth: bool | None = None,
        auth_config: dict[str, Any] | None = None,
        timeout_ms: int | None = None,
        active: bool | None = None,
    ) -> dict:
        """Change the given fields of an external API."""
        await self.get(id)
        return await self._update_fields(
            id,
            {
                "name": name,
                "base_url": base_url,
                "endpoint": endpoint,
                "method": method,
                "description": description,
                "requires_auth": requires_auth,
                "auth_config": auth_config,
                "timeout_ms": timeout_ms,
                "active": active,
            },
        )


__all__ = ["ExternalApiEndpoint"]
