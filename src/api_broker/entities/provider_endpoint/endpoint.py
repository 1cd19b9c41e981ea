# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Provider endpoint-template REST API endpoint."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from ...interface.endpoint_base import POST, BaseEndpoint

if TYPE_CHECKING:
    from .table import ProviderEndpointsTable


class ProviderEndpointEndpoint(BaseEndpoint):
    """Endpoint-template management plus a dry-run ``resolve``.

    Templates are tried in registration order; ``position`` can be set
    explicitly to reorder them.
    """

    name = "provider_endpoints"

    def __init__(self, table: ProviderEndpointsTable):
        super().__init__(table)

    async def _check_provider(self, provider_id: str) -> None:
        if not await self.table.db.table("providers").exists({"id": provider_id}):
            raise ValueError(f"Provider '{provider_id}' not found")

    @POST
    async def add(
        self,
        provider_id: str,
        path: str,
        method: str = "GET",
        description: str | None = None,
        active: bool = True,
        position: int | None = None,
        id: str | None = None,
    ) -> dict:
        """Register ``method path`` under a provider.

        Args:
            provider_id: Owning provider.
            path: Template such as ``/todos/{id}``.
            method: HTTP verb (stored upper case).
            position: Matching order; appended last when omitted.

        Raises:
            ValueError: Unknown provider.
            ParameterError: Bad template or duplicate (provider, verb, path).
        """
        await self._check_provider(provider_id)
        record: dict[str, Any] = {
            "id": id,
            "provider_id": provider_id,
            "path": path,
            "method": method,
            "description": description,
            "active": active,
            "position": position,
        }
        await self.table.insert(record)
        return await self.get(record["id"])

    async def list(self, provider_id: str | None = None, active_only: bool = False) -> list[dict]:
        """List templates, optionally for one provider, in matching order."""
        if provider_id:
            return await self.table.endpoints_for(provider_id, active_only=active_only)
        where = {"active": 1} if active_only else None
        return await self.table.select(where=where, order_by="provider_id, position, created_at")

    @POST
    async def update(
        self,
        id: str,
        path: str | None = None,
        method: str | None = None,
        description: str | None = None,
        active: bool | None = None,
        position: int | None = None,
    ) -> dict:
        """Change the given fields of a template."""
        await self.get(id)
        return await self._update_fields(
            id,
            {
                "path": path,
                "method": method,
                "description": description,
                "active": active,
                "position": position,
            },
        )

    async def resolve(self, provider_id: str, method: str, path: str) -> dict:
        """Show which active template ``method path`` would hit, without forwarding.

        Raises:
            NotFoundError: No template matched (carries availableEndpoints).
        """
        await self._check_provider(provider_id)
        endpoints = await self.table.endpoints_for(provider_id)
        result = self.broker.proxy_service.matcher.match(endpoints, method, path)
        return {"endpoint": result.endpoint, "params": result.params, "exact": result.exact}


__all__ = ["ProviderEndpointEndpoint"]
