# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Provider REST API endpoint.

Admin CRUD for external HTTP providers. Routes and CLI commands are
generated from the method signatures::

    api-broker providers add JSONPlaceholder https://jsonplaceholder.typicode.com
    api-broker providers list --active-only
    api-broker providers update <id> --timeout-ms 5000
    api-broker providers delete <id>
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from ...interface.endpoint_base import POST, BaseEndpoint

if TYPE_CHECKING:
    from .table import ProvidersTable


class ProviderEndpoint(BaseEndpoint):
    """Provider management: add, get, list, update, delete.

    Deleting a provider also drops its endpoint templates.
    """

    name = "providers"

    def __init__(self, table: ProvidersTable):
        super().__init__(table)

    @POST
    async def add(
        self,
        name: str,
        base_url: str,
        description: str | None = None,
        requires_auth: bool = False,
        auth_config: dict[str, Any] | None = None,
        timeout_ms: int = 30000,
        rate_limit: int = 1000,
        active: bool = True,
        id: str | None = None,
    ) -> dict:
        """Register a provider.

        Args:
            name: Display name, returned as metadata.provider by the proxy.
            base_url: Upstream base address; the proxied path is appended.
            requires_auth: Inject the auth_config header on every call.
            auth_config: {"header_name": ..., "header_value": ...}.
            timeout_ms: Per-call deadline for forwarded requests.
            id: Explicit identifier (generated when omitted).

        Returns:
            The stored provider record.
        """
        record: dict[str, Any] = {
            "id": id,
            "name": name,
            "base_url": base_url,
            "description": description,
            "requires_auth": requires_auth,
            "auth_config": auth_config,
            "timeout_ms": timeout_ms,
            "rate_limit": rate_limit,
            "active": active,
        }
        await self.table.insert(record)
        return await self.get(record["id"])

    async def list(self, active_only: bool = False) -> list[dict]:
        """List providers ordered by name."""
        where = {"active": 1} if active_only else None
        return await self.table.select(where=where, order_by="name")

    @POST
    async def update(
        self,
        id: str,
        name: str | None = None,
        base_url: str | None = None,
        description: str | None = None,
        requires_auth: bool | None = None,
        auth_config: dict[str, Any] | None = None,
        timeout_ms: int | None = None,
        rate_limit: int | None = None,
        active: bool | None = None,
    ) -> dict:
        """Change the given fields of a provider. Omitted fields are kept."""
        await self.get(id)
        return await self._update_fields(
            id,
            {
                "name": name,
                "base_url": base_url,
                "description": description,
                "requires_auth": requires_auth,
                "auth_config": auth_config,
                "timeout_ms": timeout_ms,
                "rate_limit": rate_limit,
                "active": active,
            },
        )

    async def endpoints(self, id: str, active_only: bool = False) -> list[dict]:
        """List the provider's endpoint templates in matching order."""
        await self.get(id)
        return await self.table.db.table("provider_endpoints").endpoints_for(
            id, active_only=active_only
        )


__all__ = ["ProviderEndpoint"]
