# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""API key REST API endpoint.

The raw key is returned by ``create`` only; afterwards only its prefix is
visible.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from ...interface.endpoint_base import POST, BaseEndpoint

if TYPE_CHECKING:
    from .table import ApiKeysTable


def _public(record: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in record.items() if k != "key_hash"}


class ApiKeyEndpoint(BaseEndpoint):
    """Client API key management."""

    name = "api_keys"

    def __init__(self, table: ApiKeysTable):
        super().__init__(table)

    @POST
    async def create(
        self,
        name: str,
        expires_at: str | None = None,
        ip_whitelist: list[str] | None = None,
    ) -> dict:
        """Issue a new key.

        Args:
            name: Label for the key holder.
            expires_at: "YYYY-MM-DD HH:MM:SS" (UTC); never expires if omitted.
            ip_whitelist: Allowed client addresses or CIDR ranges.

        Returns:
            The stored record plus ``key``, the raw value. Store it now: it
            cannot be shown again.
        """
        record, raw_key = await self.table.create_key(
            name, expires_at=expires_at, ip_whitelist=ip_whitelist
        )
        return {**await self.get(record["id"]), "key": raw_key}

    async def get(self, id: str) -> dict:
        return _public(await super().get(id))

    async def list(self, active_only: bool = False) -> list[dict]:
        where = {"active": 1} if active_only else None
        rows = await self.table.select(where=where, order_by="created_at")
        return [_public(row) for row in rows]

    @POST
    async def update(
        self,
        id: str,
        name: str | None = None,
        active: bool | None = None,
        expires_at: str | None = None,
        ip_whitelist: list[str] | None = None,
    ) -> dict:
        """Rename, enable/disable, or change expiry and whitelist of a key."""
        await self.get(id)
        return _public(
            await self._update_fields(
                id,
                {
                    "name": name,
                    "active": active,
                    "expires_at": expires_at,
                    "ip_whitelist": ip_whitelist,
                },
            )
        )

    @POST
    async def revoke(self, id: str) -> dict:
        """Deactivate a key without deleting it."""
        return await self.update(id, active=False)


__all__ = ["ApiKeyEndpoint"]
