# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Provider registry table.

A provider is an external HTTP API with one base address, an optional
auth header to inject, a per-call timeout and a rate limit. Its callable
paths live in provider_endpoints.
"""

from __future__ import annotations

from typing import Any

from ...errors import ParameterError
from ...sql import Boolean, Integer, String, Table, Timestamp


def check_auth_config(record: dict[str, Any]) -> None:
    """Reject requires_auth without a header name to inject."""
    if not record.get("requires_auth"):
        return
    auth = record.get("auth_config") or {}
    if not isinstance(auth, dict) or not auth.get("header_name"):
        raise ParameterError("auth_config.header_name is required when requires_auth is set")


class ProvidersTable(Table):
    """Provider storage table.

    Schema: id (PK), name, base_url, requires_auth, auth_config (JSON,
    encrypted), timeout_ms, rate_limit, active, created_at.
    """

    name = "providers"
    pkey = "id"

    def configure(self) -> None:
        c = self.columns
        c.column("id", String)
        c.column("name", String, nullable=False)
        c.column("description", String)
        c.column("base_url", String, nullable=False)
        c.column("requires_auth", Boolean, default=0)
        c.column("auth_config", String, json_encoded=True, encrypted=True)
        c.column("timeout_ms", Integer, default=30000)
        c.column("rate_limit", Integer, default=1000)
        c.column("active", Boolean, default=1)
        c.column("created_at", Timestamp, default="CURRENT_TIMESTAMP")

    async def trigger_on_inserting(self, record: dict[str, Any]) -> dict[str, Any]:
        check_auth_config(record)
        return await super().trigger_on_inserting(record)

    async def trigger_on_updating(
        self, record: dict[str, Any], old_record: dict[str, Any]
    ) -> dict[str, Any]:
        check_auth_config(record)
        return record

    async def trigger_on_deleting(self, record: dict[str, Any]) -> None:
        """Drop the provider's endpoint templates first."""
        await self.db.table("provider_endpoints").delete_for_provider(record["id"])


__all__ = ["ProvidersTable", "check_auth_config"]
