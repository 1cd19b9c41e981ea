# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Call log REST API endpoint (read and retention purge only)."""

from __future__ import annotations

from typing import TYPE_CHECKING

from ...interface.endpoint_base import POST, BaseEndpoint, endpoint

if TYPE_CHECKING:
    from .table import CallLogTable


class CallLogEndpoint(BaseEndpoint):
    """Query the append-only call log and purge old records."""

    name = "call_log"

    def __init__(self, table: CallLogTable):
        super().__init__(table)

    async def list(
        self,
        kind: str | None = None,
        target_id: str | None = None,
        success: bool | None = None,
        since_ts: int | None = None,
        until_ts: int | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[dict]:
        """List call records, newest first.

        Args:
            kind: "api", "provider", "external_api", "connection" or "query".
            target_id: Provider, external API, connection or query id.
            success: Only successful (True) or failed (False) calls.
            since_ts: Unix timestamp lower bound (inclusive).
            until_ts: Unix timestamp upper bound (inclusive).
        """
        return await self.table.list_records(
            kind=kind,
            target_id=target_id,
            success=success,
            since_ts=since_ts,
            until_ts=until_ts,
            limit=limit,
            offset=offset,
        )

    async def get(self, id: int) -> dict:
        """Get a call record by id.

        Raises:
            ValueError: If record not found.
        """
        record = await self.table.record(pkey=id, ignore_missing=True)
        if not record:
            raise ValueError(f"Call record '{id}' not found")
        return record

    @endpoint(api=False, cli=False)
    async def delete(self, id: str) -> bool:
        raise ValueError("Call records cannot be deleted one by one; use purge")

    @POST
    async def purge(self, before_ts: int) -> dict:
        """Delete records created before a Unix timestamp."""
        return {"deleted": await self.table.purge_before(before_ts)}


__all__ = ["CallLogEndpoint"]
