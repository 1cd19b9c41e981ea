# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Append-only record of gateway calls.

One row per attempt and per log kind: every forwarded HTTP call writes a
generic ``api`` row plus a ``provider`` or ``external_api`` row; database
work writes ``connection`` and ``query`` rows. Rows are never updated;
purge_before() is the only way to remove them.
"""

from __future__ import annotations

import time
from typing import Any

from ...sql import Boolean, Integer, String, Table

KINDS = frozenset({"api", "provider", "external_api", "connection", "query"})


class CallLogTable(Table):
    """Call log table.

    Schema: id (auto-increment), created_ts, kind, target_id, api_key_id,
    method, path, url, action, status, status_code, success, duration_ms,
    response_size, cached, error.
    """

    name = "call_log"
    pkey = "id"

    def new_pkey_value(self) -> None:
        """Return None for INTEGER PRIMARY KEY autoincrement."""
        return None

    def configure(self) -> None:
        c = self.columns
        c.column("id", Integer)
        c.column("created_ts", Integer, nullable=False)
        c.column("kind", String, nullable=False)
        c.column("target_id", String)
        c.column("api_key_id", String)
        c.column("method", String)
        c.column("path", String)
        c.column("url", String)
        c.column("action", String)
        c.column("status", String, nullable=False)
        c.column("status_code", Integer)
        c.column("success", Boolean, default=0)
        c.column("duration_ms", Integer, default=0)
        c.column("response_size", Integer)
        c.column("cached", Boolean, default=0)
        c.column("error", String)

    async def log_call(
        self,
        kind: str,
        *,
        success: bool,
        target_id: str | None = None,
        api_key_id: str | None = None,
        method: str | None = None,
        path: str | None = None,
        url: str | None = None,
        action: str | None = None,
        status_code: int | None = None,
        duration_ms: int = 0,
        response_size: int | None = None,
        cached: bool = False,
        error: str | None = None,
        created_ts: int | None = None,
    ) -> int:
        """Append one call record.

        Args:
            kind: "api", "provider", "external_api", "connection" or "query".
            success: Outcome of the call.
            duration_ms: Wall-clock duration, clamped to >= 0.
            created_ts: Unix timestamp. Defaults to current time.

        Returns:
            Auto-generated record ID.
        """
        if kind not in KINDS:
            raise ValueError(f"Unknown call log kind '{kind}'")
        record: dict[str, Any] = {
            "created_ts": created_ts if created_ts is not None else int(time.time()),
            "kind": kind,
            "target_id": target_id,
            "api_key_id": api_key_id,
            "method": method,
            "path": path,
            "url": url,
            "action": action,
            "status": "success" if success else "error",
            "status_code": status_code,
            "success": 1 if success else 0,
            "duration_ms": max(0, int(duration_ms or 0)),
            "response_size": response_size,
            "cached": 1 if cached else 0,
            "error": error,
        }
        await self.insert(record)
        return int(record.get("id") or 0)

    async def list_records(
        self,
        *,
        kind: str | None = None,
        target_id: str | None = None,
        success: bool | None = None,
        since_ts: int | None = None,
        until_ts: int | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """List call records, newest first, with optional filters."""
        ph = self.db._placeholder
        conditions = []
        params: dict[str, Any] = {}

        if kind:
            conditions.append(f"kind = {ph('kind')}")
            params["kind"] = kind
        if target_id:
            conditions.append(f"target_id = {ph('target_id')}")
            params["target_id"] = target_id
        if success is not None:
            conditions.append(f"success = {ph('success')}")
            params["success"] = 1 if success else 0
        if since_ts:
            conditions.append(f"created_ts >= {ph('since_ts')}")
            params["since_ts"] = since_ts
        if until_ts:
            conditions.append(f"created_ts <= {ph('until_ts')}")
            params["until_ts"] = until_ts

        where_clause = " AND ".join(conditions) if conditions else "1=1"
        return await self.fetch_all(
            f"SELECT * FROM {self.name} WHERE {where_clause} "
            f"ORDER BY created_ts DESC, id DESC LIMIT {int(limit)} OFFSET {int(offset)}",
            params,
        )

    async def purge_before(self, threshold_ts: int) -> int:
        """Delete records with created_ts < threshold_ts.

        Returns:
            Number of deleted records.
        """
        return await self.execute(
            f"DELETE FROM {self.name} WHERE created_ts < {self.db._placeholder('threshold_ts')}",
            {"threshold_ts": threshold_ts},
        )


__all__ = ["KINDS", "CallLogTable"]
