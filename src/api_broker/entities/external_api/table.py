# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Single fixed-endpoint external APIs.

Unlike providers, an external API has exactly one endpoint template
(``endpoint``) and one verb. ``{param}`` placeholders in the template are
filled from the caller's query string (GET) or JSON body (other verbs).
"""

from __future__ import annotations

from typing import Any

from ...errors import ParameterError
from ...gateway.matcher import PathTemplate
from ...sql import Boolean, Integer, String, Table, Timestamp
from ..provider.table import check_auth_config
from ..provider_endpoint.table import HTTP_METHODS


class ExternalApisTable(Table):
    """External API storage table.

    Schema: id (PK), name, base_url, endpoint, method, requires_auth,
    auth_config (JSON, encrypted), timeout_ms, active, created_at.
    """

    name = "external_apis"
    pkey = "id"

    def configure(self) -> None:
        c = self.columns
        c.column("id", String)
        c.column("name", String, nullable=False)
        c.column("description", String)
        c.column("base_url", String, nullable=False)
        c.column("endpoint", String, nullable=False, default="")
        c.column("method", String, nullable=False, default="GET")
        c.column("requires_auth", Boolean, default=0)
        c.column("auth_config", String, json_encoded=True, encrypted=True)
        c.column("timeout_ms", Integer, default=30000)
        c.column("active", Boolean, default=1)
        c.column("created_at", Timestamp, default="CURRENT_TIMESTAMP")

    def _validate(self, record: dict[str, Any]) -> None:
        if "method" in record:
            record["method"] = str(record["method"] or "GET").upper()
            if record["method"] not in HTTP_METHODS:
                raise ParameterError(f"Unsupported HTTP method '{record['method']}'")
        if record.get("endpoint"):
            try:
                PathTemplate.parse(record["endpoint"])
            except ValueError as e:
                raise ParameterError(str(e)) from e
        check_auth_config(record)

    async def trigger_on_inserting(self, record: dict[str, Any]) -> dict[str, Any]:
        self._validate(record)
        return await super().trigger_on_inserting(record)

    async def trigger_on_updating(
        self, record: dict[str, Any], old_record: dict[str, Any]
    ) -> dict[str, Any]:
        self._validate(record)
        return record


__all__ = ["ExternalApisTable"]
