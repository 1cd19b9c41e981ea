# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Dynamic query REST API endpoint.

CRUD for stored queries plus ``execute`` and ``test``. New and edited
queries are test-run once without parameters; a failing test is reported
in the response but does not block the save. Editing or deleting a query
evicts its cached results.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from ...interface.endpoint_base import POST, BaseEndpoint

if TYPE_CHECKING:
    from .table import DynamicQueriesTable


class DynamicQueryEndpoint(BaseEndpoint):
    """Stored parameterized queries served as endpoints."""

    name = "dynamic_queries"

    def __init__(self, table: DynamicQueriesTable):
        super().__init__(table)

    @property
    def engine(self):
        return self.broker.engine

    @POST
    async def add(
        self,
        connection_id: str,
        name: str,
        query: str,
        path: str,
        method: str = "GET",
        parameters: list[Any] | None = None,
        description: str | None = None,
        response_format: dict[str, Any] | None = None,
        cache_enabled: bool = False,
        cache_duration: int = 300,
        rate_limit: int = 1000,
        active: bool = True,
        id: str | None = None,
    ) -> dict:
        """Store a dynamic query.

        Args:
            connection_id: Target db_connections record.
            query: SQL with positional ``?`` placeholders.
            path: Route path, unique per (connection, method).
            parameters: Declared parameters in placeholder order: names or
                {"name", "required", "default"} objects.
            cache_duration: Result cache TTL in seconds.

        Returns:
            The stored record plus ``test``, the outcome of a dry run.
        """
        if not await self.table.db.table("db_connections").exists({"id": connection_id}):
            raise ValueError(f"Database connection '{connection_id}' not found")
        test = await self.engine.test_definition(connection_id=connection_id, query=query)
        record: dict[str, Any] = {
            "id": id,
            "connection_id": connection_id,
            "name": name,
            "query": query,
            "path": path,
            "method": method,
            "parameters": parameters,
            "description": description,
            "response_format": response_format,
            "cache_enabled": cache_enabled,
            "cache_duration": cache_duration,
            "rate_limit": rate_limit,
            "active": active,
        }
        await self.table.insert(record)
        return {**await self.get(record["id"]), "test": test}

    async def list(self, connection_id: str | None = None, active_only: bool = False) -> list[dict]:
        where: dict[str, Any] = {}
        if connection_id:
            where["connection_id"] = connection_id
        if active_only:
            where["active"] = 1
        return await self.table.select(where=where or None, order_by="name")

    @POST
    async def update(
        self,
        id: str,
        connection_id: str | None = None,
        name: str | None = None,
        query: str | None = None,
        path: str | None = None,
        method: str | None = None,
        parameters: list[Any] | None = None,
        description: str | None = None,
        response_format: dict[str, Any] | None = None,
        cache_enabled: bool | None = None,
        cache_duration: int | None = None,
        rate_limit: int | None = None,
        active: bool | None = None,
    ) -> dict:
        """Change the given fields and evict cached results.

        The query is test-run again when its SQL or connection changes.
        """
        current = await self.get(id)
        test = None
        if query is not None or connection_id is not None:
            test = await self.engine.test_definition(
                connection_id=connection_id or current["connection_id"],
                query=query or current["query"],
            )
        record = await self._update_fields(
            id,
            {
                "connection_id": connection_id,
                "name": name,
                "query": query,
                "path": path,
                "method": method,
                "parameters": parameters,
                "description": description,
                "response_format": response_format,
                "cache_enabled": cache_enabled,
                "cache_duration": cache_duration,
                "rate_limit": rate_limit,
                "active": active,
            },
        )
        self.engine.invalidate(id)
        return {**record, "test": test} if test is not None else record

    @POST
    async def delete(self, id: str) -> bool:
        """Delete a query and evict its cached results."""
        deleted = await super().delete(id)
        self.engine.invalidate(id)
        return deleted

    @POST
    async def execute(self, id: str, params: list[Any] | dict[str, Any] | None = None) -> dict:
        """Run the query with params (positional list or named object).

        Returns:
            {"success": True, "data", "cached", "metadata"}
        """
        result = await self.engine.execute(id, params)
        return result.to_response()

    @POST
    async def test(self, id: str) -> dict:
        """Run the stored query without parameters (active or not).

        Returns:
            {"success", "message", "row_count", "sample_data"}
        """
        return await self.engine.test_definition(id)

    @POST
    async def invalidate(self, id: str) -> dict:
        """Evict every cached result of a query."""
        return {"id": id, "evicted": self.engine.invalidate(id)}


__all__ = ["DynamicQueryEndpoint"]
