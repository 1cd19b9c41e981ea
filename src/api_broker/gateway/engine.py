# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Stored parameterized queries executed as endpoints.

DynamicQueryEngine.execute() looks up a dynamic query, binds the caller's
parameters against its declared list, serves a live cached result when
caching is enabled and otherwise runs the SQL through the ConnectionBroker
on a fresh link. Results are cached per (query id, bound parameters) for the
query's cache_duration.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from ..errors import BrokerError, InactiveError, NotFoundError, ParameterError
from .broker import elapsed_ms
from .cache import TtlCache

if TYPE_CHECKING:
    from ..sql import SqlDb
    from .broker import ConnectionBroker
    from .call_logger import CallLogger

logger = logging.getLogger(__name__)

DEFAULT_CACHE_DURATION = 300
SAMPLE_ROWS = 3


@dataclass
class QueryResult:
    data: list[dict[str, Any]]
    cached: bool
    duration_ms: int
    response_size: int

    def to_response(self) -> dict[str, Any]:
        """Body of a successful execute call."""
        return {
            "success": True,
            "data": self.data,
            "cached": self.cached,
            "metadata": {
                "duration": self.duration_ms,
                "responseSize": self.response_size,
                "cached": self.cached,
            },
        }


def _declared_name(item: Any) -> str:
    return item if isinstance(item, str) else str(item["name"])


def bind_parameters(declared: Sequence[Any] | None, params: Any) -> list[Any]:
    """Turn caller params into the positional list for the SQL text.

    A list is used as given. A dict is mapped onto the declared parameters
    in declaration order, applying defaults. Declared entries are bare names
    (required) or {"name", "required", "default"}.

    Raises:
        ParameterError: Missing required parameter, or named params given
            for a query that declares none.
    """
    declared = list(declared or [])
    if params is None:
        params = {} if declared else []
    if isinstance(params, (list, tuple)):
        return list(params)
    if not isinstance(params, Mapping):
        raise ParameterError("params must be a list or an object")
    if not declared:
        if params:
            raise ParameterError("Query declares no parameters; pass params as a list")
        return []

    values: list[Any] = []
    missing: list[str] = []
    for item in declared:
        name = _declared_name(item)
        spec = item if isinstance(item, Mapping) else {}
        if name in params:
            values.append(params[name])
        elif "default" in spec:
            values.append(spec["default"])
        elif spec.get("required", True):
            missing.append(name)
        else:
            values.append(None)
    if missing:
        raise ParameterError(f"Missing required parameters: {', '.join(missing)}", missing=missing)
    return values


class DynamicQueryEngine:
    """Execute dynamic queries with a per-query result cache.

    Args:
        db: Registry store with the dynamic_queries table.
        broker: ConnectionBroker that runs the SQL.
        call_logger: Recorder for query call records.
        clock: Monotonic clock for the result cache. Injectable for tests.
    """

    def __init__(
        self,
        db: SqlDb,
        broker: ConnectionBroker,
        call_logger: CallLogger,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.db = db
        self.broker = broker
        self.call_logger = call_logger
        self._results: TtlCache[tuple[str, str], list[dict[str, Any]]] = TtlCache(
            DEFAULT_CACHE_DURATION, clock=clock
        )

    async def _load(self, query_id: str, *, require_active: bool = True) -> dict[str, Any]:
        async with self.db.connection():
            record = await self.db.table("dynamic_queries").record(pkey=query_id, ignore_missing=True)
        if not record:
            raise NotFoundError("Dynamic query not found")
        if require_active and not record.get("active"):
            raise InactiveError("Query is inactive")
        return record

    @staticmethod
    def cache_key(query_id: str, values: list[Any]) -> tuple[str, str]:
        return query_id, json.dumps(values, sort_keys=True, default=str)

    async def execute(
        self, query_id: str, params: Any = None, *, api_key_id: str | None = None
    ) -> QueryResult:
        """Run a dynamic query.

        Raises:
            NotFoundError: Unknown query id (or its connection).
            InactiveError: Query or connection disabled.
            ParameterError: Missing required parameter.
            BrokerTimeoutError: Connect exceeded the deadline.
            UpstreamError: Connect or query failed.
        """
        record = await self._load(query_id)
        values = bind_parameters(record.get("parameters"), params)
        key = self.cache_key(query_id, values)
        start = time.perf_counter()

        if record.get("cache_enabled"):
            hit = self._results.get(key)
            if hit is not None:
                size = len(json.dumps(hit, default=str))
                duration = elapsed_ms(start)
                self._log(record, api_key_id, True, duration, size, cached=True)
                return QueryResult(hit, True, duration, size)

        try:
            rows = await self.broker.execute_query(
                record["connection_id"], record["query"], values, api_key_id=api_key_id
            )
        except BrokerError as e:
            self._log(record, api_key_id, False, elapsed_ms(start), None, error=e.message)
            raise

        duration = elapsed_ms(start)
        size = len(json.dumps(rows, default=str))
        self._log(record, api_key_id, True, duration, size)
        if record.get("cache_enabled"):
            ttl = record.get("cache_duration")
            self._results.set(key, rows, ttl=DEFAULT_CACHE_DURATION if ttl is None else ttl)
        return QueryResult(rows, False, duration, size)

    def _log(
        self,
        record: dict[str, Any],
        api_key_id: str | None,
        success: bool,
        duration_ms: int,
        response_size: int | None,
        *,
        cached: bool = False,
        error: str | None = None,
    ) -> None:
        self.call_logger.record(
            "query",
            target_id=record["id"],
            api_key_id=api_key_id,
            method=record.get("method"),
            path=record.get("path"),
            action="query",
            success=success,
            duration_ms=duration_ms,
            response_size=response_size,
            cached=cached,
            error=error,
        )

    async def test_definition(
        self,
        query_id: str | None = None,
        *,
        connection_id: str | None = None,
        query: str | None = None,
        api_key_id: str | None = None,
    ) -> dict[str, Any]:
        """Run a stored or unsaved query without parameters.

        Connection and SQL failures are reported in the result, not raised.

        Returns:
            {"success", "message", "row_count", "sample_data"}

        Raises:
            NotFoundError: query_id given but unknown.
            ParameterError: Neither query_id nor connection_id plus query.
        """
        if query_id is not None:
            record = await self._load(query_id, require_active=False)
            connection_id = connection_id or record["connection_id"]
            query = query or record["query"]
        if not connection_id or not query:
            raise ParameterError("connection_id and query are required")

        try:
            rows = await self.broker.execute_query(connection_id, query, [], api_key_id=api_key_id)
        except BrokerError as e:
            return {"success": False, "message": e.message, "row_count": 0, "sample_data": []}
        return {
            "success": True,
            "message": "Query executed successfully",
            "row_count": len(rows),
            "sample_data": rows[:SAMPLE_ROWS],
        }

    def invalidate(self, query_id: str) -> int:
        """Evict every cached result of query_id. Returns the number evicted."""
        evicted = self._results.evict(lambda key: key[0] == query_id)
        if evicted:
            logger.debug("Evicted %d cached results of query %s", evicted, query_id)
        return evicted


__all__ = ["DynamicQueryEngine", "QueryResult", "bind_parameters"]
