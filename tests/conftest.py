# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Shared fixtures: a broker on a temporary registry, a fake upstream, a target database.

Upstream HTTP calls go through httpx.MockTransport; nothing leaves the
process. The target database is a SQLite file registered as a sqlite
db_connection, so the Connection Broker and query engine run end to end
without a MySQL or PostgreSQL server.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Any

import aiosqlite
import httpx
import pytest
import pytest_asyncio

from api_broker.broker_base import ApiBroker, BrokerConfig


class FakeUpstream:
    """MockTransport handler that records requests and replays canned responses.

    Unregistered routes answer 200 with ``{"path": ..., "method": ...}``.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self._routes: dict[tuple[str, str], Any] = {}

    def add(self, method: str, path: str, status: int = 200, json: Any = None) -> None:
        self._routes[(method, path)] = (status, json)

    def fail(self, method: str, path: str, exc: Exception) -> None:
        self._routes[(method, path)] = exc

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self._routes.get((request.method, request.url.path))
        if isinstance(route, Exception):
            raise route
        if route is None:
            return httpx.Response(
                200, json={"path": request.url.path, "method": request.method}
            )
        status, body = route
        return httpx.Response(status, json=body)

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def config(tmp_path) -> BrokerConfig:
    return BrokerConfig(
        db_path=str(tmp_path / "registry.db"),
        require_api_key=False,
        connect_timeout=5.0,
    )


@pytest_asyncio.fixture
async def broker(
    config: BrokerConfig, upstream: FakeUpstream, monkeypatch
) -> AsyncGenerator[ApiBroker, None]:
    """Initialized broker with an empty registry and a fake upstream."""
    monkeypatch.delenv("API_BROKER_ENCRYPTION_KEY", raising=False)
    broker = ApiBroker(config, http_transport=httpx.MockTransport(upstream))
    await broker.init()
    yield broker
    await broker.shutdown()


@pytest_asyncio.fixture
async def target_db(tmp_path) -> str:
    """SQLite file with a small users table."""
    path = str(tmp_path / "target.db")
    async with aiosqlite.connect(path) as conn:
        await conn.execute(
            "CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT NOT NULL, active INTEGER)"
        )
        await conn.executemany(
            "INSERT INTO users (id, name, active) VALUES (?, ?, ?)",
            [(1, "ada", 1), (2, "bob", 0), (5, "eve", 1)],
        )
        await conn.commit()
    return path


@pytest_asyncio.fixture
async def sqlite_connection(broker: ApiBroker, target_db: str) -> str:
    """Register target_db as connection "C1" and return its id."""
    async with broker.db.connection():
        await broker.db.table("db_connections").insert(
            {"id": "C1", "name": "target", "dialect": "sqlite", "database": target_db}
        )
    return "C1"


@pytest_asyncio.fixture
async def provider(broker: ApiBroker) -> str:
    """Register provider "P1" with three endpoint templates and return its id."""
    async with broker.db.connection():
        await broker.db.table("providers").insert(
            {
                "id": "P1",
                "name": "JSONPlaceholder",
                "base_url": "https://jsonplaceholder.typicode.com",
            }
        )
        endpoints = broker.db.table("provider_endpoints")
        await endpoints.insert({"provider_id": "P1", "method": "GET", "path": "/todos/{id}"})
        await endpoints.insert({"provider_id": "P1", "method": "GET", "path": "/users"})
        await endpoints.insert({"provider_id": "P1", "method": "POST", "path": "/todos"})
    return "P1"


@pytest.fixture
def call_records(broker: ApiBroker):
    """Async helper: flush pending call records and return matching rows, oldest first."""

    async def fetch(**filters: Any) -> list[dict[str, Any]]:
        await broker.call_logger.drain()
        async with broker.db.connection():
            rows = await broker.db.table("call_log").list_records(limit=1000, **filters)
        return list(reversed(rows))

    return fetch
