# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Tests for ProviderEndpointEndpoint - template CRUD and resolve."""

from __future__ import annotations

import pytest

from api_broker.errors import NotFoundError


class TestProviderEndpointEndpoint:
    async def test_add_appends_position(self, invoke, provider):
        result = await invoke("provider_endpoints", "add", provider_id=provider, path="/comments")
        assert result["method"] == "GET"
        assert result["position"] == 3

    async def test_add_unknown_provider(self, invoke):
        with pytest.raises(ValueError, match="Provider 'nope' not found"):
            await invoke("provider_endpoints", "add", provider_id="nope", path="/x")

    async def test_list_for_provider(self, invoke, provider):
        paths = [e["path"] for e in await invoke("provider_endpoints", "list", provider_id=provider)]
        assert paths == ["/todos/{id}", "/users", "/todos"]

    async def test_resolve(self, invoke, provider):
        """resolve() shows the template a request would hit, without forwarding."""
        result = await invoke(
            "provider_endpoints", "resolve", provider_id=provider, method="GET", path="/todos/42"
        )
        assert result["endpoint"]["path"] == "/todos/{id}"
        assert result["params"] == {"id": "42"}
        assert result["exact"] is False

    async def test_resolve_no_match(self, invoke, provider):
        with pytest.raises(NotFoundError) as exc_info:
            await invoke("provider_endpoints", "resolve", provider_id=provider, method="PUT", path="/todos/1")
        assert "POST /todos" in exc_info.value.context["availableEndpoints"]

    async def test_update_deactivates(self, invoke, provider):
        users = (await invoke("provider_endpoints", "list", provider_id=provider))[1]
        updated = await invoke("provider_endpoints", "update", id=users["id"], active=False)
        assert updated["active"] is False
        active = await invoke("provider_endpoints", "list", provider_id=provider, active_only=True)
        assert users["id"] not in [e["id"] for e in active]
