# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Tests for ExternalApiEndpoint."""

from __future__ import annotations


class TestExternalApiEndpoint:
    async def test_crud(self, invoke):
        created = await invoke(
            "external_apis",
            "add",
            name="Weather",
            base_url="https://api.weather.test",
            endpoint="/forecast/{city}",
            auth_config={"header_name": "X-Key", "header_value": "k"},
            requires_auth=True,
        )
        assert created["auth_config"] == {"header_name": "X-Key", "header_value": "k"}

        updated = await invoke("external_apis", "update", id=created["id"], method="put", timeout_ms=500)
        assert updated["method"] == "PUT"
        assert updated["timeout_ms"] == 500
        assert updated["endpoint"] == "/forecast/{city}"

        assert [a["id"] for a in await invoke("external_apis", "list")] == [created["id"]]
        assert await invoke("external_apis", "delete", id=created["id"]) is True
        assert await invoke("external_apis", "list") == []

    async def test_auth_config_as_json_string(self, invoke):
        """CLI and query strings pass dicts as JSON text."""
        created = await invoke(
            "external_apis",
            "add",
            name="A",
            base_url="https://a.test",
            auth_config='{"header_name": "X-Key", "header_value": "k"}',
        )
        assert created["auth_config"]["header_name"] == "X-Key"
