# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Tests for ProvidersTable."""

from __future__ import annotations

import pytest

from api_broker.entities.provider.table import check_auth_config
from api_broker.errors import ParameterError


class TestCheckAuthConfig:
    def test_no_auth_needs_nothing(self):
        check_auth_config({"requires_auth": False})

    def test_header_name_required(self):
        """requires_auth without a header to inject is rejected."""
        with pytest.raises(ParameterError, match="header_name"):
            check_auth_config({"requires_auth": True, "auth_config": {"header_value": "x"}})

    def test_valid(self):
        check_auth_config(
            {"requires_auth": True, "auth_config": {"header_name": "Authorization", "header_value": "Bearer t"}}
        )


class TestProvidersTable:
    async def test_defaults(self, broker):
        """Timeout, rate limit and active flag get their defaults."""
        async with broker.db.connection():
            table = broker.db.table("providers")
            record = {"name": "Acme", "base_url": "https://acme.test"}
            await table.insert(record)
            stored = await table.record(pkey=record["id"])
        assert len(record["id"]) == 32
        assert stored["timeout_ms"] == 30000
        assert stored["rate_limit"] == 1000
        assert stored["active"] is True
        assert stored["requires_auth"] is False

    async def test_auth_config_round_trip(self, broker):
        """auth_config is stored as JSON and read back as a dict."""
        auth = {"header_name": "X-Api-Key", "header_value": "s3cret"}
        async with broker.db.connection():
            table = broker.db.table("providers")
            await table.insert(
                {"id": "P9", "name": "A", "base_url": "https://a.test", "requires_auth": True, "auth_config": auth}
            )
            assert (await table.record(pkey="P9"))["auth_config"] == auth

    async def test_update_checks_auth(self, broker):
        async with broker.db.connection():
            table = broker.db.table("providers")
            await table.insert({"id": "P9", "name": "A", "base_url": "https://a.test"})
            with pytest.raises(ParameterError):
                await table.update({"requires_auth": True}, {"id": "P9"})

    async def test_delete_cascades_to_endpoints(self, broker, provider):
        """Deleting a provider drops its endpoint templates."""
        async with broker.db.connection():
            assert await broker.db.table("providers").delete({"id": provider}) == 1
            assert await broker.db.table("provider_endpoints").count({"provider_id": provider}) == 0
