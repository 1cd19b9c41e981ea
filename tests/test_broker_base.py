# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Tests for broker_base - configuration and wiring."""

from __future__ import annotations

import pytest

from api_broker.broker_base import ApiBroker, BrokerConfig, config_from_env
from api_broker.gateway.forwarder import DEFAULT_USER_AGENT


class TestConfigFromEnv:
    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        for name in (
            "API_BROKER_DB",
            "API_BROKER_API_TOKEN",
            "API_BROKER_INSTANCE",
            "API_BROKER_HOST",
            "API_BROKER_PORT",
            "API_BROKER_REQUIRE_API_KEY",
            "API_BROKER_CONNECT_TIMEOUT",
            "API_BROKER_CONNECTION_TTL",
            "API_BROKER_KEEPALIVE_INTERVAL",
            "API_BROKER_KEEPALIVE_COUNT_MAX",
            "API_BROKER_USER_AGENT",
        ):
            monkeypatch.delenv(name, raising=False)

    def test_defaults(self):
        assert config_from_env() == BrokerConfig()
        assert BrokerConfig().user_agent == DEFAULT_USER_AGENT

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("API_BROKER_DB", "postgresql://u:p@db/broker")
        monkeypatch.setenv("API_BROKER_API_TOKEN", "s3cret")
        monkeypatch.setenv("API_BROKER_PORT", "9000")
        monkeypatch.setenv("API_BROKER_CONNECT_TIMEOUT", "2.5")
        monkeypatch.setenv("API_BROKER_CONNECTION_TTL", "60")
        monkeypatch.setenv("API_BROKER_KEEPALIVE_COUNT_MAX", "5")

        config = config_from_env()
        assert config.db_path == "postgresql://u:p@db/broker"
        assert config.api_token == "s3cret"
        assert config.port == 9000
        assert config.connect_timeout == 2.5
        assert config.connection_ttl == 60.0
        assert config.keepalive_count_max == 5

    @pytest.mark.parametrize(
        "value,expected", [("true", True), ("1", True), ("off", False), ("no", False)]
    )
    def test_require_api_key(self, monkeypatch, value, expected):
        monkeypatch.setenv("API_BROKER_REQUIRE_API_KEY", value)
        assert config_from_env().require_api_key is expected

    def test_empty_token_means_open_access(self, monkeypatch):
        monkeypatch.setenv("API_BROKER_API_TOKEN", "")
        assert config_from_env().api_token is None


class TestApiBroker:
    def test_wiring(self, tmp_path, monkeypatch):
        monkeypatch.delenv("API_BROKER_ENCRYPTION_KEY", raising=False)
        broker = ApiBroker(
            BrokerConfig(db_path=str(tmp_path / "r.db"), connect_timeout=3, connection_ttl=30)
        )
        assert set(broker.db.tables) == set(broker.endpoints)
        assert broker.connections.connect_timeout == 3
        assert broker.tunnels.connect_timeout == 3
        assert broker.encryption_key is None
        assert broker.endpoints["providers"].broker is broker

    async def test_init_creates_registry(self, broker):
        async with broker.db.connection():
            assert await broker.db.table("providers").select() == []
            assert await broker.db.table("call_log").count() == 0
