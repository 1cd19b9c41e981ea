# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Configuration and application root of the API broker.

This module defines:
- BrokerConfig: Configuration dataclass
- config_from_env(): Factory to build config from API_BROKER_* env vars
- ApiBroker: Wires the registry store, gateway core, endpoints and interfaces

Configuration via environment variables:
    API_BROKER_DB: Registry path (SQLite file or PostgreSQL URL)
    API_BROKER_API_TOKEN: Admin token for /api/* (unset = open access)
    API_BROKER_INSTANCE: Instance name for display
    API_BROKER_HOST / API_BROKER_PORT: Server bind address
    API_BROKER_REQUIRE_API_KEY: Require client API keys (default: true)
    API_BROKER_CONNECT_TIMEOUT: SSH/DB connect deadline, seconds (default: 10)
    API_BROKER_CONNECTION_TTL: Cached DB link lifetime, seconds (default: 300)
    API_BROKER_KEEPALIVE_INTERVAL: SSH keepalive interval, seconds (default: 10)
    API_BROKER_KEEPALIVE_COUNT_MAX: Missed SSH keepalives tolerated (default: 3)
    API_BROKER_USER_AGENT: User-Agent sent upstream
    API_BROKER_ENCRYPTION_KEY: Base64 32-byte key for secrets at rest

ApiBroker provides:
1. Configuration: BrokerConfig instance at self.config
2. Encryption: EncryptionManager at self.encryption
3. Database: SqlDb at self.db with autodiscovered Table classes
4. Gateway core: call_logger, forwarder, tunnels, connections, engine,
   proxy_service
5. Endpoints: EndpointManager at self.endpoints
6. API: ApiManager at self.api (creates FastAPI app lazily)
7. CLI: CliManager at self.cli (creates Click group lazily)

Usage:
    broker = ApiBroker(config=config_from_env())
    await broker.init()
    result = await broker.proxy_service.call_provider(provider_id, "GET", "/todos/5")
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

import httpx

from .encryption import EncryptionManager
from .gateway import (
    CallLogger,
    ConnectionBroker,
    DynamicQueryEngine,
    ProxyService,
    RequestForwarder,
    TunnelManager,
)
from .gateway.forwarder import DEFAULT_USER_AGENT
from .interface.api_base import ApiManager
from .interface.cli_base import CliManager
from .interface.endpoint_base import EndpointManager
from .sql import SqlDb

logger = logging.getLogger(__name__)

_TRUE = ("1", "true", "yes", "on")


@dataclass
class BrokerConfig:
    """API broker configuration.

    Attributes:
        db_path: SQLite/PostgreSQL registry path.
        instance_name: Service identifier for display.
        host: Default bind host for the API server.
        port: Default port for the API server.
        api_token: Admin token for the management routes. None = no auth.
        require_api_key: Require a client API key on gateway routes.
        connect_timeout: Deadline for SSH and database connection setup.
        connection_ttl: Lifetime of a cached database link.
        keepalive_interval: Seconds between SSH keepalive probes.
        keepalive_count_max: Missed SSH keepalive probes tolerated.
        user_agent: User-Agent header sent upstream.
    """

    db_path: str = "/data/api_broker.db"
    instance_name: str = "api-broker"
    host: str = "0.0.0.0"
    port: int = 8000
    api_token: str | None = None
    require_api_key: bool = True
    connect_timeout: float = 10.0
    connection_ttl: float = 300.0
    keepalive_interval: float = 10.0
    keepalive_count_max: int = 3
    user_agent: str = DEFAULT_USER_AGENT


def config_from_env() -> BrokerConfig:
    """Build BrokerConfig from API_BROKER_* environment variables."""
    env = os.environ.get
    return BrokerConfig(
        db_path=env("API_BROKER_DB", "/data/api_broker.db"),
        instance_name=env("API_BROKER_INSTANCE", "api-broker"),
        host=env("API_BROKER_HOST", "0.0.0.0"),
        port=int(env("API_BROKER_PORT", "8000")),
        api_token=env("API_BROKER_API_TOKEN") or None,
        require_api_key=env("API_BROKER_REQUIRE_API_KEY", "true").lower() in _TRUE,
        connect_timeout=float(env("API_BROKER_CONNECT_TIMEOUT", "10")),
        connection_ttl=float(env("API_BROKER_CONNECTION_TTL", "300")),
        keepalive_interval=float(env("API_BROKER_KEEPALIVE_INTERVAL", "10")),
        keepalive_count_max=int(env("API_BROKER_KEEPALIVE_COUNT_MAX", "3")),
        user_agent=env("API_BROKER_USER_AGENT", DEFAULT_USER_AGENT),
    )


class ApiBroker:
    """Foundation layer: config, encryption, registry, gateway core, interfaces.

    Attributes:
        config: BrokerConfig instance
        encryption: EncryptionManager for field encryption
        db: SqlDb with autodiscovered Table classes
        call_logger: Fire-and-forget call record writer
        forwarder: Outbound HTTP client
        tunnels: SSH tunnel manager
        connections: ConnectionBroker (database links)
        engine: DynamicQueryEngine
        proxy_service: Provider and external-API proxy flows
        endpoints: EndpointManager with autodiscovered Endpoint instances
        api: ApiManager (creates FastAPI app lazily)
        cli: CliManager (creates Click group lazily)

    Args:
        config: Defaults to BrokerConfig().
        http_transport: httpx transport for upstream calls (tests pass
            httpx.MockTransport).
    """

    entity_packages: list[str] = ["api_broker.entities"]
    encryption_key_env: str = "API_BROKER_ENCRYPTION_KEY"

    def __init__(
        self,
        config: BrokerConfig | None = None,
        *,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config or BrokerConfig()

        self.encryption = EncryptionManager(parent=self, env_var=self.encryption_key_env)

        self.db = SqlDb(self.config.db_path, parent=self)
        self.db.discover(*self.entity_packages)

        self.call_logger = CallLogger(self.db)
        self.forwarder = RequestForwarder(self.config.user_agent, transport=http_transport)
        self.tunnels = TunnelManager(
            connect_timeout=self.config.connect_timeout,
            keepalive_interval=self.config.keepalive_interval,
            keepalive_count_max=self.config.keepalive_count_max,
        )
        self.connections = ConnectionBroker(
            self.db,
            self.call_logger,
            self.tunnels,
            connect_timeout=self.config.connect_timeout,
            ttl=self.config.connection_ttl,
        )
        self.engine = DynamicQueryEngine(self.db, self.connections, self.call_logger)
        self.proxy_service = ProxyService(self.db, self.forwarder, self.call_logger)

        self.endpoints = EndpointManager(parent=self)
        self.endpoints.discover(*self.entity_packages)

        self.api = ApiManager(parent=self)
        self.cli = CliManager(parent=self)

    @property
    def encryption_key(self) -> bytes | None:
        """Encryption key for database field encryption. None if not configured."""
        return self.encryption.key

    async def init(self) -> None:
        """Create the registry tables within a transaction."""
        async with self.db.connection():
            await self.db.check_structure()
        logger.info("API broker '%s' initialized", self.config.instance_name)

    async def shutdown(self) -> None:
        """Flush call records, close links, the HTTP client and the store."""
        await self.call_logger.drain()
        await self.connections.shutdown()
        await self.forwarder.aclose()
        await self.db.shutdown()


__all__ = ["ApiBroker", "BrokerConfig", "config_from_env"]
