# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Interface layer of the API broker.

- endpoint_base: BaseEndpoint for entity operations with introspection
- api_base: FastAPI application factory (management routes)
- gateway_routes: client routes (proxy, dynamic queries, connection test)
- cli_base: Click CLI command generation
"""

from .api_base import API_TOKEN_HEADER, ApiManager, auth_dependency, register_api_endpoint, require_token
from .cli_base import CliManager, console, register_endpoint
from .endpoint_base import POST, BaseEndpoint, EndpointManager, endpoint
from .gateway_routes import API_KEY_HEADER, create_gateway_router, require_api_key

__all__ = [
    # API
    "API_KEY_HEADER",
    "API_TOKEN_HEADER",
    "ApiManager",
    "auth_dependency",
    "create_gateway_router",
    "register_api_endpoint",
    "require_api_key",
    "require_token",
    # CLI
    "CliManager",
    "console",
    "register_endpoint",
    # Endpoints
    "BaseEndpoint",
    "EndpointManager",
    "POST",
    "endpoint",
]
