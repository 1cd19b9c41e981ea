# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""FastAPI application manager with automatic route generation from endpoints.

Two surfaces share one application:

- Management routes under ``/api/{endpoint}/{method}``, generated from the
  entity endpoints and protected by the admin token (X-API-Token header).
- Gateway routes (``/proxy/...``, ``/dynamic-queries/...``,
  ``/database-connections/test``) for API-key clients, see gateway_routes.

Components:
    ApiManager: FastAPI application factory and lifecycle manager.
    register_api_endpoint: Register endpoint methods as API routes.
    require_token: Admin token dependency for the management routes.
"""

from __future__ import annotations

import logging
import secrets
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, Response
from fastapi.security import APIKeyHeader
from pydantic import ValidationError

from ..errors import BrokerError
from .endpoint_base import BaseEndpoint
from .gateway_routes import create_gateway_router

if TYPE_CHECKING:
    from ..broker_base import ApiBroker

logger = logging.getLogger(__name__)

# =============================================================================
# Authentication
# =============================================================================

API_TOKEN_HEADER = "X-API-Token"
api_token_scheme = APIKeyHeader(name=API_TOKEN_HEADER, auto_error=False)


async def require_token(
    request: Request,
    api_token: str | None = Depends(api_token_scheme),
) -> None:
    """Validate the admin token from the X-API-Token header.

    Raises:
        HTTPException: 401 if the token is missing or wrong (when configured).
    """
    expected = getattr(request.app.state, "api_token", None)
    if expected is None:
        return  # No token configured = open access
    if not api_token:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing API token")
    if not secrets.compare_digest(api_token, expected):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid API token")


auth_dependency = Depends(require_token)


def _json(content: Any, status_code: int = 200) -> Response:
    return JSONResponse(content=jsonable_encoder(content), status_code=status_code)


def register_api_endpoint(router: APIRouter, endpoint: BaseEndpoint) -> None:
    """Register all API-enabled methods of an endpoint as routes.

    Creates ``/{endpoint_name}/{method-name}`` routes; GET methods read
    params from the query string, POST methods from the JSON body.
    Responses are ``{"data": result}``; failures are ``{"error": ...}``
    (422 validation, 404 ValueError, BrokerError status, 500 otherwise).
    """
    for method_name, method in endpoint.get_methods():
        if not endpoint.is_available_for_channel(method_name, "api"):
            continue
        http_method = endpoint.get_http_method(method_name)
        path = f"/{endpoint.name}/{method_name.replace('_', '-')}"
        _add_route(router, endpoint, method_name, path, method, http_method)


def _add_route(
    router: APIRouter,
    endpoint: BaseEndpoint,
    method_name: str,
    path: str,
    method: Any,
    http_method: str,
) -> None:
    async def route_handler(request: Request) -> Response:
        if http_method == "POST":
            try:
                params = await request.json() if await request.body() else {}
            except ValueError:
                params = {}
            if not isinstance(params, dict):
                return _json({"error": "JSON object body required"}, 422)
        else:
            params = dict(request.query_params)

        try:
            result = await endpoint.invoke(method_name, params)
            return _json({"data": result})
        except ValidationError as e:
            return _json({"error": e.errors(include_url=False, include_context=False)}, 422)
        except BrokerError as e:
            return _json({"error": e.message, **e.context}, e.status_code)
        except ValueError as e:
            return _json({"error": str(e)}, 404)
        except Exception as e:
            logger.exception("%s %s failed", http_method, path)
            return _json({"error": str(e)}, 500)

    route_handler.__doc__ = method.__doc__
    router.add_api_route(path, route_handler, methods=[http_method])


class ApiManager:
    """Manager for FastAPI application. Creates app lazily on first access.

    Authentication of the management routes is controlled by
    broker.config.api_token:
    - If set: X-API-Token header required for all /api/* routes
    - If None: open access (development mode)

    Attributes:
        broker: Parent ApiBroker instance.
    """

    def __init__(self, parent: ApiBroker):
        self.broker = parent
        self._app: FastAPI | None = None

    @property
    def app(self) -> FastAPI:
        """Lazy-create FastAPI application."""
        if self._app is None:
            self._app = self._create_app()
        return self._app

    def _create_app(self) -> FastAPI:
        """Create and configure FastAPI application."""
        app = FastAPI(
            title=f"{self.broker.config.instance_name} API",
            version="0.1.0",
            lifespan=self._lifespan,
        )
        app.state.api_token = self.broker.config.api_token
        app.state.broker = self.broker

        @app.exception_handler(BrokerError)
        async def broker_error_handler(_request: Request, exc: BrokerError) -> Response:
            return _json(exc.to_dict(), exc.status_code)

        @app.exception_handler(Exception)
        async def unexpected_error_handler(_request: Request, exc: Exception) -> Response:
            logger.exception("Unhandled error: %s", exc)
            return _json({"success": False, "message": "Internal server error"}, 500)

        @app.get("/health")
        async def health():
            return {"status": "ok"}

        router = APIRouter(prefix="/api", dependencies=[auth_dependency])
        for endpoint in self.broker.endpoints.values():
            register_api_endpoint(router, endpoint)
        app.include_router(router)

        app.include_router(create_gateway_router(self.broker))
        return app

    @asynccontextmanager
    async def _lifespan(self, _app: Any):
        """Manage application lifecycle."""
        await self.broker.init()
        yield
        await self.broker.shutdown()


__all__ = [
    "API_TOKEN_HEADER",
    "ApiManager",
    "auth_dependency",
    "register_api_endpoint",
    "require_token",
]
