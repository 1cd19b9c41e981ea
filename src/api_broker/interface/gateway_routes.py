# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Client-facing gateway routes.

Routes:
    /proxy/provider/{provider_id}/{path}   GET POST PUT DELETE PATCH
    /proxy/dynamic/{api_id}                GET POST
    POST /dynamic-queries/{query_id}/execute
    POST /dynamic-queries/{query_id}/test
    POST /database-connections/test

Clients authenticate with an API key in ``X-API-Key`` or
``Authorization: Bearer <key>`` unless the broker runs with
require_api_key disabled. BrokerError failures propagate to the
application's exception handler, which renders
``{"success": false, "message": ..., **context}``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Depends, Header, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader

from ..errors import ParameterError

if TYPE_CHECKING:
    from ..broker_base import ApiBroker

API_KEY_HEADER = "X-API-Key"
api_key_scheme = APIKeyHeader(name=API_KEY_HEADER, auto_error=False)

PROVIDER_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH"]


def bearer_token(authorization: str | None) -> str | None:
    """Extract the token of an ``Authorization: Bearer ...`` header."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def require_api_key(
    request: Request,
    api_key: str | None = Depends(api_key_scheme),
    authorization: str | None = Header(default=None),
) -> dict[str, Any] | None:
    """Authenticate the client API key. Returns the key record (no hash).

    Raises:
        AuthenticationError: 401/403, rendered by the exception handler.
    """
    broker: ApiBroker = request.app.state.broker
    if not broker.config.require_api_key:
        return None
    raw_key = api_key or bearer_token(authorization)
    client_ip = request.client.host if request.client else None
    async with broker.db.connection():
        return await broker.db.table("api_keys").authenticate(raw_key, client_ip)


def _key_id(api_key: dict[str, Any] | None) -> str | None:
    return api_key["id"] if api_key else None


async def read_json_body(request: Request) -> Any:
    """Return the decoded JSON body, or None when the body is empty.

    Raises:
        ParameterError: Body is not valid JSON.
    """
    raw = await request.body()
    if not raw:
        return None
    try:
        return await request.json()
    except ValueError:
        raise ParameterError("Request body must be valid JSON") from None


def create_gateway_router(broker: ApiBroker) -> APIRouter:
    """Build the client router bound to a broker."""
    router = APIRouter(tags=["gateway"])
    auth = Depends(require_api_key)

    @router.api_route("/proxy/provider/{provider_id}/{path:path}", methods=PROVIDER_METHODS)
    async def proxy_provider(
        provider_id: str, path: str, request: Request, api_key=auth
    ) -> dict[str, Any]:
        """Forward to a provider endpoint matching ``method /path``."""
        body = None if request.method == "GET" else await read_json_body(request)
        return await broker.proxy_service.call_provider(
            provider_id,
            request.method,
            path,
            params=list(request.query_params.multi_items()),
            body=body,
            api_key_id=_key_id(api_key),
        )

    @router.api_route("/proxy/dynamic/{api_id}", methods=["GET", "POST"])
    async def proxy_external_api(api_id: str, request: Request, api_key=auth) -> dict[str, Any]:
        """Call an external API; placeholders come from the query (GET) or body (POST)."""
        if request.method == "GET":
            return await broker.proxy_service.call_external_api(
                api_id, params=dict(request.query_params), api_key_id=_key_id(api_key)
            )
        body = await read_json_body(request)
        return await broker.proxy_service.call_external_api(
            api_id,
            params=dict(request.query_params),
            body={} if body is None else body,
            api_key_id=_key_id(api_key),
        )

    @router.post("/dynamic-queries/{query_id}/execute")
    async def execute_query(query_id: str, request: Request, api_key=auth) -> dict[str, Any]:
        """Run a dynamic query with ``{"params": [...] | {...}}``."""
        body = await read_json_body(request) or {}
        if not isinstance(body, dict):
            raise ParameterError("Request body must be a JSON object")
        result = await broker.engine.execute(
            query_id, body.get("params"), api_key_id=_key_id(api_key)
        )
        return result.to_response()

    @router.post("/dynamic-queries/{query_id}/test")
    async def test_query(query_id: str, api_key=auth) -> JSONResponse:
        """Run a stored query without parameters and report a sample."""
        result = await broker.engine.test_definition(query_id, api_key_id=_key_id(api_key))
        if not result["success"]:
            return JSONResponse({"success": False, "message": result["message"]}, 400)
        return JSONResponse(
            jsonable_encoder(
                {
                    "success": True,
                    "data": {
                        "message": result["message"],
                        "rowCount": result["row_count"],
                        "sampleData": result["sample_data"],
                    },
                }
            )
        )

    @router.post("/database-connections/test")
    async def test_connection(request: Request, api_key=auth) -> JSONResponse:
        """Try unsaved connection settings (SELECT 1) without storing them."""
        body = await read_json_body(request)
        if not isinstance(body, dict):
            raise ParameterError("Request body must be a JSON object")
        result = await broker.connections.test_connection(body, api_key_id=_key_id(api_key))
        return JSONResponse(result, status_code=200 if result["success"] else 400)

    return router


__all__ = [
    "API_KEY_HEADER",
    "bearer_token",
    "create_gateway_router",
    "read_json_body",
    "require_api_key",
]
