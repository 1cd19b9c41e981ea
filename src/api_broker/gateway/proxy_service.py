# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Provider and external-API proxy flows.

Each call runs lookup, match, forward and log, in that order. A missing or
inactive target and an unmatched path fail before anything is sent
upstream. Every forward attempt writes one generic ``api`` call record and
one ``provider`` or ``external_api`` record, whatever its outcome.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from ..errors import InactiveError, NotFoundError, UpstreamError
from .forwarder import ForwardResult, ForwardTarget, QueryParams, RequestForwarder, join_url
from .matcher import EndpointMatcher, PathTemplate

if TYPE_CHECKING:
    from ..sql import SqlDb
    from .call_logger import CallLogger

logger = logging.getLogger(__name__)

PROXIED_BY = "API Broker"


class ProxyService:
    """Resolve registered targets and forward calls to them.

    Args:
        db: Registry store (providers, provider_endpoints, external_apis).
        forwarder: Outbound HTTP client.
        call_logger: Recorder for api/provider/external_api call records.
        matcher: Endpoint matcher; a fresh one by default.
    """

    def __init__(
        self,
        db: SqlDb,
        forwarder: RequestForwarder,
        call_logger: CallLogger,
        matcher: EndpointMatcher | None = None,
    ):
        self.db = db
        self.forwarder = forwarder
        self.call_logger = call_logger
        self.matcher = matcher or EndpointMatcher()

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    async def load_provider(self, provider_id: str) -> tuple[dict[str, Any], list[dict[str, Any]]]:
        """Return the active provider and its active endpoints in stored order.

        Raises:
            NotFoundError: Unknown provider.
            InactiveError: Provider is disabled.
        """
        async with self.db.connection():
            provider = await self.db.table("providers").record(pkey=provider_id, ignore_missing=True)
            if not provider:
                raise NotFoundError("API Provider not found")
            if not provider.get("active"):
                raise InactiveError("API Provider is not active")
            endpoints = await self.db.table("provider_endpoints").endpoints_for(provider_id)
        return provider, endpoints

    async def load_external_api(self, api_id: str) -> dict[str, Any]:
        """Raises NotFoundError or InactiveError like load_provider()."""
        async with self.db.connection():
            record = await self.db.table("external_apis").record(pkey=api_id, ignore_missing=True)
        if not record:
            raise NotFoundError("External API not found")
        if not record.get("active"):
            raise InactiveError("External API is not active")
        return record

    # -------------------------------------------------------------------------
    # Logging
    # -------------------------------------------------------------------------

    def _log(
        self,
        kind: str,
        target_id: str,
        route: str,
        method: str,
        api_key_id: str | None,
        **outcome: Any,
    ) -> None:
        for log_kind in ("api", kind):
            self.call_logger.record(
                log_kind,
                target_id=target_id,
                api_key_id=api_key_id,
                method=method,
                path=route,
                action="forward",
                **outcome,
            )

    async def _forward(
        self,
        kind: str,
        target_id: str,
        route: str,
        target: ForwardTarget,
        method: str,
        url: str,
        *,
        params: QueryParams | None,
        body: Any,
        api_key_id: str | None,
        error_message: str,
    ) -> ForwardResult:
        log = functools.partial(self._log, kind, target_id, route, method, api_key_id)
        try:
            result = await self.forwarder.send(target, method, url, params=params, body=body)
        except UpstreamError as e:
            log(
                url=e.url,
                status_code=e.status_code,
                success=False,
                duration_ms=e.duration_ms or 0,
                error=e.message,
            )
            raise UpstreamError(
                error_message,
                status_code=500,
                duration_ms=e.duration_ms,
                url=e.url,
                error=e.message,
            ) from e
        log(
            url=result.url,
            status_code=result.status_code,
            success=result.ok,
            duration_ms=result.duration_ms,
            response_size=result.response_size,
            error=None if result.ok else f"Upstream returned {result.status_code}",
        )
        if not result.ok:
            raise UpstreamError(
                error_message,
                status_code=result.status_code,
                duration_ms=result.duration_ms,
                url=result.url,
                error=result.data,
            )
        return result

    # -------------------------------------------------------------------------
    # Flows
    # -------------------------------------------------------------------------

    async def call_provider(
        self,
        provider_id: str,
        method: str,
        path: str,
        *,
        params: QueryParams | None = None,
        body: Any = None,
        api_key_id: str | None = None,
    ) -> dict[str, Any]:
        """Forward ``method path`` to a provider's matching endpoint.

        The literal path (not the template) is appended to the provider's
        base URL.

        Returns:
            {"success": True, "data": ..., "metadata": {...}}

        Raises:
            NotFoundError: Unknown provider, or no endpoint matched
                (carries availableEndpoints).
            InactiveError: Provider is disabled.
            UpstreamError: Upstream error status, network error or timeout.
        """
        provider, endpoints = await self.load_provider(provider_id)
        self.matcher.match(endpoints, method, path)

        target = ForwardTarget.from_record(provider)
        route = f"/proxy/provider/{provider_id}/{path.lstrip('/')}"
        url = join_url(target.base_url, path)
        logger.debug("Forwarding %s %s to provider %s", method, path, provider_id)
        result = await self._forward(
            "provider",
            provider_id,
            route,
            target,
            method.upper(),
            url,
            params=params,
            body=body,
            api_key_id=api_key_id,
            error_message="API Provider error",
        )
        return {
            "success": True,
            "data": result.data,
            "metadata": {
                "provider": provider["name"],
                "endpoint": path,
                "responseTime": f"{result.duration_ms}ms",
                "proxiedBy": PROXIED_BY,
                "providerId": provider_id,
            },
        }

    async def call_external_api(
        self,
        api_id: str,
        *,
        params: Mapping[str, Any] | None = None,
        body: Any = None,
        api_key_id: str | None = None,
    ) -> dict[str, Any]:
        """Call an external API with its stored verb.

        ``{name}`` placeholders in the stored endpoint are filled from params
        when body is None, otherwise from the body object.

        Raises:
            NotFoundError: Unknown external API.
            InactiveError: External API is disabled.
            ParameterError: A placeholder has no value.
            UpstreamError: Upstream error status, network error or timeout.
        """
        record = await self.load_external_api(api_id)
        method = str(record.get("method") or "GET").upper()
        values = body if isinstance(body, Mapping) else (params or {})
        endpoint = PathTemplate.parse(record.get("endpoint") or "").expand(values)

        target = ForwardTarget.from_record(record)
        url = target.base_url + endpoint
        result = await self._forward(
            "external_api",
            api_id,
            f"/proxy/dynamic/{api_id}",
            target,
            method,
            url,
            params=params if body is None else None,
            body=body,
            api_key_id=api_key_id,
            error_message="External API error",
        )
        return {
            "success": True,
            "data": result.data,
            "metadata": {
                "source": record["base_url"],
                "apiName": record["name"],
                "responseTime": f"{result.duration_ms}ms",
                "proxiedBy": PROXIED_BY,
                "externalAPIId": api_id,
            },
        }


__all__ = ["PROXIED_BY", "ProxyService"]
