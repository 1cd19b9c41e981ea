# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Outbound HTTP forwarding for providers and external APIs.

The forwarder builds the upstream URL, copies query parameters and the JSON
body unchanged, injects the target's auth header and races the request
against the target's timeout. Upstream HTTP error statuses are returned as
regular results so the caller can surface them verbatim. Network failures
and timeouts raise UpstreamError.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import httpx

from ..errors import BrokerTimeoutError, UpstreamError
from .deadline import await_with_deadline

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "API-Broker-Proxy/1.0"
DEFAULT_TIMEOUT_MS = 30000

QueryParams = Mapping[str, Any] | Sequence[tuple[str, Any]]


@dataclass(frozen=True)
class ForwardTarget:
    """Where and how to call upstream.

    Attributes:
        base_url: Upstream base address.
        timeout_ms: Hard deadline for the whole call.
        requires_auth: Whether to inject the auth header.
        auth_config: ``{"header_name": ..., "header_value": ...}``.
    """

    base_url: str
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    requires_auth: bool = False
    auth_config: Mapping[str, Any] | None = None

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> ForwardTarget:
        """Build a target from a provider or external API record."""
        return cls(
            base_url=record["base_url"],
            timeout_ms=int(record.get("timeout_ms") or DEFAULT_TIMEOUT_MS),
            requires_auth=bool(record.get("requires_auth")),
            auth_config=record.get("auth_config") or None,
        )


@dataclass(frozen=True)
class ForwardResult:
    """Completed upstream call, successful or not."""

    status_code: int
    data: Any
    url: str
    duration_ms: int
    response_size: int

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


def join_url(base_url: str, path: str) -> str:
    """Join base and path with exactly one slash."""
    return base_url.rstrip("/") + "/" + path.lstrip("/")


def _elapsed_ms(start: float) -> int:
    return max(0, int((time.perf_counter() - start) * 1000))


class RequestForwarder:
    """Issue upstream calls through a shared httpx.AsyncClient.

    Args:
        user_agent: Value of the User-Agent header sent upstream.
        transport: Optional httpx transport (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.user_agent = user_agent
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                transport=self._transport,
                timeout=httpx.Timeout(None),
                follow_redirects=True,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def build_headers(self, target: ForwardTarget, *, has_body: bool = False) -> dict[str, str]:
        headers = {"User-Agent": self.user_agent}
        if has_body:
            headers["Content-Type"] = "application/json"
        auth = target.auth_config or {}
        if target.requires_auth and auth.get("header_name"):
            headers[str(auth["header_name"])] = str(auth.get("header_value") or "")
        return headers

    async def forward(
        self,
        target: ForwardTarget,
        method: str,
        path: str,
        *,
        params: QueryParams | None = None,
        body: Any = None,
    ) -> ForwardResult:
        """Forward to ``base_url + '/' + path``. See send()."""
        return await self.send(
            target, method, join_url(target.base_url, path), params=params, body=body
        )

    async def send(
        self,
        target: ForwardTarget,
        method: str,
        url: str,
        *,
        params: QueryParams | None = None,
        body: Any = None,
    ) -> ForwardResult:
        """Call url and return the upstream outcome.

        Args:
            target: Auth and timeout settings.
            method: HTTP verb.
            url: Absolute upstream URL.
            params: Query parameters, copied unchanged.
            body: JSON body, sent for every verb except GET.

        Returns:
            ForwardResult, also for upstream 4xx/5xx statuses.

        Raises:
            UpstreamError: Network failure or deadline exceeded (status 500).
                ``duration_ms`` and ``url`` are set on the exception.
        """
        verb = method.upper()
        has_body = verb != "GET" and body is not None
        request_kwargs: dict[str, Any] = {
            "headers": self.build_headers(target, has_body=has_body),
            "params": params or None,
        }
        if has_body:
            request_kwargs["json"] = body

        timeout = target.timeout_ms / 1000
        start = time.perf_counter()
        try:
            response = await await_with_deadline(
                self.client.request(verb, url, **request_kwargs),
                timeout,
                message=f"timeout of {target.timeout_ms}ms exceeded",
            )
        except (BrokerTimeoutError, httpx.HTTPError) as e:
            logger.warning("Upstream call %s %s failed: %s", verb, url, e)
            raise UpstreamError(
                str(e) or type(e).__name__,
                status_code=500,
                duration_ms=_elapsed_ms(start),
                url=url,
                error=str(e) or type(e).__name__,
            ) from e

        try:
            data = response.json()
        except ValueError:
            data = response.text
        return ForwardResult(
            status_code=response.status_code,
            data=data,
            url=str(response.request.url),
            duration_ms=_elapsed_ms(start),
            response_size=len(response.content),
        )


__all__ = [
    "DEFAULT_USER_AGENT",
    "ForwardResult",
    "ForwardTarget",
    "RequestForwarder",
    "join_url",
]
