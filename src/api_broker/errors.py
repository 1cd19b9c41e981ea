# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Typed failures raised by the gateway core.

Every error carries the HTTP status code the route layer should answer with
and optional context merged into the JSON error body::

    raise NotFoundError(
        "Endpoint not found or not supported",
        availableEndpoints=["GET todos/{id}"],
    )
    # -> 404 {"success": false, "message": "...", "availableEndpoints": [...]}
"""

from __future__ import annotations

from typing import Any


class BrokerError(Exception):
    """Base class for all gateway errors.

    Attributes:
        message: Human readable description.
        status_code: HTTP status for the route layer.
        context: Extra fields added to the JSON error body.
    """

    status_code: int = 500

    def __init__(self, message: str, *, status_code: int | None = None, **context: Any):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON error body."""
        return {"success": False, "message": self.message, **self.context}


class NotFoundError(BrokerError):
    """Unknown provider, endpoint, connection or query."""

    status_code = 404


class InactiveError(BrokerError):
    """Resource exists but is disabled."""

    status_code = 400


class BrokerTimeoutError(BrokerError, TimeoutError):
    """SSH or database connection setup exceeded its deadline."""

    status_code = 504


class UpstreamError(BrokerError):
    """External API or database failed after the call was attempted.

    duration_ms and url describe the failed attempt for call logging; they
    are not part of the JSON error body.
    """

    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        duration_ms: int | None = None,
        url: str | None = None,
        **context: Any,
    ):
        super().__init__(message, status_code=status_code, **context)
        self.duration_ms = duration_ms
        self.url = url


class ParameterError(BrokerError):
    """Malformed path-parameter substitution or missing required parameter."""

    status_code = 400


class AuthenticationError(BrokerError):
    """Missing, unknown, expired or IP-restricted API key (401 or 403)."""

    status_code = 401


__all__ = [
    "AuthenticationError",
    "BrokerError",
    "BrokerTimeoutError",
    "InactiveError",
    "NotFoundError",
    "ParameterError",
    "UpstreamError",
]
