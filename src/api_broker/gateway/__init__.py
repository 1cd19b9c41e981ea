# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Gateway core: matching, forwarding, tunnels, database links and queries."""

from .broker import ConnectionBroker, DatabaseLink
from .cache import SingleFlight, TtlCache
from .call_logger import CallLogger
from .drivers import ConnectionConfig
from .engine import DynamicQueryEngine, QueryResult
from .forwarder import ForwardResult, ForwardTarget, RequestForwarder
from .matcher import EndpointMatcher, MatchResult, PathTemplate
from .proxy_service import ProxyService
from .tunnel import Tunnel, TunnelConfig, TunnelManager

__all__ = [
    "CallLogger",
    "ConnectionBroker",
    "ConnectionConfig",
    "DatabaseLink",
    "DynamicQueryEngine",
    "EndpointMatcher",
    "ForwardResult",
    "ForwardTarget",
    "MatchResult",
    "PathTemplate",
    "ProxyService",
    "QueryResult",
    "RequestForwarder",
    "SingleFlight",
    "TtlCache",
    "Tunnel",
    "TunnelConfig",
    "TunnelManager",
]
