# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Registry entities (providers, external APIs, connections, queries, keys, call log)."""

from .api_key import ApiKeyEndpoint, ApiKeysTable
from .call_log import CallLogEndpoint, CallLogTable
from .db_connection import DbConnectionEndpoint, DbConnectionsTable
from .dynamic_query import DynamicQueriesTable, DynamicQueryEndpoint
from .external_api import ExternalApiEndpoint, ExternalApisTable
from .provider import ProviderEndpoint, ProvidersTable
from .provider_endpoint import ProviderEndpointEndpoint, ProviderEndpointsTable

__all__ = [
    "ApiKeyEndpoint",
    "ApiKeysTable",
    "CallLogEndpoint",
    "CallLogTable",
    "DbConnectionEndpoint",
    "DbConnectionsTable",
    "DynamicQueriesTable",
    "DynamicQueryEndpoint",
    "ExternalApiEndpoint",
    "ExternalApisTable",
    "ProviderEndpoint",
    "ProviderEndpointEndpoint",
    "ProviderEndpointsTable",
    "ProvidersTable",
]
