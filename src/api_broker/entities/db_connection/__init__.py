# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Managed database connection configurations."""

from .endpoint import DbConnectionEndpoint
from .table import DbConnectionsTable

__all__ = ["DbConnectionEndpoint", "DbConnectionsTable"]
