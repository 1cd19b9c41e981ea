# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Dynamic queries (stored SQL exposed as endpoints)."""

from .endpoint import DynamicQueryEndpoint
from .table import DynamicQueriesTable

__all__ = ["DynamicQueriesTable", "DynamicQueryEndpoint"]
