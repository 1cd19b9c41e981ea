# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Call log entity (append-only record of gateway calls)."""

from .endpoint import CallLogEndpoint
from .table import CallLogTable

__all__ = ["CallLogEndpoint", "CallLogTable"]
