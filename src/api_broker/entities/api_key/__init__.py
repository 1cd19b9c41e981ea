# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Client API keys."""

from .endpoint import ApiKeyEndpoint
from .table import ApiKeysTable

__all__ = ["ApiKeyEndpoint", "ApiKeysTable"]
