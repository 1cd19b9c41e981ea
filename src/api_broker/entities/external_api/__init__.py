# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""External API entity (single fixed-endpoint APIs)."""

from .endpoint import ExternalApiEndpoint
from .table import ExternalApisTable

__all__ = ["ExternalApiEndpoint", "ExternalApisTable"]
