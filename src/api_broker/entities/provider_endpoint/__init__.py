# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Provider endpoint templates."""

from .endpoint import ProviderEndpointEndpoint
from .table import ProviderEndpointsTable

__all__ = ["ProviderEndpointEndpoint", "ProviderEndpointsTable"]
