# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Provider entity (external HTTP APIs)."""

from .endpoint import ProviderEndpoint
from .table import ProvidersTable

__all__ = ["ProviderEndpoint", "ProvidersTable"]
