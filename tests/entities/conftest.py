# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Entity test fixtures: call endpoint methods the way the API and CLI do."""

from __future__ import annotations

from typing import Any

import pytest


@pytest.fixture
def invoke(broker):
    """Async helper: ``await invoke("providers", "add", name=..., ...)``.

    Goes through BaseEndpoint.invoke(), so parameters are validated and the
    call runs inside its own transaction.
    """

    async def call(endpoint: str, method: str, /, **params: Any) -> Any:
        return await broker.endpoints[endpoint].invoke(method, params)

    return call
