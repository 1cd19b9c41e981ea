# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""ASGI application entry point for uvicorn.

Configuration comes from API_BROKER_* environment variables (see
broker_base).

Example:
    Run with uvicorn::

        API_BROKER_DB=/data/broker.db API_BROKER_API_TOKEN=secret \\
            uvicorn api_broker.server:app --host 0.0.0.0 --port 8000

    Or via CLI::

        api-broker serve --port 8000
"""

from .broker_base import ApiBroker, config_from_env

_broker = ApiBroker(config=config_from_env())
app = _broker.api.app
