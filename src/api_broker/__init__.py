# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""api-broker: dynamic HTTP proxy and managed data-source broker."""

from .broker_base import ApiBroker, BrokerConfig, config_from_env

__version__ = "0.1.0"

__all__ = ["ApiBroker", "BrokerConfig", "config_from_env"]
