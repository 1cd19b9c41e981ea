# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""CLI entry point (api-broker command).

Usage:
    api-broker --help
    api-broker providers list
    api-broker db_connections test <id>
    api-broker serve --port 8000
"""

from .broker_base import ApiBroker, config_from_env


def main() -> None:
    """CLI entry point."""
    broker = ApiBroker(config=config_from_env())
    broker.cli.cli()


if __name__ == "__main__":
    main()
