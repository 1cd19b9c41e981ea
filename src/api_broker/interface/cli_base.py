# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Click command generation from endpoint classes via introspection.

Example:
    Generated commands::

        api-broker providers add "JSONPlaceholder" https://jsonplaceholder.typicode.com
        api-broker provider_endpoints add <provider-id> /todos/{id}
        api-broker db_connections test <connection-id>
        api-broker dynamic_queries execute <query-id> --params '{"id": 5}'
        api-broker serve --port 8000 --log-level debug

Note:
    - Required params become positional arguments
    - Optional params become --options
    - Boolean params become --flag/--no-flag toggles
    - list/dict params take JSON strings
    - Method underscores become dashes (test_config → test-config)
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable, Coroutine
from typing import TYPE_CHECKING, Any, Literal, get_args, get_origin, get_type_hints

import click
from rich.console import Console
from rich.table import Table

from ..errors import BrokerError

if TYPE_CHECKING:
    from ..broker_base import ApiBroker

console = Console()

LOG_LEVELS = ["critical", "error", "warning", "info", "debug"]


def _print_result(result: Any) -> None:
    """Print command result with rich formatting."""
    if isinstance(result, list) and result and isinstance(result[0], dict):
        table = Table(show_header=True, header_style="bold cyan")
        keys = list(result[0].keys())
        for key in keys:
            table.add_column(key)
        for row in result:
            table.add_row(*[str(row.get(k, "")) for k in keys])
        console.print(table)
    elif isinstance(result, dict):
        for key, value in result.items():
            console.print(f"[bold]{key}:[/bold] {value}")
    elif isinstance(result, list):
        for item in result:
            console.print(f"  • {item}")
    else:
        console.print(result)


def _annotation_to_click_type(annotation: Any) -> type | click.Choice:
    """Convert Python type annotation to Click type (int, str, bool, float, Choice)."""
    if annotation is inspect.Parameter.empty or annotation is Any:
        return str

    origin = get_origin(annotation)
    if origin is type(int | str):  # UnionType
        non_none = [a for a in get_args(annotation) if a is not type(None)]
        if len(non_none) == 1:
            annotation = non_none[0]
        else:
            return str

    if get_origin(annotation) is Literal:
        return click.Choice(get_args(annotation))

    if annotation in (int, bool, float):
        return annotation
    return str


def _create_click_command(endpoint: Any, method_name: str, run_async: Callable) -> click.Command:
    """Create a Click command from an endpoint method.

    The command calls endpoint.invoke() so validation matches the API.
    """
    method = getattr(endpoint, method_name)
    sig = inspect.signature(method)
    try:
        hints = get_type_hints(method)
    except Exception:
        hints = {}
    doc = method.__doc__ or f"{method_name} operation"

    options = []
    arguments = []

    for param_name, param in sig.parameters.items():
        if param_name == "self":
            continue

        annotation = hints.get(param_name, param.annotation)
        click_type = _annotation_to_click_type(annotation)
        has_default = param.default is not inspect.Parameter.empty
        cli_name = param_name.replace("_", "-")

        if click_type is bool and has_default and param.default is None:
            # tri-state: omitted means "leave unchanged"
            options.append(
                click.option(f"--{cli_name}", param_name, type=click.BOOL, default=None)
            )
        elif click_type is bool:
            options.append(
                click.option(
                    f"--{cli_name}/--no-{cli_name}",
                    default=param.default if has_default else False,
                    help=f"Enable/disable {param_name}",
                )
            )
        elif has_default:
            options.append(
                click.option(
                    f"--{cli_name}",
                    param_name,
                    type=click_type,
                    default=param.default,
                    show_default=param.default is not None,
                    help=f"{param_name} parameter",
                )
            )
        else:
            arguments.append(click.argument(param_name, type=click_type))

    def cmd_func(**kwargs: Any) -> None:
        py_kwargs = {k.replace("-", "_"): v for k, v in kwargs.items()}
        try:
            result = run_async(endpoint.invoke(method_name, py_kwargs))
        except BrokerError as e:
            raise click.ClickException(e.message) from e
        except ValueError as e:
            raise click.ClickException(str(e)) from e
        if result is not None:
            _print_result(result)

    cmd: click.Command = click.command(help=doc)(cmd_func)
    for opt in reversed(options):
        cmd = opt(cmd)
    for arg in reversed(arguments):
        cmd = arg(cmd)

    return cmd


def register_endpoint(
    group: click.Group, endpoint: Any, run_async: Callable | None = None
) -> click.Group:
    """Register all CLI-enabled methods of an endpoint as Click commands.

    Creates a subgroup named after the endpoint.
    """
    if run_async is None:
        run_async = asyncio.run

    name = getattr(endpoint, "name", endpoint.__class__.__name__.lower())

    @group.group(name=name)
    def endpoint_group() -> None:
        """Endpoint commands."""
        pass

    endpoint_group.help = f"Manage {name}."

    for method_name, _method in endpoint.get_methods():
        if not endpoint.is_available_for_channel(method_name, "cli"):
            continue
        cmd = _create_click_command(endpoint, method_name, run_async)
        cmd.name = method_name.replace("_", "-")
        endpoint_group.add_command(cmd)

    return endpoint_group


class CliManager:
    """Manager for Click CLI application. Creates CLI lazily on first access."""

    def __init__(self, parent: ApiBroker):
        self.broker = parent
        self._cli: click.Group | None = None

    @property
    def cli(self) -> click.Group:
        """Lazy-create Click CLI group."""
        if self._cli is None:
            self._cli = self._create_cli()
        return self._cli

    def run_async(self, coro: Coroutine[Any, Any, Any]) -> Any:
        """Run one endpoint call with the broker initialized around it."""

        async def runner() -> Any:
            try:
                await self.broker.init()
            except BaseException:
                coro.close()
                raise
            try:
                return await coro
            finally:
                await self.broker.shutdown()

        return asyncio.run(runner())

    def _create_cli(self) -> click.Group:
        """Build Click CLI: endpoint commands + serve."""

        @click.group()
        @click.version_option(package_name="api-broker")
        def cli() -> None:
            """API Broker: dynamic proxy and managed data sources."""
            pass

        for endpoint in self.broker.endpoints.values():
            register_endpoint(cli, endpoint, self.run_async)

        @cli.command("serve")
        @click.option("--host", default=self.broker.config.host, help="Bind host")
        @click.option("--port", "-p", default=self.broker.config.port, help="Bind port")
        @click.option("--reload", is_flag=True, help="Enable auto-reload")
        @click.option(
            "--log-level",
            type=click.Choice(LOG_LEVELS),
            default="info",
            show_default=True,
            help="Root and uvicorn log level",
        )
        def serve_cmd(host: str, port: int, reload: bool, log_level: str) -> None:
            """Start the API server."""
            import uvicorn

            logging.basicConfig(
                level=log_level.upper(),
                format="%(asctime)s %(levelname)s %(name)s: %(message)s",
            )
            uvicorn.run(
                self._get_server_module(),
                host=host,
                port=port,
                reload=reload,
                log_level=log_level,
            )

        return cli

    def _get_server_module(self) -> str:
        """Get the server module path for uvicorn."""
        return "api_broker.server:app"


__all__ = ["CliManager", "console", "register_endpoint"]
