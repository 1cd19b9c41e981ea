# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Base class for endpoint introspection and command dispatch.

Admin REST routes and CLI commands are generated from endpoint classes by
introspecting their public async methods.

Components:
    endpoint: Decorator to configure method channels and HTTP method.
    POST: Shortcut for ``endpoint(post=True)``.
    BaseEndpoint: Base class with introspection capabilities.
    EndpointManager: Discovery and instantiation of endpoints.

Example:
    Define an endpoint::

        from api_broker.interface.endpoint_base import BaseEndpoint, POST

        class ProviderEndpoint(BaseEndpoint):
            name = "providers"

            async def list(self, active_only: bool = False) -> list[dict]:
                \"\"\"List providers (GET on all channels).\"\"\"
                ...

            @POST
            async def add(self, name: str, base_url: str) -> dict:
                \"\"\"Register a provider (POST on all channels).\"\"\"
                ...

Note:
    Use EndpointManager.discover() to scan entity packages and instantiate
    endpoint classes with their corresponding tables.
"""

from __future__ import annotations

import importlib
import inspect
import json
import pkgutil
import types
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, Union, get_args, get_origin, get_type_hints

from pydantic import create_model

if TYPE_CHECKING:
    from ..broker_base import ApiBroker


def endpoint(
    *,
    api: bool | None = None,
    cli: bool | None = None,
    post: bool | None = None,
) -> Callable[[Callable], Callable]:
    """Configure endpoint method channels and HTTP method.

    When a parameter is None, the class default is used
    (_default_api, _default_cli, _default_post).

    Args:
        api: Expose via REST API.
        cli: Expose via CLI command.
        post: Use HTTP POST instead of GET.

    Example:
        ::

            @endpoint(post=True)
            async def purge(self, before_ts: int) -> int:
                ...

            @endpoint(api=False)
            async def serve(self, host: str) -> None:
                \"\"\"CLI only.\"\"\"
                ...
    """

    def decorator(method: Callable) -> Callable:
        if api is not None:
            method._endpoint_api = api  # type: ignore[attr-defined]
        if cli is not None:
            method._endpoint_cli = cli  # type: ignore[attr-defined]
        if post is not None:
            method._endpoint_post = post  # type: ignore[attr-defined]
        return method

    return decorator


POST = endpoint(post=True)


class BaseEndpoint:
    """Base class for all endpoints with introspection capabilities.

    Class Attributes (defaults for all methods):
        name: Endpoint name used in URL paths and CLI groups.
        _default_api: Expose methods via REST API (default True).
        _default_cli: Expose methods via CLI (default True).
        _default_post: Use HTTP POST (default False, i.e. GET).

    Instance Attributes:
        table: Database table instance for operations.
    """

    name: str = ""

    _default_api: bool = True
    _default_cli: bool = True
    _default_post: bool = False

    def __init__(self, table: Any):
        self.table = table

    @property
    def broker(self) -> ApiBroker:
        """Owning ApiBroker (gateway services live there)."""
        return self.table.db.parent

    # =========================================================================
    # Base CRUD methods - subclasses can override for custom logic
    # =========================================================================

    async def list(self) -> list[dict[str, Any]]:
        """List all records."""
        return await self.table.select()

    async def get(self, id: str) -> dict[str, Any]:
        """Get single record by primary key.

        Raises:
            ValueError: If record not found.
        """
        from ..sql import RecordNotFoundError

        try:
            return await self.table.record(pkey=id)
        except RecordNotFoundError:
            raise ValueError(f"{self.name} '{id}' not found") from None

    @POST
    async def delete(self, id: str) -> bool:
        """Delete record by primary key. Returns True if a row was deleted."""
        pkey = self.table.pkey or "id"
        return await self.table.delete(where={pkey: id}) > 0

    async def _update_fields(self, id: str, fields: dict[str, Any]) -> dict[str, Any]:
        """Apply the non-None fields to record id and return the stored record."""
        changes = {k: v for k, v in fields.items() if v is not None}
        if changes:
            async with self.table.record_to_update(id) as rec:
                rec.update(changes)
        return await self.get(id)

    # =========================================================================
    # Introspection methods for API/CLI generation
    # =========================================================================

    _internal_methods = {"invoke"}

    def get_methods(self) -> list[tuple[str, Callable]]:
        """Return all public async methods for API/CLI generation."""
        methods = []
        for method_name in dir(self):
            if method_name.startswith("_"):
                continue
            if method_name in self._internal_methods:
                continue
            if isinstance(getattr(type(self), method_name, None), property):
                continue
            method = getattr(self, method_name)
            if callable(method) and inspect.iscoroutinefunction(method):
                methods.append((method_name, method))
        return methods

    def get_http_method(self, method_name: str) -> str:
        """Return "POST" or "GET": method attribute first, then class default."""
        method = getattr(self, method_name)
        if hasattr(method, "_endpoint_post"):
            return "POST" if method._endpoint_post else "GET"
        return "POST" if self._default_post else "GET"

    def is_available_for_channel(self, method_name: str, channel: str) -> bool:
        """Check if method is exposed on channel ("api" or "cli")."""
        method = getattr(self, method_name)
        attr_name = f"_endpoint_{channel}"
        if hasattr(method, attr_name):
            return getattr(method, attr_name)
        return getattr(self, f"_default_{channel}", True)

    def create_request_model(self, method_name: str) -> type:
        """Create Pydantic model from method signature.

        Used by API layer to validate and parse request bodies.
        """
        method = getattr(self, method_name)
        sig = inspect.signature(method)

        try:
            hints = get_type_hints(method)
        except Exception:
            hints = {}

        fields = {}
        for param_name, param in sig.parameters.items():
            if param_name == "self":
                continue

            annotation = hints.get(param_name, param.annotation)
            if annotation is inspect.Parameter.empty:
                annotation = Any

            fields[param_name] = self._annotation_to_field(annotation, param.default)

        model_name = f"{method_name.title().replace('_', '')}Request"
        return create_model(model_name, **fields)

    def _is_complex_type(self, ann: Any) -> bool:
        """Check if annotation is a complex type (list, dict, or contains them)."""
        if ann in (list, dict):
            return True

        origin = get_origin(ann)
        if origin in (list, dict):
            return True

        if origin is Union or origin is types.UnionType:
            for arg in get_args(ann):
                if arg is type(None):
                    continue
                if self._is_complex_type(arg):
                    return True

        return False

    def _annotation_to_field(self, annotation: Any, default: Any) -> tuple[Any, Any]:
        """Convert Python annotation to Pydantic field tuple (type, default)."""
        if default is inspect.Parameter.empty:
            return (annotation, ...)
        return (annotation, default)

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[None]:
        """Provide database connection context for invoke()."""
        async with self.table.db.connection():
            yield

    def _coerce_json_params(self, method_name: str, params: dict[str, Any]) -> None:
        """Parse JSON strings into dict/list for parameters that expect them.

        CLI and query strings pass all values as strings.
        """
        method = getattr(self, method_name)
        try:
            hints = get_type_hints(method)
        except Exception:
            return

        for param_name, value in params.items():
            if not isinstance(value, str):
                continue
            ann = hints.get(param_name)
            if ann is None:
                continue
            if self._is_complex_type(ann):
                try:
                    params[param_name] = json.loads(value)
                except (json.JSONDecodeError, TypeError):
                    pass  # Let Pydantic report the validation error

    async def invoke(self, method_name: str, params: dict[str, Any]) -> Any:
        """Validate parameters and call endpoint method within a transaction.

        Single entry point for all channels (CLI, API). COMMIT on success,
        ROLLBACK on exception.

        Raises:
            ValidationError: If params don't match method signature.
            ValueError: If method not found.
        """
        method = getattr(self, method_name, None)
        if method is None or not callable(method):
            raise ValueError(f"Method '{method_name}' not found on {self.name}")

        async with self._connection():
            self._coerce_json_params(method_name, params)
            model_class = self.create_request_model(method_name)
            validated = model_class.model_validate(params)
            return await method(**validated.model_dump())


class EndpointManager:
    """Discovery and instantiation of endpoints.

    Provides dict-like access to endpoints by name.

    Attributes:
        broker: Parent ApiBroker instance (access db via broker.db).
    """

    def __init__(self, parent: ApiBroker):
        self.broker = parent
        self._endpoints: dict[str, BaseEndpoint] = {}

    def discover(self, *packages: str) -> list[BaseEndpoint]:
        """Discover and instantiate endpoints from entity packages.

        When multiple packages define endpoints with the same name, the most
        derived class (per MRO) is used.
        """
        all_classes: dict[str, type[BaseEndpoint]] = {}
        for package in packages:
            for module in self._find_entity_modules(package, "endpoint").values():
                endpoint_class = self._get_class_from_module(module, "Endpoint")
                if not endpoint_class:
                    continue
                existing = all_classes.get(endpoint_class.name)
                if existing is None or issubclass(endpoint_class, existing):
                    all_classes[endpoint_class.name] = endpoint_class

        for endpoint_class in all_classes.values():
            name = endpoint_class.name
            existing_endpoint = self._endpoints.get(name)
            if existing_endpoint is None or (
                endpoint_class is not type(existing_endpoint)
                and issubclass(endpoint_class, type(existing_endpoint))
            ):
                self._endpoints[name] = endpoint_class(self.broker.db.table(name))

        return list(self._endpoints.values())

    def _find_entity_modules(self, base_package: str, module_name: str) -> dict[str, Any]:
        """Find entity modules in a package."""
        result: dict[str, Any] = {}
        package = importlib.import_module(base_package)
        package_path = getattr(package, "__path__", None)
        if not package_path:
            return result

        for _, name, is_pkg in pkgutil.iter_modules(package_path):
            if not is_pkg:
                continue
            full_module_name = f"{base_package}.{name}.{module_name}"
            try:
                result[name] = importlib.import_module(full_module_name)
            except ModuleNotFoundError as e:
                if e.name != full_module_name:
                    raise
        return result

    def _get_class_from_module(self, module: Any, class_suffix: str) -> type[BaseEndpoint] | None:
        """Extract the endpoint class defined in module."""
        for attr_name in dir(module):
            if attr_name.startswith("_") or not attr_name.endswith(class_suffix):
                continue
            obj = getattr(module, attr_name)
            if (
                isinstance(obj, type)
                and issubclass(obj, BaseEndpoint)
                and obj is not BaseEndpoint
                and obj.__module__ == module.__name__
                and obj.name
            ):
                return obj
        return None

    def __getitem__(self, name: str) -> BaseEndpoint:
        if name not in self._endpoints:
            raise KeyError(f"Endpoint '{name}' not found")
        return self._endpoints[name]

    def __contains__(self, name: str) -> bool:
        return name in self._endpoints

    def __iter__(self):
        return iter(self._endpoints)

    def values(self):
        return self._endpoints.values()

    def items(self):
        return self._endpoints.items()


__all__ = ["POST", "BaseEndpoint", "EndpointManager", "endpoint"]
