"""
Resolver Module Loading.

Resolver and pipeline function files are Python modules exposing two
handlers, either of which may be `async def`:

    def request(ctx):
        return {"operation": "GetItem", "key": {"id": ctx.args["id"]}}

    def response(ctx):
        return ctx.result

Lambda handler files expose `handler(ctx)` (or `default(ctx)`).

Modules are cached by path alongside their modification time, so an edited
file replaces its cached module on the next load.
"""

from __future__ import annotations

import hashlib
import importlib.util
import inspect
import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from types import ModuleType
from typing import Any

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Any]

_module_cache: dict[str, tuple[float, ModuleType]] = {}


@dataclass(frozen=True)
class ResolverModule:
    """The two handlers of a loaded resolver or function file."""

    path: str
    request: Handler
    response: Handler


def _load_module(path: str | os.PathLike[str]) -> ModuleType:
    file_path = os.fspath(path)
    try:
        mtime = os.stat(file_path).st_mtime
    except OSError as e:
        raise ConfigurationError(f"Resolver file not found: {file_path}") from e

    cached = _module_cache.get(file_path)
    if cached is not None and cached[0] == mtime:
        return cached[1]

    digest = hashlib.sha1(file_path.encode("utf-8")).hexdigest()[:12]
    module_name = f"appsync_local_resolver_{digest}"
    spec = importlib.util.spec_from_file_location(module_name, file_path)
    if spec is None or spec.loader is None:
        raise ConfigurationError(f"Cannot load resolver file: {file_path}")

    module = importlib.util.module_from_spec(spec)
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        raise ConfigurationError(f"Failed to load resolver file '{file_path}': {e}") from e

    _module_cache[file_path] = (mtime, module)
    logger.debug(f"[loader] Loaded {file_path}")
    return module


def load_resolver_module(path: str | os.PathLike[str]) -> ResolverModule:
    """
    Load a resolver or pipeline function file.

    Raises:
        ConfigurationError: File missing, failing to import, or lacking
            a callable `request` / `response`
    """
    module = _load_module(path)
    request = getattr(module, "request", None)
    response = getattr(module, "response", None)
    if not callable(request) or not callable(response):
        raise ConfigurationError(
            f"Resolver file '{os.fspath(path)}' must define request(ctx) and response(ctx)"
        )
    return ResolverModule(path=os.fspath(path), request=request, response=response)


def load_lambda_handler(path: str | os.PathLike[str]) -> Handler:
    """
    Load the handler of a local Lambda file.

    Raises:
        ConfigurationError: No callable `handler` or `default` in the file
    """
    module = _load_module(path)
    handler = getattr(module, "handler", None) or getattr(module, "default", None)
    if not callable(handler):
        raise ConfigurationError(
            f"Lambda file '{os.fspath(path)}' must define handler(ctx) or default(ctx)"
        )
    return handler


async def call_handler(handler: Handler, ctx: Any) -> Any:
    """Call a sync or async handler and return its value."""
    result = handler(ctx)
    if inspect.isawaitable(result):
        result = await result
    return result


def clear_module_cache() -> None:
    _module_cache.clear()
