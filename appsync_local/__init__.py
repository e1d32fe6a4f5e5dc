"""
appsync-local: run AppSync-style resolvers locally.

Resolver files are Python modules with request(ctx) / response(ctx)
handlers, chained into unit or pipeline resolvers that address named data
sources (NONE, DYNAMODB, LAMBDA, HTTP, RDS).

Usage:
    from appsync_local import build_resolver_map, load_config

    config = load_config("appsync-config.json")
    resolvers = build_resolver_map(config)
    result = await resolvers["Query"]["echo"].resolve(None, {"msg": "hi"}, {"headers": {}}, info)
"""

from .config import AppSyncConfig, EngineSettings, load_config
from .context import (
    Extensions,
    ExtensionsState,
    Identity,
    RequestInfo,
    ResolverContext,
    ResolverInfo,
    Runtime,
    create_context,
)
from .datasources import DataSourceDispatcher, http_request, is_success_response, rds_request
from .errors import (
    AppSyncLocalError,
    ConfigurationError,
    DataSourceError,
    LimitError,
    ResolverTimeoutError,
    UserResolverError,
)
from .identity import extract_identity
from .limits import LIMITS, with_timeout
from .resolvers import PipelineResolver, UnitResolver, build_resolver_map
from .util import Util

__version__ = "0.1.0"

__all__ = [
    "AppSyncConfig",
    "AppSyncLocalError",
    "ConfigurationError",
    "DataSourceDispatcher",
    "DataSourceError",
    "EngineSettings",
    "Extensions",
    "ExtensionsState",
    "Identity",
    "LIMITS",
    "LimitError",
    "PipelineResolver",
    "RequestInfo",
    "ResolverContext",
    "ResolverInfo",
    "ResolverTimeoutError",
    "Runtime",
    "UnitResolver",
    "UserResolverError",
    "Util",
    "build_resolver_map",
    "create_context",
    "extract_identity",
    "http_request",
    "is_success_response",
    "load_config",
    "rds_request",
    "with_timeout",
]
