"""
Resolver Map Builder.

Turns an AppSyncConfig into the nested {type: {field: resolver}} map a
GraphQL executor consumes. Static limits (code size, pipeline length) are
enforced here, so an over-limit resolver is never registered.

Usage:
    config = load_config("appsync-config.json")
    resolvers = build_resolver_map(config)
    result = await resolvers["Query"]["getUser"].resolve(None, {"id": "1"}, {"headers": {}}, info)
"""

from __future__ import annotations

import logging
from pathlib import Path

from ..config import AppSyncConfig, EngineSettings, PipelineResolverConfig
from ..datasources.dispatcher import DataSourceDispatcher
from ..errors import ConfigurationError
from .base import FieldResolver
from .pipeline import PipelineResolver
from .unit import UnitResolver

logger = logging.getLogger(__name__)

ResolverMap = dict[str, dict[str, FieldResolver]]


def build_resolver_map(
    config: AppSyncConfig,
    dispatcher: DataSourceDispatcher | None = None,
    *,
    base_dir: str | Path | None = None,
    settings: EngineSettings | None = None,
) -> ResolverMap:
    """
    Build every configured resolver.

    Args:
        config: Validated API configuration
        dispatcher: Shared dispatcher (created from config.data_sources if omitted)
        base_dir: Directory relative resolver paths are resolved against
        settings: Engine settings (read from the environment if omitted)

    Returns:
        {type_name: {field_name: resolver}}

    Raises:
        LimitError: A resolver exceeds a static limit
        ConfigurationError: The same Type.field is configured twice
    """
    if base_dir is not None:
        config = config.resolve_paths(base_dir)
    settings = settings or EngineSettings()
    if dispatcher is None:
        dispatcher = DataSourceDispatcher(config.data_sources, settings=settings)

    resolver_map: ResolverMap = {}
    for resolver_config in config.resolvers:
        fields = resolver_map.setdefault(resolver_config.type, {})
        if resolver_config.field in fields:
            raise ConfigurationError(
                f"Duplicate resolver for {resolver_config.field_path}"
            )

        if isinstance(resolver_config, PipelineResolverConfig):
            resolver: FieldResolver = PipelineResolver(
                resolver_config, dispatcher, auth_methods=config.auth, settings=settings
            )
        else:
            resolver = UnitResolver(
                resolver_config, dispatcher, auth_methods=config.auth, settings=settings
            )

        fields[resolver_config.field] = resolver
        logger.info(f"[builder] Registered {resolver.kind} resolver {resolver.field_path}")

    return resolver_map
