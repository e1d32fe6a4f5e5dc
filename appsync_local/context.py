"""
Resolver Context for appsync-local.

The context is the `ctx` argument every resolver handler receives. It is
created fresh for each field invocation and shared by every step of that
invocation (request, data source call, response, pipeline functions).

Per-invocation state:
- stash: one dict for the whole invocation
- prev: empty, or exactly {"result": value}
- util: capability namespace (errors and response headers it records)
- extensions: subscription filters, invalidations, cache evictions
"""
from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, NoReturn

from .errors import EarlyReturnSignal, LimitError
from .limits import LIMITS
from .util import Util

logger = logging.getLogger(__name__)


# =============================================================================
# Request-side data
# =============================================================================


@dataclass
class Identity:
    """Caller identity derived from request headers."""

    sub: str | None = None
    issuer: str | None = None
    username: str | None = None
    claims: dict[str, Any] = field(default_factory=dict)
    source_ip: list[str] = field(default_factory=list)
    default_auth_strategy: str | None = None
    groups: list[str] | None = None
    resolver_context: dict[str, Any] | None = None
    auth_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "sub": self.sub,
            "issuer": self.issuer,
            "username": self.username,
            "claims": self.claims,
            "sourceIp": self.source_ip,
            "defaultAuthStrategy": self.default_auth_strategy,
            "groups": self.groups,
            "resolverContext": self.resolver_context,
        }


@dataclass
class RequestInfo:
    headers: dict[str, str] = field(default_factory=dict)
    domain_name: str | None = None


@dataclass
class ResolverInfo:
    field_name: str
    parent_type_name: str
    variables: dict[str, Any] = field(default_factory=dict)
    selection_set_list: list[str] = field(default_factory=list)
    selection_set_graphql: str = ""


# =============================================================================
# Runtime / Extensions
# =============================================================================


class Runtime:
    """The `ctx.runtime` namespace."""

    def early_return(self, data: Any = None) -> NoReturn:
        """
        Leave the current handler and skip to the final response handler.

        The response handler then sees `ctx.prev == {"result": data}`. Called
        from inside the final response handler, `data` becomes the field
        result directly.
        """
        raise EarlyReturnSignal(data)


@dataclass
class ExtensionsState:
    subscription_filters: list[Any] = field(default_factory=list)
    subscription_invalidation_filters: list[Any] = field(default_factory=list)
    invalidations: list[dict[str, Any]] = field(default_factory=list)
    cache_evictions: list[dict[str, Any]] = field(default_factory=list)


class Extensions:
    """
    The `ctx.extensions` namespace.

    Calls are recorded for the invocation only; nothing is delivered to
    subscribers and no response cache exists to evict from.
    """

    def __init__(self, state: ExtensionsState | None = None):
        self.state = state or ExtensionsState()

    def set_subscription_filter(self, filter_obj: Any) -> None:
        logger.info(f"[extensions] setSubscriptionFilter: {filter_obj}")
        self.state.subscription_filters.append(filter_obj)

    def set_subscription_invalidation_filter(self, filter_obj: Any) -> None:
        logger.info(f"[extensions] setSubscriptionInvalidationFilter: {filter_obj}")
        self.state.subscription_invalidation_filters.append(filter_obj)

    def invalidate_subscriptions(self, invalidation: dict[str, Any]) -> None:
        """
        Raises:
            LimitError: More than MAX_INVALIDATIONS_PER_REQUEST calls in
                this invocation
        """
        maximum = LIMITS["MAX_INVALIDATIONS_PER_REQUEST"]
        count = len(self.state.invalidations)
        if count >= maximum:
            raise LimitError(
                "MAX_INVALIDATIONS_PER_REQUEST",
                count + 1,
                maximum,
                f"invalidateSubscriptions called {count + 1} times; "
                f"the limit is {maximum} per request.",
            )
        logger.info(f"[extensions] invalidateSubscriptions: {invalidation}")
        self.state.invalidations.append(invalidation)

    def evict_from_api_cache(
        self,
        type_name: str,
        field_name: str,
        keys: dict[str, Any],
    ) -> None:
        logger.info(f"[extensions] evictFromApiCache: {type_name}.{field_name} {keys}")
        self.state.cache_evictions.append(
            {"typeName": type_name, "fieldName": field_name, "keys": keys}
        )


# =============================================================================
# Context
# =============================================================================


@dataclass
class ResolverContext:
    """
    Invocation-scoped context passed to every resolver handler.

    Never shared between invocations; parallel field resolutions each get
    their own context.
    """

    arguments: dict[str, Any] = field(default_factory=dict)
    source: Any = None
    identity: Identity | None = None
    request: RequestInfo | None = None
    info: ResolverInfo | None = None
    stash: dict[str, Any] = field(default_factory=dict)
    prev: dict[str, Any] = field(default_factory=dict)
    util: Util = field(default_factory=Util)
    runtime: Runtime = field(default_factory=Runtime)
    extensions: Extensions = field(default_factory=Extensions)
    env: Mapping[str, str] = field(default_factory=lambda: MappingProxyType(dict(os.environ)))

    @property
    def args(self) -> dict[str, Any]:
        return self.arguments

    @property
    def result(self) -> Any:
        """Result handed to the current response handler."""
        return self.prev.get("result")

    @property
    def error(self) -> list[dict[str, Any]]:
        """Errors recorded through util.append_error()."""
        return self.util.errors


def create_context(
    arguments: dict[str, Any] | None = None,
    source: Any = None,
    identity: Identity | None = None,
    request: RequestInfo | None = None,
    info: ResolverInfo | None = None,
) -> ResolverContext:
    """Create a fresh context with an empty stash and empty prev."""
    return ResolverContext(
        arguments=dict(arguments or {}),
        source=source,
        identity=identity,
        request=request,
        info=info,
        util=Util(auth_type=identity.auth_type if identity else None),
        runtime=Runtime(),
        extensions=Extensions(ExtensionsState()),
    )
