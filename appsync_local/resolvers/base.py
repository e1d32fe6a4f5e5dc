"""
Field resolver plumbing shared by unit and pipeline resolvers.

A FieldResolver is what gets registered for one `Type.field`. Per
invocation it:

1. builds a fresh ResolverContext (identity derived from headers unless the
   transport already supplies one)
2. runs the resolver state machine, raced against the request deadline
3. checks the serialized size of the result

Calling conventions:
    await resolver.resolve(parent, args, transport_context, info)
    await resolver.resolver(parent, info, **args)   # graphql-core style
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from enum import Enum
from typing import Any

from ..config import AuthConfig, EngineSettings
from ..context import Identity, RequestInfo, ResolverContext, ResolverInfo, create_context
from ..datasources.dispatcher import DataSourceDispatcher
from ..identity import extract_identity, normalize_headers
from ..limits import check_response_size, with_timeout
from ..loader import ResolverModule
from .outcome import run_step

logger = logging.getLogger(__name__)


class ResolverState(str, Enum):
    INIT = "INIT"
    BEFORE = "BEFORE"
    REQUEST = "REQUEST"
    DISPATCH = "DISPATCH"
    RESPONSE = "RESPONSE"
    AFTER = "AFTER"
    DONE = "DONE"
    ERROR = "ERROR"


def _lookup(source: Any, key: str) -> Any:
    if source is None:
        return None
    if isinstance(source, Mapping):
        return source.get(key)
    return getattr(source, key, None)


def _selection_names(info: Any) -> list[str]:
    nodes = getattr(info, "field_nodes", None) or []
    if not nodes or getattr(nodes[0], "selection_set", None) is None:
        return []
    names = []
    for selection in nodes[0].selection_set.selections:
        name = getattr(selection, "name", None)
        if name is not None:
            names.append(getattr(name, "value", str(name)))
    return names


class FieldResolver(ABC):
    """
    Base class for registered field resolvers.

    Subclasses implement _run(ctx), the state machine for one invocation.
    """

    kind = "Field"

    def __init__(
        self,
        type_name: str,
        field_name: str,
        dispatcher: DataSourceDispatcher,
        *,
        auth_methods: Iterable[AuthConfig] = (),
        settings: EngineSettings | None = None,
    ):
        self.type_name = type_name
        self.field_name = field_name
        self.dispatcher = dispatcher
        self.auth_methods = list(auth_methods)
        self.settings = settings or EngineSettings()

    @property
    def field_path(self) -> str:
        return f"{self.type_name}.{self.field_name}"

    def _enter(self, state: ResolverState, detail: str = "") -> None:
        suffix = f" ({detail})" if detail else ""
        logger.debug(f"[resolver:{self.field_path}] -> {state.value}{suffix}")

    # ==================== Context ====================

    def build_context(
        self,
        parent: Any,
        args: Mapping[str, Any] | None,
        transport_context: Any,
        info: Any,
    ) -> ResolverContext:
        headers = normalize_headers(_lookup(transport_context, "headers"))

        identity = _lookup(transport_context, "identity")
        if not isinstance(identity, Identity):
            identity = extract_identity(headers, self.auth_methods)

        parent_type = getattr(info, "parent_type", None)
        resolver_info = ResolverInfo(
            field_name=getattr(info, "field_name", None) or self.field_name,
            parent_type_name=getattr(parent_type, "name", None) or self.type_name,
            variables=dict(getattr(info, "variable_values", None) or {}),
            selection_set_list=_selection_names(info),
        )

        return create_context(
            arguments=dict(args or {}),
            source=parent,
            identity=identity,
            request=RequestInfo(headers=headers, domain_name=headers.get("host")),
            info=resolver_info,
        )

    # ==================== Invocation ====================

    async def resolve(
        self,
        parent: Any,
        args: Mapping[str, Any] | None,
        transport_context: Any = None,
        info: Any = None,
    ) -> Any:
        """
        Resolve the field once.

        Raises:
            ResolverTimeoutError: Deadline reached before the result
            LimitError: Serialized result too large
            Exception: Anything raised by resolver code or a data source
        """
        ctx = self.build_context(parent, args, transport_context, info)
        return await with_timeout(
            self._execute(ctx),
            timeout=self.settings.request_timeout_seconds,
            operation_name=f"Resolver {self.field_path}",
        )

    async def resolver(self, parent: Any, info: Any, **args: Any) -> Any:
        """graphql-core field resolver signature."""
        return await self.resolve(parent, args, getattr(info, "context", None), info)

    async def _execute(self, ctx: ResolverContext) -> Any:
        self._enter(ResolverState.INIT)
        try:
            result = await self._run(ctx)
        except Exception as e:
            self._enter(ResolverState.ERROR, type(e).__name__)
            raise
        self._enter(ResolverState.DONE)

        check_response_size(result, self.field_path, maximum=self.settings.max_response_bytes)
        return result

    async def _final_response(self, module: ResolverModule, ctx: ResolverContext) -> Any:
        # an early return inside the final handler yields its payload directly
        outcome = await run_step(module.response, ctx)
        return outcome.value

    @abstractmethod
    async def _run(self, ctx: ResolverContext) -> Any:
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.field_path})"
