"""
Unit resolver.

    INIT -> REQUEST -> DISPATCH -> RESPONSE -> DONE
              |           |
              +-> ERROR <-+

request(ctx) returns the data source request descriptor; its dispatch
result becomes ctx.prev["result"] for response(ctx), whose return value is
the field result. An early return from request(ctx) skips the dispatch.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from ..config import AuthConfig, EngineSettings, UnitResolverConfig
from ..context import ResolverContext
from ..datasources.dispatcher import DataSourceDispatcher
from ..limits import check_resolver_code_size
from ..loader import load_resolver_module
from .base import FieldResolver, ResolverState
from .outcome import EarlyReturn, run_step


class UnitResolver(FieldResolver):
    kind = "Unit"

    def __init__(
        self,
        config: UnitResolverConfig,
        dispatcher: DataSourceDispatcher,
        *,
        auth_methods: Iterable[AuthConfig] = (),
        settings: EngineSettings | None = None,
    ):
        check_resolver_code_size(config.file)
        super().__init__(
            config.type,
            config.field,
            dispatcher,
            auth_methods=auth_methods,
            settings=settings,
        )
        self.config = config

    async def _run(self, ctx: ResolverContext) -> Any:
        module = load_resolver_module(self.config.file)

        self._enter(ResolverState.REQUEST)
        outcome = await run_step(module.request, ctx)

        if isinstance(outcome, EarlyReturn):
            ctx.prev = {"result": outcome.value}
        else:
            self._enter(ResolverState.DISPATCH, self.config.data_source)
            result = await self.dispatcher.execute(self.config.data_source, outcome.value)
            ctx.prev = {"result": result}

        self._enter(ResolverState.RESPONSE)
        return await self._final_response(module, ctx)
