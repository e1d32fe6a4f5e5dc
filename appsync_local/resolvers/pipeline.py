"""
Pipeline resolver.

    INIT -> BEFORE -> STEP_1 .. STEP_N -> AFTER -> DONE
    STEP_i = REQUEST_i -> DISPATCH_i -> RESPONSE_i

The main resolver's request(ctx) runs once before the functions and its
return value is discarded. Each function's response value is handed to
the next step as ctx.prev["result"], and the last one to the main
resolver's response(ctx).

An early return anywhere before AFTER skips every remaining step and goes
straight to the main response(ctx) with ctx.prev = {"result": payload}.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from ..config import AuthConfig, EngineSettings, PipelineFunctionConfig, PipelineResolverConfig
from ..context import ResolverContext
from ..datasources.dispatcher import DataSourceDispatcher
from ..limits import check_pipeline_function_count, check_resolver_code_size
from ..loader import load_resolver_module
from .base import FieldResolver, ResolverState
from .outcome import Continue, EarlyReturn, StepOutcome, run_step

logger = logging.getLogger(__name__)


class PipelineResolver(FieldResolver):
    kind = "Pipeline"

    def __init__(
        self,
        config: PipelineResolverConfig,
        dispatcher: DataSourceDispatcher,
        *,
        auth_methods: Iterable[AuthConfig] = (),
        settings: EngineSettings | None = None,
    ):
        check_pipeline_function_count(len(config.functions), config.field_path)
        check_resolver_code_size(config.file)
        for function in config.functions:
            check_resolver_code_size(function.file)

        super().__init__(
            config.type,
            config.field,
            dispatcher,
            auth_methods=auth_methods,
            settings=settings,
        )
        self.config = config

    async def _run(self, ctx: ResolverContext) -> Any:
        main = load_resolver_module(self.config.file)

        self._enter(ResolverState.BEFORE)
        outcome: StepOutcome = await run_step(main.request, ctx)

        if isinstance(outcome, Continue):
            for index, function in enumerate(self.config.functions, start=1):
                outcome = await self._run_function(index, function, ctx)
                if isinstance(outcome, EarlyReturn):
                    logger.debug(
                        f"[resolver:{self.field_path}] Early return at step {index}, "
                        f"skipping {len(self.config.functions) - index} remaining"
                    )
                    break

        if isinstance(outcome, EarlyReturn):
            ctx.prev = {"result": outcome.value}

        self._enter(ResolverState.AFTER)
        return await self._final_response(main, ctx)

    async def _run_function(
        self,
        index: int,
        function: PipelineFunctionConfig,
        ctx: ResolverContext,
    ) -> StepOutcome:
        module = load_resolver_module(function.file)

        self._enter(ResolverState.REQUEST, f"step {index}")
        outcome = await run_step(module.request, ctx)
        if isinstance(outcome, EarlyReturn):
            return outcome

        self._enter(ResolverState.DISPATCH, f"step {index}, {function.data_source}")
        result = await self.dispatcher.execute(function.data_source, outcome.value)
        ctx.prev = {"result": result}

        self._enter(ResolverState.RESPONSE, f"step {index}")
        outcome = await run_step(module.response, ctx)
        if isinstance(outcome, Continue):
            ctx.prev = {"result": outcome.value}
        return outcome
