"""
Tests for the unit and pipeline resolver state machines.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from appsync_local.config import (
    AppSyncConfig,
    AuthConfig,
    EngineSettings,
    PipelineFunctionConfig,
    PipelineResolverConfig,
    UnitResolverConfig,
)
from appsync_local.context import Identity
from appsync_local.errors import (
    ConfigurationError,
    LimitError,
    ResolverTimeoutError,
    UserResolverError,
)
from appsync_local.resolvers import (
    Continue,
    EarlyReturn,
    PipelineResolver,
    UnitResolver,
    build_resolver_map,
    run_step,
)

ECHO = """
def request(ctx):
    return {"payload": ctx.args.get("msg")}

def response(ctx):
    return ctx.prev["result"]["payload"]
"""

PASS_THROUGH = """
def request(ctx):
    return {}

def response(ctx):
    return ctx.prev["result"]
"""


def unit(path, data_source="LocalNone", field="echo"):
    return UnitResolverConfig(type="Query", field=field, data_source=data_source, file=path)


def pipeline(path, functions, field="pipe"):
    return PipelineResolverConfig(
        type="Query",
        field=field,
        file=path,
        functions=[PipelineFunctionConfig(file=f, data_source="LocalNone") for f in functions],
    )


def recording_function(write_resolver, name):
    """A function that appends its name to stash['calls'] and to the running result."""
    return write_resolver(
        name,
        f"""
        def request(ctx):
            ctx.stash.setdefault("calls", []).append("{name}")
            return {{"step": "{name}", "seen": ctx.prev.get("result")}}

        def response(ctx):
            seen = ctx.prev["result"]["seen"] or []
            return seen + ["{name}"]
        """,
    )


class TestRunStep:
    @pytest.mark.asyncio
    async def test_continue(self):
        assert await run_step(lambda ctx: 1, None) == Continue(1)

    @pytest.mark.asyncio
    async def test_early_return(self):
        from appsync_local.context import create_context

        ctx = create_context()
        outcome = await run_step(lambda c: c.runtime.early_return("stop"), ctx)
        assert outcome == EarlyReturn("stop")

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self):
        def failing(ctx):
            raise ValueError("nope")

        with pytest.raises(ValueError):
            await run_step(failing, None)


class TestUnitResolver:
    @pytest.mark.asyncio
    async def test_none_data_source_echo(self, write_resolver, none_dispatcher):
        resolver = UnitResolver(unit(write_resolver("echo", ECHO)), none_dispatcher)

        assert await resolver.resolve(None, {"msg": "hi"}, {"headers": {}}) == "hi"

    @pytest.mark.asyncio
    async def test_async_handlers(self, write_resolver, none_dispatcher):
        path = write_resolver(
            "async_echo",
            """
            async def request(ctx):
                return {"value": 1}

            async def response(ctx):
                return ctx.result["value"] + 1
            """,
        )
        resolver = UnitResolver(unit(path), none_dispatcher)
        assert await resolver.resolve(None, {}) == 2

    @pytest.mark.asyncio
    async def test_early_return_skips_dispatch(self, write_resolver, none_dispatcher):
        path = write_resolver(
            "cached",
            """
            def request(ctx):
                ctx.runtime.early_return({"cached": True})

            def response(ctx):
                return ctx.prev["result"]
            """,
        )
        none_dispatcher.execute = AsyncMock()
        resolver = UnitResolver(unit(path), none_dispatcher)

        assert await resolver.resolve(None, {}) == {"cached": True}
        none_dispatcher.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_early_return_in_response(self, write_resolver, none_dispatcher):
        path = write_resolver(
            "early_response",
            """
            def request(ctx):
                return {}

            def response(ctx):
                ctx.runtime.early_return("short")
            """,
        )
        resolver = UnitResolver(unit(path), none_dispatcher)
        assert await resolver.resolve(None, {}) == "short"

    @pytest.mark.asyncio
    async def test_user_error_propagates(self, write_resolver, none_dispatcher):
        path = write_resolver(
            "denied",
            """
            def request(ctx):
                ctx.util.unauthorized()

            def response(ctx):
                return None
            """,
        )
        resolver = UnitResolver(unit(path), none_dispatcher)

        with pytest.raises(UserResolverError, match="Unauthorized"):
            await resolver.resolve(None, {})

    @pytest.mark.asyncio
    async def test_unknown_data_source(self, write_resolver, none_dispatcher):
        resolver = UnitResolver(unit(write_resolver("echo", ECHO), data_source="Missing"), none_dispatcher)

        with pytest.raises(ConfigurationError, match="Data source 'Missing' not found"):
            await resolver.resolve(None, {})

    @pytest.mark.asyncio
    async def test_timeout(self, write_resolver, none_dispatcher):
        path = write_resolver(
            "slow",
            """
            import asyncio

            async def request(ctx):
                await asyncio.sleep(0.05)
                return {}

            def response(ctx):
                return None
            """,
        )
        resolver = UnitResolver(
            unit(path),
            none_dispatcher,
            settings=EngineSettings(request_timeout_seconds=0.01),
        )

        with pytest.raises(ResolverTimeoutError, match="Query.echo"):
            await resolver.resolve(None, {})
        await asyncio.sleep(0.1)

    @pytest.mark.asyncio
    async def test_response_size_limit(self, write_resolver, none_dispatcher):
        resolver = UnitResolver(
            unit(write_resolver("echo", ECHO)),
            none_dispatcher,
            settings=EngineSettings(max_response_bytes=10),
        )

        with pytest.raises(LimitError) as exc_info:
            await resolver.resolve(None, {"msg": "x" * 50})
        assert exc_info.value.limit == "RESPONSE_SIZE_BYTES"

    def test_code_size_checked_at_construction(self, tmp_path, none_dispatcher):
        path = tmp_path / "huge.py"
        path.write_text("#" * 40_000)

        with pytest.raises(LimitError):
            UnitResolver(unit(str(path)), none_dispatcher)


class TestContextFromTransport:
    @pytest.mark.asyncio
    async def test_identity_from_headers(self, write_resolver, none_dispatcher):
        path = write_resolver(
            "whoami",
            """
            def request(ctx):
                return {}

            def response(ctx):
                return {
                    "auth": ctx.identity.auth_type if ctx.identity else None,
                    "host": ctx.request.domain_name,
                    "field": ctx.info.field_name,
                    "parent": ctx.info.parent_type_name,
                    "source": ctx.source,
                }
            """,
        )
        resolver = UnitResolver(
            unit(path),
            none_dispatcher,
            auth_methods=[AuthConfig(type="API_KEY", key="k")],
        )

        result = await resolver.resolve(
            {"id": "parent"},
            {},
            {"headers": {"X-Api-Key": "k", "Host": "localhost:4000"}},
        )
        assert result == {
            "auth": "API_KEY",
            "host": "localhost:4000",
            "field": "echo",
            "parent": "Query",
            "source": {"id": "parent"},
        }

    @pytest.mark.asyncio
    async def test_transport_identity_wins(self, write_resolver, none_dispatcher):
        path = write_resolver(
            "sub",
            """
            def request(ctx):
                return {}

            def response(ctx):
                return ctx.identity.sub
            """,
        )
        resolver = UnitResolver(unit(path), none_dispatcher)
        transport = {"headers": {}, "identity": Identity(sub="from-transport")}

        assert await resolver.resolve(None, {}, transport) == "from-transport"

    @pytest.mark.asyncio
    async def test_graphql_core_adapter(self, write_resolver, none_dispatcher, make_info):
        path = write_resolver(
            "info",
            """
            def request(ctx):
                return {}

            def response(ctx):
                return [ctx.args["id"], ctx.info.parent_type_name, ctx.info.variables]
            """,
        )
        resolver = UnitResolver(unit(path, field="user"), none_dispatcher)
        info = make_info(parent_type="User", field_name="user", context={"headers": {}}, variables={"v": 1})

        assert await resolver.resolver(None, info, id="7") == ["7", "User", {"v": 1}]


class TestPipelineResolver:
    @pytest.mark.asyncio
    async def test_functions_run_in_order_once(self, write_resolver, none_dispatcher):
        functions = [recording_function(write_resolver, f"fn{i}") for i in range(3)]
        main = write_resolver(
            "main",
            """
            def request(ctx):
                ctx.stash["started"] = True
                return "ignored"

            def response(ctx):
                return {"result": ctx.prev["result"], "calls": ctx.stash["calls"]}
            """,
        )
        resolver = PipelineResolver(pipeline(main, functions), none_dispatcher)

        result = await resolver.resolve(None, {})
        assert result == {"result": ["fn0", "fn1", "fn2"], "calls": ["fn0", "fn1", "fn2"]}

    @pytest.mark.asyncio
    async def test_early_return_skips_remaining_functions(self, write_resolver, none_dispatcher):
        first = recording_function(write_resolver, "first")
        stopper = write_resolver(
            "stopper",
            """
            def request(ctx):
                ctx.runtime.early_return({"stopped": ctx.stash["calls"]})

            def response(ctx):
                raise AssertionError("response must not run")
            """,
        )
        never = recording_function(write_resolver, "never")
        main = write_resolver("main", PASS_THROUGH)
        resolver = PipelineResolver(pipeline(main, [first, stopper, never]), none_dispatcher)

        assert await resolver.resolve(None, {}) == {"stopped": ["first"]}

    @pytest.mark.asyncio
    async def test_early_return_in_before_step(self, write_resolver, none_dispatcher):
        never = recording_function(write_resolver, "never")
        main = write_resolver(
            "main",
            """
            def request(ctx):
                ctx.runtime.early_return("from-before")

            def response(ctx):
                return [ctx.prev["result"], ctx.stash.get("calls")]
            """,
        )
        resolver = PipelineResolver(pipeline(main, [never]), none_dispatcher)

        assert await resolver.resolve(None, {}) == ["from-before", None]

    @pytest.mark.asyncio
    async def test_empty_pipeline(self, write_resolver, none_dispatcher):
        main = write_resolver(
            "main",
            """
            def request(ctx):
                return {}

            def response(ctx):
                return ctx.prev
            """,
        )
        resolver = PipelineResolver(pipeline(main, []), none_dispatcher)
        assert await resolver.resolve(None, {}) == {}

    @pytest.mark.asyncio
    async def test_function_error_aborts(self, write_resolver, none_dispatcher):
        failing = write_resolver(
            "failing",
            """
            def request(ctx):
                ctx.util.error("bad input", "ValidationError")

            def response(ctx):
                return None
            """,
        )
        never = recording_function(write_resolver, "never")
        main = write_resolver("main", PASS_THROUGH)
        resolver = PipelineResolver(pipeline(main, [failing, never]), none_dispatcher)

        with pytest.raises(UserResolverError) as exc_info:
            await resolver.resolve(None, {})
        assert exc_info.value.error_type == "ValidationError"

    def test_too_many_functions(self, write_resolver, none_dispatcher):
        fn = write_resolver("fn", PASS_THROUGH)
        main = write_resolver("main", PASS_THROUGH)

        with pytest.raises(LimitError) as exc_info:
            PipelineResolver(pipeline(main, [fn] * 11), none_dispatcher)
        assert exc_info.value.limit == "MAX_PIPELINE_FUNCTIONS"


class TestBuildResolverMap:
    def test_builds_nested_map(self, tmp_path, write_resolver):
        write_resolver("echo", ECHO)
        write_resolver("main", PASS_THROUGH)
        config = AppSyncConfig.model_validate(
            {
                "dataSources": [{"type": "NONE", "name": "LocalNone"}],
                "resolvers": [
                    {"type": "Query", "field": "echo", "kind": "Unit",
                     "dataSource": "LocalNone", "file": "echo.py"},
                    {"type": "Mutation", "field": "run", "kind": "Pipeline",
                     "file": "main.py", "pipelineFunctions": []},
                ],
            }
        )

        resolvers = build_resolver_map(config, base_dir=tmp_path)

        assert isinstance(resolvers["Query"]["echo"], UnitResolver)
        assert isinstance(resolvers["Mutation"]["run"], PipelineResolver)
        assert resolvers["Query"]["echo"].config.file == str((tmp_path / "echo.py").resolve())

    def test_duplicate_field(self, write_resolver, none_dispatcher):
        path = write_resolver("echo", ECHO)
        config = AppSyncConfig(resolvers=[unit(path), unit(path)])

        with pytest.raises(ConfigurationError, match="Duplicate resolver for Query.echo"):
            build_resolver_map(config, none_dispatcher)

    @pytest.mark.asyncio
    async def test_shared_dispatcher_end_to_end(self, write_resolver, none_dispatcher):
        config = AppSyncConfig(resolvers=[unit(write_resolver("echo", ECHO))])
        resolvers = build_resolver_map(config, none_dispatcher)

        results = await asyncio.gather(
            *(resolvers["Query"]["echo"].resolve(None, {"msg": str(i)}) for i in range(5))
        )
        assert results == ["0", "1", "2", "3", "4"]
