"""
Tests for the HTTP data source.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from appsync_local.config import HTTPConfig, HTTPDataSource
from appsync_local.datasources import DataSourceDispatcher
from appsync_local.datasources.http import HTTPAdapter, build_url, http_request, is_success_response
from appsync_local.errors import DataSourceError


@pytest.fixture
def source():
    return HTTPDataSource(
        name="UsersApi",
        config=HTTPConfig(endpoint="https://api.example.com/", default_headers={"X-Env": "local"}),
    )


def make_client(response: httpx.Response) -> MagicMock:
    client = MagicMock(spec=httpx.AsyncClient)
    client.request = AsyncMock(return_value=response)
    return client


class TestBuildUrl:
    @pytest.mark.parametrize(
        "endpoint,path,expected",
        [
            ("https://a.com", "/users", "https://a.com/users"),
            ("https://a.com/", "/users", "https://a.com/users"),
            ("https://a.com", "users", "https://a.com/users"),
        ],
    )
    def test_join(self, endpoint, path, expected):
        assert build_url(endpoint, path) == expected


class TestHTTPAdapter:
    @pytest.mark.asyncio
    async def test_get_parses_json(self, source):
        client = make_client(httpx.Response(200, json={"id": "1"}))
        adapter = HTTPAdapter(http_client=client)

        result = await adapter.execute(source, http_request.get("/users/1", query={"expand": "true"}))

        assert result["statusCode"] == 200
        assert result["body"] == {"id": "1"}
        client.request.assert_awaited_once()
        args, kwargs = client.request.call_args
        assert args == ("GET", "https://api.example.com/users/1")
        assert kwargs["params"] == {"expand": "true"}
        assert kwargs["content"] is None
        assert kwargs["headers"] == {"Content-Type": "application/json", "X-Env": "local"}

    @pytest.mark.asyncio
    async def test_post_serializes_body_and_merges_headers(self, source):
        client = make_client(httpx.Response(201, text="created"))
        adapter = HTTPAdapter(http_client=client)

        result = await adapter.execute(
            source,
            http_request.post("/users", {"name": "A"}, headers={"X-Env": "override", "X-Trace": "1"}),
        )

        kwargs = client.request.call_args.kwargs
        assert json.loads(kwargs["content"]) == {"name": "A"}
        assert kwargs["headers"]["X-Env"] == "override"
        assert kwargs["headers"]["X-Trace"] == "1"
        assert result["body"] == "created"

    @pytest.mark.asyncio
    async def test_string_body_sent_as_is(self, source):
        client = make_client(httpx.Response(200))
        adapter = HTTPAdapter(http_client=client)

        await adapter.execute(source, http_request.put("/raw", "plain text"))
        assert client.request.call_args.kwargs["content"] == "plain text"

    @pytest.mark.asyncio
    async def test_error_status_is_returned(self, source):
        client = make_client(httpx.Response(404, json={"message": "missing"}))
        adapter = HTTPAdapter(http_client=client)

        result = await adapter.execute(source, http_request.delete("/users/9"))

        assert result["statusCode"] == 404
        assert not is_success_response(result)

    @pytest.mark.asyncio
    async def test_transport_error_is_wrapped_by_dispatcher(self, source):
        client = MagicMock(spec=httpx.AsyncClient)
        client.request = AsyncMock(side_effect=httpx.ConnectError("connection refused"))
        dispatcher = DataSourceDispatcher([source], http_client=client)

        with pytest.raises(DataSourceError, match="HTTP operation failed for 'UsersApi': connection refused"):
            await dispatcher.execute("UsersApi", http_request.get("/users"))
