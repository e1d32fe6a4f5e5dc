"""
HTTP data source.

Request descriptor:
    {
        "method": "GET",
        "resourcePath": "/users/1",
        "params": {
            "query": {"expand": "true"},
            "headers": {"Authorization": "Bearer ..."},
            "body": {...},
        },
    }

Response:
    {"statusCode": 200, "headers": {...}, "body": <parsed JSON or text>}

Non-2xx responses are returned, not raised; resolver code decides what a
failed status means (see is_success_response).
"""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from ..config import HTTPDataSource

logger = logging.getLogger(__name__)

BODY_METHODS = ("POST", "PUT", "PATCH")


def build_url(endpoint: str, resource_path: str) -> str:
    base = endpoint.rstrip("/")
    path = resource_path if resource_path.startswith("/") else f"/{resource_path}"
    return f"{base}{path}"


def _parse_body(response: httpx.Response) -> Any:
    content_type = response.headers.get("content-type", "")
    if "application/json" in content_type:
        try:
            return response.json()
        except ValueError:
            return response.text
    return response.text


class HTTPAdapter:
    """
    Executes HTTP data source requests with httpx.

    Lifecycle:
        - If http_client was provided: use it (caller manages lifecycle)
        - Otherwise: create a fresh client per call and close it
    """

    def __init__(
        self,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ):
        self._shared_client = http_client
        self._timeout = timeout

    async def execute(self, data_source: HTTPDataSource, request: dict[str, Any]) -> dict[str, Any]:
        method = str(request.get("method", "GET")).upper()
        params = request.get("params") or {}
        url = build_url(data_source.config.endpoint, request.get("resourcePath", "/"))

        headers = {
            "Content-Type": "application/json",
            **data_source.config.default_headers,
            **(params.get("headers") or {}),
        }

        content: str | None = None
        body = params.get("body")
        if body is not None and method in BODY_METHODS:
            content = body if isinstance(body, str) else json.dumps(body)

        if self._shared_client is not None:
            client = self._shared_client
            close_after = False
        else:
            client = httpx.AsyncClient(timeout=self._timeout)
            close_after = True

        try:
            logger.debug(f"[http:{data_source.name}] {method} {url}")
            response = await client.request(
                method,
                url,
                params=params.get("query") or None,
                headers=headers,
                content=content,
            )
            logger.debug(f"[http:{data_source.name}] Response: {response.status_code}")

            return {
                "statusCode": response.status_code,
                "headers": dict(response.headers),
                "body": _parse_body(response),
            }
        finally:
            if close_after:
                await client.aclose()


def is_success_response(response: dict[str, Any]) -> bool:
    return 200 <= response.get("statusCode", 0) < 300


class HTTPRequestBuilder:
    """Builds HTTP request descriptors for resolver code."""

    @staticmethod
    def get(
        resource_path: str,
        query: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        return {"method": "GET", "resourcePath": resource_path, "params": {"query": query, "headers": headers}}

    @staticmethod
    def post(resource_path: str, body: Any, headers: dict[str, str] | None = None) -> dict[str, Any]:
        return {"method": "POST", "resourcePath": resource_path, "params": {"body": body, "headers": headers}}

    @staticmethod
    def put(resource_path: str, body: Any, headers: dict[str, str] | None = None) -> dict[str, Any]:
        return {"method": "PUT", "resourcePath": resource_path, "params": {"body": body, "headers": headers}}

    @staticmethod
    def patch(resource_path: str, body: Any, headers: dict[str, str] | None = None) -> dict[str, Any]:
        return {"method": "PATCH", "resourcePath": resource_path, "params": {"body": body, "headers": headers}}

    @staticmethod
    def delete(resource_path: str, headers: dict[str, str] | None = None) -> dict[str, Any]:
        return {"method": "DELETE", "resourcePath": resource_path, "params": {"headers": headers}}


http_request = HTTPRequestBuilder()
