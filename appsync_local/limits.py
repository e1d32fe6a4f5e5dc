"""
Service Limits for appsync-local.

Static checks run once while a resolver is being constructed:
- resolver/function source file size
- pipeline function count

Dynamic checks run per invocation:
- execution deadline (a race, not a hard kill)
- JSON-serialized response size (after the response handler completes)
- extension call counts (enforced by context.Extensions)
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from collections.abc import Awaitable
from typing import Any, TypeVar

from .errors import LimitError, ResolverTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


LIMITS: dict[str, int] = {
    # Maximum request duration in milliseconds
    "REQUEST_TIMEOUT_MS": 30_000,
    # Maximum resolver code size in bytes (32KB)
    "RESOLVER_CODE_SIZE_BYTES": 32_768,
    # Maximum response payload size in bytes (5MB)
    "RESPONSE_SIZE_BYTES": 5_242_880,
    # Maximum number of functions in one pipeline resolver
    "MAX_PIPELINE_FUNCTIONS": 10,
    # Maximum invalidateSubscriptions calls per request
    "MAX_INVALIDATIONS_PER_REQUEST": 5,
}


def format_bytes(size: int) -> str:
    """Format a byte count for error messages."""
    if size < 1024:
        return f"{size} bytes"
    if size < 1_048_576:
        return f"{size / 1024:.2f} KB"
    return f"{size / 1_048_576:.2f} MB"


# =============================================================================
# Static checks
# =============================================================================


def check_resolver_code_size(file_path: str | os.PathLike[str]) -> None:
    """
    Check that a resolver source file fits the code size ceiling.

    A file that does not exist is not reported here; loading it fails later.

    Raises:
        LimitError: File exceeds RESOLVER_CODE_SIZE_BYTES
    """
    try:
        size = os.stat(file_path).st_size
    except OSError:
        logger.debug(f"[limits] Cannot stat '{file_path}', skipping code size check")
        return

    maximum = LIMITS["RESOLVER_CODE_SIZE_BYTES"]
    if size > maximum:
        raise LimitError(
            "RESOLVER_CODE_SIZE_BYTES",
            size,
            maximum,
            f"Resolver file '{file_path}' is {size / 1024:.2f}KB which exceeds the 32KB limit.",
        )


def check_pipeline_function_count(count: int, resolver_field: str) -> None:
    """
    Raises:
        LimitError: Pipeline has more than MAX_PIPELINE_FUNCTIONS functions
    """
    maximum = LIMITS["MAX_PIPELINE_FUNCTIONS"]
    if count > maximum:
        raise LimitError(
            "MAX_PIPELINE_FUNCTIONS",
            count,
            maximum,
            f"Pipeline resolver '{resolver_field}' has {count} functions "
            f"which exceeds the limit of {maximum}.",
        )


# =============================================================================
# Dynamic checks
# =============================================================================


def check_response_size(
    response: Any,
    field_name: str = "response",
    *,
    maximum: int | None = None,
) -> int:
    """
    Check the JSON-serialized size of a field result.

    Runs after the response handler, so an oversized result has already been
    fully computed when it is rejected.

    Returns:
        The serialized size in bytes

    Raises:
        LimitError: Serialized result exceeds the response ceiling
    """
    if maximum is None:
        maximum = LIMITS["RESPONSE_SIZE_BYTES"]

    payload = json.dumps(response, default=str, separators=(",", ":"))
    size = len(payload.encode("utf-8"))

    if size > maximum:
        raise LimitError(
            "RESPONSE_SIZE_BYTES",
            size,
            maximum,
            f"Response for '{field_name}' is {size / 1_048_576:.2f}MB "
            f"which exceeds the {format_bytes(maximum)} limit.",
        )
    return size


def _consume_late_result(task: asyncio.Future[Any], operation_name: str) -> None:
    """Retrieve the outcome of work that finished after its deadline."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning(f"[limits] {operation_name} failed after timeout: {exc}")
    else:
        logger.debug(f"[limits] {operation_name} completed after timeout, result discarded")


async def with_timeout(
    awaitable: Awaitable[T],
    timeout: float | None = None,
    operation_name: str = "Request",
) -> T:
    """
    Race an awaitable against a deadline.

    On timeout the caller receives ResolverTimeoutError while the underlying
    work keeps running to completion in the background; its eventual result
    is discarded. There is no cancellation of in-flight data source calls.

    Args:
        awaitable: The invocation to race
        timeout: Deadline in seconds (default REQUEST_TIMEOUT_MS)
        operation_name: Label used in the error message

    Raises:
        ResolverTimeoutError: Deadline reached first
    """
    if timeout is None:
        timeout = LIMITS["REQUEST_TIMEOUT_MS"] / 1000

    start = time.perf_counter()
    task = asyncio.ensure_future(awaitable)
    try:
        return await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
    except asyncio.TimeoutError:
        task.add_done_callback(lambda t: _consume_late_result(t, operation_name))
        timeout_ms = int(timeout * 1000)
        elapsed_ms = max(timeout_ms, int((time.perf_counter() - start) * 1000))
        raise ResolverTimeoutError(
            "REQUEST_TIMEOUT_MS",
            elapsed_ms,
            timeout_ms,
            f"{operation_name} exceeded the {timeout_ms}ms timeout limit. "
            f"The service enforces a 30-second timeout.",
        ) from None
