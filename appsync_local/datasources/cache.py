"""
Resource Cache for data source connections.

Holds long-lived backend handles (DynamoDB clients, SQL pools) keyed by data
source name. Handles are created lazily on first use and kept until the
dispatcher is closed.

Creation is single-flight per key: concurrent first uses of the same data
source await one factory call instead of racing to build duplicates.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ResourceCache(Generic[T]):
    """
    Lazily-populated map of data source name -> resource.

    Usage:
        pools = ResourceCache[SqlPool]("rds")
        pool = await pools.get_or_create("MainDB", lambda: create_pool(cfg))
    """

    def __init__(self, kind: str):
        self._kind = kind
        self._resources: dict[str, T] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    async def get_or_create(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        resource = self._resources.get(key)
        if resource is not None:
            return resource

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            resource = self._resources.get(key)
            if resource is None:
                resource = await factory()
                self._resources[key] = resource
                logger.info(f"[{self._kind}] Created resource for '{key}'")
        return resource

    def get(self, key: str) -> T | None:
        return self._resources.get(key)

    def drain(self) -> list[tuple[str, T]]:
        """Remove and return every cached resource."""
        items = list(self._resources.items())
        self._resources.clear()
        self._locks.clear()
        return items

    def __contains__(self, key: object) -> bool:
        return key in self._resources

    def __len__(self) -> int:
        return len(self._resources)
