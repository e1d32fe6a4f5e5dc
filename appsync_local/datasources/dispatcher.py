"""
Data Source Dispatcher.

Routes a request descriptor to the adapter for the named data source.

Flow:
    execute(name, request)
        -> lookup by name (ConfigurationError when unknown, before any I/O)
        -> adapter for the data source type
        -> backend failures wrapped in DataSourceError, including handler
           load and pool setup errors; resolver and limit errors pass through

Shared resources (DynamoDB clients, SQL pools, open transactions) live on
the adapters and are released by close().
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable
from typing import Any

import httpx

from ..config import (
    DataSource,
    DynamoDataSource,
    EngineSettings,
    HTTPDataSource,
    LambdaDataSource,
    NoneDataSource,
    RDSDataSource,
)
from ..errors import ConfigurationError, DataSourceError, LimitError, UserResolverError
from .aws_lambda import LambdaAdapter
from .dynamo import DynamoDBAdapter
from .http import HTTPAdapter
from .rds import PoolFactory, RDSAdapter, create_pool

logger = logging.getLogger(__name__)


class DataSourceDispatcher:
    """
    Executes requests against configured data sources.

    Usage:
        dispatcher = DataSourceDispatcher(config.data_sources)
        result = await dispatcher.execute("UsersTable", {"operation": "GetItem", ...})
        await dispatcher.close()
    """

    def __init__(
        self,
        data_sources: Iterable[DataSource],
        *,
        settings: EngineSettings | None = None,
        http_client: httpx.AsyncClient | None = None,
        pool_factory: PoolFactory = create_pool,
    ):
        self._settings = settings or EngineSettings()
        self._data_sources: dict[str, DataSource] = {ds.name: ds for ds in data_sources}

        self.dynamodb = DynamoDBAdapter()
        self.rds = RDSAdapter(self._settings, pool_factory=pool_factory)
        self.http = HTTPAdapter(http_client=http_client, timeout=self._settings.http_timeout_seconds)
        self.aws_lambda = LambdaAdapter()

    @property
    def names(self) -> list[str]:
        return list(self._data_sources)

    def get(self, name: str) -> DataSource:
        """
        Raises:
            ConfigurationError: No data source with this name
        """
        data_source = self._data_sources.get(name)
        if data_source is None:
            raise ConfigurationError(f"Data source '{name}' not found")
        return data_source

    async def execute(self, name: str, request: Any) -> Any:
        """
        Execute a request descriptor on the named data source.

        Raises:
            ConfigurationError: Unknown data source name
            DataSourceError: The backend call failed
        """
        data_source = self.get(name)

        if isinstance(data_source, NoneDataSource):
            return request

        start = time.perf_counter()
        try:
            if isinstance(data_source, DynamoDataSource):
                result = await self.dynamodb.execute(data_source, request)
            elif isinstance(data_source, RDSDataSource):
                result = await self.rds.execute(data_source, request)
            elif isinstance(data_source, HTTPDataSource):
                result = await self.http.execute(data_source, request)
            elif isinstance(data_source, LambdaDataSource):
                result = await self.aws_lambda.execute(data_source, request)
            else:
                raise ConfigurationError(f"Unsupported data source type: {data_source.type}")
        except (UserResolverError, LimitError, DataSourceError):
            raise
        except Exception as e:
            logger.error(f"[dispatcher] {data_source.type} call on '{name}' failed: {e}", exc_info=True)
            raise DataSourceError.wrap(name, data_source.type, e) from e

        duration_ms = (time.perf_counter() - start) * 1000
        logger.debug(f"[dispatcher] {data_source.type} '{name}' completed in {duration_ms:.1f}ms")
        return result

    async def close(self) -> None:
        """Release DynamoDB clients, open transactions and SQL pools."""
        await self.dynamodb.close()
        await self.rds.close()
        logger.info("[dispatcher] Closed data source resources")
