"""
RDS data source.

Executes SQL against PostgreSQL (asyncpg) or MySQL (aiomysql). Both drivers
are wrapped to present the same pool/connection shape (SqlPool /
SqlConnection), and results are reshaped into the managed SQL-over-HTTP
response format:

    {
        "records": [[value, ...], ...],
        "columnMetadata": [{"name": "id", "type": "int4"}, ...],
        "numberOfRecordsUpdated": 0,
        "generatedFields": [],
    }

Named placeholders (`:name`) are rewritten to the driver's positional style
(`$1` for asyncpg, `%s` for aiomysql). A `:name` with no entry in the
variable map is left untouched, as are `::` casts.

Transactions:
    beginTransaction checks out a dedicated connection and registers it
    under a generated id. The id is valid only on the data source that
    issued it; commitTransaction/rollbackTransaction release the
    connection and forget the id.
"""

from __future__ import annotations

import logging
import re
import ssl
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

import aiomysql
import asyncpg

from ..config import EngineSettings, RDSConfig, RDSDataSource
from ..errors import ConfigurationError
from .cache import ResourceCache

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"(?<!:):(\w+)")
_STATUS_COUNT = re.compile(r"(\d+)$")


# =============================================================================
# Driver-neutral shapes
# =============================================================================


@dataclass
class ColumnInfo:
    name: str
    type: str


@dataclass
class QueryResult:
    columns: list[ColumnInfo] = field(default_factory=list)
    rows: list[list[Any]] = field(default_factory=list)
    rowcount: int = 0


class SqlConnection(Protocol):
    async def query(self, sql: str, values: list[Any]) -> QueryResult: ...

    async def execute(self, command: str) -> None: ...

    async def release(self) -> None: ...


class SqlPool(Protocol):
    paramstyle: str

    async def query(self, sql: str, values: list[Any]) -> QueryResult: ...

    async def acquire(self) -> SqlConnection: ...

    async def close(self) -> None: ...


def convert_variables(
    sql: str,
    variables: dict[str, Any] | None,
    paramstyle: str = "numeric",
) -> tuple[str, list[Any]]:
    """
    Rewrite `:name` placeholders to positional ones.

    Args:
        sql: Statement text
        variables: Named values
        paramstyle: "numeric" ($1, $2, ...) or "format" (%s)

    Returns:
        (converted SQL, positional values in statement order)

    Example:
        convert_variables("SELECT * FROM t WHERE id = :id", {"id": 1})
        -> ("SELECT * FROM t WHERE id = $1", [1])
    """
    if not variables:
        return sql, []

    values: list[Any] = []

    def _replace(match: re.Match[str]) -> str:
        name = match.group(1)
        if name not in variables:
            return match.group(0)
        values.append(variables[name])
        return f"${len(values)}" if paramstyle == "numeric" else "%s"

    return _PLACEHOLDER.sub(_replace, sql), values


def format_result(result: QueryResult) -> dict[str, Any]:
    return {
        "records": result.rows,
        "columnMetadata": [{"name": c.name, "type": c.type} for c in result.columns],
        "numberOfRecordsUpdated": result.rowcount,
        "generatedFields": [],
    }


def _ssl_context(config: RDSConfig, settings: EngineSettings) -> ssl.SSLContext | None:
    if not config.ssl:
        return None
    context = ssl.create_default_context()
    if not settings.ssl_reject_unauthorized:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


# =============================================================================
# PostgreSQL (asyncpg)
# =============================================================================


async def _pg_query(conn: asyncpg.Connection, sql: str, values: list[Any]) -> QueryResult:
    statement = await conn.prepare(sql)
    columns = [ColumnInfo(a.name, a.type.name) for a in statement.get_attributes()]
    records = await statement.fetch(*values)

    rowcount = 0
    status = statement.get_statusmsg() or ""
    match = _STATUS_COUNT.search(status)
    if match and not columns:
        rowcount = int(match.group(1))

    return QueryResult(columns=columns, rows=[list(r.values()) for r in records], rowcount=rowcount)


class PostgresConnection:
    def __init__(self, pool: asyncpg.Pool, conn: asyncpg.Connection):
        self._pool = pool
        self._conn = conn

    async def query(self, sql: str, values: list[Any]) -> QueryResult:
        return await _pg_query(self._conn, sql, values)

    async def execute(self, command: str) -> None:
        await self._conn.execute(command)

    async def release(self) -> None:
        await self._pool.release(self._conn)


class PostgresPool:
    paramstyle = "numeric"

    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    @classmethod
    async def create(cls, config: RDSConfig, settings: EngineSettings) -> PostgresPool:
        pool = await asyncpg.create_pool(
            host=config.host,
            port=config.port or 5432,
            user=config.user,
            password=config.password,
            database=config.database_name,
            ssl=_ssl_context(config, settings),
            min_size=1,
            max_size=settings.rds_pool_size,
            timeout=settings.rds_connect_timeout_seconds,
        )
        return cls(pool)

    async def query(self, sql: str, values: list[Any]) -> QueryResult:
        async with self._pool.acquire() as conn:
            return await _pg_query(conn, sql, values)

    async def acquire(self) -> PostgresConnection:
        conn = await self._pool.acquire()
        return PostgresConnection(self._pool, conn)

    async def close(self) -> None:
        await self._pool.close()


# =============================================================================
# MySQL (aiomysql)
# =============================================================================


async def _mysql_query(conn: aiomysql.Connection, sql: str, values: list[Any]) -> QueryResult:
    async with conn.cursor() as cursor:
        await cursor.execute(sql, values or None)
        description = cursor.description or ()
        columns = [ColumnInfo(d[0], str(d[1])) for d in description]
        if description:
            rows = [list(r) for r in await cursor.fetchall()]
            return QueryResult(columns=columns, rows=rows)
        return QueryResult(rowcount=max(cursor.rowcount, 0))


class MySQLConnection:
    def __init__(self, pool: aiomysql.Pool, conn: aiomysql.Connection):
        self._pool = pool
        self._conn = conn

    async def query(self, sql: str, values: list[Any]) -> QueryResult:
        return await _mysql_query(self._conn, sql, values)

    async def execute(self, command: str) -> None:
        async with self._conn.cursor() as cursor:
            await cursor.execute(command)

    async def release(self) -> None:
        self._pool.release(self._conn)


class MySQLPool:
    paramstyle = "format"

    def __init__(self, pool: aiomysql.Pool):
        self._pool = pool

    @classmethod
    async def create(cls, config: RDSConfig, settings: EngineSettings) -> MySQLPool:
        pool = await aiomysql.create_pool(
            host=config.host,
            port=config.port or 3306,
            user=config.user,
            password=config.password or "",
            db=config.database_name,
            ssl=_ssl_context(config, settings),
            minsize=1,
            maxsize=settings.rds_pool_size,
            connect_timeout=settings.rds_connect_timeout_seconds,
            autocommit=True,
        )
        return cls(pool)

    async def query(self, sql: str, values: list[Any]) -> QueryResult:
        async with self._pool.acquire() as conn:
            return await _mysql_query(conn, sql, values)

    async def acquire(self) -> MySQLConnection:
        conn = await self._pool.acquire()
        return MySQLConnection(self._pool, conn)

    async def close(self) -> None:
        self._pool.close()
        await self._pool.wait_closed()


async def create_pool(config: RDSConfig, settings: EngineSettings) -> SqlPool:
    """
    Raises:
        ConfigurationError: mode other than "local"
    """
    if config.mode != "local":
        raise ConfigurationError(
            f"RDS mode '{config.mode}' is not supported locally; use mode 'local'"
        )
    if config.engine == "mysql":
        return await MySQLPool.create(config, settings)
    return await PostgresPool.create(config, settings)


# =============================================================================
# Adapter
# =============================================================================


@dataclass
class _Transaction:
    data_source: str
    connection: SqlConnection


PoolFactory = Callable[[RDSConfig, EngineSettings], Awaitable[SqlPool]]


class RDSAdapter:
    """
    Executes RDS data source requests.

    Args:
        settings: Engine settings (pool size, connect timeout, SSL)
        pool_factory: Creates a SqlPool for a data source config
    """

    def __init__(
        self,
        settings: EngineSettings | None = None,
        pool_factory: PoolFactory = create_pool,
    ):
        self._settings = settings or EngineSettings()
        self._pool_factory = pool_factory
        self._pools: ResourceCache[SqlPool] = ResourceCache("rds")
        self._transactions: dict[str, _Transaction] = {}

    @property
    def open_transactions(self) -> int:
        return len(self._transactions)

    async def get_pool(self, data_source: RDSDataSource) -> SqlPool:
        return await self._pools.get_or_create(
            data_source.name,
            lambda: self._pool_factory(data_source.config, self._settings),
        )

    def _lookup(self, data_source: RDSDataSource, transaction_id: str | None) -> _Transaction:
        transaction = self._transactions.get(transaction_id or "")
        if transaction is None or transaction.data_source != data_source.name:
            raise ValueError(f"Transaction {transaction_id} not found")
        return transaction

    async def execute(self, data_source: RDSDataSource, request: dict[str, Any]) -> dict[str, Any]:
        operation = request.get("operation")
        pool = await self.get_pool(data_source)

        if operation == "executeStatement":
            return await self._execute_statement(data_source, pool, request)
        if operation == "batchExecuteStatement":
            return await self._batch_execute(data_source, pool, request)
        if operation == "beginTransaction":
            return await self._begin(data_source, pool)
        if operation == "commitTransaction":
            return await self._end(data_source, request.get("transactionId"), "COMMIT")
        if operation == "rollbackTransaction":
            return await self._end(data_source, request.get("transactionId"), "ROLLBACK")
        raise ValueError(f"Unsupported RDS operation: {operation}")

    async def _execute_statement(
        self,
        data_source: RDSDataSource,
        pool: SqlPool,
        request: dict[str, Any],
    ) -> dict[str, Any]:
        sql = request.get("sql")
        if not sql:
            raise ValueError("SQL statement is required")
        converted, values = convert_variables(sql, request.get("variableMap"), pool.paramstyle)

        transaction_id = request.get("transactionId")
        if transaction_id:
            transaction = self._lookup(data_source, transaction_id)
            result = await transaction.connection.query(converted, values)
        else:
            result = await pool.query(converted, values)
        return format_result(result)

    async def _batch_execute(
        self,
        data_source: RDSDataSource,
        pool: SqlPool,
        request: dict[str, Any],
    ) -> dict[str, Any]:
        statements = request.get("statements") or []
        if not statements:
            raise ValueError("Statements array is required")

        transaction_id = request.get("transactionId")
        if transaction_id:
            connection = self._lookup(data_source, transaction_id).connection
        else:
            connection = await pool.acquire()

        records: list[list[Any]] = []
        updated = 0
        try:
            for statement in statements:
                converted, values = convert_variables(
                    statement["sql"], statement.get("variableMap"), pool.paramstyle
                )
                result = await connection.query(converted, values)
                records.extend(result.rows)
                updated += result.rowcount
        finally:
            if not transaction_id:
                await connection.release()

        return {
            "records": records,
            "numberOfRecordsUpdated": updated,
            "generatedFields": [],
        }

    async def _begin(self, data_source: RDSDataSource, pool: SqlPool) -> dict[str, Any]:
        connection = await pool.acquire()
        try:
            await connection.execute("BEGIN")
        except Exception:
            await connection.release()
            raise

        transaction_id = f"txn_{uuid.uuid4().hex}"
        self._transactions[transaction_id] = _Transaction(data_source.name, connection)
        logger.info(f"[rds:{data_source.name}] Began transaction {transaction_id}")
        return {"transactionId": transaction_id}

    async def _end(
        self,
        data_source: RDSDataSource,
        transaction_id: str | None,
        command: str,
    ) -> dict[str, Any]:
        transaction = self._lookup(data_source, transaction_id)
        del self._transactions[transaction_id]  # type: ignore[arg-type]
        try:
            await transaction.connection.execute(command)
        finally:
            await transaction.connection.release()

        logger.info(f"[rds:{data_source.name}] {command} transaction {transaction_id}")
        status = "Transaction Committed" if command == "COMMIT" else "Rollback Complete"
        return {"transactionId": transaction_id, "transactionStatus": status}

    async def close(self) -> None:
        """Roll back open transactions and close every pool."""
        transactions = list(self._transactions.items())
        self._transactions.clear()
        for transaction_id, transaction in transactions:
            try:
                await transaction.connection.execute("ROLLBACK")
                await transaction.connection.release()
            except Exception as e:
                logger.error(f"[rds:{transaction.data_source}] Error rolling back {transaction_id}: {e}")

        for name, pool in self._pools.drain():
            try:
                await pool.close()
            except Exception as e:
                logger.error(f"[rds:{name}] Error closing pool: {e}")


# =============================================================================
# Request builders
# =============================================================================


class RDSRequestBuilder:
    """Builds RDS request descriptors for resolver code."""

    @staticmethod
    def execute_statement(
        sql: str,
        variable_map: dict[str, Any] | None = None,
        transaction_id: str | None = None,
    ) -> dict[str, Any]:
        request: dict[str, Any] = {"operation": "executeStatement", "sql": sql}
        if variable_map is not None:
            request["variableMap"] = variable_map
        if transaction_id is not None:
            request["transactionId"] = transaction_id
        return request

    @staticmethod
    def batch_execute_statement(
        statements: list[dict[str, Any]],
        transaction_id: str | None = None,
    ) -> dict[str, Any]:
        request: dict[str, Any] = {"operation": "batchExecuteStatement", "statements": statements}
        if transaction_id is not None:
            request["transactionId"] = transaction_id
        return request

    @staticmethod
    def begin_transaction() -> dict[str, Any]:
        return {"operation": "beginTransaction"}

    @staticmethod
    def commit_transaction(transaction_id: str) -> dict[str, Any]:
        return {"operation": "commitTransaction", "transactionId": transaction_id}

    @staticmethod
    def rollback_transaction(transaction_id: str) -> dict[str, Any]:
        return {"operation": "rollbackTransaction", "transactionId": transaction_id}


rds_request = RDSRequestBuilder()
