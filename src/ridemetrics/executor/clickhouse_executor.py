"""ClickHouse query executor.

one executor per process, built by whoever owns the app (the fastapi
factory or a cli command) and closed by the same owner. queries go through
clickhouse-connect's http client with server-side parameter binding, so
values never end up inside the sql text.

the client is created with autogenerate_session_id=False - fastapi runs
sync handlers in a threadpool and a shared session would make concurrent
queries fail with "session is locked".
"""

import time
from collections.abc import Callable
from typing import Any

import clickhouse_connect
import structlog
from clickhouse_connect.driver.exceptions import ClickHouseError

from ridemetrics.config import Settings
from ridemetrics.errors import QueryExecutionError
from ridemetrics.models.query import QueryResult

logger = structlog.get_logger(__name__)

ClientFactory = Callable[..., Any]


class ClickHouseExecutor:
    """Execute queries against ClickHouse.

    thin wrapper around clickhouse-connect that handles the client lifecycle
    and turns result sets into list-of-dict rows.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 8123,
        username: str = "default",
        password: str = "",
        database: str = "default",
        client_factory: ClientFactory | None = None,
    ) -> None:
        """Configure the connection. Nothing is opened until connect().

        Args:
            host: ClickHouse HTTP host.
            port: ClickHouse HTTP port.
            username: ClickHouse user.
            password: Password for that user.
            database: Default database for unqualified table names.
            client_factory: Builds the client, clickhouse_connect.get_client by default.
        """
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.database = database
        # swapped out in tests for a fake client
        self._client_factory = client_factory or clickhouse_connect.get_client
        self._client: Any | None = None

    @classmethod
    def from_settings(cls, settings: Settings, client_factory: ClientFactory | None = None) -> "ClickHouseExecutor":
        return cls(
            host=settings.clickhouse_host,
            port=settings.clickhouse_port,
            username=settings.clickhouse_user,
            password=settings.clickhouse_password,
            database=settings.clickhouse_database,
            client_factory=client_factory,
        )

    @property
    def connected(self) -> bool:
        return self._client is not None

    @property
    def client(self) -> Any:
        if self._client is None:
            raise QueryExecutionError("ClickHouse executor is not connected")
        return self._client

    def connect(self) -> None:
        """Open the client. Safe to call again after a failed attempt."""
        if self._client is not None:
            return
        try:
            self._client = self._client_factory(
                host=self.host,
                port=self.port,
                username=self.username,
                password=self.password,
                database=self.database,
                autogenerate_session_id=False,
            )
        except (ClickHouseError, OSError) as exc:
            logger.error("clickhouse_connect_failed", host=self.host, port=self.port, error=str(exc))
            raise QueryExecutionError(f"Could not connect to ClickHouse at {self.host}:{self.port}") from exc
        logger.info("clickhouse_connected", host=self.host, port=self.port, database=self.database)

    def execute(self, sql: str, params: dict[str, Any] | None = None) -> QueryResult:
        """Execute SQL with bound parameters and return structured results.

        any driver error is re-raised as QueryExecutionError carrying the sql;
        there is no retry.
        """
        params = params or {}
        client = self.client
        start = time.perf_counter()

        try:
            result = client.query(sql, parameters=params)
        except ClickHouseError as exc:
            logger.error("query_failed", sql=sql, params=params, error=str(exc))
            raise QueryExecutionError(str(exc), sql=sql) from exc

        elapsed_ms = (time.perf_counter() - start) * 1000

        columns = list(result.column_names or [])
        rows = result.result_rows or []
        data = [dict(zip(columns, row)) for row in rows]

        logger.debug("query_executed", rows=len(data), elapsed_ms=round(elapsed_ms, 2))

        return QueryResult(
            sql=sql,
            params=params,
            columns=columns,
            data=data,
            row_count=len(data),
            execution_time_ms=round(elapsed_ms, 2),
        )

    def ping(self) -> bool:
        """Health test: SELECT 1. Tries to (re)connect when there is no client."""
        try:
            self.connect()
            result = self.execute("SELECT 1")
        except QueryExecutionError:
            return False
        return result.row_count == 1

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
            logger.info("clickhouse_closed")

    def __enter__(self) -> "ClickHouseExecutor":
        self.connect()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
