"""Pytest fixtures for ridemetrics tests."""

from collections.abc import Generator
from typing import Any

import pytest
from fastapi.testclient import TestClient

from ridemetrics.api.app import create_app
from ridemetrics.config import Settings
from ridemetrics.executor.clickhouse_executor import ClickHouseExecutor
from ridemetrics.store import RideMetricsStore


class FakeQueryResult:
    def __init__(self, column_names: list[str], result_rows: list[tuple]) -> None:
        self.column_names = column_names
        self.result_rows = result_rows


class FakeClickHouseClient:
    """Stands in for a clickhouse-connect client.

    records every (sql, parameters) pair and answers queries from a queue of
    scripted responses, oldest first. a queued exception is raised instead.
    an empty queue answers with an empty result.
    """

    def __init__(self) -> None:
        self.queries: list[tuple[str, dict[str, Any]]] = []
        self.responses: list[Any] = []
        self.closed = False

    def push(self, rows: list[dict[str, Any]]) -> "FakeClickHouseClient":
        columns: list[str] = []
        for row in rows:
            columns += [c for c in row if c not in columns]
        self.responses.append(FakeQueryResult(columns, [tuple(r.get(c) for c in columns) for r in rows]))
        return self

    def fail(self, error: Exception) -> "FakeClickHouseClient":
        self.responses.append(error)
        return self

    def query(self, sql: str, parameters: dict[str, Any] | None = None) -> FakeQueryResult:
        self.queries.append((sql, dict(parameters or {})))
        if not self.responses:
            return FakeQueryResult([], [])
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def close(self) -> None:
        self.closed = True

    @property
    def last_sql(self) -> str:
        return self.queries[-1][0]

    @property
    def last_params(self) -> dict[str, Any]:
        return self.queries[-1][1]


@pytest.fixture
def fake_client() -> FakeClickHouseClient:
    return FakeClickHouseClient()


@pytest.fixture
def executor(fake_client: FakeClickHouseClient) -> Generator[ClickHouseExecutor, None, None]:
    """Connected executor backed by the fake client."""
    executor = ClickHouseExecutor(client_factory=lambda **kwargs: fake_client)
    executor.connect()
    yield executor
    executor.close()


@pytest.fixture
def store(executor: ClickHouseExecutor) -> RideMetricsStore:
    return RideMetricsStore(executor)


@pytest.fixture
def settings() -> Settings:
    return Settings(app_env="test", log_level="WARNING")


@pytest.fixture
def api_client(settings: Settings, store: RideMetricsStore) -> Generator[TestClient, None, None]:
    """TestClient over the full app, lifespan included."""
    app = create_app(settings, store)
    with TestClient(app) as client:
        yield client
