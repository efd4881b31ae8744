"""Raw query result model.

this is the executor's output, before any report-specific normalization -
rows are still untyped dicts straight from clickhouse.
"""

from typing import Any

from pydantic import BaseModel, Field


class QueryResult(BaseModel):
    """Result of one executed statement.

    the sql and its bound params travel with the rows, handy when a number
    on the dashboard looks off and someone wants to re-run the query by hand.
    """

    sql: str
    params: dict[str, Any] = Field(default_factory=dict)
    columns: list[str]
    data: list[dict[str, Any]]
    row_count: int
    execution_time_ms: float

    def first(self) -> dict[str, Any]:
        """First row, or {} for an empty result (aggregates over nothing)."""
        return self.data[0] if self.data else {}
