"""Cancellation breakdowns.

a dimension is either a plain column (grouped normally) or a json map of
key -> count per row (exploded into pairs first). see DimensionShape.
"""

from ridemetrics.compiler.dimensions import resolve_cancellation_dimension, time_bucket
from ridemetrics.compiler.filters import CANCELLATIONS_SOURCE, Source, compile_where
from ridemetrics.compiler.sql_builder import (
    CompiledQuery,
    counters,
    dimensional_time_series_query,
    grouped_query,
    json_map_grouped_query,
    json_map_trend_query,
)
from ridemetrics.executor.clickhouse_executor import ClickHouseExecutor
from ridemetrics.models.filters import CancellationDimension, Filters, Granularity
from ridemetrics.models.results import CancellationGroupedRow, CancellationTrendPoint
from ridemetrics.normalize import safe_rate

CANCELLATION_COUNTERS = counters("total_bookings", "bookings_cancelled", "user_cancelled", "driver_cancelled")


class CancellationsRepository:
    def __init__(self, executor: ClickHouseExecutor, source: Source = CANCELLATIONS_SOURCE) -> None:
        self.executor = executor
        self.source = source

    def grouped_query(self, filters: Filters, dimension: CancellationDimension | str) -> CompiledQuery:
        shape = resolve_cancellation_dimension(dimension)
        where = compile_where(filters, self.source)
        if shape.is_json_map:
            return json_map_grouped_query(self.source.table, shape.column, where)
        return grouped_query(
            self.source.table,
            CANCELLATION_COUNTERS,
            where,
            shape.column,
            default_order=["bookings_cancelled DESC"],
        )

    def grouped(self, filters: Filters, dimension: CancellationDimension | str) -> list[CancellationGroupedRow]:
        query = self.grouped_query(filters, dimension)
        rows = self.executor.execute(query.sql, query.params).data

        result = []
        for row in rows:
            item = CancellationGroupedRow.model_validate(row)
            item.cancellation_rate = safe_rate(item.bookings_cancelled, item.total_bookings)
            item.user_cancellation_rate = safe_rate(item.user_cancelled, item.total_bookings)
            item.driver_cancellation_rate = safe_rate(item.driver_cancelled, item.total_bookings)
            result.append(item)
        return result

    def trend_query(
        self,
        filters: Filters,
        dimension: CancellationDimension | str,
        granularity: Granularity | str = Granularity.DAY,
    ) -> CompiledQuery:
        shape = resolve_cancellation_dimension(dimension)
        bucket = time_bucket(granularity)
        where = compile_where(filters, self.source)
        if shape.is_json_map:
            return json_map_trend_query(self.source.table, shape.column, where, bucket, self.source.time_column)
        return dimensional_time_series_query(
            self.source.table,
            CANCELLATION_COUNTERS,
            where,
            bucket=bucket,
            time_column=self.source.time_column,
            dimension_expr=shape.column,
        )

    def trend(
        self,
        filters: Filters,
        dimension: CancellationDimension | str,
        granularity: Granularity | str = Granularity.DAY,
    ) -> list[CancellationTrendPoint]:
        query = self.trend_query(filters, dimension, granularity)
        rows = self.executor.execute(query.sql, query.params).data
        return [CancellationTrendPoint.model_validate(row) for row in rows]
