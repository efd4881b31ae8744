"""Reports over atlas_agg_metrics.open_data_validation.

the pre-aggregated funnel table behind the executive dashboard. every
report follows the same steps: compile filters, build the sql, execute,
validate rows into result models, derive rates in python.
"""

from typing import get_args

from ridemetrics.compiler.dimensions import metrics_group_column, time_bucket
from ridemetrics.compiler.filters import METRICS_SOURCE, Source, compile_where
from ridemetrics.compiler.sql_builder import (
    CompiledQuery,
    counters,
    distinct_values_query,
    grouped_query,
    time_series_query,
    totals_query,
)
from ridemetrics.errors import InvalidQueryError
from ridemetrics.executor.clickhouse_executor import ClickHouseExecutor
from ridemetrics.models.filters import Filters, Granularity, MetricsGroupBy, Period, SortOptions
from ridemetrics.models.results import (
    CancellationRates,
    ComparisonPeriodData,
    ComparisonResult,
    ConversionMetrics,
    DateRange,
    DriverMetrics,
    ExecutiveMetrics,
    ExecutiveTotals,
    FilterOptions,
    FunnelMetrics,
    GroupedRow,
    RiderMetrics,
    TimeSeriesPoint,
)
from ridemetrics.normalize import metric_changes, safe_rate

EXECUTIVE_COUNTERS = counters(
    "searches",
    "search_got_estimates",
    "search_for_quotes",
    "search_got_quotes",
    "bookings",
    "completed_rides",
    "rides",
    "earnings",
    "distance",
    "cancelled_bookings",
    "driver_cancelled_bookings",
    "user_cancelled_bookings",
    "reg_riders",
    "enabled_drivers",
    "cab_enabled_drivers",
    "auto_enabled_drivers",
    "bike_enabled_drivers",
)

CONVERSION_COUNTERS = counters(
    "searches",
    "search_got_estimates",
    "search_got_quotes",
    "bookings",
    "completed_rides",
    "cancelled_bookings",
    "driver_cancelled_bookings",
    "user_cancelled_bookings",
)

# comparison, time series and grouped reports share the short list
SUMMARY_COUNTERS = counters("searches", "bookings", "completed_rides", "earnings", "cancelled_bookings")

GROUP_BY_OPTIONS: tuple[str, ...] = get_args(MetricsGroupBy)


class MetricsRepository:
    """Executive, funnel, comparison, trend and breakdown reports."""

    def __init__(self, executor: ClickHouseExecutor, source: Source = METRICS_SOURCE) -> None:
        self.executor = executor
        self.source = source

    def _run(self, query: CompiledQuery) -> list[dict]:
        return self.executor.execute(query.sql, query.params).data

    # --- executive ---

    def executive_query(self, filters: Filters) -> CompiledQuery:
        where = compile_where(filters, self.source)
        return totals_query(self.source.table, EXECUTIVE_COUNTERS, where)

    def executive(self, filters: Filters) -> ExecutiveMetrics:
        rows = self._run(self.executive_query(filters))
        row = rows[0] if rows else {}
        return ExecutiveMetrics(
            totals=ExecutiveTotals.model_validate(row),
            drivers=DriverMetrics.model_validate(row),
            riders=RiderMetrics.model_validate(row),
        )

    # --- conversion funnel ---

    def conversion_query(self, filters: Filters) -> CompiledQuery:
        where = compile_where(filters, self.source)
        return totals_query(self.source.table, CONVERSION_COUNTERS, where)

    def conversion(self, filters: Filters) -> ConversionMetrics:
        rows = self._run(self.conversion_query(filters))
        t = ExecutiveTotals.model_validate(rows[0] if rows else {})

        funnel = FunnelMetrics(
            search_to_estimate=safe_rate(t.search_got_estimates, t.searches),
            estimate_to_quote=safe_rate(t.search_got_quotes, t.search_got_estimates),
            quote_to_booking=safe_rate(t.bookings, t.search_got_quotes),
            booking_to_completion=safe_rate(t.completed_rides, t.bookings),
        )
        cancellation = CancellationRates(
            overall=safe_rate(t.cancelled_bookings, t.bookings),
            by_driver=safe_rate(t.driver_cancelled_bookings, t.bookings),
            by_user=safe_rate(t.user_cancelled_bookings, t.bookings),
        )
        return ConversionMetrics(funnel=funnel, cancellation=cancellation)

    # --- comparison ---

    def period_query(self, period: Period, filters: Filters) -> CompiledQuery:
        where = compile_where(filters.with_period(period.date_from, period.date_to), self.source)
        return totals_query(self.source.table, SUMMARY_COUNTERS, where)

    def comparison(
        self, current: Period, previous: Period, filters: Filters
    ) -> ComparisonResult[ComparisonPeriodData]:
        """Two independent totals queries, one per period, then the deltas."""
        periods = []
        for period in (current, previous):
            rows = self._run(self.period_query(period, filters))
            periods.append(ComparisonPeriodData.model_validate(rows[0] if rows else {}))
        cur, prev = periods

        keys = list(ComparisonPeriodData.model_fields)
        return ComparisonResult[ComparisonPeriodData](
            current=cur,
            previous=prev,
            change=metric_changes(cur.model_dump(), prev.model_dump(), keys),
            current_period=current,
            previous_period=previous,
        )

    # --- time series ---

    def time_series_query(
        self,
        filters: Filters,
        sort: SortOptions | None = None,
        granularity: Granularity | str = Granularity.DAY,
    ) -> CompiledQuery:
        where = compile_where(filters, self.source)
        return time_series_query(
            self.source.table,
            SUMMARY_COUNTERS,
            where,
            bucket=time_bucket(granularity),
            time_column=self.source.time_column,
            sort=sort,
        )

    def time_series(
        self,
        filters: Filters,
        sort: SortOptions | None = None,
        granularity: Granularity | str = Granularity.DAY,
    ) -> list[TimeSeriesPoint]:
        rows = self._run(self.time_series_query(filters, sort, granularity))
        return [TimeSeriesPoint.model_validate(row) for row in rows]

    # --- filter options ---

    def filter_options_query(self) -> CompiledQuery:
        return distinct_values_query(
            self.source.table,
            {"cities": "city", "flow_types": "flow_type", "trip_tags": "trip_tag", "variants": "variant"},
            time_column=self.source.time_column,
        )

    def filter_options(self) -> FilterOptions:
        rows = self._run(self.filter_options_query())
        row = rows[0] if rows else {}
        options = FilterOptions.model_validate(row)
        options.date_range = DateRange(min=row.get("min_date"), max=row.get("max_date"))
        return options

    # --- grouped ---

    def grouped_query(self, filters: Filters, group_by: str, sort: SortOptions | None = None) -> CompiledQuery:
        if group_by not in GROUP_BY_OPTIONS:
            raise InvalidQueryError(f"groupBy must be one of: {', '.join(GROUP_BY_OPTIONS)}")
        where = compile_where(filters, self.source)
        return grouped_query(
            self.source.table,
            SUMMARY_COUNTERS,
            where,
            metrics_group_column(group_by),
            sort=sort,
            default_order=["dimension ASC"],
        )

    def grouped(self, filters: Filters, group_by: str, sort: SortOptions | None = None) -> list[GroupedRow]:
        rows = self._run(self.grouped_query(filters, group_by, sort))
        result = []
        for row in rows:
            item = GroupedRow.model_validate(row)
            item.conversion_rate = safe_rate(item.completed_rides, item.searches)
            result.append(item)
        return result
