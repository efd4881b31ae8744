"""Reports over cosmos.master_conversion.

the table stores one row per (time, city, merchant, ..., service_tier) with
a tier-less 'All' slice alongside the per-tier rows. which slice a report
reads - and therefore what a "conversion" means - depends on the vehicle
category / tier selection, see service_tier_type.
"""

from typing import get_args

import structlog

from ridemetrics.catalog.vehicle_categories import get_vehicle_category, get_vehicle_sub_categories
from ridemetrics.compiler.dimensions import conversion_group_column, resolve_conversion_dimension, time_bucket
from ridemetrics.compiler.filters import (
    MASTER_CONVERSION_SOURCE,
    Source,
    WhereClause,
    compile_where,
    effective_service_tiers,
)
from ridemetrics.compiler.sql_builder import (
    CompiledQuery,
    assemble_query,
    counters,
    dimensional_time_series_query,
    distinct_values_query,
    grouped_query,
    time_series_query,
    totals_query,
)
from ridemetrics.errors import InvalidQueryError, QueryExecutionError
from ridemetrics.executor.clickhouse_executor import ClickHouseExecutor
from ridemetrics.models.filters import (
    ConversionDimension,
    ConversionGroupBy,
    Filters,
    Granularity,
    Period,
    SortOptions,
    VehicleCategory,
)
from ridemetrics.models.results import (
    ComparisonResult,
    ConversionComparisonPeriod,
    ConversionExecutiveTotals,
    ConversionFilterOptions,
    ConversionRates,
    ConversionTimeSeriesPoint,
    ConversionTotals,
    ConversionTrendPoint,
    DateRange,
    GroupedConversionRow,
    MerchantOption,
    TierType,
    VehicleCategoryOption,
)
from ridemetrics.normalize import metric_changes, safe_number, safe_rate

logger = structlog.get_logger(__name__)

EXECUTIVE_COUNTERS = counters(
    "searches",
    "search_got_estimates",
    "quotes_requested",
    "quotes_accepted",
    "bookings",
    "rides",
    "completed_rides",
    "cancelled_rides",
    "user_cancellations",
    "driver_cancellations",
    "other_cancellations",
    earnings="total_driver_earnings",
)

TIME_SERIES_COUNTERS = counters(
    "searches",
    "quotes_requested",
    "quotes_accepted",
    "bookings",
    "completed_rides",
    "cancelled_rides",
    "user_cancellations",
    "driver_cancellations",
    earnings="total_driver_earnings",
)

GROUPED_COUNTERS = counters(
    "searches",
    "quotes_requested",
    "search_got_estimates",
    "quotes_accepted",
    "bookings",
    "rides",
    "completed_rides",
    earnings="total_driver_earnings",
)

GROUP_BY_OPTIONS: tuple[str, ...] = get_args(ConversionGroupBy)
GROUPED_LIMIT = 100

# shown first in the pickers, in this order; everything else alphabetical
MERCHANT_PRIORITY = ["NAMMA_YATRI", "BHARAT_TAXI", "JATRI_SATHI", "ANNA_APP"]
CITY_PRIORITY = ["Bangalore", "Kolkata", "Chennai", "Bhubaneshwar", "Kochi"]

VEHICLE_CATEGORY_OPTIONS = [
    VehicleCategoryOption(value="Auto", label="Auto"),
    VehicleCategoryOption(value="Cab", label="Cab"),
    VehicleCategoryOption(value="Others", label="Others"),
    VehicleCategoryOption(value="Bike", label="Bike"),
    VehicleCategoryOption(value="All", label="All Categories"),
    VehicleCategoryOption(value="BookAny", label="BookAny"),
]

_NON_TIERS = {VehicleCategory.ALL.value, VehicleCategory.BOOK_ANY.value}


def service_tier_type(filters: Filters) -> TierType:
    """Which slice of the table the filters select.

    bookany: the BookAny pseudo-tier. tier: one or more concrete tiers.
    tier-less: the 'All' slice, i.e. no tier selection at all.

    derived from the same tier list the WHERE compiler filters on.
    """
    tiers = effective_service_tiers(filters)
    if not tiers:
        return "tier-less"
    if VehicleCategory.BOOK_ANY.value in tiers:
        return "bookany"
    if any(t not in _NON_TIERS for t in tiers):
        return "tier"
    return "tier-less"


def calculate_rates(totals: ConversionTotals, tier_type: TierType, search_tries: int = 0) -> ConversionRates:
    """Derived rates for one set of master conversion counters.

    tier rows carry no meaningful searches, so their conversion is measured
    against quotes requested (then search tries, then searches).
    """
    rates = ConversionRates()

    if tier_type == "tier":
        denominator = totals.quotes_requested or search_tries or totals.searches
        rates.conversion_rate = safe_rate(totals.completed_rides, denominator)
        if totals.bookings > 0:
            rates.driver_acceptance_rate = safe_rate(totals.rides, totals.bookings)
    else:
        rates.conversion_rate = safe_rate(totals.completed_rides, totals.searches)
        if totals.search_got_estimates > 0:
            rates.rider_fare_acceptance_rate = safe_rate(totals.quotes_requested, totals.search_got_estimates)
        if totals.quotes_requested > 0:
            rates.driver_quote_acceptance_rate = safe_rate(totals.quotes_accepted, totals.quotes_requested)

    if totals.bookings > 0:
        rates.cancellation_rate = safe_rate(totals.cancelled_rides, totals.bookings)
        rates.user_cancellation_rate = safe_rate(totals.user_cancellations, totals.bookings)
        rates.driver_cancellation_rate = safe_rate(totals.driver_cancellations, totals.bookings)
        rates.other_cancellation_rate = safe_rate(totals.other_cancellations, totals.bookings)

    return rates


def _priority_sorted(items: list, key, priority: list[str]) -> list:
    first = sorted((i for i in items if key(i) in priority), key=lambda i: priority.index(key(i)))
    rest = sorted((i for i in items if key(i) not in priority), key=key)
    return first + rest


class MasterConversionRepository:
    """Tier-aware conversion reports."""

    def __init__(self, executor: ClickHouseExecutor, source: Source = MASTER_CONVERSION_SOURCE) -> None:
        self.executor = executor
        self.source = source

    def _run(self, query: CompiledQuery) -> list[dict]:
        return self.executor.execute(query.sql, query.params).data

    def _first(self, query: CompiledQuery) -> dict:
        return self.executor.execute(query.sql, query.params).first()

    # --- executive ---

    def executive_query(self, filters: Filters) -> CompiledQuery:
        where = compile_where(filters, self.source)
        return totals_query(self.source.table, EXECUTIVE_COUNTERS, where)

    def search_tries_query(self, filters: Filters) -> CompiledQuery:
        """Searches on the tier-less slice under the same non-tier filters."""
        where = compile_where(filters.without_tiers(), self.source)
        return totals_query(self.source.table, counters("searches"), where)

    def search_tries(self, filters: Filters, totals: ConversionTotals) -> int:
        category = filters.vehicle_category
        if not category or category == VehicleCategory.ALL:
            return totals.searches
        # tier rows normally have no searches; quotes requested stands in for them
        if totals.searches == 0 and totals.quotes_requested > 0:
            return totals.quotes_requested
        row = self._first(self.search_tries_query(filters))
        return int(safe_number(row.get("searches")))

    def executive(self, filters: Filters) -> tuple[ConversionExecutiveTotals, TierType]:
        row = self._first(self.executive_query(filters))
        totals = ConversionTotals.model_validate(row)
        tier_type = service_tier_type(filters)
        tries = self.search_tries(filters, totals)
        rates = calculate_rates(totals, tier_type, tries)

        result = ConversionExecutiveTotals(
            **totals.model_dump(), **rates.model_dump(), search_tries=tries
        )
        return result, tier_type

    # --- comparison ---

    def period_query(self, period: Period, filters: Filters) -> CompiledQuery:
        where = compile_where(filters.with_period(period.date_from, period.date_to), self.source)
        return totals_query(self.source.table, EXECUTIVE_COUNTERS, where)

    def comparison(
        self, current: Period, previous: Period, filters: Filters
    ) -> ComparisonResult[ConversionComparisonPeriod]:
        cur = ConversionComparisonPeriod.model_validate(self._first(self.period_query(current, filters)))
        prev = ConversionComparisonPeriod.model_validate(self._first(self.period_query(previous, filters)))

        keys = list(ConversionComparisonPeriod.model_fields)
        return ComparisonResult[ConversionComparisonPeriod](
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
            TIME_SERIES_COUNTERS,
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
    ) -> list[ConversionTimeSeriesPoint]:
        rows = self._run(self.time_series_query(filters, sort, granularity))
        return [ConversionTimeSeriesPoint.model_validate(row) for row in rows]

    # --- filter options ---

    def filter_options_query(self) -> CompiledQuery:
        return distinct_values_query(
            self.source.table,
            {
                "cities": "city",
                "states": "state",
                "flow_types": "flow_type",
                "trip_tags": "trip_tag",
                "user_os_types": "user_os_type",
                "user_sdk_versions": "user_sdk_version",
                "user_bundle_versions": "user_bundle_version",
                "user_backend_app_versions": "user_backend_app_version",
                "dynamic_pricing_logic_versions": "dynamic_pricing_logic_version",
                "pooling_logic_versions": "pooling_logic_version",
                "pooling_config_versions": "pooling_config_version",
                "service_tiers": "service_tier",
            },
            time_column=self.source.time_column,
        )

    def city_state_query(self) -> CompiledQuery:
        where = WhereClause(["city IS NOT NULL", "state IS NOT NULL"])
        sql = assemble_query(
            ["city", "state"],
            self.source.table,
            where,
            group_by=["city", "state"],
            order_by=["state", "city"],
        )
        return CompiledQuery(sql)

    def bpp_merchants_query(self) -> CompiledQuery:
        where = WhereClause(["bpp_merchant_id IS NOT NULL"])
        sql = assemble_query(
            ["bpp_merchant_id AS id", "any(bpp_merchant_name) AS name"],
            self.source.table,
            where,
            group_by=["bpp_merchant_id"],
        )
        return CompiledQuery(sql)

    def bap_merchants_query(self) -> CompiledQuery:
        # there is no bap merchant id column, the name doubles as the id
        where = WhereClause(["bap_merchant_name IS NOT NULL", "bap_merchant_name != ''"])
        sql = assemble_query(
            ["groupArray(DISTINCT bap_merchant_name) AS bap_merchant_names"],
            self.source.table,
            where,
        )
        return CompiledQuery(sql)

    def bap_merchant_names(self) -> list[str]:
        try:
            row = self._first(self.bap_merchants_query())
        except QueryExecutionError as exc:
            logger.warning("bap_merchants_unavailable", error=str(exc))
            return []
        return [str(name) for name in row.get("bap_merchant_names") or [] if name]

    def filter_options(self) -> ConversionFilterOptions:
        row = self._first(self.filter_options_query())
        city_state_rows = self._run(self.city_state_query())
        bpp_rows = self._run(self.bpp_merchants_query())
        bap_names = self.bap_merchant_names()

        options = ConversionFilterOptions.model_validate(row)
        options.cities = _priority_sorted(options.cities, str, CITY_PRIORITY)
        options.date_range = DateRange(min=row.get("min_date"), max=row.get("max_date"))

        for r in city_state_rows:
            city, state = str(r["city"]), str(r["state"])
            cities = options.city_state_map.setdefault(state, [])
            if city not in cities:
                cities.append(city)
            options.city_to_state_map[city] = state

        bpp = [
            MerchantOption(id=r["id"], name=r.get("name") or r["id"], source="BPP")
            for r in bpp_rows
        ]
        bap = [MerchantOption(id=name, name=name, source="BAP") for name in bap_names]

        # keyed by id, a bap entry with the same id as a bpp one replaces it
        merged: dict[str, MerchantOption] = {}
        for merchant in bpp + bap:
            merged[merchant.id] = merchant
        merchants = list(merged.values())

        options.merchants = _priority_sorted(merchants, lambda m: m.name, MERCHANT_PRIORITY)
        options.bpp_merchants = [MerchantOption(id=m.id, name=m.name) for m in merchants if m.source == "BPP"]
        options.bap_merchants = [MerchantOption(id=m.id, name=m.name) for m in merchants if m.source == "BAP"]

        options.vehicle_categories = list(VEHICLE_CATEGORY_OPTIONS)
        options.vehicle_sub_categories = {c.value: get_vehicle_sub_categories(c) for c in VehicleCategory}
        return options

    # --- grouped ---

    def grouped_query(self, filters: Filters, group_by: str, sort: SortOptions | None = None) -> CompiledQuery:
        if group_by not in GROUP_BY_OPTIONS:
            raise InvalidQueryError(f"groupBy must be one of: {', '.join(GROUP_BY_OPTIONS)}")
        # grouping by tier needs every tier's rows, not just the selected slice
        where = compile_where(filters, self.source, include_tier=group_by != "service_tier")
        return grouped_query(
            self.source.table,
            GROUPED_COUNTERS,
            where,
            conversion_group_column(group_by),
            sort=sort,
            default_order=["searches DESC"],
            limit=GROUPED_LIMIT,
        )

    def grouped(
        self, filters: Filters, group_by: str, sort: SortOptions | None = None
    ) -> list[GroupedConversionRow]:
        tier_type = service_tier_type(filters)
        rows = self._run(self.grouped_query(filters, group_by, sort))

        result = []
        for row in rows:
            item = GroupedConversionRow.model_validate(row)
            rates = calculate_rates(ConversionTotals.model_validate(row), tier_type)
            item.conversion_rate = rates.conversion_rate
            item.rider_fare_acceptance_rate = rates.rider_fare_acceptance_rate
            item.driver_quote_acceptance_rate = rates.driver_quote_acceptance_rate
            item.driver_acceptance_rate = rates.driver_acceptance_rate
            result.append(item)
        return result

    # --- dimensional trend ---

    def dimensional_time_series_query(
        self,
        filters: Filters,
        dimension: ConversionDimension | str = ConversionDimension.NONE,
        granularity: Granularity | str = Granularity.DAY,
    ) -> CompiledQuery:
        shape = resolve_conversion_dimension(dimension)
        if shape.vehicle_mapping:
            where = compile_where(filters.without_tiers(), self.source, include_tier=False)
        else:
            where = compile_where(filters, self.source)
        return dimensional_time_series_query(
            self.source.table,
            TIME_SERIES_COUNTERS,
            where,
            bucket=time_bucket(granularity),
            time_column=self.source.time_column,
            dimension_expr=shape.expr,
        )

    def dimensional_time_series(
        self,
        filters: Filters,
        dimension: ConversionDimension | str = ConversionDimension.NONE,
        granularity: Granularity | str = Granularity.DAY,
    ) -> list[ConversionTrendPoint]:
        shape = resolve_conversion_dimension(dimension)
        rows = self._run(self.dimensional_time_series_query(filters, dimension, granularity))
        points = [ConversionTrendPoint.model_validate(row) for row in rows]

        if shape.vehicle_mapping:
            return self._regroup_by_vehicle(points, ConversionDimension(dimension))

        tier_type = service_tier_type(filters)
        for point in points:
            if tier_type == "tier":
                denominator = point.quotes_requested or point.searches
            else:
                denominator = point.searches
            point.conversion = safe_rate(point.completed_rides, denominator)
        return points

    def _regroup_by_vehicle(
        self, points: list[ConversionTrendPoint], dimension: ConversionDimension
    ) -> list[ConversionTrendPoint]:
        """Fold per-tier rows into per-category rows, keeping first-seen order."""
        labels = ("timestamp", "dimension_value", "conversion")
        summed = [name for name in ConversionTrendPoint.model_fields if name not in labels]
        grouped: dict[tuple[str, str], ConversionTrendPoint] = {}

        for point in points:
            if dimension == ConversionDimension.VEHICLE_CATEGORY:
                value = get_vehicle_category(point.dimension_value).value
            else:
                # a sub-category is the service tier itself
                value = point.dimension_value

            key = (point.timestamp, value)
            existing = grouped.get(key)
            if existing is None:
                grouped[key] = point.model_copy(update={"dimension_value": value})
                continue
            for name in summed:
                setattr(existing, name, getattr(existing, name) + getattr(point, name))

        for point in grouped.values():
            denominator = point.searches if point.searches > 0 else point.quotes_requested
            point.conversion = safe_rate(point.completed_rides, denominator)
        return list(grouped.values())
