"""Dimension and granularity resolution.

maps the closed dimension/granularity enums onto column expressions. nothing
here looks at user data - an identifier outside the enums is a programming
error and surfaces as a KeyError (the api validates against the enums first).
"""

from dataclasses import dataclass

from ridemetrics.models.filters import CancellationDimension, ConversionDimension, Granularity


@dataclass(frozen=True)
class TimeBucket:
    """Truncation function paired with the format that renders its output.

    keeping both in one record stops an hour bucket from ever being
    rendered as a bare date (or vice versa).
    """

    granularity: Granularity
    function: str  # clickhouse truncation function
    sql_format: str  # formatDateTime pattern

    @property
    def has_time_component(self) -> bool:
        return "%H" in self.sql_format

    def truncate(self, column: str) -> str:
        return f"{self.function}({column})"

    def format(self, expr: str) -> str:
        """Format an already-truncated expression."""
        return f"formatDateTime({expr}, '{self.sql_format}')"

    def expr(self, column: str) -> str:
        """Truncate then format - the usual select expression for a bucket."""
        return self.format(self.truncate(column))


# %i is minutes in clickhouse's formatDateTime (%M is the month name)
_TIME_BUCKETS = {
    Granularity.HOUR: TimeBucket(
        granularity=Granularity.HOUR,
        function="toStartOfHour",
        sql_format="%Y-%m-%d %H:%i:%S",
    ),
    Granularity.DAY: TimeBucket(
        granularity=Granularity.DAY,
        function="toStartOfDay",
        sql_format="%Y-%m-%d",
    ),
}


def time_bucket(granularity: Granularity | str) -> TimeBucket:
    try:
        return _TIME_BUCKETS[Granularity(granularity)]
    except ValueError as exc:
        raise KeyError(granularity) from exc


# --- cancellations ---


@dataclass(frozen=True)
class DimensionShape:
    """How a cancellations dimension is extracted.

    json map columns hold {"key": count, ...} per row and have to be
    exploded into (key, value) pairs before grouping.
    """

    column: str
    is_json_map: bool = False


_CANCELLATION_SHAPES = {
    CancellationDimension.TRIP_DISTANCE_BKT: DimensionShape("trip_distance_bkt"),
    CancellationDimension.FARE_BREAKUP: DimensionShape("fare_breakup"),
    CancellationDimension.ACTUAL_PICKUP_DIST_BKT: DimensionShape("actual_pickup_dist__bkt"),
    CancellationDimension.PICKUP_DIST_LEFT_BUCKET: DimensionShape("pickup_dist_left_bucket", is_json_map=True),
    CancellationDimension.TIME_TO_CANCEL_BKT: DimensionShape("time_to_cancel_bkt", is_json_map=True),
    CancellationDimension.REASON_CODE: DimensionShape("reason_code", is_json_map=True),
}


def resolve_cancellation_dimension(dimension: CancellationDimension | str) -> DimensionShape:
    try:
        dimension = CancellationDimension(dimension)
    except ValueError as exc:
        raise KeyError(dimension) from exc
    return _CANCELLATION_SHAPES[dimension]


# --- master conversion ---


@dataclass(frozen=True)
class ConversionDimensionShape:
    """Select expression for a trend dimension plus how rows are post-processed."""

    expr: str
    # rows come back per service_tier and get re-keyed in python, so every
    # tier is queried and the tier condition is left out
    vehicle_mapping: bool = False


_VEHICLE_DIMENSIONS = {ConversionDimension.VEHICLE_CATEGORY, ConversionDimension.VEHICLE_SUB_CATEGORY}


def resolve_conversion_dimension(dimension: ConversionDimension | str) -> ConversionDimensionShape:
    try:
        dimension = ConversionDimension(dimension)
    except ValueError as exc:
        raise KeyError(dimension) from exc

    if dimension == ConversionDimension.NONE:
        return ConversionDimensionShape(expr="'Total'")
    if dimension in _VEHICLE_DIMENSIONS:
        return ConversionDimensionShape(expr="service_tier", vehicle_mapping=True)
    return ConversionDimensionShape(expr=dimension.value)


# grouped reports: dimension identifier -> column expression
_METRICS_GROUP_COLUMNS = {
    "city": "city",
    "flow_type": "flow_type",
    "trip_tag": "trip_tag",
    "variant": "variant",
}

_CONVERSION_GROUP_COLUMNS = {
    "city": "city",
    # prefer the bpp merchant, fall back to the bap name (there is no bap id column)
    "merchant_id": "COALESCE(bpp_merchant_id, bap_merchant_name)",
    "flow_type": "flow_type",
    "trip_tag": "trip_tag",
    "service_tier": "service_tier",
}


def metrics_group_column(group_by: str) -> str:
    return _METRICS_GROUP_COLUMNS[group_by]


def conversion_group_column(group_by: str) -> str:
    return _CONVERSION_GROUP_COLUMNS[group_by]
