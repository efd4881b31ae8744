"""Filter -> WHERE clause compiler.

every populated filter field adds exactly one conjunctive condition. values
are never pasted into the sql text - each condition references a clickhouse
query parameter ({name:Type}) and the value travels in `params`, which
clickhouse-connect sends as server-side bound parameters.

condition order is fixed: date-from, date-to, then the source's columns in
declaration order, then the service tier condition (master conversion only).
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any

from ridemetrics.catalog.vehicle_categories import convert_vehicle_filters_to_service_tiers
from ridemetrics.errors import InvalidQueryError
from ridemetrics.models.filters import Filters, VehicleCategory


def placeholder(name: str, type_: str = "String") -> str:
    """Clickhouse server-side parameter reference, e.g. {city:Array(String)}."""
    return f"{{{name}:{type_}}}"


@dataclass(frozen=True)
class FilterColumn:
    """How one multi-value filter field maps onto the table."""

    field: str  # attribute on Filters
    expr: str  # column expression the IN list applies to
    guard: str | None = None  # extra condition appended to the same clause


@dataclass(frozen=True)
class Source:
    """A warehouse table plus the rules for filtering it."""

    table: str
    time_column: str
    columns: tuple[FilterColumn, ...]
    # template for parsing a bound date string server-side
    date_parser: str = "toDateTime({value})"
    # date-only bounds cover whole days (dateTo becomes < next midnight)
    whole_day_bounds: bool = False
    # table carries per-tier rows plus a tier-less 'All' slice
    tiered: bool = False


@dataclass
class WhereClause:
    """Ordered conditions plus the parameters they reference."""

    conditions: list[str] = field(default_factory=list)
    params: dict[str, Any] = field(default_factory=dict)

    @property
    def sql(self) -> str:
        if not self.conditions:
            return ""
        return f"WHERE {' AND '.join(self.conditions)}"

    def extend(self, *conditions: str) -> "WhereClause":
        """Copy with extra conditions appended - never leaves a dangling AND."""
        return WhereClause(conditions=[*self.conditions, *conditions], params=dict(self.params))


def _has_time(value: str) -> bool:
    return " " in value.strip() or "T" in value


def _parse_day(value: str) -> date:
    try:
        return date.fromisoformat(value.strip())
    except ValueError as exc:
        raise InvalidQueryError(f"Invalid date: {value!r}") from exc


def _date_conditions(filters: Filters, source: Source, clause: WhereClause) -> None:
    col = source.time_column

    if filters.date_from:
        value = filters.date_from.strip()
        if source.whole_day_bounds and not _has_time(value):
            value = f"{_parse_day(value).isoformat()} 00:00:00"
        expr = source.date_parser.format(value=placeholder("date_from"))
        clause.conditions.append(f"{col} >= {expr}")
        clause.params["date_from"] = value

    if filters.date_to:
        value = filters.date_to.strip()
        op = "<="
        if source.whole_day_bounds and not _has_time(value):
            # inclusive of the whole last day
            value = f"{(_parse_day(value) + timedelta(days=1)).isoformat()} 00:00:00"
            op = "<"
        expr = source.date_parser.format(value=placeholder("date_to"))
        clause.conditions.append(f"{col} {op} {expr}")
        clause.params["date_to"] = value


def effective_service_tiers(filters: Filters) -> list[str]:
    """Tier list after folding in the vehicle category selection.

    when both a tier list and a vehicle selection are present we keep their
    intersection. selections with nothing in common raise InvalidQueryError.
    """
    tiers = list(filters.service_tier)
    if filters.vehicle_category or filters.vehicle_sub_category:
        vehicle_tiers = convert_vehicle_filters_to_service_tiers(
            filters.vehicle_category, filters.vehicle_sub_category
        )
        if vehicle_tiers:
            if tiers:
                tiers = [t for t in tiers if t in vehicle_tiers]
                if not tiers:
                    raise InvalidQueryError(
                        "serviceTier and the vehicle category selection have no service tier in common"
                    )
            else:
                tiers = vehicle_tiers
    return tiers


def compile_where(
    filters: Filters,
    source: Source,
    *,
    include_dates: bool = True,
    include_tier: bool = True,
) -> WhereClause:
    """Compile filters into a WhereClause for `source`.

    include_tier=False is for reports that group by tier (or map tiers to
    vehicle categories) and therefore need every tier's rows.
    """
    clause = WhereClause()

    if include_dates:
        _date_conditions(filters, source, clause)

    for column in source.columns:
        values = getattr(filters, column.field)
        if not values:
            continue
        cond = f"{column.expr} IN {placeholder(column.field, 'Array(String)')}"
        if column.guard:
            cond = f"{cond} AND {column.guard}"
        clause.conditions.append(cond)
        clause.params[column.field] = list(values)

    if source.tiered and include_tier:
        tiers = effective_service_tiers(filters)
        if tiers:
            clause.conditions.append(f"service_tier IN {placeholder('service_tier', 'Array(String)')}")
            clause.params["service_tier"] = tiers
        else:
            clause.conditions.append(f"service_tier = '{VehicleCategory.ALL.value}'")

    return clause


# --- warehouse tables ---

METRICS_SOURCE = Source(
    table="atlas_agg_metrics.open_data_validation",
    time_column="date_info",
    columns=(
        FilterColumn("city", "city"),
        FilterColumn("flow_type", "flow_type"),
        FilterColumn("trip_tag", "trip_tag"),
        FilterColumn("variant", "variant"),
    ),
)

MASTER_CONVERSION_SOURCE = Source(
    table="cosmos.master_conversion",
    time_column="local_time",
    date_parser="parseDateTimeBestEffort({value}, 'UTC')",
    whole_day_bounds=True,
    tiered=True,
    columns=(
        FilterColumn("city", "city"),
        FilterColumn("state", "state"),
        FilterColumn("merchant_id", "bpp_merchant_id"),
        FilterColumn(
            "bap_merchant_id",
            "trim(bap_merchant_name)",
            guard="bap_merchant_name IS NOT NULL AND bap_merchant_name != ''",
        ),
        FilterColumn("bpp_merchant_id", "bpp_merchant_id"),
        FilterColumn("flow_type", "flow_type"),
        FilterColumn("trip_tag", "trip_tag"),
        FilterColumn("user_os_type", "user_os_type"),
        FilterColumn("user_sdk_version", "user_sdk_version"),
        FilterColumn("user_bundle_version", "user_bundle_version"),
        FilterColumn("user_backend_app_version", "user_backend_app_version"),
        FilterColumn("dynamic_pricing_logic_version", "dynamic_pricing_logic_version"),
        FilterColumn("pooling_logic_version", "pooling_logic_version"),
        FilterColumn("pooling_config_version", "pooling_config_version"),
    ),
)


# lives in the client's default database. local_time is the event time,
# `date` defaults to now() at insert
CANCELLATIONS_SOURCE = Source(
    table="cancellations",
    time_column="local_time",
    columns=(
        FilterColumn("city", "city"),
        FilterColumn("flow_type", "flow_type"),
        FilterColumn("trip_tag", "trip_tag"),
    ),
)
