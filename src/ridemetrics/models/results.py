"""Pydantic models for report results.

these are validated straight from raw clickhouse rows (snake_case keys,
extra columns ignored, missing counters default to 0) and serialized with
camelCase keys for the dashboard. derived rates are filled in by the
repositories after validation - never computed in sql.
"""

from typing import Generic, Literal, TypeVar

from pydantic import AliasChoices, AliasGenerator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ridemetrics.models.filters import Period
from ridemetrics.normalize import Amount, Count, Label, Labels


class ResultModel(BaseModel):
    """Base for every response record: validate by field name, dump as camelCase."""

    model_config = ConfigDict(
        alias_generator=AliasGenerator(serialization_alias=to_camel),
        populate_by_name=True,
        extra="ignore",
    )


class DateRange(ResultModel):
    min: Label = ""
    max: Label = ""


class MetricChange(ResultModel):
    absolute: float = 0
    percent: float = 0


# --- open_data_validation (metrics) ---


class ExecutiveTotals(ResultModel):
    searches: Count = 0
    search_got_estimates: Count = 0
    search_for_quotes: Count = 0
    search_got_quotes: Count = 0
    bookings: Count = 0
    completed_rides: Count = 0
    rides: Count = 0
    earnings: Amount = 0
    distance: Amount = 0
    cancelled_bookings: Count = 0
    driver_cancelled_bookings: Count = 0
    user_cancelled_bookings: Count = 0


class DriverMetrics(ResultModel):
    enabled_drivers: Count = 0
    cab_enabled_drivers: Count = 0
    auto_enabled_drivers: Count = 0
    bike_enabled_drivers: Count = 0


class RiderMetrics(ResultModel):
    registered_riders: Count = Field(
        default=0,
        validation_alias=AliasChoices("reg_riders", "registered_riders"),
        serialization_alias="registeredRiders",
    )


class ExecutiveMetrics(ResultModel):
    totals: ExecutiveTotals
    drivers: DriverMetrics
    riders: RiderMetrics


class FunnelMetrics(ResultModel):
    search_to_estimate: float = 0
    estimate_to_quote: float = 0
    quote_to_booking: float = 0
    booking_to_completion: float = 0


class CancellationRates(ResultModel):
    overall: float = 0
    by_driver: float = 0
    by_user: float = 0


class ConversionMetrics(ResultModel):
    funnel: FunnelMetrics
    cancellation: CancellationRates


class ComparisonPeriodData(ResultModel):
    searches: Count = 0
    bookings: Count = 0
    completed_rides: Count = 0
    earnings: Amount = 0
    cancelled_bookings: Count = 0


PeriodT = TypeVar("PeriodT", bound=ResultModel)


class ComparisonResult(ResultModel, Generic[PeriodT]):
    """Two periods side by side. change is keyed by the camelCase metric name."""

    current: PeriodT
    previous: PeriodT
    change: dict[str, MetricChange]
    current_period: Period
    previous_period: Period


class TimeSeriesPoint(ResultModel):
    date: Label
    searches: Count = 0
    bookings: Count = 0
    completed_rides: Count = 0
    earnings: Amount = 0
    cancelled_bookings: Count = 0


class GroupedRow(ResultModel):
    dimension: Label
    searches: Count = 0
    bookings: Count = 0
    completed_rides: Count = 0
    earnings: Amount = 0
    cancelled_bookings: Count = 0
    conversion_rate: float = 0


class FilterOptions(ResultModel):
    cities: Labels = Field(default_factory=list)
    flow_types: Labels = Field(default_factory=list)
    trip_tags: Labels = Field(default_factory=list)
    variants: Labels = Field(default_factory=list)
    date_range: DateRange = Field(default_factory=DateRange)


# --- cosmos.master_conversion ---

TierType = Literal["tier-less", "tier", "bookany"]


class ConversionTotals(ResultModel):
    searches: Count = 0
    search_got_estimates: Count = 0
    quotes_requested: Count = 0
    quotes_accepted: Count = 0
    bookings: Count = 0
    rides: Count = 0
    completed_rides: Count = 0
    cancelled_rides: Count = 0
    earnings: Amount = 0
    user_cancellations: Count = 0
    driver_cancellations: Count = 0
    other_cancellations: Count = 0


class ConversionRates(ResultModel):
    """Rates whose meaning depends on the tier type of the request.

    the optional ones are only present when their denominator is positive.
    """

    conversion_rate: float = 0
    cancellation_rate: float = 0
    user_cancellation_rate: float = 0
    driver_cancellation_rate: float = 0
    other_cancellation_rate: float = 0
    rider_fare_acceptance_rate: float | None = None
    driver_quote_acceptance_rate: float | None = None
    driver_acceptance_rate: float | None = None


class ConversionExecutiveTotals(ConversionTotals, ConversionRates):
    search_tries: Count = 0


class ConversionComparisonPeriod(ResultModel):
    searches: Count = 0
    quotes_requested: Count = 0
    quotes_accepted: Count = 0
    bookings: Count = 0
    completed_rides: Count = 0
    cancelled_rides: Count = 0
    earnings: Amount = 0
    user_cancellations: Count = 0
    driver_cancellations: Count = 0
    other_cancellations: Count = 0


class ConversionTimeSeriesPoint(ResultModel):
    date: Label
    searches: Count = 0
    quotes_requested: Count = 0
    quotes_accepted: Count = 0
    bookings: Count = 0
    completed_rides: Count = 0
    cancelled_rides: Count = 0
    user_cancellations: Count = 0
    driver_cancellations: Count = 0
    earnings: Amount = 0


class GroupedConversionRow(ResultModel):
    dimension: Label
    searches: Count = 0
    search_got_estimates: Count = 0
    quotes_requested: Count = 0
    quotes_accepted: Count = 0
    bookings: Count = 0
    rides: Count = 0
    completed_rides: Count = 0
    earnings: Amount = 0
    conversion_rate: float = 0
    rider_fare_acceptance_rate: float | None = None
    driver_quote_acceptance_rate: float | None = None
    driver_acceptance_rate: float | None = None


class DimensionalTimeSeriesPoint(ResultModel):
    """One (time bucket, dimension value) cell."""

    timestamp: Label
    dimension_value: Label


class ConversionTrendPoint(DimensionalTimeSeriesPoint):
    searches: Count = 0
    quotes_requested: Count = 0
    quotes_accepted: Count = 0
    bookings: Count = 0
    completed_rides: Count = 0
    cancelled_rides: Count = 0
    user_cancellations: Count = 0
    driver_cancellations: Count = 0
    earnings: Amount = 0
    conversion: float = 0


class MerchantOption(ResultModel):
    id: Label
    name: Label
    source: Literal["BPP", "BAP"] | None = None


class VehicleCategoryOption(ResultModel):
    value: str
    label: str


class ConversionFilterOptions(ResultModel):
    cities: Labels = Field(default_factory=list)
    states: Labels = Field(default_factory=list)
    city_state_map: dict[str, list[str]] = Field(default_factory=dict)  # state -> cities
    city_to_state_map: dict[str, str] = Field(default_factory=dict)
    merchants: list[MerchantOption] = Field(default_factory=list)
    bap_merchants: list[MerchantOption] = Field(default_factory=list)
    bpp_merchants: list[MerchantOption] = Field(default_factory=list)
    flow_types: Labels = Field(default_factory=list)
    trip_tags: Labels = Field(default_factory=list)
    user_os_types: Labels = Field(default_factory=list)
    user_sdk_versions: Labels = Field(default_factory=list)
    user_bundle_versions: Labels = Field(default_factory=list)
    user_backend_app_versions: Labels = Field(default_factory=list)
    dynamic_pricing_logic_versions: Labels = Field(default_factory=list)
    pooling_logic_versions: Labels = Field(default_factory=list)
    pooling_config_versions: Labels = Field(default_factory=list)
    service_tiers: Labels = Field(default_factory=list)
    vehicle_categories: list[VehicleCategoryOption] = Field(default_factory=list)
    vehicle_sub_categories: dict[str, list[str]] = Field(default_factory=dict)
    date_range: DateRange = Field(default_factory=DateRange)


# --- cancellations ---


class CancellationGroupedRow(ResultModel):
    dimension: Label
    total_bookings: Count = 0
    bookings_cancelled: Count = 0
    user_cancelled: Count = 0
    driver_cancelled: Count = 0
    cancellation_rate: float = 0
    user_cancellation_rate: float = 0
    driver_cancellation_rate: float = 0


class CancellationTrendPoint(DimensionalTimeSeriesPoint):
    total_bookings: Count = 0
    bookings_cancelled: Count = 0
    user_cancelled: Count = 0
    driver_cancelled: Count = 0


# --- metadata lookups ---


class MerchantCity(ResultModel):
    city: Label
    id: Label
