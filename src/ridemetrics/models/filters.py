"""Pydantic models for report requests: filters, sorting and selectors.

everything here is per-request and throwaway - built from the query string,
handed to the compiler, echoed back in the response.
"""

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# the ui sends this for "no selection" in several multi-selects
ALL_SENTINEL = "__all__"


class VehicleCategory(str, Enum):
    """Coarse vehicle categories that service tiers roll up into."""

    BIKE = "Bike"
    AUTO = "Auto"
    CAB = "Cab"
    OTHERS = "Others"  # ambulances
    ALL = "All"
    BOOK_ANY = "BookAny"


class Granularity(str, Enum):
    HOUR = "hour"
    DAY = "day"


class ConversionDimension(str, Enum):
    """Dimensions the master-conversion trend can be split by."""

    NONE = "none"
    SERVICE_TIER = "service_tier"
    FLOW_TYPE = "flow_type"
    TRIP_TAG = "trip_tag"
    USER_OS_TYPE = "user_os_type"
    USER_BUNDLE_VERSION = "user_bundle_version"
    USER_SDK_VERSION = "user_sdk_version"
    USER_BACKEND_APP_VERSION = "user_backend_app_version"
    DYNAMIC_PRICING_LOGIC_VERSION = "dynamic_pricing_logic_version"
    POOLING_LOGIC_VERSION = "pooling_logic_version"
    POOLING_CONFIG_VERSION = "pooling_config_version"
    VEHICLE_CATEGORY = "vehicle_category"
    VEHICLE_SUB_CATEGORY = "vehicle_sub_category"


class CancellationDimension(str, Enum):
    """Dimensions of the cancellations table.

    the last three are stored as json maps of key -> count, not scalars.
    """

    TRIP_DISTANCE_BKT = "trip_distance_bkt"
    FARE_BREAKUP = "fare_breakup"
    ACTUAL_PICKUP_DIST_BKT = "actual_pickup_dist__bkt"
    PICKUP_DIST_LEFT_BUCKET = "pickup_dist_left_bucket"
    TIME_TO_CANCEL_BKT = "time_to_cancel_bkt"
    REASON_CODE = "reason_code"


MetricsGroupBy = Literal["city", "flow_type", "trip_tag", "variant"]
ConversionGroupBy = Literal["city", "merchant_id", "flow_type", "trip_tag", "service_tier"]


class Filters(BaseModel):
    """Report filters. Every field is optional; unset means no restriction.

    field names are snake_case in python and camelCase on the wire
    (dateFrom, flowType, ...) to match what the dashboard already sends.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    date_from: str | None = None
    date_to: str | None = None
    city: list[str] = Field(default_factory=list)
    state: list[str] = Field(default_factory=list)
    merchant_id: list[str] = Field(default_factory=list)  # legacy, treated as bpp merchant
    bap_merchant_id: list[str] = Field(default_factory=list)
    bpp_merchant_id: list[str] = Field(default_factory=list)
    flow_type: list[str] = Field(default_factory=list)
    trip_tag: list[str] = Field(default_factory=list)
    variant: list[str] = Field(default_factory=list)
    user_os_type: list[str] = Field(default_factory=list)
    user_sdk_version: list[str] = Field(default_factory=list)
    user_bundle_version: list[str] = Field(default_factory=list)
    user_backend_app_version: list[str] = Field(default_factory=list)
    dynamic_pricing_logic_version: list[str] = Field(default_factory=list)
    pooling_logic_version: list[str] = Field(default_factory=list)
    pooling_config_version: list[str] = Field(default_factory=list)
    service_tier: list[str] = Field(default_factory=list)
    vehicle_category: VehicleCategory | None = None
    vehicle_sub_category: str | None = None

    @field_validator("date_from", "date_to", "vehicle_sub_category", mode="before")
    @classmethod
    def _blank_to_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("vehicle_category", mode="before")
    @classmethod
    def _known_category(cls, value: object) -> object:
        # blank, the __all__ sentinel and unknown categories mean no restriction
        if value is None or isinstance(value, VehicleCategory):
            return value
        try:
            return VehicleCategory(str(value).strip())
        except ValueError:
            return None

    @field_validator(
        "city",
        "state",
        "merchant_id",
        "bap_merchant_id",
        "bpp_merchant_id",
        "flow_type",
        "trip_tag",
        "variant",
        "user_os_type",
        "user_sdk_version",
        "user_bundle_version",
        "user_backend_app_version",
        "dynamic_pricing_logic_version",
        "pooling_logic_version",
        "pooling_config_version",
        "service_tier",
        mode="before",
    )
    @classmethod
    def _split_list(cls, value: object) -> object:
        """Accept "a,b" strings and lists; drop blanks and the __all__ sentinel."""
        if value is None:
            return []
        if isinstance(value, str):
            value = value.split(",")
        if isinstance(value, (list, tuple)):
            items = [str(v).strip() for v in value]
            return [v for v in items if v and v != ALL_SENTINEL]
        return value

    def with_period(self, date_from: str, date_to: str) -> "Filters":
        return self.model_copy(update={"date_from": date_from, "date_to": date_to})

    def without_tiers(self) -> "Filters":
        """Drop every tier-related filter (tier list and vehicle category)."""
        return self.model_copy(
            update={"service_tier": [], "vehicle_category": None, "vehicle_sub_category": None}
        )


class SortOptions(BaseModel):
    """Requested ordering. sort_by is validated per report, never interpolated blindly."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    sort_by: str | None = None
    sort_order: Literal["asc", "desc"] = "asc"

    @field_validator("sort_order", mode="before")
    @classmethod
    def _default_order(cls, value: object) -> object:
        # anything that isn't "desc" sorts ascending, same as the dashboard expects
        return "desc" if value == "desc" else "asc"


class Period(BaseModel):
    """A closed date range used by comparison reports."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    date_from: str = Field(serialization_alias="from")
    date_to: str = Field(serialization_alias="to")
