"""Service tier -> vehicle category mapping.

the warehouse stores free-text service_tier values ("AC Cab", "Bike Taxi",
"AMBULANCE_AC", ...) while the dashboard filters by a coarse category.
the forward mapping is pattern based and total: anything we don't recognise
is a Cab. the tier list itself is hand-maintained in service_tiers.yaml.
"""

from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

from ridemetrics.models.filters import VehicleCategory

CATALOG_PATH = Path(__file__).with_name("service_tiers.yaml")

_BIKE_MARKERS = ("2w parcel", "bike metro", "bike taxi")
_AUTO_TIERS = {"auto", "auto priority", "auto_rickshaw", "auto rickshaw", "eco auto"}


@lru_cache(maxsize=1)
def _load_catalog() -> dict[str, Any]:
    with open(CATALOG_PATH) as f:
        data = yaml.safe_load(f)
    if not data or "tiers" not in data:
        raise ValueError(f"Malformed tier catalog: {CATALOG_PATH}")
    return data


def all_service_tiers() -> list[str]:
    """Every known service_tier string, in catalog order."""
    return list(_load_catalog()["tiers"])


def get_vehicle_category(service_tier: str) -> VehicleCategory:
    """Map a service_tier value to its vehicle category.

    order matters: "ECO Auto" must hit the auto check before anything else,
    and the ambulance check runs after the All/BookAny special cases.
    """
    normalized = service_tier.lower()

    if any(marker in normalized for marker in _BIKE_MARKERS):
        return VehicleCategory.BIKE
    if normalized in _AUTO_TIERS:
        return VehicleCategory.AUTO
    if normalized == "all":
        return VehicleCategory.ALL
    if normalized == "bookany":
        return VehicleCategory.BOOK_ANY
    if "ambulance" in normalized:
        return VehicleCategory.OTHERS

    return VehicleCategory.CAB


def get_service_tiers_by_category(category: VehicleCategory | str) -> list[str]:
    """All catalog tiers whose forward mapping lands on `category`."""
    category = VehicleCategory(category)
    return [tier for tier in all_service_tiers() if get_vehicle_category(tier) == category]


def get_vehicle_sub_categories(category: VehicleCategory | str) -> list[str]:
    """Sub-category options offered by the dashboard for a category."""
    category = VehicleCategory(category)
    return list(_load_catalog().get("sub_categories", {}).get(category.value, []))


def convert_vehicle_filters_to_service_tiers(
    category: VehicleCategory | str | None,
    sub_category: str | None,
) -> list[str]:
    """Turn a category / sub-category selection into service_tier values.

    a sub-category is itself a service tier, so it wins outright.
    """
    if sub_category:
        return [sub_category]

    if category:
        category = VehicleCategory(category)
        if category in (VehicleCategory.ALL, VehicleCategory.BOOK_ANY):
            return [category.value]
        return get_service_tiers_by_category(category)

    return []
