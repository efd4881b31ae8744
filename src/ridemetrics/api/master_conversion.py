"""Routes for the tier-aware conversion dashboard: /api/master-conversion/*.

rates that only exist for some tier types are left out of the payload
rather than sent as null, hence response_model_exclude_none.
"""

from typing import Any

from fastapi import APIRouter

from ridemetrics.api.dependencies import (
    FiltersDep,
    SortDep,
    StoreDep,
    echo_filters,
    require_choice,
    require_params,
)
from ridemetrics.models.filters import ConversionDimension, Granularity, Period
from ridemetrics.repositories.master_conversion import GROUP_BY_OPTIONS

router = APIRouter(prefix="/api/master-conversion", tags=["master-conversion"])

GRANULARITIES = [g.value for g in Granularity]
DIMENSIONS = [d.value for d in ConversionDimension]


@router.get("/executive", response_model_exclude_none=True)
def executive(store: StoreDep, filters: FiltersDep) -> dict[str, Any]:
    totals, tier_type = store.master_conversion.executive(filters)
    return {"totals": totals, "tierType": tier_type, "filters": echo_filters(filters)}


@router.get("/comparison")
def comparison(
    store: StoreDep,
    filters: FiltersDep,
    currentFrom: str | None = None,
    currentTo: str | None = None,
    previousFrom: str | None = None,
    previousTo: str | None = None,
) -> Any:
    require_params(
        currentFrom=currentFrom, currentTo=currentTo, previousFrom=previousFrom, previousTo=previousTo
    )
    return store.master_conversion.comparison(
        Period(date_from=currentFrom, date_to=currentTo),
        Period(date_from=previousFrom, date_to=previousTo),
        filters,
    )


@router.get("/timeseries")
def timeseries(store: StoreDep, filters: FiltersDep, sort: SortDep, granularity: str = "day") -> dict[str, Any]:
    require_choice("granularity", granularity, GRANULARITIES)
    data = store.master_conversion.time_series(filters, sort, granularity)
    return {"data": data, "granularity": granularity, "filters": echo_filters(filters)}


@router.get("/filters")
def filter_options(store: StoreDep) -> Any:
    return store.master_conversion.filter_options()


@router.get("/grouped", response_model_exclude_none=True)
def grouped(store: StoreDep, filters: FiltersDep, sort: SortDep, groupBy: str | None = None) -> dict[str, Any]:
    require_choice("groupBy", groupBy, GROUP_BY_OPTIONS)
    data = store.master_conversion.grouped(filters, groupBy, sort)
    return {"data": data, "groupBy": groupBy, "filters": echo_filters(filters)}


@router.get("/trend")
def trend(
    store: StoreDep, filters: FiltersDep, dimension: str = "none", granularity: str = "day"
) -> dict[str, Any]:
    require_choice("dimension", dimension, DIMENSIONS)
    require_choice("granularity", granularity, GRANULARITIES)
    data = store.master_conversion.dimensional_time_series(filters, dimension, granularity)
    return {"data": data, "dimension": dimension, "granularity": granularity, "filters": echo_filters(filters)}
