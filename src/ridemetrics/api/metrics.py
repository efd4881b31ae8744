"""Routes for the open_data_validation dashboard: /api/metrics/*."""

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
from ridemetrics.models.filters import Granularity, Period
from ridemetrics.repositories.metrics import GROUP_BY_OPTIONS

router = APIRouter(prefix="/api/metrics", tags=["metrics"])

GRANULARITIES = [g.value for g in Granularity]


@router.get("/executive")
def executive(store: StoreDep, filters: FiltersDep) -> dict[str, Any]:
    result = store.metrics.executive(filters)
    return {
        "totals": result.totals,
        "drivers": result.drivers,
        "riders": result.riders,
        "filters": echo_filters(filters),
    }


@router.get("/conversion")
def conversion(store: StoreDep, filters: FiltersDep) -> dict[str, Any]:
    result = store.metrics.conversion(filters)
    return {"funnel": result.funnel, "cancellation": result.cancellation, "filters": echo_filters(filters)}


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
    return store.metrics.comparison(
        Period(date_from=currentFrom, date_to=currentTo),
        Period(date_from=previousFrom, date_to=previousTo),
        filters,
    )


@router.get("/timeseries")
def timeseries(store: StoreDep, filters: FiltersDep, sort: SortDep, granularity: str = "day") -> dict[str, Any]:
    require_choice("granularity", granularity, GRANULARITIES)
    data = store.metrics.time_series(filters, sort, granularity)
    return {"data": data, "granularity": granularity, "filters": echo_filters(filters)}


@router.get("/filters")
def filter_options(store: StoreDep) -> Any:
    return store.metrics.filter_options()


@router.get("/grouped")
def grouped(store: StoreDep, filters: FiltersDep, sort: SortDep, groupBy: str | None = None) -> dict[str, Any]:
    require_choice("groupBy", groupBy, GROUP_BY_OPTIONS)
    data = store.metrics.grouped(filters, groupBy, sort)
    return {"data": data, "groupBy": groupBy, "filters": echo_filters(filters)}
