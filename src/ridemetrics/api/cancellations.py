"""Routes for cancellation breakdowns: /api/cancellations/*."""

from typing import Any

from fastapi import APIRouter

from ridemetrics.api.dependencies import FiltersDep, StoreDep, echo_filters, require_choice
from ridemetrics.models.filters import CancellationDimension, Granularity

router = APIRouter(prefix="/api/cancellations", tags=["cancellations"])

DIMENSIONS = [d.value for d in CancellationDimension]
GRANULARITIES = [g.value for g in Granularity]


@router.get("/grouped")
def grouped(store: StoreDep, filters: FiltersDep, dimension: str | None = None) -> dict[str, Any]:
    require_choice("dimension", dimension, DIMENSIONS)
    data = store.cancellations.grouped(filters, dimension)
    return {"data": data, "dimension": dimension, "filters": echo_filters(filters)}


@router.get("/trend")
def trend(
    store: StoreDep, filters: FiltersDep, dimension: str | None = None, granularity: str = "day"
) -> dict[str, Any]:
    require_choice("dimension", dimension, DIMENSIONS)
    require_choice("granularity", granularity, GRANULARITIES)
    data = store.cancellations.trend(filters, dimension, granularity)
    return {"data": data, "dimension": dimension, "granularity": granularity, "filters": echo_filters(filters)}
