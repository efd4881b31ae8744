"""Shared route dependencies: the store and request-level filters."""

from typing import Annotated, Any

from fastapi import Depends, Request
from pydantic import ValidationError

from ridemetrics.errors import InvalidQueryError
from ridemetrics.models.filters import Filters, SortOptions
from ridemetrics.store import RideMetricsStore


def get_store(request: Request) -> RideMetricsStore:
    return request.app.state.store


def _field_aliases(model: type[Filters] | type[SortOptions]) -> dict[str, str]:
    return {name: field.alias or name for name, field in model.model_fields.items()}


def parse_filters(request: Request) -> Filters:
    """Filters from the query string.

    list fields accept both ?city=a,b and ?city=a&city=b (or a mix); the
    model's validators do the splitting and cleanup.
    """
    params = request.query_params
    raw: dict[str, Any] = {}

    for name, alias in _field_aliases(Filters).items():
        values = params.getlist(alias)
        if not values:
            continue
        annotation = Filters.model_fields[name].annotation
        raw[alias] = ",".join(values) if annotation == list[str] else values[-1]

    try:
        return Filters.model_validate(raw)
    except ValidationError as exc:
        fields = ", ".join(str(err["loc"][0]) for err in exc.errors())
        raise InvalidQueryError(f"Invalid filter value for: {fields}") from exc


def parse_sort(request: Request) -> SortOptions:
    params = request.query_params
    return SortOptions(sort_by=params.get("sortBy") or None, sort_order=params.get("sortOrder"))


StoreDep = Annotated[RideMetricsStore, Depends(get_store)]
FiltersDep = Annotated[Filters, Depends(parse_filters)]
SortDep = Annotated[SortOptions, Depends(parse_sort)]


def echo_filters(filters: Filters) -> dict[str, Any]:
    """Filters as the dashboard sent them, without the unset ones."""
    return filters.model_dump(mode="json", by_alias=True, exclude_defaults=True)


def require_choice(name: str, value: str | None, options: list[str] | tuple[str, ...]) -> str:
    """Validate a selector query param (groupBy, granularity, dimension)."""
    if value not in options:
        raise InvalidQueryError(f"{name} must be one of: {', '.join(options)}")
    return value


def require_params(**values: str | None) -> None:
    missing = [name for name, value in values.items() if not value]
    if missing:
        raise InvalidQueryError(f"Missing required parameters: {', '.join(missing)}")
