"""Pydantic models for ridemetrics."""

from ridemetrics.models.filters import (
    CancellationDimension,
    ConversionDimension,
    Filters,
    Granularity,
    Period,
    SortOptions,
    VehicleCategory,
)
from ridemetrics.models.query import QueryResult
from ridemetrics.models.results import (
    CancellationGroupedRow,
    CancellationTrendPoint,
    ComparisonResult,
    ConversionExecutiveTotals,
    ConversionFilterOptions,
    ConversionMetrics,
    ConversionTrendPoint,
    ExecutiveMetrics,
    FilterOptions,
    GroupedConversionRow,
    GroupedRow,
    MerchantCity,
    TimeSeriesPoint,
)

__all__ = [
    "CancellationDimension",
    "CancellationGroupedRow",
    "CancellationTrendPoint",
    "ComparisonResult",
    "ConversionDimension",
    "ConversionExecutiveTotals",
    "ConversionFilterOptions",
    "ConversionMetrics",
    "ConversionTrendPoint",
    "ExecutiveMetrics",
    "FilterOptions",
    "Filters",
    "Granularity",
    "GroupedConversionRow",
    "GroupedRow",
    "MerchantCity",
    "Period",
    "QueryResult",
    "SortOptions",
    "TimeSeriesPoint",
    "VehicleCategory",
]
