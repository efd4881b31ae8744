"""Main RideMetricsStore interface for ridemetrics."""

import inspect
from typing import Any

from ridemetrics.compiler.sql_builder import CompiledQuery
from ridemetrics.config import Settings
from ridemetrics.errors import InvalidQueryError
from ridemetrics.executor.clickhouse_executor import ClickHouseExecutor
from ridemetrics.models.filters import Filters
from ridemetrics.repositories.cancellations import CancellationsRepository
from ridemetrics.repositories.master_conversion import MasterConversionRepository
from ridemetrics.repositories.metadata import MetadataRepository
from ridemetrics.repositories.metrics import MetricsRepository

# report name -> (repository attribute, method). the sql for a report comes
# from the same method name with a _query suffix.
REPORTS: dict[str, tuple[str, str]] = {
    "executive": ("metrics", "executive"),
    "conversion": ("metrics", "conversion"),
    "timeseries": ("metrics", "time_series"),
    "grouped": ("metrics", "grouped"),
    "filters": ("metrics", "filter_options"),
    "master-executive": ("master_conversion", "executive"),
    "master-timeseries": ("master_conversion", "time_series"),
    "master-grouped": ("master_conversion", "grouped"),
    "master-filters": ("master_conversion", "filter_options"),
    "master-trend": ("master_conversion", "dimensional_time_series"),
    "cancellations-grouped": ("cancellations", "grouped"),
    "cancellations-trend": ("cancellations", "trend"),
}

# reports that take no filters at all
_UNFILTERED = {"filters", "master-filters"}


class RideMetricsStore:
    """One executor plus the repositories that share it."""

    def __init__(self, executor: ClickHouseExecutor) -> None:
        self.executor = executor
        self.metrics = MetricsRepository(executor)
        self.master_conversion = MasterConversionRepository(executor)
        self.cancellations = CancellationsRepository(executor)
        self.metadata = MetadataRepository(executor)

    @classmethod
    def from_settings(cls, settings: Settings) -> "RideMetricsStore":
        return cls(ClickHouseExecutor.from_settings(settings))

    def _resolve(self, report: str, suffix: str = "") -> Any:
        try:
            repo_name, method = REPORTS[report]
        except KeyError:
            raise InvalidQueryError(
                f"Unknown report '{report}'. Available: {', '.join(REPORTS)}"
            ) from None
        return getattr(getattr(self, repo_name), method + suffix)

    def _call(self, report: str, method: Any, filters: Filters | None, options: dict[str, Any]) -> Any:
        """Call a report method with whichever of `options` it accepts."""
        if report in _UNFILTERED:
            return method()

        params = inspect.signature(method).parameters
        kwargs = {k: v for k, v in options.items() if k in params and v is not None}
        missing = [
            name
            for name, p in params.items()
            if name != "filters" and p.default is inspect.Parameter.empty and name not in kwargs
        ]
        if missing:
            raise InvalidQueryError(f"Report '{report}' requires: {', '.join(missing)}")
        return method(filters or Filters(), **kwargs)

    def get_sql(self, report: str, filters: Filters | None = None, **options: Any) -> CompiledQuery:
        """Compile a report without executing it.

        Args:
            report: Report name, one of REPORTS.
            filters: Filters to apply, none by default.
            **options: Report selectors (group_by, dimension, granularity, sort).
                Ones the report does not take are ignored.

        Returns:
            CompiledQuery with the sql text and its bound parameters.
        """
        return self._call(report, self._resolve(report, "_query"), filters, options)

    def run(self, report: str, filters: Filters | None = None, **options: Any) -> Any:
        """Execute a report.

        Args:
            report: Report name, one of REPORTS.
            filters: Filters to apply, none by default.
            **options: Report selectors, as for get_sql.

        Returns:
            The report's result models (a list of rows for grouped and trend reports).
        """
        return self._call(report, self._resolve(report), filters, options)

    def ping(self) -> bool:
        return self.executor.ping()

    def connect(self) -> None:
        self.executor.connect()

    def close(self) -> None:
        """Close the warehouse connection."""
        self.executor.close()

    def __enter__(self) -> "RideMetricsStore":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
