"""Exception types for ridemetrics.

the route layer tells apart "the caller asked for something invalid" from
"the warehouse failed".
"""


class RideMetricsError(Exception):
    """Base class for all ridemetrics errors."""


class ConfigurationError(RideMetricsError):
    """Missing or malformed environment configuration. Fatal at startup."""


class InvalidQueryError(RideMetricsError, ValueError):
    """A report selector (sort column, dimension, ...) is not allowed."""


class QueryExecutionError(RideMetricsError):
    """A warehouse query failed.

    carries the sql so it can be logged server-side; the http layer never
    echoes it back to the client.
    """

    def __init__(self, message: str, sql: str | None = None) -> None:
        super().__init__(message)
        self.sql = sql
