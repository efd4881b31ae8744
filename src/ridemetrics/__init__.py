"""ridemetrics - query service for the ride-hailing operations dashboard."""

__version__ = "0.1.0"
