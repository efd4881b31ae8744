"""Integration tests for RideMetricsStore."""

import pytest

from ridemetrics.compiler.sql_builder import CompiledQuery
from ridemetrics.errors import InvalidQueryError
from ridemetrics.executor.clickhouse_executor import ClickHouseExecutor
from ridemetrics.models.filters import Filters, SortOptions
from ridemetrics.store import REPORTS, RideMetricsStore


class TestRideMetricsStore:
    def test_get_sql(self, store, fake_client):
        """Can generate SQL without executing."""
        query = store.get_sql("executive", Filters(city=["Kochi"]))

        assert isinstance(query, CompiledQuery)
        assert "FROM atlas_agg_metrics.open_data_validation" in query.sql
        assert query.params == {"city": ["Kochi"]}
        assert fake_client.queries == []

    def test_get_sql_defaults_to_no_filters(self, store):
        query = store.get_sql("master-executive")
        assert "service_tier = 'All'" in query.sql
        assert query.params == {}

    def test_get_sql_with_options(self, store):
        """Options the report doesn't take are ignored."""
        query = store.get_sql(
            "master-trend", Filters(), dimension="flow_type", granularity="hour", group_by="city"
        )
        assert "flow_type AS dimension_value" in query.sql
        assert "toStartOfHour(local_time)" in query.sql

    def test_get_sql_sort(self, store):
        query = store.get_sql("grouped", group_by="city", sort=SortOptions(sort_by="completedRides", sort_order="desc"))
        assert "ORDER BY completed_rides DESC" in query.sql

    def test_missing_option(self, store):
        """Reports with a required selector say which one is missing."""
        with pytest.raises(InvalidQueryError, match="group_by"):
            store.get_sql("grouped")

    def test_unknown_report(self, store):
        with pytest.raises(InvalidQueryError, match="Unknown report"):
            store.get_sql("revenue")

    def test_every_report_compiles(self, store):
        """Every registered report produces sql given its selectors."""
        options = {"group_by": "city", "dimension": "fare_breakup", "granularity": "day"}
        for report in REPORTS:
            opts = dict(options)
            if report == "master-trend":
                opts["dimension"] = "service_tier"
            query = store.get_sql(report, **opts)
            assert query.sql.startswith("SELECT")

    def test_run(self, store, fake_client):
        fake_client.push([{"dimension": "Kochi", "searches": 10, "completed_rides": 5}])
        rows = store.run("grouped", Filters(), group_by="city")

        assert rows[0].dimension == "Kochi"
        assert rows[0].conversion_rate == 0.5

    def test_run_unfiltered_report(self, store, fake_client):
        fake_client.push([{"cities": ["Kochi"]}])
        options = store.run("filters", Filters(city=["Chennai"]))

        assert options.cities == ["Kochi"]
        assert fake_client.last_params == {}

    def test_ping(self, store, fake_client):
        fake_client.push([{"1": 1}])
        assert store.ping() is True

    def test_context_manager(self, fake_client):
        """Store connects on enter and closes on exit."""
        executor = ClickHouseExecutor(client_factory=lambda **kwargs: fake_client)
        with RideMetricsStore(executor) as store:
            assert store.executor.connected
        assert fake_client.closed
