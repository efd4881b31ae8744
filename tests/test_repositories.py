"""Tests for the report repositories, run against the fake client."""

from datetime import datetime

import pytest
from clickhouse_connect.driver.exceptions import DatabaseError

from ridemetrics.errors import InvalidQueryError, QueryExecutionError
from ridemetrics.models.filters import Filters, Period, SortOptions, VehicleCategory
from ridemetrics.models.results import ComparisonPeriodData, ConversionComparisonPeriod, ConversionTotals
from ridemetrics.repositories.cancellations import CancellationsRepository
from ridemetrics.repositories.master_conversion import (
    MasterConversionRepository,
    calculate_rates,
    service_tier_type,
)
from ridemetrics.repositories.metadata import MetadataRepository
from ridemetrics.repositories.metrics import MetricsRepository


@pytest.fixture
def metrics(executor) -> MetricsRepository:
    return MetricsRepository(executor)


@pytest.fixture
def master(executor) -> MasterConversionRepository:
    return MasterConversionRepository(executor)


@pytest.fixture
def cancellations(executor) -> CancellationsRepository:
    return CancellationsRepository(executor)


@pytest.fixture
def metadata(executor) -> MetadataRepository:
    return MetadataRepository(executor)


class TestMetricsRepository:
    def test_executive(self, metrics, fake_client):
        """Executive splits one row into totals, drivers and riders."""
        fake_client.push([
            {"searches": 100, "bookings": 40, "earnings": "1500.5", "reg_riders": 12, "enabled_drivers": 5}
        ])
        result = metrics.executive(Filters(city=["Kochi"]))

        assert result.totals.searches == 100
        assert result.totals.earnings == 1500.5
        assert result.totals.completed_rides == 0
        assert result.drivers.enabled_drivers == 5
        assert result.riders.registered_riders == 12
        assert "sumIf(reg_riders, reg_riders IS NOT NULL) AS reg_riders" in fake_client.last_sql
        assert fake_client.last_params == {"city": ["Kochi"]}

    def test_executive_empty_table(self, metrics):
        result = metrics.executive(Filters())
        assert result.totals.searches == 0
        assert result.riders.registered_riders == 0

    def test_conversion_rates(self, metrics, fake_client):
        """Funnel and cancellation rates are fractions rounded to 4 places."""
        fake_client.push([{
            "searches": 100,
            "search_got_estimates": 80,
            "search_got_quotes": 60,
            "bookings": 40,
            "completed_rides": 30,
            "cancelled_bookings": 10,
            "driver_cancelled_bookings": 4,
            "user_cancelled_bookings": 6,
        }])
        result = metrics.conversion(Filters())

        assert result.funnel.search_to_estimate == 0.8
        assert result.funnel.estimate_to_quote == 0.75
        assert result.funnel.quote_to_booking == 0.6667
        assert result.funnel.booking_to_completion == 0.75
        assert result.cancellation.overall == 0.25
        assert result.cancellation.by_driver == 0.1
        assert result.cancellation.by_user == 0.15

    def test_conversion_zero_denominators(self, metrics):
        """Nothing to divide by gives exactly 0, never NaN."""
        result = metrics.conversion(Filters())
        assert result.funnel.search_to_estimate == 0
        assert result.cancellation.overall == 0

    def test_comparison(self, metrics, fake_client):
        """Two queries, one per period, then absolute and percent deltas."""
        fake_client.push([{"searches": 120, "earnings": 300.0}])
        fake_client.push([{"searches": 100, "earnings": 0}])

        result = metrics.comparison(
            Period(date_from="2024-02-01", date_to="2024-02-29"),
            Period(date_from="2024-01-01", date_to="2024-01-31"),
            Filters(date_from="2023-01-01", city=["Kochi"]),
        )

        assert result.change["searches"].absolute == 20
        assert result.change["searches"].percent == 20.0
        assert result.change["earnings"].percent == 0
        assert "completedRides" in result.change
        current_params, previous_params = fake_client.queries[0][1], fake_client.queries[1][1]
        assert current_params["date_from"] == "2024-02-01"
        assert previous_params["date_to"] == "2024-01-31"
        assert previous_params["city"] == ["Kochi"]

    def test_comparison_identical_periods(self, metrics, fake_client):
        """Identical periods give a zero delta for every metric."""
        row = {"searches": 10, "bookings": 5, "completed_rides": 3, "earnings": 12.5, "cancelled_bookings": 1}
        fake_client.push([row])
        fake_client.push([row])
        period = Period(date_from="2024-01-01", date_to="2024-01-31")

        result = metrics.comparison(period, period, Filters())

        assert set(result.change) == set(ComparisonPeriodData().model_dump(by_alias=True))
        for change in result.change.values():
            assert (change.absolute, change.percent) == (0, 0)

    def test_time_series(self, metrics, fake_client):
        fake_client.push([{"date": "2024-01-01 10:00:00", "searches": 5}])
        points = metrics.time_series(Filters(), granularity="hour")

        assert points[0].date == "2024-01-01 10:00:00"
        assert points[0].searches == 5
        assert "toStartOfHour(date_info)" in fake_client.last_sql
        assert "ORDER BY date ASC" in fake_client.last_sql

    def test_time_series_sort(self, metrics, fake_client):
        metrics.time_series(Filters(), SortOptions(sort_by="searches", sort_order="desc"))
        assert "ORDER BY searches DESC" in fake_client.last_sql

    def test_time_series_bad_sort(self, metrics, fake_client):
        with pytest.raises(InvalidQueryError):
            metrics.time_series(Filters(), SortOptions(sort_by="variant"))
        assert fake_client.queries == []

    def test_filter_options(self, metrics, fake_client):
        fake_client.push([{
            "cities": ["Kochi", None],
            "flow_types": [],
            "trip_tags": ["airport"],
            "variants": ["AUTO"],
            "min_date": datetime(2024, 1, 1),
            "max_date": datetime(2024, 3, 1),
        }])
        options = metrics.filter_options()

        assert options.cities == ["Kochi"]
        assert options.trip_tags == ["airport"]
        assert options.date_range.min == "2024-01-01 00:00:00"
        assert "groupArray(DISTINCT variant) AS variants" in fake_client.last_sql

    def test_grouped(self, metrics, fake_client):
        fake_client.push([{"dimension": "Kochi", "searches": 10, "completed_rides": 4}])
        rows = metrics.grouped(Filters(), "city")

        assert rows[0].dimension == "Kochi"
        assert rows[0].conversion_rate == 0.4
        assert "ORDER BY dimension ASC" in fake_client.last_sql

    def test_grouped_invalid_dimension(self, metrics, fake_client):
        with pytest.raises(InvalidQueryError):
            metrics.grouped(Filters(), "service_tier")
        assert fake_client.queries == []


class TestServiceTierType:
    @pytest.mark.parametrize(
        "filters,expected",
        [
            (Filters(), "tier-less"),
            (Filters(vehicle_category=VehicleCategory.ALL), "tier-less"),
            (Filters(vehicle_category=VehicleCategory.BOOK_ANY), "bookany"),
            (Filters(vehicle_category=VehicleCategory.AUTO), "tier"),
            (Filters(service_tier=["BookAny"]), "bookany"),
            (Filters(service_tier=["SUV", "Sedan"]), "tier"),
            (Filters(service_tier=["All"]), "tier-less"),
            (Filters(vehicle_sub_category="SUV"), "tier"),
        ],
    )
    def test_tier_type(self, filters, expected):
        assert service_tier_type(filters) == expected

    def test_disjoint_selection(self):
        with pytest.raises(InvalidQueryError):
            service_tier_type(Filters(service_tier=["AC Cab"], vehicle_category=VehicleCategory.AUTO))


class TestCalculateRates:
    def test_tierless_rates(self):
        """Tier-less conversion is over searches, with the acceptance rates."""
        totals = ConversionTotals(
            searches=200,
            search_got_estimates=150,
            quotes_requested=100,
            quotes_accepted=80,
            completed_rides=50,
            bookings=60,
            cancelled_rides=6,
        )
        rates = calculate_rates(totals, "tier-less")

        assert rates.conversion_rate == 0.25
        assert rates.rider_fare_acceptance_rate == 0.6667
        assert rates.driver_quote_acceptance_rate == 0.8
        assert rates.driver_acceptance_rate is None
        assert rates.cancellation_rate == 0.1

    def test_tier_rates(self):
        """Tier conversion is over quotes requested, plus driver acceptance."""
        totals = ConversionTotals(quotes_requested=100, completed_rides=50, rides=55, bookings=60)
        rates = calculate_rates(totals, "tier")

        assert rates.conversion_rate == 0.5
        assert rates.driver_acceptance_rate == 0.9167
        assert rates.rider_fare_acceptance_rate is None

    def test_tier_falls_back_to_search_tries(self):
        totals = ConversionTotals(completed_rides=50)
        assert calculate_rates(totals, "tier", search_tries=200).conversion_rate == 0.25

    def test_no_bookings(self):
        rates = calculate_rates(ConversionTotals(searches=10), "tier-less")
        assert rates.cancellation_rate == 0
        assert rates.driver_quote_acceptance_rate is None


class TestMasterConversionRepository:
    def test_executive_tierless(self, master, fake_client):
        """No tier selection: one query on the 'All' slice, search tries = searches."""
        fake_client.push([{"searches": 200, "completed_rides": 50, "earnings": 900.0}])
        totals, tier_type = master.executive(Filters())

        assert tier_type == "tier-less"
        assert totals.search_tries == 200
        assert totals.conversion_rate == 0.25
        assert len(fake_client.queries) == 1
        assert "service_tier = 'All'" in fake_client.last_sql
        assert "sumIf(total_driver_earnings, total_driver_earnings IS NOT NULL) AS earnings" in fake_client.last_sql

    def test_executive_tier_uses_quotes_for_search_tries(self, master, fake_client):
        fake_client.push([{"searches": 0, "quotes_requested": 50, "completed_rides": 10}])
        totals, tier_type = master.executive(Filters(vehicle_category=VehicleCategory.AUTO))

        assert tier_type == "tier"
        assert totals.search_tries == 50
        assert totals.conversion_rate == 0.2
        assert len(fake_client.queries) == 1

    def test_executive_tier_queries_search_tries(self, master, fake_client):
        """Without searches or quotes on the tier rows, tries come from the 'All' slice."""
        fake_client.push([{"searches": 0, "quotes_requested": 0, "completed_rides": 10}])
        fake_client.push([{"searches": 400}])

        totals, _ = master.executive(Filters(vehicle_category=VehicleCategory.AUTO, city=["Kochi"]))

        assert totals.search_tries == 400
        assert totals.conversion_rate == 0.025
        (first_sql, first_params), (second_sql, second_params) = fake_client.queries
        assert "service_tier" in first_params
        assert "service_tier = 'All'" in second_sql
        assert "service_tier" not in second_params
        assert second_params["city"] == ["Kochi"]

    def test_comparison_whole_days(self, master, fake_client):
        fake_client.push([{"searches": 10, "quotes_requested": 5}])
        fake_client.push([{"searches": 5, "quotes_requested": 5}])

        result = master.comparison(
            Period(date_from="2024-02-01", date_to="2024-02-29"),
            Period(date_from="2024-01-01", date_to="2024-01-31"),
            Filters(),
        )

        assert fake_client.queries[0][1]["date_to"] == "2024-03-01 00:00:00"
        assert result.change["searches"].percent == 100.0
        assert result.change["quotesRequested"].absolute == 0
        assert "otherCancellations" in result.change

    def test_comparison_identical_periods(self, master, fake_client):
        row = {
            "searches": 10,
            "quotes_requested": 8,
            "quotes_accepted": 6,
            "bookings": 5,
            "completed_rides": 3,
            "cancelled_rides": 2,
            "earnings": 12.5,
            "user_cancellations": 1,
            "driver_cancellations": 1,
            "other_cancellations": 0,
        }
        fake_client.push([row])
        fake_client.push([row])
        period = Period(date_from="2024-01-01", date_to="2024-01-31")

        result = master.comparison(period, period, Filters())

        assert set(result.change) == set(ConversionComparisonPeriod().model_dump(by_alias=True))
        for change in result.change.values():
            assert (change.absolute, change.percent) == (0, 0)

    def test_filter_options(self, master, fake_client):
        fake_client.push([{
            "cities": ["Pune", "Kochi", "Bangalore", "Agra"],
            "states": ["Kerala", "Karnataka"],
            "service_tiers": ["All", "Auto"],
            "min_date": "2024-01-01 00:00:00",
            "max_date": "2024-03-01 00:00:00",
        }])
        fake_client.push([
            {"city": "Kochi", "state": "Kerala"},
            {"city": "Bangalore", "state": "Karnataka"},
            {"city": "Mysore", "state": "Karnataka"},
        ])
        fake_client.push([
            {"id": "m2", "name": "ZOOM"},
            {"id": "m1", "name": "NAMMA_YATRI"},
            {"id": "m3", "name": None},
        ])
        fake_client.push([{"bap_merchant_names": ["BHARAT_TAXI", "ALPHA"]}])

        options = master.filter_options()

        assert options.cities == ["Bangalore", "Kochi", "Agra", "Pune"]
        assert options.city_state_map == {"Kerala": ["Kochi"], "Karnataka": ["Bangalore", "Mysore"]}
        assert options.city_to_state_map["Mysore"] == "Karnataka"
        assert [m.name for m in options.merchants] == ["NAMMA_YATRI", "BHARAT_TAXI", "ALPHA", "ZOOM", "m3"]
        assert [m.id for m in options.bpp_merchants] == ["m2", "m1", "m3"]
        assert [m.id for m in options.bap_merchants] == ["BHARAT_TAXI", "ALPHA"]
        assert options.vehicle_categories[4].label == "All Categories"
        assert options.vehicle_sub_categories["Bike"] == ["2W Parcel", "Bike Metro", "Bike Taxi"]
        assert options.date_range.max == "2024-03-01 00:00:00"

    def test_filter_options_bap_failure(self, master, fake_client):
        """A failing BAP lookup degrades to an empty list."""
        fake_client.push([{"cities": ["Kochi"]}])
        fake_client.push([])
        fake_client.push([{"id": "m1", "name": "NAMMA_YATRI"}])
        fake_client.fail(DatabaseError("Missing columns: bap_merchant_name"))

        options = master.filter_options()

        assert options.bap_merchants == []
        assert [m.id for m in options.merchants] == ["m1"]

    def test_filter_options_main_failure_propagates(self, master, fake_client):
        fake_client.fail(DatabaseError("boom"))
        with pytest.raises(QueryExecutionError):
            master.filter_options()

    def test_grouped_by_service_tier_reads_every_tier(self, master, fake_client):
        master.grouped(Filters(service_tier=["Auto"]), "service_tier")

        assert "service_tier" not in fake_client.last_params
        assert "service_tier = 'All'" not in fake_client.last_sql
        assert "ORDER BY searches DESC" in fake_client.last_sql
        assert fake_client.last_sql.endswith("LIMIT 100")

    def test_grouped_keeps_tier_condition(self, master, fake_client):
        master.grouped(Filters(), "merchant_id")
        assert "service_tier = 'All'" in fake_client.last_sql
        assert "COALESCE(bpp_merchant_id, bap_merchant_name) AS dimension" in fake_client.last_sql

    def test_grouped_rates(self, master, fake_client):
        fake_client.push([
            {"dimension": "Kochi", "searches": 100, "completed_rides": 20, "search_got_estimates": 50, "quotes_requested": 40}
        ])
        (row,) = master.grouped(Filters(), "city")

        assert row.conversion_rate == 0.2
        assert row.rider_fare_acceptance_rate == 0.8
        assert row.driver_acceptance_rate is None

    def test_grouped_tier_rates(self, master, fake_client):
        fake_client.push([{"dimension": "Kochi", "quotes_requested": 40, "completed_rides": 20, "rides": 9, "bookings": 10}])
        (row,) = master.grouped(Filters(vehicle_category=VehicleCategory.AUTO), "city")

        assert row.conversion_rate == 0.5
        assert row.driver_acceptance_rate == 0.9

    def test_grouped_invalid(self, master):
        with pytest.raises(InvalidQueryError):
            master.grouped(Filters(), "variant")

    def test_trend_by_vehicle_category(self, master, fake_client):
        """Per-tier rows are folded into categories, keyed by (timestamp, category)."""
        fake_client.push([
            {"timestamp": "2024-01-01", "dimension_value": "Auto", "searches": 0, "quotes_requested": 10, "completed_rides": 5},
            {"timestamp": "2024-01-01", "dimension_value": "ECO Auto", "searches": 0, "quotes_requested": 10, "completed_rides": 3},
            {"timestamp": "2024-01-01", "dimension_value": "SUV", "searches": 0, "quotes_requested": 4, "completed_rides": 1},
            {"timestamp": "2024-01-02", "dimension_value": "Auto", "searches": 0, "quotes_requested": 5, "completed_rides": 5},
        ])
        filters = Filters(vehicle_category=VehicleCategory.AUTO, service_tier=["Auto"], city=["Kochi"])
        points = master.dimensional_time_series(filters, "vehicle_category")

        assert [(p.timestamp, p.dimension_value) for p in points] == [
            ("2024-01-01", "Auto"),
            ("2024-01-01", "Cab"),
            ("2024-01-02", "Auto"),
        ]
        assert points[0].quotes_requested == 20
        assert points[0].completed_rides == 8
        assert points[0].conversion == 0.4
        assert points[1].conversion == 0.25
        assert "service_tier" not in fake_client.last_params
        assert "service_tier IN" not in fake_client.last_sql
        assert "service_tier = 'All'" not in fake_client.last_sql
        assert fake_client.last_params["city"] == ["Kochi"]

    def test_trend_by_sub_category_keeps_tiers(self, master, fake_client):
        fake_client.push([
            {"timestamp": "2024-01-01", "dimension_value": "SUV", "searches": 10, "completed_rides": 5},
        ])
        points = master.dimensional_time_series(Filters(), "vehicle_sub_category")
        assert points[0].dimension_value == "SUV"
        assert points[0].conversion == 0.5

    def test_trend_total(self, master, fake_client):
        fake_client.push([{"timestamp": "2024-01-01", "dimension_value": "Total", "searches": 10, "completed_rides": 2}])
        points = master.dimensional_time_series(Filters(), "none", "day")

        assert points[0].conversion == 0.2
        assert "'Total' AS dimension_value" in fake_client.last_sql
        assert "service_tier = 'All'" in fake_client.last_sql

    def test_trend_tier_conversion(self, master, fake_client):
        fake_client.push([{"timestamp": "2024-01-01 10:00:00", "dimension_value": "ios", "quotes_requested": 8, "completed_rides": 2}])
        points = master.dimensional_time_series(Filters(service_tier=["SUV"]), "user_os_type", "hour")

        assert points[0].conversion == 0.25
        assert "user_os_type AS dimension_value" in fake_client.last_sql
        assert fake_client.last_params["service_tier"] == ["SUV"]


class TestCancellationsRepository:
    def test_grouped_plain(self, cancellations, fake_client):
        fake_client.push([{
            "dimension": "0-50",
            "total_bookings": 200,
            "bookings_cancelled": 50,
            "user_cancelled": 30,
            "driver_cancelled": 20,
        }])
        (row,) = cancellations.grouped(Filters(), "fare_breakup")

        assert row.cancellation_rate == 0.25
        assert row.user_cancellation_rate == 0.15
        assert row.driver_cancellation_rate == 0.1
        assert "fare_breakup AS dimension" in fake_client.last_sql
        assert "FROM cancellations" in fake_client.last_sql
        assert "ORDER BY bookings_cancelled DESC" in fake_client.last_sql

    def test_grouped_json_map(self, cancellations, fake_client):
        """JSON map dimensions sum per key with unattributed counters at 0."""
        fake_client.push([{"dimension": "DRIVER_LATE", "bookings_cancelled": 7, "total_bookings": 0}])
        (row,) = cancellations.grouped(Filters(), "reason_code")

        assert row.dimension == "DRIVER_LATE"
        assert row.bookings_cancelled == 7
        assert row.cancellation_rate == 0
        assert "JSONExtractKeysAndValues(assumeNotNull(reason_code), 'Int64')" in fake_client.last_sql

    def test_unknown_dimension(self, cancellations):
        with pytest.raises(KeyError):
            cancellations.grouped(Filters(), "city")

    def test_trend_plain(self, cancellations, fake_client):
        fake_client.push([{"timestamp": "2024-01-01", "dimension_value": "0-2km", "bookings_cancelled": 3}])
        (point,) = cancellations.trend(Filters(date_from="2024-01-01"), "trip_distance_bkt")

        assert point.dimension_value == "0-2km"
        assert point.bookings_cancelled == 3
        assert "local_time >= toDateTime({date_from:String})" in fake_client.last_sql
        assert "ORDER BY timestamp ASC" in fake_client.last_sql

    def test_trend_json_map(self, cancellations, fake_client):
        cancellations.trend(Filters(), "time_to_cancel_bkt", "hour")
        assert "toStartOfHour(local_time) AS bucket" in fake_client.last_sql
        assert "GROUP BY bucket, dimension_value" in fake_client.last_sql


class TestMetadataRepository:
    def test_city_uuid(self, metadata, fake_client):
        fake_client.push([{"id": "uuid-1"}])
        assert metadata.city_uuid("Bangalore", "NAMMA_YATRI") == "uuid-1"
        assert "FROM atlas_driver_offer_bpp.merchant_operating_city" in fake_client.last_sql
        assert fake_client.last_params == {"city": "Bangalore", "merchant_short_id": "NAMMA_YATRI"}
        assert "Bangalore" not in fake_client.last_sql

    def test_customer_database(self, metadata, fake_client):
        metadata.merchant_uuid("NAMMA_YATRI", "customer")
        assert "FROM atlas_app.merchant" in fake_client.last_sql

    def test_unknown_kind_is_driver(self, metadata, fake_client):
        metadata.merchant_uuid("NAMMA_YATRI", "admin")
        assert "FROM atlas_driver_offer_bpp.merchant" in fake_client.last_sql

    def test_miss_returns_none(self, metadata):
        assert metadata.city_uuid("Atlantis", "NAMMA_YATRI") is None

    def test_failure_returns_none(self, metadata, fake_client):
        """Lookup failures are logged and treated as a miss."""
        fake_client.fail(DatabaseError("boom"))
        assert metadata.merchant_uuid("NAMMA_YATRI") is None

    def test_merchant_cities(self, metadata, fake_client):
        fake_client.push([{"city": "Kochi", "id": "c1"}, {"city": "Chennai", "id": "c2"}])
        cities = metadata.merchant_cities("NAMMA_YATRI")

        assert [(c.city, c.id) for c in cities] == [("Kochi", "c1"), ("Chennai", "c2")]
        assert "sign = 0" in fake_client.last_sql

    def test_merchant_cities_failure(self, metadata, fake_client):
        fake_client.fail(DatabaseError("boom"))
        assert metadata.merchant_cities("NAMMA_YATRI") == []
