"""Tests for trip loading, filtering and aggregation.

Run from the repo root:

    pytest tests/test_trips.py -v
"""

import datetime as dt
import json

import pytest

from trips import (
    DataLoadError,
    FilterState,
    RouteStats,
    Trip,
    aggregate,
    dominant_product,
    filter_trips,
    journey_count,
    load_stop_coords,
    load_trip_rows,
    observed_date_range,
    observed_products,
    parse_date,
    route_weight,
    stop_radius,
    trips_from_rows,
    visible_routes,
)

BUS = "Bus, Tram en Metro reizen"
TRAIN = "Treinreizen"

COORDS = {
    "A": {"lat": 52.0, "lng": 4.0},
    "B": {"lat": 52.1, "lng": 4.1},
    "C": {"lat": 52.2, "lng": 4.2},
}


def make_trip(origin, destination, product=BUS, transaction="Reis", date=dt.date(2024, 10, 2), idx=0):
    return Trip(
        id=f"{date}-08:00-{idx}",
        date=date,
        date_label=date.strftime("%d-%m-%Y"),
        check_in="08:00",
        check_out="08:15",
        origin=origin,
        destination=destination,
        transaction=transaction,
        product=product,
        fare_class="2",
        note="",
    )


# ---------------------------------------------------------------------------
# parse_date
# ---------------------------------------------------------------------------

class TestParseDate:
    def test_day_month_year(self):
        assert parse_date("21-09-2024") == dt.date(2024, 9, 21)

    def test_empty(self):
        assert parse_date("") is None
        assert parse_date(None) is None

    def test_garbage(self):
        assert parse_date("geen datum") is None

    def test_zero_parts(self):
        assert parse_date("00-09-2024") is None

    def test_impossible_date(self):
        assert parse_date("31-02-2024") is None

    def test_iso_order_rejected(self):
        assert parse_date("2024-09-21") is None


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

class TestLoading:
    def test_rows_keep_strings(self, trips_csv):
        rows = load_trip_rows(trips_csv)
        assert len(rows) == 8
        assert rows[0]["Vertrek"] == "Leidseplein"
        assert rows[0]["Product"] == BUS
        assert rows[0]["Kl"] == "2"
        assert rows[4]["Vertrek"] == ""

    def test_unparseable_dates_dropped(self, trips_csv):
        trips = trips_from_rows(load_trip_rows(trips_csv))
        assert len(trips) == 7
        assert all(isinstance(t.date, dt.date) for t in trips)

    def test_trip_ids_include_row_index(self):
        rows = [
            {"Datum": "02-10-2024", "Check in": "08:00", "Vertrek": "A", "Bestemming": "B", "Transactie": "Reis", "Product": BUS},
            {"Datum": "02-10-2024", "Check in": "08:00", "Vertrek": "A", "Bestemming": "B", "Transactie": "Reis", "Product": BUS},
        ]
        trips = trips_from_rows(rows)
        assert [t.id for t in trips] == ["02-10-2024-08:00-0", "02-10-2024-08:00-1"]

    def test_missing_optional_fields_default_empty(self):
        trips = trips_from_rows([{"Datum": "02-10-2024", "Transactie": "Reis", "Product": BUS}])
        assert trips[0].origin == ""
        assert trips[0].destination == ""
        assert trips[0].note == ""

    def test_missing_csv_raises(self, tmp_path):
        with pytest.raises(DataLoadError):
            load_trip_rows(str(tmp_path / "nope.csv"))

    def test_csv_without_required_columns_raises(self, tmp_path):
        path = tmp_path / "bad.csv"
        path.write_text("foo,bar\n1,2\n", encoding="utf-8")
        with pytest.raises(DataLoadError):
            load_trip_rows(str(path))

    def test_trailing_comma_keeps_columns(self, tmp_path):
        path = tmp_path / "trailing.csv"
        path.write_text(
            "Datum,Check in,Vertrek,Check uit,Bestemming,Transactie,Kl,Product,Opmerking\n"
            "02-10-2024,08:01,Dam,08:12,Leidseplein,Reis,2,Treinreizen,,\n",
            encoding="utf-8",
        )
        rows = load_trip_rows(str(path))
        assert rows[0]["Datum"] == "02-10-2024"
        trips = trips_from_rows(rows)
        assert [(t.origin, t.destination, t.product) for t in trips] == [("Dam", "Leidseplein", TRAIN)]

    def test_coords(self, coords_json):
        coords = load_stop_coords(coords_json)
        assert coords["Dam"]["lat"] == pytest.approx(52.3731)
        assert "Nergenshuizen" not in coords

    def test_coords_invalid_json_raises(self, tmp_path):
        path = tmp_path / "stopCoords.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(DataLoadError):
            load_stop_coords(str(path))

    @pytest.mark.parametrize("entry", [{"lng": 4.9}, {"lat": "noord", "lng": 4.9}, None])
    def test_coords_bad_entry_raises(self, tmp_path, entry):
        path = tmp_path / "stopCoords.json"
        path.write_text(json.dumps({"stops": {"Dam": entry}, "unmatched": []}), encoding="utf-8")
        with pytest.raises(DataLoadError, match="Dam"):
            load_stop_coords(str(path))

    def test_coords_missing_raises(self, tmp_path):
        with pytest.raises(DataLoadError):
            load_stop_coords(str(tmp_path / "stopCoords.json"))

    def test_observed_products_and_range(self, trips_csv):
        trips = trips_from_rows(load_trip_rows(trips_csv))
        assert observed_products(trips) == [BUS, "Klanten Service", TRAIN]
        assert observed_date_range(trips) == (dt.date(2024, 10, 2), dt.date(2024, 11, 12))

    def test_observed_range_empty(self):
        assert observed_date_range([]) == (None, None)


# ---------------------------------------------------------------------------
# filter_trips
# ---------------------------------------------------------------------------

class TestFilterTrips:
    def setup_method(self):
        self.trips = [
            make_trip("Leidseplein", "Dam", date=dt.date(2024, 10, 1), idx=0),
            make_trip("Amsterdam Centraal", "Utrecht Centraal", product=TRAIN, date=dt.date(2024, 10, 5), idx=1),
            make_trip("", "", product="Klanten Service", transaction="Opladen", date=dt.date(2024, 10, 6), idx=2),
            make_trip("Dam", "Leidseplein", date=dt.date(2024, 10, 9), idx=3),
        ]

    def test_default_excludes_non_journeys(self):
        out = filter_trips(self.trips, FilterState())
        assert [t.id for t in out] == [self.trips[0].id, self.trips[1].id, self.trips[3].id]

    def test_include_non_journeys(self):
        out = filter_trips(self.trips, FilterState(include_non_journeys=True))
        assert len(out) == 4

    def test_product_subset(self):
        out = filter_trips(self.trips, FilterState(products={TRAIN}))
        assert [t.product for t in out] == [TRAIN]

    def test_empty_product_set_matches_nothing(self):
        out = filter_trips(self.trips, FilterState(products=set(), include_non_journeys=True))
        assert out == []

    def test_date_range_inclusive(self):
        out = filter_trips(self.trips, FilterState(date_start=dt.date(2024, 10, 5), date_end=dt.date(2024, 10, 9)))
        assert [t.date for t in out] == [dt.date(2024, 10, 5), dt.date(2024, 10, 9)]

    def test_search_case_insensitive(self):
        out = filter_trips(self.trips, FilterState(search="  UTRECHT "))
        assert [t.destination for t in out] == ["Utrecht Centraal"]

    def test_search_spans_origin_and_destination(self):
        out = filter_trips(self.trips, FilterState(search="dam leid"))
        assert [(t.origin, t.destination) for t in out] == [("Dam", "Leidseplein")]


# ---------------------------------------------------------------------------
# aggregate
# ---------------------------------------------------------------------------

class TestAggregate:
    def test_sample_export(self, trips_csv, coords_json):
        trips = trips_from_rows(load_trip_rows(trips_csv))
        analytics = aggregate(trips, load_stop_coords(coords_json), FilterState())

        assert len(analytics.trips) == 6
        assert [(r.origin, r.destination, r.count) for r in analytics.routes] == [
            ("Leidseplein", "Dam", 2),
            ("Dam", "Leidseplein", 1),
            ("Amsterdam Centraal", "Utrecht Centraal", 1),
        ]
        assert [(s.name, s.count) for s in analytics.stops] == [
            ("Leidseplein", 3),
            ("Dam", 3),
            ("Amsterdam Centraal", 1),
            ("Utrecht Centraal", 1),
        ]
        assert [(p.name, p.count) for p in analytics.products] == [(BUS, 5), (TRAIN, 1)]
        assert analytics.missing == ["Nergenshuizen", "Onbekend"]

    def test_products_count_non_journeys_when_included(self, trips_csv, coords_json):
        trips = trips_from_rows(load_trip_rows(trips_csv))
        analytics = aggregate(trips, load_stop_coords(coords_json), FilterState(include_non_journeys=True))
        assert dict((p.name, p.count) for p in analytics.products) == {BUS: 5, TRAIN: 1, "Klanten Service": 1}
        assert sum(r.count for r in analytics.routes) == 4

    def test_direction_preserved(self):
        trips = [make_trip("A", "B", idx=i) for i in range(3)] + [make_trip("B", "A", idx=3 + i) for i in range(2)]
        analytics = aggregate(trips, COORDS, FilterState())
        counts = {(r.origin, r.destination): r.count for r in analytics.routes}
        assert counts == {("A", "B"): 3, ("B", "A"): 2}

    def test_missing_coordinate_excludes_route_and_stops(self):
        trips = [make_trip("A", "X", idx=0), make_trip("A", "B", idx=1)]
        analytics = aggregate(trips, COORDS, FilterState())
        assert [(r.origin, r.destination) for r in analytics.routes] == [("A", "B")]
        assert {s.name: s.count for s in analytics.stops} == {"A": 1, "B": 1}
        assert analytics.missing == ["X"]
        assert analytics.products[0].count == 2

    def test_both_endpoints_missing(self):
        analytics = aggregate([make_trip("X", "Y")], COORDS, FilterState())
        assert analytics.routes == []
        assert analytics.stops == []
        assert analytics.missing == ["X", "Y"]

    def test_missing_names_differing_in_case_sort_stably(self):
        trips = [make_trip("dam", "Dam", idx=0), make_trip("Dam", "x", idx=1)]
        analytics = aggregate(trips, {}, FilterState())
        assert analytics.missing == ["Dam", "dam", "x"]

    def test_observed_products_case_ties(self):
        trips = [make_trip("A", "B", product="bus", idx=0), make_trip("A", "B", product="Bus", idx=1)]
        assert observed_products(trips) == ["Bus", "bus"]

    def test_empty_endpoint_not_counted_or_missing(self):
        analytics = aggregate([make_trip("A", "")], COORDS, FilterState())
        assert analytics.routes == []
        assert analytics.missing == []
        assert analytics.products[0].count == 1

    def test_route_products_and_dates(self):
        trips = [
            make_trip("A", "B", product=BUS, date=dt.date(2024, 1, 1), idx=0),
            make_trip("A", "B", product=TRAIN, date=dt.date(2024, 1, 2), idx=1),
            make_trip("A", "B", product=TRAIN, date=dt.date(2024, 1, 3), idx=2),
        ]
        route = aggregate(trips, COORDS, FilterState()).routes[0]
        assert route.products == {BUS: 1, TRAIN: 2}
        assert route.dates == [dt.date(2024, 1, 1), dt.date(2024, 1, 2), dt.date(2024, 1, 3)]
        assert route.origin_coord == COORDS["A"]
        assert route.destination_coord == COORDS["B"]

    def test_ties_keep_first_seen_order(self):
        trips = [make_trip("C", "A", idx=0), make_trip("A", "B", idx=1), make_trip("B", "C", idx=2)]
        analytics = aggregate(trips, COORDS, FilterState())
        assert [(r.origin, r.destination) for r in analytics.routes] == [("C", "A"), ("A", "B"), ("B", "C")]
        assert [s.name for s in analytics.stops] == ["C", "A", "B"]

    def test_empty_product_set_yields_nothing(self, trips_csv, coords_json):
        trips = trips_from_rows(load_trip_rows(trips_csv))
        analytics = aggregate(trips, load_stop_coords(coords_json), FilterState(products=set(), include_non_journeys=True))
        assert analytics.trips == []
        assert analytics.routes == []
        assert analytics.stops == []
        assert analytics.products == []
        assert analytics.missing == []

    def test_deterministic(self, trips_csv, coords_json):
        trips = trips_from_rows(load_trip_rows(trips_csv))
        coords = load_stop_coords(coords_json)
        state = FilterState(include_non_journeys=True)
        assert aggregate(trips, coords, state) == aggregate(trips, coords, state)

    def test_inputs_not_mutated(self):
        trips = [make_trip("A", "B")]
        coords = {k: dict(v) for k, v in COORDS.items()}
        aggregate(trips, coords, FilterState())
        assert coords == COORDS
        assert len(trips) == 1


# ---------------------------------------------------------------------------
# Display helpers
# ---------------------------------------------------------------------------

class TestDisplayHelpers:
    def _route(self, count, products=None):
        return RouteStats(
            origin="A",
            destination="B",
            origin_coord=COORDS["A"],
            destination_coord=COORDS["B"],
            count=count,
            products=products or {},
        )

    def test_visible_routes_threshold(self):
        routes = [self._route(5), self._route(2), self._route(1)]
        assert [r.count for r in visible_routes(routes, 2)] == [5, 2]

    def test_visible_routes_threshold_floor_is_one(self):
        routes = [self._route(1)]
        assert len(visible_routes(routes, 0)) == 1

    def test_route_weight(self):
        assert route_weight(4, 4) == pytest.approx(6.5)
        assert route_weight(2, 4) == pytest.approx(4.0)

    def test_stop_radius(self):
        assert stop_radius(10, 10) == pytest.approx(12.0)
        assert stop_radius(5, 10) == pytest.approx(8.0)

    def test_dominant_product(self):
        assert dominant_product(self._route(3, {BUS: 1, TRAIN: 2})) == TRAIN

    def test_dominant_product_tie_first_seen(self):
        assert dominant_product(self._route(2, {TRAIN: 1, BUS: 1})) == TRAIN

    def test_dominant_product_empty(self):
        assert dominant_product(self._route(0)) is None

    def test_journey_count(self):
        trips = [make_trip("A", "B"), make_trip("", "", transaction="Opladen")]
        assert journey_count(trips) == 1
