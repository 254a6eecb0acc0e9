"""trips.py

Turn a transport-card CSV export (OV-chipkaart style) into trip records and
aggregate them into per-route, per-stop and per-product statistics.

Everything here is a pure function of its inputs: the map builder in
``main.py`` recomputes the aggregates from scratch for a given filter state.

Expected CSV columns:
  Datum (DD-MM-YYYY), Check in, Check uit, Vertrek, Bestemming,
  Transactie ("Reis" = journey), Product, Kl, Opmerking
"""

from __future__ import annotations

import datetime as dt
import json
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Tuple

import pandas as pd

JOURNEY_TRANSACTION = "Reis"

CSV_COLUMNS = (
    "Datum",
    "Check in",
    "Check uit",
    "Vertrek",
    "Bestemming",
    "Transactie",
    "Product",
    "Kl",
    "Opmerking",
)

MIN_ROUTE_WEIGHT = 1.5
ROUTE_WEIGHT_SPAN = 5.0
MIN_STOP_RADIUS = 4.0
STOP_RADIUS_SPAN = 8.0


class DataLoadError(Exception):
    """Raised when the trip CSV or the stop-coordinate store cannot be loaded."""


# ----------------------------
# Records
# ----------------------------

@dataclass(frozen=True)
class Trip:
    id: str
    date: dt.date
    date_label: str
    check_in: str
    check_out: str
    origin: str
    destination: str
    transaction: str
    product: str
    fare_class: str
    note: str

    @property
    def is_journey(self) -> bool:
        return self.transaction == JOURNEY_TRANSACTION


@dataclass
class RouteStats:
    origin: str
    destination: str
    origin_coord: dict
    destination_coord: dict
    count: int = 0
    products: Dict[str, int] = field(default_factory=dict)
    dates: List[dt.date] = field(default_factory=list)


@dataclass
class StopStats:
    name: str
    count: int
    coord: Optional[dict]


@dataclass
class ProductStats:
    name: str
    count: int


@dataclass
class TripAnalytics:
    trips: List[Trip]
    routes: List[RouteStats]
    stops: List[StopStats]
    products: List[ProductStats]
    missing: List[str]


@dataclass
class FilterState:
    """Filter toggles for the map.

    ``products=None`` accepts every product observed in the data, an empty set
    accepts nothing. ``date_start``/``date_end`` of None leave that side of the
    range open, which is the same as the full observed span.
    """

    include_non_journeys: bool = False
    products: Optional[Set[str]] = None
    date_start: Optional[dt.date] = None
    date_end: Optional[dt.date] = None
    search: str = ""
    min_route_count: int = 1


# ----------------------------
# Loading
# ----------------------------

def parse_date(value: Optional[str]) -> Optional[dt.date]:
    """Parse ``DD-MM-YYYY``; anything else (including 00 parts) gives None."""
    if not value:
        return None
    parts = str(value).strip().split("-")
    if len(parts) != 3:
        return None
    try:
        day, month, year = (int(p) for p in parts)
        return dt.date(year, month, day)
    except ValueError:
        return None


def load_trip_rows(csv_path: str) -> List[Dict[str, str]]:
    """Read the card export as a list of column -> string dicts."""
    try:
        df = pd.read_csv(
            csv_path,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
            index_col=False,
        )
    except (OSError, ValueError) as e:
        raise DataLoadError(f"Failed to load trips CSV {csv_path}: {e}") from e

    missing_cols = [c for c in ("Datum", "Vertrek", "Bestemming", "Transactie", "Product") if c not in df.columns]
    if missing_cols:
        raise DataLoadError(f"Trips CSV {csv_path} is missing columns: {', '.join(missing_cols)}")

    return df.to_dict("records")


def load_stop_coords(path: str) -> Dict[str, dict]:
    """Read the ``stops`` mapping (name -> {lat, lng, ...}) of a stop store."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        raise DataLoadError(f"Failed to load stop coordinates {path}: {e}") from e

    stops = data.get("stops") if isinstance(data, dict) else None
    if stops is not None and not isinstance(stops, dict):
        raise DataLoadError(f"Stop coordinates {path}: 'stops' is not a mapping")

    out: Dict[str, dict] = {}
    for name, entry in (stops or {}).items():
        try:
            float(entry["lat"])
            float(entry["lng"])
        except (KeyError, TypeError, ValueError) as e:
            raise DataLoadError(f"Stop coordinates {path}: bad entry for {name!r}: {e!r}") from e
        out[name] = entry
    return out


def trips_from_rows(rows: Iterable[Dict[str, str]]) -> List[Trip]:
    """Build trips from CSV rows, dropping rows without a usable date."""
    out: List[Trip] = []
    for index, row in enumerate(rows):
        date = parse_date(row.get("Datum"))
        if date is None:
            continue
        out.append(
            Trip(
                id=f"{row.get('Datum', '')}-{row.get('Check in', '')}-{index}",
                date=date,
                date_label=row.get("Datum", ""),
                check_in=row.get("Check in", ""),
                check_out=row.get("Check uit", ""),
                origin=row.get("Vertrek") or "",
                destination=row.get("Bestemming") or "",
                transaction=row.get("Transactie", ""),
                product=row.get("Product", ""),
                fare_class=row.get("Kl", ""),
                note=row.get("Opmerking") or "",
            )
        )
    return out


def _name_key(name: str) -> Tuple[str, str]:
    return name.casefold(), name


def observed_products(trips: Iterable[Trip]) -> List[str]:
    return sorted({t.product for t in trips if t.product}, key=_name_key)


def observed_date_range(trips: List[Trip]) -> Tuple[Optional[dt.date], Optional[dt.date]]:
    if not trips:
        return None, None
    dates = [t.date for t in trips]
    return min(dates), max(dates)


# ----------------------------
# Filtering + aggregation
# ----------------------------

def trip_passes(trip: Trip, state: FilterState, query: str) -> bool:
    if not state.include_non_journeys and not trip.is_journey:
        return False
    if state.products is not None and trip.product not in state.products:
        return False
    if state.date_start and trip.date < state.date_start:
        return False
    if state.date_end and trip.date > state.date_end:
        return False
    if query and query not in f"{trip.origin} {trip.destination}".lower():
        return False
    return True


def filter_trips(trips: Iterable[Trip], state: FilterState) -> List[Trip]:
    query = (state.search or "").strip().lower()
    return [t for t in trips if trip_passes(t, state, query)]


def aggregate(trips: Iterable[Trip], coords: Dict[str, dict], state: FilterState) -> TripAnalytics:
    """Filter trips and compute route, stop and product statistics.

    Products count every filtered trip. Routes and stops only count journeys
    with both endpoints named and both endpoints geocoded; an endpoint without
    coordinates lands in ``missing`` and the trip adds nothing to routes or
    stops. Routes are keyed by (origin, destination), so A->B and B->A are
    separate.
    """
    filtered = filter_trips(trips, state)

    route_map: Dict[Tuple[str, str], RouteStats] = {}
    stop_counts: Dict[str, int] = {}
    product_counts: Dict[str, int] = {}
    missing: Set[str] = set()

    for trip in filtered:
        product_counts[trip.product] = product_counts.get(trip.product, 0) + 1

        if not trip.is_journey:
            continue
        if not trip.origin or not trip.destination:
            continue

        from_coord = coords.get(trip.origin)
        to_coord = coords.get(trip.destination)
        if not from_coord:
            missing.add(trip.origin)
        if not to_coord:
            missing.add(trip.destination)
        if not from_coord or not to_coord:
            continue

        key = (trip.origin, trip.destination)
        route = route_map.get(key)
        if route is None:
            route = RouteStats(
                origin=trip.origin,
                destination=trip.destination,
                origin_coord=from_coord,
                destination_coord=to_coord,
            )
            route_map[key] = route
        route.count += 1
        route.products[trip.product] = route.products.get(trip.product, 0) + 1
        route.dates.append(trip.date)

        stop_counts[trip.origin] = stop_counts.get(trip.origin, 0) + 1
        stop_counts[trip.destination] = stop_counts.get(trip.destination, 0) + 1

    # sorted() is stable: ties keep first-seen order
    routes = sorted(route_map.values(), key=lambda r: -r.count)
    stops = sorted(
        (StopStats(name=name, count=count, coord=coords.get(name)) for name, count in stop_counts.items()),
        key=lambda s: -s.count,
    )
    products = sorted(
        (ProductStats(name=name, count=count) for name, count in product_counts.items()),
        key=lambda p: -p.count,
    )

    return TripAnalytics(
        trips=filtered,
        routes=routes,
        stops=stops,
        products=products,
        missing=sorted(missing, key=_name_key),
    )


# ----------------------------
# Display helpers
# ----------------------------

def visible_routes(routes: List[RouteStats], min_count: int) -> List[RouteStats]:
    threshold = max(1, int(min_count))
    return [r for r in routes if r.count >= threshold]


def route_weight(count: int, visible_max: int) -> float:
    """Line weight, scaled against the busiest route currently shown."""
    return MIN_ROUTE_WEIGHT + (count / max(1, visible_max)) * ROUTE_WEIGHT_SPAN


def stop_radius(count: int, max_count: int) -> float:
    return MIN_STOP_RADIUS + (count / max(1, max_count)) * STOP_RADIUS_SPAN


def dominant_product(route: RouteStats) -> Optional[str]:
    """Most frequent product on a route; ties go to the first one seen."""
    if not route.products:
        return None
    return max(route.products.items(), key=lambda kv: kv[1])[0]


def journey_count(trips: Iterable[Trip]) -> int:
    return sum(1 for t in trips if t.is_journey)
