#!/usr/bin/env python3
"""geocode_stops.py

Geocode the stop names found in a transport-card CSV export and write them to
a JSON store the map builder reads:

  {"generatedAt": ..., "stops": {name: {lat, lng, label, query}}, "unmatched": [name, ...]}

Stop names in the export are bare ("Leidseplein", "Station Zuid"), so each
name is turned into a Nominatim query with an ordered rule list: curated
overrides, then names that already carry a locality, then known city sets,
then an Amsterdam fallback.

The run is sequential and resumable. The whole store is rewritten after every
lookup, and names already in ``stops`` or ``unmatched`` are never requested
again, so the script can be killed and restarted at any point.

Usage:
  python3 geocode_stops.py --csv 2024-09-21_2025-12-30.csv --out public/data/stopCoords.json

Nominatim usage policy: at most one request per second, and a User-Agent that
identifies the client.
"""

from __future__ import annotations

import argparse
import dataclasses
import datetime as dt
import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import pandas as pd
import requests

log = logging.getLogger(__name__)

NOMINATIM_URL = "https://nominatim.openstreetmap.org/search"
USER_AGENT = "trains-visualizer/1.0 (local script)"
COUNTRY_CODES = "nl,de,be"
REQUEST_TIMEOUT_S = 10
REQUEST_DELAY_S = 1.1

DEFAULT_CSV = "2024-09-21_2025-12-30.csv"
DEFAULT_OUT = os.path.join("public", "data", "stopCoords.json")

UNKNOWN_STOP = "Onbekend"


# ----------------------------
# Query heuristics
# ----------------------------

OVERRIDES: Dict[str, str] = {
    "1e C. Huygensstraat": "1e Constantijn Huygensstraat, Amsterdam, Netherlands",
    "1e Con. Huygensstraat": "1e Constantijn Huygensstraat, Amsterdam, Netherlands",
    "Burg. Eliasstraat": "Burgemeester Eliasstraat, Amsterdam, Netherlands",
    "Aachen Hbf": "Aachen Hauptbahnhof, Aachen, Germany",
    "Amsterdam, Mosplein": "Mosplein, Amsterdam, Netherlands",
    "Amsterdam, Stenendokweg": "Stenendokweg, Amsterdam, Netherlands",
    "Apeldoorn, De Veenkamp": "De Veenkamp, Apeldoorn, Netherlands",
    "Apeldoorn, Gedenknaald": "Gedenknaald, Apeldoorn, Netherlands",
    "Apeldoorn, Station": "Station Apeldoorn, Apeldoorn, Netherlands",
    "Centraal Station": "Amsterdam Centraal Station, Amsterdam, Netherlands",
    "Centrum": "Centrum, Den Haag, Netherlands",
    "C. van Eesterenlaan": "C. van Eesterenlaan, Amsterdam, Netherlands",
    "Den Helder, Station": "Station Den Helder, Den Helder, Netherlands",
    "Den Helder, Steiger Teso": "Steiger TESO, Den Helder, Netherlands",
    "Frederik Hendrikplnts": "Frederik Hendrikplantsoen, Amsterdam, Netherlands",
    "Heemstede, Stat.Heemstede-Aerd": "Station Heemstede-Aerdenhout, Heemstede, Netherlands",
    "J.P. Heijestraat": "Jan Pieter Heijestraat, Amsterdam, Netherlands",
    "Kievitslaan": "Kievitslaan, Rotterdam, Netherlands",
    "muziekgebouw Bimhuis": "Bimhuis, Amsterdam, Netherlands",
    "Noord": "Amsterdam Noord, Amsterdam, Netherlands",
    "Purmerend, Anne Franklaan": "Anne Franklaan, Purmerend, Netherlands",
    "Purmerend, Churchilllaan": "Churchilllaan, Purmerend, Netherlands",
    "Purmerend, Kelvinstraat": "Kelvinstraat, Purmerend, Netherlands",
    "Purmerend, Station Overwhere": "Station Overwhere, Purmerend, Netherlands",
    "Purmerend, Tramplein": "Tramplein, Purmerend, Netherlands",
    "Purmerend, Veenweidestraat": "Veenweidestraat, Purmerend, Netherlands",
    "Schev.slag/beelden aan Zee": "Beelden aan Zee, Scheveningen, Den Haag, Netherlands",
    "Station Blaak": "Rotterdam Blaak, Rotterdam, Netherlands",
    "Station Hollands Spoor": "Den Haag Hollands Spoor, Den Haag, Netherlands",
    "Station Lelylaan": "Amsterdam Lelylaan, Amsterdam, Netherlands",
    "Station Mariahoeve": "Den Haag Mariahoeve, Den Haag, Netherlands",
    "Station Zuid": "Amsterdam Zuid, Amsterdam, Netherlands",
    "Van der Woertstraat": "Van der Woertstraat, Den Haag, Netherlands",
    "Vogelenzang, Waterleiding": "Waterleiding, Vogelenzang, Netherlands",
    "Zandvoort, Waterleiding/nw. Un": "Waterleiding, Zandvoort, Netherlands",
    "Zandvoort, Zandvoort Centrum": "Zandvoort Centrum, Zandvoort, Netherlands",
}

DEN_HAAG_STOPS = frozenset({
    "Bierkade",
    "Hofzichtlaan",
    "Kievitslaan",
    "Kneuterdijk",
    "Kunstmuseum",
    "Kurhaus",
    "Schev.slag/beelden aan Zee",
    "Statenplein",
    "Vredespaleis",
    "Den Haag HS",
    "Den Haag Centraal",
    "Den Haag Mariahoeve",
    "Station Hollands Spoor",
    "Station Mariahoeve",
    "Centrum",
})

ROTTERDAM_STOPS = frozenset({
    "Kruisplein",
    "Leuvehaven",
    "Nieuwe Haven",
    "Vasteland",
    "Weena",
    "Witte de Withstraat",
    "Woudestein",
    "Museumpark",
    "Rotterdam Centraal",
    "Rotterdam Blaak",
    "Station Blaak",
})

PURMEREND_STOPS = frozenset({
    "Purmerend Overwhere",
    "Purmerend, Anne Franklaan",
    "Purmerend, Churchilllaan",
    "Purmerend, Kelvinstraat",
    "Purmerend, Signaal",
    "Purmerend, Station Overwhere",
    "Purmerend, Tramplein",
    "Purmerend, Veenweidestraat",
})

ZANDVOORT_STOPS = frozenset({
    "Zandvoort, Waterleiding/nw. Un",
    "Zandvoort, Zandvoort Centrum",
    "Zandvoort aan Zee",
})

# Checked in this order; a stop listed twice resolves to the first city.
CITY_STOP_SETS: Tuple[Tuple[str, frozenset], ...] = (
    ("Den Haag", DEN_HAAG_STOPS),
    ("Rotterdam", ROTTERDAM_STOPS),
    ("Purmerend", PURMEREND_STOPS),
    ("Zandvoort", ZANDVOORT_STOPS),
)

CITY_PREFIXES: Tuple[str, ...] = (
    "Amsterdam",
    "Rotterdam",
    "Den Haag",
    "Purmerend",
    "Zaandam",
    "Zandvoort",
    "Apeldoorn",
    "Arnhem",
    "Breda",
    "Delft",
    "Enschede",
    "Haarlem",
    "Heerlen",
    "Maastricht",
    "Nijmegen",
    "Aachen",
    "Alkmaar",
    "Den Helder",
    "Schiphol",
    "Velp",
    "Dieren",
    "Uitgeest",
    "Overveen",
    "Santpoort Noord",
    "Heemstede-Aerdenhout",
    "Zaandijk Zaanse Schans",
    "Mook-Molenhoek",
)

DEFAULT_CITY = "Amsterdam"


def _skip_unknown(name: str) -> Optional[str]:
    if not name or name == UNKNOWN_STOP:
        return ""
    return None


def _override(name: str) -> Optional[str]:
    return OVERRIDES.get(name)


def _has_locality(name: str) -> Optional[str]:
    if "," in name:
        return f"{name}, Netherlands"
    return None


def _city_prefix(name: str) -> Optional[str]:
    if name.startswith(CITY_PREFIXES):
        return f"{name}, Netherlands"
    return None


def _city_member(name: str) -> Optional[str]:
    for city, stops in CITY_STOP_SETS:
        if name in stops:
            return f"{name}, {city}, Netherlands"
    return None


def _fallback(name: str) -> Optional[str]:
    return f"{name}, {DEFAULT_CITY}, Netherlands"


# First rule returning a non-None value wins. An empty string means "no query".
QUERY_RULES: Tuple[Callable[[str], Optional[str]], ...] = (
    _skip_unknown,
    _override,
    _has_locality,
    _city_prefix,
    _city_member,
    _fallback,
)


def guess_query(name: Optional[str]) -> Optional[str]:
    """Best-effort Nominatim query for a stop name, or None for unknown stops."""
    name = name or ""
    for rule in QUERY_RULES:
        query = rule(name)
        if query is not None:
            return query or None
    return None


def read_stop_names(csv_path: str) -> List[str]:
    """Distinct origin/destination names in the export, sorted."""
    df = pd.read_csv(csv_path, dtype=str, keep_default_na=False, skip_blank_lines=True, index_col=False)
    names = set()
    for col in ("Vertrek", "Bestemming"):
        if col not in df.columns:
            raise ValueError(f"CSV {csv_path} has no {col!r} column")
        names.update(v for v in df[col].tolist() if v)
    return sorted(names, key=lambda s: (s.casefold(), s))


# ----------------------------
# Store
# ----------------------------

@dataclass(frozen=True)
class StopStore:
    generated_at: Optional[str] = None
    stops: Dict[str, dict] = field(default_factory=dict)
    unmatched: List[str] = field(default_factory=list)

    def is_classified(self, name: str) -> bool:
        return name in self.stops or name in self.unmatched

    def to_json(self) -> dict:
        return {
            "generatedAt": self.generated_at,
            "stops": self.stops,
            "unmatched": self.unmatched,
        }

    @classmethod
    def from_json(cls, data: dict) -> "StopStore":
        stops = data.get("stops") if isinstance(data.get("stops"), dict) else {}
        unmatched = data.get("unmatched") if isinstance(data.get("unmatched"), list) else []
        # a name geocoded by hand wins over an old unmatched entry
        unmatched = [n for n in unmatched if n not in stops]
        return cls(generated_at=data.get("generatedAt"), stops=dict(stops), unmatched=list(unmatched))


def utc_timestamp() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat().replace("+00:00", "Z")


def load_store(path: str) -> StopStore:
    """Read an existing store; a missing file is an empty store."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        return StopStore()
    if not isinstance(data, dict):
        raise ValueError(f"Stop store {path} is not a JSON object")
    return StopStore.from_json(data)


def write_store(path: str, store: StopStore) -> None:
    """Replace the store on disk atomically."""
    out_dir = os.path.dirname(os.path.abspath(path))
    os.makedirs(out_dir, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(prefix=".stopCoords.", suffix=".tmp", dir=out_dir)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(store.to_json(), f, indent=2, ensure_ascii=False)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.remove(tmp_path)
        except OSError:
            pass
        raise


def record_match(store: StopStore, name: str, entry: dict) -> StopStore:
    stops = dict(store.stops)
    stops[name] = entry
    return dataclasses.replace(store, stops=stops, unmatched=[n for n in store.unmatched if n != name])


def record_unmatched(store: StopStore, name: str) -> StopStore:
    if name in store.unmatched:
        return store
    stops = {k: v for k, v in store.stops.items() if k != name}
    return dataclasses.replace(store, stops=stops, unmatched=store.unmatched + [name])


# ----------------------------
# Nominatim
# ----------------------------

class NominatimGeocoder:
    """Single-result Nominatim search restricted to a few countries."""

    def __init__(
        self,
        user_agent: str = USER_AGENT,
        country_codes: str = COUNTRY_CODES,
        url: str = NOMINATIM_URL,
        timeout: float = REQUEST_TIMEOUT_S,
        session: Optional[requests.Session] = None,
    ):
        if not user_agent:
            raise ValueError("Nominatim requires a User-Agent identifying the client")
        self.user_agent = user_agent
        self.country_codes = country_codes
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def search(self, query: str) -> Optional[dict]:
        """Return {lat, lng, label, query} for the best match, or None.

        Raises requests.RequestException on transport errors and non-2xx
        responses.
        """
        response = self.session.get(
            self.url,
            params={
                "format": "jsonv2",
                "limit": 1,
                "addressdetails": 1,
                "q": query,
                "countrycodes": self.country_codes,
            },
            headers={"User-Agent": self.user_agent},
            timeout=self.timeout,
        )
        response.raise_for_status()

        results = response.json()
        if not results:
            return None

        match = results[0]
        return {
            "lat": float(match["lat"]),
            "lng": float(match["lon"]),
            "label": match.get("display_name", ""),
            "query": query,
        }


# ----------------------------
# Resolver loop
# ----------------------------

def resolve_stops(
    names: Iterable[str],
    store: StopStore,
    out_path: str,
    geocoder,
    delay_s: float = REQUEST_DELAY_S,
    sleep: Optional[Callable[[float], None]] = None,
) -> StopStore:
    """Geocode every name not yet classified, one request at a time.

    The store is written after each lookup, before the pause, so an
    interrupted run resumes where it stopped.
    """
    sleep = sleep or time.sleep
    store = dataclasses.replace(store, generated_at=utc_timestamp())

    for name in names:
        if store.is_classified(name):
            continue
        query = guess_query(name)
        if not query:
            continue

        try:
            result = geocoder.search(query)
        except (requests.RequestException, ValueError, KeyError, TypeError) as e:
            log.error("Lookup failed for %r (%s): %s", name, query, e)
            result = None
        else:
            if result is None:
                log.warning("No match for %r (%s)", name, query)

        if result is None:
            store = record_unmatched(store, name)
        else:
            log.info("%s -> (%.5f, %.5f) %s", name, result["lat"], result["lng"], result["label"])
            store = record_match(store, name, result)

        write_store(out_path, store)
        sleep(delay_s)

    write_store(out_path, store)
    return store


def main(argv: Optional[List[str]] = None) -> None:
    ap = argparse.ArgumentParser(description="Geocode stop names from a transport-card CSV export via Nominatim.")
    ap.add_argument("--csv", default=DEFAULT_CSV, help="Transport-card CSV export (needs Vertrek/Bestemming columns)")
    ap.add_argument("--out", default=DEFAULT_OUT, help="Stop-coordinate JSON store (read to resume, rewritten per stop)")
    ap.add_argument("--delay", type=float, default=REQUEST_DELAY_S, help="Seconds to wait between requests (Nominatim allows 1/s)")
    ap.add_argument("--user-agent", default=USER_AGENT, help="User-Agent header sent with every request")
    ap.add_argument("--country-codes", default=COUNTRY_CODES, help="Comma-separated ISO country codes to search in")
    ap.add_argument(
        "--retry-unmatched",
        action="store_true",
        help="Forget the unmatched list before running, e.g. after adding overrides",
    )
    ap.add_argument("--dry-run", action="store_true", help="Print the query guessed for each new stop; no requests")
    args = ap.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    try:
        names = read_stop_names(args.csv)
        store = load_store(args.out)
    except (OSError, ValueError) as e:
        raise SystemExit(str(e))

    if args.retry_unmatched and store.unmatched:
        log.info("Retrying %d previously unmatched stops", len(store.unmatched))
        store = dataclasses.replace(store, unmatched=[])

    if args.dry_run:
        for name in names:
            if store.is_classified(name):
                continue
            print(f"{name} -> {guess_query(name) or '(skipped)'}")
        return

    geocoder = NominatimGeocoder(user_agent=args.user_agent, country_codes=args.country_codes)
    store = resolve_stops(names, store, args.out, geocoder, delay_s=args.delay)

    print(f"Geocoded {len(store.stops)} stops.")
    if store.unmatched:
        print("Unmatched stops:", ", ".join(store.unmatched))


if __name__ == "__main__":
    main()
