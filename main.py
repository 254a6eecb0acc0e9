#!/usr/bin/env python3
"""main.py

Build a standalone HTML map of a personal transport-card trip history:
- Routes (origin -> destination lines), weighted by trip count and coloured by
  the product most used on that route.
- Stops (circle markers) sized by check-in/check-out count.
- A side panel with headline stats, a product breakdown and the top routes.
- A "min trips" slider that hides quiet routes and re-weights the rest
  in the browser.

Inputs:
- The card CSV export (Datum, Check in, Check uit, Vertrek, Bestemming,
  Transactie, Product, Kl, Opmerking).
- The stop-coordinate store written by geocode_stops.py.

Dependencies:
  pip install pandas folium

Usage example:
  python3 main.py \
    --trips public/data/trips.csv \
    --coords public/data/stopCoords.json \
    --start 2025-01-01 --product "Bus, Tram en Metro reizen" \
    --out map.html

Notes:
- Filters are applied before rendering; re-run with other flags for another view.
- Stops without coordinates are left off the map and listed after the run.
"""

from __future__ import annotations

import argparse
import datetime as dt
import html
import json
from typing import Dict, List, Optional, Sequence

import folium
from folium import Element

from trips import (
    DataLoadError,
    FilterState,
    RouteStats,
    TripAnalytics,
    aggregate,
    dominant_product,
    journey_count,
    load_stop_coords,
    load_trip_rows,
    observed_date_range,
    observed_products,
    route_weight,
    stop_radius,
    trips_from_rows,
    visible_routes,
)

PRODUCT_COLORS: Dict[str, str] = {
    "Reizen op Rekening Trein": "#0f766e",
    "Treinreizen": "#1f8a70",
    "Bus, Tram en Metro reizen": "#e76f51",
    "Intercity Direct Toeslag": "#a44a3f",
    "Klanten Service": "#6b7280",
}

PRODUCT_LABELS: Dict[str, str] = {
    "Reizen op Rekening Trein": "Train (rekening)",
    "Treinreizen": "Train (ticket)",
    "Bus, Tram en Metro reizen": "Bus/Tram/Metro",
    "Intercity Direct Toeslag": "Intercity Direct",
    "Klanten Service": "Service",
}

ROUTE_FALLBACK_COLOR = "#0f766e"
CHIP_FALLBACK_COLOR = "#94a3b8"

DEFAULT_CENTER = (52.3729, 4.8936)
DEFAULT_ZOOM = 10

MAP_STYLES: Dict[str, Dict[str, str]] = {
    "standard": {
        "name": "Standard",
        "url": "https://{s}.tile.openstreetmap.org/{z}/{x}/{y}.png",
        "attribution": "&copy; OpenStreetMap contributors",
    },
    "voyager": {
        "name": "Voyager",
        "url": "https://{s}.basemaps.cartocdn.com/rastertiles/voyager/{z}/{x}/{y}{r}.png",
        "attribution": "&copy; OpenStreetMap &copy; CARTO",
    },
    "light": {
        "name": "Positron",
        "url": "https://{s}.basemaps.cartocdn.com/light_all/{z}/{x}/{y}{r}.png",
        "attribution": "&copy; OpenStreetMap &copy; CARTO",
    },
    "dark": {
        "name": "Dark Matter",
        "url": "https://{s}.basemaps.cartocdn.com/dark_all/{z}/{x}/{y}{r}.png",
        "attribution": "&copy; OpenStreetMap &copy; CARTO",
    },
    "satellite": {
        "name": "Satellite",
        "url": "https://server.arcgisonline.com/ArcGIS/rest/services/World_Imagery/MapServer/tile/{z}/{y}/{x}",
        "attribution": (
            "Tiles &copy; Esri &mdash; Source: Esri, i-cubed, USDA, USGS, AEX, GeoEye, Getmapping, "
            "Aerogrid, IGN, IGP, UPR-EBP, and the GIS User Community"
        ),
    },
}

DUTCH_MONTHS = ("jan.", "feb.", "mrt.", "apr.", "mei", "jun.", "jul.", "aug.", "sep.", "okt.", "nov.", "dec.")

TOP_N = 5


# ----------------------------
# Formatting helpers
# ----------------------------

def product_color(product: Optional[str], fallback: str = ROUTE_FALLBACK_COLOR) -> str:
    return PRODUCT_COLORS.get(product or "", fallback)


def product_label(product: str) -> str:
    return PRODUCT_LABELS.get(product, product)


def format_date(d: Optional[dt.date]) -> str:
    """Short Dutch date, e.g. '21 sep. 2024'."""
    if d is None:
        return "-"
    return f"{d.day:02d} {DUTCH_MONTHS[d.month - 1]} {d.year}"


def parse_input_date(value: str) -> dt.date:
    try:
        return dt.date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {value!r}")


def route_tooltip(route: RouteStats) -> str:
    return f"{route.origin} -> {route.destination} - {route.count} trips"


# ----------------------------
# Map layers
# ----------------------------

def add_route_layer(m: folium.Map, routes: List[RouteStats], min_count: int, show: bool) -> List[dict]:
    """Draw every route; routes under the threshold start hidden.

    Returns the per-route records the slider script needs.
    """
    fg_routes = folium.FeatureGroup(name="Routes", show=show)
    shown = visible_routes(routes, min_count)
    visible_max = max((r.count for r in shown), default=1)
    threshold = max(1, int(min_count))

    route_js: List[dict] = []
    for route in routes:
        is_visible = route.count >= threshold
        poly = folium.PolyLine(
            locations=[
                (float(route.origin_coord["lat"]), float(route.origin_coord["lng"])),
                (float(route.destination_coord["lat"]), float(route.destination_coord["lng"])),
            ],
            pane="routesPane",
            color=product_color(dominant_product(route)),
            weight=route_weight(route.count, visible_max) if is_visible else 0,
            opacity=0.65 if is_visible else 0.0,
            tooltip=folium.Tooltip(html.escape(route_tooltip(route)), sticky=True),
        )
        poly.add_to(fg_routes)
        route_js.append({
            "refName": poly.get_name(),
            "count": route.count,
            "origin": route.origin,
            "destination": route.destination,
            "chip": product_color(dominant_product(route), CHIP_FALLBACK_COLOR),
        })

    fg_routes.add_to(m)
    return route_js


def add_stop_layer(m: folium.Map, analytics: TripAnalytics) -> None:
    fg_stops = folium.FeatureGroup(name="Stops", show=True)
    max_stop_count = max((s.count for s in analytics.stops), default=1)

    for stop in analytics.stops:
        if not stop.coord:
            continue
        popup_html = (
            f"<strong>{html.escape(stop.name)}</strong>"
            f"<div>{stop.count} check-ins</div>"
        )
        folium.CircleMarker(
            location=[float(stop.coord["lat"]), float(stop.coord["lng"])],
            radius=stop_radius(stop.count, max_stop_count),
            pane="stopsPane",
            color="#0f766e",
            weight=1,
            fill=True,
            fill_color="#e76f51",
            fill_opacity=0.65,
            tooltip=html.escape(stop.name),
            popup=folium.Popup(popup_html, max_width=300),
        ).add_to(fg_stops)

    fg_stops.add_to(m)


def stop_bounds(analytics: TripAnalytics) -> Optional[List[List[float]]]:
    pts = [(float(s.coord["lat"]), float(s.coord["lng"])) for s in analytics.stops if s.coord]
    if not pts:
        return None
    lats = [p[0] for p in pts]
    lngs = [p[1] for p in pts]
    return [[min(lats), min(lngs)], [max(lats), max(lngs)]]


# ----------------------------
# Side panel + slider
# ----------------------------

def side_panel_html(
    analytics: TripAnalytics,
    min_count: int,
    date_span: str,
    max_route_count: int,
) -> str:
    shown = visible_routes(analytics.routes, min_count)
    trip_count = journey_count(analytics.trips)
    filtered_count = len(analytics.trips)
    unique_stops = len(analytics.stops)

    bars = []
    for product in analytics.products[:TOP_N]:
        pct = (product.count / filtered_count * 100.0) if filtered_count else 0.0
        bars.append(
            f"""
        <div style="margin-top:6px;">
          <div style="display:flex; justify-content:space-between;">
            <span>{html.escape(product_label(product.name))}</span><strong>{product.count}</strong>
          </div>
          <div style="height:6px; border-radius:4px; background:#e5e7eb;">
            <div style="height:6px; border-radius:4px; width:{pct:.1f}%; background:{product_color(product.name, CHIP_FALLBACK_COLOR)};"></div>
          </div>
        </div>"""
        )

    top_routes = []
    for route in shown[:TOP_N]:
        color = product_color(dominant_product(route), CHIP_FALLBACK_COLOR)
        top_routes.append(
            f"""
        <div style="display:flex; justify-content:space-between; align-items:center; gap:8px; margin-top:6px;">
          <div>
            <div style="font-weight:600;">{html.escape(route.origin)} &rarr; {html.escape(route.destination)}</div>
            <div style="color:#555;">{route.count} trips</div>
          </div>
          <span style="width:10px; height:10px; border-radius:50%; background:{color};"></span>
        </div>"""
        )

    slider_max = max(1, max_route_count)
    slider_value = min(max(1, int(min_count)), slider_max)

    return f"""
    <div id="__travelPanel" style="
      position: fixed; top: 12px; left: 12px; z-index: 9999;
      width: 300px; max-height: calc(100vh - 40px); overflow: auto;
      background: rgba(255,255,255,0.94); padding: 10px 12px; border-radius: 10px;
      box-shadow: 0 2px 10px rgba(0,0,0,0.12);
      font: 12px/1.35 system-ui, -apple-system, Segoe UI, Roboto, sans-serif;">
      <div style="font-size:18px; font-weight:700;">Travel Lines</div>
      <div style="color:#555;">{trip_count} trips / {unique_stops} stops</div>
      <div style="color:#555; margin-top:2px;">{html.escape(date_span)}</div>

      <div style="margin-top:10px; font-weight:700;">Min trips: <span id="__minTripsLabel">{slider_value}</span></div>
      <input id="__minTripsSlider" type="range" min="1" max="{slider_max}" step="1" value="{slider_value}" style="width:100%;" />

      <div style="margin-top:10px; font-weight:700;">Breakdown</div>
      {''.join(bars) or '<div style="color:#555;">No trips match.</div>'}

      <div style="margin-top:10px; font-weight:700;">Top routes</div>
      <div id="__topRoutes">{''.join(top_routes) or '<div style="color:#555;">No routes.</div>'}</div>

      <div style="margin-top:10px; display:grid; grid-template-columns: 1fr auto; gap:4px 10px;">
        <div>Total trips</div><div style="font-weight:700; text-align:right;">{trip_count}</div>
        <div>Unique stops</div><div style="font-weight:700; text-align:right;">{unique_stops}</div>
        <div>Routes</div><div id="__routesShown" style="font-weight:700; text-align:right;">{len(shown)}</div>
      </div>
    </div>
    """


def add_min_trips_slider_js(m: folium.Map, route_js: List[dict]) -> None:
    """Client-side threshold: hide routes under it, re-weight the rest."""
    m.get_root().html.add_child(Element(
        f"<script>window.__routeData = {json.dumps(route_js)}; window.__topRoutesLimit = {TOP_N};</script>"
    ))
    js = """
<script>
(function() {
  function renderTopRoutes(visible) {
    const box = document.getElementById('__topRoutes');
    if (!box) return;
    box.innerHTML = '';
    const top = visible.slice(0, window.__topRoutesLimit || 5);
    if (!top.length) {
      const empty = document.createElement('div');
      empty.style.color = '#555';
      empty.textContent = 'No routes.';
      box.appendChild(empty);
      return;
    }
    for (const r of top) {
      const row = document.createElement('div');
      row.style.cssText = 'display:flex; justify-content:space-between; align-items:center; gap:8px; margin-top:6px;';
      const text = document.createElement('div');
      const name = document.createElement('div');
      name.style.fontWeight = '600';
      name.textContent = r.origin + ' \u2192 ' + r.destination;
      const count = document.createElement('div');
      count.style.color = '#555';
      count.textContent = r.count + ' trips';
      text.appendChild(name);
      text.appendChild(count);
      const chip = document.createElement('span');
      chip.style.cssText = 'width:10px; height:10px; border-radius:50%; background:' + r.chip + ';';
      row.appendChild(text);
      row.appendChild(chip);
      box.appendChild(row);
    }
  }

  function applyThreshold(minTrips) {
    const data = window.__routeData || [];
    let visibleMax = 1;
    let shown = 0;
    for (const r of data) {
      if (r.count >= minTrips) {
        shown++;
        if (r.count > visibleMax) visibleMax = r.count;
      }
    }
    for (const r of data) {
      const poly = window[r.refName];
      if (!poly || !poly.setStyle) continue;
      if (r.count >= minTrips) {
        poly.setStyle({ weight: 1.5 + (r.count / visibleMax) * 5, opacity: 0.65 });
      } else {
        poly.setStyle({ weight: 0, opacity: 0.0 });
      }
    }
    const lbl = document.getElementById('__minTripsLabel');
    if (lbl) lbl.textContent = String(minTrips);
    const cnt = document.getElementById('__routesShown');
    if (cnt) cnt.textContent = String(shown);
    renderTopRoutes(data.filter(function(r) { return r.count >= minTrips; }));
  }

  document.addEventListener('DOMContentLoaded', function() {
    const slider = document.getElementById('__minTripsSlider');
    if (!slider) return;
    slider.addEventListener('input', function() {
      applyThreshold(Math.max(1, parseInt(slider.value, 10) || 1));
    });
  });
})();
</script>
"""
    m.get_root().html.add_child(Element(js))


def build_map(
    analytics: TripAnalytics,
    min_route_count: int = 1,
    show_routes: bool = True,
    map_style: str = "voyager",
    date_span: str = "-",
) -> folium.Map:
    if map_style not in MAP_STYLES:
        raise ValueError(f"Unknown map style {map_style!r}; choose from {', '.join(MAP_STYLES)}")
    style = MAP_STYLES[map_style]

    m = folium.Map(
        location=list(DEFAULT_CENTER),
        zoom_start=DEFAULT_ZOOM,
        control_scale=True,
        zoom_control=False,
        tiles=None,
    )
    folium.TileLayer(tiles=style["url"], attr=style["attribution"], name=style["name"]).add_to(m)

    # Explicit layer stack (bottom -> top): routes, stops.
    folium.map.CustomPane("routesPane", z_index=420).add_to(m)
    folium.map.CustomPane("stopsPane", z_index=430).add_to(m)

    route_js = add_route_layer(m, analytics.routes, min_route_count, show=show_routes)
    add_stop_layer(m, analytics)

    bounds = stop_bounds(analytics)
    if bounds:
        m.fit_bounds(bounds, padding=(50, 50))

    max_route_count = max((r.count for r in analytics.routes), default=1)
    m.get_root().html.add_child(Element(side_panel_html(analytics, min_route_count, date_span, max_route_count)))
    add_min_trips_slider_js(m, route_js)

    folium.LayerControl(collapsed=True).add_to(m)
    return m


# ----------------------------
# CLI
# ----------------------------

def build_filter_state(args: argparse.Namespace) -> FilterState:
    products = None
    if args.no_products:
        products = set()
    elif args.product:
        products = set(args.product)
    return FilterState(
        include_non_journeys=bool(args.include_non_trips),
        products=products,
        date_start=args.start,
        date_end=args.end,
        search=args.search or "",
        min_route_count=max(1, int(args.min_trips)),
    )


def main(argv: Optional[Sequence[str]] = None) -> None:
    ap = argparse.ArgumentParser(description="Interactive map of a transport-card trip history.")
    ap.add_argument("--trips", default="public/data/trips.csv", help="Transport-card CSV export")
    ap.add_argument("--coords", default="public/data/stopCoords.json", help="Stop-coordinate store from geocode_stops.py")
    ap.add_argument("--out", default="map.html", help="Output HTML filename")

    ap.add_argument("--include-non-trips", action="store_true", help="Also count non-journey transactions (top-ups, service)")
    ap.add_argument(
        "--product",
        action="append",
        default=None,
        help="Only include this product (repeatable). Default: every product in the data",
    )
    ap.add_argument("--no-products", action="store_true", help="Deselect every product (renders an empty map)")
    ap.add_argument("--start", type=parse_input_date, default=None, help="First date to include (YYYY-MM-DD)")
    ap.add_argument("--end", type=parse_input_date, default=None, help="Last date to include (YYYY-MM-DD)")
    ap.add_argument("--search", default="", help="Only trips whose origin/destination contains this text")
    ap.add_argument("--min-trips", type=int, default=1, help="Initial min trips per route to draw (slider in the map)")

    ap.add_argument("--hide-routes", action="store_true", help="Start with the routes layer switched off")
    ap.add_argument("--map-style", default="voyager", choices=sorted(MAP_STYLES), help="Base map tiles")

    args = ap.parse_args(argv)

    # Either source failing means no map at all.
    try:
        rows = load_trip_rows(args.trips)
        coords = load_stop_coords(args.coords)
    except DataLoadError as e:
        raise SystemExit(str(e))

    trips = trips_from_rows(rows)
    state = build_filter_state(args)
    analytics = aggregate(trips, coords, state)

    data_min, data_max = observed_date_range(trips)
    date_span = f"{format_date(data_min)} to {format_date(data_max)}" if data_min and data_max else "-"

    m = build_map(
        analytics,
        min_route_count=state.min_route_count,
        show_routes=not args.hide_routes,
        map_style=args.map_style,
        date_span=date_span,
    )
    m.save(args.out)

    shown = visible_routes(analytics.routes, state.min_route_count)
    print(f"Wrote: {args.out}")
    print(
        f"Trips: {journey_count(analytics.trips):,} | Filtered rows: {len(analytics.trips):,} | "
        f"Stops: {len(analytics.stops):,} | Routes: {len(shown):,} of {len(analytics.routes):,}"
    )
    print(f"Products in data: {', '.join(observed_products(trips)) or '-'}")
    if analytics.missing:
        print(f"Stops without coordinates ({len(analytics.missing)}): {', '.join(analytics.missing)}")


if __name__ == "__main__":
    main()
