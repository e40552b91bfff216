import argparse
from collections.abc import Sequence
import json
from pathlib import Path
import sys
from typing import Any

from busmap.config import MapSettings
from busmap.errors import ConfigError, InvalidSegmentError
from busmap.logging import configure_logging, get_logger
from busmap.map.export import export_geojson, render_static_preview
from busmap.map.layers import legend_entries
from busmap.map.osrm import GeometryBatch, fetch_route_shapes_sync
from busmap.map.surface import RouteMapController
from busmap.models import Coordinate, parse_clock, parse_segments
from busmap.steps import generate_steps, summarize_steps


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="busmap", description="Render a bus itinerary on an interactive map.")
    parser.add_argument("route", type=Path, help="Route JSON with 'segments' and optional 'origin'/'destination'")
    parser.add_argument("-o", "--output", type=Path, default=Path("route_map.html"), help="HTML map to write")
    parser.add_argument("--png", type=Path, help="Also write a static PNG preview")
    parser.add_argument("--basemap", action="store_true", help="Draw map tiles under the PNG preview")
    parser.add_argument("--geojson", type=Path, help="Also write the route layers as GeoJSON")
    parser.add_argument("--config", type=Path, help="JSON file overriding MapSettings fields")
    parser.add_argument("--departure", help="Departure time (HH:MM:SS) for the step list")
    parser.add_argument("--no-routing", action="store_true", help="Skip the routing service, draw straight lines")
    return parser


def load_route(route_file: Path) -> dict[str, Any]:
    """Read and validate a route payload.

    Args:
        route_file: JSON file as returned by the trip-planning backend

    Returns:
        Dict with ``segments``, ``origin`` and ``destination`` parsed

    Raises:
        InvalidSegmentError: If the file is unreadable or malformed
    """
    try:
        data: Any = json.loads(route_file.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise InvalidSegmentError(f"cannot read {route_file}: {e}", "route") from e

    if isinstance(data, list):
        data = {"segments": data}
    if not isinstance(data, dict) or not isinstance(data.get("segments"), list):
        raise InvalidSegmentError("expected a list of segments", "segments")

    origin = Coordinate.from_mapping(data["origin"], "origin") if data.get("origin") else None
    destination = Coordinate.from_mapping(data["destination"], "destination") if data.get("destination") else None
    return {
        "segments": parse_segments(data["segments"]),
        "origin": origin,
        "destination": destination,
    }


def run(args: argparse.Namespace) -> int:
    logger = get_logger(__name__)

    settings = MapSettings.from_json(args.config) if args.config else MapSettings()
    configure_logging(level=settings.log_level, format_json=settings.log_json)

    route = load_route(args.route)
    departure = parse_clock(args.departure, "departure") if args.departure else None
    segments = route["segments"]
    logger.info("Loaded route", path=str(args.route), segments=len(segments))

    if args.no_routing:
        batch = GeometryBatch(geometries=[segment.straight_line() for segment in segments])
    else:
        batch = fetch_route_shapes_sync(segments, settings=settings)
    if batch.advisory:
        logger.warning(batch.advisory, fallback_segments=batch.fallback_indices)

    controller = RouteMapController(settings=settings)
    controller.mount()
    route_layers = controller.show_route(
        segments, batch.geometries, origin=route["origin"], destination=route["destination"]
    )
    controller.save(args.output)

    if route_layers is not None:
        if args.geojson:
            export_geojson(route_layers.layers, args.geojson)
        if args.png:
            render_static_preview(route_layers.layers, args.png, basemap=args.basemap)

    steps = generate_steps(segments, route["origin"], route["destination"], departure)
    summary = summarize_steps(steps)
    for number, step in enumerate(steps, 1):
        logger.info(
            "Step",
            number=number,
            title=step.title,
            departure=step.departure_time,
            arrival=step.arrival_time,
            duration_min=step.duration_min,
        )
    logger.info(
        "Route summary",
        duration_min=summary.duration_min,
        distance_km=summary.distance_km,
        cost=summary.cost,
        transfers=summary.transfers,
        legend=[entry.label for entry in legend_entries(segments)],
    )
    controller.dispose()
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Command line entry point."""
    logger = get_logger(__name__)
    args = _build_parser().parse_args(argv)
    try:
        return run(args)
    except ConfigError as e:
        logger.error("Invalid configuration", error=str(e))
    except InvalidSegmentError as e:
        logger.error("Invalid route data", error=str(e), field=e.field)
    return 1


if __name__ == "__main__":
    sys.exit(main())
