"""Pure construction of map layer descriptors from journey segments.

Nothing here touches folium: the surface controller turns these descriptors
into map objects, which keeps colouring, deduplication and popup text
testable on their own.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from html import escape
import math

from busmap.geo import bearing_deg, haversine_m
from busmap.models import Coordinate, RouteGeometry, Segment

WALK_COLOR = "#ffd97d"
HALO_COLOR = "#ffffff"
ORIGIN_COLOR = "#22c55e"
DESTINATION_COLOR = "#dc2626"
STOP_COLOR = "#f97316"

ARROW_POSITIONS: tuple[float, ...] = (0.25, 0.5, 0.75)
DESTINATION_DEDUPE_M = 100.0

# Hand-picked colours for the busiest lines
BUS_LINE_COLORS: dict[str, str] = {
    "16": "#e74c3c",
    "29": "#3498db",
    "21B": "#2ecc71",
    "32": "#f39c12",
    "103": "#9b59b6",
    "01": "#1abc9c",
    "02": "#34495e",
    "03": "#e67e22",
    "04": "#8e44ad",
    "05": "#27ae60",
}


class LayerKind(str, Enum):
    ORIGIN = "origin"
    DESTINATION = "destination"
    STOP = "stop"
    TRANSFER = "transfer"
    ARRIVAL = "arrival"
    ARROW = "arrow"
    ROUTE = "route"
    WALK = "walk"
    WALK_HALO = "walk_halo"
    VEHICLE = "vehicle"


@dataclass(frozen=True)
class MarkerLayer:
    kind: LayerKind
    location: tuple[float, float]
    icon_html: str
    icon_size: tuple[int, int]
    icon_anchor: tuple[int, int]
    class_name: str
    popup_html: str | None = None
    stop_id: str | None = None
    stop_name: str | None = None

    @property
    def coordinates(self) -> list[tuple[float, float]]:
        return [self.location]


@dataclass(frozen=True)
class PolylineLayer:
    kind: LayerKind
    locations: list[tuple[float, float]]
    color: str
    weight: int
    opacity: float
    dash_array: str | None = None
    popup_html: str | None = None

    @property
    def coordinates(self) -> list[tuple[float, float]]:
        return list(self.locations)


Layer = MarkerLayer | PolylineLayer


@dataclass
class RouteLayers:
    """Everything drawn for one selected route, in drawing order."""

    layers: list[Layer] = field(default_factory=list)
    stops: dict[str, MarkerLayer] = field(default_factory=dict)

    @property
    def coordinates(self) -> list[tuple[float, float]]:
        return [point for layer in self.layers for point in layer.coordinates]

    def of_kind(self, *kinds: LayerKind) -> list[Layer]:
        return [layer for layer in self.layers if layer.kind in kinds]


@dataclass(frozen=True)
class LegendEntry:
    label: str
    color: str
    dashed: bool = False


def string_hash(value: str) -> int:
    """Java-style ``h * 31 + c`` shift hash over UTF-16 code units.

    The shifted term wraps to 32 bits each step like JavaScript's ``<<``, so
    a name hashes to the same value in the browser and here.
    """
    h = 0
    encoded = value.encode("utf-16-le")
    for i in range(0, len(encoded), 2):
        code = encoded[i] | (encoded[i + 1] << 8)
        h = code + (_to_int32(_to_int32(h) << 5) - h)
    return h


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value >= 0x80000000 else value


def get_bus_line_color(line_name: str) -> str:
    """Stable colour for a bus line name.

    Args:
        line_name: Display name of the line, e.g. "16" or "E01"

    Returns:
        A hex colour for known lines, otherwise an ``hsl(...)`` string derived
        from the name's hash
    """
    if line_name in BUS_LINE_COLORS:
        return BUS_LINE_COLORS[line_name]

    h = abs(string_hash(line_name))
    hue = h % 360
    saturation = 65 + h % 20
    lightness = 45 + h % 15
    return f"hsl({hue}, {saturation}%, {lightness}%)"


def segment_label(segment: Segment) -> str:
    return f"Line {segment.line_name}" if segment.is_bus else "Walking"


def segment_popup(segment: Segment) -> str:
    return (
        '<div style="font-size: 12px;">'
        f"<strong>{escape(segment_label(segment))}</strong><br/>"
        f'<span style="color: #666;">{escape(segment.from_stop.name)} &rarr; {escape(segment.to_stop.name)}</span><br/>'
        f'<span style="color: #666;">Duration: {segment.duration_min} min</span>'
        "</div>"
    )


def _badge_html(background: str, label: str, size: int) -> str:
    font_size = 12 if size >= 24 else 10
    return (
        f'<div style="background: {background}; color: white; border-radius: 50%; '
        f"width: {size}px; height: {size}px; display: flex; align-items: center; "
        f"justify-content: center; font-weight: bold; font-size: {font_size}px; "
        f'border: 2px solid white; box-shadow: 0 2px 4px rgba(0,0,0,0.3);">{label}</div>'
    )


def _badge(
    kind: LayerKind,
    location: tuple[float, float],
    background: str,
    label: str,
    class_name: str,
    popup_html: str,
    size: int = 20,
    stop_id: str | None = None,
    stop_name: str | None = None,
) -> MarkerLayer:
    return MarkerLayer(
        kind=kind,
        location=location,
        icon_html=_badge_html(background, label, size),
        icon_size=(size, size),
        icon_anchor=(size // 2, size // 2),
        class_name=class_name,
        popup_html=popup_html,
        stop_id=stop_id,
        stop_name=stop_name,
    )


def arrow_marker(location: tuple[float, float], bearing: float, color: str) -> MarkerLayer:
    return MarkerLayer(
        kind=LayerKind.ARROW,
        location=location,
        icon_html=(
            f'<div style="transform: rotate({bearing:.1f}deg); color: {color}; font-size: 16px; '
            f'text-shadow: 1px 1px 2px rgba(255,255,255,0.8);">&#9654;</div>'
        ),
        icon_size=(16, 16),
        icon_anchor=(8, 8),
        class_name="arrow-marker",
    )


def vehicle_marker(location: tuple[float, float], bearing: float) -> MarkerLayer:
    """Bus icon for the animation, rotated to face its direction of travel."""
    return MarkerLayer(
        kind=LayerKind.VEHICLE,
        location=location,
        icon_html=(
            f'<div style="transform: rotate({bearing:.1f}deg); font-size: 22px; '
            f'filter: drop-shadow(0 1px 2px rgba(0,0,0,0.4));">&#128652;</div>'
        ),
        icon_size=(28, 28),
        icon_anchor=(14, 14),
        class_name="vehicle-marker",
    )


def direction_arrows(geometry: RouteGeometry, color: str) -> list[MarkerLayer]:
    """Arrows at 25%, 50% and 75% along the point list, facing local bearing."""
    arrows: list[MarkerLayer] = []
    if len(geometry) < 2:
        return arrows
    for position in ARROW_POSITIONS:
        index = math.floor((len(geometry) - 1) * position)
        if index < len(geometry) - 1:
            start, end = geometry[index], geometry[index + 1]
            arrows.append(arrow_marker(start, bearing_deg(start, end), color))
    return arrows


def segment_polylines(segment: Segment, geometry: RouteGeometry) -> list[PolylineLayer]:
    popup = segment_popup(segment)
    if segment.is_bus:
        return [
            PolylineLayer(
                kind=LayerKind.ROUTE,
                locations=list(geometry),
                color=get_bus_line_color(segment.line_name),
                weight=4,
                opacity=0.8,
                popup_html=popup,
            )
        ]
    # White halo underneath keeps the walk line readable over any bus colour
    return [
        PolylineLayer(
            kind=LayerKind.WALK_HALO,
            locations=list(geometry),
            color=HALO_COLOR,
            weight=7,
            opacity=0.8,
            dash_array="8, 6",
        ),
        PolylineLayer(
            kind=LayerKind.WALK,
            locations=list(geometry),
            color=WALK_COLOR,
            weight=5,
            opacity=0.9,
            dash_array="8, 6",
            popup_html=popup,
        ),
    ]


def _stop_popup(name: str, role: str) -> str:
    return f'<strong>{escape(name)}</strong><br/><span style="color: #666;">{role}</span>'


def stop_markers(segments: Sequence[Segment]) -> list[MarkerLayer]:
    """Start, transfer and arrival markers, one per distinct stop location."""
    markers: list[MarkerLayer] = []
    seen: set[str] = set()
    last = len(segments) - 1

    for idx, segment in enumerate(segments):
        if idx == 0:
            key = segment.start.key()
            seen.add(key)
            markers.append(
                _badge(
                    LayerKind.STOP,
                    segment.start.as_tuple(),
                    STOP_COLOR,
                    "&#128652;",
                    "bus-stop-marker",
                    _stop_popup(segment.from_stop.name, "Bus stop"),
                    stop_id=key,
                    stop_name=segment.from_stop.name,
                )
            )

        key = segment.end.key()
        if key in seen:
            continue
        seen.add(key)
        is_last = idx == last
        markers.append(
            _badge(
                LayerKind.ARRIVAL if is_last else LayerKind.TRANSFER,
                segment.end.as_tuple(),
                DESTINATION_COLOR if is_last else STOP_COLOR,
                "B" if is_last else "&#128652;",
                "bus-stop-marker",
                _stop_popup(segment.to_stop.name, "Destination" if is_last else "Bus stop"),
                stop_id=key,
                stop_name=segment.to_stop.name,
            )
        )
    return markers


def build_route_layers(
    segments: Sequence[Segment],
    geometries: Sequence[RouteGeometry],
    origin: Coordinate | None = None,
    destination: Coordinate | None = None,
    destination_dedupe_m: float = DESTINATION_DEDUPE_M,
) -> RouteLayers:
    """Build every layer for a selected route.

    Args:
        segments: Journey segments
        geometries: Geometry per segment, index-aligned with ``segments``
        origin: Where the user starts, drawn as marker "A"
        destination: Where the user is going, drawn as marker "B" unless the
            last stop is already within ``destination_dedupe_m`` metres
        destination_dedupe_m: Distance under which the destination marker is dropped

    Returns:
        Layers in drawing order plus an index of stop markers by stop id
    """
    result = RouteLayers()

    if origin is not None:
        result.layers.append(
            _badge(
                LayerKind.ORIGIN,
                origin.as_tuple(),
                ORIGIN_COLOR,
                "A",
                "origin-marker",
                "<strong>Starting point</strong>",
                size=24,
            )
        )

    for idx, geometry in enumerate(geometries):
        if idx >= len(segments) or not geometry or len(geometry) < 2:
            continue
        segment = segments[idx]
        polylines = segment_polylines(segment, geometry)
        result.layers.extend(polylines)
        if segment.is_bus:
            result.layers.extend(direction_arrows(geometry, polylines[-1].color))

    for marker in stop_markers(segments):
        result.layers.append(marker)
        if marker.stop_id is not None:
            result.stops[marker.stop_id] = marker

    if destination is not None:
        last_stop = segments[-1].end.as_tuple() if segments else None
        if last_stop is None or haversine_m(destination.as_tuple(), last_stop) >= destination_dedupe_m:
            result.layers.append(
                _badge(
                    LayerKind.DESTINATION,
                    destination.as_tuple(),
                    DESTINATION_COLOR,
                    "B",
                    "destination-marker",
                    "<strong>Destination</strong>",
                    size=24,
                )
            )

    return result


def legend_entries(segments: Sequence[Segment]) -> list[LegendEntry]:
    """Legend rows: each bus line once in first-seen order, then walking."""
    entries: list[LegendEntry] = []
    seen: set[str] = set()
    for segment in segments:
        if segment.is_bus and segment.line_name not in seen:
            seen.add(segment.line_name)
            entries.append(LegendEntry(label=segment_label(segment), color=get_bus_line_color(segment.line_name)))
    if any(not segment.is_bus for segment in segments):
        entries.append(LegendEntry(label="Walking", color=WALK_COLOR, dashed=True))
    return entries


def legend_html(entries: Sequence[LegendEntry]) -> str:
    """Fixed bottom-left legend box listing each line with its colour swatch."""
    rows = "".join(
        '<div style="display: flex; align-items: center; margin-top: 4px;">'
        f'<span style="display: inline-block; width: 24px; margin-right: 8px; '
        f'border-top: 4px {"dashed" if entry.dashed else "solid"} {entry.color};"></span>'
        f"{escape(entry.label)}</div>"
        for entry in entries
    )
    return (
        '<div class="route-legend" style="position: fixed; bottom: 30px; left: 30px; z-index: 9999; '
        "background-color: white; border: 2px solid grey; border-radius: 6px; padding: 8px 10px; "
        f'font-size: 13px;"><b>Route</b>{rows}</div>'
    )
