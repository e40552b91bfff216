"""The map surface: one long-lived folium map plus the layers drawn on it.

Lifecycle is Uninitialized -> Ready -> Disposed. ``mount`` creates the map
exactly once; ``dispose`` releases it so a later ``mount`` starts clean.
Every route change removes exactly the layers this controller added and
draws the new set; nothing is diffed.
"""

from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any

import folium
from folium.map import FitBounds
from folium.plugins import TimestampedGeoJson
import httpx

from busmap.config import MapSettings
from busmap.errors import MapLifecycleError
from busmap.geo import bounds_of
from busmap.logging import get_logger
from busmap.map.animation import AnimationEngine, AnimationLoop, FrameScheduler, VehicleFrame, sample_cycle
from busmap.map.layers import (
    Layer,
    MarkerLayer,
    PolylineLayer,
    RouteLayers,
    build_route_layers,
    get_bus_line_color,
    legend_entries,
    legend_html,
    vehicle_marker,
)
from busmap.map.osrm import GeometryBatch, fetch_route_shapes
from busmap.map.preview import stop_card_html
from busmap.map.viewport import Viewport
from busmap.models import Coordinate, HoverPreview, RouteGeometry, Segment

# Map interactions that invalidate an on-screen hover preview
HOVER_CLEARING_EVENTS: frozenset[str] = frozenset({"click", "dragstart", "zoomstart", "movestart"})


class MapState(str, Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    DISPOSED = "disposed"


VEHICLE_COLOR = "#1d4ed8"

# Timeline playback starts here; only the spacing between frames matters
TIMELINE_EPOCH = datetime(2000, 1, 1)


def _popup(layer: Layer) -> folium.Popup | None:
    return folium.Popup(layer.popup_html, max_width=300) if layer.popup_html else None


def folium_marker(layer: MarkerLayer) -> folium.Marker:
    icon = folium.DivIcon(
        html=layer.icon_html,
        icon_size=layer.icon_size,
        icon_anchor=layer.icon_anchor,
        class_name=layer.class_name,
    )
    tooltip: folium.Tooltip | str | None = layer.stop_name
    if layer.stop_id is not None and layer.stop_name:
        # Hovering a stop shows its preview card
        card = stop_card_html(layer.stop_name)
        tooltip = folium.Tooltip(f'<div class="stop-preview" style="width: 256px;">{card}</div>')
    return folium.Marker(location=list(layer.location), icon=icon, popup=_popup(layer), tooltip=tooltip)


def folium_polyline(layer: PolylineLayer) -> folium.PolyLine:
    options: dict[str, object] = {"color": layer.color, "weight": layer.weight, "opacity": layer.opacity}
    if layer.dash_array:
        options["dash_array"] = layer.dash_array
    return folium.PolyLine(locations=[list(p) for p in layer.locations], popup=_popup(layer), **options)


def to_folium(layer: Layer) -> folium.Marker | folium.PolyLine:
    """Turn a layer descriptor into the folium object that draws it."""
    if isinstance(layer, MarkerLayer):
        return folium_marker(layer)
    return folium_polyline(layer)


def vehicle_timeline(frames: Sequence[VehicleFrame], color: str = VEHICLE_COLOR) -> dict[str, Any]:
    """GeoJSON features for ``TimestampedGeoJson``, one point per sampled frame.

    Frame ``k`` is stamped ``k`` minutes after ``TIMELINE_EPOCH`` so whole
    ISO durations can describe the playback step.
    """
    features = []
    for index, frame in enumerate(frames):
        lat, lon = frame.position
        features.append(
            {
                "type": "Feature",
                "geometry": {"type": "Point", "coordinates": [lon, lat]},
                "properties": {
                    "time": (TIMELINE_EPOCH + timedelta(minutes=index)).isoformat(),
                    "popup": f"Bus, {frame.phase.value}",
                    "icon": "circle",
                    "iconstyle": {
                        "fillColor": color,
                        "fillOpacity": 0.9,
                        "color": "white",
                        "stroke": "true",
                        "radius": 8,
                    },
                },
            }
        )
    return {"type": "FeatureCollection", "features": features}


def animation_route(segments: Sequence[Segment]) -> RouteGeometry:
    """Stop sequence the vehicle visits: first stop, then every segment's end."""
    route: RouteGeometry = []
    for segment in segments:
        for point in (segment.start.as_tuple(), segment.end.as_tuple()):
            if not route or route[-1] != point:
                route.append(point)
    return route


class RouteMapController:
    """Owns the map instance, its route layers, hover state and vehicle animation."""

    def __init__(
        self,
        settings: MapSettings | None = None,
        on_click: Callable[[float, float], None] | None = None,
        on_stop_hover: Callable[[HoverPreview | None], None] | None = None,
        scheduler: FrameScheduler | None = None,
        clock: Callable[[], float] | None = None,
        strict: bool = False,
    ):
        self.settings = settings or MapSettings()
        self.on_click = on_click
        self.on_stop_hover = on_stop_hover
        self.strict = strict
        self.logger = get_logger(f"{__name__}.RouteMapController")

        self.state = MapState.UNINITIALIZED
        self.map: folium.Map | None = None
        self.viewport = self._default_viewport()
        self.route_layers: RouteLayers | None = None
        self.hover: HoverPreview | None = None
        self.loading = False
        self.advisory: str | None = None
        self.vehicle_frame: VehicleFrame | None = None

        self._owned: list[folium.MacroElement] = []
        self._fit: FitBounds | None = None
        self._legend: folium.Element | None = None
        self._vehicle: folium.Marker | None = None
        self._request_id = 0

        self.animation = AnimationLoop(
            AnimationEngine([], speed=self.settings.animation_speed, dwell_ms=self.settings.stop_dwell_ms),
            self._on_vehicle_frame,
            scheduler=scheduler,
            clock=clock,
            frame_interval=self.settings.frame_interval,
        )

    def _default_viewport(self) -> Viewport:
        return Viewport(
            center=self.settings.default_center,
            zoom=self.settings.default_zoom,
            width=self.settings.viewport_width,
            height=self.settings.viewport_height,
        )

    def _require_ready(self, action: str) -> bool:
        if self.state is MapState.READY and self.map is not None:
            return True
        if self.strict:
            raise MapLifecycleError(f"Cannot {action} while map is {self.state.value}")
        self.logger.warning("Ignoring map mutation outside Ready state", action=action, state=self.state.value)
        return False

    # Lifecycle

    def mount(self, center: tuple[float, float] | None = None) -> folium.Map:
        """Create the map if it does not exist yet.

        Args:
            center: Initial center, defaults to ``MapSettings.default_center``

        Returns:
            The single map instance
        """
        if self.state is MapState.READY and self.map is not None:
            self.logger.debug("Map already mounted")
            return self.map

        self.viewport = self._default_viewport()
        if center is not None:
            self.viewport = Viewport(center, self.viewport.zoom, self.viewport.width, self.viewport.height)

        m = folium.Map(
            location=list(self.viewport.center),
            zoom_start=self.viewport.zoom,
            max_zoom=self.settings.max_zoom,
            tiles=None,
            width=self.settings.viewport_width,
            height=self.settings.viewport_height,
        )
        folium.TileLayer(
            tiles=self.settings.tiles.value,
            attr=self.settings.tiles.attribution,
            name=self.settings.tiles.name.replace("_", " ").title(),
            max_zoom=self.settings.max_zoom,
        ).add_to(m)
        # Clicking the map reports the clicked coordinates
        folium.LatLngPopup().add_to(m)

        self.map = m
        self.state = MapState.READY
        self.logger.info("Map mounted", center=self.viewport.center, zoom=self.viewport.zoom)
        return m

    def dispose(self) -> None:
        """Stop the animation and release the map; ``mount`` may be called again."""
        self.animation.cancel()
        if self.map is not None:
            self._clear_layers()
        self.map = None
        self.route_layers = None
        self.hover = None
        self.vehicle_frame = None
        self.loading = False
        self._request_id += 1
        self.state = MapState.DISPOSED
        self.logger.info("Map disposed")

    # Layers

    def _remove(self, element: folium.Element, parent: folium.Element | None = None) -> None:
        if parent is None:
            parent = self.map
        if parent is None:
            return
        name = element.get_name()
        children = parent._children  # pyright: ignore[reportPrivateUsage]
        if name in children:
            del children[name]
        else:
            self.logger.debug("Layer already removed", layer=name)

    def _clear_layers(self) -> None:
        for element in self._owned:
            self._remove(element)
        self._owned = []
        if self._fit is not None:
            self._remove(self._fit)
            self._fit = None
        if self._legend is not None and self.map is not None:
            self._remove(self._legend, self.map.get_root().html)
            self._legend = None
        self._vehicle = None

    def _add(self, element: folium.MacroElement) -> None:
        if self.map is None:
            raise MapLifecycleError("Cannot add a layer without a mounted map")
        element.add_to(self.map)
        self._owned.append(element)

    def _fit_to(self, coordinates: list[tuple[float, float]]) -> None:
        bounds = bounds_of(coordinates)
        if bounds is None or self.map is None:
            return
        padding = self.settings.fit_padding
        self.viewport = self.viewport.fit_bounds(bounds, padding=padding, max_zoom=self.settings.max_zoom)
        (south, west), (north, east) = bounds
        if (south, west) == (north, east):
            # Leaflet would zoom all the way in on empty bounds; recenter at the current zoom instead
            self.map.location = [south, west]
            return
        self._fit = FitBounds([[south, west], [north, east]], padding=(padding, padding))
        self.map.add_child(self._fit)

    def _add_legend(self, segments: Sequence[Segment]) -> None:
        entries = legend_entries(segments)
        if not entries or self.map is None:
            return
        self._legend = folium.Element(legend_html(entries))
        self.map.get_root().html.add_child(self._legend)

    def _add_vehicle_timeline(self, segments: Sequence[Segment], route: RouteGeometry) -> None:
        frames = sample_cycle(
            route,
            speed=self.settings.animation_speed,
            dwell_ms=self.settings.stop_dwell_ms,
            sample_ms=self.settings.timeline_sample_ms,
        )
        if not frames:
            return
        color = next((get_bus_line_color(s.line_name) for s in segments if s.is_bus), VEHICLE_COLOR)
        timeline = TimestampedGeoJson(
            vehicle_timeline(frames, color),
            transition_time=max(int(self.settings.timeline_sample_ms), 1),
            period="PT1M",
            # Shorter than the period so only the current frame is drawn
            duration="PT30S",
            add_last_point=False,
            auto_play=True,
            loop=True,
            loop_button=True,
            date_options="HH:mm",
        )
        self._add(timeline)
        self.logger.debug("Vehicle timeline embedded", frames=len(frames))

    def show_route(
        self,
        segments: Sequence[Segment],
        geometries: Sequence[RouteGeometry],
        origin: Coordinate | None = None,
        destination: Coordinate | None = None,
    ) -> RouteLayers | None:
        """Replace everything drawn with the layers for a new route.

        When an event loop is running the vehicle is animated live, one
        marker update per frame. Otherwise one loop of the animation is
        sampled and embedded as a timeline that the saved page plays back.

        Args:
            segments: Journey segments
            geometries: Geometry per segment, index-aligned with ``segments``
            origin: Optional user origin
            destination: Optional user destination

        Returns:
            The drawn layers, or None when the map is not Ready
        """
        if not self._require_ready("show route"):
            return None

        self.animation.cancel()
        self._clear_layers()
        self.clear_hover()

        route_layers = build_route_layers(
            segments,
            geometries,
            origin=origin,
            destination=destination,
            destination_dedupe_m=self.settings.destination_dedupe_m,
        )
        for layer in route_layers.layers:
            self._add(to_folium(layer))
        self.route_layers = route_layers
        self._fit_to(route_layers.coordinates)
        self._add_legend(segments)

        self.logger.info(
            "Route drawn",
            segments=len(segments),
            layers=len(route_layers.layers),
            zoom=self.viewport.zoom,
        )

        self.vehicle_frame = None
        route = animation_route(segments)
        self.animation.engine.reset(route)
        if len(route) >= 2:
            try:
                self.animation.start()
            except RuntimeError:
                self.logger.debug("No frame scheduler available, embedding vehicle timeline")
                self._add_vehicle_timeline(segments, route)
        return route_layers

    async def update_route(
        self,
        segments: Sequence[Segment],
        origin: Coordinate | None = None,
        destination: Coordinate | None = None,
        client: httpx.AsyncClient | None = None,
        skip_close: bool = False,
    ) -> GeometryBatch:
        """Fetch geometry for ``segments`` and draw the route.

        ``loading`` is set while requests are in flight and ``advisory`` holds
        a single message when any segment fell back to a straight line. A
        response that arrives after a newer update started is discarded.
        """
        self._request_id += 1
        request_id = self._request_id
        self.loading = True
        self.advisory = None
        try:
            batch = await fetch_route_shapes(segments, client=client, settings=self.settings, skip_close=skip_close)
        finally:
            if request_id == self._request_id:
                self.loading = False

        if request_id != self._request_id:
            self.logger.debug("Discarding stale route geometries", request_id=request_id)
            return batch

        if batch.advisory:
            self.advisory = batch.advisory
            self.logger.warning("Showing straight-line approximation", fallback_segments=batch.fallback_indices)
        self.show_route(segments, batch.geometries, origin=origin, destination=destination)
        return batch

    # Vehicle animation

    def _on_vehicle_frame(self, frame: VehicleFrame) -> None:
        if self.map is None:
            self.animation.cancel()
            return
        self.vehicle_frame = frame
        if self._vehicle is not None:
            self._remove(self._vehicle)
            self._owned = [element for element in self._owned if element is not self._vehicle]
        self._vehicle = folium_marker(vehicle_marker(frame.position, frame.bearing))
        self._add(self._vehicle)

    # Interaction

    def handle_click(self, lat: float, lng: float) -> None:
        """Forward a map click; what a click means is up to the caller."""
        self.clear_hover()
        if self.on_click is not None:
            self.on_click(lat, lng)

    def handle_map_event(self, event: str) -> None:
        if event in HOVER_CLEARING_EVENTS:
            self.clear_hover()

    def handle_marker_hover(self, stop_id: str) -> HoverPreview | None:
        """Report a hovered stop with its current on-screen position.

        Args:
            stop_id: Stop key of the hovered marker

        Returns:
            The new hover preview, or None when the stop is not drawn
        """
        if self.route_layers is None or stop_id not in self.route_layers.stops:
            self.logger.debug("Hover on unknown stop", stop_id=stop_id)
            return None
        marker = self.route_layers.stops[stop_id]
        x, y = self.viewport.latlng_to_container_point(*marker.location)
        self.hover = HoverPreview(stop_id=stop_id, stop_name=marker.stop_name or "", screen_x=x, screen_y=y)
        if self.on_stop_hover is not None:
            self.on_stop_hover(self.hover)
        return self.hover

    def clear_hover(self) -> None:
        if self.hover is None:
            return
        self.hover = None
        if self.on_stop_hover is not None:
            self.on_stop_hover(None)

    close_preview = clear_hover

    # Output

    def render(self) -> str:
        if not self._require_ready("render") or self.map is None:
            return ""
        return self.map.get_root().render()

    def save(self, output_file: Path) -> Path:
        if not self._require_ready("save") or self.map is None:
            raise MapLifecycleError(f"Cannot save map while {self.state.value}")
        self.map.save(str(output_file))
        self.logger.info("Saved map", path=str(output_file), size_bytes=output_file.stat().st_size)
        return output_file
