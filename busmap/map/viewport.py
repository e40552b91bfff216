"""Web-Mercator viewport math: what Leaflet does for fitBounds and containerPoint."""

from dataclasses import dataclass, replace
import math

TILE_SIZE = 256
MAX_LATITUDE = 85.0511287798

Bounds = tuple[tuple[float, float], tuple[float, float]]


def project(lat: float, lon: float, zoom: float) -> tuple[float, float]:
    """World pixel coordinates of a point at ``zoom``."""
    lat = max(min(lat, MAX_LATITUDE), -MAX_LATITUDE)
    scale = TILE_SIZE * 2**zoom
    x = (lon + 180.0) / 360.0 * scale
    sin_lat = math.sin(math.radians(lat))
    y = (0.5 - math.log((1 + sin_lat) / (1 - sin_lat)) / (4 * math.pi)) * scale
    return x, y


@dataclass(frozen=True)
class Viewport:
    center: tuple[float, float]
    zoom: int
    width: int
    height: int

    def latlng_to_container_point(self, lat: float, lon: float) -> tuple[float, float]:
        """Pixel position of a point relative to the map container's top-left corner."""
        cx, cy = project(self.center[0], self.center[1], self.zoom)
        px, py = project(lat, lon, self.zoom)
        return px - cx + self.width / 2, py - cy + self.height / 2

    def fit_bounds(self, bounds: Bounds, padding: int = 50, max_zoom: int = 19) -> "Viewport":
        """Viewport centred on ``bounds`` at the deepest zoom that still shows all of it.

        A degenerate (single point) box keeps the current zoom and only recenters.
        """
        (south, west), (north, east) = bounds
        center = ((south + north) / 2, (west + east) / 2)
        if south == north and west == east:
            return replace(self, center=center)

        avail_w = max(self.width - 2 * padding, 1)
        avail_h = max(self.height - 2 * padding, 1)
        zoom = 0
        for candidate in range(max_zoom, -1, -1):
            x1, y1 = project(north, west, candidate)
            x2, y2 = project(south, east, candidate)
            if abs(x2 - x1) <= avail_w and abs(y2 - y1) <= avail_h:
                zoom = candidate
                break
        return replace(self, center=center, zoom=zoom)
