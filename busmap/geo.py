"""Spherical geometry helpers shared by the layer builder, routing and animation."""

from collections.abc import Iterable, Sequence
import math

from shapely.geometry import MultiPoint

EARTH_RADIUS_M = 6_371_000.0

LatLon = Sequence[float]


def haversine_m(a: LatLon, b: LatLon) -> float:
    """Great-circle distance in metres between two (lat, lon) points."""
    lat1, lon1 = math.radians(a[0]), math.radians(a[1])
    lat2, lon2 = math.radians(b[0]), math.radians(b[1])
    d_lat = lat2 - lat1
    d_lon = lon2 - lon1
    h = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lon / 2) ** 2
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def bearing_deg(a: LatLon, b: LatLon) -> float:
    """Forward azimuth from ``a`` to ``b`` in degrees, normalized to [0, 360)."""
    lat1, lat2 = math.radians(a[0]), math.radians(b[0])
    d_lon = math.radians(b[1] - a[1])
    y = math.sin(d_lon) * math.cos(lat2)
    x = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(d_lon)
    return (math.degrees(math.atan2(y, x)) + 360.0) % 360.0


def are_coordinates_close(a: LatLon, b: LatLon, threshold_m: float = 50.0) -> bool:
    """Whether two points are strictly closer than ``threshold_m`` metres."""
    return haversine_m(a, b) < threshold_m


def ease_in_out_quad(t: float) -> float:
    t = min(max(t, 0.0), 1.0)
    if t < 0.5:
        return 2 * t * t
    return -1 + (4 - 2 * t) * t


def interpolate(a: LatLon, b: LatLon, t: float) -> tuple[float, float]:
    return (a[0] + (b[0] - a[0]) * t, a[1] + (b[1] - a[1]) * t)


def bounds_of(points: Iterable[LatLon]) -> tuple[tuple[float, float], tuple[float, float]] | None:
    """Bounding box of (lat, lon) points as ``((south, west), (north, east))``.

    Returns:
        The bounds, or None when there are no points
    """
    # shapely works in x/y, i.e. (lon, lat)
    xy = [(p[1], p[0]) for p in points]
    if not xy:
        return None
    west, south, east, north = MultiPoint(xy).bounds
    return (south, west), (north, east)
