"""Road-following segment geometry from an OSRM routing engine.

Every segment gets one request, all issued together. A failed request never
affects its siblings: that segment falls back to a straight line between its
stops and the batch remembers which indices fell back so the caller can show
a single advisory.
"""

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

import httpx

from busmap.config import MapSettings, RoutingProfile
from busmap.geo import are_coordinates_close
from busmap.logging import get_logger
from busmap.models import Coordinate, RouteGeometry, Segment

USER_AGENT = "busmap/0.1.0 (+https://github.com/busmap/busmap)"
FALLBACK_ADVISORY = "Could not load detailed road geometry. Showing straight-line approximation."


@dataclass(frozen=True)
class PlannedSegment:
    segment: Segment
    needs_routing: bool


@dataclass
class GeometryBatch:
    """Geometries index-aligned with the requested segments."""

    geometries: list[RouteGeometry]
    fallback_indices: list[int] = field(default_factory=list)

    @property
    def used_fallback(self) -> bool:
        return bool(self.fallback_indices)

    @property
    def advisory(self) -> str | None:
        return FALLBACK_ADVISORY if self.used_fallback else None


def route_url(base_url: str, profile: RoutingProfile, start: Coordinate, end: Coordinate) -> str:
    """Build an OSRM route URL; the engine expects lon,lat order."""
    return (
        f"{base_url.rstrip('/')}/route/v1/{profile.value}/"
        f"{start.lon},{start.lat};{end.lon},{end.lat}?overview=full&geometries=geojson"
    )


def _parse_route(data: Any) -> RouteGeometry | None:  # noqa: ANN401
    if not isinstance(data, dict) or data.get("code") != "Ok":
        return None
    routes = data.get("routes") or []
    if not routes:
        return None
    try:
        coordinates = routes[0]["geometry"]["coordinates"]
        geometry: RouteGeometry = [(float(lat), float(lon)) for lon, lat, *_ in coordinates]
    except (KeyError, TypeError, ValueError):
        return None
    return geometry if len(geometry) >= 2 else None


async def fetch_route_shape(
    client: httpx.AsyncClient,
    start: Coordinate,
    end: Coordinate,
    profile: RoutingProfile = RoutingProfile.DRIVING,
    base_url: str = MapSettings.routing_url,
    timeout: float = MapSettings.request_timeout,
) -> RouteGeometry | None:
    """Fetch the road shape between two points.

    Args:
        client: Shared async HTTP client
        start: Segment start
        end: Segment end
        profile: OSRM routing profile
        base_url: Routing engine base URL
        timeout: Per-request timeout in seconds

    Returns:
        (lat, lon) points of the first route, or None when the request failed,
        returned a non-success status or no usable route
    """
    logger = get_logger(__name__)
    url = route_url(base_url, profile, start, end)

    try:
        response = await client.get(url, timeout=timeout, headers={"User-Agent": USER_AGENT})
        response.raise_for_status()
        data = response.json()
    except httpx.HTTPStatusError as e:
        logger.warning("Routing engine returned an error status", url=url, status_code=e.response.status_code)
        return None
    except httpx.HTTPError as e:
        logger.warning("Routing request failed", url=url, error=str(e), error_type=type(e).__name__)
        return None
    except ValueError as e:
        logger.warning("Routing response was not JSON", url=url, error=str(e))
        return None

    geometry = _parse_route(data)
    if geometry is None:
        code = data.get("code") if isinstance(data, dict) else None
        logger.warning("Routing engine returned no routes", url=url, code=code)
        return None

    logger.debug("Fetched route shape", profile=profile.value, points=len(geometry))
    return geometry


def optimize_route_segments(segments: Sequence[Segment], threshold_m: float = 100.0) -> list[PlannedSegment]:
    """Flag segments whose stops are so close that routing them is wasted work.

    Args:
        segments: Journey segments
        threshold_m: Endpoints closer than this do not need a routing request

    Returns:
        One planned segment per input segment, in order
    """
    return [
        PlannedSegment(
            segment=segment,
            needs_routing=not are_coordinates_close(segment.start.as_tuple(), segment.end.as_tuple(), threshold_m),
        )
        for segment in segments
    ]


async def fetch_route_shapes(
    segments: Sequence[Segment],
    *,
    client: httpx.AsyncClient | None = None,
    settings: MapSettings | None = None,
    skip_close: bool = False,
) -> GeometryBatch:
    """Fetch road geometry for every segment concurrently.

    Never raises: each segment resolves to its road shape or to the straight
    line between its stops.

    Args:
        segments: Journey segments
        client: Async HTTP client to reuse; a temporary one is created otherwise
        settings: Routing URL, timeout and skip threshold
        skip_close: Do not request geometry for segments below the skip threshold

    Returns:
        Batch of geometries aligned with ``segments``
    """
    logger = get_logger(__name__)
    settings = settings or MapSettings()
    if not segments:
        return GeometryBatch(geometries=[])

    planned = optimize_route_segments(segments, settings.routing_skip_threshold_m)
    logger.info("Fetching route segments", count=len(segments), skip_close=skip_close)

    async def _one(http: httpx.AsyncClient, item: PlannedSegment) -> RouteGeometry | None:
        if skip_close and not item.needs_routing:
            return item.segment.straight_line()
        return await fetch_route_shape(
            http,
            item.segment.start,
            item.segment.end,
            RoutingProfile.for_mode(item.segment.mode.value),
            base_url=settings.routing_url,
            timeout=settings.request_timeout,
        )

    async def _all(http: httpx.AsyncClient) -> list[RouteGeometry | BaseException | None]:
        return list(await asyncio.gather(*(_one(http, item) for item in planned), return_exceptions=True))

    if client is not None:
        shapes = await _all(client)
    else:
        async with httpx.AsyncClient() as http:
            shapes = await _all(http)

    batch = GeometryBatch(geometries=[])
    for index, (segment, shape) in enumerate(zip(segments, shapes, strict=True)):
        if isinstance(shape, BaseException):
            logger.error(
                "Unexpected error fetching route shape",
                segment_index=index,
                error=str(shape),
                error_type=type(shape).__name__,
            )
            shape = None
        if shape is None:
            batch.fallback_indices.append(index)
            shape = segment.straight_line()
        batch.geometries.append(shape)

    if batch.used_fallback:
        logger.warning(
            "Using straight-line fallback for some segments",
            failed=len(batch.fallback_indices),
            total=len(segments),
        )
    else:
        logger.info("Route geometries loaded", count=len(batch.geometries))
    return batch


def fetch_route_shapes_sync(
    segments: Sequence[Segment],
    *,
    settings: MapSettings | None = None,
    skip_close: bool = False,
) -> GeometryBatch:
    """Blocking wrapper around :func:`fetch_route_shapes` for scripts."""
    return asyncio.run(fetch_route_shapes(segments, settings=settings, skip_close=skip_close))
