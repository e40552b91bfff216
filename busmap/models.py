from dataclasses import dataclass
from enum import Enum
import math
import re
from typing import Any

from busmap.errors import InvalidSegmentError
from busmap.logging import get_logger

# (lat, lon) points, the order Leaflet expects
RouteGeometry = list[tuple[float, float]]


def _as_float(value: Any, field: str) -> float:  # noqa: ANN401
    if isinstance(value, bool):
        raise InvalidSegmentError(f"expected a number, got {value!r}", field)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidSegmentError(f"expected a number, got {value!r}", field) from None
    if not math.isfinite(number):
        raise InvalidSegmentError(f"expected a finite number, got {value!r}", field)
    return number


_CLOCK_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")


def parse_clock(value: Any, field: str) -> str:  # noqa: ANN401
    """Validate an ``HH:MM[:SS]`` clock time and normalise it to ``HH:MM:SS``.

    Raises:
        InvalidSegmentError: If the value is not a 24-hour clock time
    """
    match = _CLOCK_PATTERN.match(value) if isinstance(value, str) else None
    if match is None:
        raise InvalidSegmentError(f"expected HH:MM[:SS], got {value!r}", field)
    hours, minutes, seconds = int(match[1]), int(match[2]), int(match[3] or 0)
    if hours > 23 or minutes > 59 or seconds > 59:
        raise InvalidSegmentError(f"clock time out of range: {value!r}", field)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


@dataclass(frozen=True)
class Coordinate:
    lat: float
    lon: float

    def __post_init__(self) -> None:
        for name, value in (("lat", self.lat), ("lon", self.lon)):
            if not isinstance(value, (int, float)) or isinstance(value, bool) or not math.isfinite(value):
                raise InvalidSegmentError(f"expected a finite number, got {value!r}", name)
        if not -90.0 <= self.lat <= 90.0:
            raise InvalidSegmentError(f"latitude {self.lat} outside [-90, 90]", "lat")
        if not -180.0 <= self.lon <= 180.0:
            raise InvalidSegmentError(f"longitude {self.lon} outside [-180, 180]", "lon")

    @classmethod
    def parse(cls, lat: Any, lon: Any, field: str = "coordinate") -> "Coordinate":  # noqa: ANN401
        """Build a coordinate from untrusted values, naming ``field`` in errors."""
        try:
            return cls(_as_float(lat, f"{field}.lat"), _as_float(lon, f"{field}.lon"))
        except InvalidSegmentError as e:
            if e.field and e.field.startswith(field):
                raise
            raise InvalidSegmentError(str(e), field) from None

    @classmethod
    def from_mapping(cls, data: Any, field: str = "coordinate") -> "Coordinate":  # noqa: ANN401
        """Accept ``{"lat", "lng"}`` (browser style) or ``{"lat", "lon"}``."""
        if not isinstance(data, dict):
            raise InvalidSegmentError(f"expected an object with lat/lng, got {data!r}", field)
        lon = data.get("lng", data.get("lon"))
        return cls.parse(data.get("lat"), lon, field)

    def as_tuple(self) -> tuple[float, float]:
        return (self.lat, self.lon)

    def key(self, precision: int = 5) -> str:
        """Rounded coordinate key used to deduplicate stops shared by segments."""
        # Adding 0.0 folds a rounded -0.0 into 0.0
        lat = round(self.lat, precision) + 0.0
        lon = round(self.lon, precision) + 0.0
        return f"{lat:.{precision}f},{lon:.{precision}f}"


@dataclass(frozen=True)
class Stop:
    name: str
    lat: float
    lon: float

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(self.lat, self.lon)


class TravelMode(str, Enum):
    BUS = "bus"
    WALK = "walk"


@dataclass(frozen=True)
class Segment:
    """One directed leg of a journey: a single bus ride or a walking stretch."""

    mode: TravelMode
    from_stop: Stop
    to_stop: Stop
    duration_sec: int
    line_id: str = ""
    line_name: str = ""
    departure_time: str | None = None
    arrival_time: str | None = None

    @property
    def duration_min(self) -> int:
        return math.ceil(self.duration_sec / 60)

    @property
    def is_bus(self) -> bool:
        return self.mode is TravelMode.BUS

    @property
    def start(self) -> Coordinate:
        return self.from_stop.coordinate

    @property
    def end(self) -> Coordinate:
        return self.to_stop.coordinate

    def straight_line(self) -> RouteGeometry:
        return [self.start.as_tuple(), self.end.as_tuple()]

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> "Segment":
        """Parse one segment from the trip-planning API response.

        Both the flat shape (``fromStopName``, ``fromStopLat``, ...) and the
        nested shape (``fromStop: {name, lat, lon}``) are accepted.

        Args:
            payload: Segment object from the backend

        Returns:
            Validated segment

        Raises:
            InvalidSegmentError: If a field is missing, not finite or out of range
        """
        if not isinstance(payload, dict):
            raise InvalidSegmentError(f"expected an object, got {type(payload).__name__}", "segment")

        raw_mode = payload.get("mode")
        try:
            mode = TravelMode(raw_mode)
        except ValueError:
            raise InvalidSegmentError(f"unknown mode {raw_mode!r}", "mode") from None

        from_stop = _parse_stop(payload, "from")
        to_stop = _parse_stop(payload, "to")

        duration_sec: int
        if payload.get("duration_sec") is not None:
            duration_sec = round(_as_float(payload["duration_sec"], "duration_sec"))
            if payload.get("duration_min") is not None:
                reported = _as_float(payload["duration_min"], "duration_min")
                if reported != math.ceil(duration_sec / 60):
                    get_logger(__name__).debug(
                        "Ignoring inconsistent duration_min",
                        duration_sec=duration_sec,
                        duration_min=reported,
                    )
        elif payload.get("duration_min") is not None:
            duration_sec = round(_as_float(payload["duration_min"], "duration_min") * 60)
        else:
            duration_sec = 0
        if duration_sec < 0:
            raise InvalidSegmentError(f"negative duration {duration_sec}", "duration_sec")

        line_id = ""
        line_name = ""
        if mode is TravelMode.BUS:
            line_id = str(payload.get("lineId") or "")
            line_name = str(payload.get("lineName") or line_id)

        return cls(
            mode=mode,
            from_stop=from_stop,
            to_stop=to_stop,
            duration_sec=duration_sec,
            line_id=line_id,
            line_name=line_name,
            departure_time=_optional_clock(payload, "departure_time"),
            arrival_time=_optional_clock(payload, "arrival_time"),
        )


def _optional_clock(payload: dict[str, Any], field: str) -> str | None:
    value = payload.get(field)
    return None if value in (None, "") else parse_clock(value, field)


def _parse_stop(payload: dict[str, Any], prefix: str) -> Stop:
    nested = payload.get(f"{prefix}Stop")
    if isinstance(nested, dict):
        name = nested.get("name")
        coordinate = Coordinate.parse(nested.get("lat"), nested.get("lon", nested.get("lng")), f"{prefix}Stop")
    else:
        name = payload.get(f"{prefix}StopName")
        coordinate = Coordinate.parse(payload.get(f"{prefix}StopLat"), payload.get(f"{prefix}StopLon"), f"{prefix}Stop")
    if not name:
        raise InvalidSegmentError("missing stop name", f"{prefix}Stop.name")
    return Stop(name=str(name), lat=coordinate.lat, lon=coordinate.lon)


def parse_segments(payload: list[dict[str, Any]]) -> list[Segment]:
    """Parse a list of backend segments, reporting the failing index."""
    segments: list[Segment] = []
    for index, item in enumerate(payload):
        try:
            segments.append(Segment.from_api(item))
        except InvalidSegmentError as e:
            raise InvalidSegmentError(str(e), f"segments[{index}]") from e
    return segments


@dataclass(frozen=True)
class HoverPreview:
    """The currently hovered stop and where its marker sits on screen."""

    stop_id: str
    stop_name: str
    screen_x: float
    screen_y: float
