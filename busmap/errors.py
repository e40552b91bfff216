class BusMapError(Exception):
    """Base class for errors raised by busmap."""


class InvalidSegmentError(BusMapError, ValueError):
    """A segment or coordinate from the trip-planning backend is malformed."""

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(f"{field}: {message}" if field else message)


class ConfigError(BusMapError):
    """Settings file is missing or contains unknown keys."""


class MapLifecycleError(BusMapError):
    """Map surface used outside its Ready state (raised only in strict mode)."""
