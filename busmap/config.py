from dataclasses import dataclass, fields
from enum import Enum
import json
from pathlib import Path
from typing import Any

from busmap.errors import ConfigError


class RoutingProfile(str, Enum):
    DRIVING = "driving"
    WALKING = "walking"
    CYCLING = "cycling"

    @classmethod
    def for_mode(cls, mode: str) -> "RoutingProfile":
        """Bus legs follow the road network, everything else is walked."""
        return cls.DRIVING if str(mode) == "bus" else cls.WALKING


class RoutingService(str, Enum):
    OSRM_PUBLIC = "https://router.project-osrm.org"


class TileProvider(str, Enum):
    OPENSTREETMAP = "https://{s}.tile.openstreetmap.org/{z}/{x}/{y}.png"
    CARTO_POSITRON = "https://{s}.basemaps.cartocdn.com/light_all/{z}/{x}/{y}.png"

    @property
    def attribution(self) -> str:
        osm = '&copy; <a href="https://www.openstreetmap.org/copyright">OpenStreetMap</a> contributors'
        if self is TileProvider.CARTO_POSITRON:
            return f'{osm} &copy; <a href="https://carto.com/attributions">CARTO</a>'
        return osm


@dataclass
class MapSettings:
    """Tunables for the map surface, routing fetches and vehicle animation."""

    # Viewport
    default_center: tuple[float, float] = (21.028511, 105.804817)
    default_zoom: int = 13
    max_zoom: int = 19
    viewport_width: int = 800
    viewport_height: int = 600
    fit_padding: int = 50
    tiles: TileProvider = TileProvider.OPENSTREETMAP

    # Routing engine
    routing_url: str = RoutingService.OSRM_PUBLIC.value
    request_timeout: float = 10.0
    close_threshold_m: float = 50.0
    routing_skip_threshold_m: float = 100.0
    destination_dedupe_m: float = 100.0

    # Vehicle animation
    animation_speed: float = 150.0
    stop_dwell_ms: float = 1000.0
    frame_interval: float = 1 / 60
    # Sampling step of the vehicle timeline embedded in saved maps
    timeline_sample_ms: float = 250.0

    # Hover preview card, offset up and left of the pin
    preview_offset_x: int = 128
    preview_offset_y: int = 16

    log_level: str = "INFO"
    log_json: bool = False

    def __post_init__(self) -> None:
        self.default_center = (float(self.default_center[0]), float(self.default_center[1]))
        if not isinstance(self.tiles, TileProvider):
            try:
                self.tiles = TileProvider[str(self.tiles).upper()]
            except KeyError:
                raise ConfigError(f"Unknown tile provider: {self.tiles}") from None

    @classmethod
    def from_json(cls, json_path: str | Path) -> "MapSettings":
        """Load settings overrides from a JSON file.

        Args:
            json_path: Path to a JSON object whose keys are MapSettings fields

        Returns:
            Settings with the file's values applied over the defaults

        Raises:
            ConfigError: If the file is missing, unreadable or has unknown keys
        """
        path = Path(json_path)
        try:
            with path.open(encoding="utf-8") as f:
                data: Any = json.load(f)
        except FileNotFoundError:
            raise ConfigError(f"Settings file not found: {path}") from None
        except (OSError, ValueError) as e:
            raise ConfigError(f"Could not read settings from {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"Settings file must contain a JSON object: {path}")

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown settings in {path}: {', '.join(unknown)}")
        return cls(**data)
