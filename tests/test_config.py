"""Behavior-driven tests for map settings."""

import json
from pathlib import Path

import pytest

from busmap.config import MapSettings, RoutingProfile, TileProvider
from busmap.errors import ConfigError


class TestMapSettingsDefaults:
    """Test default settings."""

    def test_defaults_match_documented_values(self):
        """Should use Hanoi as the default center and sensible map defaults."""
        settings = MapSettings()

        assert settings.default_center == (21.028511, 105.804817)
        assert settings.default_zoom == 13
        assert settings.max_zoom == 19
        assert settings.fit_padding == 50
        assert settings.close_threshold_m == 50.0
        assert settings.animation_speed == 150.0
        assert settings.stop_dwell_ms == 1000.0
        assert settings.tiles is TileProvider.OPENSTREETMAP

    def test_tile_provider_by_name(self):
        """Should accept a tile provider name."""
        assert MapSettings(tiles="carto_positron").tiles is TileProvider.CARTO_POSITRON  # pyright: ignore[reportArgumentType]

    def test_unknown_tile_provider(self):
        """Should reject an unknown tile provider."""
        with pytest.raises(ConfigError):
            MapSettings(tiles="watercolor")  # pyright: ignore[reportArgumentType]


class TestMapSettingsFromJson:
    """Test loading settings overrides from disk."""

    def test_applies_overrides(self, tmp_path: Path):
        """Should override only the given fields."""
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"default_center": [10.8, 106.7], "animation_speed": 300}))

        settings = MapSettings.from_json(path)

        assert settings.default_center == (10.8, 106.7)
        assert settings.animation_speed == 300
        assert settings.default_zoom == 13

    def test_missing_file(self, tmp_path: Path):
        """Should raise ConfigError for a missing file."""
        with pytest.raises(ConfigError, match="not found"):
            MapSettings.from_json(tmp_path / "missing.json")

    def test_invalid_json(self, tmp_path: Path):
        """Should raise ConfigError for malformed JSON."""
        path = tmp_path / "settings.json"
        path.write_text("{not json")

        with pytest.raises(ConfigError):
            MapSettings.from_json(path)

    def test_unknown_keys(self, tmp_path: Path):
        """Should list unknown keys instead of ignoring them."""
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"zoom_level": 4}))

        with pytest.raises(ConfigError, match="zoom_level"):
            MapSettings.from_json(path)

    def test_non_object(self, tmp_path: Path):
        """Should require a JSON object."""
        path = tmp_path / "settings.json"
        path.write_text("[1, 2]")

        with pytest.raises(ConfigError):
            MapSettings.from_json(path)


class TestRoutingProfile:
    """Test choosing a routing profile per travel mode."""

    def test_bus_drives_and_walk_walks(self):
        """Should route bus legs by road and everything else on foot."""
        assert RoutingProfile.for_mode("bus") is RoutingProfile.DRIVING
        assert RoutingProfile.for_mode("walk") is RoutingProfile.WALKING
