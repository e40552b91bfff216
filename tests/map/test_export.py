"""Behavior-driven tests for GeoJSON export and static previews."""

import json
from pathlib import Path

import pytest

from busmap.map.export import WGS84, export_geojson, layers_to_geodataframe, render_static_preview
from busmap.map.layers import Layer, build_route_layers
from busmap.models import Coordinate, Segment, Stop, TravelMode

CAU_GIAY = Stop("Cau Giay", 21.0332, 105.7806)
GIAI_PHONG = Stop("Giai Phong", 20.9879, 105.8408)
KIM_LIEN = Stop("Kim Lien", 21.0070, 105.8370)


@pytest.fixture()
def route_layers() -> list[Layer]:
    bus = Segment(TravelMode.BUS, CAU_GIAY, GIAI_PHONG, 2601, line_id="16", line_name="16")
    walk = Segment(TravelMode.WALK, GIAI_PHONG, KIM_LIEN, 600)
    return build_route_layers(
        [bus, walk],
        [[(21.0332, 105.7806), (21.01, 105.81), (20.9879, 105.8408)], walk.straight_line()],
        origin=Coordinate(21.035, 105.779),
    ).layers


class TestLayersToGeoDataFrame:
    """Test converting layers into a GeoDataFrame."""

    def test_has_expected_columns_and_crs(self, route_layers: list[Layer]):
        """Should use WGS84 and carry kind, label and color."""
        gdf = layers_to_geodataframe(route_layers)

        assert gdf.crs == WGS84
        assert {"kind", "label", "color", "geometry"} <= set(gdf.columns)

    def test_skips_decorations(self, route_layers: list[Layer]):
        """Should leave out arrows and walk halos."""
        gdf = layers_to_geodataframe(route_layers)

        assert set(gdf["kind"]) == {"origin", "route", "walk", "stop", "transfer", "arrival"}

    def test_uses_lon_lat_order(self, route_layers: list[Layer]):
        """Should store geometries as (lon, lat)."""
        gdf = layers_to_geodataframe(route_layers)
        origin = gdf[gdf["kind"] == "origin"].geometry.iloc[0]

        assert (origin.x, origin.y) == (105.779, 21.035)

    def test_line_colour_is_kept(self, route_layers: list[Layer]):
        """Should keep the bus line colour for the route geometry."""
        gdf = layers_to_geodataframe(route_layers)

        assert gdf[gdf["kind"] == "route"]["color"].iloc[0] == "#e74c3c"

    def test_empty_layers(self):
        """Should return an empty frame with the usual columns."""
        gdf = layers_to_geodataframe([])

        assert gdf.empty
        assert gdf.crs == WGS84


class TestExportGeojson:
    """Test writing GeoJSON."""

    def test_writes_feature_collection(self, route_layers: list[Layer], tmp_path: Path):
        """Should write one feature per exported layer."""
        path = export_geojson(route_layers, tmp_path / "route.geojson")

        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["type"] == "FeatureCollection"
        assert len(data["features"]) == len(layers_to_geodataframe(route_layers))
        kinds = {feature["properties"]["kind"] for feature in data["features"]}
        assert "route" in kinds


class TestRenderStaticPreview:
    """Test rendering the PNG preview."""

    def test_writes_png(self, route_layers: list[Layer], tmp_path: Path):
        """Should write a PNG image without a basemap."""
        path = render_static_preview(route_layers, tmp_path / "route.png", title="Line 16")

        assert path.read_bytes()[:8] == b"\x89PNG\r\n\x1a\n"

    def test_nothing_to_draw(self, tmp_path: Path):
        """Should refuse to render an empty route."""
        with pytest.raises(ValueError, match="No route layers"):
            render_static_preview([], tmp_path / "route.png")

    @pytest.mark.slow()
    def test_writes_png_with_basemap(self, route_layers: list[Layer], tmp_path: Path):
        """Should draw CartoDB tiles under the route."""
        path = render_static_preview(route_layers, tmp_path / "route.png", basemap=True)

        assert path.stat().st_size > 0
