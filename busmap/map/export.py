from collections.abc import Sequence
from pathlib import Path
from typing import Any

import contextily as ctx
import geopandas as gpd
import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt  # noqa: E402
from shapely.geometry import LineString, Point  # noqa: E402

from busmap.logging import get_logger  # noqa: E402
from busmap.map.layers import (  # noqa: E402
    DESTINATION_COLOR,
    ORIGIN_COLOR,
    STOP_COLOR,
    Layer,
    LayerKind,
    MarkerLayer,
)

WGS84 = "EPSG:4326"

_MARKER_COLORS: dict[LayerKind, str] = {
    LayerKind.ORIGIN: ORIGIN_COLOR,
    LayerKind.DESTINATION: DESTINATION_COLOR,
    LayerKind.ARRIVAL: DESTINATION_COLOR,
    LayerKind.STOP: STOP_COLOR,
    LayerKind.TRANSFER: STOP_COLOR,
}

# Decorations that only make sense on the interactive map
_SKIPPED_KINDS = frozenset({LayerKind.ARROW, LayerKind.VEHICLE, LayerKind.WALK_HALO})


def _layer_label(layer: Layer) -> str:
    if isinstance(layer, MarkerLayer):
        return layer.stop_name or layer.kind.value.title()
    return layer.kind.value


def layers_to_geodataframe(layers: Sequence[Layer]) -> gpd.GeoDataFrame:
    """Convert layer descriptors into a GeoDataFrame.

    Markers become Points and polylines become LineStrings, both in
    (lon, lat) order. Arrows, halos and the vehicle marker are left out.

    Args:
        layers: Layers in drawing order

    Returns:
        GeoDataFrame in EPSG:4326 with ``kind``, ``label`` and ``color`` columns
    """
    rows: list[dict[str, Any]] = []
    for layer in layers:
        if layer.kind in _SKIPPED_KINDS:
            continue
        if isinstance(layer, MarkerLayer):
            lat, lon = layer.location
            geometry: Point | LineString = Point(lon, lat)
            color = _MARKER_COLORS.get(layer.kind, STOP_COLOR)
        else:
            if len(layer.locations) < 2:
                continue
            geometry = LineString([(lon, lat) for lat, lon in layer.locations])
            color = layer.color
        rows.append({"kind": layer.kind.value, "label": _layer_label(layer), "color": color, "geometry": geometry})

    if not rows:
        return gpd.GeoDataFrame(columns=["kind", "label", "color", "geometry"], geometry="geometry", crs=WGS84)
    return gpd.GeoDataFrame(rows, geometry="geometry", crs=WGS84)


def export_geojson(layers: Sequence[Layer], output_file: Path) -> Path:
    """Write the route layers as a GeoJSON FeatureCollection."""
    logger = get_logger(__name__)
    gdf = layers_to_geodataframe(layers)
    output_file.write_text(gdf.to_json(), encoding="utf-8")
    logger.info(
        "Exported route GeoJSON",
        path=str(output_file),
        features=len(gdf),
        size_bytes=output_file.stat().st_size,
    )
    return output_file


def render_static_preview(
    layers: Sequence[Layer],
    output_file: Path,
    basemap: bool = False,
    title: str | None = None,
) -> Path:
    """Render a static PNG of the route.

    Args:
        layers: Layers in drawing order
        output_file: PNG path
        basemap: Draw CartoDB Positron tiles underneath, needs network access
        title: Optional figure title

    Returns:
        Path of the written image

    Raises:
        ValueError: If there is nothing to draw
    """
    logger = get_logger(__name__)
    gdf = layers_to_geodataframe(layers)
    if gdf.empty:
        raise ValueError("No route layers to render")

    fig, ax = plt.subplots(1, 1, figsize=(10, 8))

    lines = gdf[gdf.geometry.geom_type == "LineString"]
    points = gdf[gdf.geometry.geom_type == "Point"]

    for kind, group in lines.groupby("kind"):  # pyright: ignore[reportUnknownMemberType,reportUnknownVariableType]
        walking = kind == LayerKind.WALK.value
        group.plot(  # pyright: ignore[reportUnknownMemberType]
            ax=ax,
            color=group["color"].tolist(),  # pyright: ignore[reportUnknownMemberType]
            linewidth=3 if walking else 4,
            linestyle="--" if walking else "-",
            alpha=0.9,
            label="Walking" if walking else "Bus",
        )
    if len(points) > 0:
        points.plot(  # pyright: ignore[reportUnknownMemberType]
            ax=ax,
            color=points["color"].tolist(),  # pyright: ignore[reportUnknownMemberType]
            markersize=60,
            edgecolor="white",
            linewidth=1.5,
            zorder=5,
        )

    if basemap:
        ctx.add_basemap(ax, crs=gdf.crs, source=ctx.providers.CartoDB.Positron)  # ty: ignore[unresolved-attribute]

    if title:
        ax.set_title(title, fontsize=14, fontweight="bold")
    ax.set_axis_off()
    if len(lines) > 0:
        ax.legend(loc="upper right", framealpha=0.9)
    plt.tight_layout()
    fig.savefig(output_file, dpi=150, bbox_inches="tight", facecolor="white", edgecolor="none")
    plt.close(fig)

    logger.info(
        "Saved static route preview",
        path=str(output_file),
        basemap=basemap,
        size_bytes=output_file.stat().st_size,
    )
    return output_file
