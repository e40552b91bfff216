"""Stop preview card shown while hovering a stop marker.

The nearby places and amenities are placeholders derived from a hash of the
stop name, not real data. They only need to be stable: the same stop always
shows the same card.
"""

from dataclasses import dataclass
from html import escape

from busmap.config import MapSettings
from busmap.map.layers import string_hash
from busmap.models import HoverPreview


@dataclass(frozen=True)
class NearbySpot:
    name: str
    distance: str


@dataclass(frozen=True)
class Amenity:
    label: str
    available: bool


SPOT_POOL: tuple[NearbySpot, ...] = (
    NearbySpot("Highlands Coffee", "50m"),
    NearbySpot("Pho Bat Dan", "120m"),
    NearbySpot("Thong Nhat Park", "200m"),
    NearbySpot("Circle K", "10m"),
    NearbySpot("Vietcombank ATM", "30m"),
    NearbySpot("Secondary school", "300m"),
    NearbySpot("History museum", "450m"),
    NearbySpot("Pharmacity", "80m"),
)

AMENITY_LABELS: tuple[str, ...] = ("Waiting area", "Street lighting", "Step-free access", "Shops nearby")

HEADER_IMAGES: tuple[str, ...] = (
    "https://images.unsplash.com/photo-1570125909232-eb263c188f7e?auto=format&fit=crop&q=80&w=400&h=200",
    "https://images.unsplash.com/photo-1544620347-c4fd4a3d5960?auto=format&fit=crop&q=80&w=400&h=200",
)


def nearby_spots(stop_name: str) -> list[NearbySpot]:
    """One to three places "near" the stop, chosen by the name's hash."""
    h = string_hash(stop_name)
    count = abs(h) % 3 + 1
    return [SPOT_POOL[abs(h + i * 13) % len(SPOT_POOL)] for i in range(count)]


def amenity_available(stop_name: str, seed: int) -> bool:
    return abs(string_hash(f"{stop_name}{seed}")) % 10 > 3


def amenities(stop_name: str) -> list[Amenity]:
    return [Amenity(label, amenity_available(stop_name, seed)) for seed, label in enumerate(AMENITY_LABELS, 1)]


def preview_position(preview: HoverPreview, offset_x: int = 128, offset_y: int = 16) -> tuple[float, float]:
    """Top-left corner of the card so it sits above the pin instead of on it.

    Returns:
        (left, top) in container pixels
    """
    return preview.screen_x - offset_x, preview.screen_y - offset_y


def stop_card_html(stop_name: str) -> str:
    """Card contents: header with the stop name, amenities and nearby places."""
    items = amenities(stop_name)
    safe_zone = items[1].available
    image = HEADER_IMAGES[len(stop_name) % 2]

    amenity_rows = "".join(
        f'<li class="{"available" if item.available else "unavailable"}">{escape(item.label)}</li>' for item in items
    )
    spot_rows = "".join(
        f"<li><span>{escape(spot.name)}</span><small>{spot.distance}</small></li>"
        for spot in nearby_spots(stop_name)
    )
    badge = '<span class="safe-zone">Safe Zone</span>' if safe_zone else ""

    return (
        f'<div class="stop-preview-header" style="background-image: url({image});">'
        f"<h4>{escape(stop_name)}</h4>{badge}</div>"
        f'<p class="section">Amenities</p><ul class="amenities">{amenity_rows}</ul>'
        f'<p class="section">Nearby</p><ul class="spots">{spot_rows}</ul>'
    )


def render_preview_card(preview: HoverPreview, settings: MapSettings | None = None) -> str:
    settings = settings or MapSettings()
    left, top = preview_position(preview, settings.preview_offset_x, settings.preview_offset_y)
    return (
        f'<div class="stop-preview" data-stop-id="{escape(preview.stop_id)}" '
        f'style="position: absolute; left: {left:.0f}px; top: {top:.0f}px; '
        f'transform: translateY(-100%); width: 256px; z-index: 1000;">'
        f"{stop_card_html(preview.stop_name)}</div>"
    )
