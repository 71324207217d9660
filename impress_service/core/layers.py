"""
Layer Compositor
Reduces a pet's base appearance and the appearances of its worn items into
the ordered list of layers to draw.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

ZoneId = str


@dataclass(frozen=True)
class Layer:
    """One drawable asset, pinned to a zone. Lower depth is drawn first."""
    id: str
    zone_id: ZoneId
    depth: int
    image_url: Optional[str] = None
    svg_url: Optional[str] = None
    has_image: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Layer":
        """
        Build a layer from API data.

        Accepts both the nested shape ({"zone": {"id", "depth"}}) and the
        flat one ({"zoneId", "depth"}).
        """
        if not isinstance(data, dict):
            raise ValueError(f"Layer must be an object, but was: {data!r}")

        zone = data.get("zone") or {}
        if not isinstance(zone, dict):
            raise ValueError(f"Layer {data.get('id')} zone must be an object, but was: {zone!r}")
        zone_id = zone.get("id", data.get("zoneId"))
        depth = zone.get("depth", data.get("depth"))
        if zone_id is None or depth is None:
            raise ValueError(f"Layer {data.get('id')} is missing its zone id or depth")

        image_url = data.get("imageUrl")
        svg_url = data.get("svgUrl")
        return cls(
            id=str(data["id"]),
            zone_id=str(zone_id),
            depth=int(depth),
            image_url=image_url,
            svg_url=svg_url,
            has_image=data.get("hasImage", bool(image_url or svg_url)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "zone": {"id": self.zone_id, "depth": self.depth},
            "imageUrl": self.image_url,
            "svgUrl": self.svg_url,
            "hasImage": self.has_image,
        }


@dataclass(frozen=True)
class Appearance:
    """Layers plus restricted zones for one (item or biology, body) pairing."""
    layers: Tuple[Layer, ...] = ()
    restricted_zone_ids: frozenset = field(default_factory=frozenset)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["Appearance"]:
        if data is None:
            return None
        if not isinstance(data, dict):
            raise ValueError(f"Appearance must be an object, but was: {data!r}")
        layers = tuple(Layer.from_dict(l) for l in data.get("layers") or [])
        restricted = frozenset(
            str(z["id"]) if isinstance(z, dict) else str(z)
            for z in data.get("restrictedZones") or []
        )
        return cls(layers=layers, restricted_zone_ids=restricted)


def get_visible_layers(
    pet_appearance: Optional[Appearance],
    item_appearances: Iterable[Optional[Appearance]]
) -> List[Layer]:
    """
    Compute the layers to draw for a pet wearing the given items.

    Layers are collected from the pet appearance first, then each item in
    the order given. Only the first layer seen for each zone is kept. Zones
    restricted by any item are then hidden, including the pet's own layers
    there; the pet appearance itself never restricts anything. The result is
    sorted by depth, ties keeping their collection order.

    An item appearance with no layers still hides the zones it restricts.

    Args:
        pet_appearance: Base biology appearance, or None
        item_appearances: Appearances of the worn items (None entries skipped)

    Returns:
        Visible layers, back to front
    """
    item_appearances = [a for a in item_appearances if a is not None]
    all_appearances = ([pet_appearance] if pet_appearance else []) + item_appearances

    # Our data should only ever have one layer per zone, but when it doesn't,
    # the first one wins.
    seen_zone_ids = set()
    all_layers = []
    for appearance in all_appearances:
        for layer in appearance.layers:
            if layer.zone_id in seen_zone_ids:
                logger.debug(f"Dropping duplicate layer {layer.id} in zone {layer.zone_id}")
                continue
            seen_zone_ids.add(layer.zone_id)
            all_layers.append(layer)

    restricted_zone_ids = set()
    for appearance in item_appearances:
        restricted_zone_ids.update(appearance.restricted_zone_ids)

    visible_layers = [l for l in all_layers if l.zone_id not in restricted_zone_ids]
    visible_layers.sort(key=lambda l: l.depth)

    return visible_layers
