"""
Appearance Helpers
Turns item/body asset rows into Appearance records and builds the image
URLs the compositor's layers point at.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Union
from urllib.parse import quote, urljoin, urlsplit, urlunsplit

from impress_service.core.layers import Appearance, Layer
from impress_service.core.validation import get_origin

logger = logging.getLogger(__name__)

# Converted PNGs of every movie asset live here
ASSET_IMAGES_BASE_URL = "https://impress-asset-images.s3.amazonaws.com"

# Relative image URLs in our data belong to this host
LEGACY_IMAGE_BASE_URL = "http://images.neopets.com"

# HTTP-only hosts we can reach over HTTPS through our asset proxy hosts
HTTPS_PROXY_HOSTS = {
    "http://images.neopets.com": "images.neopets-asset-proxy.openneo.net",
    "http://pets.neopets.com": "pets.neopets-asset-proxy.openneo.net",
}

UNPARSEABLE_URL_PLACEHOLDER = "https://impress-2020.openneo.net/__error__URL-was-not-parseable__"
NOT_HTTPS_URL_PLACEHOLDER = "https://impress-2020.openneo.net/__error__URL-was-not-HTTPS__"

ASSET_PROXY_PATH = "/api/assetProxy"


def parse_restricted_zone_ids(zones_restrict: Optional[str]) -> List[int]:
    """
    Decode an item's zones_restrict bit string.

    Character i being "1" means the item restricts zone id i + 1.
    """
    if not zones_restrict:
        return []
    return [i + 1 for i, bit in enumerate(zones_restrict) if bit == "1"]


def _to_epoch_ms(converted_at: Union[datetime, str, int, float, None]) -> Optional[int]:
    if converted_at is None:
        return None
    if isinstance(converted_at, (int, float)):
        return int(converted_at)
    if isinstance(converted_at, str):
        converted_at = datetime.fromisoformat(converted_at.replace("Z", "+00:00"))
    return int(converted_at.timestamp() * 1000)


def layer_image_url(
    layer_type: str,
    remote_id: Union[str, int],
    size: int,
    converted_at: Union[datetime, str, int, float, None] = None,
    has_image: bool = True
) -> Optional[str]:
    """
    Build the URL of a movie asset's converted PNG.

    The remote id is zero-padded to 12 digits and its first three 3-digit
    groups become directories, e.g. remote id 7941 at size 600 is
    .../object/000/000/007/7941/600x600.png.

    Args:
        layer_type: "object" for item assets, "biology" for pet assets
        remote_id: The asset's Neopets id
        size: 600, 300 or 150
        converted_at: When the PNG was converted, appended for cache busting
        has_image: False when the asset was never converted

    Returns:
        Image URL, or None when there is no converted image
    """
    if not has_image:
        return None

    rid = str(remote_id)
    padded_id = rid.zfill(12)
    url = (
        f"{ASSET_IMAGES_BASE_URL}/{layer_type}"
        f"/{padded_id[0:3]}/{padded_id[3:6]}/{padded_id[6:9]}/{rid}/{size}x{size}.png"
    )

    time_ms = _to_epoch_ms(converted_at)
    if time_ms is not None:
        url += f"?{time_ms}"
    return url


def build_layer(asset: Dict[str, Any], size: int = 600) -> Layer:
    """Build a compositor layer from an asset row."""
    has_image = bool(asset.get("hasImage", True))
    return Layer(
        id=str(asset["id"]),
        zone_id=str(asset["zoneId"]),
        depth=int(asset["depth"]),
        image_url=layer_image_url(
            asset.get("type", "object"),
            asset["remoteId"],
            size,
            converted_at=asset.get("convertedAt"),
            has_image=has_image,
        ),
        svg_url=asset.get("svgUrl"),
        has_image=has_image,
    )


def build_item_appearance(
    assets: Iterable[Dict[str, Any]],
    zones_restrict: Optional[str],
    size: int = 600
) -> Appearance:
    """
    Build an item's appearance on one body from all of its asset rows.

    Only movie (.swf) assets are drawable layers. An item with no assets at
    all for this body restricts nothing; otherwise its zones_restrict applies,
    even when none of its assets are drawable.
    """
    assets = list(assets)
    if not assets:
        return Appearance()

    layers = tuple(
        build_layer(asset, size)
        for asset in assets
        if str(asset.get("url", "")).endswith(".swf")
    )
    restricted = frozenset(str(z) for z in parse_restricted_zone_ids(zones_restrict))
    return Appearance(layers=layers, restricted_zone_ids=restricted)


def build_pet_appearance(assets: Iterable[Dict[str, Any]], size: int = 600) -> Appearance:
    """Build a pet's base appearance. Biology never restricts zones."""
    return Appearance(layers=tuple(build_layer(asset, size) for asset in assets))


def safe_image_url(url_string: Optional[str]) -> Optional[str]:
    """
    Return an HTTPS-safe version of a Neopets image URL.

    Relative URLs resolve against images.neopets.com, and the HTTP-only
    Neopets hosts are rewritten to their HTTPS proxy hosts. Anything that
    still isn't HTTPS becomes a placeholder URL.
    """
    if url_string is None:
        return None

    try:
        parts = urlsplit(urljoin(LEGACY_IMAGE_BASE_URL + "/", url_string))
        parts.port  # raises on a malformed port
    except ValueError:
        logger.error(f"safe_image_url could not parse URL: {url_string}. Returning a placeholder.")
        return UNPARSEABLE_URL_PLACEHOLDER

    proxy_host = HTTPS_PROXY_HOSTS.get(get_origin(urlunsplit(parts)))
    if proxy_host:
        parts = parts._replace(scheme="https", netloc=proxy_host)

    if parts.scheme != "https":
        logger.error(
            f"safe_image_url was provided an unsafe URL, but we don't know how to "
            f"upgrade it to HTTPS: {url_string}. Returning a placeholder."
        )
        return NOT_HTTPS_URL_PLACEHOLDER

    return urlunsplit(parts)


def best_image_url_for_layer(layer: Layer) -> Optional[str]:
    """Vector layers go through our asset proxy; others use their PNG, made HTTPS-safe."""
    if layer.svg_url:
        return f"{ASSET_PROXY_PATH}?url={quote(layer.svg_url, safe='')}"
    return safe_image_url(layer.image_url)


def appearance_from_payload(
    data: Optional[Dict[str, Any]],
    size: int = 600,
    is_pet: bool = False
) -> Optional[Appearance]:
    """
    Read an appearance from request JSON.

    Either a ready-made appearance ({"layers", "restrictedZones"}) or raw
    asset rows ({"assets", "zonesRestrict"}), which are built into layers
    with converted image URLs at the given size. Pets ignore zonesRestrict.

    Raises:
        ValueError: If the data isn't shaped like either form
    """
    if not isinstance(data, dict) or "assets" not in data:
        return Appearance.from_dict(data)

    assets = data["assets"]
    if not isinstance(assets, list) or not all(isinstance(a, dict) for a in assets):
        raise ValueError("assets must be a list of objects")

    if is_pet:
        return build_pet_appearance(assets, size)

    zones_restrict = data.get("zonesRestrict")
    if zones_restrict is not None and not isinstance(zones_restrict, str):
        raise ValueError(f"zonesRestrict must be a string, but was: {zones_restrict!r}")
    return build_item_appearance(assets, zones_restrict, size)
