# Core module
from impress_service.core.validation import (
    ValidationError,
    validate_asset_image_input,
    validate_library_url,
    validate_proxy_url,
    validate_size,
)
from impress_service.core.layers import Layer, Appearance, get_visible_layers
from impress_service.core.appearance import (
    parse_restricted_zone_ids,
    build_item_appearance,
    build_pet_appearance,
    layer_image_url,
    safe_image_url,
    best_image_url_for_layer,
    appearance_from_payload,
)
