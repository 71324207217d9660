# Services module
from impress_service.services.asset_proxy import (
    FORWARDED_HEADERS,
    ProxiedAsset,
    UpstreamError,
    fetch_asset,
)
