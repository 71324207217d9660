"""
API Routes for the Impress render service.
Asset image snapshots, the asset proxy, and outfit layer composition.
"""
import time
import asyncio
import logging
from typing import Any, Dict, Optional
from fastapi import APIRouter, Body, Query
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from impress_service.cache import cache_manager, generate_composition_key
from impress_service.config import get_settings
from impress_service.core.appearance import appearance_from_payload, best_image_url_for_layer
from impress_service.core.layers import get_visible_layers
from impress_service.core.validation import ValidationError, validate_asset_image_input, validate_size
from impress_service.observability import (
    get_metrics,
    increment_proxy,
    increment_render,
    is_logging_enabled,
    log_render,
)
from impress_service.renderer import (
    PoolAcquireTimeout,
    RenderError,
    page_pool_manager,
    render_image,
)
from impress_service.services.asset_proxy import UpstreamError, fetch_asset

logger = logging.getLogger(__name__)

router = APIRouter()

VERSION = "1.0.0"

# Renders are keyed by library URL and size, so they never change.
IMMUTABLE_CACHE_CONTROL = "public, max-age=31536000, immutable"


def _reject(message: str, status_code: int = 400) -> PlainTextResponse:
    """Plain-text error response."""
    return PlainTextResponse(
        message,
        status_code=status_code,
        headers={"Content-Type": "text/plain; charset=utf8"},
    )


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


# ==================== PUBLIC ENDPOINTS ====================

@router.get("/health")
async def health_check():
    """Health check with observability info."""
    metrics = get_metrics()

    return {
        "status": "ok",
        "version": VERSION,
        "page_pool": page_pool_manager.stats(),
        "cache": cache_manager.get_status(),
        "observability": {
            "logging_enabled": is_logging_enabled(),
            "total_renders": metrics["total_renders"],
            "cache_hit_ratio": metrics["cache_hit_ratio"],
            "pool_resets": metrics["pool_resets"],
        },
        "features": [
            "asset_image", "asset_proxy", "outfit_appearance",
            "render_cache", "page_pool_recycling", "observability",
        ]
    }


@router.get("/metrics")
async def get_metrics_endpoint():
    """Get detailed metrics for monitoring."""
    return JSONResponse(content=get_metrics())


# ==================== ASSET IMAGE ====================

@router.get("/api/assetImage")
async def asset_image(
    libraryUrl: Optional[str] = Query(None, description="HTTPS images.neopets.com URL of a JS movie library"),
    size: Optional[str] = Query(None, description="Output size: 600, 300 or 150"),
):
    """
    GET /api/assetImage

    Render a canvas movie library to a transparent PNG in a headless browser.
    Responses carry a long-term immutable cache header.
    """
    started = time.monotonic()
    settings = get_settings()

    try:
        validated = validate_asset_image_input(libraryUrl, size, settings.trusted_library_origin)
    except ValidationError as ve:
        increment_render("invalid", cache_hit=False, latency_ms=_elapsed_ms(started))
        return _reject(ve.message, ve.status_code)

    composition_key = generate_composition_key(validated["library_url"], validated["size"])

    # Disk cache reads and writes run off the event loop the page pool shares.
    image = await asyncio.to_thread(cache_manager.get, composition_key)
    cache_hit = image is not None

    if image is None:
        try:
            image = await render_image(validated["library_url"], str(validated["size"]))
        except PoolAcquireTimeout as pe:
            latency_ms = _elapsed_ms(started)
            logger.warning(f"Asset image busy after {latency_ms}ms: {validated['library_url']}")
            increment_render("busy", cache_hit=False, latency_ms=latency_ms)
            log_render(composition_key, validated["size"], False, latency_ms, "busy", error=pe.message)
            return _reject(f"Could not load image: {pe.message}", pe.status_code)
        except RenderError as re:
            latency_ms = _elapsed_ms(started)
            logger.error(f"Asset image failed for {validated['library_url']}: {re.message}")
            increment_render("fail", cache_hit=False, latency_ms=latency_ms)
            log_render(composition_key, validated["size"], False, latency_ms, "fail", error=re.message)
            return _reject(f"Could not load image: {re.message}", re.status_code)
        except Exception as e:
            latency_ms = _elapsed_ms(started)
            logger.error(f"Asset image crashed for {validated['library_url']}: {e}")
            increment_render("fail", cache_hit=False, latency_ms=latency_ms)
            log_render(composition_key, validated["size"], False, latency_ms, "fail", error=str(e))
            return _reject(f"Could not load image: {e}", 500)

        await asyncio.to_thread(cache_manager.set, composition_key, image)

    latency_ms = _elapsed_ms(started)
    increment_render("success", cache_hit=cache_hit, latency_ms=latency_ms)
    log_render(composition_key, validated["size"], cache_hit, latency_ms, "success", bytes_out=len(image))

    return Response(
        content=image,
        media_type="image/png",
        headers={"Cache-Control": IMMUTABLE_CACHE_CONTROL},
    )


# ==================== ASSET PROXY ====================

@router.get("/api/assetProxy")
async def asset_proxy(
    url: Optional[str] = Query(None, description="Allow-listed images.neopets.com asset URL"),
):
    """
    GET /api/assetProxy

    Pass an allow-listed asset through with its upstream status and caching
    headers.
    """
    try:
        asset = await fetch_asset(url)
    except ValidationError as ve:
        return _reject(ve.message, ve.status_code)
    except UpstreamError as ue:
        increment_proxy(ue.status_code)
        return _reject(ue.message, ue.status_code)

    increment_proxy(asset.status_code)
    return Response(content=asset.body, status_code=asset.status_code, headers=asset.headers)


# ==================== OUTFIT APPEARANCE ====================

@router.post("/api/outfitAppearance")
async def outfit_appearance(
    payload: Dict[str, Any] = Body(..., description="petAppearance and itemAppearances"),
):
    """
    POST /api/outfitAppearance

    Compose the visible layers for a pet wearing a set of items.

    Body:
        - petAppearance: {layers: [...]}, {assets: [...]} or null
        - itemAppearances: [{layers: [...], restrictedZones: [{id}]}
          or {assets: [...], zonesRestrict: "0101..."}, ...]
        - size: 600, 300 or 150, for layers built from assets (default 600)
    """
    item_data = payload.get("itemAppearances") or []
    if not isinstance(item_data, list):
        return JSONResponse(status_code=400, content={"detail": "itemAppearances must be a list"})

    try:
        size = validate_size(payload.get("size", 600))
    except ValidationError as ve:
        return JSONResponse(status_code=ve.status_code, content={"detail": ve.message})

    try:
        pet_appearance = appearance_from_payload(payload.get("petAppearance"), size, is_pet=True)
        item_appearances = [appearance_from_payload(a, size) for a in item_data]
    except (KeyError, TypeError, ValueError) as e:
        return JSONResponse(status_code=400, content={"detail": f"Invalid appearance: {e}"})

    visible_layers = get_visible_layers(pet_appearance, item_appearances)
    logger.debug(f"Composed {len(visible_layers)} visible layers from {len(item_appearances)} items")

    return {
        "visibleLayers": [
            {**layer.to_dict(), "bestImageUrl": best_image_url_for_layer(layer)}
            for layer in visible_layers
        ]
    }
