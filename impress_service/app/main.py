"""
Impress Render Service

Server-side pieces of the Dress to Impress outfit previews:

- /api/assetImage      - canvas movie library rendered to PNG (headless browser)
- /api/assetProxy      - allow-listed images.neopets.com asset proxy
- /api/outfitAppearance - visible layer composition for a pet and its items
- /health, /metrics    - health and monitoring

Run with: uvicorn impress_service.app.main:app

Asset images are rendered in a small pool of browser pages that is recycled
every minute. Responses are immutable and cached on disk by library URL and
size, and can be fronted by a CDN.
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from impress_service.app.routes import router, VERSION
from impress_service.cache import cache_manager
from impress_service.config import get_settings
from impress_service.observability import is_logging_enabled
from impress_service.renderer import page_pool_manager

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()

    logger.info("=" * 50)
    logger.info(f"Impress Render Service v{VERSION} Starting...")
    logger.info("=" * 50)

    removed = cache_manager.clear_expired()
    cache_status = cache_manager.get_status()
    logger.info(
        f"Render cache: {'enabled' if cache_status['enabled'] else 'disabled'} "
        f"({cache_status['entries']} entries, {removed} expired removed)"
    )
    logger.info(f"Logging: {'enabled' if is_logging_enabled() else 'disabled'}")

    page_pool_manager.start()
    logger.info(
        f"Page pool: {settings.page_pool_size} pages, "
        f"recycled every {settings.pool_recycle_seconds:.0f}s"
    )
    logger.info(f"Render page: {settings.render_page_url}")

    logger.info("✓ Service ready!")
    logger.info("=" * 50)

    yield

    logger.info("Service shutting down...")
    await page_pool_manager.stop()


app = FastAPI(
    title="Impress Render Service",
    description="Outfit layer composition, asset image snapshots and asset proxy",
    version=VERSION,
    lifespan=lifespan
)

# ============================================================================
# MIDDLEWARE
# ============================================================================
app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])

app.include_router(router)
