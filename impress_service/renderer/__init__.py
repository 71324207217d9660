# Renderer module
from impress_service.renderer.page_pool import (
    PagePool,
    PagePoolManager,
    BrowserPageFactory,
    PoolAcquireTimeout,
    PoolDrainingError,
    page_pool_manager,
)
from impress_service.renderer.asset_image import (
    RenderError,
    RenderTimeout,
    render_image,
    build_render_page_url,
)
