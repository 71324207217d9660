"""
Asset Image Renderer

Renders a canvas movie library to PNG. We load the web app's internal
render-target page in a pooled headless browser page, wait for it to either
draw the movie or show an error, and screenshot the canvas.

This is a heavyweight operation, so responses are cached aggressively by
the caller.
"""
import io
import asyncio
import logging
from typing import Optional, Tuple
from urllib.parse import urlencode

from PIL import Image, UnidentifiedImageError
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from impress_service.config import Settings, get_settings
from impress_service.core.validation import validate_asset_image_input
from impress_service.renderer.page_pool import PagePoolManager, page_pool_manager

logger = logging.getLogger(__name__)

LOADED_CANVAS_SELECTOR = "#asset-image-canvas[data-is-loaded=true]"
ERROR_MESSAGE_SELECTOR = "#asset-image-error-message"


class RenderError(Exception):
    """The render page reported, or implied, a failure."""
    def __init__(self, message: str, status_code: int = 500):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class RenderTimeout(RenderError):
    """Neither the canvas nor an error message showed up in time."""


def build_render_page_url(render_page_url: str, library_url: str, size: int) -> str:
    """URL of the internal page that draws one movie library at one size."""
    return f"{render_page_url}?{urlencode({'libraryUrl': library_url, 'size': size})}"


def describe_png(data: bytes) -> Tuple[int, int]:
    """
    Check that screenshot bytes are a PNG.

    Returns:
        (width, height)

    Raises:
        RenderError: If the bytes are not a decodable PNG
    """
    try:
        with Image.open(io.BytesIO(data)) as image:
            if image.format != "PNG":
                raise RenderError(f"Screenshot was {image.format}, not PNG")
            return image.size
    except UnidentifiedImageError as e:
        raise RenderError(f"Screenshot is not a readable image: {e}")


async def screenshot_image_from_page(page, timeout_ms: float) -> bytes:
    canvas = await page.wait_for_selector(LOADED_CANVAS_SELECTOR, timeout=timeout_ms)
    logger.debug("Image loaded, taking screenshot")

    image = await canvas.screenshot(omit_background=True)
    logger.debug(f"Screenshot captured, size: {len(image)}")
    return image


async def read_error_message_from_page(page, timeout_ms: float) -> str:
    container = await page.wait_for_selector(ERROR_MESSAGE_SELECTOR, timeout=timeout_ms)
    return await container.inner_text()


def _is_timeout(error: BaseException) -> bool:
    return isinstance(error, (asyncio.TimeoutError, PlaywrightTimeoutError))


def _error_message(error: BaseException) -> str:
    if _is_timeout(error) and not str(error):
        return "Timed out waiting for the render page"
    return getattr(error, "message", None) or str(error)


async def await_page_result(page, timeout_seconds: float) -> bytes:
    """
    Race the loaded canvas against the error message.

    Each wait has its own timeout. The first wait to succeed decides the
    outcome and the other is cancelled.

    Raises:
        RenderError: If the page showed an error message, or both waits failed
        RenderTimeout: If both waits timed out
    """
    timeout_ms = timeout_seconds * 1000
    image_task = asyncio.ensure_future(
        asyncio.wait_for(screenshot_image_from_page(page, timeout_ms), timeout_seconds)
    )
    error_task = asyncio.ensure_future(
        asyncio.wait_for(read_error_message_from_page(page, timeout_ms), timeout_seconds)
    )
    tasks = [image_task, error_task]

    failures = []
    try:
        pending = set(tasks)
        while pending:
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                if task.exception() is not None:
                    failures.append(task.exception())
                elif task is error_task:
                    raise RenderError(task.result())
                else:
                    return task.result()
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    message = ", ".join(_error_message(e) for e in failures)
    if all(_is_timeout(e) for e in failures):
        raise RenderTimeout(message)
    raise RenderError(message)


async def render_image(
    library_url: Optional[str],
    size: Optional[str],
    manager: Optional[PagePoolManager] = None,
    settings: Optional[Settings] = None
) -> bytes:
    """
    Render a movie library to a transparent PNG.

    Args:
        library_url: HTTPS URL of the movie library on the trusted origin
        size: "600", "300" or "150"
        manager: Page pool manager (defaults to the global one)
        settings: Settings (defaults to the loaded ones)

    Returns:
        PNG bytes

    Raises:
        ValidationError: On invalid input, before any page is borrowed
        PoolAcquireTimeout: If no page frees up in time
        RenderError / RenderTimeout: If the page fails to render
    """
    settings = settings or get_settings()
    manager = manager or page_pool_manager

    validated = validate_asset_image_input(library_url, size, settings.trusted_library_origin)
    page_url = build_render_page_url(
        settings.render_page_url, validated["library_url"], validated["size"]
    )

    logger.debug("Getting browser page")
    async with manager.page() as page:
        logger.debug(f"Page ready, navigating to: {page_url}")
        try:
            await page.goto(page_url)
        except PlaywrightTimeoutError as e:
            raise RenderTimeout(f"Render page did not load: {e.message}")
        except PlaywrightError as e:
            raise RenderError(f"Render page did not load: {e.message}")

        logger.debug("Page loaded, awaiting image")
        image = await await_page_result(page, settings.render_timeout_seconds)

    width, height = describe_png(image)
    logger.info(f"Rendered {validated['library_url']} at {validated['size']}px ({width}x{height})")
    return image
