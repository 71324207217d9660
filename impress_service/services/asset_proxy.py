"""
Asset Proxy Service
Fetches allow-listed images.neopets.com assets on behalf of the browser, so
HTTP-only assets can be loaded from our HTTPS pages.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

import httpx

from impress_service.config import get_settings
from impress_service.core.validation import validate_proxy_url

logger = logging.getLogger(__name__)

# Upstream headers passed through unchanged
FORWARDED_HEADERS = ("Content-Length", "Content-Type", "Cache-Control", "ETag", "Last-Modified")


class UpstreamError(Exception):
    """The upstream asset host could not be reached."""
    def __init__(self, message: str, status_code: int = 502):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


@dataclass
class ProxiedAsset:
    """A fully-read upstream response."""
    status_code: int
    body: bytes
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


def _forwarded_headers(response: httpx.Response) -> Dict[str, str]:
    headers = {
        name: response.headers[name]
        for name in FORWARDED_HEADERS
        if name in response.headers
    }
    # httpx decodes compressed bodies, so the upstream length no longer applies.
    if "Content-Length" in headers and "Content-Encoding" in response.headers:
        headers["Content-Length"] = str(len(response.content))
    return headers


async def fetch_asset(
    url: Optional[str],
    client: Optional[httpx.AsyncClient] = None
) -> ProxiedAsset:
    """
    Fetch an allow-listed asset.

    The URL is checked before any network call. The upstream body is read
    completely, so callers never send a truncated response. A non-OK upstream
    status is returned as-is, not raised.

    Args:
        url: Asset URL, must match one of the allowed patterns
        client: Optional shared httpx client

    Returns:
        ProxiedAsset with upstream status, body and forwarded headers

    Raises:
        ValidationError: If the URL is missing or not allowed
        UpstreamError: If the upstream host can't be reached
    """
    url = validate_proxy_url(url)
    logger.debug(f"[assetProxy] Sending: {url}")

    # Ask for the raw body so the upstream Content-Length stays accurate.
    request_headers = {"Accept-Encoding": "identity"}

    try:
        if client is None:
            timeout = get_settings().proxy_timeout_seconds
            async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as own_client:
                response = await own_client.get(url, headers=request_headers)
        else:
            response = await client.get(url, headers=request_headers)

    except httpx.TimeoutException:
        logger.warning(f"[assetProxy] Upstream timeout: {url}")
        raise UpstreamError(f"Upstream timed out: {url}", status_code=504)
    except httpx.HTTPError as e:
        logger.error(f"[assetProxy] Upstream error for {url}: {e}")
        raise UpstreamError(f"Upstream request failed: {e}")

    status_line = f"{response.status_code} {response.reason_phrase}"
    if response.is_success:
        logger.debug(f"[assetProxy] {status_line:>7}: {url}")
    else:
        logger.warning(f"[assetProxy] {status_line:>7}: {url}")

    return ProxiedAsset(
        status_code=response.status_code,
        body=response.content,
        headers=_forwarded_headers(response),
    )
