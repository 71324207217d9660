"""
Input Validation Module
Validates asset image and asset proxy request parameters before any
render page or upstream request is touched.
"""
import re
import logging
from typing import Dict, Any, Optional, Union
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)

# Configuration
ALLOWED_SIZES = ("600", "300", "150")
DEFAULT_PORTS = {"http": 80, "https": 443}

# Asset proxy allow list
VALID_PROXY_URL_PATTERNS = [
    re.compile(r"^http://images\.neopets\.com/items/[a-zA-Z0-9_ -]+\.gif$"),
    re.compile(
        r"^http://images\.neopets\.com/cp/(bio|items)/data/[0-9]{3}/[0-9]{3}/[0-9]{3}"
        r"/[a-f0-9_]+/[a-zA-Z0-9_/]+\.(svg|png)$"
    ),
    re.compile(
        r"^http://images\.neopets\.com/cp/(bio|items)/swf/[0-9]{3}/[0-9]{3}/[0-9]{3}"
        r"/[a-f0-9_]+\.swf$"
    ),
]


class ValidationError(Exception):
    """Custom exception for validation errors."""
    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


def get_origin(url: str) -> Optional[str]:
    """
    Compute the origin (scheme://host[:port]) of an absolute URL.

    Default ports are omitted, as browsers do. Returns None when the URL
    has no scheme or host, or its port is malformed.
    """
    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError:
        return None

    scheme = parts.scheme.lower()
    host = parts.hostname
    if not scheme or not host:
        return None

    if port is None or DEFAULT_PORTS.get(scheme) == port:
        return f"{scheme}://{host}"
    return f"{scheme}://{host}:{port}"


def validate_library_url(library_url: Optional[str], trusted_origin: str) -> str:
    """
    Check that a movie library URL is present and served from the trusted origin.

    Raises:
        ValidationError: If missing or not on the trusted HTTPS origin
    """
    if not library_url:
        raise ValidationError("libraryUrl is required")

    if get_origin(library_url) != trusted_origin.lower():
        raise ValidationError(
            f"libraryUrl must be an HTTPS Neopets URL, but was: {library_url}"
        )

    logger.debug(f"libraryUrl OK: {library_url}")
    return library_url


def validate_size(size: Union[str, int, None]) -> int:
    """
    Check that the requested output size is one we render.

    Returns:
        Size in pixels

    Raises:
        ValidationError: If size is not 600, 300 or 150
    """
    if isinstance(size, int):
        size = str(size)
    if size not in ALLOWED_SIZES:
        raise ValidationError(f"size must be 600, 300, or 150, but was: {size}")
    return int(size)


def validate_asset_image_input(
    library_url: Optional[str],
    size: Optional[str],
    trusted_origin: str
) -> Dict[str, Any]:
    """
    Validate all /api/assetImage parameters.

    Returns:
        Dict with validated 'library_url' and 'size'

    Raises:
        ValidationError: On the first invalid parameter
    """
    validated_url = validate_library_url(library_url, trusted_origin)
    validated_size = validate_size(size)
    return {"library_url": validated_url, "size": validated_size}


def validate_proxy_url(url: Optional[str]) -> str:
    """
    Check that a URL is allowed through the asset proxy.

    Raises:
        ValidationError: If missing or not matching any allowed pattern
    """
    if not url:
        raise ValidationError("Bad request: Must provide `?url` in the query string")

    if not any(pattern.fullmatch(url) for pattern in VALID_PROXY_URL_PATTERNS):
        raise ValidationError("Bad request: URL did not match any valid patterns")

    return url
