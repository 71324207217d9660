"""
Settings Module
Centralized configuration from environment variables.
"""
import os
import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class Settings:
    """Application settings from environment variables."""

    # Render page pool
    page_pool_size: int = 4
    acquire_timeout_seconds: float = 15.0
    render_timeout_seconds: float = 10.0
    pool_recycle_seconds: float = 60.0
    browser_headless: bool = True

    # Render target
    render_page_url: str = "http://localhost:3000/internal/assetImage"
    trusted_library_origin: str = "https://images.neopets.com"

    # Asset proxy
    proxy_timeout_seconds: float = 30.0

    # Render cache
    cache_enabled: bool = True
    cache_ttl_minutes: int = 1440

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from environment variables."""
        return cls(
            # Render page pool
            page_pool_size=int(os.getenv("IMPRESS_PAGE_POOL_SIZE", "4")),
            acquire_timeout_seconds=float(os.getenv("IMPRESS_ACQUIRE_TIMEOUT_SECONDS", "15")),
            render_timeout_seconds=float(os.getenv("IMPRESS_RENDER_TIMEOUT_SECONDS", "10")),
            pool_recycle_seconds=float(os.getenv("IMPRESS_POOL_RECYCLE_SECONDS", "60")),
            browser_headless=os.getenv("IMPRESS_BROWSER_HEADLESS", "true").lower() == "true",

            # Render target
            render_page_url=os.getenv(
                "IMPRESS_RENDER_PAGE_URL", "http://localhost:3000/internal/assetImage"
            ),
            trusted_library_origin=os.getenv(
                "IMPRESS_TRUSTED_LIBRARY_ORIGIN", "https://images.neopets.com"
            ).rstrip("/"),

            # Asset proxy
            proxy_timeout_seconds=float(os.getenv("IMPRESS_PROXY_TIMEOUT_SECONDS", "30")),

            # Render cache
            cache_enabled=os.getenv("IMPRESS_CACHE_ENABLED", "true").lower() == "true",
            cache_ttl_minutes=int(os.getenv("IMPRESS_CACHE_TTL_MINUTES", "1440")),
        )

    def to_dict(self) -> dict:
        """Export settings as dict."""
        return {
            "page_pool_size": self.page_pool_size,
            "acquire_timeout_seconds": self.acquire_timeout_seconds,
            "render_timeout_seconds": self.render_timeout_seconds,
            "pool_recycle_seconds": self.pool_recycle_seconds,
            "browser_headless": self.browser_headless,
            "render_page_url": self.render_page_url,
            "trusted_library_origin": self.trusted_library_origin,
            "proxy_timeout_seconds": self.proxy_timeout_seconds,
            "cache_enabled": self.cache_enabled,
            "cache_ttl_minutes": self.cache_ttl_minutes,
        }


def get_settings() -> Settings:
    """Get application settings (cached singleton)."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
        logger.info(f"Settings loaded: {_settings.to_dict()}")
    return _settings


def reload_settings() -> Settings:
    """Force reload settings from environment."""
    global _settings
    _settings = Settings.from_env()
    logger.info(f"Settings reloaded: {_settings.to_dict()}")
    return _settings


# Singleton instance
_settings: Optional[Settings] = None
