"""
Render Cache Manager
Composition keys and high-level cache operations for rendered asset images.
"""
import json
import hashlib
import logging
from typing import Dict, Any, Optional

from impress_service.cache.cache_store import CacheStore
from impress_service.config import get_settings

logger = logging.getLogger(__name__)


def generate_composition_key(library_url: str, size: int) -> str:
    """
    Generate the content key of a render job.

    The library URL and output size fully determine the PNG, so a change in
    rendering needs a new library URL or clearing the cache.

    Returns:
        SHA256 hash as cache key
    """
    key_data = {
        "library_url": library_url,
        "size": int(size),
    }

    key_string = json.dumps(key_data, sort_keys=True)
    return hashlib.sha256(key_string.encode()).hexdigest()


class CacheManager:
    """High-level cache management for asset image renders."""

    _instance = None
    _store: Optional[CacheStore] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._store = CacheStore(ttl_minutes=get_settings().cache_ttl_minutes)
        return cls._instance

    @property
    def enabled(self) -> bool:
        """Check if caching is enabled."""
        return get_settings().cache_enabled

    def get(self, cache_key: str) -> Optional[bytes]:
        """Get cached PNG."""
        if not self.enabled:
            return None
        return self._store.get(cache_key)

    def set(self, cache_key: str, data: bytes):
        """Cache a PNG."""
        if not self.enabled:
            return
        self._store.set(cache_key, data)

    def clear_expired(self) -> int:
        """Remove expired renders from disk."""
        return self._store.clear_expired()

    def get_status(self) -> Dict[str, Any]:
        """Get cache status for health endpoint."""
        stats = self._store.get_stats() if self._store else {}
        return {
            "enabled": self.enabled,
            "type": "disk_png",
            "ttl_minutes": stats.get("ttl_minutes", 0),
            "entries": stats.get("entries", 0),
            "size_bytes": stats.get("size_bytes", 0),
        }


# Global instance
cache_manager = CacheManager()
