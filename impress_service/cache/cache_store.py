"""
Cache Store
Disk-based cache for rendered PNGs.
"""
import os
import time
import logging
from pathlib import Path
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)


class CacheStore:
    """Disk-based cache, one PNG file per key. File mtime is the cache time."""

    def __init__(self, cache_dir: str = None, ttl_minutes: int = 1440):
        """
        Initialize cache store.

        Args:
            cache_dir: Directory for cache files
            ttl_minutes: Time-to-live in minutes (default: 24 hours)
        """
        if cache_dir is None:
            module_dir = Path(__file__).parent.parent
            cache_dir = module_dir / "data" / "renders"

        self.cache_dir = Path(cache_dir)
        self.ttl_seconds = ttl_minutes * 60
        self._ensure_directory()

    def _ensure_directory(self):
        """Create cache directory if needed."""
        self.cache_dir.mkdir(parents=True, exist_ok=True)

    def _get_cache_path(self, cache_key: str) -> Path:
        """Get file path for a cache key."""
        return self.cache_dir / f"{cache_key}.png"

    def _is_expired(self, cache_path: Path) -> bool:
        return time.time() - cache_path.stat().st_mtime > self.ttl_seconds

    def get(self, cache_key: str) -> Optional[bytes]:
        """
        Get cached PNG if it exists and is not expired.

        Args:
            cache_key: Cache key (SHA256 hash)

        Returns:
            PNG bytes or None
        """
        cache_path = self._get_cache_path(cache_key)

        if not cache_path.exists():
            return None

        try:
            if self._is_expired(cache_path):
                logger.info(f"Cache expired: {cache_key[:16]}...")
                self._delete(cache_key)
                return None

            data = cache_path.read_bytes()
            logger.info(f"Cache hit: {cache_key[:16]}...")
            return data

        except OSError as e:
            logger.warning(f"Cache read error: {e}")
            return None

    def set(self, cache_key: str, data: bytes):
        """
        Save a PNG to cache.

        Writes to a temp file first so readers never see a partial PNG.
        """
        cache_path = self._get_cache_path(cache_key)
        tmp_path = cache_path.with_suffix(".tmp")

        try:
            tmp_path.write_bytes(data)
            os.replace(tmp_path, cache_path)
            logger.info(f"Cache saved: {cache_key[:16]}...")

        except OSError as e:
            logger.warning(f"Cache write error: {e}")

    def _delete(self, cache_key: str):
        """Delete a cache entry."""
        cache_path = self._get_cache_path(cache_key)
        try:
            if cache_path.exists():
                cache_path.unlink()
        except OSError as e:
            logger.warning(f"Cache delete error: {e}")

    def clear_expired(self) -> int:
        """
        Remove all expired cache entries.

        Returns:
            Number of entries removed
        """
        removed = 0
        for cache_file in self.cache_dir.glob("*.png"):
            try:
                if self._is_expired(cache_file):
                    cache_file.unlink()
                    removed += 1
            except OSError as e:
                logger.warning(f"Cache cleanup error for {cache_file.name}: {e}")

        if removed > 0:
            logger.info(f"Removed {removed} expired cache entries")

        return removed

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        try:
            cache_files = list(self.cache_dir.glob("*.png"))
            total_size = sum(f.stat().st_size for f in cache_files)

            return {
                "entries": len(cache_files),
                "size_bytes": total_size,
                "ttl_minutes": self.ttl_seconds // 60,
            }
        except OSError as e:
            logger.warning(f"Cache stats error: {e}")
            return {"entries": 0, "size_bytes": 0, "ttl_minutes": self.ttl_seconds // 60}
