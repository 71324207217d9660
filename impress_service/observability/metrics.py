"""
Metrics Module
Track render outcomes, cache performance, proxy traffic and pool recycling.
"""
import threading
from typing import Dict, Any


def _empty_metrics() -> Dict[str, Any]:
    return {
        "total_renders": 0,
        "renders_by_status": {},
        "cache_hits": 0,
        "cache_misses": 0,
        "total_render_ms": 0,
        "proxy_requests": 0,
        "proxy_by_status": {},
        "pool_resets": 0,
    }


# Thread-safe metrics storage
_lock = threading.Lock()
_metrics = _empty_metrics()


def increment_render(status: str, cache_hit: bool, latency_ms: int = 0):
    """
    Record an asset image render in metrics.

    Args:
        status: success, busy, invalid or fail
        cache_hit: Whether it was served from the render cache
        latency_ms: Time spent producing the response
    """
    with _lock:
        _metrics["total_renders"] += 1
        by_status = _metrics["renders_by_status"]
        by_status[status] = by_status.get(status, 0) + 1

        if cache_hit:
            _metrics["cache_hits"] += 1
        else:
            _metrics["cache_misses"] += 1

        _metrics["total_render_ms"] += latency_ms


def increment_proxy(status_code: int):
    """Record a proxied asset request by upstream status code."""
    with _lock:
        _metrics["proxy_requests"] += 1
        key = str(status_code)
        _metrics["proxy_by_status"][key] = _metrics["proxy_by_status"].get(key, 0) + 1


def increment_pool_reset():
    with _lock:
        _metrics["pool_resets"] += 1


def get_metrics() -> Dict[str, Any]:
    """Get current metrics snapshot."""
    with _lock:
        total = _metrics["total_renders"]
        hits = _metrics["cache_hits"]

        return {
            "total_renders": total,
            "renders_by_status": dict(_metrics["renders_by_status"]),
            "cache_hits": hits,
            "cache_misses": _metrics["cache_misses"],
            "cache_hit_ratio": round(hits / total, 3) if total > 0 else 0.0,
            "avg_render_ms": round(_metrics["total_render_ms"] / total, 1) if total > 0 else 0.0,
            "proxy_requests": _metrics["proxy_requests"],
            "proxy_by_status": dict(_metrics["proxy_by_status"]),
            "pool_resets": _metrics["pool_resets"],
        }


def reset_metrics():
    """Reset all metrics (for testing)."""
    global _metrics
    with _lock:
        _metrics = _empty_metrics()
