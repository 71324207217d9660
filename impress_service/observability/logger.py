"""
Render Logger
Structured logging for asset image renders.
"""
import os
import json
import logging
from pathlib import Path
from datetime import datetime, timezone
from typing import Optional

# Ensure logs directory exists
LOGS_DIR = Path(__file__).parent.parent.parent / "logs"
LOGS_DIR.mkdir(parents=True, exist_ok=True)

RENDER_LOG_FILE = LOGS_DIR / "renders.log"

# Configure render logger
render_logger = logging.getLogger("impress.renders")
render_logger.setLevel(logging.INFO)

# File handler for renders
file_handler = logging.FileHandler(RENDER_LOG_FILE, encoding="utf-8")
file_handler.setFormatter(logging.Formatter("%(message)s"))
render_logger.addHandler(file_handler)

# Prevent propagation to root logger
render_logger.propagate = False


def log_render(
    composition_key: str,
    size: int,
    cache_hit: bool,
    latency_ms: int,
    status: str,
    error: Optional[str] = None,
    bytes_out: int = 0
):
    """
    Log a structured render entry.

    Args:
        composition_key: Content key of the render job
        size: Output size in pixels
        cache_hit: Whether the PNG came from the render cache
        latency_ms: Request latency in milliseconds
        status: success, busy or fail
        error: Error message if failed
        bytes_out: PNG size in bytes
    """
    if not is_logging_enabled():
        return

    entry = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "composition_key": composition_key,
        "size": size,
        "cache_hit": cache_hit,
        "latency_ms": latency_ms,
        "status": status,
        "bytes": bytes_out,
    }

    if error:
        entry["error"] = error

    render_logger.info(json.dumps(entry))


def is_logging_enabled() -> bool:
    """Check if render logging is enabled."""
    return os.getenv("IMPRESS_LOGGING_ENABLED", "true").lower() == "true"
