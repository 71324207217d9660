# Observability module
from impress_service.observability.logger import log_render, is_logging_enabled
from impress_service.observability.metrics import (
    increment_render,
    increment_proxy,
    increment_pool_reset,
    get_metrics,
    reset_metrics,
)
