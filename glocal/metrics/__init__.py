from glocal.metrics.counters import (
    increment_api_usage,
    increment_budget_alert,
    increment_cache_error,
    increment_cache_hit,
    increment_cache_invalidated,
    increment_cache_miss,
)
from glocal.metrics.prometheus import get_prometheus_registry, sanitize_label

__all__ = [
    "get_prometheus_registry",
    "sanitize_label",
    "increment_cache_hit",
    "increment_cache_miss",
    "increment_cache_error",
    "increment_cache_invalidated",
    "increment_api_usage",
    "increment_budget_alert",
]
