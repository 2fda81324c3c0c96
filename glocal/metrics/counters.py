from __future__ import annotations

from prometheus_client import Counter

from glocal.metrics.prometheus import get_prometheus_registry, sanitize_label, status_class

glocal_cache_hit_metric = Counter(
    "glocal_cache_hit_total",
    "Total cache hits",
    ["cache_type"],
    registry=get_prometheus_registry(),
)

glocal_cache_miss_metric = Counter(
    "glocal_cache_miss_total",
    "Total cache misses",
    ["cache_type"],
    registry=get_prometheus_registry(),
)

glocal_cache_error_metric = Counter(
    "glocal_cache_error_total",
    "Total cache backend errors",
    ["operation"],
    registry=get_prometheus_registry(),
)

glocal_cache_invalidated_metric = Counter(
    "glocal_cache_invalidated_total",
    "Total cache keys removed by invalidation",
    ["kind"],
    registry=get_prometheus_registry(),
)

glocal_api_spend_metric = Counter(
    "glocal_api_spend_usd_total",
    "Total external API spend in USD",
    ["service"],
    registry=get_prometheus_registry(),
)

glocal_api_requests_metric = Counter(
    "glocal_api_requests_total",
    "Total external API requests logged",
    ["service", "status_class"],
    registry=get_prometheus_registry(),
)

glocal_budget_alert_metric = Counter(
    "glocal_budget_alert_total",
    "Total budget alerts raised",
    ["service", "status"],
    registry=get_prometheus_registry(),
)


def increment_cache_hit(*, cache_type: str, amount: int = 1) -> None:
    glocal_cache_hit_metric.labels(cache_type=sanitize_label(cache_type)).inc(amount)


def increment_cache_miss(*, cache_type: str, amount: int = 1) -> None:
    glocal_cache_miss_metric.labels(cache_type=sanitize_label(cache_type)).inc(amount)


def increment_cache_error(*, operation: str) -> None:
    glocal_cache_error_metric.labels(operation=sanitize_label(operation)).inc()


def increment_cache_invalidated(*, kind: str, amount: int) -> None:
    if amount <= 0:
        return
    glocal_cache_invalidated_metric.labels(kind=sanitize_label(kind)).inc(amount)


def increment_api_usage(*, service: str, cost: float, status_code: int | None) -> None:
    label = sanitize_label(service)
    glocal_api_requests_metric.labels(service=label, status_class=status_class(status_code)).inc()
    if cost > 0:
        glocal_api_spend_metric.labels(service=label).inc(cost)


def increment_budget_alert(*, service: str, status: str) -> None:
    glocal_budget_alert_metric.labels(service=sanitize_label(service), status=sanitize_label(status)).inc()
