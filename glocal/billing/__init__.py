from .alerts import AlertConfig, AlertService
from .budget import build_status, classify_usage, days_remaining, normalize_period, usage_percentage
from .cost import linear_cost
from .models import (
    APIUsageLog,
    BudgetAlert,
    BudgetConfig,
    BudgetConfigUpdate,
    BudgetStatus,
    EndpointCost,
    RequestCeilingStatus,
    ServiceUsageStats,
    UsageAggregate,
    UserServiceUsage,
)
from .monitor import APIBudgetMonitor
from .request_counter import ServiceRequestCounter

__all__ = [
    "APIBudgetMonitor",
    "APIUsageLog",
    "AlertConfig",
    "AlertService",
    "BudgetAlert",
    "BudgetConfig",
    "BudgetConfigUpdate",
    "BudgetStatus",
    "EndpointCost",
    "RequestCeilingStatus",
    "ServiceRequestCounter",
    "ServiceUsageStats",
    "UsageAggregate",
    "UserServiceUsage",
    "build_status",
    "classify_usage",
    "days_remaining",
    "linear_cost",
    "normalize_period",
    "usage_percentage",
]
