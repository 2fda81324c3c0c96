"""Typed views of the usage ledger.

Rows come back from `query_raw` as loosely typed dicts (Decimal, str or None
depending on the driver); they are validated into these models once, at the
monitor boundary.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

BudgetPeriod = Literal["daily", "monthly"]
BudgetLevel = Literal["normal", "warning", "critical"]


class LedgerRow(BaseModel):
    model_config = ConfigDict(extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def drop_nulls(cls, data: Any) -> Any:
        # NULL aggregates (AVG over zero rows, etc.) fall back to field defaults.
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None}
        return data


class BudgetConfig(LedgerRow):
    service_name: str
    daily_budget_usd: float = Field(ge=0)
    monthly_budget_usd: float = Field(ge=0)
    warning_threshold: float = Field(default=0.8, gt=0, le=1)
    critical_threshold: float = Field(default=0.95, gt=0, le=1)
    requests_per_minute: int = Field(default=60, ge=0)
    requests_per_hour: int = Field(default=1000, ge=0)
    requests_per_day: int = Field(default=10000, ge=0)
    cost_per_request: float = Field(default=0.001, ge=0)
    cost_per_token: float = Field(default=0.0001, ge=0)
    cost_per_mb: float = Field(default=0.01, ge=0)
    is_active: bool = True
    auto_disable_on_budget_exceeded: bool = False

    @model_validator(mode="after")
    def validate_thresholds(self) -> "BudgetConfig":
        if self.warning_threshold > self.critical_threshold:
            raise ValueError("warning_threshold must not exceed critical_threshold")
        return self

    def budget_for(self, period: BudgetPeriod) -> float:
        return self.daily_budget_usd if period == "daily" else self.monthly_budget_usd


class BudgetConfigUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    daily_budget_usd: float | None = Field(default=None, ge=0)
    monthly_budget_usd: float | None = Field(default=None, ge=0)
    warning_threshold: float | None = Field(default=None, gt=0, le=1)
    critical_threshold: float | None = Field(default=None, gt=0, le=1)
    requests_per_minute: int | None = Field(default=None, ge=0)
    requests_per_hour: int | None = Field(default=None, ge=0)
    requests_per_day: int | None = Field(default=None, ge=0)
    cost_per_request: float | None = Field(default=None, ge=0)
    cost_per_token: float | None = Field(default=None, ge=0)
    cost_per_mb: float | None = Field(default=None, ge=0)
    is_active: bool | None = None
    auto_disable_on_budget_exceeded: bool | None = None

    @model_validator(mode="after")
    def validate_thresholds(self) -> "BudgetConfigUpdate":
        if (
            self.warning_threshold is not None
            and self.critical_threshold is not None
            and self.warning_threshold > self.critical_threshold
        ):
            raise ValueError("warning_threshold must not exceed critical_threshold")
        return self

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class APIUsageLog(BaseModel):
    service_name: str
    endpoint: str
    method: str = "GET"
    request_url: str | None = None
    response_status: int | None = None
    cost_usd: float = Field(default=0.0, ge=0)
    tokens_used: int = Field(default=0, ge=0)
    response_time_ms: int | None = Field(default=None, ge=0)
    user_id: str | None = None
    session_id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None


class UsageAggregate(LedgerRow):
    total_cost: float = 0.0
    total_requests: int = 0
    total_tokens: int = 0
    avg_response_time: float = 0.0
    error_count: int = 0


class BudgetStatus(BaseModel):
    service_name: str
    period: BudgetPeriod
    budget_limit: float
    current_usage: float
    usage_percentage: float
    status: BudgetLevel
    days_remaining: int


class ServiceUsageStats(LedgerRow):
    service_name: str
    total_cost: float = 0.0
    total_requests: int = 0
    avg_daily_cost: float = 0.0
    avg_response_time: float = 0.0
    error_rate: float = 0.0


class EndpointCost(LedgerRow):
    endpoint: str = ""
    total_cost: float = 0.0
    total_requests: int = 0
    avg_cost_per_request: float = 0.0


class UserServiceUsage(LedgerRow):
    service_name: str = ""
    total_cost: float = 0.0
    total_requests: int = 0
    last_used: datetime | None = None


class BudgetAlert(BaseModel):
    service_name: str
    status: BudgetLevel
    usage: float
    limit: float
    percentage: float
    timestamp: datetime
    period: BudgetPeriod | None = None


class RequestCeilingStatus(BaseModel):
    service_name: str
    minute_count: int = 0
    hour_count: int = 0
    day_count: int = 0
    exceeded: list[Literal["minute", "hour", "day"]] = Field(default_factory=list)

    @property
    def is_exceeded(self) -> bool:
        return bool(self.exceeded)
