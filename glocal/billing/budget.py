from __future__ import annotations

import calendar
from datetime import UTC, date, datetime, time, timedelta
from typing import Any

from glocal.billing.models import BudgetConfig, BudgetLevel, BudgetPeriod, BudgetStatus

PERIODS: tuple[BudgetPeriod, ...] = ("daily", "monthly")


def normalize_period(period: Any) -> BudgetPeriod:
    value = str(period or "daily").strip().lower()
    if value == "monthly":
        return "monthly"
    return "daily"


def usage_percentage(current_usage: float, budget_limit: float) -> float:
    if budget_limit > 0:
        return current_usage / budget_limit * 100.0
    # A zero budget is exhausted by any spend at all.
    return 100.0 if current_usage > 0 else 0.0


def classify_usage(percentage: float, config: BudgetConfig) -> BudgetLevel:
    if percentage < config.warning_threshold * 100:
        return "normal"
    if percentage < config.critical_threshold * 100:
        return "warning"
    return "critical"


def day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min, tzinfo=UTC)
    return start, start + timedelta(days=1)


def month_bounds(year: int, month: int) -> tuple[datetime, datetime]:
    start = datetime(year, month, 1, tzinfo=UTC)
    if month == 12:
        return start, datetime(year + 1, 1, 1, tzinfo=UTC)
    return start, datetime(year, month + 1, 1, tzinfo=UTC)


def days_remaining(period: BudgetPeriod, today: date) -> int:
    if period == "daily":
        return 1
    last_day = calendar.monthrange(today.year, today.month)[1]
    return last_day - today.day


def build_status(
    *,
    config: BudgetConfig,
    period: BudgetPeriod,
    current_usage: float,
    today: date,
) -> BudgetStatus:
    limit = config.budget_for(period)
    percentage = usage_percentage(current_usage, limit)
    return BudgetStatus(
        service_name=config.service_name,
        period=period,
        budget_limit=limit,
        current_usage=current_usage,
        usage_percentage=percentage,
        status=classify_usage(percentage, config),
        days_remaining=days_remaining(period, today),
    )
