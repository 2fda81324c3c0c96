from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import UTC, date, datetime, timedelta
from typing import Any, TypeVar

from pydantic import ValidationError

from glocal.billing.alerts import AlertConfig, AlertService
from glocal.billing.budget import PERIODS, build_status, day_bounds, month_bounds, normalize_period
from glocal.billing.cost import linear_cost
from glocal.billing.models import (
    APIUsageLog,
    BudgetAlert,
    BudgetConfig,
    BudgetConfigUpdate,
    BudgetLevel,
    BudgetPeriod,
    BudgetStatus,
    EndpointCost,
    LedgerRow,
    RequestCeilingStatus,
    ServiceUsageStats,
    UsageAggregate,
    UserServiceUsage,
)
from glocal.billing.request_counter import ServiceRequestCounter
from glocal.config import BudgetSettings
from glocal.errors import UsageQueryError
from glocal.metrics import increment_api_usage

logger = logging.getLogger(__name__)

RowT = TypeVar("RowT", bound=LedgerRow)

_CONFIG_COLUMNS = (
    "service_name",
    "daily_budget_usd",
    "monthly_budget_usd",
    "warning_threshold",
    "critical_threshold",
    "requests_per_minute",
    "requests_per_hour",
    "requests_per_day",
    "cost_per_request",
    "cost_per_token",
    "cost_per_mb",
    "is_active",
    "auto_disable_on_budget_exceeded",
)


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


class APIBudgetMonitor:
    """Spend and request ledger for paid third-party APIs.

    Usage rows are appended to ``api_usage_logs``; per-service limits come
    from ``api_budget_config``. Every public method degrades to a safe
    default (``None``, ``False``, zeros or an empty list) when the ledger or
    Redis is unavailable, so callers on request paths never see an exception.
    """

    def __init__(
        self,
        db_client: Any | None,
        redis_client: Any | None = None,
        settings: BudgetSettings | None = None,
        alert_service: AlertService | None = None,
        request_counter: ServiceRequestCounter | None = None,
    ) -> None:
        self.db = db_client
        self.redis = redis_client
        self.settings = settings or BudgetSettings()
        self.alerts = alert_service or AlertService(
            config=AlertConfig(budget_alert_ttl=self.settings.alert_ttl),
            redis_client=redis_client,
        )
        self.request_counter = request_counter or ServiceRequestCounter(redis_client)

    # ledger writes

    async def log_api_usage(self, entry: APIUsageLog | Mapping[str, Any]) -> str | None:
        if self.db is None:
            return None

        try:
            usage = entry if isinstance(entry, APIUsageLog) else APIUsageLog.model_validate(dict(entry))
        except ValidationError as exc:
            logger.warning("rejected api usage entry", extra={"error": str(exc)})
            return None

        try:
            rows = await self.db.query_raw(
                """
                INSERT INTO api_usage_logs (
                    service_name,
                    endpoint,
                    method,
                    request_url,
                    response_status,
                    cost_usd,
                    tokens_used,
                    response_time_ms,
                    user_id,
                    session_id,
                    ip_address,
                    user_agent,
                    created_at
                ) VALUES (
                    $1,$2,$3,$4,$5,$6,$7,$8,$9,$10,$11,$12,$13
                )
                RETURNING id
                """,
                usage.service_name,
                usage.endpoint,
                usage.method,
                usage.request_url,
                usage.response_status,
                usage.cost_usd,
                usage.tokens_used,
                usage.response_time_ms,
                usage.user_id,
                usage.session_id,
                usage.ip_address,
                usage.user_agent,
                _utcnow(),
            )
        except Exception as exc:
            logger.warning(
                "failed to write api usage log",
                extra={"service_name": usage.service_name, "error": str(exc)},
            )
            return None

        increment_api_usage(service=usage.service_name, cost=usage.cost_usd, status_code=usage.response_status)
        try:
            await self.request_counter.record(usage.service_name)
        except Exception as exc:
            logger.warning(
                "failed to record api request counter",
                extra={"service_name": usage.service_name, "error": str(exc)},
            )

        if not rows:
            return None
        row_id = rows[0].get("id")
        return str(row_id) if row_id is not None else None

    # configuration

    async def get_budget_config(self, service_name: str) -> BudgetConfig | None:
        try:
            return await self._fetch_config(service_name)
        except UsageQueryError as exc:
            logger.warning("budget config lookup failed: %s", exc, extra={"service_name": service_name})
            return None

    async def update_budget_config(
        self,
        service_name: str,
        updates: BudgetConfigUpdate | Mapping[str, Any],
    ) -> bool:
        if self.db is None:
            return False

        try:
            update = updates if isinstance(updates, BudgetConfigUpdate) else BudgetConfigUpdate.model_validate(dict(updates))
        except ValidationError as exc:
            logger.warning(
                "rejected budget config update",
                extra={"service_name": service_name, "error": str(exc)},
            )
            return False

        changes = update.changes()
        assignments = [f"{column} = ${index}" for index, column in enumerate(changes, start=1)]
        assignments.append("updated_at = NOW()")
        params: list[Any] = [*changes.values(), service_name]

        try:
            rows = await self.db.query_raw(
                f"""
                UPDATE api_budget_config
                SET {", ".join(assignments)}
                WHERE service_name = ${len(params)}
                RETURNING service_name
                """,
                *params,
            )
        except Exception as exc:
            logger.warning(
                "failed to update budget config",
                extra={"service_name": service_name, "error": str(exc)},
            )
            return False
        return bool(rows)

    # usage aggregates

    async def get_daily_usage(self, service_name: str, day: date | None = None) -> UsageAggregate:
        start, end = day_bounds(day or _utcnow().date())
        return await self._usage_or_zero(service_name, start, end)

    async def get_monthly_usage(
        self,
        service_name: str,
        year: int | None = None,
        month: int | None = None,
    ) -> UsageAggregate:
        today = _utcnow().date()
        try:
            start, end = month_bounds(year or today.year, month or today.month)
        except ValueError:
            logger.warning("invalid usage month", extra={"year": year, "month": month})
            return UsageAggregate()
        return await self._usage_or_zero(service_name, start, end)

    async def check_budget_status(self, service_name: str, period: str = "daily") -> BudgetStatus | None:
        resolved = normalize_period(period)
        try:
            return await self._status(service_name, resolved)
        except UsageQueryError as exc:
            logger.warning(
                "budget status check failed: %s",
                exc,
                extra={"service_name": service_name, "period": resolved},
            )
            return None

    async def get_usage_stats(self, days_back: int | None = None) -> list[ServiceUsageStats]:
        days = _positive_int(days_back, self.settings.usage_stats_days)
        try:
            rows = await self._query(
                """
                SELECT
                    service_name,
                    COALESCE(SUM(cost_usd), 0) AS total_cost,
                    COUNT(*) AS total_requests,
                    AVG(response_time_ms) AS avg_response_time,
                    COUNT(*) FILTER (WHERE response_status >= 400) AS error_count
                FROM api_usage_logs
                WHERE created_at >= $1
                GROUP BY service_name
                ORDER BY total_cost DESC
                """,
                _utcnow() - timedelta(days=days),
            )
            aggregates = _parse_rows(UsageAggregate, rows)
        except UsageQueryError as exc:
            logger.warning("usage stats query failed: %s", exc)
            return []

        stats: list[ServiceUsageStats] = []
        for row, aggregate in zip(rows, aggregates):
            error_rate = (
                aggregate.error_count / aggregate.total_requests * 100.0 if aggregate.total_requests else 0.0
            )
            stats.append(
                ServiceUsageStats(
                    service_name=str(row.get("service_name")),
                    total_cost=aggregate.total_cost,
                    total_requests=aggregate.total_requests,
                    avg_daily_cost=aggregate.total_cost / days,
                    avg_response_time=aggregate.avg_response_time,
                    error_rate=error_rate,
                )
            )
        return stats

    async def get_top_endpoints_by_cost(
        self,
        service_name: str,
        days_back: int | None = None,
        limit: int | None = None,
    ) -> list[EndpointCost]:
        days = _positive_int(days_back, self.settings.usage_stats_days)
        row_limit = _positive_int(limit, self.settings.top_endpoints_limit)
        try:
            rows = await self._query(
                """
                SELECT
                    endpoint,
                    COALESCE(SUM(cost_usd), 0) AS total_cost,
                    COUNT(*) AS total_requests
                FROM api_usage_logs
                WHERE service_name = $1 AND created_at >= $2
                GROUP BY endpoint
                ORDER BY total_cost DESC
                LIMIT $3
                """,
                service_name,
                _utcnow() - timedelta(days=days),
                row_limit,
            )
            endpoints = _parse_rows(EndpointCost, rows)
        except UsageQueryError as exc:
            logger.warning("top endpoints query failed: %s", exc, extra={"service_name": service_name})
            return []

        for item in endpoints:
            if item.total_requests:
                item.avg_cost_per_request = item.total_cost / item.total_requests
        return endpoints

    async def get_user_usage(self, user_id: str, days_back: int | None = None) -> list[UserServiceUsage]:
        days = _positive_int(days_back, self.settings.user_usage_days)
        try:
            rows = await self._query(
                """
                SELECT
                    service_name,
                    COALESCE(SUM(cost_usd), 0) AS total_cost,
                    COUNT(*) AS total_requests,
                    MAX(created_at) AS last_used
                FROM api_usage_logs
                WHERE user_id = $1 AND created_at >= $2
                GROUP BY service_name
                ORDER BY total_cost DESC
                """,
                user_id,
                _utcnow() - timedelta(days=days),
            )
            return _parse_rows(UserServiceUsage, rows)
        except UsageQueryError as exc:
            logger.warning("user usage query failed: %s", exc, extra={"user_id": user_id})
            return []

    # gates

    async def should_rate_limit(self, service_name: str) -> bool:
        status = await self.check_budget_status(service_name, "daily")
        return status is not None and status.status == "critical"

    async def should_disable(self, service_name: str) -> bool:
        config = await self.get_budget_config(service_name)
        if config is None or not config.auto_disable_on_budget_exceeded:
            return False

        for period in PERIODS:
            status = await self.check_budget_status(service_name, period)
            if status is not None and status.usage_percentage >= 100:
                return True
        return False

    async def check_request_ceilings(self, service_name: str) -> RequestCeilingStatus | None:
        config = await self.get_budget_config(service_name)
        if config is None:
            return None

        try:
            counts = await self.request_counter.counts(service_name)
        except Exception as exc:
            logger.warning(
                "request counter lookup failed",
                extra={"service_name": service_name, "error": str(exc)},
            )
            return None

        ceilings = {
            "minute": config.requests_per_minute,
            "hour": config.requests_per_hour,
            "day": config.requests_per_day,
        }
        # a ceiling of 0 means "no ceiling"
        exceeded = [window for window, ceiling in ceilings.items() if ceiling and counts.get(window, 0) > ceiling]
        return RequestCeilingStatus(
            service_name=service_name,
            minute_count=counts.get("minute", 0),
            hour_count=counts.get("hour", 0),
            day_count=counts.get("day", 0),
            exceeded=exceeded,
        )

    # alerts

    async def send_budget_alert(
        self,
        service_name: str,
        status: BudgetLevel,
        usage: float,
        limit: float,
        period: BudgetPeriod | None = None,
    ) -> BudgetAlert | None:
        try:
            return await self.alerts.send_budget_alert(
                service_name=service_name,
                status=status,
                usage=usage,
                limit=limit,
                period=period,
            )
        except Exception as exc:
            logger.warning(
                "failed to publish budget alert",
                extra={"service_name": service_name, "error": str(exc)},
            )
            return None

    async def monitor_budget_alerts(self) -> list[BudgetAlert]:
        sent: list[BudgetAlert] = []
        for service_name in self.settings.monitored_services:
            for period in PERIODS:
                status = await self.check_budget_status(service_name, period)
                if status is None or status.status == "normal":
                    continue
                alert = await self.send_budget_alert(
                    service_name,
                    status.status,
                    status.current_usage,
                    status.budget_limit,
                    period=period,
                )
                if alert is not None:
                    sent.append(alert)
        return sent

    async def calculate_api_cost(
        self,
        service_name: str,
        endpoint: str,
        tokens_used: int | None = None,
        data_transferred: int | None = None,
    ) -> float:
        del endpoint  # pricing is per service for now
        config = await self.get_budget_config(service_name)
        if config is None:
            return 0.0
        return linear_cost(config, tokens_used=tokens_used, data_transferred=data_transferred)

    # internals

    async def _status(self, service_name: str, period: BudgetPeriod) -> BudgetStatus | None:
        config = await self._fetch_config(service_name)
        if config is None:
            return None

        today = _utcnow().date()
        if period == "daily":
            start, end = day_bounds(today)
        else:
            start, end = month_bounds(today.year, today.month)
        usage = await self._query_usage(service_name, start, end)
        return build_status(config=config, period=period, current_usage=usage.total_cost, today=today)

    async def _fetch_config(self, service_name: str) -> BudgetConfig | None:
        rows = await self._query(
            f"""
            SELECT {", ".join(_CONFIG_COLUMNS)}
            FROM api_budget_config
            WHERE service_name = $1 AND is_active = TRUE
            LIMIT 1
            """,
            service_name,
        )
        if not rows:
            return None
        try:
            return BudgetConfig.model_validate(rows[0])
        except ValidationError as exc:
            raise UsageQueryError(f"malformed budget config for {service_name}: {exc}") from exc

    async def _usage_or_zero(self, service_name: str, start: datetime, end: datetime) -> UsageAggregate:
        try:
            return await self._query_usage(service_name, start, end)
        except UsageQueryError as exc:
            logger.warning("usage query failed: %s", exc, extra={"service_name": service_name})
            return UsageAggregate()

    async def _query_usage(self, service_name: str, start: datetime, end: datetime) -> UsageAggregate:
        rows = await self._query(
            """
            SELECT
                COALESCE(SUM(cost_usd), 0) AS total_cost,
                COUNT(*) AS total_requests,
                COALESCE(SUM(tokens_used), 0) AS total_tokens,
                AVG(response_time_ms) AS avg_response_time,
                COUNT(*) FILTER (WHERE response_status >= 400) AS error_count
            FROM api_usage_logs
            WHERE service_name = $1 AND created_at >= $2 AND created_at < $3
            """,
            service_name,
            start,
            end,
        )
        if not rows:
            return UsageAggregate()
        try:
            return UsageAggregate.model_validate(rows[0])
        except ValidationError as exc:
            raise UsageQueryError(f"malformed usage aggregate: {exc}") from exc

    async def _query(self, sql: str, *params: Any) -> list[dict[str, Any]]:
        if self.db is None:
            raise UsageQueryError("usage ledger is not configured")
        try:
            rows = await self.db.query_raw(sql, *params)
        except Exception as exc:
            raise UsageQueryError(str(exc)) from exc
        return [dict(row) for row in rows or []]


def _parse_rows(model: type[RowT], rows: list[dict[str, Any]]) -> list[RowT]:
    try:
        return [model.model_validate(row) for row in rows]
    except ValidationError as exc:
        raise UsageQueryError(f"malformed {model.__name__} row: {exc}") from exc


def _positive_int(value: int | None, default: int) -> int:
    if value is None:
        return default
    try:
        return max(1, int(value))
    except (TypeError, ValueError):
        return default
