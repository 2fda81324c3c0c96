from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from glocal.billing.models import BudgetAlert, BudgetLevel, BudgetPeriod
from glocal.metrics import increment_budget_alert

logger = logging.getLogger(__name__)


@dataclass
class AlertConfig:
    budget_alert_ttl: int = 3600
    key_prefix: str = "budget_alert"


class AlertService:
    """Publishes short-lived budget alert records for a separate notifier.

    Records live in Redis under ``budget_alert:<service>:<epoch-ms>`` and
    expire after ``budget_alert_ttl`` seconds. Delivery is not guaranteed;
    an alert nobody reads within the TTL is simply gone.
    """

    def __init__(self, config: AlertConfig | None = None, redis_client: Any | None = None) -> None:
        self.config = config or AlertConfig()
        self.redis = redis_client

    async def send_budget_alert(
        self,
        *,
        service_name: str,
        status: BudgetLevel,
        usage: float,
        limit: float,
        period: BudgetPeriod | None = None,
    ) -> BudgetAlert:
        percentage = (usage / limit * 100.0) if limit > 0 else 0.0
        alert = BudgetAlert(
            service_name=service_name,
            status=status,
            usage=float(usage),
            limit=float(limit),
            percentage=percentage,
            timestamp=datetime.now(tz=UTC),
            period=period,
        )

        logger.warning("budget alert", extra=alert.model_dump(mode="json"))
        if self.redis is None or await self._store(alert):
            increment_budget_alert(service=service_name, status=status)
        return alert

    async def recent_alerts(self, service_name: str | None = None) -> list[BudgetAlert]:
        if self.redis is None:
            return []

        pattern = f"{self.config.key_prefix}:{service_name or '*'}:*"
        try:
            keys = [key async for key in self.redis.scan_iter(match=pattern)]
            raw_alerts = await self.redis.mget(keys) if keys else []
        except Exception as exc:
            logger.warning("budget alert lookup failed: %s", exc, extra={"service_name": service_name})
            return []

        alerts: list[BudgetAlert] = []
        for raw in raw_alerts:
            if raw is None:
                continue
            try:
                alerts.append(BudgetAlert.model_validate(json.loads(raw)))
            except (ValueError, ValidationError) as exc:
                logger.warning("skipping malformed budget alert: %s", exc)
        alerts.sort(key=lambda alert: alert.timestamp)
        return alerts

    async def _store(self, alert: BudgetAlert) -> bool:
        payload = alert.model_dump_json()
        stamp = int(time.time() * 1000)
        # Two alerts for one service in the same millisecond (daily and
        # monthly from one sweep) must not overwrite each other.
        for offset in range(3):
            key = f"{self.config.key_prefix}:{alert.service_name}:{stamp + offset}"
            if await self.redis.set(key, payload, ex=self.config.budget_alert_ttl, nx=True):
                return True
        logger.warning("budget alert not stored, key collision", extra={"service_name": alert.service_name})
        return False
