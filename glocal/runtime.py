"""Process-level wiring for the cache and the budget monitor."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from redis.asyncio import Redis

from glocal.billing import AlertConfig, AlertService, APIBudgetMonitor, ServiceRequestCounter
from glocal.cache import PrometheusCacheMetrics, RedisCache
from glocal.config import AppConfig, Settings, get_settings, load_yaml_config
from glocal.db import PrismaClientManager

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def build_redis_client(settings: Settings) -> Redis:
    if settings.redis_url:
        return Redis.from_url(settings.redis_url, decode_responses=True)
    return Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        password=settings.redis_password,
        db=settings.redis_db,
        decode_responses=True,
    )


@dataclass
class CoreServices:
    settings: Settings
    app_config: AppConfig
    redis: Redis
    prisma: PrismaClientManager
    cache: RedisCache
    alerts: AlertService
    budget_monitor: APIBudgetMonitor

    async def close(self) -> None:
        await self.prisma.disconnect()
        await self.redis.aclose()


async def build_core_services(
    settings: Settings | None = None,
    app_config: AppConfig | None = None,
) -> CoreServices:
    """Connect the backends and build one instance of each service.

    A missing or unreachable ledger database leaves the budget monitor in its
    degraded mode (all queries return defaults); Redis connects lazily on the
    first command.
    """
    settings = settings or get_settings()
    cfg = app_config or load_yaml_config(settings.config_path)

    redis_client = build_redis_client(settings)

    prisma = PrismaClientManager(database_url=settings.database_url)
    try:
        await prisma.connect()
    except Exception as exc:
        logger.warning("usage ledger unavailable: %s", exc)
        prisma.client = None

    cache = RedisCache(redis_client, settings=cfg.cache, metrics=PrometheusCacheMetrics())
    alerts = AlertService(config=AlertConfig(budget_alert_ttl=cfg.budget.alert_ttl), redis_client=redis_client)
    monitor = APIBudgetMonitor(
        db_client=prisma.client,
        redis_client=redis_client,
        settings=cfg.budget,
        alert_service=alerts,
        request_counter=ServiceRequestCounter(redis_client),
    )
    return CoreServices(
        settings=settings,
        app_config=cfg,
        redis=redis_client,
        prisma=prisma,
        cache=cache,
        alerts=alerts,
        budget_monitor=monitor,
    )
