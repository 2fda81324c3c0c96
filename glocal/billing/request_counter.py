from __future__ import annotations

import math
import time
from typing import Any

REQUEST_WINDOWS: dict[str, int] = {
    "minute": 60,
    "hour": 3600,
    "day": 86400,
}


class ServiceRequestCounter:
    """Fixed-window request counters per external service.

    Counts are advisory; nothing here blocks a call. Each window key expires
    with its window, so no cleanup is needed.
    """

    def __init__(self, redis_client: Any | None = None) -> None:
        self.redis = redis_client

    @staticmethod
    def _window_id(window_seconds: int) -> int:
        return math.floor(time.time() / window_seconds)

    def _key(self, service_name: str, window: str) -> str:
        window_seconds = REQUEST_WINDOWS[window]
        return f"api_requests:{service_name}:{window}:{self._window_id(window_seconds)}"

    async def record(self, service_name: str, amount: int = 1) -> None:
        if self.redis is None or amount <= 0:
            return

        pipe = self.redis.pipeline(transaction=False)
        for window, window_seconds in REQUEST_WINDOWS.items():
            key = self._key(service_name, window)
            pipe.incrby(key, amount)
            pipe.expire(key, window_seconds)
        await pipe.execute()

    async def counts(self, service_name: str) -> dict[str, int]:
        if self.redis is None:
            return {window: 0 for window in REQUEST_WINDOWS}

        windows = list(REQUEST_WINDOWS)
        raw = await self.redis.mget([self._key(service_name, window) for window in windows])
        return {window: int(value or 0) for window, value in zip(windows, raw)}
