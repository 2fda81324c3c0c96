from __future__ import annotations

from typing import Protocol

from glocal.metrics import (
    increment_cache_error,
    increment_cache_hit,
    increment_cache_invalidated,
    increment_cache_miss,
)


class CacheMetricsProtocol(Protocol):
    def hit(self, amount: int = 1) -> None: ...

    def miss(self, amount: int = 1) -> None: ...

    def invalidated(self, *, kind: str, amount: int) -> None: ...

    def error(self, *, operation: str) -> None: ...


class NoopCacheMetrics:
    def hit(self, amount: int = 1) -> None:
        return None

    def miss(self, amount: int = 1) -> None:
        return None

    def invalidated(self, *, kind: str, amount: int) -> None:
        return None

    def error(self, *, operation: str) -> None:
        return None


class PrometheusCacheMetrics:
    def __init__(self, cache_type: str = "redis") -> None:
        self.cache_type = cache_type

    def hit(self, amount: int = 1) -> None:
        increment_cache_hit(cache_type=self.cache_type, amount=amount)

    def miss(self, amount: int = 1) -> None:
        increment_cache_miss(cache_type=self.cache_type, amount=amount)

    def invalidated(self, *, kind: str, amount: int) -> None:
        increment_cache_invalidated(kind=kind, amount=amount)

    def error(self, *, operation: str) -> None:
        increment_cache_error(operation=operation)
