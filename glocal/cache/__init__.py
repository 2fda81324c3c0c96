from .keys import CacheKeys, CacheTags
from .metrics import CacheMetricsProtocol, NoopCacheMetrics, PrometheusCacheMetrics
from .models import CacheEntry, CacheStats, CacheWrite, KeyHits
from .redis_cache import RedisCache

__all__ = [
    "CacheEntry",
    "CacheKeys",
    "CacheMetricsProtocol",
    "CacheStats",
    "CacheTags",
    "CacheWrite",
    "KeyHits",
    "NoopCacheMetrics",
    "PrometheusCacheMetrics",
    "RedisCache",
]
