from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any


@dataclass
class CacheEntry:
    """Metadata view of a cached value.

    `value` is only populated by callers that load it separately;
    `RedisCache.get_metadata` always returns it as None.
    """

    key: str
    ttl: int
    created_at: datetime
    expires_at: datetime
    hits: int = 0
    tags: list[str] = field(default_factory=list)
    value: Any = None

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or datetime.now(tz=UTC)) >= self.expires_at

    def to_record(self) -> dict[str, Any]:
        return {
            "ttl": self.ttl,
            "createdAt": int(self.created_at.timestamp() * 1000),
            "expiresAt": int(self.expires_at.timestamp() * 1000),
            "hits": self.hits,
            "tags": list(self.tags),
        }

    @classmethod
    def from_record(cls, key: str, data: dict[str, Any]) -> "CacheEntry":
        return cls(
            key=key,
            ttl=int(data.get("ttl", 0)),
            created_at=_from_millis(data.get("createdAt")),
            expires_at=_from_millis(data.get("expiresAt")),
            hits=int(data.get("hits") or 0),
            tags=[str(tag) for tag in data.get("tags") or []],
        )


@dataclass
class CacheWrite:
    key: str
    value: Any
    ttl: int | None = None
    tags: list[str] | None = None


@dataclass(frozen=True)
class KeyHits:
    key: str
    hits: int


@dataclass
class CacheStats:
    total_keys: int = 0
    hit_rate: float = 0.0
    miss_rate: float = 0.0
    total_hits: int = 0
    total_misses: int = 0
    memory_usage: int = 0
    top_keys: list[KeyHits] = field(default_factory=list)


def _from_millis(value: Any) -> datetime:
    try:
        return datetime.fromtimestamp(int(value) / 1000, tz=UTC)
    except (TypeError, ValueError):
        return datetime.fromtimestamp(0, tz=UTC)
