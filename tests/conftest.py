from __future__ import annotations

import fnmatch
import re
from datetime import UTC, datetime
from typing import Any

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError


class FakeRedis:
    """In-memory stand-in for `redis.asyncio.Redis` with decode_responses=True.

    Expiry runs on a manual clock: call `advance(seconds)` to move time.
    """

    def __init__(self) -> None:
        self.store: dict[str, str] = {}
        self.sets: dict[str, set[str]] = {}
        self.expiry: dict[str, float] = {}
        self.now = 0.0
        self.used_memory = 1024
        self.fail_commands: set[str] = set()
        self.fail_delete_keys: set[str] = set()
        self.closed = False

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def _check(self, command: str) -> None:
        if command in self.fail_commands or "*" in self.fail_commands:
            raise RedisConnectionError(f"{command} failed")

    def _alive(self, key: str) -> bool:
        deadline = self.expiry.get(key)
        if deadline is not None and deadline <= self.now:
            self.store.pop(key, None)
            self.sets.pop(key, None)
            self.expiry.pop(key, None)
        return key in self.store or key in self.sets

    def _all_keys(self) -> list[str]:
        return [key for key in [*self.store, *self.sets] if self._alive(key)]

    async def get(self, key: str):
        self._check("get")
        return self.store.get(key) if self._alive(key) else None

    async def set(
        self,
        key: str,
        value: Any,
        ex: int | None = None,
        nx: bool = False,
        xx: bool = False,
        keepttl: bool = False,
    ):
        self._check("set")
        present = self._alive(key)
        if (nx and present) or (xx and not present):
            return None
        self.store[key] = str(value)
        if ex is not None:
            self.expiry[key] = self.now + ex
        elif not keepttl:
            self.expiry.pop(key, None)
        return True

    async def setex(self, key: str, ttl: int, value: Any):
        self._check("setex")
        self.store[key] = str(value)
        self.expiry[key] = self.now + ttl
        return True

    async def delete(self, *keys: str):
        self._check("delete")
        removed = 0
        for key in keys:
            if key in self.fail_delete_keys:
                raise RedisConnectionError(f"delete {key} failed")
            if self._alive(key):
                removed += 1
            self.store.pop(key, None)
            self.sets.pop(key, None)
            self.expiry.pop(key, None)
        return removed

    async def exists(self, *keys: str):
        self._check("exists")
        return sum(1 for key in keys if self._alive(key))

    async def mget(self, keys, *args):
        self._check("mget")
        names = [keys, *args] if isinstance(keys, str) else list(keys)
        return [self.store.get(key) if self._alive(key) else None for key in names]

    async def incrby(self, key: str, amount: int = 1):
        self._check("incrby")
        current = int(self.store.get(key, 0)) if self._alive(key) else 0
        self.store[key] = str(current + amount)
        return current + amount

    async def sadd(self, key: str, *members: str):
        self._check("sadd")
        self._alive(key)
        bucket = self.sets.setdefault(key, set())
        before = len(bucket)
        bucket.update(members)
        return len(bucket) - before

    async def smembers(self, key: str):
        self._check("smembers")
        return set(self.sets.get(key, set())) if self._alive(key) else set()

    async def srem(self, key: str, *members: str):
        self._check("srem")
        bucket = self.sets.get(key, set())
        removed = len(bucket & set(members))
        bucket.difference_update(members)
        if not bucket:
            self.sets.pop(key, None)
            self.expiry.pop(key, None)
        return removed

    async def expire(self, key: str, ttl: int):
        self._check("expire")
        if not self._alive(key):
            return False
        self.expiry[key] = self.now + ttl
        return True

    async def ttl(self, key: str):
        if not self._alive(key):
            return -2
        deadline = self.expiry.get(key)
        if deadline is None:
            return -1
        return int(deadline - self.now)

    async def scan_iter(self, match: str | None = None, count: int | None = None):
        self._check("scan_iter")
        for key in sorted(self._all_keys()):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    async def flushdb(self):
        self._check("flushdb")
        self.store.clear()
        self.sets.clear()
        self.expiry.clear()
        return True

    async def info(self, section: str | None = None):
        self._check("info")
        return {"used_memory": self.used_memory}

    async def ping(self):
        self._check("ping")
        return True

    async def aclose(self):
        self.closed = True

    def pipeline(self, transaction: bool = True):
        return FakePipeline(self)


class FakePipeline:
    def __init__(self, redis: FakeRedis) -> None:
        self.redis = redis
        self.ops: list[tuple[str, tuple, dict]] = []

    def __getattr__(self, name: str):
        if name not in {"setex", "set", "delete", "exists", "sadd", "srem", "expire", "incrby", "get"}:
            raise AttributeError(name)

        def queue(*args, **kwargs):
            self.ops.append((name, args, kwargs))
            return self

        return queue

    async def execute(self, raise_on_error: bool = True):
        self.redis._check("pipeline")
        results: list[Any] = []
        for name, args, kwargs in self.ops:
            try:
                results.append(await getattr(self.redis, name)(*args, **kwargs))
            except Exception as exc:
                if raise_on_error:
                    self.ops.clear()
                    raise
                results.append(exc)
        self.ops.clear()
        return results


class UsageLedgerDB:
    """In-memory double for the two ledger tables behind `query_raw`."""

    def __init__(self) -> None:
        self.configs: dict[str, dict[str, Any]] = {}
        self.logs: list[dict[str, Any]] = []
        self.calls: list[tuple[str, tuple]] = []
        self.fail = False

    def add_config(self, service_name: str, **overrides: Any) -> dict[str, Any]:
        row = {
            "service_name": service_name,
            "daily_budget_usd": 100.0,
            "monthly_budget_usd": 2000.0,
            "warning_threshold": 0.8,
            "critical_threshold": 0.95,
            "requests_per_minute": 60,
            "requests_per_hour": 1000,
            "requests_per_day": 10000,
            "cost_per_request": 0.001,
            "cost_per_token": 0.0001,
            "cost_per_mb": 0.01,
            "is_active": True,
            "auto_disable_on_budget_exceeded": False,
        }
        row.update(overrides)
        self.configs[service_name] = row
        return row

    def add_log(self, service_name: str, cost_usd: float, **fields: Any) -> dict[str, Any]:
        row = {
            "id": f"log_{len(self.logs) + 1}",
            "service_name": service_name,
            "endpoint": "/v1/default",
            "method": "GET",
            "response_status": 200,
            "cost_usd": cost_usd,
            "tokens_used": 0,
            "response_time_ms": None,
            "user_id": None,
            "created_at": datetime.now(tz=UTC),
        }
        row.update(fields)
        self.logs.append(row)
        return row

    async def query_raw(self, query: str, *args):
        self.calls.append((query, args))
        if self.fail:
            raise RuntimeError("database unavailable")

        normalized = " ".join(query.lower().split())
        if normalized.startswith("insert into api_usage_logs"):
            columns = [
                "service_name",
                "endpoint",
                "method",
                "request_url",
                "response_status",
                "cost_usd",
                "tokens_used",
                "response_time_ms",
                "user_id",
                "session_id",
                "ip_address",
                "user_agent",
                "created_at",
            ]
            row = {"id": f"log_{len(self.logs) + 1}", **dict(zip(columns, args))}
            self.logs.append(row)
            return [{"id": row["id"]}]

        if normalized.startswith("update api_budget_config"):
            service_name = args[-1]
            row = self.configs.get(service_name)
            if row is None:
                return []
            for column, index in re.findall(r"(\w+) = \$(\d+)", query):
                row[column] = args[int(index) - 1]
            return [{"service_name": service_name}]

        if "from api_budget_config" in normalized:
            row = self.configs.get(args[0])
            if row is None or not row.get("is_active"):
                return []
            return [dict(row)]

        if "from api_usage_logs" in normalized:
            if "group by endpoint" in normalized:
                service_name, since, limit = args
                rows = [r for r in self.logs if r["service_name"] == service_name and r["created_at"] >= since]
                grouped = self._group(rows, "endpoint")
                return sorted(grouped, key=lambda item: item["total_cost"], reverse=True)[:limit]
            if "where user_id = $1" in normalized:
                user_id, since = args
                rows = [r for r in self.logs if r.get("user_id") == user_id and r["created_at"] >= since]
                grouped = self._group(rows, "service_name")
                return sorted(grouped, key=lambda item: item["total_cost"], reverse=True)
            if "group by service_name" in normalized:
                (since,) = args
                rows = [r for r in self.logs if r["created_at"] >= since]
                grouped = self._group(rows, "service_name")
                return sorted(grouped, key=lambda item: item["total_cost"], reverse=True)

            service_name, start, end = args
            rows = [r for r in self.logs if r["service_name"] == service_name and start <= r["created_at"] < end]
            return [self._aggregate(rows)]

        return []

    def _group(self, rows: list[dict[str, Any]], column: str) -> list[dict[str, Any]]:
        groups: dict[str, list[dict[str, Any]]] = {}
        for row in rows:
            groups.setdefault(row[column], []).append(row)
        result = []
        for name, members in groups.items():
            item = self._aggregate(members)
            item[column] = name
            item["last_used"] = max(member["created_at"] for member in members)
            result.append(item)
        return result

    @staticmethod
    def _aggregate(rows: list[dict[str, Any]]) -> dict[str, Any]:
        latencies = [r["response_time_ms"] for r in rows if r.get("response_time_ms") is not None]
        return {
            "total_cost": sum(r["cost_usd"] for r in rows),
            "total_requests": len(rows),
            "total_tokens": sum(r.get("tokens_used") or 0 for r in rows),
            "avg_response_time": (sum(latencies) / len(latencies)) if latencies else None,
            "error_count": sum(1 for r in rows if (r.get("response_status") or 0) >= 400),
        }


@pytest.fixture
def redis_client() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def ledger_db() -> UsageLedgerDB:
    return UsageLedgerDB()
