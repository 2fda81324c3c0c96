"""Tag-indexed Redis cache.

Every entry is stored as up to three records sharing a base key:

- ``<key>``: the JSON-encoded value
- ``<key>:meta``: metadata (ttl, timestamps, hit counter, tags)
- ``<key>:tags``: JSON list of the entry's tags, only for tagged entries

plus membership of ``<key>`` in one ``tag:<tag>`` set per tag. Value,
metadata and tag list share the entry TTL; tag sets are refreshed to
``max_ttl`` whenever a member is added, so they may outlive their members.
Stale tag members are tolerated everywhere and can be swept with
``prune_tag_index``.

No public method raises. Backend and decoding failures are logged and turned
into a cache miss, ``False``, ``0`` or an empty result, so callers must always
keep a non-cached path.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime, timedelta
from typing import Any

from redis.asyncio import Redis

from glocal.cache.keys import (
    TAG_PREFIX,
    entry_record_keys,
    is_auxiliary_key,
    meta_key,
    tag_index_key,
    tags_key,
)
from glocal.cache.metrics import CacheMetricsProtocol, NoopCacheMetrics
from glocal.cache.models import CacheEntry, CacheStats, CacheWrite, KeyHits
from glocal.config import CacheSettings
from glocal.errors import CacheSerializationError

logger = logging.getLogger(__name__)


class RedisCache:
    """Key/value cache with per-entry metadata and tag-based invalidation.

    Example:
        ```python
        cache = RedisCache(Redis.from_url(url, decode_responses=True))

        post = await cache.get(CacheKeys.post(post_id))
        if post is None:
            post = await load_post(post_id)
            await cache.set(CacheKeys.post(post_id), post, ttl=600, tags=[CacheTags.POST])

        # after a moderation action
        await cache.invalidate_by_tags([CacheTags.POST])
        ```

    Hit/miss counters live in this instance only and reset with the process.
    """

    def __init__(
        self,
        redis_client: Redis,
        settings: CacheSettings | None = None,
        metrics: CacheMetricsProtocol | None = None,
    ) -> None:
        self.redis = redis_client
        self.settings = settings or CacheSettings()
        self.metrics = metrics or NoopCacheMetrics()
        self._stats = {"hits": 0, "misses": 0, "total_keys": 0}

    # ------------------------------------------------------------------ reads

    async def get(self, key: str) -> Any | None:
        try:
            raw = await self.redis.get(key)
        except Exception as exc:
            self._backend_error("get", exc, key=key)
            self._record_miss()
            return None

        if raw is None:
            self._record_miss()
            return None

        try:
            value = self._decode(raw)
        except CacheSerializationError as exc:
            logger.warning("cache payload decode failed", extra={"key": key, "error": str(exc)})
            self._record_miss()
            return None

        self._record_hit()
        return value

    async def exists(self, key: str) -> bool:
        try:
            return int(await self.redis.exists(key)) > 0
        except Exception as exc:
            self._backend_error("exists", exc, key=key)
            return False

    async def mget(self, keys: list[str]) -> list[Any | None]:
        if not keys:
            return []

        try:
            raw_values = await self.redis.mget(keys)
        except Exception as exc:
            self._backend_error("mget", exc, keys=len(keys))
            self._record_miss(len(keys))
            return [None for _ in keys]

        values: list[Any | None] = []
        for key, raw in zip(keys, raw_values):
            if raw is None:
                self._record_miss()
                values.append(None)
                continue
            try:
                values.append(self._decode(raw))
            except CacheSerializationError as exc:
                logger.warning("cache payload decode failed", extra={"key": key, "error": str(exc)})
                self._record_miss()
                values.append(None)
                continue
            self._record_hit()
        return values

    async def get_metadata(self, key: str) -> CacheEntry | None:
        try:
            raw = await self.redis.get(meta_key(key))
        except Exception as exc:
            self._backend_error("get_metadata", exc, key=key)
            return None

        if raw is None:
            return None

        try:
            data = self._decode(raw)
        except CacheSerializationError as exc:
            logger.warning("cache metadata decode failed", extra={"key": key, "error": str(exc)})
            return None

        if not isinstance(data, dict):
            return None
        try:
            return CacheEntry.from_record(key, data)
        except (TypeError, ValueError) as exc:
            logger.warning("cache metadata malformed", extra={"key": key, "error": str(exc)})
            return None

    async def get_keys_by_tag(self, tag: str) -> list[str]:
        try:
            members = await self.redis.smembers(tag_index_key(tag))
        except Exception as exc:
            self._backend_error("get_keys_by_tag", exc, tag=tag)
            return []
        return sorted(_to_str(member) for member in members)

    async def get_all_tags(self) -> list[str]:
        try:
            tags = {_to_str(key)[len(TAG_PREFIX):] async for key in self.redis.scan_iter(match=f"{TAG_PREFIX}*")}
        except Exception as exc:
            self._backend_error("get_all_tags", exc)
            return []
        return sorted(tags)

    # ----------------------------------------------------------------- writes

    async def set(self, key: str, value: Any, ttl: int | None = None, tags: Iterable[str] | None = None) -> bool:
        try:
            pipe = self.redis.pipeline(transaction=False)
            self._queue_write(pipe, CacheWrite(key=key, value=value, ttl=ttl, tags=list(tags or [])))
            await pipe.execute()
        except Exception as exc:
            self._backend_error("set", exc, key=key)
            return False

        self._stats["total_keys"] += 1
        return True

    async def mset(self, entries: Iterable[CacheWrite | Mapping[str, Any]]) -> bool:
        try:
            writes = [_as_write(entry) for entry in entries]
        except (KeyError, TypeError) as exc:
            logger.warning("cache mset rejected malformed entry: %s", exc)
            return False

        if not writes:
            return True

        try:
            pipe = self.redis.pipeline(transaction=False)
            for write in writes:
                self._queue_write(pipe, write)
            await pipe.execute()
        except Exception as exc:
            self._backend_error("mset", exc, entries=len(writes))
            return False

        self._stats["total_keys"] += len(writes)
        return True

    async def warm_cache(self, entries: Iterable[CacheWrite | Mapping[str, Any]]) -> int:
        try:
            writes = [_as_write(entry) for entry in entries]
        except (KeyError, TypeError) as exc:
            logger.warning("cache warm rejected malformed entry: %s", exc)
            return 0

        warmed = 0
        for write in writes:
            if await self.exists(write.key):
                continue
            if await self.set(write.key, write.value, write.ttl, write.tags):
                warmed += 1

        if warmed:
            logger.info("cache warmed", extra={"warmed": warmed})
        return warmed

    async def increment_hits(self, key: str) -> int:
        """Bump the metadata hit counter, keeping the record's remaining TTL.

        Returns the new count, or 0 when the entry has no metadata. The
        read-modify-write is not atomic; concurrent increments may be lost.
        """
        entry = await self.get_metadata(key)
        if entry is None:
            return 0

        entry.hits += 1
        try:
            await self.redis.set(meta_key(key), _encode(entry.to_record()), xx=True, keepttl=True)
        except Exception as exc:
            self._backend_error("increment_hits", exc, key=key)
            return 0
        return entry.hits

    # ----------------------------------------------------------- invalidation

    async def delete(self, key: str) -> bool:
        # Tag sets still reference the key afterwards; see prune_tag_index.
        try:
            failures = await self._delete_entries([key])
        except Exception as exc:
            self._backend_error("delete", exc, key=key)
            return False

        self._forget_keys(1)
        return not failures

    async def invalidate_by_tags(self, tags: Iterable[str]) -> int:
        members: dict[str, None] = {}
        read_tags: list[str] = []
        for tag in _normalize_tags(tags):
            try:
                keys = await self.redis.smembers(tag_index_key(tag))
            except Exception as exc:
                self._backend_error("invalidate_by_tags", exc, tag=tag)
                continue
            read_tags.append(tag)
            for member in sorted(_to_str(item) for item in keys):
                members.setdefault(member, None)

        if not read_tags:
            return 0

        try:
            await self._delete_entries(list(members), extra_keys=[tag_index_key(tag) for tag in read_tags])
        except Exception as exc:
            self._backend_error("invalidate_by_tags", exc, tags=read_tags)
            return 0

        removed = len(members)
        self._forget_keys(removed)
        self.metrics.invalidated(kind="tag", amount=removed)
        logger.info("cache invalidated by tags", extra={"tags": read_tags, "removed": removed})
        return removed

    async def invalidate_by_pattern(self, pattern: str) -> int:
        try:
            matched: dict[str, None] = {}
            async for raw_key in self.redis.scan_iter(match=pattern):
                key = _to_str(raw_key)
                if not is_auxiliary_key(key):
                    matched.setdefault(key, None)

            if not matched:
                return 0

            await self._delete_entries(list(matched))
        except Exception as exc:
            self._backend_error("invalidate_by_pattern", exc, pattern=pattern)
            return 0

        removed = len(matched)
        self._forget_keys(removed)
        self.metrics.invalidated(kind="pattern", amount=removed)
        logger.info("cache invalidated by pattern", extra={"pattern": pattern, "removed": removed})
        return removed

    async def clear(self) -> bool:
        """Flush the whole Redis database, not just keys written by this cache."""
        try:
            await self.redis.flushdb()
        except Exception as exc:
            self._backend_error("clear", exc)
            return False

        self._stats = {"hits": 0, "misses": 0, "total_keys": 0}
        logger.warning("cache database flushed")
        return True

    async def prune_tag_index(self) -> int:
        """Remove tag-set members whose value record no longer exists."""
        removed = 0
        try:
            tag_keys = {_to_str(key) async for key in self.redis.scan_iter(match=f"{TAG_PREFIX}*")}
            for tag_key in sorted(tag_keys):
                members = sorted(_to_str(member) for member in await self.redis.smembers(tag_key))
                if not members:
                    continue

                pipe = self.redis.pipeline(transaction=False)
                for member in members:
                    pipe.exists(member)
                present = await pipe.execute()

                dead = [member for member, found in zip(members, present) if not found]
                if dead:
                    await self.redis.srem(tag_key, *dead)
                    removed += len(dead)
        except Exception as exc:
            self._backend_error("prune_tag_index", exc)

        if removed:
            logger.info("pruned stale tag members", extra={"removed": removed})
        return removed

    # ------------------------------------------------------------------ stats

    async def get_stats(self) -> CacheStats:
        total_hits = self._stats["hits"]
        total_misses = self._stats["misses"]
        total_requests = total_hits + total_misses

        return CacheStats(
            total_keys=self._stats["total_keys"],
            hit_rate=(total_hits / total_requests * 100) if total_requests > 0 else 0.0,
            miss_rate=(total_misses / total_requests * 100) if total_requests > 0 else 0.0,
            total_hits=total_hits,
            total_misses=total_misses,
            memory_usage=await self._memory_usage(),
            top_keys=await self._sample_top_keys(),
        )

    async def health_check(self) -> dict[str, Any]:
        try:
            await self.redis.ping()
        except Exception as exc:
            return {"status": "unhealthy", "error": str(exc)}
        return {"status": "healthy"}

    # ---------------------------------------------------------------- helpers

    def _clamp_ttl(self, ttl: int | None) -> int:
        if not ttl:
            return self.settings.default_ttl
        return max(1, min(int(ttl), self.settings.max_ttl))

    def _queue_write(self, pipe: Any, write: CacheWrite) -> None:
        ttl = self._clamp_ttl(write.ttl)
        tags = _normalize_tags(write.tags or [])
        now = datetime.now(tz=UTC)
        entry = CacheEntry(
            key=write.key,
            ttl=ttl,
            created_at=now,
            expires_at=now + timedelta(seconds=ttl),
            tags=tags,
        )

        pipe.setex(write.key, ttl, _encode(write.value))
        pipe.setex(meta_key(write.key), ttl, _encode(entry.to_record()))
        if not tags:
            pipe.delete(tags_key(write.key))
            return

        for tag in tags:
            pipe.sadd(tag_index_key(tag), write.key)
            pipe.expire(tag_index_key(tag), self.settings.max_ttl)
        pipe.setex(tags_key(write.key), ttl, _encode(tags))

    async def _delete_entries(self, keys: list[str], extra_keys: list[str] | None = None) -> list[Exception]:
        """Delete every record of each entry, one command per record.

        Individual command failures do not stop the rest of the batch; they
        are logged and returned.
        """
        pipe = self.redis.pipeline(transaction=False)
        queued: list[str] = []
        for key in keys:
            for record in entry_record_keys(key):
                pipe.delete(record)
                queued.append(record)
        for record in extra_keys or []:
            pipe.delete(record)
            queued.append(record)

        if not queued:
            return []

        results = await pipe.execute(raise_on_error=False)
        failures = [result for result in results if isinstance(result, Exception)]
        for record, result in zip(queued, results):
            if isinstance(result, Exception):
                self._backend_error("delete_record", result, key=record)
        return failures

    async def _sample_top_keys(self) -> list[KeyHits]:
        # Approximate: only the first `stats_sample_size` value keys the
        # backend scan yields are considered.
        sample: list[str] = []
        try:
            async for raw_key in self.redis.scan_iter(count=self.settings.stats_sample_size * 10):
                key = _to_str(raw_key)
                if is_auxiliary_key(key):
                    continue
                sample.append(key)
                if len(sample) >= self.settings.stats_sample_size:
                    break

            if not sample:
                return []

            raw_meta = await self.redis.mget([meta_key(key) for key in sample])
        except Exception as exc:
            self._backend_error("get_stats", exc)
            return []

        top: list[KeyHits] = []
        for key, raw in zip(sample, raw_meta):
            if raw is None:
                continue
            try:
                data = self._decode(raw)
            except CacheSerializationError:
                continue
            if not isinstance(data, dict):
                continue
            try:
                hits = int(data.get("hits") or 0)
            except (TypeError, ValueError):
                continue
            top.append(KeyHits(key=key, hits=hits))

        top.sort(key=lambda item: item.hits, reverse=True)
        return top[: self.settings.stats_top_keys]

    async def _memory_usage(self) -> int:
        try:
            info = await self.redis.info("memory")
        except Exception as exc:
            self._backend_error("info", exc)
            return 0
        try:
            return int(info.get("used_memory", 0))
        except (TypeError, ValueError):
            return 0

    @staticmethod
    def _decode(raw: Any) -> Any:
        try:
            return json.loads(_to_str(raw))
        except (ValueError, UnicodeDecodeError) as exc:
            raise CacheSerializationError(str(exc)) from exc

    def _record_hit(self, amount: int = 1) -> None:
        self._stats["hits"] += amount
        self.metrics.hit(amount)

    def _record_miss(self, amount: int = 1) -> None:
        self._stats["misses"] += amount
        self.metrics.miss(amount)

    def _forget_keys(self, amount: int) -> None:
        self._stats["total_keys"] = max(0, self._stats["total_keys"] - amount)

    def _backend_error(self, operation: str, exc: Exception, **context: Any) -> None:
        self.metrics.error(operation=operation)
        logger.warning("cache %s failed: %s", operation, exc, extra={"cache_context": context})


def _encode(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"))


def _to_str(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


def _normalize_tags(tags: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(str(tag).strip() for tag in tags if tag and str(tag).strip()))


def _as_write(entry: CacheWrite | Mapping[str, Any]) -> CacheWrite:
    if isinstance(entry, CacheWrite):
        return entry
    return CacheWrite(
        key=entry["key"],
        value=entry.get("value"),
        ttl=entry.get("ttl"),
        tags=list(entry.get("tags") or []),
    )
