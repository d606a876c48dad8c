"""
Redis client wrapper.

Responsibilities:
  • Read-through view cache  — STRING (JSON) keyed by cache_keys.py
  • Bulk invalidation        — incremental SCAN + batched DEL (never KEYS)
  • Rate counters            — INCR + EXPIRE on ratelimit:* keys

Every helper here is best-effort: a Redis outage degrades to cache misses
and skipped invalidations, it never fails the request that called it.
"""
import json
import logging
from typing import Any, Awaitable, Callable, Optional

import redis.asyncio as aioredis
from fastapi.encoders import jsonable_encoder

from social_api.config import settings
from social_api.telemetry import CACHE_ERRORS_TOTAL

logger = logging.getLogger(__name__)

_redis: Optional[aioredis.Redis] = None


async def init_redis() -> None:
    global _redis
    _redis = aioredis.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        db=settings.redis_db,
        decode_responses=True,
    )
    try:
        await _redis.ping()
        logger.info("Redis connected at %s:%s", settings.redis_host, settings.redis_port)
    except Exception as exc:
        # The API keeps serving from the store without a cache
        logger.warning("Redis unavailable at startup: %s", exc)


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None


def get_redis() -> aioredis.Redis:
    if _redis is None:
        raise RuntimeError("Redis not initialised — call init_redis() at startup")
    return _redis


# ─────────────────────── View cache (STRING / JSON) ───────────────────────

async def cache_get(key: str) -> Optional[Any]:
    try:
        raw = await get_redis().get(key)
    except Exception as exc:
        CACHE_ERRORS_TOTAL.labels(operation="get").inc()
        logger.warning("Cache get failed for %s: %s", key, exc)
        return None
    if raw is None:
        return None
    return json.loads(raw)


async def cache_set(key: str, value: Any, ttl: int) -> None:
    try:
        await get_redis().set(key, json.dumps(jsonable_encoder(value)), ex=ttl)
    except Exception as exc:
        CACHE_ERRORS_TOTAL.labels(operation="set").inc()
        logger.warning("Cache set failed for %s: %s", key, exc)


async def cached(key: str, ttl: int, loader: Callable[[], Awaitable[Any]]) -> Any:
    """
    Read-through: return the cached JSON for `key`, or await `loader()`,
    store its JSON-encoded result for `ttl` seconds and return it.
    The return value is always the JSON-compatible form.
    """
    hit = await cache_get(key)
    if hit is not None:
        return hit
    value = jsonable_encoder(await loader())
    await cache_set(key, value, ttl)
    return value


async def cache_delete(*keys: str) -> None:
    if not keys:
        return
    try:
        await get_redis().delete(*keys)
    except Exception as exc:
        CACHE_ERRORS_TOTAL.labels(operation="delete").inc()
        logger.warning("Cache delete failed for %s: %s", keys, exc)


async def cache_delete_pattern(pattern: str) -> int:
    """
    Delete every key matching a glob pattern.
    Walks the keyspace with SCAN in steps of `redis_scan_count` and deletes
    in batches of the same size. Returns the number of keys removed.
    """
    removed = 0
    try:
        r = get_redis()
        batch: list[str] = []
        async for key in r.scan_iter(match=pattern, count=settings.redis_scan_count):
            batch.append(key)
            if len(batch) >= settings.redis_scan_count:
                removed += await r.delete(*batch)
                batch = []
        if batch:
            removed += await r.delete(*batch)
    except Exception as exc:
        CACHE_ERRORS_TOTAL.labels(operation="delete_pattern").inc()
        logger.warning("Cache pattern delete failed for %s: %s", pattern, exc)
    return removed


# ─────────────────────── Counters ─────────────────────────────────────────

async def incr_with_ttl(key: str, ttl: int) -> Optional[int]:
    """INCR a counter that expires ttl seconds after first use. None when Redis fails."""
    try:
        r = get_redis()
        # Created with its expiry in one command; INCR keeps the TTL
        await r.set(key, 0, ex=ttl, nx=True)
        return await r.incr(key)
    except Exception as exc:
        CACHE_ERRORS_TOTAL.labels(operation="incr").inc()
        logger.warning("Counter increment failed for %s: %s", key, exc)
        return None
