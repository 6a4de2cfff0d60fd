"""Redis read-through cache for the distributor queue endpoints.

The pending and approved queues are polled by every distributor dashboard
but only change when a batch mutates.  Their route handlers are wrapped in
``@cached(prefix="batches")``; every mutating route then calls
``invalidate_cache("batches:*")``.

Redis is optional at runtime: a ``RedisError`` falls through to the
uncached handler, and ``CACHE_ENABLED=false`` skips Redis altogether.

    Key layout:  {prefix}:{handler name}:{md5 of path/query params}
"""

import functools
import hashlib
import json
import logging
from datetime import date, datetime
from typing import Callable, Optional

import redis.asyncio as redis

from farmchain.config import settings

logger = logging.getLogger(__name__)

_redis_client: Optional[redis.Redis] = None

_KEYABLE = (int, str, bool, float, type(None))


async def get_redis() -> redis.Redis:
    """Shared client, created on first use."""
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
    return _redis_client


async def close_redis():
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None


def cache_key(prefix: str, name: str, params: dict) -> str:
    """Build a key from the handler's plain parameters.

    Injected dependencies (the lifecycle engine, sessions) are not plain
    values and are left out, so the key only varies with path and query.
    """
    plain = {}
    for key, value in params.items():
        if isinstance(value, _KEYABLE):
            plain[key] = value
        elif isinstance(value, (date, datetime)):
            plain[key] = value.isoformat()
    if not plain:
        return f"{prefix}:{name}:all"
    digest = hashlib.md5(json.dumps(plain, sort_keys=True).encode()).hexdigest()
    return f"{prefix}:{name}:{digest}"


def _to_json(result) -> str:
    if isinstance(result, list):
        result = [
            item.model_dump(mode="json") if hasattr(item, "model_dump") else item
            for item in result
        ]
    elif hasattr(result, "model_dump"):
        result = result.model_dump(mode="json")
    return json.dumps(result)


def cached(ttl: int | None = None, prefix: str = "cache"):
    """Cache an async route handler's JSON result in Redis."""

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            if not settings.cache_enabled:
                return await func(*args, **kwargs)

            key = cache_key(prefix, func.__name__, kwargs)
            try:
                client = await get_redis()
                hit = await client.get(key)
                if hit is not None:
                    logger.debug("Cache HIT: %s", key)
                    return json.loads(hit)

                logger.debug("Cache MISS: %s", key)
                result = await func(*args, **kwargs)
                await client.setex(key, ttl or settings.cache_ttl_seconds, _to_json(result))
                return result
            except redis.RedisError as e:
                logger.warning("Redis unavailable, serving %s uncached: %s", key, e)
                return await func(*args, **kwargs)

        return wrapper

    return decorator


async def invalidate_cache(pattern: str):
    """Drop every key matching ``pattern`` (e.g. ``"batches:*"``)."""
    if not settings.cache_enabled:
        return
    try:
        client = await get_redis()
        keys = [key async for key in client.scan_iter(match=pattern)]
        if keys:
            await client.delete(*keys)
            logger.info("Invalidated %d cache keys matching %s", len(keys), pattern)
    except redis.RedisError as e:
        logger.warning("Cache invalidation for %s failed: %s", pattern, e)
