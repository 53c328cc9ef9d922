import json
import logging
from functools import lru_cache

import redis

from app.core.config import get_settings

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_redis() -> redis.Redis | None:
    url = get_settings().redis_url
    if not url:
        return None
    return redis.Redis.from_url(url, socket_connect_timeout=2, socket_timeout=2)


def records_key(company_id: str, suffix: str = "all") -> str:
    return f"records:company:{company_id}:{suffix}"


def cache_get(key: str) -> object | None:
    client = get_redis()
    if client is None:
        return None
    try:
        raw = client.get(key)
    except redis.RedisError as exc:
        logger.warning("cache_get_failed", extra={"key": key, "error": str(exc)})
        return None
    return json.loads(raw) if raw else None


def cache_set(key: str, value: object, ttl_seconds: int | None = None) -> None:
    client = get_redis()
    if client is None:
        return
    ttl = ttl_seconds or get_settings().cache_ttl_seconds
    try:
        client.set(key, json.dumps(value, default=str), ex=ttl)
    except redis.RedisError as exc:
        logger.warning("cache_set_failed", extra={"key": key, "error": str(exc)})


def invalidate_pattern(pattern: str) -> int:
    client = get_redis()
    if client is None:
        return 0
    keys = list(client.scan_iter(match=pattern))
    if not keys:
        return 0
    return client.delete(*keys)
