"""
Redis Streams event publishing for dashboards.

Optional: with no REDIS_URL, or when Redis is unreachable, every call is a
no-op. A reconciliation pass never fails because of this module.
"""
import json
import logging
from datetime import datetime, timezone

import redis

from .config import settings

logger = logging.getLogger("kubenova.events")

STREAM_MAXLEN = 100
GLOBAL_CHANNEL = "kubenova:events"

_redis_client = None


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def stream_key(namespace: str, name: str) -> str:
    return f"kubenova:events:{namespace}/{name}"


def _get_redis():
    """Lazy-init Redis client. Returns None if unavailable."""
    global _redis_client
    if _redis_client is not None:
        return _redis_client
    if not settings.REDIS_URL:
        return None
    try:
        _redis_client = redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)
        _redis_client.ping()
        logger.info(f"Redis connected: {settings.REDIS_URL}")
        return _redis_client
    except redis.RedisError as e:
        logger.warning(f"Redis unavailable (non-fatal): {e}")
        _redis_client = None
        return None


def publish_event(namespace: str, name: str, event_type: str, message: str, phase: str = ""):
    """Append to the per-resource stream and fan out on the global channel."""
    r = _get_redis()
    if not r:
        return
    event = {
        "type": event_type,
        "message": message,
        "phase": phase,
        "timestamp": _now(),
        "resource": f"{namespace}/{name}",
    }
    try:
        r.xadd(stream_key(namespace, name), event, maxlen=STREAM_MAXLEN)
        r.publish(GLOBAL_CHANNEL, json.dumps(event))
    except redis.RedisError as e:
        logger.debug(f"Redis publish failed (non-fatal): {e}")


def drop_stream(namespace: str, name: str):
    r = _get_redis()
    if not r:
        return
    try:
        r.delete(stream_key(namespace, name))
    except redis.RedisError as e:
        logger.debug(f"Redis stream cleanup failed (non-fatal): {e}")
