import json

import redis.asyncio as redis
from docflow.config import settings

_redis: redis.Redis | None = None


async def get_redis() -> redis.Redis:
    global _redis
    if _redis is None:
        _redis = redis.from_url(settings.redis_url, decode_responses=True)
    return _redis


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None


async def enqueue_notification(body: dict) -> None:
    """LPUSH onto the notification list; the delivery service pops from the other end."""
    r = await get_redis()
    await r.lpush(settings.notification_queue_key, json.dumps(body))


async def notification_backlog() -> int:
    """Number of notification messages waiting in the Redis list."""
    r = await get_redis()
    return await r.llen(settings.notification_queue_key)
