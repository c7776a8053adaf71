from redis.asyncio import Redis

from app.core.config import settings


def get_async_redis_client() -> Redis:
    return Redis.from_url(settings.cache_redis_url, decode_responses=True)
