from redis.asyncio import Redis
from redis.exceptions import RedisError

from orderauth.core.config import get_settings


def _build_client() -> Redis:
    settings = get_settings()
    return Redis.from_url(settings.redis_url)


def create_redis_client() -> Redis:
    return _build_client()


async def ping_redis(redis_client: Redis) -> bool:
    try:
        return bool(await redis_client.ping())
    except RedisError:
        return False
