import redis.asyncio as redis

from backend.app.core.config import settings


redis_client: redis.Redis | None = None


async def init_redis() -> None:
    """Initialise the shared Redis connection used for seat broadcasts."""
    global redis_client
    redis_client = redis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
    )


async def ping_redis() -> bool:
    if redis_client is None:
        return False
    return bool(await redis_client.ping())


async def close_redis() -> None:
    """Close the Redis connection if it was initialised."""
    global redis_client
    if redis_client is not None:
        await redis_client.aclose()
        redis_client = None
