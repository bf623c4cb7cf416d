import redis.asyncio as redis

from config.settings import settings

# decode_responses=True makes counters come back as strings instead of bytes.
redis_pool = redis.ConnectionPool(
    host=settings.REDIS_HOST,
    port=settings.REDIS_PORT,
    db=settings.REDIS_DB,
    decode_responses=True
)

# Shared client backing the rate limiters; run.py closes it on shutdown.
redis_client = redis.Redis(connection_pool=redis_pool)
