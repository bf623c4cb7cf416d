import functools
import hashlib
from typing import Awaitable, Callable

import redis.asyncio as redis
from aiohttp import web

from config.constants import REDIS_RATE_LIMIT_PREFIX
from config.settings import settings
from utils.exceptions import RateLimited
from utils.logger import app_logger

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


class RateLimiter:
    """
    Fixed-window request counter stored in Redis.
    """

    def __init__(self, client: redis.Redis, limit: int, period: int, scope: str):
        """
        :param limit: The maximum number of hits allowed per window.
        :param period: The window length in seconds.
        :param scope: Namespace separating this limiter's counters from others.
        """
        self.client = client
        self.limit = limit
        self.period = period
        self.scope = scope

    async def hit(self, identity: str) -> bool:
        """Counts one hit for 'identity'. Returns False once the limit is exceeded."""
        key = f"{REDIS_RATE_LIMIT_PREFIX}:{self.scope}:{identity}"
        # INCR and EXPIRE run as one transaction. NX starts the window on the
        # first hit without extending it, and heals a counter left without a TTL.
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            pipe.expire(key, self.period, nx=True)
            count, _ = await pipe.execute()

        if int(count) > self.limit:
            app_logger.warning(f"Rate limit exceeded for {self.scope}:{identity}. Count: {count} in {self.period}s.")
            return False
        return True

    async def check(self, identity: str, message: str = None) -> None:
        if not await self.hit(identity):
            raise RateLimited(message)


def client_identity(request: web.Request) -> str:
    """
    Identifies the caller for rate limiting: its credential when one is
    supplied, otherwise its address. Credentials are hashed before they are
    used as Redis keys.
    """
    credential = request.query.get("api_key") or request.headers.get("Authorization")
    if credential:
        return hashlib.sha256(credential.encode("utf-8")).hexdigest()[:32]
    return client_ip(request)


def client_ip(request: web.Request) -> str:
    """
    The caller's address. X-Forwarded-For is client-controlled, so it is
    honoured only when TRUST_FORWARDED_FOR says a trusted proxy sets it.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded and settings.TRUST_FORWARDED_FOR:
        return forwarded.split(",")[0].strip()
    return request.remote or "unknown"


def rate_limit_middleware(limiter: RateLimiter):
    """Applies 'limiter' to every request under /api."""

    @web.middleware
    async def middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
        if request.path.startswith("/api"):
            await limiter.check(client_ip(request))
        return await handler(request)

    return middleware


def rate_limited(limiter_key: web.AppKey):
    """
    Decorates a handler so it is limited by the RateLimiter stored under
    'limiter_key' on the application.
    """

    def decorator(handler: Handler) -> Handler:
        @functools.wraps(handler)
        async def wrapper(request: web.Request) -> web.StreamResponse:
            await request.app[limiter_key].check(client_identity(request))
            return await handler(request)

        return wrapper

    return decorator
