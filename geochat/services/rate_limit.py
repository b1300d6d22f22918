# Fixed-window rate limiting on Redis (SET NX EX + INCR per client per window)

import logging
from typing import Optional

import redis.asyncio as redis
from fastapi import Request
from redis.exceptions import RedisError

from geochat import config
from geochat.errors import RateLimited

logger = logging.getLogger(__name__)

KEY_PREFIX = "rate_limit:"

# Single module client, reused across requests
redis_client = redis.from_url(config.REDIS_URL, decode_responses=True)


class RateLimiter:
    """
    At most `max_requests` per `window_secs` per client key.

    The key that opens a window carries its expiry. If Redis is unreachable the
    request is allowed (fail open) and a warning is logged.
    """

    def __init__(self, redis_client, max_requests: Optional[int] = None, window_secs: Optional[int] = None):
        self._redis = redis_client
        self.max_requests = max_requests if max_requests is not None else config.RATE_LIMIT_REQUESTS
        self.window_secs = window_secs if window_secs is not None else config.RATE_LIMIT_WINDOW_SECS

    def _key(self, client_key: str) -> str:
        return f"{KEY_PREFIX}{client_key}"

    async def hit(self, client_key: str) -> int:
        """Count one request in the current window and return the window's count."""
        key = self._key(client_key)
        # SET NX EX opens the window with its TTL; INCR keeps the TTL. Both run in one MULTI.
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.set(key, 0, ex=self.window_secs, nx=True)
            pipe.incr(key)
            _, count = await pipe.execute()
        return int(count)

    async def allow(self, client_key: str) -> bool:
        try:
            count = await self.hit(client_key)
        except RedisError as e:
            logger.warning("Rate limiter unavailable, allowing %s: %s", client_key, e)
            return True
        if count > self.max_requests:
            logger.info("Rate limit exceeded for %s (%d/%d)", client_key, count, self.max_requests)
            return False
        return True


limiter = RateLimiter(redis_client)


def _client_key(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


async def rate_limit(request: Request) -> None:
    """FastAPI dependency: RateLimited once the client exhausts its window."""
    if not await limiter.allow(_client_key(request)):
        raise RateLimited("Too many requests, slow down")
