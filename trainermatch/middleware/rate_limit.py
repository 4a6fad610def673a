"""Rate limiting middleware for the LLM-backed matching endpoints"""

import asyncio
import logging
import time
import uuid
from typing import Callable

import redis.asyncio as redis
from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware

from trainermatch.config import settings

logger = logging.getLogger(__name__)


class InMemoryRateLimiter:
    """Fixed-window limiter used when Redis is not available"""

    def __init__(self):
        # client_id -> (request_count, window_start_time)
        self.clients: dict[str, tuple[int, float]] = {}
        self._lock = asyncio.Lock()

    async def is_allowed(self, client_id: str, limit: int, window_seconds: int) -> tuple[bool, int, int]:
        """Returns (allowed, remaining, reset_time)"""
        async with self._lock:
            current_time = time.time()
            count, window_start = self.clients.get(client_id, (0, current_time))

            if current_time - window_start >= window_seconds:
                count = 0
                window_start = current_time

            reset_time = int(window_start + window_seconds)
            if count >= limit:
                return False, 0, reset_time

            count += 1
            self.clients[client_id] = (count, window_start)
            return True, limit - count, reset_time


class RedisRateLimiter:
    """Sliding-window limiter shared across workers"""

    def __init__(self, redis_client: redis.Redis):
        self.redis = redis_client

    async def is_allowed(self, client_id: str, limit: int, window_seconds: int) -> tuple[bool, int, int]:
        current_time = time.time()
        key = f"ratelimit:{client_id}"

        pipe = self.redis.pipeline()
        pipe.zremrangebyscore(key, 0, current_time - window_seconds)
        pipe.zcard(key)
        pipe.zadd(key, {f"{current_time}:{uuid.uuid4().hex[:8]}": current_time})
        pipe.expire(key, window_seconds)
        results = await pipe.execute()
        current_requests = results[1]

        reset_time = int(current_time) + window_seconds
        if current_requests >= limit:
            return False, 0, reset_time
        return True, limit - current_requests - 1, reset_time


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-client minute and hour limits on paths under ``path_prefix``"""

    def __init__(
        self,
        app,
        requests_per_minute: int = 30,
        requests_per_hour: int = 300,
        enable_rate_limiting: bool = True,
        path_prefix: str = "/api/v1/matching",
    ):
        super().__init__(app)
        self.requests_per_minute = requests_per_minute
        self.requests_per_hour = requests_per_hour
        self.enable_rate_limiting = enable_rate_limiting
        self.path_prefix = path_prefix
        self.redis_limiter: RedisRateLimiter | None = None
        self.memory_limiter = InMemoryRateLimiter()
        self._redis_setup_attempted = False

    async def _setup_redis(self) -> None:
        if self._redis_setup_attempted or not settings.redis_url:
            return
        self._redis_setup_attempted = True
        try:
            redis_client = redis.from_url(str(settings.redis_url))
            await redis_client.ping()
            self.redis_limiter = RedisRateLimiter(redis_client)
            logger.info("Rate limiting backed by Redis")
        except (RedisError, OSError) as e:
            logger.warning(f"Redis unavailable for rate limiting, using in-memory limiter: {e}")

    def _get_client_id(self, request: Request) -> str:
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()
        return request.client.host if request.client else "unknown"

    async def _check(self, client_id: str, limit: int, window: int) -> tuple[bool, int, int]:
        if self.redis_limiter is not None:
            try:
                return await self.redis_limiter.is_allowed(client_id, limit, window)
            except RedisError as e:
                logger.warning(f"Redis rate limit check failed, falling back to memory: {e}")
        return await self.memory_limiter.is_allowed(client_id, limit, window)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not self.enable_rate_limiting or not request.url.path.startswith(self.path_prefix):
            return await call_next(request)

        await self._setup_redis()
        client_id = self._get_client_id(request)

        allowed_minute, remaining_minute, reset_minute = await self._check(
            f"{client_id}:minute", self.requests_per_minute, 60
        )
        allowed_hour, remaining_hour, reset_hour = await self._check(
            f"{client_id}:hour", self.requests_per_hour, 3600
        )

        remaining = min(remaining_minute, remaining_hour)
        reset_time = min(reset_minute, reset_hour)
        headers = {
            "X-RateLimit-Limit-Minute": str(self.requests_per_minute),
            "X-RateLimit-Limit-Hour": str(self.requests_per_hour),
            "X-RateLimit-Remaining": str(remaining),
            "X-RateLimit-Reset": str(reset_time),
        }

        if not (allowed_minute and allowed_hour):
            logger.warning(f"Rate limit exceeded for {client_id} on {request.url.path}")
            headers["Retry-After"] = str(max(0, reset_time - int(time.time())))
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={
                    "error": {
                        "kind": "rate_limited",
                        "message": "Too many requests. Please wait a moment and try again.",
                        "retryable": True,
                    }
                },
                headers=headers,
            )

        response = await call_next(request)
        response.headers.update(headers)
        return response
