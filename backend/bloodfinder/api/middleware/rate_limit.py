"""
Rate limiting backed by a Redis sorted-set sliding window.

Usage:
    @router.post("/emergency-requests", dependencies=[rate_limit(max_requests=10, window_seconds=3600)])
    async def create_request(...):
        ...

``RateLimitMiddleware`` applies a generous per-IP ceiling to every request
and is attached in main.py. When Redis is unreachable both fall back to a
per-process in-memory window.
"""

import time
import logging

import redis.asyncio as aioredis
from fastapi import Request, HTTPException, Depends
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from bloodfinder.config import get_settings

logger = logging.getLogger(__name__)

# In-memory fallback when Redis is unavailable
_memory_store: dict[str, list[float]] = {}


async def _check_rate_limit_redis(key: str, max_requests: int, window: int) -> tuple[bool, int]:
    now = time.time()
    client = aioredis.from_url(get_settings().REDIS_URL, decode_responses=True)
    try:
        pipeline = client.pipeline()
        pipeline.zremrangebyscore(key, 0, now - window)
        pipeline.zadd(key, {str(now): now})
        pipeline.zcard(key)
        pipeline.expire(key, window)
        results = await pipeline.execute()
    finally:
        await client.aclose()
    count = results[2]
    return count > max_requests, count


def _check_rate_limit_memory(key: str, max_requests: int, window: int) -> tuple[bool, int]:
    """Single-process only."""
    now = time.time()
    hits = [t for t in _memory_store.get(key, []) if t > now - window]
    hits.append(now)
    _memory_store[key] = hits
    return len(hits) > max_requests, len(hits)


async def is_rate_limited(key: str, max_requests: int, window: int) -> bool:
    try:
        exceeded, _ = await _check_rate_limit_redis(key, max_requests, window)
    except (RedisError, OSError):
        logger.debug("Redis unavailable for rate limiting, using memory window")
        exceeded, _ = _check_rate_limit_memory(key, max_requests, window)
    return exceeded


def _get_client_ip(request: Request) -> str:
    """Client IP, respecting X-Forwarded-For."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def rate_limit(max_requests: int = 60, window_seconds: int = 60, key_prefix: str = "rl"):
    """Per-route limit, keyed on route path and client IP."""

    async def _dependency(request: Request):
        key = f"{key_prefix}:{request.url.path}:{_get_client_ip(request)}"
        if await is_rate_limited(key, max_requests, window_seconds):
            logger.warning("Rate limit hit on %s by %s", request.url.path, _get_client_ip(request))
            raise HTTPException(
                status_code=429,
                detail=f"Rate limit exceeded. Max {max_requests} requests per {window_seconds}s.",
                headers={"Retry-After": str(window_seconds)},
            )

    return Depends(_dependency)


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, max_requests: int = 200, window_seconds: int = 60):
        super().__init__(app)
        self.max_requests = max_requests
        self.window_seconds = window_seconds

    async def dispatch(self, request: Request, call_next):
        key = f"global_rl:{_get_client_ip(request)}"
        if await is_rate_limited(key, self.max_requests, self.window_seconds):
            return JSONResponse(
                status_code=429,
                content={"detail": f"Rate limit exceeded. Max {self.max_requests} requests per {self.window_seconds}s."},
                headers={"Retry-After": str(self.window_seconds)},
            )
        return await call_next(request)
