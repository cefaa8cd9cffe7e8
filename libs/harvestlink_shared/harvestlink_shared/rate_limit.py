import logging
import os
import time
from collections import defaultdict, deque
from typing import Deque, Dict, Iterable

import redis
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse


log = logging.getLogger("harvestlink.rate_limit")

EXEMPT_PATHS = ("/health", "/metrics")
AUTH_PREFIX = "/auth/"
AUTH_LIMIT_CAP = 20


def _too_many(retry_after: int) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={"error": {"code": "rate_limited", "message": "Too many requests", "details": {"retry_after": retry_after}}},
        headers={"Retry-After": str(retry_after)},
    )


class _LimiterBase(BaseHTTPMiddleware):
    def __init__(self, app, limit_per_minute: int = 60, auth_boost: int = 2, exempt_paths: Iterable[str] = EXEMPT_PATHS):
        super().__init__(app)
        self.limit_per_minute = limit_per_minute
        self.auth_boost = auth_boost
        self.exempt_paths = tuple(exempt_paths)

    def _client_key(self, request: Request) -> str:
        auth = request.headers.get("authorization")
        if auth:
            return f"token:{auth[-24:]}"
        client = request.client.host if request.client else "unknown"
        return f"ip:{client}"

    def _limit_for(self, request: Request) -> int:
        try:
            base = int(os.getenv("RL_LIMIT_PER_MINUTE_OVERRIDE", str(self.limit_per_minute)))
        except ValueError:
            base = self.limit_per_minute
        if request.url.path.startswith(AUTH_PREFIX):
            return min(base, AUTH_LIMIT_CAP)
        if request.headers.get("authorization"):
            try:
                boost = int(os.getenv("RL_AUTH_BOOST_OVERRIDE", str(self.auth_boost)))
            except ValueError:
                boost = self.auth_boost
            base *= boost
        return base

    def _is_exempt(self, request: Request) -> bool:
        if os.getenv("RL_DISABLED", "false").lower() == "true":
            return True
        return request.url.path in self.exempt_paths


class SlidingWindowLimiter(_LimiterBase):
    """Per-process sliding window over the last 60 seconds."""

    window_seconds = 60

    def __init__(self, app, **kwargs):
        super().__init__(app, **kwargs)
        self.store: Dict[str, Deque[float]] = defaultdict(deque)

    async def dispatch(self, request: Request, call_next):
        if self._is_exempt(request):
            return await call_next(request)
        now = time.time()
        limit = self._limit_for(request)
        dq = self.store[self._client_key(request)]
        while dq and now - dq[0] > self.window_seconds:
            dq.popleft()
        if len(dq) >= limit:
            return _too_many(max(1, int(self.window_seconds - (now - dq[0]))))
        dq.append(now)
        return await call_next(request)


class RedisRateLimiter(_LimiterBase):
    """Fixed one-minute windows counted in Redis; fails open when Redis is down."""

    def __init__(self, app, redis_url: str, prefix: str = "rl_harvestlink", **kwargs):
        super().__init__(app, **kwargs)
        self.redis = redis.from_url(redis_url, decode_responses=True)
        self.prefix = prefix

    async def dispatch(self, request: Request, call_next):
        if self._is_exempt(request):
            return await call_next(request)
        now = int(time.time())
        key = f"{self.prefix}:{self._client_key(request)}:{now // 60}"
        try:
            count = self.redis.incr(key)
            if count == 1:
                self.redis.expire(key, 70)
        except redis.RedisError as e:
            log.warning("rate limiter unavailable, allowing request: %s", e)
            return await call_next(request)
        if count > self._limit_for(request):
            return _too_many(60 - (now % 60))
        return await call_next(request)
