import time
from collections import defaultdict, deque
from typing import Optional

import redis.asyncio as redis
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from core.logging import get_api_logger_safe

EXEMPT_PATHS = ("/health", "/metrics")


class RateLimitingMiddleware(BaseHTTPMiddleware):
    """Sliding-window rate limit per client IP.

    Redis-backed when a client is given, in-memory otherwise. Limiter
    failures let the request through.
    """

    def __init__(self, app, redis_client: Optional[redis.Redis] = None, calls: int = 100, period: int = 60):
        super().__init__(app)
        self.redis_client = redis_client
        self.calls = calls
        self.period = period
        self.logger = get_api_logger_safe("rate_limiting")
        self.use_redis = redis_client is not None
        self.clients = defaultdict(deque)

    async def dispatch(self, request: Request, call_next):
        if request.url.path in EXEMPT_PATHS:
            return await call_next(request)

        client_ip = self._get_client_ip(request)
        try:
            if self.use_redis:
                allowed = await self._check_redis_rate_limit(client_ip)
            else:
                allowed = self._check_memory_rate_limit(client_ip)
        except Exception as e:
            self.logger.error("Rate limiting error, allowing request", error=str(e))
            allowed = True

        if not allowed:
            self.logger.warning("Rate limit exceeded", client_ip=client_ip, path=request.url.path)
            return JSONResponse(
                status_code=429,
                content={"success": False,
                         "message": f"Too many requests, limit is {self.calls} per {self.period} seconds"},
                headers={"Retry-After": str(self.period)},
            )
        return await call_next(request)

    def _get_client_ip(self, request: Request) -> str:
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            # First IP in the chain is the original client
            return forwarded_for.split(",")[0].strip()
        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip.strip()
        return request.client.host if request.client else "unknown"

    async def _check_redis_rate_limit(self, client_ip: str) -> bool:
        key = f"rate_limit:{client_ip}"
        now = time.time()
        async with self.redis_client.pipeline() as pipe:
            pipe.zremrangebyscore(key, 0, now - self.period)
            pipe.zadd(key, {str(now): now})
            pipe.expire(key, self.period + 1)
            pipe.zcard(key)
            results = await pipe.execute()
        return results[3] <= self.calls

    def _check_memory_rate_limit(self, client_ip: str) -> bool:
        now = time.time()
        client_requests = self.clients[client_ip]
        while client_requests and client_requests[0] <= now - self.period:
            client_requests.popleft()
        if len(client_requests) >= self.calls:
            return False
        client_requests.append(now)
        return True
