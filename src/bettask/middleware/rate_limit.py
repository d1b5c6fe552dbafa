"""Per-caller request quotas kept in Redis.

Two buckets share one fixed window: ``api`` for ordinary calls and
``proof`` for photo uploads and chat commands, which fan out to the
relevance classifier and so get a much smaller allowance.
"""

import re
import time

import structlog
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from bettask.redis_client import get_redis

logger = structlog.get_logger()

_UNMETERED = frozenset({"/health", "/ready", "/version"})
_PROOF_PATHS = re.compile(r"^/api/v1/(challenges/[^/]+/submissions|chat/commands)$")


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Count requests per caller (X-User-Id, else client IP) and answer 429 past the quota."""

    def __init__(
        self,
        app,
        requests_per_window: int = 100,
        window_seconds: int = 60,
        proof_requests_per_window: int = 10,
    ) -> None:
        super().__init__(app)
        self.window_seconds = window_seconds
        self.quotas = {"api": requests_per_window, "proof": proof_requests_per_window}

    @staticmethod
    def caller(request: Request) -> str:
        user_id = request.headers.get("X-User-Id")
        if user_id:
            return f"user:{user_id}"
        return f"ip:{request.client.host if request.client else 'unknown'}"

    @staticmethod
    def bucket(request: Request) -> str:
        if request.method == "POST" and _PROOF_PATHS.match(request.url.path):
            return "proof"
        return "api"

    async def _count(self, key: str) -> int | None:
        """Increment the window counter; None when Redis is absent or failing."""
        try:
            redis = get_redis()
        except RuntimeError:
            return None
        try:
            async with redis.pipeline(transaction=False) as pipe:
                pipe.incr(key)
                pipe.expire(key, self.window_seconds + 1)
                count, _ = await pipe.execute()
        except RedisError as exc:
            logger.warning("rate_limit_unavailable", key=key, error=str(exc))
            return None
        return int(count)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path in _UNMETERED:
            return await call_next(request)

        bucket = self.bucket(request)
        quota = self.quotas[bucket]
        window = int(time.time()) // self.window_seconds
        count = await self._count(f"ratelimit:{bucket}:{self.caller(request)}:{window}")
        if count is None:
            return await call_next(request)

        if count > quota:
            logger.info("rate_limited", bucket=bucket, path=request.url.path, count=count)
            hint = (
                "You're sending proofs too quickly. Wait a minute and try again."
                if bucket == "proof"
                else f"Try again in {self.window_seconds} seconds."
            )
            return JSONResponse(
                status_code=429,
                content={"detail": "Rate limit exceeded.", "code": "rate_limited", "hint": hint},
                headers={
                    "Retry-After": str(self.window_seconds),
                    "X-RateLimit-Limit": str(quota),
                    "X-RateLimit-Remaining": "0",
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(quota)
        response.headers["X-RateLimit-Remaining"] = str(max(0, quota - count))
        return response
