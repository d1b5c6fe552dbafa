"""HTTP middleware stack for the BetTask API."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from bettask.config import Settings
from bettask.middleware.error_handler import setup_error_handlers
from bettask.middleware.logging import configure_logging
from bettask.middleware.rate_limit import RateLimitMiddleware
from bettask.middleware.request_id import RequestIdMiddleware

# Headers browser clients may send and read
_CLIENT_HEADERS = ["Content-Type", "X-User-Id", "X-Request-Id"]
_EXPOSED_HEADERS = ["X-Request-Id", "Retry-After", "X-RateLimit-Limit", "X-RateLimit-Remaining"]


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Install logging, error handlers and the middleware chain.

    Starlette wraps middleware in reverse-add order. CORS goes on last so it
    is outermost and decorates 429s; the request id is bound before the
    rate limiter runs.
    """
    configure_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(
        RateLimitMiddleware,
        requests_per_window=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
        proof_requests_per_window=settings.rate_limit_proof_requests,
    )
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=_CLIENT_HEADERS,
        expose_headers=_EXPOSED_HEADERS,
    )
