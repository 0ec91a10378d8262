"""Middleware and exception handler registration."""

from fastapi import FastAPI

from questboard.config import Settings
from questboard.middleware.cors import setup_cors
from questboard.middleware.error_handler import setup_error_handlers
from questboard.middleware.logging import setup_logging
from questboard.middleware.rate_limit import RateLimitMiddleware
from questboard.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register middleware. The last one added is outermost, so CORS goes last to wrap 429s."""
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(
        RateLimitMiddleware,
        requests_per_window=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
    app.add_middleware(RequestIdMiddleware)
    setup_cors(app, settings)
