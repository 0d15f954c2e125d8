"""Middleware package for windowguard."""

from windowguard.app.middleware.rate_limit import (
    RateLimiter,
    RateLimitMiddleware,
    identity_from_request,
    rate_limit_exceeded_handler,
)
from windowguard.app.middleware.request_id import RequestIdMiddleware, get_request_id

__all__ = [
    "RateLimiter",
    "RateLimitMiddleware",
    "identity_from_request",
    "rate_limit_exceeded_handler",
    "RequestIdMiddleware",
    "get_request_id",
]
