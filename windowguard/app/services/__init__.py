"""Services package for windowguard.

This package provides:
- Sliding-window rate limiting against a shared Redis
"""

from windowguard.app.services.rate_limit import (
    Decision,
    IdentityResolver,
    KeyStrategy,
    Policy,
    PolicyRegistry,
    RequestIdentity,
    SlidingWindowCounter,
    WindowStatus,
)

__all__ = [
    "Decision",
    "IdentityResolver",
    "KeyStrategy",
    "Policy",
    "PolicyRegistry",
    "RequestIdentity",
    "SlidingWindowCounter",
    "WindowStatus",
]
