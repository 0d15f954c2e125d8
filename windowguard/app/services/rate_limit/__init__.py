"""Distributed sliding-window rate limiting backed by Redis.

This package provides the policy registry, identity resolution and the
Redis sorted-set counter used by the rate limit middleware.
"""

from .counter import SlidingWindowCounter
from .identity import IdentityResolver
from .models import Decision, KeyStrategy, Policy, RequestIdentity, WindowStatus
from .policies import (
    DEFAULT_POLICIES,
    DEFAULT_POLICY_NAME,
    LOGIN_POLICY_NAME,
    PolicyRegistry,
)

__all__ = [
    # Models
    "Decision",
    "KeyStrategy",
    "Policy",
    "RequestIdentity",
    "WindowStatus",
    # Policies
    "DEFAULT_POLICIES",
    "DEFAULT_POLICY_NAME",
    "LOGIN_POLICY_NAME",
    "PolicyRegistry",
    # Components
    "IdentityResolver",
    "SlidingWindowCounter",
]
