"""Data models for sliding-window rate limiting."""

import math
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Optional

# Idle keys outlive their window by this much before Redis reclaims them
KEY_TTL_GRACE = timedelta(minutes=1)


@dataclass(frozen=True)
class Policy:
    """A named quota: at most ``max_requests`` per trailing ``window``.

    Attributes:
        name: Policy name used for lookup
        max_requests: Requests allowed inside one window
        window: Length of the sliding window
        key_prefix: Redis key prefix isolating this policy's keyspace
    """
    name: str
    max_requests: int
    window: timedelta
    key_prefix: str

    def __post_init__(self):
        if self.max_requests < 1:
            raise ValueError(f"Policy {self.name!r}: max_requests must be at least 1")
        if self.window <= timedelta(0):
            raise ValueError(f"Policy {self.name!r}: window must be positive")

    @property
    def window_ns(self) -> int:
        """Window length in nanoseconds (the unit of entry scores)."""
        return self.window // timedelta(microseconds=1) * 1000

    @property
    def key_ttl_seconds(self) -> int:
        """Expiry attached to the whole key on every check."""
        return math.ceil((self.window + KEY_TTL_GRACE).total_seconds())

    def key_for(self, identity: str) -> str:
        """Build the Redis key for an identity under this policy."""
        return f"{self.key_prefix}{identity}"


class KeyStrategy(str, Enum):
    """How a request is attributed to a quota bucket."""
    IP = "ip"
    USER = "user"


@dataclass(frozen=True)
class RequestIdentity:
    """Per-request caller information supplied by the HTTP layer.

    Attributes:
        client_ip: Caller IP address
        user_id: Authenticated user id, if the request is authenticated
        path: Request path (used for logging only)
    """
    client_ip: str
    user_id: Optional[str] = None
    path: str = ""


@dataclass(frozen=True)
class Decision:
    """Outcome of one rate limit check.

    Attributes:
        allowed: Whether the request may proceed
        limit: The policy's max_requests
        remaining: Requests left in the window after this one (never negative)
        reset_at: Unix time (seconds) when the window is reported to reset
        degraded: True when the store failed and the request was let through
    """
    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    degraded: bool = False

    def headers(self) -> dict[str, str]:
        """X-RateLimit-* headers describing this decision."""
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.reset_at)),
        }

    def retry_after(self, now: float) -> int:
        """Whole seconds until reset_at, rounded up."""
        return max(0, math.ceil(self.reset_at - now))


@dataclass(frozen=True)
class WindowStatus:
    """Read-only view of a window, as returned by inspect.

    Attributes:
        current_count: Entries currently inside the window
        reset_at: Unix time (seconds) when the window is reported to reset
    """
    current_count: int
    reset_at: float

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "current_count": self.current_count,
            "reset_at": int(self.reset_at),
        }
