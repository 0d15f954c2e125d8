"""Named rate limit policies.

The registry is built once at startup and handed to the limiter; it is never
mutated afterwards.
"""

from datetime import timedelta
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from windowguard.app.core.config import PolicyOverride, Settings
from windowguard.app.core.logging import get_logger

from .models import Policy

logger = get_logger(__name__)

DEFAULT_POLICY_NAME = "default"
LOGIN_POLICY_NAME = "login"

DEFAULT_POLICIES: tuple[Policy, ...] = (
    Policy("default", 100, timedelta(minutes=1), "ratelimit:default:"),
    Policy("auth", 5, timedelta(minutes=1), "ratelimit:auth:"),
    Policy("strict", 3, timedelta(minutes=5), "ratelimit:strict:"),
    # Report submissions: 10 per day per user to prevent spam
    Policy("reports", 10, timedelta(hours=24), "ratelimit:reports:"),
    # Login brute-force protection, keyed by IP only
    Policy("login", 5, timedelta(minutes=15), "ratelimit:login:"),
)


class PolicyRegistry:
    """Immutable lookup table of named policies.

    Unknown names resolve to the ``default`` policy so a misconfigured call
    site is still limited rather than silently exempted.
    """

    def __init__(self, policies: Iterable[Policy] = DEFAULT_POLICIES):
        table = {policy.name: policy for policy in policies}
        if DEFAULT_POLICY_NAME not in table:
            raise ValueError(f"Policy registry requires a {DEFAULT_POLICY_NAME!r} policy")
        self._policies: Mapping[str, Policy] = MappingProxyType(table)

    @classmethod
    def from_settings(cls, settings: Settings) -> "PolicyRegistry":
        """Build the registry from the defaults plus RATE_LIMIT_POLICIES overrides."""
        table = {policy.name: policy for policy in DEFAULT_POLICIES}
        for name, override in settings.rate_limit_policies.items():
            table[name] = _apply_override(name, table.get(name), override)
            logger.info(
                f"Rate limit policy {name!r} configured: "
                f"{table[name].max_requests} requests / {table[name].window}",
                extra={"policy": name},
            )
        return cls(table.values())

    @property
    def policies(self) -> Mapping[str, Policy]:
        """Read-only view of all policies by name."""
        return self._policies

    def resolve(self, name: Optional[str]) -> Policy:
        """Return the named policy, or the default policy for unknown names."""
        policy = self._policies.get(name) if name else None
        if policy is None:
            logger.debug(f"Unknown rate limit policy {name!r}, using default", extra={"policy": name})
            return self._policies[DEFAULT_POLICY_NAME]
        return policy

    def get(self, name: str) -> Policy:
        """Strict lookup; raises KeyError for unknown names."""
        return self._policies[name]

    def names(self) -> list[str]:
        return list(self._policies)

    def __contains__(self, name: object) -> bool:
        return name in self._policies

    def __len__(self) -> int:
        return len(self._policies)


def _apply_override(name: str, base: Optional[Policy], override: PolicyOverride) -> Policy:
    if base is None:
        if override.max_requests is None or override.window_seconds is None:
            raise ValueError(
                f"New rate limit policy {name!r} needs both max_requests and window_seconds"
            )
        return Policy(
            name=name,
            max_requests=override.max_requests,
            window=timedelta(seconds=override.window_seconds),
            key_prefix=override.key_prefix or f"ratelimit:{name}:",
        )
    return Policy(
        name=name,
        max_requests=override.max_requests if override.max_requests is not None else base.max_requests,
        window=(
            timedelta(seconds=override.window_seconds)
            if override.window_seconds is not None
            else base.window
        ),
        key_prefix=override.key_prefix or base.key_prefix,
    )
