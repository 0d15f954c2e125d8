#!/usr/bin/env python3
"""
Inspect or reset rate limit windows in the shared Redis.

    python scripts/ratelimit_admin.py inspect login 203.0.113.7
    python scripts/ratelimit_admin.py inspect reports user:42
    python scripts/ratelimit_admin.py clear login 203.0.113.7
    python scripts/ratelimit_admin.py policies
"""

import asyncio
import sys
from datetime import datetime
from pathlib import Path

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from windowguard.app.core.config import settings
from windowguard.app.core.redis_client import create_redis_client
from windowguard.app.exceptions import StoreUnavailableError
from windowguard.app.middleware.rate_limit import RateLimiter
from windowguard.app.services.rate_limit import PolicyRegistry, SlidingWindowCounter


def build_limiter(redis_client) -> RateLimiter:
    return RateLimiter(
        counter=SlidingWindowCounter(redis_client=redis_client),
        registry=PolicyRegistry.from_settings(settings),
        enabled=True,
    )


def show_policies(registry: PolicyRegistry) -> None:
    for name, policy in registry.policies.items():
        print(f"{name:<12} {policy.max_requests:>6} requests / {policy.window}  prefix={policy.key_prefix}")


async def run(args) -> int:
    redis_client = create_redis_client()
    limiter = build_limiter(redis_client)
    try:
        if args.command == "policies":
            show_policies(limiter.registry)
            return 0

        if args.policy not in limiter.registry:
            print(f"Unknown policy {args.policy!r}; available: {', '.join(limiter.registry.names())}")
            return 2

        policy = limiter.registry.get(args.policy)
        if args.command == "inspect":
            status = await limiter.inspect(args.policy, args.identity)
            reset = datetime.fromtimestamp(status.reset_at).isoformat(timespec="seconds")
            print(f"key:      {policy.key_for(args.identity)}")
            print(f"count:    {status.current_count} / {policy.max_requests}")
            print(f"resets:   {reset}")
        elif args.command == "clear":
            removed = await limiter.clear(args.policy, args.identity)
            state = "cleared" if removed else "no window found for"
            print(f"{state} {policy.key_for(args.identity)}")
        return 0
    except StoreUnavailableError as e:
        print(f"Redis unavailable: {e}")
        return 1
    finally:
        await redis_client.aclose()


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Rate limit window administration")
    sub = parser.add_subparsers(dest="command", required=True)

    for command, help_text in (
        ("inspect", "Show the current request count for an identity"),
        ("clear", "Delete the window for an identity, resetting its quota"),
    ):
        p = sub.add_parser(command, help=help_text)
        p.add_argument("policy", help="Policy name (default, auth, strict, reports, login, ...)")
        p.add_argument("identity", help="Client IP or user:<id>")

    sub.add_parser("policies", help="List configured policies")

    sys.exit(asyncio.run(run(parser.parse_args())))
