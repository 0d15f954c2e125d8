"""Shared fixtures: a controllable clock and an in-memory Redis double.

The Redis double implements just the sorted-set, expiry and pipeline
commands the limiter issues, with key expiry driven by the same clock as
the counter so tests can move time forward deterministically.
"""

import math
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

import pytest

from windowguard.app.core.redis_client import reset_redis_client
from windowguard.app.services.rate_limit import Policy

START_NS = 1_700_000_000 * 1_000_000_000


class FakeClock:
    """Nanosecond clock that only moves when told to."""

    def __init__(self, start_ns: int = START_NS):
        self.ns = start_ns

    def __call__(self) -> int:
        return self.ns

    def advance(self, seconds: float) -> None:
        self.ns += int(seconds * 1_000_000_000)

    @property
    def seconds(self) -> float:
        return self.ns / 1e9


def _parse_bound(value: Any) -> Tuple[float, bool]:
    """Return (score, exclusive) for a ZRANGEBYSCORE-style bound."""
    if isinstance(value, str):
        exclusive = value.startswith("(")
        raw = value[1:] if exclusive else value
        if raw in ("-inf", "+inf", "inf"):
            return (-math.inf if raw == "-inf" else math.inf), exclusive
        return float(raw), exclusive
    return float(value), False


class FakePipeline:
    """Buffers commands and runs them in order on execute()."""

    def __init__(self, redis: "FakeRedis", transaction: bool):
        self._redis = redis
        self.transaction = transaction
        self._commands: List[Tuple[str, tuple]] = []

    def _queue(self, name: str, *args: Any) -> "FakePipeline":
        self._commands.append((name, args))
        return self

    def zremrangebyscore(self, key, min, max):
        return self._queue("zremrangebyscore", key, min, max)

    def zcard(self, key):
        return self._queue("zcard", key)

    def zadd(self, key, mapping):
        return self._queue("zadd", key, mapping)

    def expire(self, key, seconds):
        return self._queue("expire", key, seconds)

    async def execute(self) -> List[Any]:
        commands, self._commands = self._commands, []
        self._redis.pipelines.append([name for name, _ in commands])
        results = []
        for name, args in commands:
            results.append(await getattr(self._redis, name)(*args))
        return results


class FakeRedis:
    """In-memory stand-in for redis.asyncio.Redis sorted-set operations."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.zsets: Dict[str, Dict[str, float]] = {}
        self.expires_at: Dict[str, float] = {}
        self.ttls: Dict[str, int] = {}
        self.pipelines: List[List[str]] = []
        self.pipeline_transactions: List[bool] = []
        self.closed = False

    def _evict_expired(self, key: str) -> None:
        deadline = self.expires_at.get(key)
        if deadline is not None and deadline <= self.clock.seconds:
            self.zsets.pop(key, None)
            self.expires_at.pop(key, None)

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        self.pipeline_transactions.append(transaction)
        return FakePipeline(self, transaction)

    async def zremrangebyscore(self, key, min, max) -> int:
        self._evict_expired(key)
        lo, lo_excl = _parse_bound(min)
        hi, hi_excl = _parse_bound(max)
        entries = self.zsets.get(key, {})
        doomed = [
            member for member, score in entries.items()
            if (score > lo if lo_excl else score >= lo)
            and (score < hi if hi_excl else score <= hi)
        ]
        for member in doomed:
            del entries[member]
        return len(doomed)

    async def zcard(self, key) -> int:
        self._evict_expired(key)
        return len(self.zsets.get(key, {}))

    async def zadd(self, key, mapping) -> int:
        self._evict_expired(key)
        entries = self.zsets.setdefault(key, {})
        added = sum(1 for member in mapping if member not in entries)
        entries.update({member: float(score) for member, score in mapping.items()})
        return added

    async def expire(self, key, seconds) -> bool:
        if key not in self.zsets:
            return False
        self.ttls[key] = int(seconds)
        self.expires_at[key] = self.clock.seconds + int(seconds)
        return True

    async def delete(self, *keys) -> int:
        removed = 0
        for key in keys:
            self._evict_expired(key)
            if self.zsets.pop(key, None) is not None:
                removed += 1
            self.expires_at.pop(key, None)
        return removed

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        self.closed = True

    def count(self, key: str) -> int:
        """Entries currently stored under key (no trimming)."""
        self._evict_expired(key)
        return len(self.zsets.get(key, {}))


@pytest.fixture(autouse=True)
def reset_globals():
    """Never let a test reuse another test's Redis client."""
    reset_redis_client()
    yield
    reset_redis_client()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_redis(clock) -> FakeRedis:
    return FakeRedis(clock)


@pytest.fixture
def make_policy():
    """Factory for ad-hoc policies."""

    def _make(
        name: str = "test",
        max_requests: int = 3,
        window_seconds: float = 60,
        key_prefix: Optional[str] = None,
    ) -> Policy:
        return Policy(
            name=name,
            max_requests=max_requests,
            window=timedelta(seconds=window_seconds),
            key_prefix=key_prefix or f"ratelimit:{name}:",
        )

    return _make
