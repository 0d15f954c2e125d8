"""Redis sliding-window log counter.

Each key holds a sorted set of request entries scored by arrival time in
nanoseconds. A check trims entries older than the window, counts what is
left, records the current request and refreshes the key expiry, all in one
pipelined round trip.

The pipeline is not a MULTI/EXEC transaction: two checks racing
on the same key may both see a count below the limit and both be allowed.
The window is eventually correct, not a hard ceiling.
"""

import asyncio
import secrets
import time
from typing import Any, Callable, Optional

from redis.exceptions import RedisError

from windowguard.app.core.config import settings
from windowguard.app.core.logging import get_log_context, get_logger
from windowguard.app.core.redis_client import get_redis_client
from windowguard.app.exceptions import StoreUnavailableError

from .models import Decision, Policy, WindowStatus

logger = get_logger(__name__)

STORE_ERRORS = (RedisError, OSError, asyncio.TimeoutError)


class SlidingWindowCounter:
    """Sliding-window log rate limiting against a shared Redis.

    Holds no per-key state in process; every replica pointed at the same
    Redis enforces the same windows.
    """

    def __init__(
        self,
        redis_client: Optional[Any] = None,
        store_timeout: Optional[float] = None,
        clock: Callable[[], int] = time.time_ns,
    ):
        """Initialize the counter.

        Args:
            redis_client: Optional redis.asyncio client (defaults to the global one)
            store_timeout: Seconds allowed for one check round trip
            clock: Time source returning Unix time in nanoseconds
        """
        self._redis = redis_client
        self._store_timeout = store_timeout or settings.rate_limit_store_timeout
        self._clock = clock

    def _get_redis(self) -> Any:
        if self._redis is None:
            self._redis = get_redis_client()
        return self._redis

    def now(self) -> float:
        """Current time in Unix seconds, from the counter's clock."""
        return self._clock() / 1e9

    async def check(self, key: str, policy: Policy) -> Decision:
        """Count this request against ``key`` and decide whether it may proceed.

        The request is recorded even when it is denied, so a client retrying
        in a tight loop keeps its window full until old entries age out.

        Never raises for store failures: the decision fails open and the
        failure is logged.
        """
        now_ns = self._clock()
        reset_at = (now_ns + policy.window_ns) / 1e9

        try:
            count = await asyncio.wait_for(
                self._trim_count_record(key, policy, now_ns),
                timeout=self._store_timeout,
            )
        except STORE_ERRORS as e:
            logger.error(
                f"Rate limit check failed, allowing request: {type(e).__name__}: {e}",
                extra=get_log_context(policy=policy.name, rate_limit_key=key),
            )
            return self._fail_open(policy, reset_at)
        except Exception as e:
            logger.exception(
                f"Unexpected rate limit error, allowing request: {e}",
                extra=get_log_context(policy=policy.name, rate_limit_key=key),
            )
            return self._fail_open(policy, reset_at)

        return Decision(
            allowed=count < policy.max_requests,
            limit=policy.max_requests,
            remaining=max(0, policy.max_requests - count - 1),
            reset_at=reset_at,
        )

    async def _trim_count_record(self, key: str, policy: Policy, now_ns: int) -> int:
        redis_client = self._get_redis()
        window_start_ns = now_ns - policy.window_ns
        member = f"{now_ns}-{secrets.token_hex(4)}"

        pipe = redis_client.pipeline(transaction=False)
        # Order matters: count after trimming and before recording
        pipe.zremrangebyscore(key, "-inf", window_start_ns)
        pipe.zcard(key)
        pipe.zadd(key, {member: now_ns})
        pipe.expire(key, policy.key_ttl_seconds)
        results = await pipe.execute()

        return int(results[1])

    def _fail_open(self, policy: Policy, reset_at: float) -> Decision:
        return Decision(
            allowed=True,
            limit=policy.max_requests,
            remaining=policy.max_requests,
            reset_at=reset_at,
            degraded=True,
        )

    async def inspect(self, key: str, policy: Policy) -> WindowStatus:
        """Trim and count ``key`` without recording a request.

        Raises:
            StoreUnavailableError: If Redis cannot be reached.
        """
        now_ns = self._clock()
        try:
            pipe = self._get_redis().pipeline(transaction=False)
            pipe.zremrangebyscore(key, "-inf", now_ns - policy.window_ns)
            pipe.zcard(key)
            results = await asyncio.wait_for(pipe.execute(), timeout=self._store_timeout)
        except STORE_ERRORS as e:
            raise StoreUnavailableError(key, e) from e

        return WindowStatus(
            current_count=int(results[1]),
            reset_at=(now_ns + policy.window_ns) / 1e9,
        )

    async def clear(self, key_prefix: str, identity: str) -> bool:
        """Delete the window for ``key_prefix + identity``, resetting its quota.

        Returns:
            True if a window existed and was removed.

        Raises:
            StoreUnavailableError: If Redis cannot be reached.
        """
        key = f"{key_prefix}{identity}"
        try:
            deleted = await asyncio.wait_for(
                self._get_redis().delete(key), timeout=self._store_timeout
            )
        except STORE_ERRORS as e:
            raise StoreUnavailableError(key, e) from e

        logger.info("Rate limit window cleared", extra=get_log_context(rate_limit_key=key))
        return bool(deleted)
