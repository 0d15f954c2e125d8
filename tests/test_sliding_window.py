"""Tests for the Redis sliding-window counter."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import redis

from windowguard.app.exceptions import StoreUnavailableError
from windowguard.app.services.rate_limit import SlidingWindowCounter

KEY = "ratelimit:test:10.0.0.1"


@pytest.fixture
def counter(fake_redis, clock):
    return SlidingWindowCounter(redis_client=fake_redis, store_timeout=1.0, clock=clock)


@pytest.fixture
def policy(make_policy):
    return make_policy(max_requests=3, window_seconds=60)


class TestCheck:
    """Tests for SlidingWindowCounter.check."""

    @pytest.mark.asyncio
    async def test_allows_up_to_limit_then_denies(self, counter, policy):
        """1st-3rd requests allowed with remaining 2, 1, 0; 4th denied."""
        remaining = []
        for _ in range(3):
            decision = await counter.check(KEY, policy)
            assert decision.allowed is True
            remaining.append(decision.remaining)
        assert remaining == [2, 1, 0]

        decision = await counter.check(KEY, policy)
        assert decision.allowed is False
        assert decision.remaining == 0
        assert decision.limit == 3
        assert decision.degraded is False

    @pytest.mark.asyncio
    async def test_reset_at_is_now_plus_window(self, counter, policy, clock):
        decision = await counter.check(KEY, policy)
        assert decision.reset_at == pytest.approx(clock.seconds + 60)
        assert decision.retry_after(clock.seconds) == 60

    @pytest.mark.asyncio
    async def test_allowed_again_after_window_elapses(self, counter, policy, clock):
        for _ in range(4):
            await counter.check(KEY, policy)

        clock.advance(60)
        decision = await counter.check(KEY, policy)
        assert decision.allowed is True
        assert decision.remaining == 2

    @pytest.mark.asyncio
    async def test_window_slides_rather_than_resetting(self, counter, policy, clock):
        """Entries age out individually, not all at a fixed boundary."""
        await counter.check(KEY, policy)          # t=0
        clock.advance(30)
        await counter.check(KEY, policy)          # t=30
        await counter.check(KEY, policy)          # t=30
        clock.advance(31)                         # t=61: only the t=0 entry aged out

        decision = await counter.check(KEY, policy)
        assert decision.allowed is True
        assert decision.remaining == 0

        decision = await counter.check(KEY, policy)
        assert decision.allowed is False

    @pytest.mark.asyncio
    async def test_denied_requests_keep_window_full(self, counter, policy, clock, fake_redis):
        """Retrying while denied keeps recording entries, so the window does not reset early."""
        for _ in range(3):
            await counter.check(KEY, policy)

        # Flood past the limit for the next 50 seconds
        for _ in range(10):
            clock.advance(5)
            decision = await counter.check(KEY, policy)
            assert decision.allowed is False

        # The first three entries have aged out, but the denied retries have not
        clock.advance(15)
        decision = await counter.check(KEY, policy)
        assert decision.allowed is False
        assert fake_redis.count(KEY) > 3

    @pytest.mark.asyncio
    async def test_distinct_keys_are_independent(self, counter, policy):
        for _ in range(4):
            await counter.check(KEY, policy)

        decision = await counter.check("ratelimit:test:10.0.0.2", policy)
        assert decision.allowed is True
        assert decision.remaining == 2

    @pytest.mark.asyncio
    async def test_single_pipeline_in_order(self, counter, policy, fake_redis):
        await counter.check(KEY, policy)

        assert fake_redis.pipelines == [["zremrangebyscore", "zcard", "zadd", "expire"]]
        # No MULTI/EXEC: the check is an approximate, non-transactional burst
        assert fake_redis.pipeline_transactions == [False]

    @pytest.mark.asyncio
    async def test_key_expiry_is_window_plus_one_minute(self, counter, policy, fake_redis):
        await counter.check(KEY, policy)
        assert fake_redis.ttls[KEY] == 120

    @pytest.mark.asyncio
    async def test_idle_key_is_reclaimed_by_expiry(self, counter, policy, clock, fake_redis):
        await counter.check(KEY, policy)
        clock.advance(121)
        assert fake_redis.count(KEY) == 0

    @pytest.mark.asyncio
    async def test_same_instant_requests_do_not_collide(self, counter, policy, fake_redis):
        """Entries recorded at the same nanosecond are still counted separately."""
        for _ in range(3):
            await counter.check(KEY, policy)
        assert fake_redis.count(KEY) == 3


class TestFailOpen:
    """Store failures must never block traffic."""

    @staticmethod
    def _failing_redis(error: Exception) -> MagicMock:
        pipe = MagicMock()
        pipe.execute = AsyncMock(side_effect=error)
        client = MagicMock()
        client.pipeline.return_value = pipe
        return client

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            redis.ConnectionError("Connection refused"),
            redis.TimeoutError("Timeout reading from socket"),
            redis.ResponseError("WRONGTYPE Operation against a key holding the wrong kind of value"),
        ],
    )
    async def test_store_errors_allow_and_log(self, policy, clock, error):
        counter = SlidingWindowCounter(redis_client=self._failing_redis(error), clock=clock)

        with patch("windowguard.app.services.rate_limit.counter.logger") as mock_logger:
            decision = await counter.check(KEY, policy)

        assert decision.allowed is True
        assert decision.degraded is True
        mock_logger.error.assert_called_once()
        assert mock_logger.error.call_args.kwargs["extra"]["rate_limit_key"] == KEY

    @pytest.mark.asyncio
    async def test_every_check_allowed_while_store_down(self, policy, clock):
        counter = SlidingWindowCounter(
            redis_client=self._failing_redis(redis.ConnectionError("down")), clock=clock
        )
        for _ in range(10):
            decision = await counter.check(KEY, policy)
            assert decision.allowed is True

    @pytest.mark.asyncio
    async def test_slow_store_times_out_and_allows(self, policy, clock):
        async def hang():
            await asyncio.sleep(5)

        pipe = MagicMock()
        pipe.execute = hang
        client = MagicMock()
        client.pipeline.return_value = pipe
        counter = SlidingWindowCounter(redis_client=client, store_timeout=0.05, clock=clock)

        with patch("windowguard.app.services.rate_limit.counter.logger") as mock_logger:
            decision = await counter.check(KEY, policy)

        assert decision.allowed is True
        assert decision.degraded is True
        mock_logger.error.assert_called_once()

    @pytest.mark.asyncio
    async def test_unexpected_error_allows(self, policy, clock):
        counter = SlidingWindowCounter(
            redis_client=self._failing_redis(RuntimeError("boom")), clock=clock
        )
        with patch("windowguard.app.services.rate_limit.counter.logger") as mock_logger:
            decision = await counter.check(KEY, policy)

        assert decision.allowed is True
        mock_logger.exception.assert_called_once()


class TestInspect:
    """Tests for the read-only inspect operation."""

    @pytest.mark.asyncio
    async def test_inspect_does_not_record(self, counter, policy, fake_redis):
        await counter.check(KEY, policy)
        await counter.check(KEY, policy)

        first = await counter.inspect(KEY, policy)
        second = await counter.inspect(KEY, policy)

        assert first.current_count == 2
        assert second.current_count == first.current_count
        assert fake_redis.count(KEY) == 2

    @pytest.mark.asyncio
    async def test_inspect_trims_aged_entries(self, counter, policy, clock):
        await counter.check(KEY, policy)
        clock.advance(30)
        await counter.check(KEY, policy)
        clock.advance(30)

        status = await counter.inspect(KEY, policy)
        assert status.current_count == 1
        assert status.reset_at == pytest.approx(clock.seconds + 60)

    @pytest.mark.asyncio
    async def test_inspect_unknown_key_is_empty(self, counter, policy):
        status = await counter.inspect("ratelimit:test:nobody", policy)
        assert status.current_count == 0

    @pytest.mark.asyncio
    async def test_inspect_raises_when_store_down(self, policy, clock):
        client = TestFailOpen._failing_redis(redis.ConnectionError("down"))
        counter = SlidingWindowCounter(redis_client=client, clock=clock)

        with pytest.raises(StoreUnavailableError) as exc_info:
            await counter.inspect(KEY, policy)
        assert exc_info.value.key == KEY


class TestClear:
    """Tests for clearing a window."""

    @pytest.mark.asyncio
    async def test_clear_resets_quota(self, counter, policy):
        for _ in range(4):
            await counter.check(KEY, policy)

        removed = await counter.clear("ratelimit:test:", "10.0.0.1")
        assert removed is True

        decision = await counter.check(KEY, policy)
        assert decision.allowed is True
        assert decision.remaining == 2

    @pytest.mark.asyncio
    async def test_clear_missing_window(self, counter):
        assert await counter.clear("ratelimit:test:", "10.9.9.9") is False

    @pytest.mark.asyncio
    async def test_clear_only_touches_one_identity(self, counter, policy):
        await counter.check(KEY, policy)
        await counter.check("ratelimit:test:10.0.0.2", policy)

        await counter.clear("ratelimit:test:", "10.0.0.1")

        status = await counter.inspect("ratelimit:test:10.0.0.2", policy)
        assert status.current_count == 1

    @pytest.mark.asyncio
    async def test_clear_raises_when_store_down(self):
        client = MagicMock()
        client.delete = AsyncMock(side_effect=redis.ConnectionError("down"))
        counter = SlidingWindowCounter(redis_client=client)

        with pytest.raises(StoreUnavailableError):
            await counter.clear("ratelimit:test:", "10.0.0.1")
