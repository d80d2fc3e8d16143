"""
Tests for retry backoff and LLM call spacing.

Usage:
  pytest tests/test_retry_rate_limiter.py -v
"""
import asyncio

import pytest

from eatwise.rate_limiter import RateLimiter
from eatwise.retry import (
    RETRY_AFTER_PADDING,
    compute_wait,
    is_retryable,
    retry_after_of,
    status_code_of,
    with_retry,
)


class StatusError(Exception):
    def __init__(self, status_code=None, retry_after=None):
        super().__init__(f"status {status_code}")
        self.status_code = status_code
        self.retry_after = retry_after


class FakeResponse:
    def __init__(self, status_code, headers):
        self.status_code = status_code
        self.headers = headers


class ResponseError(Exception):
    def __init__(self, response):
        super().__init__("http error")
        self.response = response


def flaky(failures):
    """Operation that raises the given errors in turn, then returns 'ok'."""
    state = {"calls": 0}

    async def operation():
        state["calls"] += 1
        if failures:
            raise failures.pop(0)
        return "ok"

    return operation, state


# ── Error inspection ───────────────────────────────────────────────────

class TestErrorInspection:
    def test_status_from_response(self):
        error = ResponseError(FakeResponse(503, {}))
        assert status_code_of(error) == 503

    def test_retry_after_header_seconds(self):
        error = ResponseError(FakeResponse(429, {"retry-after": "3"}))
        assert retry_after_of(error) == 3.0

    def test_retry_after_header_ms(self):
        error = ResponseError(FakeResponse(429, {"retry-after-ms": "1500"}))
        assert retry_after_of(error) == 1.5

    def test_garbage_header_ignored(self):
        error = ResponseError(FakeResponse(429, {"retry-after": "soon"}))
        assert retry_after_of(error) is None

    @pytest.mark.parametrize("status,expected", [
        (429, True),
        (500, True),
        (503, True),
        (400, False),
        (404, False),
        (None, True),
    ])
    def test_is_retryable(self, status, expected):
        assert is_retryable(StatusError(status)) is expected

    def test_plain_timeout_is_retryable(self):
        assert is_retryable(asyncio.TimeoutError())


# ── Backoff ────────────────────────────────────────────────────────────

class TestComputeWait:
    @pytest.mark.parametrize("attempt,expected", [(0, 1.0), (1, 2.0), (2, 4.0)])
    def test_exponential(self, attempt, expected):
        assert compute_wait(attempt, 1.0, 2.0, StatusError(500)) == expected

    def test_retry_after_wins_when_longer(self):
        wait = compute_wait(0, 1.0, 2.0, StatusError(429, retry_after=5))
        assert wait == 5 + RETRY_AFTER_PADDING

    def test_backoff_wins_when_longer(self):
        assert compute_wait(3, 1.0, 2.0, StatusError(429, retry_after=1)) == 8.0


# ── with_retry ─────────────────────────────────────────────────────────

class TestWithRetry:
    def test_succeeds_after_failures(self):
        operation, state = flaky([StatusError(500), StatusError(429)])
        result = asyncio.run(with_retry(operation, retries=3, delay=0))
        assert result == "ok"
        assert state["calls"] == 3

    def test_gives_up_and_reraises_last_error(self):
        last = StatusError(503)
        operation, state = flaky([StatusError(500), StatusError(502), last])
        with pytest.raises(StatusError) as exc_info:
            asyncio.run(with_retry(operation, retries=3, delay=0))
        assert exc_info.value is last
        assert state["calls"] == 3

    def test_client_error_not_retried(self):
        operation, state = flaky([StatusError(400)])
        with pytest.raises(StatusError):
            asyncio.run(with_retry(operation, retries=3, delay=0))
        assert state["calls"] == 1

    def test_custom_predicate(self):
        operation, state = flaky([ValueError("bad"), ValueError("bad")])
        with pytest.raises(ValueError):
            asyncio.run(with_retry(operation, retries=5, delay=0, retry_on=lambda e: False))
        assert state["calls"] == 1

    def test_single_attempt(self):
        operation, state = flaky([StatusError(500)])
        with pytest.raises(StatusError):
            asyncio.run(with_retry(operation, retries=1, delay=0))
        assert state["calls"] == 1


# ── RateLimiter ────────────────────────────────────────────────────────

class TestRateLimiter:
    def test_first_call_is_immediate(self):
        limiter = RateLimiter(10.0)
        assert limiter._reserve_slot(100.0) == 0

    def test_reservations_stack(self):
        limiter = RateLimiter(2.5)
        assert limiter._reserve_slot(100.0) == 0
        assert limiter._reserve_slot(100.0) == 2.5
        assert limiter._reserve_slot(101.0) == 4.0

    def test_idle_gap_resets(self):
        limiter = RateLimiter(2.5)
        limiter._reserve_slot(100.0)
        assert limiter._reserve_slot(110.0) == 0

    def test_concurrent_calls_spaced_in_arrival_order(self):
        limiter = RateLimiter(0.05)
        dispatched = []

        async def call(i):
            async def operation():
                dispatched.append((i, asyncio.get_running_loop().time()))
                return i
            return await limiter.throttle(operation)

        async def run():
            return await asyncio.gather(*(call(i) for i in range(4)))

        results = asyncio.run(run())

        assert results == [0, 1, 2, 3]
        assert [i for i, _ in dispatched] == [0, 1, 2, 3]
        times = [t for _, t in dispatched]
        gaps = [b - a for a, b in zip(times, times[1:])]
        assert all(gap >= 0.04 for gap in gaps)
