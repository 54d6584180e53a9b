from __future__ import annotations

import asyncio

import httpx
import pytest

from duocast_contracts.errors import (
    FatalRequestError,
    InvalidOutputError,
    ProviderTimeoutError,
    RetryExhaustedError,
    TransientProviderError,
)
from duocast_podcast.infrastructure.http import check_response, parse_retry_after
from duocast_podcast.infrastructure.retry import SCRIPT_RETRY, TTS_RETRY, RetryPolicy, is_retryable, retry_async


class FakeSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FlakyOp:
    def __init__(self, failures: list[BaseException], result: str = "ok") -> None:
        self.failures = list(failures)
        self.result = result
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.result


def test_backoff_doubles_and_caps() -> None:
    assert [SCRIPT_RETRY.backoff(n) for n in (1, 2)] == [1.0, 2.0]
    assert [TTS_RETRY.backoff(n) for n in (1, 2, 3, 4, 5, 6)] == [2.0, 4.0, 8.0, 16.0, 30.0, 30.0]


def test_succeeds_after_transient_failures() -> None:
    sleep = FakeSleep()
    policy = RetryPolicy(max_attempts=3, initial_delay_s=1.0, sleep=sleep)
    op = FlakyOp([TransientProviderError("503", status_code=503), TransientProviderError("429", status_code=429)])

    result = asyncio.run(retry_async(op, policy=policy, label="test"))

    assert result == "ok"
    assert op.calls == 3
    assert sleep.delays == [1.0, 2.0]


def test_exhaustion_carries_last_error() -> None:
    sleep = FakeSleep()
    policy = RetryPolicy(max_attempts=3, initial_delay_s=1.0, sleep=sleep)
    op = FlakyOp([TransientProviderError(f"boom {n}", status_code=500) for n in range(3)])

    with pytest.raises(RetryExhaustedError) as exc_info:
        asyncio.run(retry_async(op, policy=policy, label="test"))

    assert exc_info.value.attempts == 3
    assert "boom 2" in str(exc_info.value)
    assert op.calls == 3
    assert len(sleep.delays) == 2


def test_retry_after_raises_the_wait() -> None:
    sleep = FakeSleep()
    policy = RetryPolicy(max_attempts=5, initial_delay_s=2.0, max_delay_s=30.0, sleep=sleep)
    op = FlakyOp([TransientProviderError("slow down", status_code=429, retry_after=5.0)])

    asyncio.run(retry_async(op, policy=policy, label="test"))

    assert sleep.delays == [5.0]


def test_retry_after_below_backoff_is_ignored() -> None:
    sleep = FakeSleep()
    policy = RetryPolicy(max_attempts=3, initial_delay_s=4.0, sleep=sleep)
    op = FlakyOp([TransientProviderError("slow down", status_code=429, retry_after=1.0)])

    asyncio.run(retry_async(op, policy=policy, label="test"))

    assert sleep.delays == [4.0]


def test_fatal_error_is_not_retried() -> None:
    sleep = FakeSleep()
    policy = RetryPolicy(max_attempts=5, sleep=sleep)
    op = FlakyOp([FatalRequestError("bad key", status_code=401)])

    with pytest.raises(FatalRequestError):
        asyncio.run(retry_async(op, policy=policy, label="test"))

    assert op.calls == 1
    assert sleep.delays == []


def test_invalid_output_shares_the_budget() -> None:
    sleep = FakeSleep()
    policy = RetryPolicy(max_attempts=3, sleep=sleep)
    op = FlakyOp([TransientProviderError("503", status_code=503), InvalidOutputError("no json")])

    assert asyncio.run(retry_async(op, policy=policy, label="test")) == "ok"
    assert op.calls == 3


def test_cancellation_during_backoff_stops_immediately() -> None:
    async def run_test() -> int:
        op = FlakyOp([TransientProviderError("503", status_code=503) for _ in range(5)])
        policy = RetryPolicy(max_attempts=5, initial_delay_s=60.0)
        task = asyncio.create_task(retry_async(op, policy=policy, label="test"))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        return op.calls

    assert asyncio.run(asyncio.wait_for(run_test(), timeout=5)) == 1


def test_retryable_classification() -> None:
    assert is_retryable(TransientProviderError("x"))
    assert is_retryable(ProviderTimeoutError("x"))
    assert is_retryable(InvalidOutputError("x"))
    assert not is_retryable(FatalRequestError("x"))
    assert not is_retryable(ValueError("x"))


def test_timeout_is_not_retried_while_cancelling() -> None:
    async def run_test() -> list[bool]:
        seen: list[bool] = []

        async def worker() -> None:
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                seen.append(is_retryable(ProviderTimeoutError("x")))
                raise

        task = asyncio.create_task(worker())
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        return seen

    assert asyncio.run(run_test()) == [False]


def test_check_response_maps_statuses() -> None:
    request = httpx.Request("POST", "https://example.test")
    limited = httpx.Response(429, headers={"Retry-After": "7"}, text="busy", request=request)
    with pytest.raises(TransientProviderError) as exc_info:
        check_response(limited, provider="p")
    assert exc_info.value.retry_after == 7.0

    with pytest.raises(TransientProviderError):
        check_response(httpx.Response(503, text="down", request=request), provider="p")
    with pytest.raises(FatalRequestError):
        check_response(httpx.Response(401, text="nope", request=request), provider="p")

    quota = httpx.Response(429, text='{"status": "RESOURCE_EXHAUSTED", "quota": "per day"}', request=request)
    with pytest.raises(FatalRequestError):
        check_response(quota, provider="p")


def test_parse_retry_after_ignores_dates() -> None:
    request = httpx.Request("GET", "https://example.test")
    dated = httpx.Response(429, headers={"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"}, request=request)
    assert parse_retry_after(dated) is None
