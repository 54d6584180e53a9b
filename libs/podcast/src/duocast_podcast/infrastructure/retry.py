from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

from duocast_contracts.errors import (
    InvalidOutputError,
    ProviderTimeoutError,
    RetryExhaustedError,
    TransientProviderError,
)
from duocast_podcast.infrastructure.logging import get_logger
from duocast_podcast.infrastructure.metrics import provider_retry

log = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    initial_delay_s: float = 1.0
    multiplier: float = 2.0
    max_delay_s: float | None = None
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, compare=False, repr=False)

    def backoff(self, attempt: int) -> float:
        """Delay after the given 1-based failed attempt."""
        delay = self.initial_delay_s * (self.multiplier ** (attempt - 1))
        if self.max_delay_s is not None:
            delay = min(delay, self.max_delay_s)
        return delay


SCRIPT_RETRY = RetryPolicy(max_attempts=3, initial_delay_s=1.0)
TTS_RETRY = RetryPolicy(max_attempts=5, initial_delay_s=2.0, max_delay_s=30.0)


def _cancelling() -> bool:
    task = asyncio.current_task()
    return bool(task is not None and task.cancelling())


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, ProviderTimeoutError):
        # A timeout during our own cancellation is not retried.
        return not _cancelling()
    return isinstance(exc, (TransientProviderError, InvalidOutputError))


async def retry_async(
    op: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    label: str,
    retryable: Callable[[BaseException], bool] = is_retryable,
) -> T:
    """Run ``op`` until it succeeds or the attempt budget is spent.

    Fatal errors propagate untouched. When a transient error carries a
    server-specified minimum wait, the sleep is ``max(backoff, retry_after)``.
    Cancellation during the sleep propagates immediately.
    """
    last_exc: BaseException | None = None
    for attempt in range(1, max(1, policy.max_attempts) + 1):
        try:
            return await op()
        except Exception as exc:
            if not retryable(exc):
                raise
            last_exc = exc
            if attempt >= policy.max_attempts:
                break
            wait = policy.backoff(attempt)
            retry_after = getattr(exc, "retry_after", None)
            if retry_after:
                wait = max(wait, float(retry_after))
            provider_retry(label)
            log.warning("retry label=%s attempt=%s/%s wait=%.1fs error=%s", label, attempt, policy.max_attempts, wait, exc)
            await policy.sleep(wait)
    assert last_exc is not None
    raise RetryExhaustedError(policy.max_attempts, last_exc) from last_exc
