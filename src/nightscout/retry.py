"""Bounded retry for a single Nightscout call."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from src.nightscout.errors import TransportError

logger = logging.getLogger("nightsync.nightscout.retry")

T = TypeVar("T")


def _log_attempt(label: str, attempts: int) -> Callable[[RetryCallState], None]:
    def before_sleep(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        logger.info(
            "%s attempt %d/%d failed (%s), retrying", label, state.attempt_number, attempts, exc
        )

    return before_sleep


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    retries: int = 1,
    backoff_s: float = 0.0,
    retry_on: tuple[type[Exception], ...] = (TransportError,),
    label: str = "request",
) -> T:
    """Run ``operation`` and resubmit it up to ``retries`` extra times.

    Only exceptions listed in ``retry_on`` are retried; anything else (and
    the last failure once the budget is spent) propagates unchanged.
    Cancellation is never intercepted, so a cancelled caller stops the loop
    between attempts.

    Args:
        operation: Zero-argument factory returning a fresh awaitable per attempt.
        retries:   Extra attempts after the first (1 means two attempts total).
        backoff_s: Fixed pause between attempts.
        retry_on:  Exception types that warrant another attempt.
        label:     Name used in log lines.

    Returns:
        Whatever the first successful attempt returns.
    """
    if retries < 0:
        raise ValueError(f"retries must be >= 0, got {retries}")

    attempts = retries + 1
    retrying = AsyncRetrying(
        stop=stop_after_attempt(attempts),
        retry=retry_if_exception_type(retry_on),
        wait=wait_fixed(backoff_s),
        before_sleep=_log_attempt(label, attempts),
        reraise=True,
    )
    return await retrying(operation)
