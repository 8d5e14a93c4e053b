"""Sequential retry with multiplicative backoff, built on tenacity."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    stop_after_attempt,
    wait_exponential,
)

from copilot_frontend.resilience.errors import RetryExhausted

logger = structlog.get_logger(__name__)

T = TypeVar("T")

DEFAULT_BACKOFF_FACTOR = 1.5


def _log_before_sleep(retry_state: RetryCallState) -> None:
    outcome = retry_state.outcome
    error = outcome.exception() if outcome is not None else None
    delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
    logger.info(
        "Retrying failed call",
        attempt=retry_state.attempt_number,
        next_delay_seconds=round(delay, 3),
        error=str(error) if error else None,
        error_type=type(error).__name__ if error else None,
    )


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    retries: int = 1,
    backoff: float = 1.2,
    factor: float = DEFAULT_BACKOFF_FACTOR,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Invoke ``fn`` until it succeeds or the retry budget runs out.

    The n-th wait is ``backoff * factor ** (n - 1)``. Attempts never overlap.

    Args:
        fn: Zero-argument factory producing a fresh awaitable per attempt
        retries: Extra attempts after the first one (0 = single attempt)
        backoff: Delay in seconds before the first retry
        factor: Multiplier applied to the delay after each retry
        sleep: Async sleep used between attempts

    Returns:
        The first successful result

    Raises:
        RetryExhausted: Wrapping the last error once every attempt failed
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max(retries, 0) + 1),
        wait=wait_exponential(multiplier=backoff, exp_base=factor, min=0),
        sleep=sleep,
        before_sleep=_log_before_sleep,
    )

    try:
        return await retrying(fn)
    except RetryError as e:
        last_attempt = e.last_attempt
        last_error = last_attempt.exception()
        raise RetryExhausted(last_error, last_attempt.attempt_number) from last_error
