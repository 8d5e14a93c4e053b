"""Race an awaitable against a deadline without cancelling it."""

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

import structlog

from copilot_frontend.resilience.errors import CallTimeoutError

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Strong references to operations still running after their deadline
_zombies: set[asyncio.Future] = set()


def _discard_zombie(future: asyncio.Future) -> None:
    _zombies.discard(future)
    if future.cancelled():
        return
    error = future.exception()
    if error is not None:
        logger.debug(
            "Late operation failed after timeout",
            error=str(error),
            error_type=type(error).__name__,
        )
    else:
        logger.debug("Late operation completed after timeout, result discarded")


async def with_timeout(operation: Awaitable[T], seconds: float) -> T:
    """Return the operation's result if it settles within ``seconds``.

    On timeout raises CallTimeoutError. The operation keeps running; its
    eventual result or error is collected and discarded.

    Args:
        operation: Coroutine or future to wait for
        seconds: Deadline in seconds

    Returns:
        The operation's result
    """
    future = asyncio.ensure_future(operation)
    try:
        done, _ = await asyncio.wait({future}, timeout=seconds)
    except asyncio.CancelledError:
        # Caller abandoned the wait; the operation is left to finish alone
        _abandon(future)
        raise

    if future in done:
        return future.result()

    _abandon(future)
    logger.debug("Operation timed out", timeout_seconds=seconds)
    raise CallTimeoutError(seconds)


def _abandon(future: asyncio.Future) -> None:
    _zombies.add(future)
    future.add_done_callback(_discard_zombie)
