"""
Live-or-mock call execution that never fails the caller.

The live operation runs under a per-attempt deadline and a retry budget.
When it still fails, observers are told once through the degradation
notifier and the mock operation supplies the data instead. If the mock
fails as well, a configurable sentinel is returned.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

import structlog

from copilot_frontend.resilience.errors import describe_error
from copilot_frontend.resilience.notifier import (
    DegradationNotifier,
    get_degradation_notifier,
)
from copilot_frontend.resilience.retry import DEFAULT_BACKOFF_FACTOR, with_retry
from copilot_frontend.resilience.timeout import with_timeout

logger = structlog.get_logger(__name__)

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]


class OutcomeSource(str, Enum):
    """Where the value of a call outcome came from."""

    LIVE = "live"
    MOCK = "mock"
    SENTINEL = "sentinel"


@dataclass(frozen=True)
class CallOutcome(Generic[T]):
    """Tagged result of a resilient call: fresh or degraded data."""

    value: T
    source: OutcomeSource
    reason: str | None = None

    @property
    def degraded(self) -> bool:
        return self.source is not OutcomeSource.LIVE


def default_sentinel() -> dict[str, Any]:
    """Minimal always-valid stand-in: success with no data."""
    return {"ok": True}


class ResilientCallExecutor:
    """
    Runs live operations with timeout + retry and falls back to mocks.

    Example:
        >>> executor = ResilientCallExecutor(timeout=10.0, retries=1)
        >>> outcome = await executor.execute(fetch_live, fetch_mock)
        >>> if outcome.degraded:
        ...     print("showing fallback data:", outcome.reason)
    """

    def __init__(
        self,
        notifier: DegradationNotifier | None = None,
        timeout: float = 10.0,
        retries: int = 1,
        backoff: float = 1.2,
        backoff_factor: float = DEFAULT_BACKOFF_FACTOR,
        sentinel_factory: Callable[[], Any] = default_sentinel,
        use_mocks: bool = False,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize the executor.

        Args:
            notifier: Degradation channel. If None, uses the shared notifier.
            timeout: Per-attempt deadline in seconds
            retries: Extra live attempts after the first one
            backoff: Delay in seconds before the first retry
            backoff_factor: Delay multiplier between retries
            sentinel_factory: Builds the value returned when mock fails too
            use_mocks: Skip the live path and serve mocks directly
            sleep: Async sleep used between retries
        """
        self.notifier = notifier or get_degradation_notifier()
        self.timeout = timeout
        self.retries = retries
        self.backoff = backoff
        self.backoff_factor = backoff_factor
        self.sentinel_factory = sentinel_factory
        self.use_mocks = use_mocks
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls, settings, notifier: DegradationNotifier | None = None
    ) -> "ResilientCallExecutor":
        """Build an executor from application settings."""
        return cls(
            notifier=notifier,
            timeout=settings.live_timeout_seconds,
            retries=settings.live_retries,
            backoff=settings.retry_backoff_seconds,
            backoff_factor=settings.retry_backoff_factor,
            use_mocks=settings.use_mocks,
        )

    async def execute(self, live: Operation[T], mock: Operation[T]) -> CallOutcome[T]:
        """Run ``live`` resiliently, falling back to ``mock``.

        Never raises for operation failures; task cancellation still
        propagates.
        """
        if self.use_mocks:
            return await self._run_mock(mock, reason=None)

        try:
            value = await with_retry(
                lambda: with_timeout(live(), self.timeout),
                retries=self.retries,
                backoff=self.backoff,
                factor=self.backoff_factor,
                sleep=self._sleep,
            )
            return CallOutcome(value=value, source=OutcomeSource.LIVE)
        except Exception as e:
            reason = describe_error(e)
            logger.warning(
                "Live call failed, falling back to mock",
                error=reason,
                error_type=type(e).__name__,
            )
            self.notifier.emit(reason)
            return await self._run_mock(mock, reason=reason)

    async def call(self, live: Operation[T], mock: Operation[T]) -> T:
        """Same as execute() but returns only the value."""
        outcome = await self.execute(live, mock)
        return outcome.value

    async def _run_mock(self, mock: Operation[T], reason: str | None) -> CallOutcome[T]:
        try:
            value = await mock()
            return CallOutcome(value=value, source=OutcomeSource.MOCK, reason=reason)
        except Exception as e:
            logger.error(
                "Mock call failed too, returning sentinel",
                error=str(e),
                error_type=type(e).__name__,
            )
            return CallOutcome(
                value=self.sentinel_factory(),
                source=OutcomeSource.SENTINEL,
                reason=reason or describe_error(e),
            )
