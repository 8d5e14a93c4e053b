"""Broadcast channel for "serving fallback data" notices."""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class DegradationEvent:
    """A live call fell back to mock data."""

    reason: str
    occurred_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, str]:
        return {"reason": self.reason}


Observer = Callable[[DegradationEvent], None]


class DegradationNotifier:
    """
    Explicit observer list for degradation events.

    Emission is fire-and-forget: observers attached later never see past
    events, and a failing observer is logged without affecting the others.

    Example:
        >>> notifier = DegradationNotifier()
        >>> detach = notifier.subscribe(lambda event: print(event.reason))
        >>> notifier.emit("Backend unavailable")
        Backend unavailable
        >>> detach()
    """

    def __init__(self):
        self._observers: list[Observer] = []

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Attach an observer.

        Returns:
            Detach handle; calling it more than once is harmless
        """
        self._observers.append(observer)

        def detach() -> None:
            self.unsubscribe(observer)

        return detach

    def unsubscribe(self, observer: Observer) -> None:
        """Detach an observer if attached."""
        try:
            self._observers.remove(observer)
        except ValueError:
            pass

    def emit(self, reason: str) -> DegradationEvent:
        """Broadcast a degradation notice to every attached observer."""
        event = DegradationEvent(reason=reason)
        # Snapshot so observers may attach/detach while we deliver
        observers = tuple(self._observers)

        logger.warning(
            "Live call degraded to fallback", reason=reason, observers=len(observers)
        )

        for observer in observers:
            try:
                observer(event)
            except Exception as e:
                logger.error(
                    "Degradation observer failed",
                    error=str(e),
                    error_type=type(e).__name__,
                )

        return event


_default_notifier: DegradationNotifier | None = None


def get_degradation_notifier() -> DegradationNotifier:
    """Shared notifier for UI collaborators that have no explicit instance."""
    global _default_notifier
    if _default_notifier is None:
        _default_notifier = DegradationNotifier()
    return _default_notifier


def reset_degradation_notifier() -> None:
    """Drop the shared notifier (for testing)."""
    global _default_notifier
    _default_notifier = None
