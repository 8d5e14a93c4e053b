"""Banner state shown while the UI serves fallback data."""

import asyncio

import structlog

from copilot_frontend.resilience.notifier import DegradationEvent, DegradationNotifier

logger = structlog.get_logger(__name__)


class FallbackBanner:
    """Observer of degradation notices with auto-hide.

    Logic:
    1. Subscribe to the notifier on construction
    2. On each notice, show the reason and (re)arm the auto-hide timer
    3. hide() dismisses early, close() detaches from the notifier
    """

    MESSAGE_PREFIX = "Live API unavailable"

    def __init__(self, notifier: DegradationNotifier, auto_hide_seconds: float = 5.0):
        self.auto_hide_seconds = auto_hide_seconds
        self.visible = False
        self.message = ""
        self._timer: asyncio.TimerHandle | None = None
        self._detach = notifier.subscribe(self._on_degradation)

    def _on_degradation(self, event: DegradationEvent) -> None:
        self.message = f"{self.MESSAGE_PREFIX}: {event.reason or 'unknown error'}"
        self.visible = True
        self._arm_auto_hide()

    def _arm_auto_hide(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: banner stays until hide() is called
            return
        self._timer = loop.call_later(self.auto_hide_seconds, self.hide)

    def hide(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self.visible = False

    def close(self) -> None:
        """Detach from the notifier and drop any pending timer."""
        self.hide()
        self._detach()
        logger.debug("Fallback banner detached")
