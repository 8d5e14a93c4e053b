"""Resilient call layer: timeout, retry, live-or-mock fallback and notices."""

from .errors import (
    CallTimeoutError,
    CopilotError,
    DecodeError,
    RetryExhausted,
    StreamConnectionError,
    TransportError,
)
from .executor import CallOutcome, OutcomeSource, ResilientCallExecutor
from .notifier import (
    DegradationEvent,
    DegradationNotifier,
    get_degradation_notifier,
    reset_degradation_notifier,
)
from .retry import with_retry
from .timeout import with_timeout

__all__ = [
    "CallTimeoutError",
    "CopilotError",
    "DecodeError",
    "RetryExhausted",
    "StreamConnectionError",
    "TransportError",
    "CallOutcome",
    "OutcomeSource",
    "ResilientCallExecutor",
    "DegradationEvent",
    "DegradationNotifier",
    "get_degradation_notifier",
    "reset_degradation_notifier",
    "with_retry",
    "with_timeout",
]
