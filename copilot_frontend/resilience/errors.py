"""Error taxonomy for backend calls and the task stream.

These errors stay inside the resilient call layer: the executor turns every
one of them into a degradation notice plus fallback data.
"""


class CopilotError(Exception):
    """Base class for frontend core errors."""


class CallTimeoutError(CopilotError, TimeoutError):
    """Deadline elapsed before the operation settled."""

    def __init__(self, seconds: float):
        self.seconds = seconds
        super().__init__(f"Operation timed out after {seconds:g}s")


class TransportError(CopilotError):
    """Network or HTTP failure talking to the backend."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class DecodeError(CopilotError):
    """Response or event body could not be decoded."""


class RetryExhausted(CopilotError):
    """Retry budget used up; wraps the last underlying error."""

    def __init__(self, last_error: BaseException, attempts: int):
        self.last_error = last_error
        self.attempts = attempts
        super().__init__(
            f"Gave up after {attempts} attempt(s): {describe_error(last_error)}"
        )


class StreamConnectionError(TransportError):
    """The task stream could not be opened at all."""


def describe_error(error: BaseException) -> str:
    """Human-readable reason for banners and logs."""
    if isinstance(error, RetryExhausted):
        return describe_error(error.last_error)
    message = str(error)
    return message or type(error).__name__
