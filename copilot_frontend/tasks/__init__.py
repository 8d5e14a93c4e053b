"""Background task tracking: models, registry and the task stream client."""

from .models import StreamEventKind, Task, TaskEvent, TaskStatus
from .registry import RegistryChange, TaskRegistry, is_active, is_terminal
from .stream import ServerSentEvent, SSEDecoder, TaskStreamClient, decode_status_payload

__all__ = [
    "StreamEventKind",
    "Task",
    "TaskEvent",
    "TaskStatus",
    "RegistryChange",
    "TaskRegistry",
    "is_active",
    "is_terminal",
    "ServerSentEvent",
    "SSEDecoder",
    "TaskStreamClient",
    "decode_status_payload",
]
