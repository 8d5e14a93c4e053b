"""
Server-Sent Events consumer for the backend task stream.

The client holds one long-lived HTTP connection per (backend URL, tenant)
pair, decodes `status` and `heartbeat` events and applies task snapshots to
a TaskRegistry. It never reconnects on its own: the owner of the connection
decides what to do when `run()` returns or raises.
"""

import asyncio
import json
import socket
import threading
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import requests
import structlog
from pydantic import ValidationError

from copilot_frontend.context import CallContext
from copilot_frontend.resilience.errors import DecodeError, StreamConnectionError
from copilot_frontend.tasks.models import StreamEventKind, TaskEvent
from copilot_frontend.tasks.registry import TaskRegistry

logger = structlog.get_logger(__name__)

STREAM_ENDPOINT = "/api/tasks/stream"


@dataclass(frozen=True)
class ServerSentEvent:
    """One dispatched SSE frame."""

    event: str
    data: str
    id: str | None = None


class SSEDecoder:
    """Line-by-line decoder for ``text/event-stream`` bodies."""

    def __init__(self):
        self._event = ""
        self._data: list[str] = []
        self._last_id: str | None = None

    def feed(self, line: str) -> ServerSentEvent | None:
        """Consume one line; returns an event when a blank line closes a frame."""
        if line == "":
            return self._dispatch()

        if line.startswith(":"):
            return None

        name, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if name == "event":
            self._event = value
        elif name == "data":
            self._data.append(value)
        elif name == "id" and "\0" not in value:
            self._last_id = value
        # "retry" and unknown fields are ignored; reconnection is not ours

        return None

    def _dispatch(self) -> ServerSentEvent | None:
        if not self._data:
            self._event = ""
            return None

        event = ServerSentEvent(
            event=self._event or "message",
            data="\n".join(self._data),
            id=self._last_id,
        )
        self._event = ""
        self._data = []
        return event


def decode_status_payload(data: str, received_at: datetime | None = None) -> TaskEvent:
    """Decode the JSON body of a `status` event.

    Raises:
        DecodeError: If the body is not JSON or not a valid task snapshot
    """
    try:
        payload = json.loads(data)
    except json.JSONDecodeError as e:
        raise DecodeError(f"Invalid JSON in status event: {e}") from e

    if not isinstance(payload, dict):
        raise DecodeError(
            f"Status event body must be an object, got {type(payload).__name__}"
        )

    try:
        return TaskEvent.from_payload(payload, received_at=received_at)
    except ValidationError as e:
        raise DecodeError(f"Invalid task snapshot: {e.error_count()} error(s)") from e


class TaskStreamClient:
    """Consumes the task stream of one tenant and feeds a TaskRegistry."""

    def __init__(
        self,
        base_url: str,
        context: CallContext,
        registry: TaskRegistry,
        session: requests.Session | None = None,
        connect_timeout: float = 10.0,
        on_event: Callable[[ServerSentEvent], None] | None = None,
    ):
        """Initialize the stream client.

        Args:
            base_url: Backend base URL
            context: Call context; its tenant scopes the connection
            registry: Registry receiving every valid status snapshot
            session: HTTP session. If None, a new one is created.
            connect_timeout: Seconds allowed to open the connection
            on_event: Optional hook called with every dispatched frame
        """
        self.base_url = base_url.rstrip("/")
        self.context = context
        self.registry = registry
        self.session = session or requests.Session()
        self.connect_timeout = connect_timeout
        self.on_event = on_event

        self.last_heartbeat: datetime | None = None
        self.last_heartbeat_data: Any = None
        self.events_applied = 0
        self.events_dropped = 0

        self._decoder = SSEDecoder()
        self._response: requests.Response | None = None
        self._closed = False
        self._reader_finished = threading.Event()

    @property
    def key(self) -> tuple[str, str]:
        """Connection identity: one stream per (backend URL, tenant)."""
        return self.base_url, self.context.tenant

    @property
    def url(self) -> str:
        return f"{self.base_url}{STREAM_ENDPOINT}"

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def reader_finished(self) -> bool:
        """True once the reader thread has let go of the connection."""
        return self._reader_finished.is_set()

    async def run(self) -> None:
        """Open the stream and consume it until it ends, drops or is closed.

        Lines are read on a worker thread, which also owns the response and
        releases it. Each line is handed back to the event loop, so the
        registry is only touched from the loop thread.

        Raises:
            StreamConnectionError: If the connection cannot be opened at all
        """
        if self._closed:
            raise StreamConnectionError("Task stream client already closed")

        loop = asyncio.get_running_loop()
        response = await asyncio.to_thread(self._open)
        if self._closed:
            response.close()
            self._reader_finished.set()
            return

        self._response = response
        logger.info("Task stream connected", url=self.url, tenant=self.context.tenant)
        await asyncio.to_thread(self._consume, response, loop)

    def close(self) -> None:
        """Stop consuming and release the connection. Safe to call twice.

        Never blocks: a reader thread parked on the socket is woken by
        shutting the socket down and closes the response itself.
        """
        if self._closed:
            return
        self._closed = True
        self._interrupt_reader()
        logger.info("Task stream closed", tenant=self.context.tenant)

    def handle_line(self, line: str | bytes) -> None:
        """Feed one raw body line through the SSE decoder."""
        if isinstance(line, bytes):
            line = line.decode("utf-8", errors="replace")
        event = self._decoder.feed(line.rstrip("\r"))
        if event is not None:
            self.dispatch(event)

    def dispatch(self, event: ServerSentEvent) -> None:
        """Route a decoded frame. Never raises for bad payloads."""
        if self.on_event is not None:
            try:
                self.on_event(event)
            except Exception as e:
                logger.error("Task stream event hook failed", error=str(e))

        if event.event == StreamEventKind.STATUS.value:
            self._handle_status(event)
        elif event.event == StreamEventKind.HEARTBEAT.value:
            self._handle_heartbeat(event)
        else:
            logger.debug("Ignoring unknown task stream event", event_name=event.event)

    def _handle_status(self, event: ServerSentEvent) -> None:
        try:
            task_event = decode_status_payload(event.data)
        except DecodeError as e:
            self.events_dropped += 1
            logger.warning(
                "Dropping malformed status event", error=str(e), event_id=event.id
            )
            return

        if self.registry.apply(task_event):
            self.events_applied += 1
    def _handle_heartbeat(self, event: ServerSentEvent) -> None:
        self.last_heartbeat = datetime.now(UTC)
        try:
            self.last_heartbeat_data = json.loads(event.data)
        except json.JSONDecodeError:
            self.last_heartbeat_data = None
            logger.debug("Heartbeat with non-JSON body", data=event.data[:64])

    def _open(self) -> requests.Response:
        headers = {**self.context.headers(), "Accept": "text/event-stream"}
        try:
            response = self.session.get(
                self.url,
                headers=headers,
                stream=True,
                timeout=(self.connect_timeout, None),
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            status_code = getattr(getattr(e, "response", None), "status_code", None)
            logger.error(
                "Task stream connection failed",
                url=self.url,
                tenant=self.context.tenant,
                error=str(e),
            )
            raise StreamConnectionError(
                f"Failed to open task stream: {e}", status_code=status_code
            ) from e

        if self._closed:
            # Closed while connecting: nobody will read this response
            response.close()
        return response

    def _consume(self, response: requests.Response, loop: asyncio.AbstractEventLoop) -> None:
        """Reader thread body: forward lines to the loop, then release the response."""
        try:
            for line in self._iter_lines(response):
                if self._closed:
                    break
                loop.call_soon_threadsafe(self.handle_line, line)
            else:
                logger.info("Task stream ended by server", tenant=self.context.tenant)
        except Exception as e:
            if self._closed:
                logger.debug("Task stream stopped after close", error=str(e))
            else:
                logger.warning(
                    "Task stream connection lost",
                    tenant=self.context.tenant,
                    error=str(e),
                    error_type=type(e).__name__,
                )
        finally:
            self._response = None
            response.close()
            self._reader_finished.set()

    def _interrupt_reader(self) -> None:
        response = self._response
        if response is None:
            return
        sock = _stream_socket(response)
        if sock is None:
            logger.debug("No socket to interrupt; reader stops on its next line")
            return
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            # Already disconnected
            logger.debug("Task stream socket shutdown failed", error=str(e))

    @staticmethod
    def _iter_lines(response: requests.Response) -> Iterator[Any]:
        if response.encoding is None:
            response.encoding = "utf-8"
        return iter(response.iter_lines(chunk_size=None, decode_unicode=True))


def _stream_socket(response: requests.Response) -> socket.socket | None:
    """Socket under a streaming response, if urllib3 still exposes it."""
    raw = getattr(response, "raw", None)
    sock = getattr(getattr(raw, "connection", None), "sock", None)
    if sock is not None:
        return sock
    # Connection already detached ("Connection: close"): reach the socket
    # through the http.client response that is still being read
    fp = getattr(getattr(raw, "_fp", None), "fp", None)
    return getattr(getattr(fp, "raw", None), "_sock", None)
