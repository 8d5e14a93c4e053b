"""Shared test configuration and fixtures for all tests."""

import asyncio
import os
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any
from unittest.mock import AsyncMock, Mock

import pytest
import requests

# Mock environment variables for testing
os.environ["COPILOT_BACKEND_URL"] = "http://localhost:8000"
os.environ["COPILOT_TENANT"] = "acme"

from copilot_frontend.context import CallContext  # noqa: E402
from copilot_frontend.resilience.notifier import DegradationNotifier  # noqa: E402
from copilot_frontend.tasks.models import TaskEvent  # noqa: E402
from copilot_frontend.tasks.registry import TaskRegistry  # noqa: E402


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def status_event(task_id: str = "t1", status: str = "queued", **fields: Any) -> TaskEvent:
    """Build a decoded status event for tenant "acme"."""
    payload = {"id": task_id, "status": status, "label": "Import leads", "tenant": "acme"}
    payload.update(fields)
    return TaskEvent.from_payload(payload)


@pytest.fixture
def call_context() -> CallContext:
    return CallContext(tenant="acme", role="admin", preview=True)


@pytest.fixture
def notifier() -> DegradationNotifier:
    return DegradationNotifier()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def registry(clock: FakeClock) -> TaskRegistry:
    """Registry for tenant "acme" driven by the fake clock."""
    return TaskRegistry(tenant="acme", grace_seconds=5.0, clock=clock)


@pytest.fixture
def no_sleep() -> AsyncMock:
    """Async sleep replacement recording requested delays."""
    return AsyncMock(return_value=None)


@pytest.fixture
def sse_lines() -> list[str]:
    """A short task stream: t1 runs to completion, t2 stays queued."""
    return [
        ": connected",
        "",
        "event: heartbeat",
        'data: {"ts": 1}',
        "",
        "event: status",
        'data: {"id": "t1", "status": "queued", "progress": 0, "label": "Sync CRM", "tenant": "acme"}',
        "",
        "event: status",
        'data: {"id": "t1", "status": "running", "progress": 40, "label": "Sync CRM", "tenant": "acme"}',
        "",
        "event: status",
        'data: {"id": "t2", "status": "queued", "label": "Send campaign", "tenant": "acme", "type": "campaign"}',
        "",
        "event: status",
        "data: {not json",
        "",
        "event: status",
        'data: {"id": "t1", "status": "done", "progress": 100, "label": "Sync CRM", "tenant": "acme", "result": {"ok": true}}',
        "",
    ]


def make_stream_session(lines, status_code: int = 200) -> Mock:
    """Mock requests session whose GET returns a streaming response."""
    response = Mock()
    response.status_code = status_code
    response.encoding = "utf-8"
    response.raise_for_status.return_value = None
    response.iter_lines.return_value = iter(lines)

    session = Mock(spec=requests.Session)
    session.get.return_value = response
    return session


class _IdleStreamHandler(BaseHTTPRequestHandler):
    """Sends one heartbeat frame, then keeps the response open without data."""

    protocol_version = "HTTP/1.1"

    def do_GET(self):
        self.server.tenants.append(self.headers.get("X-Tenant"))
        self.send_response(200)
        self.send_header("Content-Type", "text/event-stream")
        self.send_header("Transfer-Encoding", "chunked")
        self.end_headers()
        frame = b'event: heartbeat\ndata: {"ts": 1}\n\n'
        self.wfile.write(b"%x\r\n%s\r\n" % (len(frame), frame))
        self.server.release.wait(10)

    def log_message(self, format, *args):
        pass


class _IdleStreamServer(ThreadingHTTPServer):
    daemon_threads = True


@pytest.fixture
def idle_stream_server():
    """Local task stream endpoint that goes quiet after its first heartbeat."""
    server = _IdleStreamServer(("127.0.0.1", 0), _IdleStreamHandler)
    server.release = threading.Event()
    server.tenants = []
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()

    host, port = server.server_address[:2]
    server.base_url = f"http://{host}:{port}"
    yield server

    server.release.set()
    server.shutdown()
    server.server_close()
    thread.join(timeout=5)


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll ``predicate`` on the running loop until it holds or time runs out."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)
