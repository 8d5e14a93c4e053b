"""Owner of the task stream connection and its registry."""

import asyncio
import contextlib
import functools
from collections.abc import Callable
from typing import Any

import structlog

from copilot_frontend.api_client import BackendAPIClient
from copilot_frontend.context import CallContext
from copilot_frontend.tasks.models import Task
from copilot_frontend.tasks.registry import RegistryChange, TaskRegistry, is_active
from copilot_frontend.tasks.stream import TaskStreamClient

logger = structlog.get_logger(__name__)


class TaskTray:
    """
    Keeps one task stream open for the current (backend, tenant) pair.

    The registry lives exactly as long as the connection: start() creates a
    fresh one, stop() clears it. Reconnecting is left to whoever calls
    start() again.

    Example:
        >>> tray = TaskTray(BackendAPIClient())
        >>> await tray.start()
        >>> [task.label for task in tray.active_tasks()]
        >>> await tray.stop()
    """

    def __init__(
        self,
        client: BackendAPIClient,
        grace_seconds: float = 5.0,
        connect_timeout: float = 10.0,
        on_terminal: Callable[[Task], None] | None = None,
    ):
        """
        Initialize the tray.

        Args:
            client: API client whose base URL and context scope the stream
            grace_seconds: How long finished tasks stay listed
            connect_timeout: Seconds allowed to open the stream
            on_terminal: Called once per task reaching done/failed, e.g. to
                prefetch its audit
        """
        self.client = client
        self.grace_seconds = grace_seconds
        self.connect_timeout = connect_timeout
        self.on_terminal = on_terminal

        self.registry: TaskRegistry | None = None
        self.stream: TaskStreamClient | None = None
        self.last_error: BaseException | None = None
        self._runner: asyncio.Task | None = None

    @property
    def context(self) -> CallContext:
        return self.client.context

    @property
    def running(self) -> bool:
        return self._runner is not None and not self._runner.done()

    async def start(self) -> None:
        """Open the stream for the current context if not already open."""
        if self.running:
            return

        self.last_error = None
        self.registry = TaskRegistry(
            tenant=self.context.tenant, grace_seconds=self.grace_seconds
        )
        self.registry.add_listener(self._on_registry_change)
        self.stream = TaskStreamClient(
            self.client.base_url,
            self.context,
            self.registry,
            session=self.client.session,
            connect_timeout=self.connect_timeout,
        )
        self._runner = asyncio.create_task(
            self.stream.run(), name=f"task-stream:{self.context.tenant}"
        )
        self._runner.add_done_callback(
            functools.partial(self._on_stream_finished, self.stream.key)
        )

        logger.info(
            "Task tray started", base_url=self.client.base_url, tenant=self.context.tenant
        )

    async def stop(self) -> None:
        """Close the stream and drop every tracked task."""
        if self.stream is not None:
            self.stream.close()

        runner, self._runner = self._runner, None
        if runner is not None and not runner.done():
            runner.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await runner

        if self.registry is not None:
            self.registry.clear()
        self.registry = None
        self.stream = None
        logger.info("Task tray stopped", tenant=self.context.tenant)

    async def wait_finished(self) -> None:
        """Wait until the stream ends on its own (server close, drop or open failure)."""
        runner = self._runner
        if runner is not None:
            await asyncio.wait({runner})

    async def switch_context(self, context: CallContext) -> None:
        """Rebind to another call context, reconnecting if the stream is open."""
        if context == self.context:
            return

        was_running = self.running
        if was_running:
            await self.stop()

        self.client = self.client.with_context(context)
        logger.info("Task tray context switched", tenant=context.tenant)

        if was_running:
            await self.start()

    def active_tasks(self) -> list[Task]:
        """Queued and running tasks in arrival order."""
        if self.registry is None:
            return []
        return self.registry.list(is_active)

    def tasks(self) -> list[Task]:
        """Every task still visible, terminal ones included."""
        if self.registry is None:
            return []
        return self.registry.list()

    async def load_audit(self, task_id: str) -> dict[str, Any]:
        """Fetch the audit trail of a finished task.

        Raises:
            ValueError: If the task is known and still queued or running
        """
        task = self.registry.get(task_id) if self.registry is not None else None
        if task is not None and not task.is_terminal:
            raise ValueError(f"Task {task_id} has not finished yet")
        return await self.client.get_task_audit(task_id)

    def _on_registry_change(self, change: RegistryChange, task: Task) -> None:
        if change is RegistryChange.APPLIED and task.is_terminal and self.on_terminal:
            self.on_terminal(task)

    def _on_stream_finished(self, key: tuple[str, str], runner: asyncio.Task) -> None:
        if runner.cancelled():
            return
        base_url, tenant = key
        error = runner.exception()
        if error is not None:
            if runner is self._runner:
                self.last_error = error
            logger.error(
                "Task stream unavailable",
                base_url=base_url,
                tenant=tenant,
                error=str(error),
                error_type=type(error).__name__,
            )
        else:
            logger.info("Task stream finished", base_url=base_url, tenant=tenant)
