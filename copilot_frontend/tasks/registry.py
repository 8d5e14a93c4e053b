"""
In-memory registry of backend tasks fed by the task stream.

One registry belongs to one stream connection: the stream owner creates it
when the connection opens and clears it on teardown. Records only move
forward through queued -> running -> done|failed; anything else is absorbed.
"""

import asyncio
import time
from collections.abc import Callable
from enum import Enum

import structlog

from copilot_frontend.tasks.models import Task, TaskEvent, TaskStatus

logger = structlog.get_logger(__name__)

TaskPredicate = Callable[[Task], bool]


class RegistryChange(str, Enum):
    """Kinds of mutation reported to registry listeners."""

    APPLIED = "applied"
    EVICTED = "evicted"


RegistryListener = Callable[[RegistryChange, Task], None]


def is_active(task: Task) -> bool:
    """Predicate for tasks still queued or running."""
    return task.is_active


def is_terminal(task: Task) -> bool:
    """Predicate for done or failed tasks."""
    return task.is_terminal


class TaskRegistry:
    """
    Keyed store of Task snapshots with per-task state machine and eviction.

    Terminal tasks stay readable for ``grace_seconds`` after the terminal
    event was applied. The deadline is recorded once, at that moment, and a
    timer is armed on the running event loop; reads also drop records whose
    deadline has passed.

    Example:
        >>> registry = TaskRegistry(tenant="acme", grace_seconds=5.0)
        >>> registry.apply(TaskEvent.from_payload(
        ...     {"id": "t1", "status": "running", "progress": 40, "tenant": "acme"}
        ... ))
        True
        >>> [t.id for t in registry.list(is_active)]
        ['t1']
    """

    def __init__(
        self,
        tenant: str | None = None,
        grace_seconds: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the registry.

        Args:
            tenant: Only events for this tenant are applied. None accepts all.
            grace_seconds: How long terminal tasks stay visible
            clock: Monotonic clock used for eviction deadlines
        """
        self.tenant = tenant
        self.grace_seconds = grace_seconds
        self._clock = clock
        self._tasks: dict[str, Task] = {}
        self._evict_at: dict[str, float] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._listeners: list[RegistryListener] = []

    def __len__(self) -> int:
        self._purge_expired()
        return len(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        return isinstance(task_id, str) and self.get(task_id) is not None

    @property
    def pending_evictions(self) -> int:
        """Number of terminal tasks waiting for their grace window to end."""
        return len(self._evict_at)

    def eviction_deadline(self, task_id: str) -> float | None:
        """Clock value at which a terminal task will be evicted."""
        return self._evict_at.get(task_id)

    def apply(self, event: TaskEvent | Task) -> bool:
        """
        Upsert a task from a stream event.

        Args:
            event: Decoded status event (or a bare Task snapshot)

        Returns:
            True if the registry changed, False if the event was absorbed
        """
        if isinstance(event, Task):
            event = TaskEvent(task=event)
        incoming = event.task

        if self.tenant is not None and incoming.tenant != self.tenant:
            logger.warning(
                "Dropping task event for foreign tenant",
                task_id=incoming.id,
                event_tenant=incoming.tenant,
                registry_tenant=self.tenant,
            )
            return False

        self._purge_expired()
        current = self._tasks.get(incoming.id)

        if current is None:
            updated = incoming.model_copy(update={"updated_at": event.received_at})
        else:
            updated = self._advance(current, incoming, event)
            if updated is None:
                return False

        self._tasks[incoming.id] = updated

        logger.debug(
            "Task event applied",
            task_id=updated.id,
            status=updated.status.value,
            progress=updated.progress,
        )

        if updated.is_terminal:
            self._schedule_eviction(updated.id)

        self._notify(RegistryChange.APPLIED, updated)
        return True

    def get(self, task_id: str) -> Task | None:
        """Current snapshot of a task, or None if unknown or evicted."""
        self._purge_expired()
        return self._tasks.get(task_id)

    def list(self, predicate: TaskPredicate | None = None) -> list[Task]:
        """
        Snapshot of non-evicted tasks in insertion order.

        Args:
            predicate: Optional filter, e.g. ``is_active``
        """
        self._purge_expired()
        tasks = list(self._tasks.values())
        if predicate is not None:
            tasks = [t for t in tasks if predicate(t)]
        return tasks

    def evict(self, task_id: str) -> bool:
        """
        Remove a task unconditionally.

        Returns:
            True if a record was removed, False if it was already gone
        """
        timer = self._timers.pop(task_id, None)
        if timer is not None:
            timer.cancel()
        self._evict_at.pop(task_id, None)

        task = self._tasks.pop(task_id, None)
        if task is None:
            return False

        logger.debug("Task evicted", task_id=task_id, status=task.status.value)
        self._notify(RegistryChange.EVICTED, task)
        return True

    def clear(self) -> None:
        """Drop every record and pending timer (stream teardown)."""
        for timer in self._timers.values():
            timer.cancel()
        dropped = len(self._tasks)
        self._timers.clear()
        self._evict_at.clear()
        self._tasks.clear()
        if dropped:
            logger.info("Task registry cleared", dropped_tasks=dropped)

    def add_listener(self, listener: RegistryListener) -> Callable[[], None]:
        """Subscribe to registry mutations; returns a detach handle."""
        self._listeners.append(listener)

        def detach() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return detach

    def _advance(self, current: Task, incoming: Task, event: TaskEvent) -> Task | None:
        """Merge an event into an existing record, or None if it must be dropped."""
        if current.is_terminal:
            logger.debug(
                "Ignoring event for terminal task",
                task_id=current.id,
                current_status=current.status.value,
                event_status=incoming.status.value,
            )
            return None

        if incoming.status.rank < current.status.rank:
            logger.debug(
                "Ignoring backward status transition",
                task_id=current.id,
                current_status=current.status.value,
                event_status=incoming.status.value,
            )
            return None

        progress = incoming.progress
        if current.status is TaskStatus.RUNNING:
            if incoming.status is TaskStatus.RUNNING and incoming.progress < current.progress:
                logger.debug(
                    "Ignoring progress regression",
                    task_id=current.id,
                    current_progress=current.progress,
                    event_progress=incoming.progress,
                )
                return None
            progress = max(progress, current.progress)

        return incoming.model_copy(
            update={"progress": progress, "updated_at": event.received_at}
        )

    def _schedule_eviction(self, task_id: str) -> None:
        if task_id in self._evict_at:
            return

        self._evict_at[task_id] = self._clock() + self.grace_seconds

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, eviction deferred to next read")
            return

        self._timers[task_id] = loop.call_later(
            self.grace_seconds, self._on_grace_elapsed, task_id
        )

    def _on_grace_elapsed(self, task_id: str) -> None:
        self._timers.pop(task_id, None)
        self.evict(task_id)

    def _purge_expired(self) -> None:
        if not self._evict_at:
            return
        now = self._clock()
        expired = [tid for tid, deadline in self._evict_at.items() if deadline <= now]
        for task_id in expired:
            self.evict(task_id)

    def _notify(self, change: RegistryChange, task: Task) -> None:
        for listener in tuple(self._listeners):
            try:
                listener(change, task)
            except Exception as e:
                logger.error(
                    "Registry listener failed",
                    change=change.value,
                    task_id=task.id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
