"""Follow the task stream of the configured tenant from the command line.

Usage:
    python -m copilot_frontend
    COPILOT_TENANT=globex COPILOT_LOG_LEVEL=DEBUG copilot-tasks
"""

import asyncio

import structlog

from copilot_frontend.api_client import BackendAPIClient
from copilot_frontend.config import configure_structlog, settings
from copilot_frontend.resilience.errors import StreamConnectionError
from copilot_frontend.services.task_tray import TaskTray
from copilot_frontend.tasks.models import Task

logger = structlog.get_logger(__name__)


def _report_finished(task: Task) -> None:
    logger.info(
        "Task finished",
        task_id=task.id,
        status=task.status.value,
        label=task.label,
        error=task.error,
    )


async def follow(tray: TaskTray) -> None:
    """Keep the tray open until its stream ends, then tear it down.

    Raises:
        StreamConnectionError: If the stream could not be opened
    """
    await tray.start()
    try:
        await tray.wait_finished()
    finally:
        await tray.stop()

    if tray.last_error is not None:
        raise tray.last_error


def main() -> int:
    """Entry point; returns the process exit code."""
    configure_structlog()

    client = BackendAPIClient()
    tray = TaskTray(
        client,
        grace_seconds=settings.task_grace_seconds,
        connect_timeout=settings.stream_connect_timeout_seconds,
        on_terminal=_report_finished,
    )
    logger.info(
        "Following task stream",
        base_url=client.base_url,
        tenant=client.context.tenant,
        role=client.context.role,
    )

    try:
        asyncio.run(follow(tray))
    except KeyboardInterrupt:
        logger.info("Task stream follower interrupted")
    except StreamConnectionError as e:
        logger.error("Task stream unavailable", error=str(e), status_code=e.status_code)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
