"""Settings + logging for the copilot frontend core."""

import logging
import sys
from pathlib import Path

import structlog
from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

from copilot_frontend.context import CallContext

# Load .env file from the project root
PROJECT_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=PROJECT_DIR / ".env")


class Settings(BaseSettings):
    """Backend address, call context defaults and resilience tuning."""

    model_config = SettingsConfigDict(env_prefix="COPILOT_")

    # Environment + logging
    log_level: str = "INFO"

    # Backend + call context
    backend_url: str = "http://localhost:8000"
    tenant: str = "default"
    role: str = "admin"
    preview: bool = True
    use_mocks: bool = False

    # Resilient calls
    live_timeout_seconds: float = 10.0
    live_retries: int = 1
    retry_backoff_seconds: float = 1.2
    retry_backoff_factor: float = 1.5
    request_timeout_seconds: float = 10.0

    # Task stream
    stream_connect_timeout_seconds: float = 10.0
    task_grace_seconds: float = 5.0

    # UI collaborators
    banner_auto_hide_seconds: float = 5.0

    def default_context(self) -> CallContext:
        """Call context built from the configured tenant, role and preview flag."""
        return CallContext(tenant=self.tenant, role=self.role, preview=self.preview)


settings = Settings()


def configure_structlog(log_level: str | None = None) -> None:
    """Route structlog through stdlib logging at the configured level.

    Args:
        log_level: Level name overriding ``settings.log_level``

    Raises:
        ValueError: If the level name is not a logging level
    """
    level_name = (log_level or settings.log_level).upper()
    level = getattr(logging, level_name, None)
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {level_name}")

    logging.basicConfig(level=level, stream=sys.stdout, format="%(message)s")
    # basicConfig is a no-op once the root logger has handlers
    logging.getLogger().setLevel(level)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="%H:%M:%S"),
            structlog.stdlib.add_log_level,
            structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
