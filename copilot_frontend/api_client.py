"""
API client for communicating with the copilot backend.

Handles HTTP communication and error translation, and exposes async
helpers that keep blocking I/O off the event loop so they can be used as
live operations by the resilient call executor.
"""

import asyncio
from typing import Any

import requests
import structlog

from copilot_frontend.config import settings
from copilot_frontend.context import CallContext
from copilot_frontend.resilience.errors import DecodeError, TransportError

logger = structlog.get_logger(__name__)


class BackendAPIClient:
    """Simple HTTP client for the copilot backend."""

    def __init__(
        self,
        base_url: str | None = None,
        context: CallContext | None = None,
        timeout: float | None = None,
    ):
        """Initialize the API client.

        Args:
            base_url: Backend URL. If None, uses settings.backend_url.
            context: Call context sent as headers. If None, built from settings.
            timeout: Per-request timeout in seconds
        """
        self.base_url = (base_url or settings.backend_url).rstrip("/")
        self.context = context or settings.default_context()
        self.timeout = timeout or settings.request_timeout_seconds
        self.session = requests.Session()

        logger.info(
            "API client initialized",
            base_url=self.base_url,
            tenant=self.context.tenant,
            role=self.context.role,
            preview=self.context.preview,
        )

    def with_context(self, context: CallContext) -> "BackendAPIClient":
        """Client for the same backend under another call context.

        The HTTP session (and its connection pool) is shared; context headers
        are sent per request.
        """
        client = BackendAPIClient(self.base_url, context=context, timeout=self.timeout)
        client.session = self.session
        return client

    def request_json(self, method: str, path: str, **kwargs) -> Any:
        """Blocking request returning decoded JSON.

        Args:
            method: HTTP method (GET, POST, etc.)
            path: Path below the backend base URL, e.g. "/api/dashboard"
            **kwargs: Additional arguments for requests

        Raises:
            TransportError: Network failure or non-2xx status
            DecodeError: Body is not valid JSON
        """
        url = f"{self.base_url}{path}"
        headers = {
            "Content-Type": "application/json",
            **self.context.headers(),
            **kwargs.pop("headers", {}),
        }

        try:
            response = self.session.request(
                method, url, headers=headers, timeout=self.timeout, **kwargs
            )
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            status_code = e.response.status_code if e.response is not None else None
            logger.warning(
                "API request failed", method=method, path=path, status_code=status_code
            )
            raise TransportError(f"HTTP_{status_code}", status_code=status_code) from e
        except requests.exceptions.RequestException as e:
            logger.warning("API request failed", method=method, path=path, error=str(e))
            raise TransportError(str(e)) from e

        try:
            return response.json()
        except ValueError as e:
            logger.warning("API response is not JSON", method=method, path=path)
            raise DecodeError("BAD_JSON") from e

    async def get_json(self, path: str, **kwargs) -> Any:
        """GET ``path`` without blocking the event loop."""
        return await asyncio.to_thread(self.request_json, "GET", path, **kwargs)

    async def post_json(self, path: str, body: Any, **kwargs) -> Any:
        """POST a JSON body to ``path`` without blocking the event loop."""
        return await asyncio.to_thread(
            self.request_json, "POST", path, json=body, **kwargs
        )

    def health_check(self) -> tuple[bool, dict[str, Any]]:
        """Check if backend is healthy.

        Returns:
            (is_healthy, health_data)
        """
        try:
            response = self.session.get(
                f"{self.base_url}/api/health",
                headers=self.context.headers(),
                timeout=5,
            )
            response.raise_for_status()
            return True, response.json()
        except Exception as e:
            logger.warning("Backend health check failed", error=str(e))
            return False, {"error": str(e)}

    async def get_task_audit(self, task_id: str) -> dict[str, Any]:
        """Fetch the audit trail of a finished task.

        Args:
            task_id: Task ID as reported by the task stream

        Returns:
            Audit payload, typically with a "steps" list
        """
        logger.info("Fetching task audit", task_id=task_id)
        return await self.get_json(f"/api/actions/{task_id}/audit")
