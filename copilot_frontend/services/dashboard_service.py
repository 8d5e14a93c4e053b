"""Dashboard KPIs fetched live with a static fallback."""

from typing import Any
from urllib.parse import quote

import structlog

from copilot_frontend.api_client import BackendAPIClient
from copilot_frontend.resilience.executor import CallOutcome, ResilientCallExecutor

logger = structlog.get_logger(__name__)

KPI_FIELDS = ("calls_attempted", "calls_connected", "email_opens", "email_clicks")


def _as_number(value: Any) -> float | int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int | float):
        return value
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    return int(number) if number.is_integer() else number


def normalize_dashboard(data: Any, range_: str) -> dict[str, Any]:
    """Coerce any payload into the dashboard shape the UI renders.

    Missing or non-numeric counters become 0, a missing timeline becomes [].
    """
    data = data if isinstance(data, dict) else {}
    kpis = data.get("kpis") if isinstance(data.get("kpis"), dict) else {}
    delta = kpis.get("delta") if isinstance(kpis.get("delta"), dict) else {}
    timeline = data.get("timeline")

    return {
        "ok": True,
        "range": data.get("range") or range_,
        "kpis": {
            **{name: _as_number(kpis.get(name, 0)) for name in KPI_FIELDS},
            "delta": {name: _as_number(delta.get(name, 0)) for name in KPI_FIELDS},
        },
        "timeline": timeline if isinstance(timeline, list) else [],
    }


def mock_dashboard(range_: str) -> dict[str, Any]:
    """Empty dashboard used when the live endpoint is unavailable."""
    zeros = dict.fromkeys(KPI_FIELDS, 0)
    return {
        "ok": True,
        "range": range_,
        "kpis": {**zeros, "delta": dict(zeros)},
        "timeline": [],
    }


class DashboardService:
    """Loads dashboard KPIs through the resilient call executor."""

    def __init__(self, client: BackendAPIClient, executor: ResilientCallExecutor):
        self.client = client
        self.executor = executor

    async def fetch(self, range_: str = "7d") -> CallOutcome[dict[str, Any]]:
        """Fetch KPIs for ``range_``; the outcome tells live from fallback data."""

        async def live() -> Any:
            return await self.client.get_json(f"/api/dashboard?range={quote(range_)}")

        async def mock() -> dict[str, Any]:
            return mock_dashboard(range_)

        outcome = await self.executor.execute(live, mock)
        if outcome.degraded:
            logger.info(
                "Dashboard served from fallback",
                range=range_,
                source=outcome.source.value,
            )
        return CallOutcome(
            value=normalize_dashboard(outcome.value, range_),
            source=outcome.source,
            reason=outcome.reason,
        )

    async def get_dashboard(self, range_: str = "7d") -> dict[str, Any]:
        """Normalized dashboard payload; never raises."""
        outcome = await self.fetch(range_)
        return outcome.value
