"""Services package for UI-facing collaborators of the core."""

from .dashboard_service import DashboardService, normalize_dashboard
from .fallback_banner import FallbackBanner
from .task_tray import TaskTray

__all__ = [
    "DashboardService",
    "normalize_dashboard",
    "FallbackBanner",
    "TaskTray",
]
