"""Tests for the dashboard service, fallback banner and task tray."""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest
import requests
from structlog.testing import capture_logs

from conftest import make_stream_session, wait_until
from copilot_frontend.api_client import BackendAPIClient
from copilot_frontend.context import CallContext
from copilot_frontend.resilience.errors import StreamConnectionError, TransportError
from copilot_frontend.resilience.executor import OutcomeSource, ResilientCallExecutor
from copilot_frontend.services.dashboard_service import (
    DashboardService,
    mock_dashboard,
    normalize_dashboard,
)
from copilot_frontend.services.fallback_banner import FallbackBanner
from copilot_frontend.services.task_tray import TaskTray
from copilot_frontend.tasks.models import TaskStatus


class TestNormalizeDashboard:
    """Test coercion of dashboard payloads."""

    def test_partial_payload(self):
        data = normalize_dashboard(
            {"kpis": {"calls_attempted": "12", "email_opens": 3.5, "delta": {"email_clicks": 2}}},
            "30d",
        )

        assert data["ok"] is True
        assert data["range"] == "30d"
        assert data["kpis"]["calls_attempted"] == 12
        assert data["kpis"]["calls_connected"] == 0
        assert data["kpis"]["email_opens"] == 3.5
        assert data["kpis"]["delta"]["email_clicks"] == 2
        assert data["kpis"]["delta"]["calls_attempted"] == 0
        assert data["timeline"] == []

    def test_garbage_payload(self):
        data = normalize_dashboard({"kpis": "n/a", "timeline": "soon"}, "7d")

        assert data == mock_dashboard("7d")

    def test_sentinel_payload(self):
        assert normalize_dashboard({"ok": True}, "7d") == mock_dashboard("7d")

    def test_keeps_backend_range_and_timeline(self):
        data = normalize_dashboard({"range": "90d", "timeline": [{"day": 1}]}, "7d")

        assert data["range"] == "90d"
        assert data["timeline"] == [{"day": 1}]


class TestDashboardService:
    """Test live/mock dashboard loading."""

    def make_service(self, notifier, no_sleep, get_json) -> DashboardService:
        client = Mock(spec=BackendAPIClient)
        client.get_json = get_json
        executor = ResilientCallExecutor(
            notifier=notifier, timeout=1.0, retries=1, backoff=0.1, sleep=no_sleep
        )
        return DashboardService(client, executor)

    @pytest.mark.asyncio
    async def test_live_dashboard(self, notifier, no_sleep):
        get_json = AsyncMock(return_value={"range": "7d", "kpis": {"calls_connected": 4}})
        service = self.make_service(notifier, no_sleep, get_json)

        outcome = await service.fetch("7d")

        assert outcome.source is OutcomeSource.LIVE
        assert outcome.value["kpis"]["calls_connected"] == 4
        get_json.assert_awaited_once_with("/api/dashboard?range=7d")

    @pytest.mark.asyncio
    async def test_dashboard_falls_back_and_shows_banner(self, notifier, no_sleep):
        get_json = AsyncMock(side_effect=TransportError("HTTP_500", status_code=500))
        service = self.make_service(notifier, no_sleep, get_json)
        banner = FallbackBanner(notifier, auto_hide_seconds=60)

        data = await service.get_dashboard("7d")

        assert data == mock_dashboard("7d")
        assert get_json.await_count == 2
        assert banner.visible is True
        assert banner.message == "Live API unavailable: HTTP_500"
        banner.close()


class TestFallbackBanner:
    """Test banner state driven by degradation notices."""

    def test_shows_until_hidden_without_loop(self, notifier):
        banner = FallbackBanner(notifier)

        notifier.emit("timeout")

        assert banner.visible is True
        assert banner.message == "Live API unavailable: timeout"
        banner.hide()
        assert banner.visible is False

    def test_empty_reason(self, notifier):
        banner = FallbackBanner(notifier)
        notifier.emit("")

        assert banner.message == "Live API unavailable: unknown error"

    def test_close_detaches(self, notifier):
        banner = FallbackBanner(notifier)
        banner.close()

        notifier.emit("ignored")

        assert notifier.observer_count == 0
        assert banner.visible is False

    @pytest.mark.asyncio
    async def test_auto_hide(self, notifier):
        banner = FallbackBanner(notifier, auto_hide_seconds=0.05)

        notifier.emit("timeout")
        assert banner.visible is True

        await asyncio.sleep(0.1)
        assert banner.visible is False


class TestTaskTray:
    """Test the task stream owner."""

    def make_tray(self, session, **kwargs) -> TaskTray:
        client = BackendAPIClient(
            "http://test-backend:8000", context=CallContext(tenant="acme")
        )
        client.session = session
        return TaskTray(client, **kwargs)

    @pytest.mark.asyncio
    async def test_start_consumes_stream(self, sse_lines):
        finished = []
        tray = self.make_tray(make_stream_session(sse_lines), on_terminal=finished.append)

        await tray.start()
        await tray.wait_finished()

        assert [t.id for t in tray.active_tasks()] == ["t2"]
        assert {t.id for t in tray.tasks()} == {"t1", "t2"}
        assert [t.id for t in finished] == ["t1"]
        assert tray.last_error is None

        await tray.stop()
        assert tray.tasks() == []

    @pytest.mark.asyncio
    async def test_open_failure_recorded(self):
        session = Mock(spec=requests.Session)
        session.get.side_effect = requests.exceptions.ConnectionError("refused")
        tray = self.make_tray(session)

        await tray.start()
        await tray.wait_finished()

        assert isinstance(tray.last_error, StreamConnectionError)
        assert tray.running is False
        await tray.stop()

    @pytest.mark.asyncio
    async def test_start_twice_keeps_one_connection(self):
        session = make_stream_session([])
        tray = self.make_tray(session)

        await tray.start()
        first_stream = tray.stream
        await tray.start()
        await tray.wait_finished()

        assert tray.stream is first_stream
        assert session.get.call_count == 1
        await tray.stop()
        assert tray.running is False

    @pytest.mark.asyncio
    async def test_load_audit(self, sse_lines):
        tray = self.make_tray(make_stream_session(sse_lines))
        tray.client.get_task_audit = AsyncMock(return_value={"steps": []})

        await tray.start()
        await tray.wait_finished()

        assert await tray.load_audit("t1") == {"steps": []}
        with pytest.raises(ValueError):
            await tray.load_audit("t2")
        tray.client.get_task_audit.assert_awaited_once_with("t1")
        await tray.stop()

    @pytest.mark.asyncio
    async def test_switch_context_restarts_stream(self, sse_lines):
        session = make_stream_session(sse_lines)
        tray = self.make_tray(session)

        await tray.start()
        await tray.wait_finished()
        assert tray.registry.get("t1").status is TaskStatus.DONE

        # Stream already ended: switching only rebinds the client
        await tray.switch_context(CallContext(tenant="globex", role="viewer"))

        assert tray.context.tenant == "globex"
        assert tray.client.session is session
        assert tray.running is False

    @pytest.mark.asyncio
    async def test_switch_context_reconnects_running_stream(self):
        session = make_stream_session([])
        tray = self.make_tray(session)
        await tray.start()

        await tray.switch_context(CallContext(tenant="globex"))
        await tray.wait_finished()

        assert tray.registry.tenant == "globex"
        assert session.get.call_args.kwargs["headers"]["X-Tenant"] == "globex"
        await tray.stop()

    @pytest.mark.asyncio
    async def test_same_context_is_noop(self):
        tray = self.make_tray(make_stream_session([]))

        await tray.switch_context(CallContext(tenant="acme"))

        assert tray.context.tenant == "acme"
        assert tray.stream is None

    @pytest.mark.asyncio
    async def test_stream_failure_logged_with_its_own_tenant(self):
        session = Mock(spec=requests.Session)
        session.get.side_effect = requests.exceptions.ConnectionError("refused")
        tray = self.make_tray(session)

        with capture_logs() as logs:
            await tray.start()
            first_runner = tray._runner
            await tray.wait_finished()

            await tray.switch_context(CallContext(tenant="globex"))
            await tray.start()
            await tray.wait_finished()
            current_error = tray.last_error

            # Completion of the acme stream delivered after the switch
            tray._on_stream_finished(("http://test-backend:8000", "acme"), first_runner)

        failures = [e for e in logs if e["event"] == "Task stream unavailable"]
        assert [e["tenant"] for e in failures] == ["acme", "globex", "acme"]
        assert all(e["base_url"] == "http://test-backend:8000" for e in failures)
        assert tray.last_error is current_error
        await tray.stop()


class TestTaskTrayIdleStream:
    """Test teardown against a real connection that stays open without data."""

    def make_tray(self, server) -> TaskTray:
        client = BackendAPIClient(server.base_url, context=CallContext(tenant="acme"))
        return TaskTray(client, connect_timeout=3.0)

    @pytest.mark.asyncio
    async def test_stop_while_stream_idle(self, idle_stream_server):
        tray = self.make_tray(idle_stream_server)
        await tray.start()
        stream = tray.stream
        await wait_until(lambda: stream.last_heartbeat is not None)

        await asyncio.wait_for(tray.stop(), timeout=2.0)
        await wait_until(lambda: stream.reader_finished)

        assert tray.running is False
        assert stream.closed is True
        assert tray.tasks() == []
        tray.client.session.close()

    @pytest.mark.asyncio
    async def test_switch_context_while_stream_idle(self, idle_stream_server):
        tray = self.make_tray(idle_stream_server)
        await tray.start()
        first_stream = tray.stream
        await wait_until(lambda: first_stream.last_heartbeat is not None)

        await asyncio.wait_for(
            tray.switch_context(CallContext(tenant="globex")), timeout=2.0
        )
        await wait_until(lambda: tray.stream.last_heartbeat is not None)

        await wait_until(lambda: first_stream.reader_finished)
        assert idle_stream_server.tenants == ["acme", "globex"]
        assert tray.stream.key == (idle_stream_server.base_url, "globex")

        await asyncio.wait_for(tray.stop(), timeout=2.0)
        tray.client.session.close()
