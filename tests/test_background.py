"""Tests for background.py: wiring, re-authentication and shutdown."""

import asyncio
from unittest.mock import MagicMock

from conftest import FakeClock, FakeWebSocket, StubWLED
from threecx_wled.background import BackgroundMonitor
from threecx_wled.models import CallStats, Snapshot, StatsSource, Status, StatusResult, Trigger
from threecx_wled.state import ReconciliationCore


class FakeScraper:
    """Async scraper double with scriptable outcomes."""

    def __init__(self, initialize_result=True, close_error=None, close_delay=0.0):
        self.initialize_result = initialize_result
        self.close_error = close_error
        self.close_delay = close_delay
        self.on_change = None
        self.calls = []
        self.status = Status.AVAILABLE
        self.auth_required = False

    async def initialize(self):
        self.calls.append("initialize")
        return self.initialize_result

    async def collect_snapshot(self, trigger=Trigger.INTERVAL):
        self.calls.append(("collect", trigger))
        if self.auth_required:
            return Snapshot(
                status=StatusResult(status=Status.AVAILABLE, source="error"),
                call_stats=CallStats.zeroed(StatsSource.ERROR),
                trigger=trigger,
                auth_required=True,
                error="session expired",
            )
        return Snapshot(status=StatusResult(status=self.status, source="indicator-class:.status"), trigger=trigger)

    async def reauthenticate(self):
        self.calls.append("reauthenticate")
        self.auth_required = False
        return True

    async def reset_authentication(self):
        self.calls.append("reset_authentication")
        return True

    async def take_screenshot(self, prefix="3cx", force=False):
        return None

    async def close(self):
        self.calls.append("close")
        if self.close_delay:
            await asyncio.sleep(self.close_delay)
        if self.close_error:
            raise self.close_error

    def get_connection_status(self):
        return {"state": "monitoring", "authenticated": True}


def make_monitor(scraper=None, wled=None, **kwargs):
    core = ReconciliationCore(wled or StubWLED(), clock=FakeClock())
    kwargs.setdefault("interval", 60)
    monitor = BackgroundMonitor(core, scraper or FakeScraper(), **kwargs)
    return monitor, core


# ---------------------------------------------------------------------------
# Startup & wiring
# ---------------------------------------------------------------------------


class TestStartup:
    def test_change_signal_is_wired_to_scheduler(self):
        scraper = FakeScraper()
        monitor, _ = make_monitor(scraper)
        assert scraper.on_change == monitor.scheduler.notify_change

    def test_failed_initialize_keeps_serving(self):
        scraper = FakeScraper(initialize_result=False)
        monitor, core = make_monitor(scraper, force_exit=MagicMock())

        async def scenario():
            await monitor.start()
            await monitor.init_task
            running = monitor.scheduler.running
            await monitor.stop()
            return running

        assert asyncio.run(scenario()) is False
        assert core.state.authenticated is False

    def test_successful_start_collects_initial_snapshot(self):
        scraper = FakeScraper()
        scraper.status = Status.DND
        monitor, core = make_monitor(scraper, force_exit=MagicMock())

        async def scenario():
            await monitor.start()
            await monitor.init_task
            await asyncio.sleep(0.05)
            await monitor.stop()

        asyncio.run(scenario())
        assert ("collect", Trigger.INITIAL) in scraper.calls
        assert core.state.current_status == Status.DND
        assert core.state.authenticated is True
        assert core.state.last_debug_info["trigger"] == "initial"


# ---------------------------------------------------------------------------
# Session loss
# ---------------------------------------------------------------------------


class TestReauthentication:
    def test_auth_required_starts_single_reauth(self):
        scraper = FakeScraper()
        scraper.auth_required = True
        monitor, core = make_monitor(scraper, force_exit=MagicMock())

        async def scenario():
            monitor.running = True
            await monitor.scheduler.run_cycle(Trigger.INTERVAL)
            await monitor.scheduler.run_cycle(Trigger.INTERVAL)
            task = monitor.reauth_task
            await task
            await monitor.stop()

        asyncio.run(scenario())
        assert scraper.calls.count("reauthenticate") == 1
        assert core.state.authenticated is True

    def test_reset_authentication(self):
        scraper = FakeScraper()
        monitor, core = make_monitor(scraper, force_exit=MagicMock())

        async def scenario():
            result = await monitor.reset_authentication()
            await monitor.stop()
            return result

        assert asyncio.run(scenario()) is True
        assert "reset_authentication" in scraper.calls
        assert core.state.authenticated is True


# ---------------------------------------------------------------------------
# Shutdown
# ---------------------------------------------------------------------------


class TestShutdown:
    def test_shutdown_order(self):
        wled = StubWLED()
        scraper = FakeScraper()
        monitor, core = make_monitor(scraper, wled=wled, force_exit=MagicMock())
        ws = FakeWebSocket()
        core.subscribe(ws)

        asyncio.run(monitor.stop())

        assert scraper.calls == ["close"]
        assert wled.calls == ["off"]
        assert ws.closed is True
        assert core.subscribers == set()
        monitor.force_exit.assert_not_called()

    def test_led_turned_off_even_if_close_fails(self):
        wled = StubWLED()
        monitor, _ = make_monitor(FakeScraper(close_error=RuntimeError("browser gone")), wled=wled)

        asyncio.run(monitor.stop())

        assert wled.calls == ["off"]

    def test_overrunning_shutdown_forces_exit(self):
        force_exit = MagicMock()
        monitor, _ = make_monitor(FakeScraper(close_delay=1.0), shutdown_timeout=0.05, force_exit=force_exit)

        asyncio.run(monitor.stop())

        force_exit.assert_called_once()
