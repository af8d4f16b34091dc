"""Background monitoring: wires the presence scraper to the reconciliation core."""

import asyncio
import logging
import os
from typing import Callable, Optional

from .models import Snapshot
from .scheduler import DEBOUNCE_SECONDS, CollectionScheduler
from .scraper import PresenceScraper
from .state import ReconciliationCore

logger = logging.getLogger(__name__)

SHUTDOWN_TIMEOUT = 5.0


def _force_exit() -> None:
    os._exit(1)


class BackgroundMonitor:
    """Background task that scrapes 3CX and feeds snapshots to the core."""

    def __init__(
        self,
        core: ReconciliationCore,
        scraper: PresenceScraper,
        interval: float = 10.0,
        debounce: float = DEBOUNCE_SECONDS,
        shutdown_timeout: float = SHUTDOWN_TIMEOUT,
        force_exit: Callable[[], None] = _force_exit,
    ):
        """
        Initialize background monitor.

        Args:
            core: Owner of the application state.
            scraper: Browser session against the 3CX web client.
            interval: Seconds between heartbeat collection cycles.
            debounce: Seconds to coalesce DOM change signals.
            shutdown_timeout: Ceiling for a graceful shutdown, in seconds.
            force_exit: Called when the graceful shutdown overruns.
        """
        self.core = core
        self.scraper = scraper
        self.shutdown_timeout = shutdown_timeout
        self.force_exit = force_exit

        self.scheduler = CollectionScheduler(
            collect=self.scraper.collect_snapshot,
            publish=self._publish,
            interval=interval,
            debounce=debounce,
        )
        self.scraper.on_change = self.scheduler.notify_change

        self.running = False
        self.init_task: Optional[asyncio.Task] = None
        self.reauth_task: Optional[asyncio.Task] = None

    async def start(self):
        """Start the scraper session and the collection loop in the background."""
        if self.running:
            logger.warning("Background monitor already running")
            return

        logger.info(f"Starting background monitor (interval: {self.scheduler.interval}s)")
        self.running = True
        # Login may take minutes; the dashboard must not wait for it
        self.init_task = asyncio.create_task(self._initialize_and_monitor())

    async def _initialize_and_monitor(self):
        success = await self.scraper.initialize()
        await self.core.set_authenticated(success)

        if not success:
            logger.error("Failed to initialize 3CX web client, dashboard keeps serving without live status")
            return

        await self.scheduler.start()

    async def _publish(self, snapshot: Snapshot):
        self.core.set_debug_info(
            {
                "scraper": self.scraper.get_connection_status(),
                "trigger": snapshot.trigger.value,
                "statusSource": snapshot.status.source,
                "error": snapshot.error,
                "cyclesRun": self.scheduler.cycles_run,
                "capturedAt": snapshot.captured_at.isoformat(),
            }
        )
        await self.core.apply_snapshot(snapshot)

        if snapshot.auth_required:
            self._schedule_reauthentication()

    def _schedule_reauthentication(self):
        if self.reauth_task is not None and not self.reauth_task.done():
            return
        logger.warning("3CX session lost, starting re-authentication")
        self.reauth_task = asyncio.create_task(self._reauthenticate())

    async def _reauthenticate(self):
        await self.scheduler.stop()
        try:
            success = await self.scraper.reauthenticate()
        except Exception as e:
            logger.error(f"Error re-authenticating: {e}")
            success = False

        await self.core.set_authenticated(success)
        if not success:
            logger.error("Re-authentication failed, will retry on the next detected session loss")

        if self.running:
            await self.scheduler.start()

    async def reset_authentication(self) -> bool:
        """
        Discard the stored session and log in again.

        Returns:
            bool: Whether the new session is authenticated.
        """
        logger.info("Stopping 3CX monitoring...")
        await self.scheduler.stop()
        await self._cancel(self.reauth_task)
        self.reauth_task = None

        success = await self.scraper.reset_authentication()
        logger.info(f"Reset authentication result: {success}")
        await self.core.set_authenticated(success)

        if success and self.running:
            logger.info("Restarting 3CX monitoring...")
            await self.scheduler.start()
        return success

    async def take_screenshot(self):
        """Take an on-demand screenshot of the 3CX page."""
        return await self.scraper.take_screenshot("manual", force=True)

    @staticmethod
    async def _cancel(task: Optional[asyncio.Task]):
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def stop(self):
        """
        Shut down in order: collection loop, browser, LED, dashboard clients.

        The LED is turned off even if closing the browser failed. If the
        whole sequence overruns the shutdown timeout the process exits.
        """
        logger.info("Stopping background monitor")
        self.running = False

        try:
            await asyncio.wait_for(self._shutdown(), timeout=self.shutdown_timeout)
        except asyncio.TimeoutError:
            logger.error(f"Forced shutdown after {self.shutdown_timeout}s timeout")
            self.force_exit()

    async def _shutdown(self):
        await self.scheduler.stop()
        await self._cancel(self.init_task)
        await self._cancel(self.reauth_task)

        try:
            await self.scraper.close()
        except Exception as e:
            logger.error(f"Error closing 3CX web client: {e}")

        try:
            logger.info("Turning off WLED...")
            await self.core.shutdown_device()
        except Exception as e:
            logger.error(f"Error turning off WLED: {e}")

        for subscriber in list(self.core.subscribers):
            try:
                await subscriber.close()
            except Exception as e:
                logger.debug(f"Error closing client connection: {e}")
            self.core.unsubscribe(subscriber)

        logger.info("Shutdown complete")

    def get_connection_status(self) -> dict:
        """Get connection status."""
        status = self.scraper.get_connection_status()
        status["monitoring"] = self.scheduler.running
        status["cyclesRun"] = self.scheduler.cycles_run
        return status
