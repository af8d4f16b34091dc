"""Collection scheduling: interval heartbeat, debounced change signals and change suppression."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .models import Snapshot, Trigger

logger = logging.getLogger(__name__)

DEBOUNCE_SECONDS = 0.5

CollectFn = Callable[[Trigger], Awaitable[Snapshot]]
PublishFn = Callable[[Snapshot], Awaitable[None]]


class CollectionScheduler:
    """
    Runs collection cycles one at a time.

    Interval cycles run immediately and are always published, acting as a
    heartbeat. Change signals are coalesced: all signals arriving within the
    debounce window produce a single cycle, which is published only when the
    snapshot differs from the last one sent.
    """

    def __init__(
        self,
        collect: CollectFn,
        publish: PublishFn,
        interval: float = 10.0,
        debounce: float = DEBOUNCE_SECONDS,
    ):
        """
        Initialize collection scheduler.

        Args:
            collect: Produces one snapshot for a trigger.
            publish: Receives snapshots that should go downstream.
            interval: Seconds between heartbeat cycles.
            debounce: Seconds to coalesce change signals.
        """
        self.collect = collect
        self.publish = publish
        self.interval = interval
        self.debounce = debounce

        self.running = False
        self.task: Optional[asyncio.Task] = None
        self.cycles_run = 0
        self.last_sent_hash: Optional[str] = None
        self._change_event = asyncio.Event()
        self._cycle_lock = asyncio.Lock()

    def notify_change(self, reason: str = "") -> None:
        """Signal that the page changed; safe to call many times in a burst."""
        self._change_event.set()

    async def start(self, initial: bool = True) -> None:
        """Start the scheduling loop."""
        if self.running:
            logger.warning("Collection scheduler already running")
            return

        logger.info(f"Starting status refresh interval (every {self.interval}s) with real-time updates")
        self.running = True
        self.task = asyncio.create_task(self._loop(initial))

    async def stop(self) -> None:
        """Stop the scheduling loop and wait for it to finish."""
        logger.info("Stopping status monitoring")
        self.running = False

        if self.task:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
            self.task = None

    async def _loop(self, initial: bool) -> None:
        loop = asyncio.get_running_loop()
        if initial:
            await self.run_cycle(Trigger.INITIAL)

        # The heartbeat runs on its own clock; change signals never push it back
        next_heartbeat = loop.time() + self.interval
        while self.running:
            remaining = next_heartbeat - loop.time()
            if remaining <= 0:
                self._change_event.clear()
                await self.run_cycle(Trigger.INTERVAL)
                next_heartbeat = loop.time() + self.interval
                continue

            try:
                await asyncio.wait_for(self._change_event.wait(), timeout=remaining)
            except asyncio.TimeoutError:
                continue

            if await self._settle(next_heartbeat):
                await self.run_cycle(Trigger.OBSERVER)

    async def _settle(self, heartbeat_at: float) -> bool:
        """
        Wait until no new change signal arrived for one debounce window.

        Returns:
            bool: False when the heartbeat fell due first; that cycle covers
            the pending change.
        """
        loop = asyncio.get_running_loop()
        while True:
            self._change_event.clear()
            await asyncio.sleep(self.debounce)
            if loop.time() >= heartbeat_at:
                return False
            if not self._change_event.is_set():
                return True

    async def run_cycle(self, trigger: Trigger) -> bool:
        """
        Collect one snapshot and forward it if it changed or the interval fired.

        Returns:
            bool: True if the snapshot was published.
        """
        async with self._cycle_lock:
            self.cycles_run += 1
            try:
                snapshot = await self.collect(trigger)
            except Exception as e:
                logger.error(f"Error collecting status data ({trigger.value}): {e}")
                return False

            fingerprint = snapshot.fingerprint()
            changed = fingerprint != self.last_sent_hash

            if not changed and trigger == Trigger.OBSERVER:
                logger.debug(f"Status refresh (no changes, source: {trigger.value})")
                return False

            self.last_sent_hash = fingerprint
            if changed:
                logger.info(f"Status update detected (source: {trigger.value})")
            else:
                logger.debug(f"Status refresh (no changes, source: {trigger.value})")

            try:
                await self.publish(snapshot)
            except Exception as e:
                logger.error(f"Error publishing status data: {e}")
            return True
