"""Reconciliation core: the single owner of the application state."""

import asyncio
import json
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Set

from pydantic import ValidationError

from .colors import build_color_table, clamp
from .extraction import display_color
from .models import AgentEntry, ApplicationState, CallStats, Color, Snapshot, StatsSource, Status
from .wled_client import WLEDClient

logger = logging.getLogger(__name__)

MANUAL_OVERRIDE_TIMEOUT = timedelta(minutes=15)
TEST_FLASH_COLOR = Color(r=255, g=255, b=255)
SEND_TIMEOUT = 5.0


class ReconciliationCore:
    """
    Holds the canonical ApplicationState and is its only writer.

    Every mutation, and every LED command, runs under one lock so scraper
    snapshots, manual submissions and device commands never interleave.
    Dashboard messages are built under the lock but delivered after it is
    released, so a slow client never holds up the state or the LED.

    Manual override policy: a manual status wins until it expires or is
    cleared. Scraper results keep updating ``detected_status`` for display,
    but do not change ``current_status`` or the LED while the override is
    active; when it ends, the latest detected status is applied.
    """

    def __init__(
        self,
        wled: WLEDClient,
        status_colors: Optional[Mapping[str, Sequence[int]]] = None,
        override_timeout: timedelta = MANUAL_OVERRIDE_TIMEOUT,
        restore_delay: float = 1.0,
        clock: Callable[[], datetime] = datetime.now,
        send_timeout: float = SEND_TIMEOUT,
    ):
        self.wled = wled
        self.color_table = build_color_table(status_colors)
        self.restore_delay = restore_delay
        self.clock = clock
        self.send_timeout = send_timeout
        self.state = ApplicationState()
        self.state.manual_override.timeout_duration = override_timeout
        self.subscribers: Set = set()
        self._lock = asyncio.Lock()
        self._restore_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Scraper input
    # ------------------------------------------------------------------

    async def apply_snapshot(self, snapshot: Snapshot) -> None:
        """
        Reconcile one scraper snapshot.

        Call stats are replaced wholesale; the roster is replaced unless the
        scraper reported it unavailable (None); the user's status drives the
        LED only when monitoring is on and no manual override is active.
        """
        async with self._lock:
            st = self.state
            messages: List[Dict[str, Any]] = []
            self._expire_override()

            st.last_snapshot_hash = snapshot.fingerprint()
            st.last_snapshot_at = snapshot.captured_at

            if snapshot.call_stats is not None:
                st.latest_call_stats = snapshot.call_stats

            if snapshot.agent_statuses is not None:
                st.roster = list(snapshot.agent_statuses)
                st.roster_updated_at = self.clock()
                logger.info(f"Received {len(st.roster)} agent statuses")
            else:
                logger.warning("Agent status scraping returned no roster, keeping the previous one")

            if snapshot.auth_required:
                st.authenticated = False

            if snapshot.error:
                logger.error(f"Snapshot carries an error: {snapshot.error}")
            else:
                st.authenticated = True
                st.detected_status = snapshot.status
                new_status = snapshot.status.status

                if new_status != st.current_status:
                    if not st.is_monitoring:
                        logger.info(f"Monitoring disabled, not applying detected status {new_status.value}")
                    elif st.manual_override.active:
                        logger.info(
                            f"Manual override active ({st.manual_override.remaining_seconds(self.clock())}s left), "
                            f"not applying detected status {new_status.value}"
                        )
                    else:
                        logger.info(
                            f"Status changed from {st.current_status.value} to {new_status.value} "
                            f"(source: {snapshot.status.source})"
                        )
                        st.current_status = new_status
                        messages.append(await self._drive_led(new_status))

            messages.insert(0, self._status_message())

        await self._deliver(messages)

    # ------------------------------------------------------------------
    # Manual input
    # ------------------------------------------------------------------

    async def set_manual_status(self, status: Status) -> bool:
        """
        Apply a user-submitted status.

        Always takes effect and always drives the LED, whatever the monitoring
        flag; starts the manual override window.

        Returns:
            bool: Whether the LED accepted the colour.
        """
        status = Status(status)
        async with self._lock:
            logger.info(f"Manual status update: {status.value}")
            st = self.state
            st.current_status = status
            st.manual_override.active = True
            st.manual_override.timestamp = self.clock()

            device_message = await self._drive_led(status)
            messages = [self._status_message(), device_message]

        await self._deliver(messages)
        return device_message["success"]

    async def set_monitoring(self, enabled: bool) -> None:
        """Enable or disable scraper-driven LED updates."""
        async with self._lock:
            st = self.state
            st.is_monitoring = bool(enabled)
            logger.info(f"Monitoring {'enabled' if st.is_monitoring else 'disabled'}")

            device_message = await self._catch_up() if st.is_monitoring else None
            messages = [self._status_message()]
            if device_message:
                messages.append(device_message)

        await self._deliver(messages)

    async def clear_manual_override(self) -> None:
        """End the manual override and fall back to the detected status."""
        async with self._lock:
            self.state.manual_override.active = False
            logger.info("Manual status override cleared")

            device_message = await self._catch_up() if self.state.is_monitoring else None
            messages = [self._status_message()]
            if device_message:
                messages.append(device_message)

        await self._deliver(messages)

    async def update_call_stats(self, fields: Mapping[str, Any]) -> CallStats:
        """
        Overlay manually supplied call stat fields on the current stats.

        Raises:
            ValueError: When the merged stats do not validate.
        """
        async with self._lock:
            merged = self.state.latest_call_stats.to_wire()
            merged.update({k: v for k, v in fields.items() if k not in ("lastUpdated", "source")})
            merged["lastUpdated"] = self.clock().isoformat()
            merged["source"] = StatsSource.MANUAL.value
            try:
                stats = CallStats.model_validate(merged)
            except ValidationError as e:
                raise ValueError(f"Invalid call stats data: {e}") from e

            self.state.latest_call_stats = stats
            logger.info(f"Manual call stats update: {stats.to_wire()}")

        await self.broadcast({"type": "callStats", "callStats": stats.to_wire()})
        return stats

    async def set_agent_status(self, agent_id: str, status: Status) -> Optional[AgentEntry]:
        """
        Manually override one roster entry's status.

        Returns:
            The updated entry, or None if no agent has that id.
        """
        status = Status(status)
        updated = None
        async with self._lock:
            for index, agent in enumerate(self.state.roster):
                if agent.id == agent_id:
                    updated = agent.model_copy(update={"status": status, "color": display_color(status)})
                    self.state.roster[index] = updated
                    logger.info(f"Manual status for agent {agent_id}: {status.value}")
                    message = self._team_message()
                    break

        if updated is not None:
            await self.broadcast(message)
        return updated

    def set_debug_info(self, debug_info: Dict[str, Any]) -> None:
        self.state.last_debug_info = dict(debug_info)

    async def set_authenticated(self, authenticated: bool) -> None:
        async with self._lock:
            self.state.authenticated = authenticated
            message = self._status_message()
        await self.broadcast(message)

    # ------------------------------------------------------------------
    # Device
    # ------------------------------------------------------------------

    async def _drive_led(self, status: Status) -> Dict[str, Any]:
        color = self.color_table[status]
        success = await self.wled.set_color(color)
        return self._record_device_result(success)

    def _record_device_result(self, success: bool) -> Dict[str, Any]:
        st = self.state
        st.device_connected = success
        st.device_error = None if success else (self.wled.last_error or "WLED update failed")
        logger.info(f"WLED update {'successful' if success else 'failed'}")
        return {"type": "wled", "success": success, "error": st.device_error}

    async def _catch_up(self) -> Optional[Dict[str, Any]]:
        """Apply the latest detected status if it differs from the current one."""
        st = self.state
        if st.manual_override.active or st.detected_status is None:
            return None
        detected = st.detected_status.status
        if detected == st.current_status:
            return None
        logger.info(f"Applying detected status {detected.value}")
        st.current_status = detected
        return await self._drive_led(detected)

    def _expire_override(self) -> None:
        override = self.state.manual_override
        if override.expired(self.clock()):
            override.active = False
            logger.info("Manual status override expired")

    async def test_device(self) -> bool:
        """Flash white, then restore the current status colour after a short delay."""
        await self._cancel_restore()
        async with self._lock:
            success = await self.wled.set_color(TEST_FLASH_COLOR)
            message = self._record_device_result(success)

        self._restore_task = asyncio.create_task(self._restore_after_test())
        await self.broadcast(message)
        return success

    async def _restore_after_test(self) -> None:
        await asyncio.sleep(self.restore_delay)
        async with self._lock:
            message = await self._drive_led(self.state.current_status)
        await self.broadcast(message)

    async def _cancel_restore(self) -> None:
        task, self._restore_task = self._restore_task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def apply_device_settings(self, settings: Mapping[str, Any]) -> bool:
        """
        Apply a direct device command from the dashboard.

        Accepts any of ``r``/``g``/``b``, ``brightness`` and ``transition`` (ms).
        """
        async with self._lock:
            success = True
            if "brightness" in settings:
                success = await self.wled.set_brightness(int(settings["brightness"])) and success
            if "transition" in settings:
                success = await self.wled.set_transition(int(settings["transition"])) and success
            if any(key in settings for key in ("r", "g", "b")):
                color = Color(
                    r=clamp(settings.get("r", 0)),
                    g=clamp(settings.get("g", 0)),
                    b=clamp(settings.get("b", 0)),
                )
                success = await self.wled.set_color(color) and success
            message = self._record_device_result(success)

        await self.broadcast(message)
        return success

    async def shutdown_device(self) -> bool:
        """Turn the LED off; used on shutdown. A pending test-flash restore is dropped."""
        await self._cancel_restore()
        async with self._lock:
            success = await self.wled.turn_off()
            self.state.device_connected = success
            return success

    # ------------------------------------------------------------------
    # Read side & fan-out
    # ------------------------------------------------------------------

    def snapshot_view(self) -> Dict[str, Any]:
        """Current state as the dashboard sees it."""
        st = self.state
        now = self.clock()
        override_active = st.manual_override.active and not st.manual_override.expired(now)
        return {
            "status": st.current_status.value,
            "detectedStatus": st.detected_status.to_wire() if st.detected_status else None,
            "monitoring": st.is_monitoring,
            "callStats": st.latest_call_stats.to_wire(),
            "teamStatus": [agent.to_wire() for agent in st.roster],
            "agentStatuses": [agent.to_wire() for agent in st.roster],
            "lastTeamStatusUpdate": st.roster_updated_at.isoformat() if st.roster_updated_at else None,
            "lastSnapshotAt": st.last_snapshot_at.isoformat() if st.last_snapshot_at else None,
            "manualOverride": override_active,
            "manualOverrideTime": st.manual_override.timestamp.isoformat()
            if override_active and st.manual_override.timestamp
            else None,
            "manualOverrideRemaining": st.manual_override.remaining_seconds(now) if override_active else 0,
            "wledConnected": st.device_connected,
            "wledError": st.device_error,
            "wledConfig": self.wled.get_config(),
            "authenticated": st.authenticated,
            "serverTime": now.isoformat(),
        }

    def debug_view(self) -> Dict[str, Any]:
        view = self.snapshot_view()
        view["debugInfo"] = self.state.last_debug_info
        view["connectedClients"] = len(self.subscribers)
        view["lastSnapshotHash"] = self.state.last_snapshot_hash
        return view

    def _status_message(self) -> Dict[str, Any]:
        message = {"type": "statusUpdate"}
        message.update(self.snapshot_view())
        return message

    def _team_message(self) -> Dict[str, Any]:
        st = self.state
        return {
            "type": "teamStatus",
            "teamStatus": [agent.to_wire() for agent in st.roster],
            "lastUpdated": st.roster_updated_at.isoformat() if st.roster_updated_at else None,
        }

    def subscribe(self, subscriber) -> None:
        """Add a subscriber (anything with an async ``send_text``) to receive updates."""
        self.subscribers.add(subscriber)
        logger.info(f"WebSocket client added (total: {len(self.subscribers)})")

    def unsubscribe(self, subscriber) -> None:
        self.subscribers.discard(subscriber)
        logger.info(f"WebSocket client removed (total: {len(self.subscribers)})")

    async def broadcast(self, message: Dict[str, Any]) -> None:
        """
        Send a message to every subscriber.

        Delivery is independent per client; a failed or timed-out send drops
        that client.
        """
        await self._deliver([message])

    async def _deliver(self, messages: List[Dict[str, Any]]) -> None:
        if not self.subscribers or not messages:
            return

        texts = [json.dumps(message) for message in messages]
        targets = list(self.subscribers)
        results = await asyncio.gather(*(self._send_to(subscriber, texts) for subscriber in targets))
        self.subscribers -= {subscriber for subscriber, ok in zip(targets, results) if not ok}

    async def _send_to(self, subscriber, texts: List[str]) -> bool:
        try:
            for text in texts:
                await asyncio.wait_for(subscriber.send_text(text), timeout=self.send_timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning(f"Client did not accept an update within {self.send_timeout}s, dropping it")
            return False
        except Exception as e:
            logger.debug(f"Failed to send to client: {e}")
            return False
