"""WLED JSON API client."""

import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp

from .colors import build_color_payload, clamp
from .models import Color, DeviceState

logger = logging.getLogger(__name__)

MAX_TRANSITION_MS = 65535


class WLEDClient:
    """Sends colour, brightness and power commands to a WLED device over HTTP."""

    def __init__(
        self,
        ip_address: str,
        brightness: int = 128,
        transition_ms: int = 1000,
        timeout: float = 5.0,
    ):
        """
        Initialize WLED client.

        Args:
            ip_address: Device address, optionally with ":port".
            brightness: Default brightness (0-255).
            transition_ms: Default transition time in milliseconds.
            timeout: Per-request timeout in seconds.
        """
        self.ip_address = ip_address
        self.brightness = clamp(brightness)
        self.transition_ms = max(0, min(MAX_TRANSITION_MS, transition_ms))
        self.timeout = timeout
        self.last_error: Optional[str] = None

    @property
    def url(self) -> str:
        return f"http://{self.ip_address}/json"

    async def _post(self, payload: Dict[str, Any], action: str) -> bool:
        """
        POST a JSON body to the device.

        Returns:
            bool: True on HTTP 200, False on any failure.
        """
        if not self.ip_address:
            self.last_error = "WLED IP address is not configured"
            logger.error(f"Error {action}: {self.last_error}")
            return False

        logger.debug(f"WLED payload ({action}): {payload}")

        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.url, json=payload) as response:
                    if response.status == 200:
                        self.last_error = None
                        return True
                    body = await response.text()
                    self.last_error = f"HTTP {response.status}"
                    logger.error(f"WLED API error {action}: status {response.status}, body: {body[:200]}")
                    return False

        except asyncio.TimeoutError:
            self.last_error = "timeout"
            logger.error(f"Timeout {action} at {self.ip_address}")
            return False
        except aiohttp.ClientError as e:
            self.last_error = str(e) or e.__class__.__name__
            logger.error(f"HTTP error {action} at {self.ip_address}: {e}")
            return False
        except Exception as e:
            self.last_error = str(e)
            logger.error(f"Error {action}: {e}")
            return False

    async def set_color(
        self,
        color: Color,
        brightness: Optional[int] = None,
        transition_ms: Optional[int] = None,
    ) -> bool:
        """
        Switch the device on with a solid colour.

        Sending the same colour twice is harmless; the device ends in the same state.

        Args:
            color: Target colour.
            brightness: Overrides the configured brightness for this call.
            transition_ms: Overrides the configured transition for this call.

        Returns:
            bool: True if the device accepted the command.
        """
        bri = self.brightness if brightness is None else brightness
        transition = self.transition_ms if transition_ms is None else transition_ms
        payload = build_color_payload(color, bri, transition)

        logger.info(f"Setting WLED color to RGB({color.r},{color.g},{color.b})")
        success = await self._post(payload, "setting color")
        if success:
            logger.info("WLED updated successfully")
        return success

    async def get_status(self) -> Optional[DeviceState]:
        """
        Read back the device state.

        Returns:
            DeviceState or None on failure.
        """
        if not self.ip_address:
            self.last_error = "WLED IP address is not configured"
            logger.error(f"Error getting WLED status: {self.last_error}")
            return None

        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(self.url) as response:
                    if response.status != 200:
                        self.last_error = f"HTTP {response.status}"
                        logger.error(f"WLED status request returned {response.status}")
                        return None
                    data = await response.json(content_type=None)
                    self.last_error = None
                    return DeviceState.from_json(data)

        except asyncio.TimeoutError:
            self.last_error = "timeout"
            logger.error(f"Timeout getting WLED status from {self.ip_address}")
            return None
        except aiohttp.ClientError as e:
            self.last_error = str(e) or e.__class__.__name__
            logger.error(f"HTTP error getting WLED status: {e}")
            return None
        except Exception as e:
            self.last_error = str(e)
            logger.error(f"Error getting WLED status: {e}")
            return None

    async def turn_off(self) -> bool:
        """Power the device off."""
        logger.info("Turning off WLED")
        success = await self._post({"on": False}, "turning off WLED")
        if success:
            logger.info("WLED turned off successfully")
        return success

    async def set_brightness(self, brightness: int) -> bool:
        """
        Set brightness only; values outside 0-255 are clamped.

        Updates the cached default brightness on success.
        """
        value = clamp(brightness)
        logger.info(f"Setting WLED brightness to {value}")
        success = await self._post({"bri": value}, "setting brightness")
        if success:
            self.brightness = value
        return success

    async def set_transition(self, transition_ms: int) -> bool:
        """
        Set transition time only; values outside 0-65535 ms are clamped.

        Updates the cached default transition on success.
        """
        value = max(0, min(MAX_TRANSITION_MS, int(transition_ms)))
        logger.info(f"Setting WLED transition time to {value}ms")
        success = await self._post({"transition": value / 1000}, "setting transition")
        if success:
            self.transition_ms = value
        return success

    async def set_effect(self, effect_id: int) -> bool:
        """Set the effect of the first segment."""
        logger.info(f"Setting WLED effect to ID {effect_id}")
        return await self._post({"seg": [{"fx": int(effect_id)}]}, "setting effect")

    def get_config(self) -> dict:
        return {
            "ipAddress": self.ip_address,
            "brightness": self.brightness,
            "transition": self.transition_ms,
        }
