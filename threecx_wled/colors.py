"""Status to LED colour mapping."""

import logging
from typing import Dict, Mapping, Optional, Sequence

from .models import Color, Status

logger = logging.getLogger(__name__)

DEFAULT_STATUS_COLORS: Dict[Status, Color] = {
    Status.AVAILABLE: Color(r=0, g=255, b=0),  # Green
    Status.RINGING: Color(r=255, g=255, b=0),  # Yellow
    Status.ON_CALL: Color(r=255, g=0, b=0),  # Red
    Status.DND: Color(r=128, g=0, b=128),  # Purple
    Status.AWAY: Color(r=255, g=165, b=0),  # Orange
    Status.OFFLINE: Color(r=0, g=0, b=255),  # Blue
}

# WLED effect 0 is "Solid"
SOLID_EFFECT = 0
EFFECT_SPEED = 128
EFFECT_INTENSITY = 128


def clamp(value: int, low: int = 0, high: int = 255) -> int:
    return max(low, min(high, int(value)))


def build_color_table(overrides: Optional[Mapping[str, Sequence[int]]] = None) -> Dict[Status, Color]:
    """
    Merge configured per-status overrides into the default colour table.

    Args:
        overrides: Mapping of status value (e.g. "onCall") to an [r, g, b] list.

    Returns:
        Dict mapping every Status to a Color.
    """
    table = dict(DEFAULT_STATUS_COLORS)
    for key, rgb in (overrides or {}).items():
        try:
            status = Status(key)
        except ValueError:
            logger.warning(f"Ignoring colour override for unknown status '{key}'")
            continue
        if len(rgb) != 3:
            logger.warning(f"Ignoring malformed colour override for '{key}': {rgb}")
            continue
        table[status] = Color(r=clamp(rgb[0]), g=clamp(rgb[1]), b=clamp(rgb[2]))
    return table


def color_for(status: Status, overrides: Optional[Mapping[str, Sequence[int]]] = None) -> Color:
    """Return the LED colour for a status."""
    if overrides:
        return build_color_table(overrides)[Status(status)]
    return DEFAULT_STATUS_COLORS[Status(status)]


def build_color_payload(color: Color, brightness: int, transition_ms: int) -> dict:
    """
    Build the WLED JSON body for a solid colour.

    Args:
        color: Target colour.
        brightness: 0-255, clamped.
        transition_ms: Transition time in milliseconds (WLED expects seconds).

    Returns:
        dict: Body for POST /json.
    """
    return {
        "on": True,
        "bri": clamp(brightness),
        "transition": max(0, transition_ms) / 1000,
        "seg": [
            {
                "col": [color.as_list()],
                "fx": SOLID_EFFECT,
                "sx": EFFECT_SPEED,
                "ix": EFFECT_INTENSITY,
            }
        ],
    }
