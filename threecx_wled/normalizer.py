"""Normalize raw 3CX UI signals into the Status vocabulary."""

import logging
from typing import Optional, Sequence, Tuple

from .models import RawSignal, Status

logger = logging.getLogger(__name__)

# Order matters: substring matching walks this table top to bottom, so call
# states win over ambient availability text, and "unavailable" resolves to
# offline before "available" can match.
KEYWORD_TABLE: Sequence[Tuple[str, Status]] = (
    # Ringing
    ("ringing", Status.RINGING),
    ("incoming call", Status.RINGING),
    # On call
    ("on call", Status.ON_CALL),
    ("on-call", Status.ON_CALL),
    ("oncall", Status.ON_CALL),
    ("in call", Status.ON_CALL),
    ("in-call", Status.ON_CALL),
    ("on a call", Status.ON_CALL),
    ("on the phone", Status.ON_CALL),
    ("talking", Status.ON_CALL),
    # Do not disturb
    ("do not disturb", Status.DND),
    ("dnd", Status.DND),
    ("busy", Status.DND),
    ("in a meeting", Status.DND),
    ("meeting", Status.DND),
    ("on break", Status.DND),
    # Away
    ("away", Status.AWAY),
    ("idle", Status.AWAY),
    ("lunch", Status.AWAY),
    ("be right back", Status.AWAY),
    ("brb", Status.AWAY),
    ("break", Status.AWAY),
    # Offline
    ("offline", Status.OFFLINE),
    ("unavailable", Status.OFFLINE),
    ("logged out", Status.OFFLINE),
    ("disconnected", Status.OFFLINE),
    # Available
    ("available", Status.AVAILABLE),
    ("online", Status.AVAILABLE),
    ("ready", Status.AVAILABLE),
)

_EXACT = {keyword: status for keyword, status in KEYWORD_TABLE}

STATUS_ATTRIBUTES = ("data-status", "data-presence", "data-availability", "data-user-status")


def normalize_text(raw: Optional[str]) -> Optional[Status]:
    """
    Map a single raw string to a Status.

    Exact (trimmed, case-insensitive) match first, then substring containment
    against every keyword in table order.

    Returns:
        Status or None when nothing matches.
    """
    if not raw:
        return None

    candidate = raw.strip().lower()
    if not candidate:
        return None

    exact = _EXACT.get(candidate)
    if exact is not None:
        return exact

    for keyword, status in KEYWORD_TABLE:
        if keyword in candidate:
            return status

    return None


def classify(signal: RawSignal) -> Optional[Tuple[Status, str]]:
    """
    Classify one element's signals.

    Class names are checked first, then the status data attributes, then the
    element text.

    Returns:
        (status, kind) where kind is "class", "attr:<name>" or "text", or None.
    """
    for class_name in signal.class_names:
        status = normalize_text(class_name)
        if status is not None:
            return status, "class"

    for attr in STATUS_ATTRIBUTES:
        status = normalize_text(signal.attributes.get(attr))
        if status is not None:
            return status, f"attr:{attr}"

    status = normalize_text(signal.text)
    if status is not None:
        return status, "text"

    return None


def normalize(signal: RawSignal) -> Optional[Status]:
    """Map a RawSignal to a Status, or None so the caller can pick its default."""
    result = classify(signal)
    return result[0] if result else None
