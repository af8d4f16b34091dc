"""Turn raw page reads into status, call statistics and roster models."""

import logging
import re
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from .models import (
    AgentEntry,
    CallStats,
    QueueStatTable,
    RawAgentItem,
    RawSignal,
    StatsSource,
    Status,
    StatusResult,
)
from .normalizer import classify

logger = logging.getLogger(__name__)

# Roster status comes from indicator class tokens only
ROSTER_STATUS_TOKENS: Dict[str, Status] = {
    "available": Status.AVAILABLE,
    "away": Status.AWAY,
    "lunch": Status.AWAY,
    "business-trip": Status.AWAY,
    "dnd": Status.DND,
    "oncall": Status.ON_CALL,
    "on-call": Status.ON_CALL,
    "ringing": Status.RINGING,
    "off": Status.OFFLINE,
}

# Dashboard display colours for roster entries
ROSTER_DISPLAY_COLORS: Dict[Status, str] = {
    Status.AVAILABLE: "green",
    Status.ON_CALL: "red",
    Status.RINGING: "yellow",
    Status.DND: "purple",
    Status.AWAY: "orange",
}

_DURATION_PATTERN = re.compile(r"^\d{1,3}:\d{2}:\d{2}$")
_LEADING_INT = re.compile(r"^\s*(\d+)")
_EXTENSION = re.compile(r"\d+")


def detect_status(signals: Iterable[RawSignal]) -> StatusResult:
    """
    Pick the user's status from prioritized element signals.

    The first element that normalizes to a status wins; indicators inside the
    team roster belong to colleagues and are skipped. Nothing matching means
    "available" with source "default".
    """
    for signal in signals:
        if signal.in_roster:
            continue
        result = classify(signal)
        if result is None:
            continue
        status, kind = result
        if kind == "class":
            source = f"indicator-class:{signal.selector}"
        elif kind.startswith("attr:"):
            source = f"indicator-attr:{kind[5:]}"
        else:
            source = f"indicator-text:{signal.selector}"
        logger.info(f"Status detected: {status.value} (source: {source})")
        return StatusResult(status=status, source=source)

    logger.info("Status: using default status (available)")
    return StatusResult(status=Status.AVAILABLE, source="default")


def _parse_count(value: Optional[str]) -> int:
    if value is None:
        return 0
    match = _LEADING_INT.match(value.replace(",", ""))
    return int(match.group(1)) if match else 0


def _parse_duration(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value if _DURATION_PATTERN.match(value) else None


def parse_call_stats(table: Optional[QueueStatTable]) -> CallStats:
    """
    Build CallStats from the queue statistics table.

    totalCalls is always derived as waiting + serviced + abandoned; any
    on-page total is ignored.

    Returns:
        Scraped stats, or zeroed stats with source "default" when the table
        is absent or carries none of the known columns.
    """
    if table is None:
        logger.info("Call statistics: queue-stat table not found, using defaults")
        return CallStats.zeroed()

    stats_map = {
        header.strip().lower(): value.strip()
        for header, value in zip(table.headers, table.values)
    }

    known = ("waiting calls", "serviced calls", "abandoned calls")
    if not any(key in stats_map for key in known):
        logger.info("Call statistics: no known columns in queue-stat table, using defaults")
        return CallStats.zeroed()

    waiting = _parse_count(stats_map.get("waiting calls"))
    serviced = _parse_count(stats_map.get("serviced calls"))
    abandoned = _parse_count(stats_map.get("abandoned calls"))

    stats = CallStats(
        waiting_calls=waiting,
        active_calls=_parse_count(stats_map.get("active calls")),
        serviced_calls=serviced,
        abandoned_calls=abandoned,
        total_calls=waiting + serviced + abandoned,
        longest_waiting=_parse_duration(stats_map.get("longest waiting")),
        average_waiting=_parse_duration(stats_map.get("average waiting")),
        average_talking=_parse_duration(stats_map.get("average talking")),
        last_updated=datetime.now(),
        source=StatsSource.SCRAPED,
    )
    logger.info(
        f"Call statistics found: waiting={stats.waiting_calls}, serviced={stats.serviced_calls}, "
        f"abandoned={stats.abandoned_calls}, total={stats.total_calls}"
    )
    return stats


def roster_status_from_classes(class_names: Iterable[str]) -> Status:
    """Match indicator class tokens against the known roster status set."""
    for class_name in class_names:
        status = ROSTER_STATUS_TOKENS.get(class_name.strip().lower())
        if status is not None:
            return status
    return Status.OFFLINE


def display_color(status: Status) -> str:
    return ROSTER_DISPLAY_COLORS.get(Status(status), "gray")


def parse_agent(item: RawAgentItem) -> Optional[AgentEntry]:
    """Parse one roster item; None when the extension or name is missing."""
    match = _EXTENSION.search(item.number_text or "")
    extension = match.group(0) if match else None
    name = (item.name_title or "").strip() or (item.name_text or "").strip()

    if not extension or not name:
        return None

    status = roster_status_from_classes(item.indicator_classes)
    return AgentEntry(
        id=extension,
        extension=extension,
        name=name,
        status=status,
        queues=(item.queues or "").strip(),
        color=display_color(status),
    )


def parse_roster(items: Optional[List[RawAgentItem]]) -> Optional[List[AgentEntry]]:
    """
    Parse all roster items.

    Returns:
        None when the roster container was absent, otherwise the list of
        valid entries (possibly empty). Duplicate extensions keep the first entry.
    """
    if items is None:
        return None

    agents: List[AgentEntry] = []
    seen = set()
    for item in items:
        agent = parse_agent(item)
        if agent is None:
            logger.debug(f"Skipping roster item without extension or name: {item}")
            continue
        if agent.id in seen:
            logger.debug(f"Skipping duplicate roster extension {agent.id}")
            continue
        seen.add(agent.id)
        agents.append(agent)

    logger.info(f"Fetched {len(agents)} agent statuses")
    return agents
