"""Roster grouping for the dashboard's three team columns."""

from typing import Dict, Iterable, List

from .models import AgentEntry, Status

BUSY_STATUSES = (Status.AWAY, Status.ON_CALL, Status.DND)
COUNTED_STATUSES = (Status.AVAILABLE, Status.ON_CALL, Status.DND, Status.AWAY)


def _extension_key(agent: AgentEntry) -> int:
    try:
        return int(agent.extension)
    except (TypeError, ValueError):
        return 0


def _availability_then_queues(agent: AgentEntry):
    return (agent.status != Status.AVAILABLE, -agent.queue_count)


def group_roster(agents: Iterable[AgentEntry], include_offline: bool = True) -> Dict[str, object]:
    """
    Split the roster into queueAvailable, queueAway and noQueue columns.

    Available agents with at least one queue go to queueAvailable; away, onCall
    and dnd agents go to queueAway; everyone else goes to noQueue. Members are
    first ordered by extension, then each column puts available agents first
    and agents in more queues before agents in fewer.

    Args:
        agents: Roster entries.
        include_offline: Whether offline agents are listed at all.

    Returns:
        dict: The three columns (wire format) plus per-status counts.
    """
    members = [
        agent
        for agent in agents
        if agent.name.strip() and (include_offline or agent.status != Status.OFFLINE)
    ]
    members.sort(key=_extension_key)

    queue_available: List[AgentEntry] = []
    queue_away: List[AgentEntry] = []
    no_queue: List[AgentEntry] = []
    counts = {status.value: 0 for status in COUNTED_STATUSES}
    counts[Status.OFFLINE.value] = 0

    for agent in members:
        if agent.status == Status.AVAILABLE:
            (queue_available if agent.queue_count else no_queue).append(agent)
        elif agent.status in BUSY_STATUSES:
            queue_away.append(agent)
        else:
            no_queue.append(agent)

        if agent.status in COUNTED_STATUSES:
            counts[agent.status.value] += 1
        else:
            counts[Status.OFFLINE.value] += 1

    queue_available.sort(key=lambda agent: -agent.queue_count)
    queue_away.sort(key=_availability_then_queues)
    no_queue.sort(key=_availability_then_queues)

    return {
        "queueAvailable": [agent.to_wire() for agent in queue_available],
        "queueAway": [agent.to_wire() for agent in queue_away],
        "noQueue": [agent.to_wire() for agent in no_queue],
        "counts": counts,
        "total": len(members),
    }
