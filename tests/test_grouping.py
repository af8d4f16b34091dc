"""Tests for grouping.py: dashboard team columns."""

from conftest import make_agent
from threecx_wled.grouping import group_roster
from threecx_wled.models import AgentEntry, Status


def ids(column):
    return [agent["id"] for agent in column]


class TestGroupRoster:
    def test_columns(self):
        agents = [
            make_agent(101, "Queued", Status.AVAILABLE, queues="Sales"),
            make_agent(102, "Unqueued", Status.AVAILABLE),
            make_agent(103, "Lunch", Status.AWAY, queues="Sales"),
            make_agent(104, "Talking", Status.ON_CALL),
            make_agent(105, "Busy", Status.DND),
            make_agent(106, "Gone", Status.OFFLINE, queues="Sales"),
            make_agent(107, "Phone", Status.RINGING),
        ]

        grouped = group_roster(agents)

        assert ids(grouped["queueAvailable"]) == ["101"]
        assert set(ids(grouped["queueAway"])) == {"103", "104", "105"}
        assert set(ids(grouped["noQueue"])) == {"102", "106", "107"}
        assert grouped["total"] == 7

    def test_blank_names_dropped(self):
        agents = [make_agent(101, "Alice"), AgentEntry.model_construct(id="102", extension="102", name="  ")]
        assert group_roster(agents)["total"] == 1

    def test_offline_filter(self):
        agents = [make_agent(101, "Alice"), make_agent(102, "Bob", Status.OFFLINE)]
        grouped = group_roster(agents, include_offline=False)
        assert grouped["total"] == 1
        assert ids(grouped["noQueue"]) == ["101"]

    def test_queue_available_sorted_by_queue_count(self):
        agents = [
            make_agent(101, "One", queues="A"),
            make_agent(102, "Three", queues="A,B,C"),
            make_agent(103, "Two", queues="A,B"),
        ]
        assert ids(group_roster(agents)["queueAvailable"]) == ["102", "103", "101"]

    def test_no_queue_available_first_then_extension(self):
        agents = [
            make_agent(120, "Offline", Status.OFFLINE),
            make_agent(110, "Available", Status.AVAILABLE),
            make_agent(105, "Ringing", Status.RINGING),
            make_agent(9, "Also available", Status.AVAILABLE),
        ]
        # Numeric extension order is kept among equals
        assert ids(group_roster(agents)["noQueue"]) == ["9", "110", "105", "120"]

    def test_counts(self):
        agents = [
            make_agent(101, "A", Status.AVAILABLE),
            make_agent(102, "B", Status.ON_CALL),
            make_agent(103, "C", Status.RINGING),
            make_agent(104, "D", Status.OFFLINE),
        ]
        counts = group_roster(agents)["counts"]
        assert counts == {"available": 1, "onCall": 1, "dnd": 0, "away": 0, "offline": 2}

    def test_empty(self):
        grouped = group_roster([])
        assert grouped["queueAvailable"] == grouped["queueAway"] == grouped["noQueue"] == []
