"""Tests for scheduler.py: debouncing and change suppression."""

import asyncio

from threecx_wled.models import Snapshot, Status, StatusResult, Trigger
from threecx_wled.scheduler import CollectionScheduler


class Recorder:
    """collect/publish pair with a settable snapshot."""

    def __init__(self, status=Status.AVAILABLE):
        self.status = status
        self.collected = []
        self.published = []

    async def collect(self, trigger):
        self.collected.append(trigger)
        return Snapshot(status=StatusResult(status=self.status, source="indicator-class:.status"), trigger=trigger)

    async def publish(self, snapshot):
        self.published.append(snapshot)


# ---------------------------------------------------------------------------
# run_cycle
# ---------------------------------------------------------------------------


class TestRunCycle:
    def test_interval_always_publishes(self):
        rec = Recorder()
        scheduler = CollectionScheduler(rec.collect, rec.publish)

        async def scenario():
            return [await scheduler.run_cycle(Trigger.INTERVAL) for _ in range(3)]

        assert asyncio.run(scenario()) == [True, True, True]
        assert len(rec.published) == 3

    def test_unchanged_observer_cycle_is_suppressed(self):
        rec = Recorder()
        scheduler = CollectionScheduler(rec.collect, rec.publish)

        async def scenario():
            first = await scheduler.run_cycle(Trigger.INITIAL)
            second = await scheduler.run_cycle(Trigger.OBSERVER)
            rec.status = Status.ON_CALL
            third = await scheduler.run_cycle(Trigger.OBSERVER)
            return first, second, third

        assert asyncio.run(scenario()) == (True, False, True)
        assert [s.status.status for s in rec.published] == [Status.AVAILABLE, Status.ON_CALL]

    def test_collect_failure_is_not_published(self):
        rec = Recorder()

        async def failing(trigger):
            raise RuntimeError("page crashed")

        scheduler = CollectionScheduler(failing, rec.publish)

        assert asyncio.run(scheduler.run_cycle(Trigger.INTERVAL)) is False
        assert rec.published == []
        assert scheduler.cycles_run == 1

    def test_publish_failure_does_not_raise(self):
        rec = Recorder()

        async def failing(snapshot):
            raise RuntimeError("core unavailable")

        scheduler = CollectionScheduler(rec.collect, failing)

        assert asyncio.run(scheduler.run_cycle(Trigger.INTERVAL)) is True

    def test_one_cycle_in_flight(self):
        active = []
        overlaps = []

        async def slow_collect(trigger):
            if active:
                overlaps.append(trigger)
            active.append(trigger)
            await asyncio.sleep(0.02)
            active.pop()
            return Snapshot(trigger=trigger)

        rec = Recorder()
        scheduler = CollectionScheduler(slow_collect, rec.publish)

        async def scenario():
            await asyncio.gather(
                scheduler.run_cycle(Trigger.INTERVAL),
                scheduler.run_cycle(Trigger.OBSERVER),
                scheduler.run_cycle(Trigger.INTERVAL),
            )

        asyncio.run(scenario())
        assert overlaps == []
        assert scheduler.cycles_run == 3


# ---------------------------------------------------------------------------
# Loop: debounce and interval
# ---------------------------------------------------------------------------


class TestLoop:
    def test_burst_of_changes_runs_one_cycle(self):
        rec = Recorder()
        scheduler = CollectionScheduler(rec.collect, rec.publish, interval=60, debounce=0.05)

        async def scenario():
            await scheduler.start(initial=False)
            for _ in range(10):
                scheduler.notify_change("agent list")
            await asyncio.sleep(0.3)
            await scheduler.stop()

        asyncio.run(scenario())
        assert rec.collected == [Trigger.OBSERVER]

    def test_spread_out_burst_is_coalesced(self):
        rec = Recorder()
        scheduler = CollectionScheduler(rec.collect, rec.publish, interval=60, debounce=0.1)

        async def scenario():
            await scheduler.start(initial=False)
            for _ in range(5):
                scheduler.notify_change()
                await asyncio.sleep(0.02)
            await asyncio.sleep(0.4)
            await scheduler.stop()

        asyncio.run(scenario())
        assert rec.collected == [Trigger.OBSERVER]

    def test_initial_then_interval_heartbeat(self):
        rec = Recorder()
        scheduler = CollectionScheduler(rec.collect, rec.publish, interval=0.05, debounce=0.01)

        async def scenario():
            await scheduler.start()
            await asyncio.sleep(0.18)
            await scheduler.stop()

        asyncio.run(scenario())
        assert rec.collected[0] == Trigger.INITIAL
        assert Trigger.INTERVAL in rec.collected
        # Heartbeats publish even though nothing changed
        assert len(rec.published) == len(rec.collected)

    def test_constant_churn_does_not_starve_heartbeat(self):
        rec = Recorder()
        scheduler = CollectionScheduler(rec.collect, rec.publish, interval=0.3, debounce=0.05)

        async def scenario():
            await scheduler.start(initial=False)
            # A ticking call timer: changes every 20ms, snapshot never differs
            for _ in range(50):
                scheduler.notify_change("queue-stat")
                await asyncio.sleep(0.02)
            await scheduler.stop()

        asyncio.run(scenario())
        published = [s.trigger for s in rec.published]
        assert published.count(Trigger.INTERVAL) >= 2

    def test_stop_cancels_loop(self):
        rec = Recorder()
        scheduler = CollectionScheduler(rec.collect, rec.publish, interval=60)

        async def scenario():
            await scheduler.start(initial=False)
            await scheduler.stop()
            return scheduler.task, scheduler.running

        assert asyncio.run(scenario()) == (None, False)
