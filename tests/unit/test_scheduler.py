"""Tests for pairview.scheduling.scheduler.

Intervals are scaled with ``time_unit`` so one unit is 10ms.
"""

import asyncio
from datetime import datetime, time

import pytest

from pairview.core.exceptions import ConfigurationInvalid, SourceUnavailable
from pairview.core.models import ScheduleConfig, SessionWindow
from pairview.pairs import PairsContainer
from pairview.scheduling import LineState, Scheduler, TimerLine

UNIT = 0.01


class SlowStore:
    """InstrumentStore stand-in whose writes take ``delay`` seconds."""

    def __init__(self, delay: float) -> None:
        self.delay = delay
        self.calls = 0

    async def append_new(self, series) -> int:
        self.calls += 1
        await asyncio.sleep(self.delay)
        return len(series)


class TestTimerLine:
    async def test_fires_repeatedly(self):
        calls = []

        async def action():
            calls.append(1)

        line = TimerLine("tick", action, 1, time_unit=UNIT)
        line.start()
        assert line.state == LineState.RUNNING
        await asyncio.sleep(0.1)
        await line.stop()
        assert line.state == LineState.STOPPED
        assert len(calls) >= 3
        assert line.stats.fires == len(calls)

    async def test_invalid_interval_rejected(self):
        async def action():
            pass

        with pytest.raises(ConfigurationInvalid):
            TimerLine("tick", action, 0)
        line = TimerLine("tick", action, 5)
        with pytest.raises(ConfigurationInvalid):
            line.interval = -1
        with pytest.raises(ConfigurationInvalid):
            line.interval = 1.5
        assert line.interval == 5

    async def test_interval_change_applies_to_next_wait(self):
        calls = []

        async def action():
            calls.append(1)

        line = TimerLine("tick", action, 1, time_unit=UNIT)
        line.start()
        await asyncio.sleep(0)
        line.interval = 1000
        await asyncio.sleep(0.1)
        await line.stop()
        assert len(calls) == 1

    async def test_in_flight_fire_completes_on_stop(self):
        started = asyncio.Event()
        finished = []

        async def action():
            started.set()
            await asyncio.sleep(0.05)
            finished.append(1)

        line = TimerLine("slow", action, 1, time_unit=UNIT)
        line.start()
        await asyncio.wait_for(started.wait(), timeout=1.0)
        await line.stop()
        assert finished == [1]
        assert line.stats.fires == 1

    async def test_failures_do_not_stop_line(self):
        attempts = []

        async def action():
            attempts.append(1)
            if len(attempts) % 2:
                raise SourceUnavailable("market data offline")
            raise RuntimeError("boom")

        line = TimerLine("flaky", action, 1, time_unit=UNIT)
        line.start()
        await asyncio.sleep(0.1)
        assert line.state == LineState.RUNNING
        await line.stop()
        assert line.stats.failures == len(attempts) >= 3
        assert line.stats.fires == 0
        assert line.stats.last_error in ("market data offline", "boom")

    async def test_start_twice_is_noop(self):
        async def action():
            pass

        line = TimerLine("tick", action, 1000, time_unit=UNIT)
        line.start()
        task = line._task
        line.start()
        assert line._task is task
        await line.stop()

    async def test_stop_without_start(self):
        async def action():
            pass

        await TimerLine("tick", action, 1).stop()

    async def test_gate_skips_fire(self):
        calls = []

        async def action():
            calls.append(1)

        line = TimerLine("gated", action, 1, time_unit=UNIT, gate=lambda: False)
        line.start()
        await asyncio.sleep(0.05)
        await line.stop()
        assert calls == []
        assert line.stats.skipped >= 1


class TestScheduler:
    async def test_refresh_and_persist(self, store, fake_provider, generations):
        container = PairsContainer(fake_provider(generations(1)))
        scheduler = Scheduler(
            container,
            store,
            ScheduleConfig(refresh_interval=1, persist_interval=2),
            time_unit=UNIT,
        )
        await scheduler.start()
        assert scheduler.is_running
        await asyncio.sleep(0.15)
        await scheduler.stop()
        assert not scheduler.is_running
        assert scheduler.refresh_line.stats.fires >= 3
        assert scheduler.persist_line.stats.fires >= 1
        assert await store.history_length("AAA") == 3

    async def test_no_writes_after_stop(self, fake_provider, generations):
        container = PairsContainer(fake_provider(generations(1)))
        await container.refresh()
        slow = SlowStore(delay=0.0)
        scheduler = Scheduler(
            container,
            slow,
            ScheduleConfig(refresh_interval=1, persist_interval=1),
            time_unit=UNIT,
        )
        await scheduler.start()
        await asyncio.sleep(0.05)
        await scheduler.stop()
        calls = slow.calls
        refreshes = container.generation
        await asyncio.sleep(0.05)
        assert slow.calls == calls
        assert container.generation == refreshes

    async def test_slow_persist_does_not_block_refresh(self, fake_provider, generations):
        container = PairsContainer(fake_provider(generations(1)))
        await container.refresh()
        slow = SlowStore(delay=0.3)
        scheduler = Scheduler(
            container,
            slow,
            ScheduleConfig(refresh_interval=1, persist_interval=1),
            time_unit=UNIT,
        )
        await scheduler.start()
        await asyncio.sleep(0.15)
        assert scheduler.persist_line.stats.fires == 0
        assert scheduler.refresh_line.stats.fires >= 4
        await scheduler.stop()
        assert scheduler.persist_line.stats.fires == 1

    async def test_refresh_failure_keeps_persisting(self, store, fake_provider, generations):
        container = PairsContainer(
            fake_provider(generations(1), SourceUnavailable("directory gone"))
        )
        await container.refresh()
        scheduler = Scheduler(
            container,
            store,
            ScheduleConfig(refresh_interval=1, persist_interval=1),
            time_unit=UNIT,
        )
        await scheduler.start()
        await asyncio.sleep(0.1)
        await scheduler.stop()
        assert scheduler.refresh_line.stats.failures >= 2
        assert scheduler.refresh_line.stats.last_error == "directory gone"
        assert scheduler.persist_line.stats.fires >= 2
        assert await store.history_length("AAA") == 3

    async def test_set_intervals(self, store, fake_provider):
        scheduler = Scheduler(PairsContainer(fake_provider()), store)
        scheduler.set_refresh_interval(7)
        scheduler.set_persist_interval(10**6)
        assert scheduler.refresh_line.interval == 7
        assert scheduler.persist_line.interval == 10**6
        with pytest.raises(ConfigurationInvalid):
            scheduler.set_persist_interval(0)

    async def test_session_window_gates_refresh_only(self, store, fake_provider, generations):
        container = PairsContainer(fake_provider(generations(1)))
        await container.refresh()
        config = ScheduleConfig(
            refresh_interval=1,
            persist_interval=1,
            session=SessionWindow(start=time(9, 30), stop=time(16, 0)),
        )
        scheduler = Scheduler(
            container,
            store,
            config,
            time_unit=UNIT,
            clock=lambda: datetime(2024, 1, 15, 20, 0),
        )
        await scheduler.start()
        await asyncio.sleep(0.08)
        await scheduler.stop()
        assert scheduler.refresh_line.stats.fires == 0
        assert scheduler.refresh_line.stats.skipped >= 2
        assert container.generation == 1
        assert scheduler.persist_line.stats.fires >= 2
