"""Background scheduler with independent refresh and persist lines.

Each line is its own asyncio task that waits one interval, fires, and
repeats. A slow fire on one line never delays the other.

Interval changes redefine the *next* wait. A wait already in progress
keeps the interval it started with.

``stop()`` wakes any pending wait and lets an in-flight fire finish. When
it returns, neither line will fire again.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from pairview.core.exceptions import ConfigurationInvalid, PairViewError
from pairview.core.models import ScheduleConfig
from pairview.pairs.container import PairsContainer
from pairview.storage.sqlite_store import InstrumentStore

logger = logging.getLogger(__name__)


class LineState(StrEnum):
    STOPPED = "stopped"
    RUNNING = "running"


@dataclass
class LineStats:
    """Counters for one timer line."""

    fires: int = 0
    failures: int = 0
    skipped: int = 0
    last_error: str | None = None
    last_fired_at: datetime | None = None


def _check_interval(name: str, value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigurationInvalid(
            f"{name} must be an integer >= 1, got {value!r}",
            context={"field": name, "value": value},
        )
    return value


class TimerLine:
    """One periodic line: wait ``interval * time_unit`` seconds, then fire.

    Fire failures are logged and counted; the line keeps running.
    """

    def __init__(
        self,
        name: str,
        action: Callable[[], Awaitable[object]],
        interval: int,
        time_unit: float = 1.0,
        gate: Callable[[], bool] | None = None,
    ) -> None:
        self.name = name
        self._action = action
        self._interval = _check_interval(f"{name}_interval", interval)
        self._interval_lock = threading.Lock()
        self._time_unit = time_unit
        self._gate = gate
        self._stopping: asyncio.Event | None = None
        self._task: asyncio.Task | None = None  # type: ignore[type-arg]
        self.stats = LineStats()

    @property
    def interval(self) -> int:
        with self._interval_lock:
            return self._interval

    @interval.setter
    def interval(self, value: int) -> None:
        value = _check_interval(f"{self.name}_interval", value)
        with self._interval_lock:
            self._interval = value
        logger.info("%s interval set to %d (applies from the next wait)", self.name, value)

    @property
    def state(self) -> LineState:
        return LineState.RUNNING if self._task is not None else LineState.STOPPED

    def start(self) -> None:
        if self._task is not None:
            logger.warning("%s line already running", self.name)
            return
        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name=f"pairview-{self.name}")
        logger.info("%s line started (interval=%d)", self.name, self.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stopping.set()
        try:
            await self._task
        finally:
            self._task = None
        logger.info("%s line stopped", self.name)

    async def _run(self) -> None:
        while not self._stopping.is_set():
            wait = self.interval * self._time_unit
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=wait)
            except asyncio.TimeoutError:
                pass
            if self._stopping.is_set():
                break
            await self._fire()

    async def _fire(self) -> None:
        if self._gate is not None and not self._gate():
            self.stats.skipped += 1
            logger.debug("%s fire skipped outside session window", self.name)
            return
        self.stats.last_fired_at = datetime.now()
        try:
            await self._action()
        except PairViewError as e:
            self.stats.failures += 1
            self.stats.last_error = str(e)
            logger.warning("%s fire failed, retrying next tick: %s", self.name, e)
        except Exception as e:
            self.stats.failures += 1
            self.stats.last_error = str(e)
            logger.exception("%s fire raised unexpectedly", self.name)
        else:
            self.stats.fires += 1


class Scheduler:
    """Drives periodic refresh-from-provider and persist-to-store cycles.

    Parameters
    ----------
    container : PairsContainer
        Shared pair state; refreshed by one line, read by the other.
    store : InstrumentStore
        Destination of the persist line.
    config : ScheduleConfig
        Initial intervals and optional session window.
    time_unit : float
        Seconds per interval unit. Default: 1.0.
    clock : Callable[[], datetime]
        Used for session-window checks.
    """

    def __init__(
        self,
        container: PairsContainer,
        store: InstrumentStore,
        config: ScheduleConfig | None = None,
        time_unit: float = 1.0,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        config = config or ScheduleConfig()
        self._container = container
        self._store = store
        self._session = config.session
        self._clock = clock
        self._refresh = TimerLine(
            "refresh",
            container.refresh,
            config.refresh_interval,
            time_unit,
            gate=self._in_session if config.session is not None else None,
        )
        self._persist = TimerLine(
            "persist",
            self._persist_once,
            config.persist_interval,
            time_unit,
        )

    @property
    def refresh_line(self) -> TimerLine:
        return self._refresh

    @property
    def persist_line(self) -> TimerLine:
        return self._persist

    @property
    def is_running(self) -> bool:
        return self._refresh.state == LineState.RUNNING or self._persist.state == LineState.RUNNING

    async def start(self) -> None:
        """Start both lines. Must be called from a running event loop."""
        self._refresh.start()
        self._persist.start()

    async def stop(self) -> None:
        """Stop both lines, letting any in-flight fire complete."""
        await asyncio.gather(self._refresh.stop(), self._persist.stop())

    def set_refresh_interval(self, interval: int) -> None:
        self._refresh.interval = interval

    def set_persist_interval(self, interval: int) -> None:
        self._persist.interval = interval

    async def _persist_once(self) -> int:
        return await self._container.persist(self._store)

    def _in_session(self) -> bool:
        return self._session.contains(self._clock().time())
