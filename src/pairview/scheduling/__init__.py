"""Background refresh/persist scheduling."""

from pairview.scheduling.scheduler import LineState, LineStats, Scheduler, TimerLine

__all__ = ["LineState", "LineStats", "Scheduler", "TimerLine"]
