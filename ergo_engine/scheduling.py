"""Periodic task records driven by one central tick."""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List

logger = logging.getLogger("ergo.engine.scheduling")


@dataclass
class ScheduledTask:
    name: str
    interval: float
    last_fire_at: float
    action: Callable[[float], None]

    def is_due(self, now: float) -> bool:
        return (now - self.last_fire_at) >= self.interval


class TaskScheduler:
    """
    Owns a set of ScheduledTask records. ``tick(now)`` fires every due task
    once and stamps it with ``now``; there are no background threads, so a
    test can drive it with any clock.
    """

    def __init__(self):
        self._tasks: Dict[str, ScheduledTask] = {}

    def add(self, name: str, interval: float, action: Callable[[float], None], now: float) -> ScheduledTask:
        task = ScheduledTask(name=name, interval=interval, last_fire_at=now, action=action)
        self._tasks[name] = task
        return task

    def remove(self, name: str) -> None:
        self._tasks.pop(name, None)

    def tick(self, now: float) -> List[str]:
        fired = []
        for task in list(self._tasks.values()):
            if task.interval > 0 and task.is_due(now):
                task.last_fire_at = now
                task.action(now)
                fired.append(task.name)
        return fired
