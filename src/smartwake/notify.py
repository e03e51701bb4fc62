"""Deadline-miss fallback notifications on the controller.

The controller schedules a fallback at the target wake time whenever it
pushes an enabled schedule, and cancels it once the companion reports that
the alarm fired.  Notifiers only ever see the target time.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from smartwake import config
from smartwake.clock import Scheduler, TimerGroup

logger = config.get_logger()


class NotificationSource(Protocol):
    def schedule_fallback(self, at: datetime) -> None: ...

    def cancel_fallback(self) -> None: ...


class LogNotifier:
    """Fallback notifier that logs a wake-up reminder when the target passes.

    Scheduling again replaces the pending fallback.
    """

    message = "Wake-up time: check the alarm on your companion device."

    def __init__(self, scheduler: Scheduler) -> None:
        self.scheduler = scheduler
        self.scheduled_at: datetime | None = None
        self.delivered: list[datetime] = []
        self._timers = TimerGroup()

    def schedule_fallback(self, at: datetime) -> None:
        self._timers.cancel()
        self.scheduled_at = at
        delay = (at - self.scheduler.now()).total_seconds()
        self._timers.add(self.scheduler.call_later(delay, self._deliver))
        logger.info("Fallback notification scheduled for %s", at.isoformat())

    def cancel_fallback(self) -> None:
        if self.scheduled_at is not None:
            logger.info("Fallback notification for %s cancelled", self.scheduled_at.isoformat())
        self._timers.cancel()
        self.scheduled_at = None

    def _deliver(self) -> None:
        at, self.scheduled_at = self.scheduled_at, None
        if at is None:
            return
        self.delivered.append(at)
        logger.warning(self.message)
