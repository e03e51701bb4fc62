"""Arming state machine: map (schedule, now) to the session phase.

Phases for one session window::

    now <= arm_time                 Idle
    arm_time < now <= window_start  Armed
    window_start < now < target     Monitoring
    now >= target                   Idle (unless triggered)

The machine is re-evaluated on every schedule update and every 1 s tick
and returns the commands the owning session must carry out.  Once
Monitoring has been entered the phase only moves forward; going back
requires :meth:`ArmingStateMachine.cancel` or :meth:`ArmingStateMachine.reset`.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, tzinfo
from enum import Enum
from typing import Union

from smartwake import config
from smartwake.models import AlarmSchedule, Sensitivity, SessionWindow

logger = config.get_logger()


class Phase(str, Enum):
    IDLE = "idle"
    ARMED = "armed"
    MONITORING = "monitoring"
    TRIGGERED = "triggered"


def derive_phase(window: SessionWindow, now: datetime) -> Phase:
    """Time-only phase of ``window`` at ``now`` (never Triggered)."""
    if now <= window.window_arm_time:
        return Phase.IDLE
    if now <= window.window_start_time:
        return Phase.ARMED
    if now < window.target_wake_time:
        return Phase.MONITORING
    return Phase.IDLE


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StartMonitoring:
    target_wake_time: datetime
    window_start_time: datetime
    sensitivity: Sensitivity


@dataclass(frozen=True)
class StopMonitoring:
    pass


@dataclass(frozen=True)
class SessionEnded:
    """The target passed while still monitoring and nothing fired."""

    target_wake_time: datetime


Command = Union[StartMonitoring, StopMonitoring, SessionEnded]


class ArmingStateMachine:
    """Forward-only phase tracker for the current schedule."""

    def __init__(self, tz: tzinfo) -> None:
        self.tz = tz
        self.schedule: AlarmSchedule | None = None
        self.effective_date: date | None = None
        self.window: SessionWindow | None = None
        self.phase = Phase.IDLE
        self._completed: SessionWindow | None = None

    def receive_schedule(
        self,
        schedule: AlarmSchedule,
        effective_date: date,
        now: datetime,
    ) -> list[Command]:
        """Apply a schedule from the controller.  Re-delivery is a no-op."""
        if schedule == self.schedule and effective_date == self.effective_date:
            return []

        commands: list[Command] = []
        if self.phase == Phase.MONITORING:
            commands.append(StopMonitoring())
        if self.phase != Phase.TRIGGERED:
            self.phase = Phase.IDLE

        self.schedule = schedule
        self.effective_date = effective_date
        self.window = SessionWindow.from_schedule(schedule, effective_date, self.tz)
        logger.info(
            "Schedule %s (%d min, %s, enabled=%s) for %s",
            schedule.wake_time_local,
            schedule.window_minutes,
            schedule.sensitivity.value,
            schedule.enabled,
            effective_date.isoformat(),
        )
        return commands + self._evaluate(now)

    def cancel(self) -> list[Command]:
        """Drop the schedule and return to Idle."""
        commands: list[Command] = []
        if self.phase == Phase.MONITORING:
            commands.append(StopMonitoring())
        self.schedule = None
        self.effective_date = None
        self.window = None
        self.phase = Phase.IDLE
        return commands

    def tick(self, now: datetime) -> list[Command]:
        return self._evaluate(now)

    def mark_triggered(self) -> None:
        """Record that the orchestrator fired for the current window."""
        if self.window is None:
            return
        self.phase = Phase.TRIGGERED
        self._completed = self.window

    def reset(self) -> None:
        """Leave Triggered after dismissal; the finished window stays done."""
        if self.phase == Phase.MONITORING:
            logger.warning("Reset while monitoring; window %s abandoned", self.window)
        if self.window is not None and self.phase == Phase.MONITORING:
            self._completed = self.window
        self.phase = Phase.IDLE

    def _evaluate(self, now: datetime) -> list[Command]:
        if self.phase == Phase.TRIGGERED:
            return []

        window = self.window
        if window is None or self.schedule is None or not self.schedule.enabled:
            self.phase = Phase.IDLE
            return []

        if self.phase == Phase.MONITORING:
            if now >= window.target_wake_time:
                self.phase = Phase.IDLE
                self._completed = window
                return [SessionEnded(window.target_wake_time)]
            return []

        if window == self._completed:
            self.phase = Phase.IDLE
            return []

        phase = derive_phase(window, now)
        if phase == Phase.MONITORING:
            self.phase = Phase.MONITORING
            return [
                StartMonitoring(
                    target_wake_time=window.target_wake_time,
                    window_start_time=window.window_start_time,
                    sensitivity=self.schedule.sensitivity,
                )
            ]
        self.phase = phase
        return []
