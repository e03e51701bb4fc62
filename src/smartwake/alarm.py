"""Alarm lifecycle: ring, snooze and dismiss, then publish the session summary.

States: Idle -> Ringing -> (Snoozed <-> Ringing) -> Dismissed.

While ringing a cue plays immediately and then every ``cue_interval_sec``.
Snoozing silences the cue and re-enters Ringing exactly once at
``resume_at``; it does not re-evaluate wakeability.  Dismissal builds one
:class:`WakeSessionSummary` and writes it to the replicated context.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Sequence

from smartwake import config, protocol
from smartwake.clock import Scheduler, TimerGroup
from smartwake.exceptions import TransportUnreachableError
from smartwake.models import ScoreUpdate, TriggerEvent, TriggerReason, WakeSessionSummary
from smartwake.transport import SyncLink

logger = config.get_logger()

SNOOZE_SEC = 5 * 60.0
CUE_INTERVAL_SEC = 2.0
# Estimated battery drain per monitored minute (%).
BATTERY_PER_MINUTE = 0.5


class AlarmState(str, Enum):
    IDLE = "idle"
    RINGING = "ringing"
    SNOOZED = "snoozed"
    DISMISSED = "dismissed"


@dataclass(frozen=True)
class AlarmConfig:
    snooze_sec: float = SNOOZE_SEC
    cue_interval_sec: float = CUE_INTERVAL_SEC
    battery_per_minute: float = BATTERY_PER_MINUTE


def estimate_battery_impact(window_minutes: float, per_minute: float = BATTERY_PER_MINUTE) -> int:
    """Whole-percent battery estimate, rounding halves up."""
    return int(math.floor(window_minutes * per_minute + 0.5))


def build_summary(
    event: TriggerEvent,
    window_start: datetime,
    target: datetime,
    recent_scores: Sequence[ScoreUpdate],
    per_minute: float = BATTERY_PER_MINUTE,
) -> WakeSessionSummary:
    best = max(recent_scores, key=lambda u: u.score) if recent_scores else None
    window_minutes = (target - window_start).total_seconds() / 60.0
    return WakeSessionSummary(
        window_start_at=window_start,
        window_end_at=target,
        fired_at=event.timestamp,
        reason=event.reason,
        score_at_fire=event.score,
        best_candidate_at=best.timestamp if best is not None else None,
        best_score=best.score if best is not None else None,
        battery_impact_estimate=estimate_battery_impact(window_minutes, per_minute),
    )


def fallback_summary(now: datetime) -> WakeSessionSummary:
    """Degraded summary used when the trigger metadata is missing at dismissal."""
    return WakeSessionSummary(
        window_start_at=now,
        window_end_at=now,
        fired_at=now,
        reason=TriggerReason.FORCED,
        score_at_fire=0.0,
    )


class AlarmLifecycle:
    """Drives the ringing cue, snooze timer and dismissal of one alarm."""

    def __init__(
        self,
        link: SyncLink,
        scheduler: Scheduler,
        cue: Callable[[], None] | None = None,
        config: AlarmConfig | None = None,
    ) -> None:
        self.link = link
        self.scheduler = scheduler
        self.cue = cue
        self.config = config or AlarmConfig()

        self.state = AlarmState.IDLE
        self.resume_at: datetime | None = None
        self.snooze_count = 0
        self.cue_count = 0
        self.trigger_event: TriggerEvent | None = None
        self.target_wake_time: datetime | None = None
        self.window_start_time: datetime | None = None
        self.recent_scores: list[ScoreUpdate] = []
        self.summary: WakeSessionSummary | None = None

        self._cue_timers = TimerGroup()
        self._snooze_timers = TimerGroup()

    @property
    def active(self) -> bool:
        return self.state in (AlarmState.RINGING, AlarmState.SNOOZED)

    def ring(
        self,
        event: TriggerEvent,
        target_wake_time: datetime | None,
        window_start_time: datetime | None,
        recent_scores: Sequence[ScoreUpdate] = (),
    ) -> None:
        """Start ringing for ``event``.  Ignored while an alarm is already active."""
        if self.active:
            logger.warning("Alarm already %s; ignoring trigger at %s", self.state.value, event.timestamp)
            return
        self.trigger_event = event
        self.target_wake_time = target_wake_time
        self.window_start_time = window_start_time
        self.recent_scores = list(recent_scores)
        self.snooze_count = 0
        self.resume_at = None
        self.summary = None
        self._start_ringing()

    def _start_ringing(self) -> None:
        self.state = AlarmState.RINGING
        self._cue_timers.cancel()
        self._play_cue()
        self._cue_timers.add(self.scheduler.call_every(self.config.cue_interval_sec, self._play_cue))

    def _play_cue(self) -> None:
        if self.state != AlarmState.RINGING:
            return
        self.cue_count += 1
        if self.cue is not None:
            self.cue()

    def snooze(self, now: datetime | None = None) -> datetime | None:
        """Silence the alarm and schedule one re-ring; returns ``resume_at``."""
        if self.state != AlarmState.RINGING:
            return None
        if now is None:
            now = self.scheduler.now()
        self.snooze_count += 1
        self.resume_at = now + timedelta(seconds=self.config.snooze_sec)
        self.state = AlarmState.SNOOZED
        self._cue_timers.cancel()
        self._snooze_timers.cancel()
        self._snooze_timers.add(self.scheduler.call_later(self.config.snooze_sec, self._resume))
        logger.info("Snoozed (#%d) until %s", self.snooze_count, self.resume_at.isoformat())
        return self.resume_at

    def _resume(self) -> None:
        self._snooze_timers.cancel()
        if self.state != AlarmState.SNOOZED:
            return
        self.resume_at = None
        self._start_ringing()

    def stop(self, now: datetime | None = None) -> WakeSessionSummary | None:
        """Dismiss the alarm and publish its summary.  Repeat calls return the same summary."""
        if self.state == AlarmState.DISMISSED:
            return self.summary
        if self.state == AlarmState.IDLE:
            return None
        if now is None:
            now = self.scheduler.now()

        self.state = AlarmState.DISMISSED
        self.resume_at = None
        self._cue_timers.cancel()
        self._snooze_timers.cancel()

        event = self.trigger_event
        if event is None or self.window_start_time is None or self.target_wake_time is None:
            logger.warning(
                "Session metadata missing at dismissal (event=%s, window_start=%s, target=%s); "
                "using fallback summary",
                event is not None,
                self.window_start_time is not None,
                self.target_wake_time is not None,
            )
            summary = fallback_summary(now)
        else:
            summary = build_summary(
                event,
                self.window_start_time,
                self.target_wake_time,
                self.recent_scores,
                self.config.battery_per_minute,
            )
        self.summary = summary

        try:
            self.link.update_context(
                protocol.encode(protocol.SessionSummaryPayload(summary), sent_at=now)
            )
        except TransportUnreachableError:
            logger.warning("session_summary not delivered; controller will see it on reconnect")
        logger.info("Dismissed: %r", summary)
        return summary

    def reset(self) -> None:
        """Return to Idle so the next trigger can ring."""
        self._cue_timers.cancel()
        self._snooze_timers.cancel()
        self.state = AlarmState.IDLE
        self.resume_at = None
