"""Companion-side session: arming, monitoring and alarm behind one entry point.

The session owns the 1 s arming tick, applies inbound sync messages through
the arming state machine, turns arming commands into orchestrator calls and
forwards triggers into the alarm lifecycle.  Every collaborator is passed
to the constructor.
"""

from __future__ import annotations

from datetime import datetime, tzinfo
from typing import Callable, Sequence

from smartwake import config, protocol
from smartwake.alarm import AlarmConfig, AlarmLifecycle
from smartwake.analytics.score import WakeabilityScoreCalculator
from smartwake.arming import (
    ArmingStateMachine,
    Command,
    SessionEnded,
    StartMonitoring,
    StopMonitoring,
)
from smartwake.clock import Scheduler, TimerGroup
from smartwake.exceptions import EnvelopeDecodeError, TransportUnreachableError
from smartwake.models import HeartRateSample, MotionSample, TriggerEvent, WakeSessionSummary
from smartwake.monitoring import MonitoringConfig, MonitoringOrchestrator
from smartwake.sensors import SensorSource
from smartwake.transport import SyncLink

logger = config.get_logger()

ARMING_TICK_SEC = 1.0
REACHABILITY_POLL_SEC = 2.0


class CompanionSession:
    """Wake session running on the sensor-bearing device."""

    def __init__(
        self,
        link: SyncLink,
        scheduler: Scheduler,
        tz: tzinfo,
        motion_source: SensorSource[MotionSample] | None = None,
        heart_rate_source: SensorSource[HeartRateSample] | None = None,
        cue: Callable[[], None] | None = None,
        calculator: WakeabilityScoreCalculator | None = None,
        monitoring_config: MonitoringConfig | None = None,
        alarm_config: AlarmConfig | None = None,
    ) -> None:
        self.link = link
        self.scheduler = scheduler
        self.arming = ArmingStateMachine(tz)
        self.monitoring = MonitoringOrchestrator(
            motion_source,
            heart_rate_source,
            link,
            scheduler,
            calculator=calculator,
            config=monitoring_config,
            on_trigger=self._on_trigger,
        )
        self.alarm = AlarmLifecycle(link, scheduler, cue=cue, config=alarm_config)
        self.is_reachable = False
        self.triggers: list[TriggerEvent] = []
        self._timers = TimerGroup()

    @property
    def state(self) -> str:
        """Alarm state while an alarm is active, otherwise the arming phase."""
        if self.alarm.active:
            return self.alarm.state.value
        return self.arming.phase.value

    # -- lifecycle ---------------------------------------------------------

    def start(self) -> None:
        """Restore the last replicated context and start the periodic ticks."""
        self._timers.cancel()
        self.refresh_reachability()
        context = self.link.received_context()
        if context is not None:
            logger.info("Restoring last received context")
            self.handle(context)
        self._timers.add(self.scheduler.call_every(ARMING_TICK_SEC, self.tick))
        self._timers.add(self.scheduler.call_every(REACHABILITY_POLL_SEC, self.refresh_reachability))

    def stop(self) -> None:
        self._timers.cancel()
        self.monitoring.stop()
        self.alarm.reset()

    async def run(self) -> None:
        """Start, then apply inbound messages until the link closes."""
        self.start()
        try:
            async for data in self.link.messages():
                self.handle(data)
        finally:
            self.stop()

    def refresh_reachability(self) -> bool:
        self.is_reachable = self.link.is_reachable()
        return self.is_reachable

    # -- arming ------------------------------------------------------------

    def tick(self, now: datetime | None = None) -> None:
        if now is None:
            now = self.scheduler.now()
        self._apply(self.arming.tick(now), now)

    def _apply(self, commands: Sequence[Command], now: datetime) -> None:
        for command in commands:
            if isinstance(command, StartMonitoring):
                self.monitoring.start(command)
            elif isinstance(command, StopMonitoring):
                self.monitoring.stop()
            elif isinstance(command, SessionEnded):
                logger.warning("Target reached without a trigger; running final evaluation")
                if self.monitoring.tick(now) is None:
                    self.monitoring.stop()

    def _on_trigger(self, event: TriggerEvent) -> None:
        self.triggers.append(event)
        self.arming.mark_triggered()
        self.alarm.ring(
            event,
            self.monitoring.target_wake_time,
            self.monitoring.window_start_time,
            self.monitoring.recent_scores,
        )

    # -- inbound -----------------------------------------------------------

    def handle(self, data: bytes) -> protocol.Envelope | None:
        """Apply one inbound envelope.  Undecodable or unknown data is dropped."""
        try:
            envelope = protocol.decode(data)
        except EnvelopeDecodeError:
            return None

        payload = envelope.payload
        now = self.scheduler.now()
        if isinstance(payload, protocol.UpdateSchedulePayload):
            self._apply(
                self.arming.receive_schedule(payload.schedule, payload.effective_date, now),
                now,
            )
        elif isinstance(payload, protocol.CancelSchedulePayload):
            logger.info("Schedule cancelled for %s", payload.effective_date.isoformat())
            self._apply(self.arming.cancel(), now)
        elif isinstance(payload, protocol.PingPayload):
            self._reply_state(now)
        else:
            logger.debug("Ignoring %s on companion", envelope.type.value)
        return envelope

    def _reply_state(self, now: datetime) -> None:
        score = self.monitoring.current_score
        payload = protocol.SessionStatePayload(
            state=self.state,
            last_score=score.score if score is not None else None,
        )
        try:
            self.link.send(protocol.encode(payload, sent_at=now))
        except TransportUnreachableError:
            self.is_reachable = False

    # -- user actions ------------------------------------------------------

    def snooze(self) -> datetime | None:
        return self.alarm.snooze()

    def dismiss(self) -> WakeSessionSummary | None:
        summary = self.alarm.stop()
        self.arming.reset()
        return summary

    def __repr__(self) -> str:
        return f"CompanionSession({self.state}, reachable={self.is_reachable})"
