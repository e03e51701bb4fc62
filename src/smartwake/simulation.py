"""Run a whole night end to end on simulated time.

A controller and a companion are wired over a :class:`LoopbackLink` pair and
driven by one :class:`SimulatedScheduler`.  Simulated sensors produce light
sleep until ``wake_after_min`` minutes into the window (if given), then an
awakening pattern.  Once the alarm rings the simulated user snoozes
``snoozes`` times and then dismisses it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone, tzinfo

from smartwake import config
from smartwake.alarm import AlarmState
from smartwake.clock import SimulatedScheduler
from smartwake.controller import ControllerSession
from smartwake.models import SessionWindow, TriggerEvent, WakeSessionSummary
from smartwake.notify import LogNotifier
from smartwake.sensors import SimulatedHeartRateSource, SimulatedMotionSource, SimulationMode
from smartwake.session import CompanionSession
from smartwake.store import SetupSettings
from smartwake.transport import LoopbackLink

logger = config.get_logger()

LEAD_IN_MIN = 5
RING_BEFORE_ACTION_SEC = 30.0
PUMP_INTERVAL_SEC = 1.0


@dataclass
class NightResult:
    window: SessionWindow
    trigger: TriggerEvent | None = None
    summary: WakeSessionSummary | None = None
    stored_summaries: int = 0
    snoozes: int = 0
    cues: int = 0
    phases: list[tuple[datetime, str]] = field(default_factory=list)


def _pump(companion_link: LoopbackLink, controller_link: LoopbackLink,
          companion: CompanionSession, controller: ControllerSession) -> None:
    for data in companion_link.drain():
        companion.handle(data)
    for data in controller_link.drain():
        controller.handle(data)


def simulate_night(
    settings: SetupSettings,
    effective_date: date,
    tz: tzinfo = timezone.utc,
    wake_after_min: float | None = None,
    snoozes: int = 0,
    motion_hz: float = 25.0,
    heart_rate: bool = True,
    seed: int | None = 0,
) -> NightResult:
    """Simulate one wake session and return what happened."""
    schedule = settings.to_schedule()
    window = SessionWindow.from_schedule(schedule, effective_date, tz)
    start = window.window_arm_time - timedelta(minutes=LEAD_IN_MIN)
    scheduler = SimulatedScheduler(start)
    companion_link, controller_link = LoopbackLink.pair()

    motion = SimulatedMotionSource(
        scheduler, rate_hz=motion_hz, mode=SimulationMode.LIGHT_SLEEP, seed=seed
    )
    hr = SimulatedHeartRateSource(
        scheduler,
        mode=SimulationMode.LIGHT_SLEEP,
        seed=None if seed is None else seed + 1,
        available=heart_rate,
    )
    companion = CompanionSession(
        companion_link, scheduler, tz, motion_source=motion, heart_rate_source=hr
    )
    controller = ControllerSession(
        controller_link, scheduler, tz, notifier=LogNotifier(scheduler)
    )
    controller.settings = settings

    if wake_after_min is not None:
        def _wake_up() -> None:
            logger.info("Simulated user starts waking up")
            motion.set_mode(SimulationMode.AWAKENING)
            hr.set_mode(SimulationMode.AWAKENING)

        onset = window.window_start_time + timedelta(minutes=wake_after_min)
        scheduler.call_later((onset - start).total_seconds(), _wake_up)

    result = NightResult(window=window)

    controller.sync_schedule(start)
    companion.start()
    companion_link.drain()  # start() already applied the received context
    scheduler.call_every(
        PUMP_INTERVAL_SEC, lambda: _pump(companion_link, controller_link, companion, controller)
    )

    last_state = None
    deadline = window.target_wake_time + timedelta(minutes=1)
    while scheduler.now() < deadline and companion.alarm.state != AlarmState.RINGING:
        scheduler.advance(1.0)
        if companion.state != last_state:
            last_state = companion.state
            result.phases.append((scheduler.now(), last_state))

    if companion.triggers:
        result.trigger = companion.triggers[0]
        for _ in range(snoozes):
            scheduler.advance(RING_BEFORE_ACTION_SEC)
            resume_at = companion.snooze()
            if resume_at is None:
                break
            result.snoozes += 1
            scheduler.run_until(resume_at)
        scheduler.advance(RING_BEFORE_ACTION_SEC)
        result.summary = companion.dismiss()
        result.cues = companion.alarm.cue_count
        scheduler.advance(PUMP_INTERVAL_SEC)

    companion.stop()
    _pump(companion_link, controller_link, companion, controller)
    result.stored_summaries = len(controller.history)
    return result
