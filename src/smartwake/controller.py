"""Controller-side session: push the schedule, collect what the companion reports."""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime, time, timedelta, tzinfo

from smartwake import config, protocol
from smartwake.clock import Scheduler
from smartwake.exceptions import EnvelopeDecodeError, TransportUnreachableError
from smartwake.models import SessionWindow
from smartwake.notify import NotificationSource
from smartwake.store import SessionHistory, SettingsStore, SetupSettings
from smartwake.transport import SyncLink

logger = config.get_logger()


def effective_date_for(settings: SetupSettings, now_local: datetime) -> date:
    """Today if the wake time is still ahead of ``now_local``, else tomorrow."""
    wake_today = datetime.combine(
        now_local.date(),
        time(settings.wake_hour, settings.wake_minute),
        tzinfo=now_local.tzinfo,
    )
    if wake_today <= now_local:
        return now_local.date() + timedelta(days=1)
    return now_local.date()


class ControllerSession:
    """Wake session running on the controller device.

    Attributes:
        last_sync_at: When the schedule was last written to the link.
        error_message: Why the last sync failed, or None.
        is_reachable: Last observed peer reachability.
        last_alarm_fired: Most recent ``alarm_fired`` payload received.
        companion_state: Most recent ``session_state`` reply received.
    """

    def __init__(
        self,
        link: SyncLink,
        scheduler: Scheduler,
        tz: tzinfo,
        settings_store: SettingsStore | None = None,
        history: SessionHistory | None = None,
        notifier: NotificationSource | None = None,
    ) -> None:
        self.link = link
        self.scheduler = scheduler
        self.tz = tz
        self.settings_store = settings_store
        self.settings = settings_store.load() if settings_store is not None else SetupSettings()
        self.history = history if history is not None else SessionHistory()
        self.notifier = notifier

        self.effective_date: date | None = None
        self.last_sync_at: datetime | None = None
        self.error_message: str | None = None
        self.is_reachable = False
        self.last_alarm_fired: protocol.AlarmFiredPayload | None = None
        self.companion_state: protocol.SessionStatePayload | None = None

    def update_settings(self, **changes) -> SetupSettings:
        self.settings = replace(self.settings, **changes)
        if self.settings_store is not None:
            self.settings_store.save(self.settings)
        return self.settings

    # -- outbound ----------------------------------------------------------

    def sync_schedule(self, now: datetime | None = None) -> protocol.UpdateSchedulePayload:
        """Write the current settings to the replicated context."""
        if now is None:
            now = self.scheduler.now()
        now_local = now.astimezone(self.tz)

        schedule = self.settings.to_schedule()
        effective = effective_date_for(self.settings, now_local)
        payload = protocol.UpdateSchedulePayload(schedule=schedule, effective_date=effective)
        try:
            self.link.update_context(protocol.encode(payload, sent_at=now))
        except TransportUnreachableError as e:
            self.error_message = f"Sync failed: {e}"
        else:
            self.effective_date = effective
            self.last_sync_at = now
            self.error_message = None
            logger.info("Schedule %s synced for %s", schedule.wake_time_local, effective.isoformat())

        if self.notifier is not None:
            if schedule.enabled:
                window = SessionWindow.from_schedule(schedule, effective, self.tz)
                self.notifier.schedule_fallback(window.target_wake_time)
            else:
                self.notifier.cancel_fallback()
        return payload

    def cancel_schedule(self, now: datetime | None = None) -> protocol.CancelSchedulePayload:
        if now is None:
            now = self.scheduler.now()
        effective = self.effective_date or now.astimezone(self.tz).date()
        payload = protocol.CancelSchedulePayload(effective_date=effective)
        try:
            self.link.update_context(protocol.encode(payload, sent_at=now))
        except TransportUnreachableError as e:
            self.error_message = f"Cancel failed: {e}"
        else:
            self.last_sync_at = now
            self.effective_date = None
        if self.notifier is not None:
            self.notifier.cancel_fallback()
        return payload

    def ping(self, now: datetime | None = None) -> bool:
        """Ask the companion for its state; False when it is unreachable."""
        if now is None:
            now = self.scheduler.now()
        try:
            self.link.send(protocol.encode(protocol.PingPayload(timestamp=now), sent_at=now))
        except TransportUnreachableError:
            self.is_reachable = False
            return False
        self.is_reachable = True
        return True

    def refresh_reachability(self) -> bool:
        self.is_reachable = self.link.is_reachable()
        return self.is_reachable

    # -- inbound -----------------------------------------------------------

    def handle(self, data: bytes) -> protocol.Envelope | None:
        """Apply one inbound envelope.  Undecodable or unknown data is dropped."""
        try:
            envelope = protocol.decode(data)
        except EnvelopeDecodeError:
            return None

        payload = envelope.payload
        if isinstance(payload, protocol.AlarmFiredPayload):
            self.last_alarm_fired = payload
            logger.info(
                "Companion fired (%s) at %s, score %.2f",
                payload.reason.value,
                payload.fired_at.isoformat(),
                payload.score_at_fire,
            )
            if self.notifier is not None:
                self.notifier.cancel_fallback()
        elif isinstance(payload, protocol.SessionSummaryPayload):
            if self.history.add(payload.summary):
                logger.info("Stored %r", payload.summary)
            else:
                logger.debug("Duplicate %r ignored", payload.summary)
            if self.notifier is not None:
                self.notifier.cancel_fallback()
        elif isinstance(payload, protocol.SessionStatePayload):
            self.companion_state = payload
        elif isinstance(payload, protocol.ErrorPayload):
            logger.error("Companion error %s: %s", payload.code, payload.detail)
        else:
            logger.debug("Ignoring %s on controller", envelope.type.value)
        return envelope

    async def run(self) -> None:
        """Apply inbound messages until the link closes."""
        async for data in self.link.messages():
            self.handle(data)

    def __repr__(self) -> str:
        synced = self.last_sync_at.isoformat() if self.last_sync_at else "never"
        return f"ControllerSession({self.settings.wake_time_local}, synced={synced}, summaries={len(self.history)})"
