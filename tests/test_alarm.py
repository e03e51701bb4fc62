"""Tests for alarm.py — cue loop, snooze and dismissal summary."""

from datetime import timedelta

import pytest

from smartwake import protocol
from smartwake.alarm import (
    AlarmLifecycle,
    AlarmState,
    build_summary,
    estimate_battery_impact,
)
from smartwake.models import ScoreComponents, TriggerEvent, TriggerReason
from tests.conftest import TARGET, at, make_updates

WINDOW_START = TARGET - timedelta(minutes=30)


def smart_event(when=None, score=0.8) -> TriggerEvent:
    return TriggerEvent(
        reason=TriggerReason.SMART,
        timestamp=when or at(90),
        score=score,
        components=ScoreComponents(0.8, 0.8),
    )


@pytest.fixture
def alarm(scheduler, links):
    companion, _ = links
    cues = []
    lifecycle = AlarmLifecycle(companion, scheduler, cue=lambda: cues.append(scheduler.now()))
    lifecycle.cues = cues
    return lifecycle


class TestBatteryImpact:
    @pytest.mark.parametrize(
        "minutes,expected", [(30, 15), (20, 10), (45, 23), (1, 1), (0, 0), (3, 2)]
    )
    def test_rounds_half_up(self, minutes, expected):
        assert estimate_battery_impact(minutes) == expected


class TestBuildSummary:
    def test_best_candidate(self):
        history = make_updates([0.5, 0.9, 0.8], end=at(90))
        summary = build_summary(smart_event(), WINDOW_START, TARGET, history)
        assert summary.best_score == pytest.approx(0.9)
        assert summary.best_candidate_at == at(60)
        assert summary.battery_impact_estimate == 15
        assert summary.window_start_at == WINDOW_START
        assert summary.window_end_at == TARGET
        assert summary.reason == TriggerReason.SMART

    def test_no_history(self):
        summary = build_summary(smart_event(), WINDOW_START, TARGET, [])
        assert summary.best_score is None
        assert summary.best_candidate_at is None


class TestRinging:
    def test_cue_immediately_then_every_two_seconds(self, alarm, scheduler):
        alarm.ring(smart_event(), TARGET, WINDOW_START)
        assert alarm.state == AlarmState.RINGING
        assert alarm.cue_count == 1

        scheduler.advance(6)
        assert alarm.cue_count == 4
        assert alarm.cues[1] - alarm.cues[0] == timedelta(seconds=2)

    def test_second_trigger_ignored_while_active(self, alarm):
        first = smart_event()
        alarm.ring(first, TARGET, WINDOW_START)
        alarm.ring(smart_event(at(120)), TARGET, WINDOW_START)
        assert alarm.trigger_event is first
        assert alarm.cue_count == 1


class TestSnooze:
    def test_snooze_silences_and_resumes_once(self, alarm, scheduler):
        alarm.ring(smart_event(), TARGET, WINDOW_START)
        resume_at = alarm.snooze()
        assert resume_at == scheduler.now() + timedelta(minutes=5)
        assert alarm.state == AlarmState.SNOOZED
        assert alarm.snooze_count == 1

        scheduler.advance(299)
        assert alarm.cue_count == 1

        scheduler.advance(1)
        assert alarm.state == AlarmState.RINGING
        assert alarm.cue_count == 2
        assert alarm.resume_at is None

        scheduler.advance(4)
        assert alarm.cue_count == 4

    def test_snooze_only_while_ringing(self, alarm):
        assert alarm.snooze() is None
        alarm.ring(smart_event(), TARGET, WINDOW_START)
        alarm.snooze()
        assert alarm.snooze() is None
        assert alarm.snooze_count == 1

    def test_repeated_snoozes(self, alarm, scheduler):
        alarm.ring(smart_event(), TARGET, WINDOW_START)
        for _ in range(3):
            alarm.snooze()
            scheduler.advance(300)
        assert alarm.snooze_count == 3
        assert alarm.state == AlarmState.RINGING


class TestStop:
    def test_summary_published(self, alarm, links, scheduler):
        history = make_updates([0.6, 0.74, 0.8], end=at(90))
        alarm.ring(smart_event(), TARGET, WINDOW_START, history)
        scheduler.advance(30)
        summary = alarm.stop()

        assert alarm.state == AlarmState.DISMISSED
        assert summary.fired_at == at(90)
        assert summary.score_at_fire == pytest.approx(0.8)
        assert summary.battery_impact_estimate == 15

        _, controller = links
        envelope = protocol.decode(controller.received_context())
        assert envelope.type == protocol.MessageType.SESSION_SUMMARY
        assert envelope.payload.summary.key == summary.key

    def test_stop_cancels_cue_and_snooze(self, alarm, scheduler):
        alarm.ring(smart_event(), TARGET, WINDOW_START)
        alarm.snooze()
        alarm.stop()
        scheduler.advance(600)
        assert alarm.state == AlarmState.DISMISSED
        assert alarm.cue_count == 1
        assert scheduler.pending == 0

    def test_stop_is_idempotent(self, alarm, links):
        alarm.ring(smart_event(), TARGET, WINDOW_START)
        first = alarm.stop()
        _, controller = links
        controller.drain()
        assert alarm.stop() is first
        assert controller.drain() == []

    def test_stop_when_idle(self, alarm):
        assert alarm.stop() is None

    def test_fallback_summary_when_metadata_missing(self, alarm, scheduler, caplog):
        alarm.ring(smart_event(), None, None)
        summary = alarm.stop()
        assert summary.reason == TriggerReason.FORCED
        assert summary.score_at_fire == 0.0
        assert summary.fired_at == scheduler.now()
        assert summary.best_score is None
        assert "fallback summary" in caplog.text

    def test_unreachable_still_dismisses(self, alarm, links):
        companion, controller = links
        companion.set_reachable(False)
        alarm.ring(smart_event(), TARGET, WINDOW_START)
        summary = alarm.stop()
        assert summary is not None
        companion.set_reachable(True)
        assert protocol.decode(controller.received_context()).payload.summary == summary

    def test_reset_allows_next_ring(self, alarm):
        alarm.ring(smart_event(), TARGET, WINDOW_START)
        alarm.stop()
        alarm.reset()
        assert alarm.state == AlarmState.IDLE
        alarm.ring(smart_event(at(3600)), TARGET, WINDOW_START)
        assert alarm.state == AlarmState.RINGING
