"""Tests for models.py — schedule validation and derived windows."""

from datetime import time, timedelta, timezone

import pytest

from smartwake.exceptions import InvalidScheduleError
from smartwake.models import (
    AlarmSchedule,
    SessionWindow,
    Sensitivity,
    TriggerReason,
    WakeSessionSummary,
    parse_wake_time,
)
from tests.conftest import DAY, TARGET, make_schedule


class TestParseWakeTime:
    @pytest.mark.parametrize("value,expected", [("07:30", time(7, 30)), ("00:00", time(0, 0)), ("23:59", time(23, 59))])
    def test_valid(self, value, expected):
        assert parse_wake_time(value) == expected

    @pytest.mark.parametrize("value", ["7:30", "0730", "24:00", "12:60", "ab:cd", "07:30:00", ""])
    def test_invalid(self, value):
        with pytest.raises(InvalidScheduleError):
            parse_wake_time(value)


class TestAlarmSchedule:
    def test_sensitivity_coerced(self):
        schedule = AlarmSchedule("07:30", 30, "conservative")
        assert schedule.sensitivity is Sensitivity.CONSERVATIVE
        assert schedule.enabled

    def test_non_positive_window(self):
        with pytest.raises(InvalidScheduleError):
            make_schedule(window=0)

    def test_equality_drives_redelivery(self):
        assert make_schedule() == make_schedule()
        assert make_schedule() != make_schedule(enabled=False)


class TestSessionWindow:
    def test_derived_instants(self):
        window = SessionWindow.from_schedule(make_schedule(window=20), DAY, timezone.utc)
        assert window.target_wake_time == TARGET
        assert window.window_start_time == TARGET - timedelta(minutes=20)
        assert window.window_arm_time == TARGET - timedelta(minutes=21)

    def test_window_crossing_midnight(self):
        window = SessionWindow.from_schedule(make_schedule("00:10", 30), DAY, timezone.utc)
        assert window.window_start_time.date() == DAY - timedelta(days=1)


def test_summary_key_ignores_subseconds():
    a = WakeSessionSummary(TARGET, TARGET, TARGET, TriggerReason.SMART, 0.8)
    b = WakeSessionSummary(TARGET, TARGET, TARGET + timedelta(microseconds=999), TriggerReason.SMART, 0.1)
    assert a.key == b.key
    assert "smart" in repr(a)
