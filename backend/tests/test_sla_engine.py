"""Tests for SLA deadline computation and state classification."""
from datetime import datetime, timedelta, timezone

from app.rules.business_hours import BusinessCalendar
from app.rules.sla_engine import (
    SlaState,
    compute_deadlines,
    deadline_state,
    is_met_late,
    is_missed,
    violation_minutes,
)

UTC = timezone.utc
MONDAY_9 = datetime(2025, 1, 6, 9, 0, tzinfo=UTC)


def test_compute_deadlines_uses_business_calendar():
    cal = BusinessCalendar(start_hour=9, end_hour=17)
    friday = datetime(2025, 1, 3, 16, 30, tzinfo=UTC)
    deadlines = compute_deadlines(cal, friday, response_hours=1, resolution_hours=9)
    assert deadlines.response_due_at == datetime(2025, 1, 6, 9, 30, tzinfo=UTC)
    assert deadlines.resolution_due_at == datetime(2025, 1, 7, 9, 30, tzinfo=UTC)


def test_is_missed_only_when_unmet_and_past_due():
    due = MONDAY_9 + timedelta(hours=2)
    assert is_missed(due, None, due + timedelta(seconds=1))
    assert not is_missed(due, None, due)
    assert not is_missed(due, due - timedelta(minutes=5), due + timedelta(hours=1))
    assert not is_missed(None, None, due + timedelta(days=5))


def test_is_met_late():
    due = MONDAY_9 + timedelta(hours=2)
    assert is_met_late(due, due + timedelta(minutes=1))
    assert not is_met_late(due, due)
    assert not is_met_late(due, None)


CAL = BusinessCalendar(start_hour=9, end_hour=17)


def test_state_on_track_at_risk_breached():
    due = MONDAY_9 + timedelta(hours=8)
    assert deadline_state(CAL, due, None, MONDAY_9, MONDAY_9 + timedelta(hours=1), 15) == SlaState.on_track
    assert deadline_state(CAL, due, None, MONDAY_9, MONDAY_9 + timedelta(hours=7, minutes=30), 15) == SlaState.at_risk
    assert deadline_state(CAL, due, None, MONDAY_9, due + timedelta(minutes=1), 15) == SlaState.breached


def test_at_risk_counts_business_time_not_the_weekend():
    """Fri 16:30 + 2h is due Mon 10:30; at Mon 03:00 three quarters of the budget remain."""
    friday = datetime(2025, 1, 3, 16, 30, tzinfo=UTC)
    due = datetime(2025, 1, 6, 10, 30, tzinfo=UTC)
    assert deadline_state(CAL, due, None, friday, datetime(2025, 1, 6, 3, 0, tzinfo=UTC), 15) == SlaState.on_track
    assert deadline_state(CAL, due, None, friday, datetime(2025, 1, 4, 12, 0, tzinfo=UTC), 15) == SlaState.on_track
    assert deadline_state(CAL, due, None, friday, datetime(2025, 1, 6, 10, 15, tzinfo=UTC), 15) == SlaState.at_risk


def test_state_met_and_met_late():
    due = MONDAY_9 + timedelta(hours=4)
    later = due + timedelta(days=1)
    assert deadline_state(CAL, due, due - timedelta(hours=1), MONDAY_9, later, 15) == SlaState.met
    assert deadline_state(CAL, due, due + timedelta(hours=1), MONDAY_9, later, 15) == SlaState.breached


def test_zero_span_is_never_at_risk():
    assert deadline_state(CAL, MONDAY_9, None, MONDAY_9, MONDAY_9, 15) == SlaState.on_track


def test_violation_minutes_open_and_closed():
    expected = MONDAY_9
    assert violation_minutes(expected, None, expected + timedelta(minutes=95)) == 95
    assert violation_minutes(expected, expected + timedelta(minutes=30), expected + timedelta(days=1)) == 30
    assert violation_minutes(expected, expected - timedelta(minutes=5), expected) == 0
