"""Tests for escalation trigger matching (occurrence keys)."""
from datetime import datetime, timedelta, timezone

import pytest

from app.rules.escalation_engine import TicketSnapshot, Transition, occurrence_key
from app.rules.escalation_policy import (
    ManualTrigger,
    PriorityChangeTrigger,
    StatusChangeTrigger,
    TimeBasedTrigger,
)

NOW = datetime(2025, 3, 10, 15, 0, tzinfo=timezone.utc)


def _ticket(status="open", priority="medium", age_hours=0.0) -> TicketSnapshot:
    return TicketSnapshot(status=status, priority=priority, created_at=NOW - timedelta(hours=age_hours))


# ─── time_based ───────────────────────────────────────────────────────────────

def test_time_based_not_due_before_threshold():
    assert occurrence_key(TimeBasedTrigger(hours=4), _ticket(age_hours=3.5), NOW) is None


def test_time_based_not_due_exactly_at_threshold():
    assert occurrence_key(TimeBasedTrigger(hours=4), _ticket(age_hours=4), NOW) is None


def test_time_based_fires_after_threshold_with_stable_key():
    trigger = TimeBasedTrigger(hours=4)
    first = occurrence_key(trigger, _ticket(age_hours=4.5), NOW)
    later = occurrence_key(trigger, _ticket(age_hours=4.5), NOW + timedelta(hours=6))
    assert first == "age:4h"
    assert first == later


@pytest.mark.parametrize("status", ["resolved", "closed"])
def test_time_based_skips_terminal_tickets(status):
    assert occurrence_key(TimeBasedTrigger(hours=1), _ticket(status=status, age_hours=48), NOW) is None


def test_time_based_fractional_hours_key():
    assert occurrence_key(TimeBasedTrigger(hours=0.5), _ticket(age_hours=1), NOW) == "age:0.5h"


# ─── status_change / priority_change ──────────────────────────────────────────

def test_status_change_matches_target_transition():
    trigger = StatusChangeTrigger(status="waiting_on_client")
    transition = Transition("status", "open", "waiting_on_client", NOW)
    key = occurrence_key(trigger, _ticket(status="waiting_on_client"), NOW, transition=transition)
    assert key == f"status:waiting_on_client@{NOW.isoformat()}"


def test_status_change_ignores_other_targets_and_fields():
    trigger = StatusChangeTrigger(status="waiting_on_client")
    assert occurrence_key(trigger, _ticket(), NOW, transition=Transition("status", "open", "in_progress", NOW)) is None
    assert occurrence_key(trigger, _ticket(), NOW, transition=Transition("priority", "low", "waiting_on_client", NOW)) is None
    assert occurrence_key(trigger, _ticket(), NOW) is None


def test_status_change_requires_an_actual_change():
    trigger = StatusChangeTrigger(status="open")
    assert occurrence_key(trigger, _ticket(), NOW, transition=Transition("status", "open", "open", NOW)) is None


def test_priority_change_re_entry_is_a_new_occurrence():
    trigger = PriorityChangeTrigger(priority="critical")
    first = occurrence_key(trigger, _ticket(priority="critical"), NOW,
                           transition=Transition("priority", "high", "critical", NOW))
    again_at = NOW + timedelta(hours=2)
    second = occurrence_key(trigger, _ticket(priority="critical"), again_at,
                            transition=Transition("priority", "high", "critical", again_at))
    assert first is not None and second is not None
    assert first != second


# ─── manual ───────────────────────────────────────────────────────────────────

def test_manual_only_on_request():
    assert occurrence_key(ManualTrigger(), _ticket(), NOW) is None
    assert occurrence_key(ManualTrigger(), _ticket(), NOW, manual=True) == f"manual@{NOW.isoformat()}"


def test_unknown_trigger_rejected():
    with pytest.raises(TypeError):
        occurrence_key(object(), _ticket(), NOW)
