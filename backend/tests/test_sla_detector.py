"""Tests for the SLA violation detector.

Uses mocked database sessions; audit writes and SMS fan-out are patched out.
"""
import uuid
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from app.core.tenancy import TenantContext
from app.models.sla import SlaViolation

NOW = datetime(2025, 1, 6, 12, 0, tzinfo=timezone.utc)
TENANT = TenantContext.system(uuid.uuid4())


# ─── Helpers ──────────────────────────────────────────────────────────────────

def _ticket(**overrides) -> SimpleNamespace:
    values = dict(
        id=uuid.uuid4(),
        ticket_number="TKT-20250106-0001",
        priority="high",
        type="incident",
        sla_definition_id=uuid.uuid4(),
        response_due_at=NOW + timedelta(hours=1),
        first_response_at=None,
        resolution_due_at=NOW + timedelta(hours=8),
        resolved_at=None,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def _result(open_rows=None, count=None) -> MagicMock:
    result = MagicMock()
    result.scalars.return_value.all.return_value = open_rows or []
    result.scalar.return_value = count
    return result


def _db(*results) -> MagicMock:
    db = MagicMock()
    db.execute.side_effect = list(results)
    return db


def _open_row(vtype: str, expected: datetime) -> SimpleNamespace:
    return SimpleNamespace(
        violation_type=vtype, expected_time=expected, is_resolved=False,
        resolved_at=None, actual_time=None, sla_details={"ticket_number": "TKT-20250106-0001"},
    )


# ─── Tests ────────────────────────────────────────────────────────────────────

@patch("app.services.sla.sms_service.queue_sla_breach")
@patch("app.services.sla.audit_service.log_event")
def test_missed_response_opens_one_violation(mock_audit, mock_sms):
    from app.services.sla import detect_for_ticket

    ticket = _ticket(response_due_at=NOW - timedelta(minutes=10))
    db = _db(_result())

    opened = detect_for_ticket(db, TENANT, ticket, now=NOW)

    assert len(opened) == 1
    violation = opened[0]
    assert isinstance(violation, SlaViolation)
    assert violation.violation_type == "response_time"
    assert violation.is_resolved is False
    assert violation.expected_time == ticket.response_due_at
    assert violation.actual_time is None
    mock_audit.assert_called_once()
    assert mock_audit.call_args.kwargs["severity"] == "high"
    mock_sms.assert_called_once()


@patch("app.services.sla.sms_service.queue_sla_breach")
@patch("app.services.sla.audit_service.log_event")
def test_rerun_with_open_violation_is_noop(mock_audit, mock_sms):
    """Idempotent: an already-open violation of the same type is not duplicated."""
    from app.services.sla import detect_for_ticket

    ticket = _ticket(response_due_at=NOW - timedelta(minutes=10))
    db = _db(_result(open_rows=[_open_row("response_time", ticket.response_due_at)]))

    opened = detect_for_ticket(db, TENANT, ticket, now=NOW)

    assert opened == []
    db.add.assert_not_called()
    mock_audit.assert_not_called()
    mock_sms.assert_not_called()


@patch("app.services.sla.sms_service.queue_sla_breach")
@patch("app.services.sla.audit_service.log_event")
def test_open_violation_resolves_when_met(mock_audit, mock_sms):
    from app.services.sla import detect_for_ticket

    due = NOW - timedelta(hours=1)
    responded = NOW - timedelta(minutes=5)
    ticket = _ticket(response_due_at=due, first_response_at=responded)
    row = _open_row("response_time", due)
    db = _db(_result(open_rows=[row]))

    opened = detect_for_ticket(db, TENANT, ticket, now=NOW)

    assert opened == []
    assert row.is_resolved is True
    assert row.resolved_at == NOW
    assert row.actual_time == responded
    assert row.sla_details["resolution"] == "met"


@patch("app.services.sla.sms_service.queue_sla_breach")
@patch("app.services.sla.audit_service.log_event")
def test_open_violation_resolves_when_deadline_moves(mock_audit, mock_sms):
    """A priority change that pushes the deadline out closes the open violation."""
    from app.services.sla import detect_for_ticket

    row = _open_row("resolution_time", NOW - timedelta(hours=1))
    ticket = _ticket(resolution_due_at=NOW + timedelta(hours=4))
    db = _db(_result(open_rows=[row]))

    detect_for_ticket(db, TENANT, ticket, now=NOW)

    assert row.is_resolved is True
    assert row.actual_time == NOW
    assert row.sla_details["resolution"] == "deadline_recomputed"


@patch("app.services.sla.sms_service.queue_sla_breach")
@patch("app.services.sla.audit_service.log_event")
def test_met_late_without_prior_violation_records_resolved_row(mock_audit, mock_sms):
    from app.services.sla import detect_for_ticket

    due = NOW - timedelta(hours=2)
    ticket = _ticket(response_due_at=due, first_response_at=due + timedelta(minutes=20))
    db = _db(_result(), _result(count=0))

    opened = detect_for_ticket(db, TENANT, ticket, now=NOW)

    assert opened == []
    added = db.add.call_args.args[0]
    assert isinstance(added, SlaViolation)
    assert added.is_resolved is True
    assert added.actual_time == ticket.first_response_at
    mock_sms.assert_not_called()


@patch("app.services.sla.sms_service.queue_sla_breach")
@patch("app.services.sla.audit_service.log_event")
def test_ticket_without_deadlines_is_ignored(mock_audit, mock_sms):
    from app.services.sla import detect_for_ticket

    ticket = _ticket(response_due_at=None, resolution_due_at=None, sla_definition_id=None)
    db = _db(_result())

    assert detect_for_ticket(db, TENANT, ticket, now=NOW) == []
    db.add.assert_not_called()


# ─── Pass isolation ───────────────────────────────────────────────────────────

def test_detector_pass_isolates_failing_organization():
    from app.services import sla as sla_service

    good, bad = uuid.uuid4(), uuid.uuid4()

    def _detect(db, tenant, now):
        if tenant.organization_id == bad:
            raise RuntimeError("boom")
        return {"checked": 3, "opened": 1, "backfilled": 0}

    session = MagicMock()
    session.__enter__.return_value = session
    session.__exit__.return_value = False
    factory = MagicMock(return_value=session)

    with patch.object(sla_service, "detect_for_organization", side_effect=_detect):
        result = sla_service.run_detector_pass(factory, now=NOW, organization_ids=[bad, good])

    assert result["organizations"] == 1
    assert result["checked"] == 3
    assert result["opened"] == 1
    assert result["failed"] == [str(bad)]


# ─── Definition validation ────────────────────────────────────────────────────

def test_validate_definition_normalises_holidays_and_days():
    from app.services.sla import validate_definition

    out = validate_definition({
        "response_time_hours": 1,
        "resolution_time_hours": 4,
        "business_hours_start": 8,
        "business_hours_end": 18,
        "business_days": [5, 1, 3, 3],
        "holidays": ["2025-12-25", "2025-01-01", "2025-12-25"],
    })
    assert out["business_days"] == [1, 3, 5]
    assert out["holidays"] == ["2025-01-01", "2025-12-25"]


def test_validate_definition_rejects_bad_window():
    from app.rules.errors import PolicyValidationError
    from app.services.sla import validate_definition

    with pytest.raises(PolicyValidationError) as exc:
        validate_definition({
            "response_time_hours": 1,
            "resolution_time_hours": 4,
            "business_hours_start": 18,
            "business_hours_end": 8,
        })
    assert exc.value.field == "business_hours_end"


def test_validate_definition_rejects_negative_budget():
    from app.rules.errors import PolicyValidationError
    from app.services.sla import validate_definition

    with pytest.raises(PolicyValidationError) as exc:
        validate_definition({"response_time_hours": -1, "resolution_time_hours": 4})
    assert exc.value.field == "response_time_hours"


# ─── Deadline state and scope changes ─────────────────────────────────────────

@patch("app.services.sla.list_violations", return_value=([], 0))
def test_ticket_state_uses_definition_calendar(mock_violations):
    """Over the weekend the budget is untouched, so a Monday-morning deadline is still on track."""
    from app.rules.business_hours import BusinessCalendar
    from app.services.sla import ticket_sla_state

    friday = datetime(2025, 1, 3, 16, 30, tzinfo=timezone.utc)
    definition = SimpleNamespace(calendar=lambda: BusinessCalendar(start_hour=9, end_hour=17))
    db = MagicMock()
    db.get.return_value = definition
    ticket = _ticket(
        created_at=friday,
        response_due_at=datetime(2025, 1, 6, 10, 30, tzinfo=timezone.utc),
        resolution_due_at=datetime(2025, 1, 7, 16, 30, tzinfo=timezone.utc),
    )

    state = ticket_sla_state(db, TENANT, ticket, now=datetime(2025, 1, 6, 3, 0, tzinfo=timezone.utc))

    assert state["response"]["state"] == "on_track"
    assert state["resolution"]["state"] == "on_track"
    assert state["open_violations"] == []


def test_leaving_sla_scope_clears_derived_due_date():
    from app.services.sla import apply_deadlines

    due = datetime(2025, 1, 2, 0, 0, tzinfo=timezone.utc)
    ticket = _ticket(due_date=due, resolution_due_at=due)
    db = MagicMock()
    db.execute.return_value.scalars.return_value.first.return_value = None

    assert apply_deadlines(db, TENANT, ticket) is None

    assert ticket.due_date is None
    assert ticket.sla_definition_id is None
    assert ticket.response_due_at is None
    assert ticket.resolution_due_at is None


def test_no_sla_keeps_caller_due_date():
    from app.services.sla import apply_deadlines

    due = datetime(2025, 1, 10, 12, 0, tzinfo=timezone.utc)
    ticket = _ticket(due_date=due, sla_definition_id=None, response_due_at=None, resolution_due_at=None)
    db = MagicMock()
    db.execute.return_value.scalars.return_value.first.return_value = None

    apply_deadlines(db, TENANT, ticket)

    assert ticket.due_date == due
