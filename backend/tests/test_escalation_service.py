"""Tests for escalation firing: ledger claim, action outcome, audit trail."""
import uuid
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

from app.core.tenancy import TenantContext
from app.models.escalation import EscalationFiring
from app.models.ticket import TicketComment
from app.rules.errors import NotFoundError
from app.rules.escalation_policy import parse_policy

NOW = datetime(2025, 3, 10, 15, 0, tzinfo=timezone.utc)
TENANT = TenantContext.system(uuid.uuid4())


def _rule(**flat) -> SimpleNamespace:
    policy = parse_policy(flat or {"trigger_type": "time_based", "trigger_hours": 2, "action_type": "notify_manager"})
    columns = policy.to_columns()
    return SimpleNamespace(id=uuid.uuid4(), name="After 2h", policy=policy, **columns)


def _ticket(**overrides) -> SimpleNamespace:
    values = dict(
        id=uuid.uuid4(), ticket_number="TKT-20250310-0042", status="open", priority="medium",
        created_at=NOW, assigned_to=None, priority_changed_at=None, status_changed_at=None,
        sla_definition_id=None, response_due_at=None, resolution_due_at=None, due_date=None,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def _db(already_claimed: bool) -> MagicMock:
    db = MagicMock()
    db.execute.return_value.first.return_value = (uuid.uuid4(),) if already_claimed else None
    return db


# ─── Ledger ───────────────────────────────────────────────────────────────────

@patch("app.services.escalation.audit_service.log_event")
@patch("app.services.escalation.execute_action", return_value="notified 2 manager(s)")
def test_fire_records_successful_firing(mock_action, mock_audit):
    from app.services.escalation import fire

    db = _db(already_claimed=False)
    rule, ticket = _rule(), _ticket()

    firing = fire(db, TENANT, rule, ticket, "age:2h", NOW)

    assert isinstance(firing, EscalationFiring)
    assert firing.outcome == "succeeded"
    assert firing.detail == "notified 2 manager(s)"
    assert firing.occurrence_key == "age:2h"
    assert firing.action_type == "notify_manager"
    mock_action.assert_called_once()
    comments = [c.args[0] for c in db.add.call_args_list if isinstance(c.args[0], TicketComment)]
    assert len(comments) == 1
    assert comments[0].is_internal is True
    assert mock_audit.call_args.kwargs["action"] == "ESCALATE"


@patch("app.services.escalation.audit_service.log_event")
@patch("app.services.escalation.execute_action")
def test_ledger_prevents_second_firing(mock_action, mock_audit):
    from app.services.escalation import fire

    db = _db(already_claimed=True)

    assert fire(db, TENANT, _rule(), _ticket(), "age:2h", NOW) is None
    mock_action.assert_not_called()
    mock_audit.assert_not_called()
    db.add.assert_not_called()


@patch("app.services.escalation.audit_service.log_event")
@patch("app.services.escalation.execute_action", side_effect=NotFoundError("No active user with role 'manager'"))
def test_failed_action_is_recorded_not_raised(mock_action, mock_audit):
    from app.services.escalation import fire

    db = _db(already_claimed=False)

    firing = fire(db, TENANT, _rule(), _ticket(), "age:2h", NOW)

    assert firing.outcome == "failed"
    assert "No active user" in firing.detail
    assert mock_audit.call_args.kwargs["severity"] == "high"


@patch("app.services.escalation.sla_service.apply_deadlines")
@patch("app.services.escalation.audit_service.log_event")
def test_escalation_audit_carries_changed_ticket_fields(mock_audit, mock_apply):
    from app.services.escalation import fire

    rule = _rule(trigger_type="time_based", trigger_hours=2, action_type="change_priority", new_priority="high")
    ticket = _ticket(priority="low")

    firing = fire(_db(already_claimed=False), TENANT, rule, ticket, "age:2h", NOW)

    assert firing.outcome == "succeeded"
    kwargs = mock_audit.call_args.kwargs
    assert kwargs["action"] == "ESCALATE"
    assert kwargs["old_values"] == {"priority": "low", "priority_changed_at": None}
    assert kwargs["new_values"] == {"priority": "high", "priority_changed_at": str(NOW)}


@patch("app.services.escalation.audit_service.log_event")
@patch("app.services.escalation.email_service.send_escalation_notification", return_value=1)
def test_notification_escalation_has_no_field_diff(mock_send, mock_audit):
    from app.services.escalation import fire

    rule = _rule(
        trigger_type="time_based", trigger_hours=2, action_type="notify_stakeholders",
        notification_recipients=["owner@client.example.com"],
    )

    fire(_db(already_claimed=False), TENANT, rule, _ticket(), "age:2h", NOW)

    assert mock_audit.call_args.kwargs["old_values"] is None
    assert mock_audit.call_args.kwargs["new_values"] is None


# ─── Actions ──────────────────────────────────────────────────────────────────

@patch("app.services.escalation.sla_service.apply_deadlines")
def test_change_priority_action_recomputes_deadlines(mock_apply):
    from app.services.escalation import execute_action

    rule = _rule(trigger_type="manual", action_type="change_priority", new_priority="critical")
    ticket = _ticket(priority="medium")

    detail = execute_action(MagicMock(), TENANT, rule, ticket, NOW)

    assert ticket.priority == "critical"
    assert ticket.priority_changed_at == NOW
    assert "medium" in detail and "critical" in detail
    mock_apply.assert_called_once()


@patch("app.services.escalation.sla_service.apply_deadlines")
def test_change_priority_to_same_value_is_noop(mock_apply):
    from app.services.escalation import execute_action

    rule = _rule(trigger_type="manual", action_type="change_priority", new_priority="high")
    ticket = _ticket(priority="high")

    assert execute_action(MagicMock(), TENANT, rule, ticket, NOW) == "priority already high"
    mock_apply.assert_not_called()


@patch("app.services.escalation.email_service.send_escalation_notification", return_value=1)
def test_notify_stakeholders_uses_rule_recipients(mock_send):
    from app.services.escalation import execute_action

    rule = _rule(
        trigger_type="manual", action_type="notify_stakeholders",
        notification_recipients=["owner@client.example.com"],
    )

    detail = execute_action(MagicMock(), TENANT, rule, _ticket(), NOW)

    assert detail == "notified 1 stakeholder(s)"
    assert mock_send.call_args.args[0] == ["owner@client.example.com"]


def test_reassign_to_role_picks_least_loaded_user():
    from app.services.escalation import execute_action

    tech = SimpleNamespace(id=uuid.uuid4(), email="tess@msp.example.com")
    db = MagicMock()
    db.execute.return_value.scalars.return_value.first.return_value = tech
    rule = _rule(trigger_type="manual", action_type="reassign_ticket", target_role="technician")
    ticket = _ticket()

    detail = execute_action(db, TENANT, rule, ticket, NOW)

    assert ticket.assigned_to == tech.id
    assert detail == "reassigned to tess@msp.example.com"
