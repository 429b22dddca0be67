"""Escalation evaluation end to end: sweeps, transitions, manual firing and dry runs.

The firing ledger is an in-memory set behind ``already_fired``; every
EscalationFiring the service adds to the session claims its key.
"""
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest

from app.core.tenancy import TenantContext
from app.models.escalation import EscalationFiring, EscalationRule
from app.models.ticket import Ticket
from app.rules.escalation_engine import Transition
from app.rules.escalation_policy import parse_policy

T0 = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)
ORG_ID = uuid.uuid4()
TENANT = TenantContext.system(ORG_ID)


def _rule(name: str = "Open over 2h", is_active: bool = True, **flat) -> EscalationRule:
    rule = EscalationRule(id=uuid.uuid4(), organization_id=ORG_ID, name=name, is_active=is_active)
    rule.apply_policy(parse_policy(
        flat or {"trigger_type": "time_based", "trigger_hours": 2, "action_type": "notify_manager"}
    ))
    return rule


def _ticket(status: str = "open") -> Ticket:
    return Ticket(
        id=uuid.uuid4(), organization_id=ORG_ID, ticket_number="TKT-20250310-00BB02",
        client_id=uuid.uuid4(), subject="Mail server down", priority="high", status=status,
        type="incident", created_at=T0, status_changed_at=T0, priority_changed_at=T0,
    )


class Ledger:
    """Session double whose ``add`` records claimed (rule, ticket, key) triples."""

    def __init__(self, tickets=()):
        self.claimed = set()
        self.db = MagicMock()
        self.db.add.side_effect = self._add
        self.db.execute.return_value.scalars.return_value.all.return_value = list(tickets)

    def _add(self, obj):
        if isinstance(obj, EscalationFiring):
            self.claimed.add((obj.rule_id, obj.ticket_id, obj.occurrence_key))

    def already_fired(self, db, rule_id, ticket_id, key):
        return (rule_id, ticket_id, key) in self.claimed


@pytest.fixture
def notify():
    with patch("app.services.escalation.audit_service.log_event"), \
         patch("app.services.escalation._managers", return_value=["lead@msp.example.com"]), \
         patch("app.services.escalation.email_service.send_escalation_notification", return_value=1) as send:
        yield send


# ─── Time-based sweep ─────────────────────────────────────────────────────────

def test_open_ticket_escalates_once_across_sweeps(notify):
    from app.services.escalation import sweep_organization

    rule, ticket = _rule(), _ticket()
    ledger = Ledger([ticket])

    with patch("app.services.escalation.list_rules", return_value=[rule]), \
         patch("app.services.escalation.already_fired", side_effect=ledger.already_fired):
        assert sweep_organization(ledger.db, TENANT, now=T0 + timedelta(hours=1)) == 0
        assert sweep_organization(ledger.db, TENANT, now=T0 + timedelta(hours=3)) == 1
        assert sweep_organization(ledger.db, TENANT, now=T0 + timedelta(hours=3, minutes=5)) == 0

    assert notify.call_count == 1
    assert notify.call_args.args[0] == ["lead@msp.example.com"]
    assert ledger.claimed == {(rule.id, ticket.id, "age:2h")}


def test_ticket_resolved_before_threshold_never_escalates(notify):
    from app.services.escalation import evaluate_ticket, sweep_organization

    rule, ticket = _rule(), _ticket(status="resolved")
    ledger = Ledger([ticket])

    with patch("app.services.escalation.list_rules", return_value=[rule]), \
         patch("app.services.escalation.already_fired", side_effect=ledger.already_fired):
        assert sweep_organization(ledger.db, TENANT, now=T0 + timedelta(hours=3)) == 0
        assert evaluate_ticket(ledger.db, TENANT, ticket, now=T0 + timedelta(hours=5), time_based_only=True) == []

    notify.assert_not_called()
    assert ledger.claimed == set()


def test_sweep_skips_orgs_without_time_based_rules(notify):
    from app.services.escalation import sweep_organization

    manual = _rule(name="Escalate now", trigger_type="manual", action_type="notify_manager")
    ledger = Ledger([_ticket()])

    with patch("app.services.escalation.list_rules", return_value=[manual]):
        assert sweep_organization(ledger.db, TENANT, now=T0 + timedelta(hours=10)) == 0

    ledger.db.execute.assert_not_called()


# ─── Transitions ──────────────────────────────────────────────────────────────

def test_status_transition_fires_once_per_occurrence(notify):
    from app.services.escalation import evaluate_ticket

    rule = _rule(
        name="Waiting on vendor", trigger_type="status_change", trigger_status="waiting_on_third_party",
        action_type="notify_manager",
    )
    ticket = _ticket(status="waiting_on_third_party")
    ledger = Ledger()
    first = Transition("status", "open", "waiting_on_third_party", T0 + timedelta(hours=1))

    with patch("app.services.escalation.list_rules", return_value=[rule]), \
         patch("app.services.escalation.already_fired", side_effect=ledger.already_fired):
        assert len(evaluate_ticket(ledger.db, TENANT, ticket, transitions=[first], now=first.at)) == 1
        assert evaluate_ticket(ledger.db, TENANT, ticket, transitions=[first], now=first.at) == []
        # a later re-entry into the status is a new occurrence
        again = Transition("status", "in_progress", "waiting_on_third_party", T0 + timedelta(hours=4))
        assert len(evaluate_ticket(ledger.db, TENANT, ticket, transitions=[again], now=again.at)) == 1

    assert notify.call_count == 2


def test_other_transitions_do_not_match(notify):
    from app.services.escalation import evaluate_ticket

    rule = _rule(name="Critical", trigger_type="priority_change", trigger_priority="critical", action_type="notify_manager")
    ledger = Ledger()
    bump = Transition("priority", "medium", "high", T0)

    with patch("app.services.escalation.list_rules", return_value=[rule]), \
         patch("app.services.escalation.already_fired", side_effect=ledger.already_fired):
        assert evaluate_ticket(ledger.db, TENANT, _ticket(), transitions=[bump], now=T0) == []

    notify.assert_not_called()


# ─── Manual and dry run ───────────────────────────────────────────────────────

def test_manual_escalate_fires_only_manual_rules(notify):
    from app.services.escalation import manual_escalate

    manual = _rule(name="Escalate now", trigger_type="manual", action_type="notify_manager")
    ticket = _ticket()
    ledger = Ledger()
    now = T0 + timedelta(minutes=30)

    with patch("app.services.escalation.sla_service.lock_ticket", return_value=ticket), \
         patch("app.services.escalation.list_rules", return_value=[manual, _rule()]), \
         patch("app.services.escalation.already_fired", side_effect=ledger.already_fired):
        firings = manual_escalate(ledger.db, TENANT, ticket.id, now=now)

    assert [f.rule_id for f in firings] == [manual.id]
    assert firings[0].occurrence_key == f"manual@{now.isoformat()}"
    assert notify.call_count == 1


def test_manual_escalate_rejects_inactive_rule(notify):
    from app.services.escalation import manual_escalate

    inactive = _rule(name="Retired", is_active=False, trigger_type="manual", action_type="notify_manager")

    with patch("app.services.escalation.sla_service.lock_ticket", return_value=_ticket()), \
         patch("app.services.escalation.get_rule", return_value=inactive):
        with pytest.raises(ValueError):
            manual_escalate(MagicMock(), TENANT, uuid.uuid4(), rule_id=inactive.id, now=T0)

    notify.assert_not_called()


@pytest.mark.parametrize(
    "hours, is_active, fired_before, would_fire, reason",
    [
        (3, True, False, True, "would fire"),
        (1, True, False, False, "trigger condition not met"),
        (3, True, True, False, "already fired for this occurrence"),
        (3, False, False, False, "rule is inactive"),
    ],
)
def test_dry_run_reports_without_writing(notify, hours, is_active, fired_before, would_fire, reason):
    from app.services.escalation import dry_run

    rule, ticket = _rule(is_active=is_active), _ticket()
    db = MagicMock()
    db.execute.return_value.scalars.return_value.first.return_value = ticket

    with patch("app.services.escalation.get_rule", return_value=rule), \
         patch("app.services.escalation.already_fired", return_value=fired_before):
        result = dry_run(db, TENANT, rule.id, ticket.id, now=T0 + timedelta(hours=hours))

    assert result["would_fire"] is would_fire
    assert result["reason"] == reason
    db.add.assert_not_called()
    notify.assert_not_called()
