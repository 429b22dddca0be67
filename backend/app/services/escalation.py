"""Escalation rules: authoring, evaluation and action execution.

A rule fires at most once per (rule, ticket, occurrence key). The key is
claimed in ``escalation_firings`` before the action runs; the unique
constraint turns a racing second claim into a no-op. The action is
attempted exactly once and its outcome recorded, success or not. Delivery
retries belong to the notification layer.

Priority changes made by a change_priority action do not themselves
trigger priority_change rules.
"""
import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.tenancy import TenantContext
from app.models.escalation import EscalationFiring, EscalationRule
from app.models.organization import Organization
from app.models.ticket import TERMINAL_STATUSES, Ticket, TicketComment
from app.models.user import User
from app.rules.errors import NotFoundError
from app.rules.escalation_engine import TicketSnapshot, Transition, occurrence_key
from app.rules.escalation_policy import (
    FLAT_COLUMNS,
    ChangePriorityAction,
    EscalationPolicy,
    NotifyManagerAction,
    NotifyStakeholdersAction,
    ReassignTicketAction,
    TimeBasedTrigger,
    merge_columns,
    parse_policy,
)
from app.services import audit as audit_service
from app.services import email as email_service
from app.services import sla as sla_service

logger = logging.getLogger(__name__)

# ticket columns an action may change; diffed into the ESCALATE audit entry
ACTION_FIELDS = (
    "assigned_to", "priority", "priority_changed_at",
    "sla_definition_id", "response_due_at", "resolution_due_at", "due_date",
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ─── Authoring ───

def list_rules(db: Session, tenant: TenantContext, is_active: bool | None = None) -> list[EscalationRule]:
    stmt = select(EscalationRule).where(EscalationRule.organization_id == tenant.organization_id)
    if is_active is not None:
        stmt = stmt.where(EscalationRule.is_active.is_(is_active))
    return list(db.execute(stmt.order_by(EscalationRule.name)).scalars().all())


def get_rule(db: Session, tenant: TenantContext, rule_id: uuid.UUID) -> EscalationRule:
    rule = db.execute(
        select(EscalationRule).where(
            EscalationRule.id == rule_id,
            EscalationRule.organization_id == tenant.organization_id,
        )
    ).scalars().first()
    if rule is None:
        raise NotFoundError(f"Escalation rule {rule_id} not found")
    return rule


def _check_target(db: Session, tenant: TenantContext, policy: EscalationPolicy) -> None:
    action = policy.action
    if isinstance(action, ReassignTicketAction) and action.target_user_id is not None:
        found = db.execute(
            select(User.id).where(User.id == action.target_user_id, User.organization_id == tenant.organization_id)
        ).first()
        if found is None:
            raise NotFoundError(f"Target user {action.target_user_id} not found")


def create_rule(
    db: Session,
    tenant: TenantContext,
    name: str,
    policy: EscalationPolicy,
    description: str | None = None,
    is_active: bool = True,
) -> EscalationRule:
    _check_target(db, tenant, policy)
    rule = EscalationRule(
        organization_id=tenant.organization_id,
        name=name,
        description=description,
        is_active=is_active,
    )
    rule.apply_policy(policy)
    db.add(rule)
    db.flush()
    audit_service.log_crud_event(
        db, tenant, "CREATE", "escalation_rule", rule.id,
        entity_name=rule.name, new_values=audit_service.snapshot(rule),
    )
    return rule


def _merged_policy(rule: EscalationRule, changes: dict) -> EscalationPolicy | None:
    flat = {k: v for k, v in changes.items() if k in FLAT_COLUMNS}
    nested = {k: changes[k] for k in ("trigger", "action") if changes.get(k) is not None}
    if not flat and not nested:
        return None
    current = rule.policy
    if flat:
        return parse_policy(merge_columns(current.to_columns(), flat))
    return EscalationPolicy.model_validate({
        "trigger": nested.get("trigger", current.trigger),
        "action": nested.get("action", current.action),
    })


def update_rule(db: Session, tenant: TenantContext, rule_id: uuid.UUID, changes: dict) -> EscalationRule:
    """``changes`` may carry name/description/is_active, nested trigger/action, or flat policy columns."""
    rule = get_rule(db, tenant, rule_id)
    before = audit_service.snapshot(rule)
    for field in ("name", "description", "is_active"):
        if field in changes and changes[field] is not None:
            setattr(rule, field, changes[field])
    policy = _merged_policy(rule, changes)
    if policy is not None:
        _check_target(db, tenant, policy)
        rule.apply_policy(policy)
    db.flush()
    audit_service.log_crud_event(
        db, tenant, "UPDATE", "escalation_rule", rule.id,
        entity_name=rule.name, old_values=before, new_values=audit_service.snapshot(rule),
    )
    return rule


def deactivate_rule(db: Session, tenant: TenantContext, rule_id: uuid.UUID) -> EscalationRule:
    rule = get_rule(db, tenant, rule_id)
    if rule.is_active:
        rule.is_active = False
        db.flush()
        audit_service.log_crud_event(
            db, tenant, "DELETE", "escalation_rule", rule.id,
            entity_name=rule.name, old_values={"is_active": True}, new_values={"is_active": False},
        )
    return rule


# ─── Evaluation ───

def _snapshot(ticket: Ticket) -> TicketSnapshot:
    return TicketSnapshot(status=ticket.status, priority=ticket.priority, created_at=ticket.created_at)


def already_fired(db: Session, rule_id: uuid.UUID, ticket_id: uuid.UUID, key: str) -> bool:
    return db.execute(
        select(EscalationFiring.id).where(
            EscalationFiring.rule_id == rule_id,
            EscalationFiring.ticket_id == ticket_id,
            EscalationFiring.occurrence_key == key,
        )
    ).first() is not None


def evaluate_ticket(
    db: Session,
    tenant: TenantContext,
    ticket: Ticket,
    transitions: list[Transition] | None = None,
    now: datetime | None = None,
    time_based_only: bool = False,
) -> list[EscalationFiring]:
    """Fire every active rule whose trigger has a new occurrence. Caller holds the ticket lock."""
    now = now or _now()
    rules = list_rules(db, tenant, is_active=True)
    firings = []
    for rule in rules:
        trigger = rule.policy.trigger
        if time_based_only and not isinstance(trigger, TimeBasedTrigger):
            continue
        for transition in (transitions or [None]):
            key = occurrence_key(trigger, _snapshot(ticket), now, transition=transition)
            if key is None:
                continue
            firing = fire(db, tenant, rule, ticket, key, now)
            if firing is not None:
                firings.append(firing)
            break
    return firings


def fire(
    db: Session,
    tenant: TenantContext,
    rule: EscalationRule,
    ticket: Ticket,
    key: str,
    now: datetime | None = None,
) -> EscalationFiring | None:
    """Claim the occurrence, attempt the action once, record the outcome."""
    now = now or _now()
    if already_fired(db, rule.id, ticket.id, key):
        return None

    firing = EscalationFiring(
        organization_id=tenant.organization_id,
        rule_id=rule.id,
        ticket_id=ticket.id,
        occurrence_key=key,
        action_type=rule.action_type,
        outcome="pending",
        fired_at=now,
    )
    try:
        with db.begin_nested():
            db.add(firing)
            db.flush()
    except IntegrityError:
        logger.info("Escalation %s/%s already claimed for %s", rule.id, key, ticket.ticket_number)
        return None

    before = audit_service.snapshot(ticket, list(ACTION_FIELDS))
    try:
        detail = execute_action(db, tenant, rule, ticket, now)
        firing.outcome = "succeeded"
    except (LookupError, ValueError) as exc:
        detail = f"failed: {exc}"
        firing.outcome = "failed"
        logger.warning("Escalation rule %s failed on ticket %s: %s", rule.name, ticket.ticket_number, exc)
    firing.detail = detail
    after = audit_service.snapshot(ticket, list(ACTION_FIELDS))
    changed = [f for f in ACTION_FIELDS if before[f] != after[f]]

    db.add(TicketComment(
        ticket_id=ticket.id,
        user_id=None,
        content=f"Escalation rule \"{rule.name}\" executed: {detail}",
        is_internal=True,
    ))
    audit_service.log_event(
        db, tenant,
        action="ESCALATE",
        entity_type="ticket",
        entity_id=ticket.id,
        entity_name=ticket.ticket_number,
        old_values={f: before[f] for f in changed} or None,
        new_values={f: after[f] for f in changed} or None,
        metadata={"rule_id": str(rule.id), "occurrence_key": key, "outcome": firing.outcome},
        severity="medium" if firing.outcome == "succeeded" else "high",
        description=f"Escalation rule \"{rule.name}\": {detail}",
    )
    db.flush()
    logger.info("Escalation %s fired on %s (%s): %s", rule.name, ticket.ticket_number, key, detail)
    return firing


def _managers(db: Session, tenant: TenantContext) -> list[str]:
    return list(db.execute(
        select(User.email).where(
            User.organization_id == tenant.organization_id,
            User.is_active.is_(True),
            User.role.in_(["admin", "manager"]),
        )
    ).scalars().all())


def _least_loaded(db: Session, tenant: TenantContext, role: str) -> User:
    open_count = (
        select(func.count(Ticket.id))
        .where(Ticket.assigned_to == User.id, Ticket.status.not_in(list(TERMINAL_STATUSES)))
        .correlate(User)
        .scalar_subquery()
    )
    user = db.execute(
        select(User)
        .where(
            User.organization_id == tenant.organization_id,
            User.is_active.is_(True),
            User.deleted_at.is_(None),
            User.role == role,
        )
        .order_by(open_count, User.created_at)
    ).scalars().first()
    if user is None:
        raise NotFoundError(f"No active user with role '{role}'")
    return user


def execute_action(db: Session, tenant: TenantContext, rule: EscalationRule, ticket: Ticket, now: datetime) -> str:
    action = rule.policy.action
    reason = f"{rule.trigger_type} trigger"

    if isinstance(action, NotifyManagerAction):
        recipients = action.recipients or _managers(db, tenant)
        sent = email_service.send_escalation_notification(recipients, ticket, rule.name, reason)
        return f"notified {sent} manager(s)"

    if isinstance(action, NotifyStakeholdersAction):
        sent = email_service.send_escalation_notification(action.recipients, ticket, rule.name, reason)
        return f"notified {sent} stakeholder(s)"

    if isinstance(action, ReassignTicketAction):
        if action.target_user_id is not None:
            user = db.execute(
                select(User).where(
                    User.id == action.target_user_id,
                    User.organization_id == tenant.organization_id,
                    User.is_active.is_(True),
                )
            ).scalars().first()
            if user is None:
                raise NotFoundError(f"Target user {action.target_user_id} is not active")
        else:
            user = _least_loaded(db, tenant, action.target_role)
        ticket.assigned_to = user.id
        return f"reassigned to {user.email}"

    if isinstance(action, ChangePriorityAction):
        old = ticket.priority
        new = action.new_priority.value
        if old == new:
            return f"priority already {new}"
        ticket.priority = new
        ticket.priority_changed_at = now
        sla_service.apply_deadlines(db, tenant, ticket)
        return f"priority changed from {old} to {new}"

    raise ValueError(f"unknown action variant: {type(action).__name__}")


# ─── Manual and dry-run ───

def manual_escalate(
    db: Session,
    tenant: TenantContext,
    ticket_id: uuid.UUID,
    rule_id: uuid.UUID | None = None,
    now: datetime | None = None,
) -> list[EscalationFiring]:
    """Fire one rule by id, or every active manual rule, against the ticket."""
    now = now or _now()
    ticket = sla_service.lock_ticket(db, tenant, ticket_id)
    if rule_id is not None:
        rule = get_rule(db, tenant, rule_id)
        if not rule.is_active:
            raise ValueError(f"Escalation rule {rule.name} is inactive")
        rules = [rule]
    else:
        rules = [r for r in list_rules(db, tenant, is_active=True) if r.trigger_type == "manual"]
    key = f"manual@{now.isoformat()}"
    firings = [f for f in (fire(db, tenant, r, ticket, key, now) for r in rules) if f is not None]
    return firings


def dry_run(
    db: Session,
    tenant: TenantContext,
    rule_id: uuid.UUID,
    ticket_id: uuid.UUID,
    now: datetime | None = None,
) -> dict:
    """Dry run: would this rule fire on the ticket right now? No writes."""
    now = now or _now()
    rule = get_rule(db, tenant, rule_id)
    ticket = db.execute(
        select(Ticket).where(Ticket.id == ticket_id, Ticket.organization_id == tenant.organization_id)
    ).scalars().first()
    if ticket is None:
        raise NotFoundError(f"Ticket {ticket_id} not found")

    trigger = rule.policy.trigger
    # status/priority triggers are tested as if the ticket just entered its current value
    transition = None
    if rule.trigger_type == "status_change":
        transition = Transition("status", None, ticket.status, ticket.status_changed_at or ticket.created_at)
    elif rule.trigger_type == "priority_change":
        transition = Transition("priority", None, ticket.priority, ticket.priority_changed_at or ticket.created_at)
    key = occurrence_key(trigger, _snapshot(ticket), now, transition=transition, manual=True)

    fired_before = key is not None and already_fired(db, rule.id, ticket.id, key)
    if not rule.is_active:
        reason = "rule is inactive"
    elif key is None:
        reason = "trigger condition not met"
    elif fired_before:
        reason = "already fired for this occurrence"
    else:
        reason = "would fire"
    return {
        "rule_id": rule.id,
        "ticket_id": ticket.id,
        "would_fire": rule.is_active and key is not None and not fired_before,
        "occurrence_key": key,
        "already_fired": fired_before,
        "action_type": rule.action_type,
        "reason": reason,
    }


# ─── Sweep ───

def sweep_organization(db: Session, tenant: TenantContext, now: datetime | None = None) -> int:
    """time_based rules over every non-terminal ticket (row-locked, skipping busy rows)."""
    now = now or _now()
    if not any(r.trigger_type == "time_based" for r in list_rules(db, tenant, is_active=True)):
        return 0
    tickets = db.execute(
        select(Ticket)
        .where(
            Ticket.organization_id == tenant.organization_id,
            Ticket.status.not_in(list(TERMINAL_STATUSES)),
        )
        .with_for_update(skip_locked=True)
    ).scalars().all()
    fired = 0
    for ticket in tickets:
        fired += len(evaluate_ticket(db, tenant, ticket, now=now, time_based_only=True))
    return fired


def run_sweep(
    session_factory: Callable[[], Session],
    now: datetime | None = None,
    organization_ids: list[uuid.UUID] | None = None,
) -> dict:
    now = now or _now()
    if organization_ids is None:
        with session_factory() as db:
            organization_ids = list(db.execute(
                select(Organization.id).where(Organization.is_active.is_(True))
            ).scalars().all())

    result = {"organizations": 0, "fired": 0, "failed": []}
    for org_id in organization_ids:
        try:
            with session_factory() as db:
                fired = sweep_organization(db, TenantContext.system(org_id), now)
                db.commit()
        except Exception:
            logger.exception("Escalation sweep: organization %s skipped this pass", org_id)
            result["failed"].append(str(org_id))
            continue
        result["organizations"] += 1
        result["fired"] += fired
    return result


# ─── Stats ───

def stats(db: Session, tenant: TenantContext, days: int = 30) -> dict:
    since = _now() - timedelta(days=days)
    scope = (EscalationFiring.organization_id == tenant.organization_id, EscalationFiring.fired_at >= since)
    by_priority = dict(db.execute(
        select(Ticket.priority, func.count(EscalationFiring.id))
        .join(Ticket, Ticket.id == EscalationFiring.ticket_id)
        .where(*scope)
        .group_by(Ticket.priority)
    ).all())
    by_status = dict(db.execute(
        select(Ticket.status, func.count(EscalationFiring.id))
        .join(Ticket, Ticket.id == EscalationFiring.ticket_id)
        .where(*scope)
        .group_by(Ticket.status)
    ).all())
    by_action = dict(db.execute(
        select(EscalationFiring.action_type, func.count(EscalationFiring.id)).where(*scope)
        .group_by(EscalationFiring.action_type)
    ).all())
    by_outcome = dict(db.execute(
        select(EscalationFiring.outcome, func.count(EscalationFiring.id)).where(*scope)
        .group_by(EscalationFiring.outcome)
    ).all())
    return {
        "days": days,
        "total_firings": sum(by_action.values()),
        "by_priority": by_priority,
        "by_status": by_status,
        "by_action": by_action,
        "by_outcome": by_outcome,
    }
