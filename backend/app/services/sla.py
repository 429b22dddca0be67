"""SLA definitions, deadline assignment, and the violation detector.

Detector invariant: at most one open SlaViolation per (ticket, violation_type).
Re-running on unchanged state is a no-op. Callers hold the ticket row lock
(SELECT ... FOR UPDATE) around detect_for_ticket.
"""
import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.tenancy import TenantContext
from app.models.organization import Organization
from app.models.sla import SlaDefinition, SlaViolation
from app.models.ticket import TERMINAL_STATUSES, Ticket
from app.rules.business_hours import BusinessCalendar, parse_holiday
from app.rules.errors import NotFoundError, PolicyValidationError
from app.rules.sla_engine import (
    SlaDeadlines,
    ViolationType,
    compute_deadlines,
    deadline_state,
    is_met_late,
    is_missed,
)
from app.services import audit as audit_service
from app.services import sms as sms_service

logger = logging.getLogger(__name__)

# (violation type, deadline attribute, "met" attribute) on Ticket
DEADLINES = (
    (ViolationType.response_time, "response_due_at", "first_response_at"),
    (ViolationType.resolution_time, "resolution_due_at", "resolved_at"),
)

DEFINITION_FIELDS = (
    "name", "description", "priority", "ticket_type",
    "response_time_hours", "resolution_time_hours",
    "business_hours_start", "business_hours_end", "business_days", "holidays", "is_active",
)


class SlaConflictError(ValueError):
    """Another active definition already covers the (priority, ticket_type) scope."""


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ─── Definitions ───

def validate_definition(values: dict) -> dict:
    """Authoring-time validation; returns values with holidays normalised to ISO strings."""
    for name in ("response_time_hours", "resolution_time_hours"):
        if values.get(name) is None or values[name] < 0:
            raise PolicyValidationError(name, "must be >= 0")
    BusinessCalendar.from_values(
        values.get("business_hours_start", 9),
        values.get("business_hours_end", 17),
        values.get("business_days") or [1, 2, 3, 4, 5],
        values.get("holidays") or [],
    )
    out = dict(values)
    out["holidays"] = sorted({parse_holiday(h).isoformat() for h in values.get("holidays") or []})
    out["business_days"] = sorted({int(d) for d in values.get("business_days") or [1, 2, 3, 4, 5]})
    return out


def _ensure_scope_free(db: Session, tenant: TenantContext, priority: str, ticket_type: str, exclude_id=None) -> None:
    stmt = select(SlaDefinition.id).where(
        SlaDefinition.organization_id == tenant.organization_id,
        SlaDefinition.priority == priority,
        SlaDefinition.ticket_type == ticket_type,
        SlaDefinition.is_active.is_(True),
    )
    if exclude_id is not None:
        stmt = stmt.where(SlaDefinition.id != exclude_id)
    if db.execute(stmt).first() is not None:
        raise SlaConflictError(
            f"An active SLA definition already exists for priority={priority} type={ticket_type}"
        )


def list_definitions(db: Session, tenant: TenantContext, is_active: bool | None = None) -> list[SlaDefinition]:
    stmt = select(SlaDefinition).where(SlaDefinition.organization_id == tenant.organization_id)
    if is_active is not None:
        stmt = stmt.where(SlaDefinition.is_active.is_(is_active))
    return list(db.execute(stmt.order_by(SlaDefinition.priority, SlaDefinition.ticket_type)).scalars().all())


def get_definition(db: Session, tenant: TenantContext, definition_id: uuid.UUID) -> SlaDefinition:
    definition = db.execute(
        select(SlaDefinition).where(
            SlaDefinition.id == definition_id,
            SlaDefinition.organization_id == tenant.organization_id,
        )
    ).scalars().first()
    if definition is None:
        raise NotFoundError(f"SLA definition {definition_id} not found")
    return definition


def create_definition(db: Session, tenant: TenantContext, values: dict) -> SlaDefinition:
    values = validate_definition(values)
    if values.get("is_active", True):
        _ensure_scope_free(db, tenant, values["priority"], values["ticket_type"])
    definition = SlaDefinition(
        organization_id=tenant.organization_id,
        **{k: v for k, v in values.items() if k in DEFINITION_FIELDS},
    )
    db.add(definition)
    db.flush()
    audit_service.log_crud_event(
        db, tenant, "CREATE", "sla_definition", definition.id,
        entity_name=definition.name, new_values=audit_service.snapshot(definition),
    )
    return definition


def update_definition(db: Session, tenant: TenantContext, definition_id: uuid.UUID, changes: dict) -> SlaDefinition:
    definition = get_definition(db, tenant, definition_id)
    before = audit_service.snapshot(definition)
    merged = {f: getattr(definition, f) for f in DEFINITION_FIELDS}
    merged.update({k: v for k, v in changes.items() if k in DEFINITION_FIELDS})
    merged = validate_definition(merged)
    if merged["is_active"]:
        _ensure_scope_free(db, tenant, merged["priority"], merged["ticket_type"], exclude_id=definition.id)
    for field in DEFINITION_FIELDS:
        setattr(definition, field, merged[field])
    db.flush()
    audit_service.log_crud_event(
        db, tenant, "UPDATE", "sla_definition", definition.id,
        entity_name=definition.name, old_values=before, new_values=audit_service.snapshot(definition),
    )
    return definition


def deactivate_definition(db: Session, tenant: TenantContext, definition_id: uuid.UUID) -> SlaDefinition:
    definition = get_definition(db, tenant, definition_id)
    if definition.is_active:
        definition.is_active = False
        db.flush()
        audit_service.log_crud_event(
            db, tenant, "DELETE", "sla_definition", definition.id,
            entity_name=definition.name, old_values={"is_active": True}, new_values={"is_active": False},
        )
    return definition


def find_definition(db: Session, tenant: TenantContext, priority: str, ticket_type: str) -> SlaDefinition | None:
    """The active definition for (priority, type), or None (tracking skipped)."""
    return db.execute(
        select(SlaDefinition).where(
            SlaDefinition.organization_id == tenant.organization_id,
            SlaDefinition.priority == priority,
            SlaDefinition.ticket_type == ticket_type,
            SlaDefinition.is_active.is_(True),
        )
    ).scalars().first()


# ─── Deadlines ───

def deadlines_for(definition: SlaDefinition, start: datetime) -> SlaDeadlines:
    return compute_deadlines(
        definition.calendar(), start, definition.response_time_hours, definition.resolution_time_hours
    )


def calculate(
    db: Session, tenant: TenantContext, priority: str, ticket_type: str, start: datetime | None = None
) -> SlaDeadlines | None:
    definition = find_definition(db, tenant, priority, ticket_type)
    if definition is None:
        return None
    return deadlines_for(definition, start or _now())


def apply_deadlines(db: Session, tenant: TenantContext, ticket: Ticket) -> SlaDeadlines | None:
    """(Re)compute the ticket's deadlines from its creation instant."""
    definition = find_definition(db, tenant, ticket.priority, ticket.type)
    if definition is None:
        logger.debug("No SLA for ticket %s (priority=%s type=%s)", ticket.id, ticket.priority, ticket.type)
        # an SLA-derived due date leaves with the SLA; a caller-set one stays
        sla_derived = ticket.sla_definition_id is not None or (
            ticket.resolution_due_at is not None and ticket.due_date == ticket.resolution_due_at
        )
        if sla_derived:
            ticket.due_date = None
        ticket.sla_definition_id = None
        ticket.response_due_at = None
        ticket.resolution_due_at = None
        return None
    return _assign(ticket, definition)


def _assign(ticket: Ticket, definition: SlaDefinition) -> SlaDeadlines:
    deadlines = deadlines_for(definition, ticket.created_at)
    ticket.sla_definition_id = definition.id
    ticket.response_due_at = deadlines.response_due_at
    ticket.resolution_due_at = deadlines.resolution_due_at
    ticket.due_date = deadlines.resolution_due_at
    return deadlines


# ─── Detector ───

def detect_for_ticket(
    db: Session, tenant: TenantContext, ticket: Ticket, now: datetime | None = None
) -> list[SlaViolation]:
    """Open, resolve or record violations for one (locked) ticket. Returns newly opened rows."""
    now = now or _now()
    open_rows = {
        v.violation_type: v
        for v in db.execute(
            select(SlaViolation).where(
                SlaViolation.ticket_id == ticket.id,
                SlaViolation.is_resolved.is_(False),
            )
        ).scalars().all()
    }
    opened: list[SlaViolation] = []

    for vtype, due_attr, met_attr in DEADLINES:
        due_at = getattr(ticket, due_attr)
        met_at = getattr(ticket, met_attr)
        existing = open_rows.get(vtype.value)

        if is_missed(due_at, met_at, now):
            if existing is None:
                opened.append(_open_violation(db, tenant, ticket, vtype, due_at, now))
        elif existing is not None:
            # met late, or the deadline moved after a priority/type change
            existing.is_resolved = True
            existing.resolved_at = now
            existing.actual_time = met_at or now
            existing.sla_details = {
                **(existing.sla_details or {}),
                "resolution": "met" if met_at else "deadline_recomputed",
            }
            logger.info("SLA violation %s resolved for ticket %s", vtype.value, ticket.ticket_number)
        elif is_met_late(due_at, met_at) and not _has_violation(db, ticket.id, vtype):
            # late and never observed open by a detector pass
            db.add(SlaViolation(
                organization_id=tenant.organization_id,
                ticket_id=ticket.id,
                sla_definition_id=ticket.sla_definition_id,
                violation_type=vtype.value,
                expected_time=due_at,
                actual_time=met_at,
                sla_details={"ticket_number": ticket.ticket_number, "resolution": "met_late"},
                is_resolved=True,
                resolved_at=now,
            ))

    db.flush()
    return opened


def _has_violation(db: Session, ticket_id: uuid.UUID, vtype: ViolationType) -> bool:
    count = db.execute(
        select(func.count(SlaViolation.id)).where(
            SlaViolation.ticket_id == ticket_id,
            SlaViolation.violation_type == vtype.value,
        )
    ).scalar()
    return bool(count)


def _open_violation(
    db: Session, tenant: TenantContext, ticket: Ticket, vtype: ViolationType, due_at: datetime, now: datetime
) -> SlaViolation:
    violation = SlaViolation(
        organization_id=tenant.organization_id,
        ticket_id=ticket.id,
        sla_definition_id=ticket.sla_definition_id,
        violation_type=vtype.value,
        expected_time=due_at,
        actual_time=None,
        sla_details={
            "ticket_number": ticket.ticket_number,
            "priority": ticket.priority,
            "type": ticket.type,
            "detected_at": now.isoformat(),
        },
        is_resolved=False,
    )
    db.add(violation)
    db.flush()
    logger.warning(
        "SLA BREACH: ticket %s %s deadline %s missed", ticket.ticket_number, vtype.value, due_at.isoformat()
    )
    audit_service.log_event(
        db, tenant,
        action="SLA_VIOLATION",
        entity_type="ticket",
        entity_id=ticket.id,
        entity_name=ticket.ticket_number,
        new_values={"violation_type": vtype.value, "expected_time": due_at},
        severity="high",
        description=f"SLA {vtype.value} deadline missed for ticket {ticket.ticket_number}",
    )
    sms_service.queue_sla_breach(db, tenant, ticket, violation, now=now)
    return violation


def _tickets_to_check(db: Session, tenant: TenantContext) -> list[Ticket]:
    """Non-terminal tickets plus any ticket still holding an open violation, row-locked."""
    has_open = select(SlaViolation.ticket_id).where(
        SlaViolation.organization_id == tenant.organization_id,
        SlaViolation.is_resolved.is_(False),
    )
    return list(db.execute(
        select(Ticket)
        .where(
            Ticket.organization_id == tenant.organization_id,
            or_(Ticket.status.not_in(list(TERMINAL_STATUSES)), Ticket.id.in_(has_open)),
        )
        .with_for_update(skip_locked=True)
    ).scalars().all())


def detect_for_organization(db: Session, tenant: TenantContext, now: datetime | None = None) -> dict:
    now = now or _now()
    definitions = list_definitions(db, tenant, is_active=True)
    by_scope = {(d.priority, d.ticket_type): d for d in definitions}
    stats = {"checked": 0, "opened": 0, "backfilled": 0}

    for ticket in _tickets_to_check(db, tenant):
        # tickets created before their definition existed get deadlines now
        if ticket.sla_definition_id is None and not ticket.is_terminal:
            definition = by_scope.get((ticket.priority, ticket.type))
            if definition is not None:
                _assign(ticket, definition)
                stats["backfilled"] += 1
        stats["opened"] += len(detect_for_ticket(db, tenant, ticket, now))
        stats["checked"] += 1
    return stats


def run_detector_pass(
    session_factory: Callable[[], Session],
    now: datetime | None = None,
    organization_ids: list[uuid.UUID] | None = None,
) -> dict:
    """One detector pass over every active organization, each in its own transaction.

    A failing organization is logged and reported in ``failed``; the rest
    still run.
    """
    now = now or _now()
    if organization_ids is None:
        with session_factory() as db:
            organization_ids = list(db.execute(
                select(Organization.id).where(Organization.is_active.is_(True))
            ).scalars().all())

    result = {"organizations": 0, "checked": 0, "opened": 0, "backfilled": 0, "failed": []}
    for org_id in organization_ids:
        try:
            with session_factory() as db:
                stats = detect_for_organization(db, TenantContext.system(org_id), now)
                db.commit()
        except Exception:
            logger.exception("SLA detector: organization %s skipped this pass", org_id)
            result["failed"].append(str(org_id))
            continue
        result["organizations"] += 1
        for key in ("checked", "opened", "backfilled"):
            result[key] += stats[key]
    return result


# ─── Read side ───

def lock_ticket(db: Session, tenant: TenantContext, ticket_id: uuid.UUID) -> Ticket:
    ticket = db.execute(
        select(Ticket)
        .where(Ticket.id == ticket_id, Ticket.organization_id == tenant.organization_id)
        .with_for_update()
    ).scalars().first()
    if ticket is None:
        raise NotFoundError(f"Ticket {ticket_id} not found")
    return ticket


def check_ticket(db: Session, tenant: TenantContext, ticket_id: uuid.UUID) -> list[SlaViolation]:
    ticket = lock_ticket(db, tenant, ticket_id)
    return detect_for_ticket(db, tenant, ticket)


def list_violations(
    db: Session,
    tenant: TenantContext,
    is_resolved: bool | None = None,
    violation_type: str | None = None,
    ticket_id: uuid.UUID | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    page: int = 1,
    page_size: int = 50,
) -> tuple[list[SlaViolation], int]:
    conditions = [SlaViolation.organization_id == tenant.organization_id]
    if is_resolved is not None:
        conditions.append(SlaViolation.is_resolved.is_(is_resolved))
    if violation_type:
        conditions.append(SlaViolation.violation_type == violation_type)
    if ticket_id:
        conditions.append(SlaViolation.ticket_id == ticket_id)
    if start_date:
        conditions.append(SlaViolation.created_at >= start_date)
    if end_date:
        conditions.append(SlaViolation.created_at <= end_date)

    total = db.execute(select(func.count(SlaViolation.id)).where(*conditions)).scalar() or 0
    rows = db.execute(
        select(SlaViolation)
        .where(*conditions)
        .order_by(SlaViolation.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    ).scalars().all()
    return list(rows), total


def _ticket_calendar(db: Session, ticket: Ticket) -> BusinessCalendar:
    """Calendar of the definition the deadlines came from; the default window once it is gone."""
    if ticket.sla_definition_id is not None:
        definition = db.get(SlaDefinition, ticket.sla_definition_id)
        if definition is not None:
            return definition.calendar()
    return BusinessCalendar()


def ticket_sla_state(db: Session, tenant: TenantContext, ticket: Ticket, now: datetime | None = None) -> dict:
    now = now or _now()
    calendar = _ticket_calendar(db, ticket)

    def _one(due_at, met_at):
        if due_at is None:
            return None
        state = deadline_state(calendar, due_at, met_at, ticket.created_at, now, settings.SLA_AT_RISK_PERCENT)
        return {"due_at": due_at, "met_at": met_at, "state": state.value}

    open_violations, _ = list_violations(db, tenant, is_resolved=False, ticket_id=ticket.id)
    return {
        "ticket_id": ticket.id,
        "sla_definition_id": ticket.sla_definition_id,
        "response": _one(ticket.response_due_at, ticket.first_response_at),
        "resolution": _one(ticket.resolution_due_at, ticket.resolved_at),
        "open_violations": open_violations,
    }


def stats(db: Session, tenant: TenantContext, days: int = 30) -> dict:
    since = _now() - timedelta(days=days)
    total_tickets = db.execute(
        select(func.count(Ticket.id)).where(
            Ticket.organization_id == tenant.organization_id,
            Ticket.created_at >= since,
        )
    ).scalar() or 0
    by_type = dict(db.execute(
        select(SlaViolation.violation_type, func.count(SlaViolation.id))
        .where(SlaViolation.organization_id == tenant.organization_id, SlaViolation.created_at >= since)
        .group_by(SlaViolation.violation_type)
    ).all())
    resolved = db.execute(
        select(func.count(SlaViolation.id)).where(
            SlaViolation.organization_id == tenant.organization_id,
            SlaViolation.created_at >= since,
            SlaViolation.is_resolved.is_(True),
        )
    ).scalar() or 0
    total_violations = sum(by_type.values())
    return {
        "days": days,
        "total_tickets": total_tickets,
        "total_violations": total_violations,
        "resolved_violations": resolved,
        "open_violations": total_violations - resolved,
        "violations_by_type": by_type,
    }
