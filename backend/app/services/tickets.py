"""Ticket lifecycle with SLA and escalation hooks.

Every mutation runs under the ticket's row lock: read state, decide
escalations and violations, write. Notifications are queued, never sent
inline, so delivery failures cannot block the mutation.
"""
import logging
import secrets
import uuid
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.tenancy import TenantContext
from app.models.client import Client, Contract
from app.models.ticket import TERMINAL_STATUSES, Ticket, TicketComment, TicketStatus
from app.models.user import User
from app.rules.errors import NotFoundError
from app.rules.escalation_engine import Transition
from app.services import audit as audit_service
from app.services import escalation as escalation_service
from app.services import sla as sla_service

logger = logging.getLogger(__name__)

STAFF_ROLES = frozenset({"admin", "manager", "technician"})
UPDATABLE_FIELDS = ("subject", "description", "status", "priority", "type", "assigned_to", "contract_id", "tags")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _ticket_number(now: datetime) -> str:
    return f"TKT-{now:%Y%m%d}-{secrets.token_hex(3).upper()}"


def _check_user(db: Session, tenant: TenantContext, user_id: uuid.UUID | None) -> None:
    if user_id is None:
        return
    found = db.execute(
        select(User.id).where(
            User.id == user_id,
            User.organization_id == tenant.organization_id,
            User.is_active.is_(True),
        )
    ).first()
    if found is None:
        raise NotFoundError(f"User {user_id} not found")


def _check_contract(db: Session, tenant: TenantContext, contract_id: uuid.UUID | None, client_id: uuid.UUID) -> None:
    if contract_id is None:
        return
    found = db.execute(
        select(Contract.id).where(
            Contract.id == contract_id,
            Contract.organization_id == tenant.organization_id,
            Contract.client_id == client_id,
        )
    ).first()
    if found is None:
        raise NotFoundError(f"Contract {contract_id} not found for this client")


# ─── Reads ───

def get_ticket(db: Session, tenant: TenantContext, ticket_id: uuid.UUID) -> Ticket:
    ticket = db.execute(
        select(Ticket).where(Ticket.id == ticket_id, Ticket.organization_id == tenant.organization_id)
    ).scalars().first()
    if ticket is None:
        raise NotFoundError(f"Ticket {ticket_id} not found")
    return ticket


def list_tickets(
    db: Session,
    tenant: TenantContext,
    status: str | None = None,
    priority: str | None = None,
    ticket_type: str | None = None,
    assigned_to: uuid.UUID | None = None,
    client_id: uuid.UUID | None = None,
    search: str | None = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[Ticket], int]:
    conditions = [Ticket.organization_id == tenant.organization_id, Ticket.is_active.is_(True)]
    if status:
        conditions.append(Ticket.status == status)
    if priority:
        conditions.append(Ticket.priority == priority)
    if ticket_type:
        conditions.append(Ticket.type == ticket_type)
    if assigned_to:
        conditions.append(Ticket.assigned_to == assigned_to)
    if client_id:
        conditions.append(Ticket.client_id == client_id)
    if search:
        conditions.append(Ticket.subject.ilike(f"%{search}%"))

    total = db.execute(select(func.count(Ticket.id)).where(*conditions)).scalar() or 0
    rows = db.execute(
        select(Ticket)
        .where(*conditions)
        .order_by(Ticket.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    ).scalars().all()
    return list(rows), total


def list_comments(db: Session, tenant: TenantContext, ticket_id: uuid.UUID) -> list[TicketComment]:
    get_ticket(db, tenant, ticket_id)
    return list(db.execute(
        select(TicketComment).where(TicketComment.ticket_id == ticket_id).order_by(TicketComment.created_at)
    ).scalars().all())


# ─── Mutations ───

def create_ticket(db: Session, tenant: TenantContext, values: dict, now: datetime | None = None) -> Ticket:
    now = now or _now()
    client = db.execute(
        select(Client).where(Client.id == values["client_id"], Client.organization_id == tenant.organization_id)
    ).scalars().first()
    if client is None:
        raise NotFoundError(f"Client {values['client_id']} not found")
    _check_user(db, tenant, values.get("assigned_to"))
    _check_contract(db, tenant, values.get("contract_id"), client.id)

    ticket = Ticket(
        id=uuid.uuid4(),
        organization_id=tenant.organization_id,
        ticket_number=_ticket_number(now),
        client_id=client.id,
        contract_id=values.get("contract_id"),
        created_by=tenant.actor_id,
        assigned_to=values.get("assigned_to"),
        subject=values["subject"],
        description=values.get("description") or "",
        priority=values.get("priority") or "medium",
        status=TicketStatus.open.value,
        type=values.get("type") or "incident",
        source=values.get("source") or "portal",
        tags=values.get("tags") or [],
        created_at=now,
        status_changed_at=now,
        priority_changed_at=now,
    )
    if values.get("due_date"):
        ticket.due_date = values["due_date"]
    sla_service.apply_deadlines(db, tenant, ticket)
    db.add(ticket)
    db.flush()

    audit_service.log_crud_event(
        db, tenant, "CREATE", "ticket", ticket.id,
        entity_name=ticket.ticket_number, new_values=audit_service.snapshot(ticket),
    )
    # creation counts as entering the initial status and priority
    escalation_service.evaluate_ticket(
        db, tenant, ticket,
        transitions=[
            Transition("status", None, ticket.status, now),
            Transition("priority", None, ticket.priority, now),
        ],
        now=now,
    )
    sla_service.detect_for_ticket(db, tenant, ticket, now)
    logger.info("Ticket %s created (priority=%s type=%s)", ticket.ticket_number, ticket.priority, ticket.type)
    return ticket


def _apply_status(ticket: Ticket, new_status: str, now: datetime) -> None:
    old_status = ticket.status
    ticket.status = new_status
    ticket.status_changed_at = now
    if old_status == TicketStatus.open.value and ticket.first_response_at is None:
        ticket.first_response_at = now
    if new_status in TERMINAL_STATUSES:
        if ticket.resolved_at is None:
            ticket.resolved_at = now
        if new_status == TicketStatus.closed.value:
            ticket.closed_at = now
    elif old_status in TERMINAL_STATUSES:
        # reopened: the resolution clock is running again
        ticket.resolved_at = None
        ticket.closed_at = None


def update_ticket(
    db: Session,
    tenant: TenantContext,
    ticket_id: uuid.UUID,
    changes: dict,
    now: datetime | None = None,
) -> Ticket:
    now = now or _now()
    ticket = sla_service.lock_ticket(db, tenant, ticket_id)
    before = audit_service.snapshot(ticket)
    changes = {k: v for k, v in changes.items() if k in UPDATABLE_FIELDS}
    transitions: list[Transition] = []

    if "assigned_to" in changes and changes["assigned_to"] != ticket.assigned_to:
        _check_user(db, tenant, changes["assigned_to"])
        ticket.assigned_to = changes["assigned_to"]
    if "contract_id" in changes and changes["contract_id"] != ticket.contract_id:
        _check_contract(db, tenant, changes["contract_id"], ticket.client_id)
        ticket.contract_id = changes["contract_id"]
    for field in ("subject", "description", "tags"):
        if field in changes and changes[field] is not None:
            setattr(ticket, field, changes[field])

    new_status = changes.get("status")
    if new_status and new_status != ticket.status:
        transitions.append(Transition("status", ticket.status, new_status, now))
        _apply_status(ticket, new_status, now)

    recompute = False
    new_priority = changes.get("priority")
    if new_priority and new_priority != ticket.priority:
        transitions.append(Transition("priority", ticket.priority, new_priority, now))
        ticket.priority = new_priority
        ticket.priority_changed_at = now
        recompute = True
    new_type = changes.get("type")
    if new_type and new_type != ticket.type:
        ticket.type = new_type
        recompute = True
    if recompute:
        sla_service.apply_deadlines(db, tenant, ticket)

    db.flush()
    escalation_service.evaluate_ticket(db, tenant, ticket, transitions=transitions, now=now)
    sla_service.detect_for_ticket(db, tenant, ticket, now)

    after = audit_service.snapshot(ticket)
    if after != before:
        audit_service.log_crud_event(
            db, tenant, "UPDATE", "ticket", ticket.id,
            entity_name=ticket.ticket_number,
            old_values={k: v for k, v in before.items() if after.get(k) != v},
            new_values={k: v for k, v in after.items() if before.get(k) != v},
        )
    return ticket


def add_comment(
    db: Session,
    tenant: TenantContext,
    ticket_id: uuid.UUID,
    content: str,
    is_internal: bool = False,
    now: datetime | None = None,
) -> TicketComment:
    """A public comment from staff counts as the first response."""
    now = now or _now()
    ticket = sla_service.lock_ticket(db, tenant, ticket_id)
    comment = TicketComment(ticket_id=ticket.id, user_id=tenant.actor_id, content=content, is_internal=is_internal)
    db.add(comment)
    if not is_internal and tenant.actor_role in STAFF_ROLES and ticket.first_response_at is None:
        ticket.first_response_at = now
        sla_service.detect_for_ticket(db, tenant, ticket, now)
    db.flush()
    audit_service.log_crud_event(
        db, tenant, "CREATE", "ticket_comment", comment.id,
        entity_name=ticket.ticket_number, new_values={"is_internal": is_internal},
    )
    return comment


def delete_ticket(db: Session, tenant: TenantContext, ticket_id: uuid.UUID) -> Ticket:
    ticket = sla_service.lock_ticket(db, tenant, ticket_id)
    ticket.is_active = False
    db.flush()
    audit_service.log_crud_event(
        db, tenant, "DELETE", "ticket", ticket.id,
        entity_name=ticket.ticket_number, old_values={"is_active": True}, new_values={"is_active": False},
    )
    return ticket
