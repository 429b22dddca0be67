"""Ticket API endpoints: lifecycle, comments, SLA state, escalation and time tracking."""
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.errors import service_errors
from app.core.deps import get_tenant
from app.core.tenancy import TenantContext
from app.db.session import get_session
from app.schemas.billing import TimeEntryCreate, TimeEntryOut
from app.schemas.escalation import EscalateIn, EscalationFiringOut
from app.schemas.sla import SlaViolationOut, TicketSlaOut
from app.schemas.ticket import (
    CommentCreate,
    CommentOut,
    TicketCreate,
    TicketListResponse,
    TicketOut,
    TicketUpdate,
)
from app.services import billing as billing_svc
from app.services import escalation as escalation_svc
from app.services import sla as sla_svc
from app.services import tickets as ticket_svc

router = APIRouter()

Session = Annotated[AsyncSession, Depends(get_session)]
Tenant = Annotated[TenantContext, Depends(get_tenant)]


# ─── Tickets ───

@router.get("", response_model=TicketListResponse)
async def list_tickets(
    db: Session,
    tenant: Tenant,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    status_filter: str | None = Query(default=None, alias="status"),
    priority: str | None = None,
    type: str | None = None,
    assigned_to: uuid.UUID | None = None,
    client_id: uuid.UUID | None = None,
    search: str | None = None,
):
    items, total = await db.run_sync(lambda s: ticket_svc.list_tickets(
        s, tenant,
        status=status_filter, priority=priority, ticket_type=type,
        assigned_to=assigned_to, client_id=client_id, search=search,
        page=page, page_size=page_size,
    ))
    return TicketListResponse(
        items=[TicketOut.model_validate(t) for t in items], total=total, page=page, page_size=page_size
    )


@router.post("", response_model=TicketOut, status_code=status.HTTP_201_CREATED)
async def create_ticket(body: TicketCreate, db: Session, tenant: Tenant):
    with service_errors():
        ticket = await db.run_sync(lambda s: ticket_svc.create_ticket(s, tenant, body.model_dump()))
    await db.commit()
    await db.refresh(ticket)
    return ticket


@router.get("/{ticket_id}", response_model=TicketOut)
async def get_ticket(ticket_id: uuid.UUID, db: Session, tenant: Tenant):
    with service_errors():
        return await db.run_sync(lambda s: ticket_svc.get_ticket(s, tenant, ticket_id))


@router.patch("/{ticket_id}", response_model=TicketOut)
async def update_ticket(ticket_id: uuid.UUID, body: TicketUpdate, db: Session, tenant: Tenant):
    changes = body.model_dump(exclude_unset=True)
    with service_errors():
        ticket = await db.run_sync(lambda s: ticket_svc.update_ticket(s, tenant, ticket_id, changes))
    await db.commit()
    await db.refresh(ticket)
    return ticket


@router.delete("/{ticket_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_ticket(ticket_id: uuid.UUID, db: Session, tenant: Tenant):
    with service_errors():
        await db.run_sync(lambda s: ticket_svc.delete_ticket(s, tenant, ticket_id))
    await db.commit()


# ─── Comments ───

@router.get("/{ticket_id}/comments", response_model=list[CommentOut])
async def list_comments(ticket_id: uuid.UUID, db: Session, tenant: Tenant):
    with service_errors():
        return await db.run_sync(lambda s: ticket_svc.list_comments(s, tenant, ticket_id))


@router.post("/{ticket_id}/comments", response_model=CommentOut, status_code=status.HTTP_201_CREATED)
async def add_comment(ticket_id: uuid.UUID, body: CommentCreate, db: Session, tenant: Tenant):
    with service_errors():
        comment = await db.run_sync(
            lambda s: ticket_svc.add_comment(s, tenant, ticket_id, body.content, body.is_internal)
        )
    await db.commit()
    await db.refresh(comment)
    return comment


# ─── SLA ───

@router.get("/{ticket_id}/sla", response_model=TicketSlaOut)
async def ticket_sla(ticket_id: uuid.UUID, db: Session, tenant: Tenant):
    def _state(s):
        return sla_svc.ticket_sla_state(s, tenant, ticket_svc.get_ticket(s, tenant, ticket_id))

    with service_errors():
        return await db.run_sync(_state)


@router.post("/{ticket_id}/sla/check", response_model=list[SlaViolationOut])
async def check_ticket_sla(ticket_id: uuid.UUID, db: Session, tenant: Tenant):
    """Run the violation detector for one ticket now. Returns violations created by this check."""
    with service_errors():
        created = await db.run_sync(lambda s: sla_svc.check_ticket(s, tenant, ticket_id))
    await db.commit()
    return created


# ─── Escalation ───

@router.post("/{ticket_id}/escalate", response_model=list[EscalationFiringOut])
async def escalate_ticket(ticket_id: uuid.UUID, body: EscalateIn, db: Session, tenant: Tenant):
    with service_errors():
        firings = await db.run_sync(
            lambda s: escalation_svc.manual_escalate(s, tenant, ticket_id, rule_id=body.rule_id)
        )
    await db.commit()
    return firings


# ─── Time entries ───

@router.get("/{ticket_id}/time-entries", response_model=list[TimeEntryOut])
async def list_time_entries(ticket_id: uuid.UUID, db: Session, tenant: Tenant):
    return await db.run_sync(lambda s: billing_svc.list_time_entries(s, tenant, ticket_id))


@router.post("/{ticket_id}/time-entries", response_model=TimeEntryOut, status_code=status.HTTP_201_CREATED)
async def log_time(ticket_id: uuid.UUID, body: TimeEntryCreate, db: Session, tenant: Tenant):
    values = body.model_dump()
    with service_errors():
        entry = await db.run_sync(lambda s: billing_svc.log_time(s, tenant, ticket_id, values))
    await db.commit()
    await db.refresh(entry)
    return entry
