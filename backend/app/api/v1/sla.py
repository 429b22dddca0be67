"""SLA API endpoints: definitions, deadline calculation, violations and stats."""
import uuid
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.errors import service_errors
from app.core.deps import get_tenant, require_role
from app.core.tenancy import TenantContext
from app.db.session import get_session
from app.schemas.sla import (
    SlaCalculateIn,
    SlaCalculateOut,
    SlaDefinitionIn,
    SlaDefinitionOut,
    SlaDefinitionUpdate,
    SlaStatsOut,
    SlaViolationListResponse,
    SlaViolationOut,
)
from app.services import sla as sla_svc

router = APIRouter()

Session = Annotated[AsyncSession, Depends(get_session)]
Tenant = Annotated[TenantContext, Depends(get_tenant)]
_managers = Depends(require_role("admin", "manager"))


# ─── Definitions ───

@router.get("/definitions", response_model=list[SlaDefinitionOut])
async def list_definitions(db: Session, tenant: Tenant, is_active: bool | None = None):
    return await db.run_sync(lambda s: sla_svc.list_definitions(s, tenant, is_active=is_active))


@router.post(
    "/definitions",
    response_model=SlaDefinitionOut,
    status_code=status.HTTP_201_CREATED,
    dependencies=[_managers],
)
async def create_definition(body: SlaDefinitionIn, db: Session, tenant: Tenant):
    with service_errors():
        definition = await db.run_sync(lambda s: sla_svc.create_definition(s, tenant, body.model_dump()))
    await db.commit()
    await db.refresh(definition)
    return definition


@router.get("/definitions/{definition_id}", response_model=SlaDefinitionOut)
async def get_definition(definition_id: uuid.UUID, db: Session, tenant: Tenant):
    with service_errors():
        return await db.run_sync(lambda s: sla_svc.get_definition(s, tenant, definition_id))


@router.patch("/definitions/{definition_id}", response_model=SlaDefinitionOut, dependencies=[_managers])
async def update_definition(definition_id: uuid.UUID, body: SlaDefinitionUpdate, db: Session, tenant: Tenant):
    """Existing tickets keep their deadlines; new and re-prioritised tickets use the updated definition."""
    changes = body.model_dump(exclude_unset=True)
    with service_errors():
        definition = await db.run_sync(lambda s: sla_svc.update_definition(s, tenant, definition_id, changes))
    await db.commit()
    await db.refresh(definition)
    return definition


@router.delete("/definitions/{definition_id}", response_model=SlaDefinitionOut, dependencies=[_managers])
async def deactivate_definition(definition_id: uuid.UUID, db: Session, tenant: Tenant):
    with service_errors():
        definition = await db.run_sync(lambda s: sla_svc.deactivate_definition(s, tenant, definition_id))
    await db.commit()
    return definition


# ─── Deadlines ───

@router.post("/calculate", response_model=SlaCalculateOut)
async def calculate(body: SlaCalculateIn, db: Session, tenant: Tenant):
    """Deadlines a new ticket of this priority/type would get. Nulls when no definition applies."""
    deadlines = await db.run_sync(
        lambda s: sla_svc.calculate(s, tenant, body.priority, body.ticket_type, body.start_time)
    )
    if deadlines is None:
        return SlaCalculateOut(response_due_at=None, resolution_due_at=None)
    return SlaCalculateOut(
        response_due_at=deadlines.response_due_at, resolution_due_at=deadlines.resolution_due_at
    )


# ─── Violations ───

@router.get("/violations", response_model=SlaViolationListResponse)
async def list_violations(
    db: Session,
    tenant: Tenant,
    is_resolved: bool | None = None,
    violation_type: str | None = None,
    ticket_id: uuid.UUID | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=200),
):
    items, total = await db.run_sync(lambda s: sla_svc.list_violations(
        s, tenant,
        is_resolved=is_resolved, violation_type=violation_type, ticket_id=ticket_id,
        start_date=start_date, end_date=end_date, page=page, page_size=page_size,
    ))
    return SlaViolationListResponse(
        items=[SlaViolationOut.model_validate(v) for v in items], total=total, page=page, page_size=page_size
    )


@router.get("/stats", response_model=SlaStatsOut)
async def sla_stats(db: Session, tenant: Tenant, days: int = Query(default=30, ge=1, le=365)):
    return await db.run_sync(lambda s: sla_svc.stats(s, tenant, days=days))
