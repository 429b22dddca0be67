"""Escalation rule endpoints.

Rules may be posted nested (``{"trigger": {...}, "action": {...}}``) or in
the flat column shape. Either way a trigger/action mismatch is a 422 that
names the offending field.
"""
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.errors import service_errors
from app.core.deps import get_tenant, require_role
from app.core.tenancy import TenantContext
from app.db.session import get_session
from app.schemas.escalation import (
    EscalationRuleIn,
    EscalationRuleOut,
    EscalationRuleUpdate,
    EscalationStatsOut,
    RuleTestIn,
    RuleTestOut,
)
from app.services import escalation as escalation_svc

router = APIRouter()

Session = Annotated[AsyncSession, Depends(get_session)]
Tenant = Annotated[TenantContext, Depends(get_tenant)]
_managers = Depends(require_role("admin", "manager"))


@router.get("/escalation-rules", response_model=list[EscalationRuleOut])
async def list_rules(db: Session, tenant: Tenant, is_active: bool | None = None):
    return await db.run_sync(lambda s: escalation_svc.list_rules(s, tenant, is_active=is_active))


@router.post(
    "/escalation-rules",
    response_model=EscalationRuleOut,
    status_code=status.HTTP_201_CREATED,
    dependencies=[_managers],
)
async def create_rule(body: EscalationRuleIn, db: Session, tenant: Tenant):
    with service_errors():
        rule = await db.run_sync(lambda s: escalation_svc.create_rule(
            s, tenant, body.name, body.policy(), description=body.description, is_active=body.is_active,
        ))
    await db.commit()
    await db.refresh(rule)
    return rule


@router.get("/escalation-rules/{rule_id}", response_model=EscalationRuleOut)
async def get_rule(rule_id: uuid.UUID, db: Session, tenant: Tenant):
    with service_errors():
        return await db.run_sync(lambda s: escalation_svc.get_rule(s, tenant, rule_id))


@router.patch("/escalation-rules/{rule_id}", response_model=EscalationRuleOut, dependencies=[_managers])
async def update_rule(rule_id: uuid.UUID, body: EscalationRuleUpdate, db: Session, tenant: Tenant):
    changes = body.model_dump(exclude_unset=True)
    for key in ("trigger", "action"):
        if changes.get(key) is not None:
            changes[key] = getattr(body, key)
    with service_errors():
        rule = await db.run_sync(lambda s: escalation_svc.update_rule(s, tenant, rule_id, changes))
    await db.commit()
    await db.refresh(rule)
    return rule


@router.delete("/escalation-rules/{rule_id}", response_model=EscalationRuleOut, dependencies=[_managers])
async def deactivate_rule(rule_id: uuid.UUID, db: Session, tenant: Tenant):
    with service_errors():
        rule = await db.run_sync(lambda s: escalation_svc.deactivate_rule(s, tenant, rule_id))
    await db.commit()
    return rule


@router.post("/escalation-rules/{rule_id}/test", response_model=RuleTestOut)
async def dry_run_rule(rule_id: uuid.UUID, body: RuleTestIn, db: Session, tenant: Tenant):
    """Would this rule fire on the ticket right now? Nothing is written."""
    with service_errors():
        return await db.run_sync(lambda s: escalation_svc.dry_run(s, tenant, rule_id, body.ticket_id))


@router.get("/escalation/stats", response_model=EscalationStatsOut)
async def escalation_stats(db: Session, tenant: Tenant, days: int = Query(default=30, ge=1, le=365)):
    return await db.run_sync(lambda s: escalation_svc.stats(s, tenant, days=days))
