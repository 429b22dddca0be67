from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.deps import get_tenant
from app.core.tenancy import TenantContext
from app.db.session import get_session
from app.services import dashboard as dashboard_svc

router = APIRouter()


@router.get("/stats", summary="Ticket, SLA and client counts for the dashboard")
async def dashboard_stats(
    db: Annotated[AsyncSession, Depends(get_session)],
    tenant: Annotated[TenantContext, Depends(get_tenant)],
):
    return await db.run_sync(lambda s: dashboard_svc.stats(s, tenant))
