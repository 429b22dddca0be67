"""Audit log API endpoints."""
import csv
import io
import uuid
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.errors import service_errors
from app.core.deps import get_tenant, require_role
from app.core.tenancy import TenantContext
from app.db.session import get_session
from app.schemas.audit import AuditCleanOut, AuditLogListResponse, AuditLogOut, AuditSummaryOut
from app.services import audit as audit_svc

router = APIRouter(dependencies=[Depends(require_role("admin", "manager"))])

Session = Annotated[AsyncSession, Depends(get_session)]
Tenant = Annotated[TenantContext, Depends(get_tenant)]


def _filters(
    entity_type: str | None = None,
    action: str | None = None,
    actor_id: uuid.UUID | None = None,
    severity: str | None = None,
    start_date: Annotated[datetime | None, Query(description="Filter logs from this date (ISO 8601)")] = None,
    end_date: Annotated[datetime | None, Query(description="Filter logs until this date (ISO 8601)")] = None,
    search: str | None = None,
) -> dict:
    return {
        "entity_type": entity_type,
        "action": action,
        "actor_id": actor_id,
        "severity": severity,
        "start_date": start_date,
        "end_date": end_date,
        "search": search,
    }


Filters = Annotated[dict, Depends(_filters)]


@router.get("/logs", response_model=AuditLogListResponse)
async def list_logs(
    db: Session,
    tenant: Tenant,
    filters: Filters,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=500),
):
    items, total = await db.run_sync(
        lambda s: audit_svc.list_logs(s, tenant, page=page, page_size=page_size, **filters)
    )
    return AuditLogListResponse(
        items=[AuditLogOut.model_validate(e) for e in items], total=total, page=page, page_size=page_size
    )


@router.get(
    "/export",
    summary="Export audit logs as CSV",
    description="Stream the organization's audit logs as a CSV file, oldest first, with optional filters.",
)
async def export_audit_logs(db: Session, tenant: Tenant, filters: Filters):
    logs = await db.run_sync(lambda s: audit_svc.export_logs(s, tenant, **filters))

    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow([
        "id", "created_at", "actor_email", "action", "entity_type", "entity_id",
        "entity_name", "severity", "ip_address", "description",
    ])
    for log in logs:
        writer.writerow([
            str(log.id),
            log.created_at.isoformat() if log.created_at else "",
            log.actor_email or "",
            log.action,
            log.entity_type,
            str(log.entity_id) if log.entity_id else "",
            log.entity_name or "",
            log.severity,
            log.ip_address or "",
            log.description or "",
        ])

    output.seek(0)
    return StreamingResponse(
        iter([output.getvalue()]),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=audit-logs.csv"},
    )


@router.get("/logs/{entity_type}/{entity_id}", response_model=list[AuditLogOut])
async def entity_history(entity_type: str, entity_id: uuid.UUID, db: Session, tenant: Tenant):
    return await db.run_sync(lambda s: audit_svc.entity_history(s, tenant, entity_type, entity_id))


@router.get("/summary", response_model=AuditSummaryOut)
async def audit_summary(db: Session, tenant: Tenant, days: int = Query(default=30, ge=1, le=365)):
    return await db.run_sync(lambda s: audit_svc.summary(s, tenant, days=days))


@router.get("/security-events", response_model=list[AuditLogOut])
async def security_events(
    db: Session,
    tenant: Tenant,
    days: int = Query(default=7, ge=1, le=90),
    limit: int = Query(default=100, ge=1, le=1000),
):
    return await db.run_sync(lambda s: audit_svc.security_events(s, tenant, days=days, limit=limit))


@router.delete("/clean", response_model=AuditCleanOut, dependencies=[Depends(require_role("admin"))])
async def clean_logs(db: Session, tenant: Tenant, days_to_keep: int = Query(default=365, ge=1)):
    """Purge this organization's entries older than ``days_to_keep``. The purge itself is audited."""
    def _clean(s):
        deleted = audit_svc.clean_old_logs(s, days_to_keep, organization_id=tenant.organization_id)
        audit_svc.log_event(
            s, tenant, "DELETE", "audit_log",
            metadata={"days_to_keep": days_to_keep, "deleted": deleted},
            severity="high",
            description=f"Purged {deleted} audit entries older than {days_to_keep} days",
        )
        return deleted

    with service_errors():
        deleted = await db.run_sync(_clean)
    await db.commit()
    return AuditCleanOut(deleted=deleted, days_to_keep=days_to_keep)
