"""Audit log helper: append-only writes to audit_logs, plus read-side queries."""
import json
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import delete, func, inspect, or_, select
from sqlalchemy.orm import Session

from app.core.tenancy import TenantContext
from app.models.audit import AuditLog

logger = logging.getLogger(__name__)

# UPDATEs on these are operationally significant
_MEDIUM_UPDATE_ENTITIES = frozenset({"user", "contract", "ticket"})


# ─── Snapshots ───

def snapshot(obj: Any, fields: list[str] | None = None) -> dict:
    """JSON-safe dict of an ORM object's column values (or just ``fields``)."""
    if fields is None:
        fields = [attr.key for attr in inspect(obj).mapper.column_attrs]
    return _json_safe({f: getattr(obj, f) for f in fields})


def _json_safe(value: Any) -> Any:
    if value is None:
        return None
    return json.loads(json.dumps(value, default=str))


def crud_severity(action: str, entity_type: str) -> str:
    if action == "DELETE":
        return "high"
    if action == "UPDATE" and entity_type in _MEDIUM_UPDATE_ENTITIES:
        return "medium"
    return "low"


# ─── Writers ───

def log_event(
    db: Session,
    tenant: TenantContext,
    action: str,
    entity_type: str,
    entity_id: uuid.UUID | str | None = None,
    entity_name: str | None = None,
    old_values: Any | None = None,
    new_values: Any | None = None,
    metadata: dict | None = None,
    severity: str = "low",
    description: str | None = None,
) -> AuditLog:
    """Write a single audit log entry.

    Actor and session metadata come from ``tenant``. The entry is flushed,
    not committed; the caller controls the transaction.
    """
    entry = AuditLog(
        organization_id=tenant.organization_id,
        actor_id=tenant.actor_id,
        actor_email=tenant.actor_email,
        action=action,
        entity_type=entity_type,
        entity_id=uuid.UUID(str(entity_id)) if entity_id else None,
        entity_name=entity_name,
        old_values=_json_safe(old_values),
        new_values=_json_safe(new_values),
        event_metadata=_json_safe(metadata),
        ip_address=tenant.ip_address,
        user_agent=tenant.user_agent,
        session_id=tenant.session_id,
        severity=severity,
        description=description,
    )
    db.add(entry)
    db.flush()
    logger.debug("Audit: %s %s/%s severity=%s", action, entity_type, entity_id, severity)
    return entry


def log_crud_event(
    db: Session,
    tenant: TenantContext,
    action: str,
    entity_type: str,
    entity_id: uuid.UUID | str | None,
    entity_name: str | None = None,
    old_values: Any | None = None,
    new_values: Any | None = None,
    description: str | None = None,
) -> AuditLog:
    return log_event(
        db,
        tenant,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        entity_name=entity_name,
        old_values=old_values,
        new_values=new_values,
        severity=crud_severity(action, entity_type),
        description=description or f"{action} {entity_type}" + (f" {entity_name}" if entity_name else ""),
    )


def log_security_event(
    db: Session,
    tenant: TenantContext,
    action: str,
    description: str,
    metadata: dict | None = None,
) -> AuditLog:
    return log_event(
        db,
        tenant,
        action=action,
        entity_type="security",
        metadata=metadata,
        severity="high",
        description=description,
    )


# ─── Queries ───

def _filtered(
    stmt,
    tenant: TenantContext,
    entity_type: str | None = None,
    action: str | None = None,
    actor_id: uuid.UUID | None = None,
    severity: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    search: str | None = None,
):
    stmt = stmt.where(AuditLog.organization_id == tenant.organization_id)
    if entity_type:
        stmt = stmt.where(AuditLog.entity_type == entity_type)
    if action:
        stmt = stmt.where(AuditLog.action == action)
    if actor_id:
        stmt = stmt.where(AuditLog.actor_id == actor_id)
    if severity:
        stmt = stmt.where(AuditLog.severity == severity)
    if start_date:
        stmt = stmt.where(AuditLog.created_at >= start_date)
    if end_date:
        stmt = stmt.where(AuditLog.created_at <= end_date)
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(or_(
            AuditLog.description.ilike(pattern),
            AuditLog.entity_name.ilike(pattern),
            AuditLog.actor_email.ilike(pattern),
        ))
    return stmt


def list_logs(
    db: Session,
    tenant: TenantContext,
    page: int = 1,
    page_size: int = 50,
    **filters,
) -> tuple[list[AuditLog], int]:
    total = db.execute(_filtered(select(func.count(AuditLog.id)), tenant, **filters)).scalar() or 0
    rows = db.execute(
        _filtered(select(AuditLog), tenant, **filters)
        .order_by(AuditLog.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    ).scalars().all()
    return list(rows), total


def export_logs(db: Session, tenant: TenantContext, **filters) -> list[AuditLog]:
    return list(db.execute(
        _filtered(select(AuditLog), tenant, **filters).order_by(AuditLog.created_at.asc())
    ).scalars().all())


def entity_history(db: Session, tenant: TenantContext, entity_type: str, entity_id: uuid.UUID) -> list[AuditLog]:
    return list(db.execute(
        select(AuditLog)
        .where(
            AuditLog.organization_id == tenant.organization_id,
            AuditLog.entity_type == entity_type,
            AuditLog.entity_id == entity_id,
        )
        .order_by(AuditLog.created_at.desc())
    ).scalars().all())


def summary(db: Session, tenant: TenantContext, days: int = 30) -> dict:
    since = datetime.now(timezone.utc) - timedelta(days=days)
    scope = (AuditLog.organization_id == tenant.organization_id, AuditLog.created_at >= since)

    by_severity = dict(db.execute(
        select(AuditLog.severity, func.count(AuditLog.id)).where(*scope).group_by(AuditLog.severity)
    ).all())
    by_action = dict(db.execute(
        select(AuditLog.action, func.count(AuditLog.id)).where(*scope).group_by(AuditLog.action)
    ).all())
    active_users = db.execute(
        select(func.count(func.distinct(AuditLog.actor_id))).where(*scope, AuditLog.actor_id.isnot(None))
    ).scalar() or 0

    return {
        "days": days,
        "total_events": sum(by_action.values()),
        "by_severity": by_severity,
        "by_action": by_action,
        "login_events": by_action.get("LOGIN", 0),
        "failed_logins": by_action.get("LOGIN_FAILED", 0),
        "delete_events": by_action.get("DELETE", 0),
        "active_users": active_users,
    }


def security_events(db: Session, tenant: TenantContext, days: int = 7, limit: int = 100) -> list[AuditLog]:
    since = datetime.now(timezone.utc) - timedelta(days=days)
    return list(db.execute(
        select(AuditLog)
        .where(
            AuditLog.organization_id == tenant.organization_id,
            AuditLog.created_at >= since,
            AuditLog.severity.in_(["high", "critical"]),
        )
        .order_by(AuditLog.created_at.desc())
        .limit(limit)
    ).scalars().all())


def clean_old_logs(db: Session, days_to_keep: int, organization_id: uuid.UUID | None = None) -> int:
    """Delete entries older than ``days_to_keep``; all orgs when ``organization_id`` is None."""
    if days_to_keep < 1:
        raise ValueError("days_to_keep must be at least 1")
    cutoff = datetime.now(timezone.utc) - timedelta(days=days_to_keep)
    stmt = delete(AuditLog).where(AuditLog.created_at < cutoff)
    if organization_id is not None:
        stmt = stmt.where(AuditLog.organization_id == organization_id)
    deleted = db.execute(stmt).rowcount or 0
    logger.info("Audit retention: deleted %d entries older than %s", deleted, cutoff.date())
    return deleted
