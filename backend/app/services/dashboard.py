from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.tenancy import TenantContext
from app.models.client import Client
from app.models.sla import SlaViolation
from app.models.ticket import TERMINAL_STATUSES, Ticket


def stats(db: Session, tenant: TenantContext) -> dict:
    org = tenant.organization_id
    live = (Ticket.organization_id == org, Ticket.is_active.is_(True))

    by_status = dict(db.execute(
        select(Ticket.status, func.count(Ticket.id)).where(*live).group_by(Ticket.status)
    ).all())
    by_priority = dict(db.execute(
        select(Ticket.priority, func.count(Ticket.id))
        .where(*live, Ticket.status.not_in(list(TERMINAL_STATUSES)))
        .group_by(Ticket.priority)
    ).all())
    overdue = db.execute(
        select(func.count(Ticket.id)).where(
            *live,
            Ticket.status.not_in(list(TERMINAL_STATUSES)),
            Ticket.due_date < datetime.now(timezone.utc),
        )
    ).scalar() or 0
    open_violations = db.execute(
        select(func.count(SlaViolation.id)).where(
            SlaViolation.organization_id == org,
            SlaViolation.is_resolved.is_(False),
        )
    ).scalar() or 0
    clients = dict(db.execute(
        select(Client.status, func.count(Client.id))
        .where(Client.organization_id == org, Client.is_active.is_(True))
        .group_by(Client.status)
    ).all())

    return {
        "tickets": {
            "total": sum(by_status.values()),
            "open": sum(n for s, n in by_status.items() if s not in TERMINAL_STATUSES),
            "by_status": by_status,
            "open_by_priority": by_priority,
            "overdue": overdue,
        },
        "sla": {"open_violations": open_violations},
        "clients": {"total": sum(clients.values()), "by_status": clients},
    }
