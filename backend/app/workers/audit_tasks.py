import logging

from app.core.config import settings
from app.db.session import get_sync_session
from app.services import audit as audit_service
from app.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="app.workers.audit_tasks.clean_audit_logs")
def clean_audit_logs(days_to_keep: int | None = None):
    """Daily retention: drop audit entries older than AUDIT_RETENTION_DAYS across all organizations."""
    days = days_to_keep or settings.AUDIT_RETENTION_DAYS
    with get_sync_session() as db:
        deleted = audit_service.clean_old_logs(db, days)
        db.commit()
    return {"deleted": deleted, "days_to_keep": days}
