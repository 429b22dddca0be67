"""SMS outbox retry sweep."""
import logging

from app.db.session import get_sync_session
from app.services import sms as sms_service
from app.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="app.workers.notification_tasks.process_sms_retries")
def process_sms_retries(limit: int = 50):
    """Attempt every pending SMS whose next_retry_at has passed."""
    with get_sync_session() as db:
        stats = sms_service.process_due(db, limit=limit)
        db.commit()
    if stats["attempted"]:
        logger.info(
            "process_sms_retries: attempted=%d sent=%d rescheduled=%d failed=%d",
            stats["attempted"], stats["sent"], stats["rescheduled"], stats["failed"],
        )
    return stats
