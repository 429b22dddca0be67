"""Periodic SLA detection and time-based escalation sweeps.

Each pass processes organizations independently. Organizations that fail
are retried with exponential backoff; once retries are exhausted a
high-severity audit event is written for each one so the gap is visible.
"""
import logging
import uuid

from celery.exceptions import MaxRetriesExceededError

from app.core.config import settings
from app.core.tenancy import TenantContext
from app.db.session import get_sync_session
from app.services import audit as audit_service
from app.services import escalation as escalation_service
from app.services import sla as sla_service
from app.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


def _org_ids(organization_ids: list[str] | None) -> list[uuid.UUID] | None:
    if organization_ids is None:
        return None
    return [uuid.UUID(str(o)) for o in organization_ids]


def _report_exhausted(job: str, failed: list[str]) -> None:
    with get_sync_session() as db:
        for org_id in failed:
            audit_service.log_event(
                db,
                TenantContext.system(uuid.UUID(org_id)),
                action="JOB_FAILED",
                entity_type="system",
                severity="high",
                metadata={"job": job, "retries": settings.EVALUATION_MAX_RETRIES},
                description=f"{job} gave up on this organization after {settings.EVALUATION_MAX_RETRIES} retries",
            )
        db.commit()


def _retry_failed(task, job: str, result: dict) -> dict:
    failed = result["failed"]
    if not failed:
        return result
    countdown = settings.EVALUATION_RETRY_BACKOFF_SECONDS * (2 ** task.request.retries)
    try:
        raise task.retry(countdown=countdown, kwargs={"organization_ids": failed})
    except MaxRetriesExceededError:
        logger.error("%s: retries exhausted for organizations %s", job, failed)
        _report_exhausted(job, failed)
        return result


@celery_app.task(
    bind=True,
    name="app.workers.sla_tasks.run_sla_detector",
    max_retries=settings.EVALUATION_MAX_RETRIES,
)
def run_sla_detector(self, organization_ids: list[str] | None = None):
    """Open violations for missed deadlines and close the ones that were met or recomputed."""
    result = sla_service.run_detector_pass(get_sync_session, organization_ids=_org_ids(organization_ids))
    logger.info(
        "run_sla_detector: orgs=%d checked=%d opened=%d backfilled=%d failed=%d",
        result["organizations"], result["checked"], result["opened"], result["backfilled"], len(result["failed"]),
    )
    return _retry_failed(self, "sla_detector", result)


@celery_app.task(
    bind=True,
    name="app.workers.sla_tasks.run_escalation_sweep",
    max_retries=settings.EVALUATION_MAX_RETRIES,
)
def run_escalation_sweep(self, organization_ids: list[str] | None = None):
    """Fire time_based escalation rules whose age threshold has passed."""
    result = escalation_service.run_sweep(get_sync_session, organization_ids=_org_ids(organization_ids))
    logger.info(
        "run_escalation_sweep: orgs=%d fired=%d failed=%d",
        result["organizations"], result["fired"], len(result["failed"]),
    )
    return _retry_failed(self, "escalation_sweep", result)
