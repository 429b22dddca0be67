from celery import Celery
from celery.schedules import crontab

from app.core.config import settings

celery_app = Celery(
    "helpdesk_worker",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "app.workers.sla_tasks",
        "app.workers.notification_tasks",
        "app.workers.audit_tasks",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    broker_connection_retry_on_startup=True,
)

celery_app.conf.beat_schedule = {
    "sla-detector": {
        "task": "app.workers.sla_tasks.run_sla_detector",
        "schedule": settings.SLA_DETECTOR_INTERVAL_MINUTES * 60.0,
    },
    "escalation-sweep": {
        "task": "app.workers.sla_tasks.run_escalation_sweep",
        "schedule": settings.ESCALATION_SWEEP_INTERVAL_MINUTES * 60.0,
    },
    "sms-retries": {
        "task": "app.workers.notification_tasks.process_sms_retries",
        "schedule": crontab(minute="*/5"),
    },
    "audit-retention-daily": {
        "task": "app.workers.audit_tasks.clean_audit_logs",
        "schedule": crontab(hour=3, minute=0),
    },
}
