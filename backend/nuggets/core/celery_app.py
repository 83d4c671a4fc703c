from celery import Celery
from celery.schedules import crontab

from .config import get_settings
from .logging import configure_logging

settings = get_settings()
configure_logging()

celery_app = Celery(
    "nuggets",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

celery_app.conf.update(
    task_routes={"nuggets.services.tasks.*": {"queue": "processing"}},
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # Work units are redelivered if a worker dies mid-task; the pipeline is idempotent
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    imports=("nuggets.services.tasks", "nuggets.services.maintenance"),
    beat_schedule={
        # Daily expiry of dedup ledger entries past DEDUP_RETENTION_DAYS
        "purge-expired-dedup-records": {
            "task": "nuggets.services.maintenance.purge_expired_dedup_records",
            "schedule": crontab(hour=3, minute=0),
        },
        # Re-dispatch items stuck in `processing` past PROCESSING_TIMEOUT_SECONDS
        "requeue-stale-processing": {
            "task": "nuggets.services.maintenance.requeue_stale_processing",
            "schedule": crontab(minute="*/15"),
        },
        # Tiers with auto-processing get their scraped items summarised hourly
        "auto-process-owners": {
            "task": "nuggets.services.maintenance.auto_process_owners",
            "schedule": crontab(minute=0),
        },
    },
)
