from __future__ import annotations

import logging

from ..core.celery_app import celery_app
from .pipeline import get_pipeline

logger = logging.getLogger(__name__)


@celery_app.task(name="nuggets.services.maintenance.purge_expired_dedup_records")
def purge_expired_dedup_records() -> int:
    """
    Periodic task enforcing the dedup retention window.

    Expired rows already stop suppressing content on read; this only reclaims
    the space.
    """
    try:
        deleted = get_pipeline().ledger.purge_expired()
    except Exception:
        logger.exception(
            "Error during purge_expired_dedup_records",
            extra={"step": "retention"},
        )
        raise

    logger.info(
        "Deleted expired dedup records",
        extra={"step": "retention", "deleted_records": deleted},
    )
    return deleted


@celery_app.task(name="nuggets.services.maintenance.requeue_stale_processing")
def requeue_stale_processing() -> int:
    """Retry policy for work units that never reported back."""
    try:
        return get_pipeline().requeue_stale()
    except Exception:
        logger.exception(
            "Error during requeue_stale_processing",
            extra={"step": "requeue_stale"},
        )
        raise


@celery_app.task(name="nuggets.services.maintenance.auto_process_owners")
def auto_process_owners() -> int:
    """Scheduled AI processing for owners whose tier includes it."""
    try:
        return get_pipeline().auto_process_all()
    except Exception:
        logger.exception(
            "Error during auto_process_owners",
            extra={"step": "auto_process"},
        )
        raise
