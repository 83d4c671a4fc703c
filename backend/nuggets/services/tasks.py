from __future__ import annotations

import logging

from ..core.celery_app import celery_app
from .feeds import FeedFetchError
from .pipeline import get_pipeline

logger = logging.getLogger(__name__)


@celery_app.task(name="nuggets.services.tasks.summarize_item", queue="processing")
def summarize_item(owner_id: str, item_id: str, group_id: str | None = None) -> None:
    try:
        get_pipeline().process_item(owner_id, item_id, group_id=group_id)
    except Exception:
        logger.exception(
            "summarize_item failed",
            extra={"owner_id": owner_id, "item_id": item_id, "group_id": group_id, "step": "failed"},
        )
        raise


@celery_app.task(name="nuggets.services.tasks.synthesize_group", queue="processing")
def synthesize_group(owner_id: str, group_id: str) -> None:
    try:
        get_pipeline().synthesize_group(owner_id, group_id)
    except Exception:
        logger.exception(
            "synthesize_group failed",
            extra={"owner_id": owner_id, "group_id": group_id, "step": "failed"},
        )
        raise


@celery_app.task(name="nuggets.services.tasks.summarize_group_direct", queue="processing")
def summarize_group_direct(owner_id: str, group_id: str) -> None:
    try:
        get_pipeline().summarize_group_direct(owner_id, group_id)
    except Exception:
        logger.exception(
            "summarize_group_direct failed",
            extra={"owner_id": owner_id, "group_id": group_id, "step": "failed"},
        )
        raise


@celery_app.task(name="nuggets.services.tasks.ingest_feed", queue="processing")
def ingest_feed(owner_id: str, feed_id: str, feed_url: str, category: str | None = None) -> int:
    """Returns the number of items created. An unreachable feed is logged, not retried."""
    try:
        result = get_pipeline().ingest_feed(owner_id, feed_id, feed_url, category=category)
    except FeedFetchError as e:
        logger.warning(
            "Feed fetch failed",
            extra={"owner_id": owner_id, "step": "ingest_feed", "feed_id": feed_id, "error": str(e)},
        )
        return 0
    return len(result.created_item_ids)
