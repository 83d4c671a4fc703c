"""
Fire-and-forget dispatch of named work units.

Delivery is at-least-once with no ordering between units; every unit must be
safe to run twice.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Protocol

logger = logging.getLogger(__name__)

SUMMARIZE_ITEM = "summarize_item"
SYNTHESIZE_GROUP = "synthesize_group"
SUMMARIZE_GROUP_DIRECT = "summarize_group_direct"
INGEST_FEED = "ingest_feed"

WORK_UNITS = (SUMMARIZE_ITEM, SYNTHESIZE_GROUP, SUMMARIZE_GROUP_DIRECT, INGEST_FEED)

TASK_PREFIX = "nuggets.services.tasks."
PROCESSING_QUEUE = "processing"


class WorkDispatcher(Protocol):
    def dispatch(self, unit: str, payload: Dict[str, Any]) -> None: ...


class CeleryDispatcher:
    """Sends each work unit as a Celery task on the processing queue."""

    def __init__(self, app=None) -> None:
        if app is None:
            from ..core.celery_app import celery_app as app
        self.app = app

    def dispatch(self, unit: str, payload: Dict[str, Any]) -> None:
        if unit not in WORK_UNITS:
            raise ValueError(f"unknown work unit: {unit}")
        self.app.send_task(
            TASK_PREFIX + unit,
            kwargs=payload,
            queue=PROCESSING_QUEUE,
        )
        logger.info(
            "Dispatched work unit",
            extra={
                "owner_id": payload.get("owner_id"),
                "item_id": payload.get("item_id"),
                "group_id": payload.get("group_id"),
                "step": f"dispatch:{unit}",
            },
        )
