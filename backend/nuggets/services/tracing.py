from __future__ import annotations

from typing import Any, TYPE_CHECKING
import logging
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from ..models.processing_event import ProcessingEvent

if TYPE_CHECKING:
    from .store import ItemStore

logger = logging.getLogger(__name__)


def trace_processing_step(
    store: "ItemStore",
    owner_id: str,
    ref_id: str,
    *,
    phase: str,
    label: str,
    detail: str | None = None,
    meta: dict[str, Any] | None = None,
) -> None:
    """
    Best-effort, fire-and-forget trace writer.
    Failure must NEVER break the pipeline.
    """
    try:
        store.add_event(
            ProcessingEvent(
                owner_id=owner_id,
                ref_id=ref_id,
                phase=phase,
                label=label,
                detail=detail,
                meta=meta or {},
                created_at=datetime.utcnow(),
            )
        )
    except SQLAlchemyError:
        logger.exception(
            "Failed to write processing trace event",
            extra={"owner_id": owner_id, "step": phase},
        )
