import logging
from typing import List

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Security
from fastapi.security.api_key import APIKeyHeader

from ..core.config import get_settings
from ..models.content_item import ItemStatus
from ..schemas.nuggets import (
    CaptureRequest,
    ContentItemOut,
    FeedIngestOut,
    FeedIngestRequest,
    FeedQueuedOut,
    ItemPatch,
    ProcessingRequest,
    ProcessingSummaryOut,
    ReviewOut,
    StatusOut,
    StreakOut,
)
from ..services.errors import EntitlementDenied, InvalidTransition, ItemNotFound
from ..services.feeds import FeedFetchError
from ..services.pipeline import NuggetPipeline, get_pipeline

router = APIRouter(tags=["items"])

settings = get_settings()
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)
logger = logging.getLogger(__name__)

MAX_LIST_LIMIT = 200


def verify_api_key(api_key: str | None = Security(api_key_header)) -> None:
    """
    Simple header-based API key authentication.

    - In dev, if API_AUTH_KEY is not set, auth is skipped.
    - Otherwise, require X-API-Key == API_AUTH_KEY.
    """
    expected = settings.API_AUTH_KEY

    if settings.ENV == "dev" and not expected:
        return

    if not expected:
        raise HTTPException(status_code=401, detail="API key not configured")

    if api_key != expected:
        raise HTTPException(status_code=401, detail="Invalid API key")


def owner_id_header(x_owner_id: str | None = Header(default=None)) -> str:
    """Identity is resolved upstream; the gateway forwards the owner id."""
    owner_id = (x_owner_id or "").strip()
    if not owner_id:
        raise HTTPException(status_code=401, detail="Missing X-Owner-Id")
    return owner_id


def pipeline_dep() -> NuggetPipeline:
    return get_pipeline()


@router.post("/items", response_model=ContentItemOut, status_code=201)
def capture_item(
    payload: CaptureRequest,
    owner_id: str = Depends(owner_id_header),
    pipeline: NuggetPipeline = Depends(pipeline_dep),
    _: None = Depends(verify_api_key),
):
    item = pipeline.capture(
        owner_id,
        payload.source_url,
        source_kind=payload.source_kind,
        user_fields={
            "title": payload.title,
            "body": payload.body,
            "description": payload.description,
            "category": payload.category,
        },
        scrape=payload.scrape,
    )
    return item


@router.get("/items", response_model=List[ContentItemOut])
def list_items(
    status: ItemStatus = ItemStatus.INBOX,
    category: str | None = None,
    limit: int = Query(default=50, ge=1, le=MAX_LIST_LIMIT),
    owner_id: str = Depends(owner_id_header),
    pipeline: NuggetPipeline = Depends(pipeline_dep),
    _: None = Depends(verify_api_key),
):
    return pipeline.list_items(owner_id, status=status, category=category, limit=limit)


@router.patch("/items/{item_id}", response_model=ContentItemOut)
def patch_item(
    item_id: str,
    payload: ItemPatch,
    owner_id: str = Depends(owner_id_header),
    pipeline: NuggetPipeline = Depends(pipeline_dep),
    _: None = Depends(verify_api_key),
):
    try:
        return pipeline.patch_item(owner_id, item_id, status=payload.status, category=payload.category)
    except ItemNotFound:
        raise HTTPException(status_code=404, detail="Item not found")


@router.post("/items/{item_id}/review", response_model=ReviewOut)
def review_item(
    item_id: str,
    owner_id: str = Depends(owner_id_header),
    pipeline: NuggetPipeline = Depends(pipeline_dep),
    _: None = Depends(verify_api_key),
):
    try:
        score = pipeline.mark_reviewed(owner_id, item_id)
    except ItemNotFound:
        raise HTTPException(status_code=404, detail="Item not found")
    item = pipeline.store.get(owner_id, item_id)
    return ReviewOut(item_id=item_id, priority_score=score, times_reviewed=item.times_reviewed)


@router.post("/items/{item_id}/reset", response_model=ContentItemOut)
def reset_item(
    item_id: str,
    owner_id: str = Depends(owner_id_header),
    pipeline: NuggetPipeline = Depends(pipeline_dep),
    _: None = Depends(verify_api_key),
):
    try:
        return pipeline.reset_stale_item(owner_id, item_id)
    except ItemNotFound:
        raise HTTPException(status_code=404, detail="Item not found")
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/processing", response_model=ProcessingSummaryOut, status_code=202)
def request_processing(
    payload: ProcessingRequest,
    owner_id: str = Depends(owner_id_header),
    pipeline: NuggetPipeline = Depends(pipeline_dep),
    _: None = Depends(verify_api_key),
):
    try:
        summary = pipeline.request_processing(owner_id, item_ids=payload.item_ids, strategy=payload.strategy)
    except EntitlementDenied as e:
        raise HTTPException(status_code=403, detail=str(e))
    return ProcessingSummaryOut(
        group_count=summary.group_count,
        singleton_count=summary.singleton_count,
        item_count=summary.item_count,
        group_ids=summary.group_ids,
    )


@router.get("/status/{ref_id}", response_model=StatusOut)
def get_status(
    ref_id: str,
    owner_id: str = Depends(owner_id_header),
    pipeline: NuggetPipeline = Depends(pipeline_dep),
    _: None = Depends(verify_api_key),
):
    try:
        view = pipeline.get_status(owner_id, ref_id)
    except ItemNotFound:
        raise HTTPException(status_code=404, detail="Item not found")
    return StatusOut(
        ref_id=view.ref_id,
        ready=view.ready,
        is_group=view.is_group,
        processed_count=view.processed_count,
        total_count=view.total_count,
        result=view.result,
    )


@router.get("/streak", response_model=StreakOut)
def get_streak(
    owner_id: str = Depends(owner_id_header),
    pipeline: NuggetPipeline = Depends(pipeline_dep),
    _: None = Depends(verify_api_key),
):
    streak = pipeline.get_streak(owner_id)
    return StreakOut(
        streak_length=streak.streak_length,
        last_active_date=streak.last_active_date.isoformat(),
    )


@router.post("/feeds/ingest", response_model=FeedIngestOut)
def ingest_feed(
    payload: FeedIngestRequest,
    owner_id: str = Depends(owner_id_header),
    pipeline: NuggetPipeline = Depends(pipeline_dep),
    _: None = Depends(verify_api_key),
):
    try:
        result = pipeline.ingest_feed(owner_id, payload.feed_id, payload.feed_url, category=payload.category)
    except FeedFetchError as e:
        logger.warning(
            "Feed ingest failed",
            extra={"owner_id": owner_id, "step": "ingest_feed", "error": str(e)},
        )
        raise HTTPException(status_code=502, detail="Feed could not be fetched")
    return FeedIngestOut(
        feed_id=result.feed_id,
        created_item_ids=result.created_item_ids,
        skipped_duplicates=result.skipped_duplicates,
    )


@router.post("/feeds/ingest/queue", response_model=FeedQueuedOut, status_code=202)
def queue_feed_ingest(
    payload: FeedIngestRequest,
    owner_id: str = Depends(owner_id_header),
    pipeline: NuggetPipeline = Depends(pipeline_dep),
    _: None = Depends(verify_api_key),
):
    if not pipeline.queue_feed_ingest(owner_id, payload.feed_id, payload.feed_url, category=payload.category):
        raise HTTPException(status_code=503, detail="Feed ingest could not be queued")
    return FeedQueuedOut(feed_id=payload.feed_id, queued=True)
