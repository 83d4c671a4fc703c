from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..models.content_item import ItemStatus, ProcessingState, SourceKind
from ..models.processing_group import GroupStrategy

MAX_URL_LEN = 2048
MAX_TITLE_LEN = 500
MAX_BODY_LEN = 50_000
MAX_CATEGORY_LEN = 64
MAX_ITEM_IDS = 200


class DigestResult(BaseModel):
    """Strict shape of an AI summarisation response."""
    model_config = ConfigDict(populate_by_name=True)

    title: str
    summary: str
    key_points: List[str] = Field(alias="keyPoints")
    question: str

    @field_validator("title", "summary", "question")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be empty")
        return v

    @field_validator("key_points")
    @classmethod
    def _clean_points(cls, v: List[str]) -> List[str]:
        return [p.strip() for p in v if isinstance(p, str) and p.strip()]


class CaptureRequest(BaseModel):
    source_url: str
    source_kind: SourceKind = SourceKind.LINK
    title: str | None = None
    body: str | None = None
    description: str | None = None
    category: str | None = None
    scrape: bool = True

    @field_validator("title", "body", "description", "category", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        if v is None:
            return None
        if isinstance(v, str):
            stripped = v.strip()
            return stripped or None
        return v

    @field_validator("source_url")
    @classmethod
    def validate_source_url(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("source_url must not be empty")
        if len(v) > MAX_URL_LEN:
            raise ValueError("source_url is too long")
        return v

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str | None) -> str | None:
        if v is not None and len(v) > MAX_TITLE_LEN:
            raise ValueError(f"title must be at most {MAX_TITLE_LEN} characters")
        return v

    @field_validator("body")
    @classmethod
    def validate_body(cls, v: str | None) -> str | None:
        if v is not None and len(v) > MAX_BODY_LEN:
            raise ValueError(f"body must be at most {MAX_BODY_LEN} characters")
        return v

    @field_validator("category")
    @classmethod
    def validate_category(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.lower()
        if len(v) > MAX_CATEGORY_LEN:
            raise ValueError("category is too long")
        return v


class ItemPatch(BaseModel):
    status: ItemStatus | None = None
    category: str | None = None

    @field_validator("category")
    @classmethod
    def validate_category(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip().lower()
        if not v or len(v) > MAX_CATEGORY_LEN:
            raise ValueError("category must be 1-64 characters")
        return v


class ProcessingRequest(BaseModel):
    item_ids: List[str] | None = None
    strategy: GroupStrategy = GroupStrategy.PRE_SUMMARIZE

    @field_validator("item_ids")
    @classmethod
    def validate_item_ids(cls, v: List[str] | None) -> List[str] | None:
        if v is None:
            return None
        if len(v) > MAX_ITEM_IDS:
            raise ValueError(f"at most {MAX_ITEM_IDS} item ids per request")
        # keep first occurrence order
        return list(dict.fromkeys(i for i in v if i))


class FeedIngestRequest(BaseModel):
    feed_id: str
    feed_url: str
    category: str | None = None


class ProcessingSummaryOut(BaseModel):
    group_count: int
    singleton_count: int
    item_count: int
    group_ids: List[str] = []


class ContentItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    item_id: str
    owner_id: str
    source_url: str
    source_kind: SourceKind
    raw_title: Optional[str] = None
    raw_description: Optional[str] = None
    category: Optional[str] = None
    status: ItemStatus
    processing_state: ProcessingState
    title: Optional[str] = None
    summary: Optional[str] = None
    key_points: Optional[List[str]] = None
    question: Optional[str] = None
    priority_score: float
    created_at: datetime
    last_reviewed_at: Optional[datetime] = None
    times_reviewed: int
    is_grouped: bool = False
    source_item_ids: Optional[List[str]] = None
    source_urls: Optional[List[str]] = None
    individual_summaries: Optional[List[Dict[str, Any]]] = None


class StatusOut(BaseModel):
    ref_id: str
    ready: bool
    is_group: bool
    processed_count: int
    total_count: int
    result: Dict[str, Any]


class ReviewOut(BaseModel):
    item_id: str
    priority_score: float
    times_reviewed: int


class StreakOut(BaseModel):
    streak_length: int
    last_active_date: str


class FeedIngestOut(BaseModel):
    feed_id: str
    created_item_ids: List[str]
    skipped_duplicates: int


class FeedQueuedOut(BaseModel):
    feed_id: str
    queued: bool
