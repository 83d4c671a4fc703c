from sqlalchemy import Column, String, Text, JSON, Enum, DateTime, Float, Integer, Boolean, Index
from datetime import datetime
import enum
from ..core.db import Base


class SourceKind(str, enum.Enum):
    LINK = "link"
    VIDEO = "video"
    SOCIAL = "social"
    OTHER = "other"


class ItemStatus(str, enum.Enum):
    """User-facing lifecycle."""
    INBOX = "inbox"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class ProcessingState(str, enum.Enum):
    """Pipeline-facing lifecycle. Only moves forward; see services.state_machine."""
    SCRAPED = "scraped"
    PROCESSING = "processing"
    READY = "ready"


class ContentItem(Base):
    __tablename__ = "content_items"

    owner_id = Column(String(128), primary_key=True)
    item_id = Column(String(64), primary_key=True)

    source_url = Column(String, nullable=False, default="")
    source_kind = Column(Enum(SourceKind), nullable=False, default=SourceKind.LINK)
    raw_title = Column(String, nullable=True)
    raw_body = Column(Text, nullable=True)
    raw_description = Column(Text, nullable=True)
    category = Column(String(64), nullable=True)  # user-supplied or classifier-derived

    status = Column(Enum(ItemStatus), nullable=False, default=ItemStatus.INBOX)
    processing_state = Column(Enum(ProcessingState), nullable=False, default=ProcessingState.SCRAPED)
    processing_started_at = Column(DateTime, nullable=True)
    # Pending group this item will be folded into, if any
    group_id = Column(String(64), nullable=True)

    # AI output
    title = Column(String, nullable=True)
    summary = Column(Text, nullable=True)
    key_points = Column(JSON, nullable=True)  # List[str]
    question = Column(Text, nullable=True)
    used_fallback = Column(Boolean, nullable=False, default=False)

    priority_score = Column(Float, nullable=False, default=0.0)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    last_reviewed_at = Column(DateTime, nullable=True)
    times_reviewed = Column(Integer, nullable=False, default=0)

    # Only set when this item *is* a synthesized group
    is_grouped = Column(Boolean, nullable=False, default=False)
    source_item_ids = Column(JSON, nullable=True)       # List[str]
    source_urls = Column(JSON, nullable=True)           # List[str]
    individual_summaries = Column(JSON, nullable=True)  # List[{item_id, title, summary, key_points, source_url}]

    __table_args__ = (
        Index("ix_content_items_owner_status", "owner_id", "status"),
        Index("ix_content_items_owner_state", "owner_id", "processing_state"),
    )
