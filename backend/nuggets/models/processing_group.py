"""
ProcessingGroup model: an ephemeral cluster of 2+ content items awaiting synthesis.

Lifecycle:
1. PROCESSING - members dispatched for individual summarisation (or one direct call)
2. COMPLETED  - synthesis cached, grouped item written, sources archived

The `synthesis` column is the digest synthesis cache entry. It is written at most
once via a conditional UPDATE (see ItemStore.write_synthesis_once) and never
overwritten afterwards.
"""
from datetime import datetime
import enum

from sqlalchemy import Column, String, DateTime, JSON, Enum, Index

from ..core.db import Base


class GroupStrategy(str, enum.Enum):
    PRE_SUMMARIZE = "pre_summarize"  # canonical
    DIRECT = "direct"                # legacy: one call over raw content


class GroupStatus(str, enum.Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"


class ProcessingGroup(Base):
    __tablename__ = "processing_groups"

    group_id = Column(String(64), primary_key=True)
    owner_id = Column(String(128), nullable=False)
    category = Column(String(64), nullable=False, default="other")
    item_ids = Column(JSON, nullable=False)  # ordered List[str]; synthesis prompt follows this order
    strategy = Column(Enum(GroupStrategy), nullable=False, default=GroupStrategy.PRE_SUMMARIZE)
    status = Column(Enum(GroupStatus), nullable=False, default=GroupStatus.PROCESSING)

    # {title, summary, key_points, question, generated_at}; none_as_null so IS NULL works
    synthesis = Column(JSON(none_as_null=True), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_processing_groups_owner_id", "owner_id"),
    )
