from sqlalchemy import Column, Integer, String, DateTime, JSON, Index
from datetime import datetime

from ..core.db import Base

class ProcessingEvent(Base):
    __tablename__ = "processing_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(String(128), nullable=False)
    ref_id = Column(String(64), nullable=False)     # item_id or group_id
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    phase = Column(String, nullable=False)   # "REQUESTED", "SUMMARIZED", "JOIN", "SYNTHESIZED", …
    label = Column(String, nullable=False)   # short human-readable summary
    detail = Column(String, nullable=True)
    meta = Column(JSON, nullable=True)

    __table_args__ = (
        Index("ix_processing_events_ref", "owner_id", "ref_id"),
    )
