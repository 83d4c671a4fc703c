"""
DedupRecord model: one row per (owner, content fingerprint) seen from a feed fetch.

Rows are created once and never updated. Expiry (expires_at) is the only
destruction path; an expired row no longer suppresses the content.
"""
from datetime import datetime

from sqlalchemy import Column, String, DateTime, Index

from ..core.db import Base


class DedupRecord(Base):
    __tablename__ = "dedup_records"

    owner_id = Column(String(128), primary_key=True)
    fingerprint = Column(String(64), primary_key=True)  # sha256 prefix of guid or canonical URL

    source_feed_id = Column(String(128), nullable=True)
    source_url = Column(String, nullable=True)
    resulting_item_id = Column(String(64), nullable=True)

    first_seen_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_dedup_records_expires_at", "expires_at"),
    )
