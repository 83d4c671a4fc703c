"""
Deduplication ledger for feed-sourced content.

One record per (owner, fingerprint), created once and never updated except to
attach the resulting item id. A record stops suppressing its content when it
expires; the nightly purge only reclaims space.
"""
from __future__ import annotations

import hashlib
import logging
from datetime import datetime, timedelta

from ..core.config import get_settings
from ..models.dedup_record import DedupRecord
from .errors import DuplicateContent
from .store import ItemStore

logger = logging.getLogger(__name__)

FINGERPRINT_LENGTH = 32


def fingerprint(guid: str | None = None, url: str | None = None) -> str:
    """Stable token for a piece of content: the feed guid if present, else the URL."""
    source = (guid or "").strip() or (url or "").strip()
    if not source:
        raise ValueError("fingerprint needs a guid or a url")
    return hashlib.sha256(source.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


class DedupLedger:
    def __init__(self, store: ItemStore, retention_days: int | None = None) -> None:
        self.store = store
        self.retention = timedelta(
            days=retention_days if retention_days is not None else get_settings().DEDUP_RETENTION_DAYS
        )

    def seen(self, owner_id: str, token: str, now: datetime | None = None) -> bool:
        now = now or datetime.utcnow()
        record = self.store.get_dedup_record(owner_id, token)
        return record is not None and record.expires_at > now

    def record(
        self,
        owner_id: str,
        token: str,
        feed_id: str | None,
        url: str | None,
        resulting_item_id: str | None = None,
        now: datetime | None = None,
    ) -> bool:
        """
        Idempotent: a second call for a live token stores nothing.
        Returns True if this call created the record.
        """
        now = now or datetime.utcnow()
        created = self.store.insert_dedup_record(
            DedupRecord(
                owner_id=owner_id,
                fingerprint=token,
                source_feed_id=feed_id,
                source_url=url,
                resulting_item_id=resulting_item_id,
                first_seen_at=now,
                expires_at=now + self.retention,
            ),
            now=now,
        )
        if not created:
            logger.debug(
                "Dedup record already present",
                extra={"owner_id": owner_id, "step": "dedup"},
            )
        return created

    def claim(
        self,
        owner_id: str,
        token: str,
        feed_id: str | None,
        url: str | None,
        now: datetime | None = None,
    ) -> None:
        """
        Reserve a fingerprint before the item is created. Only the caller whose
        claim succeeds may create the item; it then calls `attach`.

        Raises DuplicateContent when a live record already exists.
        """
        if not self.record(owner_id, token, feed_id, url, resulting_item_id=None, now=now):
            raise DuplicateContent(owner_id, token)

    def attach(self, owner_id: str, token: str, item_id: str) -> None:
        self.store.set_dedup_item(owner_id, token, item_id)

    def release(self, owner_id: str, token: str) -> None:
        """Drop a claim whose item could not be created, so the content can come back."""
        self.store.delete_dedup_record(owner_id, token)

    def purge_expired(self, now: datetime | None = None) -> int:
        return self.store.delete_expired_dedup_records(now or datetime.utcnow())
