"""
SQLAlchemy-backed item store.

Every method opens its own short-lived session and commits before returning,
so each call is a single-key write (or read) against the database. The only
conditional write is `write_synthesis_once`; nothing here spans several keys
in one transaction.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.db import SessionLocal
from ..models.content_item import ContentItem, ItemStatus, ProcessingState
from ..models.dedup_record import DedupRecord
from ..models.processing_event import ProcessingEvent
from ..models.processing_group import GroupStatus, ProcessingGroup

logger = logging.getLogger(__name__)


class ItemStore:
    def __init__(self, session_factory: Callable[[], Session] = SessionLocal) -> None:
        self.session_factory = session_factory

    # -- content items -----------------------------------------------------

    def get(self, owner_id: str, item_id: str) -> Optional[ContentItem]:
        db = self.session_factory()
        try:
            return db.get(ContentItem, (owner_id, item_id))
        finally:
            db.close()

    def get_many(self, owner_id: str, item_ids: Iterable[str]) -> List[ContentItem]:
        """Items in the order of `item_ids`; missing ids are skipped."""
        ids = list(item_ids)
        if not ids:
            return []
        db = self.session_factory()
        try:
            rows = (
                db.query(ContentItem)
                .filter(ContentItem.owner_id == owner_id, ContentItem.item_id.in_(ids))
                .all()
            )
        finally:
            db.close()
        by_id = {r.item_id: r for r in rows}
        return [by_id[i] for i in ids if i in by_id]

    def put(self, item: ContentItem) -> ContentItem:
        db = self.session_factory()
        try:
            merged = db.merge(item)
            db.commit()
            return merged
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def insert_if_absent(self, item: ContentItem) -> bool:
        """Create `item` unless a row with the same key exists. Returns True if inserted."""
        db = self.session_factory()
        try:
            if db.get(ContentItem, (item.owner_id, item.item_id)) is not None:
                return False
            db.add(item)
            db.commit()
            return True
        except IntegrityError:
            db.rollback()
            return False
        finally:
            db.close()

    def update_fields(self, owner_id: str, item_id: str, patch: Dict[str, Any]) -> Optional[ContentItem]:
        db = self.session_factory()
        try:
            item = db.get(ContentItem, (owner_id, item_id))
            if item is None:
                return None
            for key, value in patch.items():
                setattr(item, key, value)
            db.commit()
            return item
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def query_by_owner_and_status(
        self,
        owner_id: str,
        status: ItemStatus,
        category: str | None = None,
        limit: int | None = None,
    ) -> List[ContentItem]:
        db = self.session_factory()
        try:
            q = db.query(ContentItem).filter(
                ContentItem.owner_id == owner_id,
                ContentItem.status == status,
            )
            if category:
                q = q.filter(ContentItem.category == category)
            q = q.order_by(ContentItem.created_at.desc(), ContentItem.item_id.asc())
            if limit:
                q = q.limit(limit)
            return q.all()
        finally:
            db.close()

    def query_by_owner_and_state(self, owner_id: str, state: ProcessingState) -> List[ContentItem]:
        """Oldest first, so batches follow capture order."""
        db = self.session_factory()
        try:
            return (
                db.query(ContentItem)
                .filter(
                    ContentItem.owner_id == owner_id,
                    ContentItem.processing_state == state,
                )
                .order_by(ContentItem.created_at.asc(), ContentItem.item_id.asc())
                .all()
            )
        finally:
            db.close()

    def find_stale_processing(self, cutoff: datetime) -> List[ContentItem]:
        db = self.session_factory()
        try:
            return (
                db.query(ContentItem)
                .filter(
                    ContentItem.processing_state == ProcessingState.PROCESSING,
                    ContentItem.processing_started_at < cutoff,
                )
                .all()
            )
        finally:
            db.close()

    def find_stale_groups(self, cutoff: datetime) -> List[ProcessingGroup]:
        """Groups still open that were created before `cutoff`."""
        db = self.session_factory()
        try:
            return (
                db.query(ProcessingGroup)
                .filter(
                    ProcessingGroup.status == GroupStatus.PROCESSING,
                    ProcessingGroup.created_at < cutoff,
                )
                .order_by(ProcessingGroup.created_at.asc())
                .all()
            )
        finally:
            db.close()

    def activity_timestamps(self, owner_id: str) -> List[datetime]:
        """Capture and review times for the owner's items."""
        db = self.session_factory()
        try:
            rows = (
                db.query(ContentItem.created_at, ContentItem.last_reviewed_at)
                .filter(ContentItem.owner_id == owner_id)
                .all()
            )
        finally:
            db.close()
        stamps: List[datetime] = []
        for created_at, reviewed_at in rows:
            if created_at:
                stamps.append(created_at)
            if reviewed_at:
                stamps.append(reviewed_at)
        return stamps

    def list_owners_with_state(self, state: ProcessingState) -> List[str]:
        db = self.session_factory()
        try:
            rows = (
                db.query(ContentItem.owner_id)
                .filter(ContentItem.processing_state == state)
                .distinct()
                .all()
            )
            return [r[0] for r in rows]
        finally:
            db.close()

    # -- processing groups -------------------------------------------------

    def create_group(self, group: ProcessingGroup) -> ProcessingGroup:
        db = self.session_factory()
        try:
            db.add(group)
            db.commit()
            return group
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def get_group(self, owner_id: str, group_id: str) -> Optional[ProcessingGroup]:
        db = self.session_factory()
        try:
            group = db.get(ProcessingGroup, group_id)
            if group is None or group.owner_id != owner_id:
                return None
            return group
        finally:
            db.close()

    def update_group(self, group_id: str, patch: Dict[str, Any]) -> Optional[ProcessingGroup]:
        db = self.session_factory()
        try:
            group = db.get(ProcessingGroup, group_id)
            if group is None:
                return None
            for key, value in patch.items():
                setattr(group, key, value)
            db.commit()
            return group
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def read_synthesis(self, group_id: str) -> Optional[Dict[str, Any]]:
        db = self.session_factory()
        try:
            row = (
                db.query(ProcessingGroup.synthesis)
                .filter(ProcessingGroup.group_id == group_id)
                .first()
            )
            return row[0] if row else None
        finally:
            db.close()

    def write_synthesis_once(self, group_id: str, value: Dict[str, Any]) -> bool:
        """
        Conditional single-row write: only succeeds while `synthesis` is still NULL.

        Returns True if this call stored the value, False if another writer got
        there first (the existing value is left untouched).
        """
        db = self.session_factory()
        try:
            result = db.execute(
                update(ProcessingGroup)
                .where(
                    ProcessingGroup.group_id == group_id,
                    ProcessingGroup.synthesis.is_(None),
                )
                .values(synthesis=value)
            )
            db.commit()
            return result.rowcount == 1
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # -- dedup ledger ------------------------------------------------------

    def get_dedup_record(self, owner_id: str, fingerprint: str) -> Optional[DedupRecord]:
        db = self.session_factory()
        try:
            return db.get(DedupRecord, (owner_id, fingerprint))
        finally:
            db.close()

    def insert_dedup_record(self, record: DedupRecord, now: datetime) -> bool:
        """
        Insert a ledger row. An existing live row wins and is left unchanged;
        an expired one is replaced. Returns True if `record` was stored.
        """
        db = self.session_factory()
        try:
            existing = db.get(DedupRecord, (record.owner_id, record.fingerprint))
            if existing is not None:
                if existing.expires_at > now:
                    return False
                db.delete(existing)
                db.flush()
            db.add(record)
            db.commit()
            return True
        except IntegrityError:
            # A concurrent writer inserted the same fingerprint first
            db.rollback()
            return False
        finally:
            db.close()

    def set_dedup_item(self, owner_id: str, fingerprint: str, item_id: str) -> None:
        db = self.session_factory()
        try:
            record = db.get(DedupRecord, (owner_id, fingerprint))
            if record is not None and record.resulting_item_id is None:
                record.resulting_item_id = item_id
                db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def delete_dedup_record(self, owner_id: str, fingerprint: str) -> None:
        db = self.session_factory()
        try:
            db.query(DedupRecord).filter(
                DedupRecord.owner_id == owner_id,
                DedupRecord.fingerprint == fingerprint,
            ).delete(synchronize_session=False)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def delete_expired_dedup_records(self, now: datetime) -> int:
        db = self.session_factory()
        try:
            deleted = (
                db.query(DedupRecord)
                .filter(DedupRecord.expires_at <= now)
                .delete(synchronize_session=False)
            )
            db.commit()
            return deleted
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # -- trace -------------------------------------------------------------

    def add_event(self, event: ProcessingEvent) -> None:
        db = self.session_factory()
        try:
            db.add(event)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def list_events(self, owner_id: str, ref_id: str) -> List[ProcessingEvent]:
        db = self.session_factory()
        try:
            return (
                db.query(ProcessingEvent)
                .filter(ProcessingEvent.owner_id == owner_id, ProcessingEvent.ref_id == ref_id)
                .order_by(ProcessingEvent.created_at.asc(), ProcessingEvent.id.asc())
                .all()
            )
        finally:
            db.close()
