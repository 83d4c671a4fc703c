"""
Content-processing pipeline.

Capture is free: it scrapes, tags a category and stores the item in `scraped`.
AI spend only happens after an explicit `request_processing`, which groups the
owner's scraped items and dispatches one work unit per singleton and per group
member. Work units are redelivered at least once, so each handler re-reads
state and does nothing when its work is already done.

Group join: every member completion re-checks its siblings; whichever one sees
all of them `ready` dispatches synthesis. Several can see it at once, the
DigestSynthesisCache keeps that to one stored synthesis.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional, Sequence
from uuid import uuid4

from ..core.config import get_settings
from ..models.content_item import ContentItem, ItemStatus, ProcessingState, SourceKind
from ..models.processing_group import GroupStatus, GroupStrategy, ProcessingGroup
from .dedup import DedupLedger, fingerprint
from .dispatch import (
    INGEST_FEED,
    SUMMARIZE_GROUP_DIRECT,
    SUMMARIZE_ITEM,
    SYNTHESIZE_GROUP,
    WorkDispatcher,
)
from .entitlements import EntitlementSource
from .errors import (
    DuplicateContent,
    EntitlementDenied,
    GroupPartiallyFailed,
    InvalidTransition,
    ItemNotFound,
)
from .feeds import FeedFetcher
from .grouping import CategoryClassifier
from .priority import compute_priority_score
from .scraper import ScrapedContent, ScrapeNormalizer
from .state_machine import check_transition
from .store import ItemStore
from .streak import StreakResult, calculate_streak
from .summarizer import ArticleInput, Digest, Summarizer
from .synthesis_cache import DigestSynthesisCache
from .tracing import trace_processing_step

logger = logging.getLogger(__name__)

DEFAULT_GROUP_QUESTION = "Based on these insights, what specific aspect would you like to explore further?"
PENDING_QUESTION = "Processing your content..."
PENDING_SUMMARY = "Processing..."
MAX_FALLBACK_KEY_POINTS = 5


@dataclass
class ProcessingSummary:
    group_count: int = 0
    singleton_count: int = 0
    item_count: int = 0
    group_ids: List[str] = field(default_factory=list)


@dataclass
class StatusView:
    ref_id: str
    ready: bool
    is_group: bool
    processed_count: int
    total_count: int
    result: Dict[str, Any]


@dataclass
class FeedIngestResult:
    feed_id: str
    created_item_ids: List[str] = field(default_factory=list)
    skipped_duplicates: int = 0


def item_to_dict(item: ContentItem) -> Dict[str, Any]:
    return {
        "item_id": item.item_id,
        "owner_id": item.owner_id,
        "source_url": item.source_url,
        "source_kind": SourceKind(item.source_kind).value,
        "raw_title": item.raw_title,
        "raw_description": item.raw_description,
        "category": item.category,
        "status": ItemStatus(item.status).value,
        "processing_state": ProcessingState(item.processing_state).value,
        "title": item.title,
        "summary": item.summary,
        "key_points": list(item.key_points or []),
        "question": item.question,
        "priority_score": item.priority_score,
        "created_at": item.created_at.isoformat() if item.created_at else None,
        "last_reviewed_at": item.last_reviewed_at.isoformat() if item.last_reviewed_at else None,
        "times_reviewed": item.times_reviewed,
        "is_grouped": bool(item.is_grouped),
        "source_item_ids": item.source_item_ids,
        "source_urls": item.source_urls,
        "individual_summaries": item.individual_summaries,
    }


def group_display_title(members: Sequence[ContentItem]) -> str:
    categories = {m.category for m in members if m.category}
    if len(categories) == 1:
        category = next(iter(categories))
        return f"{category[:1].upper()}{category[1:]} Insights"
    if len(members) == 1:
        return members[0].title or members[0].raw_title or "Nugget"
    return f"{len(members)} Articles Summary"


def _individual_summary(item: ContentItem) -> Dict[str, Any]:
    return {
        "item_id": item.item_id,
        "title": item.title or item.raw_title or "Untitled",
        "source_url": item.source_url,
        "summary": item.summary or "",
        "key_points": list(item.key_points or []),
    }


class NuggetPipeline:
    def __init__(
        self,
        store: ItemStore,
        ledger: DedupLedger,
        cache: DigestSynthesisCache,
        summarizer: Summarizer,
        dispatcher: WorkDispatcher,
        entitlements: EntitlementSource,
        classifier: CategoryClassifier,
        scraper: ScrapeNormalizer | None = None,
        feed_fetcher: FeedFetcher | None = None,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.cache = cache
        self.summarizer = summarizer
        self.dispatcher = dispatcher
        self.entitlements = entitlements
        self.classifier = classifier
        self.scraper = scraper
        self.feed_fetcher = feed_fetcher
        self.settings = get_settings()

        self._work_units: Dict[str, Callable[..., Any]] = {
            SUMMARIZE_ITEM: self.process_item,
            SYNTHESIZE_GROUP: self.synthesize_group,
            SUMMARIZE_GROUP_DIRECT: self.summarize_group_direct,
            INGEST_FEED: self.ingest_feed,
        }

    def _trace(self, owner_id: str, ref_id: str, phase: str, label: str, **kwargs: Any) -> None:
        trace_processing_step(self.store, owner_id, ref_id, phase=phase, label=label, **kwargs)

    def run_work_unit(self, unit: str, payload: Dict[str, Any]) -> Any:
        handler = self._work_units.get(unit)
        if handler is None:
            raise ValueError(f"unknown work unit: {unit}")
        return handler(**payload)

    def _dispatch(self, unit: str, payload: Dict[str, Any]) -> bool:
        """Dispatch failures leave the item in `processing` for the stale-requeue sweep."""
        try:
            self.dispatcher.dispatch(unit, payload)
            return True
        except Exception:
            logger.warning(
                "Dispatch failed; unit will be retried by the stale sweep",
                exc_info=True,
                extra={
                    "owner_id": payload.get("owner_id"),
                    "item_id": payload.get("item_id"),
                    "group_id": payload.get("group_id"),
                    "step": f"dispatch:{unit}",
                },
            )
            return False

    # -- capture -----------------------------------------------------------

    def capture(
        self,
        owner_id: str,
        source_url: str,
        source_kind: SourceKind = SourceKind.LINK,
        user_fields: Dict[str, Any] | None = None,
        scrape: bool = True,
    ) -> ContentItem:
        """
        Create an item in `scraped` state. Never triggers AI work and is not
        deduplicated: direct user captures always produce a new item.
        """
        fields = dict(user_fields or {})
        scraped: ScrapedContent | None = None

        if scrape and self.scraper is not None and source_url:
            result = self.scraper.scrape(source_url)
            if isinstance(result, ScrapedContent):
                scraped = result
            else:
                logger.warning(
                    "Scrape failed; creating item from user fields only",
                    extra={"owner_id": owner_id, "step": "capture", "reason": result.reason},
                )

        return self._create_item(
            owner_id=owner_id,
            source_url=source_url,
            source_kind=source_kind,
            title=fields.get("title") or (scraped.title if scraped else None),
            body=fields.get("body") or (scraped.content if scraped else None),
            description=fields.get("description") or (scraped.description if scraped else None),
            category=fields.get("category") or (scraped.suggested_category if scraped else None),
        )

    def _create_item(
        self,
        owner_id: str,
        source_url: str,
        source_kind: SourceKind,
        title: str | None,
        body: str | None,
        description: str | None,
        category: str | None,
    ) -> ContentItem:
        now = datetime.utcnow()
        item = ContentItem(
            owner_id=owner_id,
            item_id=str(uuid4()),
            source_url=source_url or "",
            source_kind=source_kind,
            raw_title=title,
            raw_body=body,
            raw_description=description,
            category=category,
            status=ItemStatus.INBOX,
            processing_state=ProcessingState.SCRAPED,
            used_fallback=False,
            priority_score=compute_priority_score(now, 0, now=now),
            created_at=now,
            times_reviewed=0,
            is_grouped=False,
        )
        if not item.category:
            item.category = self.classifier.classify(item)

        item = self.store.put(item)
        logger.info(
            "Item captured",
            extra={"owner_id": owner_id, "item_id": item.item_id, "step": "capture"},
        )
        return item

    def queue_feed_ingest(
        self,
        owner_id: str,
        feed_id: str,
        feed_url: str,
        category: str | None = None,
    ) -> bool:
        """Hand a feed fetch to a worker; returns False if the unit could not be sent."""
        return self._dispatch(
            INGEST_FEED,
            {"owner_id": owner_id, "feed_id": feed_id, "feed_url": feed_url, "category": category},
        )

    def ingest_feed(
        self,
        owner_id: str,
        feed_id: str,
        feed_url: str,
        category: str | None = None,
    ) -> FeedIngestResult:
        """Create `scraped` items for feed entries the ledger has not seen yet."""
        if self.feed_fetcher is None:
            raise RuntimeError("pipeline has no feed fetcher configured")

        result = FeedIngestResult(feed_id=feed_id)
        for entry in self.feed_fetcher.latest_entries(feed_url):
            token = fingerprint(entry.guid, entry.link)
            try:
                self.ledger.claim(owner_id, token, feed_id, entry.link)
            except DuplicateContent:
                result.skipped_duplicates += 1
                continue

            try:
                scraped: ScrapedContent | None = None
                if entry.link and self.scraper is not None:
                    scraped_or_failure = self.scraper.scrape(entry.link)
                    if isinstance(scraped_or_failure, ScrapedContent):
                        scraped = scraped_or_failure

                item = self._create_item(
                    owner_id=owner_id,
                    source_url=entry.link,
                    source_kind=SourceKind.LINK,
                    title=(scraped.title if scraped and scraped.title != "Untitled" else None) or entry.title,
                    body=(scraped.content if scraped else None) or entry.snippet,
                    description=(scraped.description if scraped else None) or entry.snippet[:300],
                    category=(scraped.suggested_category if scraped else None) or category,
                )
            except Exception:
                self.ledger.release(owner_id, token)
                raise

            self.ledger.attach(owner_id, token, item.item_id)
            result.created_item_ids.append(item.item_id)

        logger.info(
            "Feed ingested",
            extra={
                "owner_id": owner_id,
                "step": "ingest_feed",
                "feed_id": feed_id,
                "created": len(result.created_item_ids),
                "skipped": result.skipped_duplicates,
            },
        )
        return result

    # -- processing request ------------------------------------------------

    def request_processing(
        self,
        owner_id: str,
        item_ids: Sequence[str] | None = None,
        strategy: GroupStrategy = GroupStrategy.PRE_SUMMARIZE,
    ) -> ProcessingSummary:
        """
        Explicit AI-spend trigger. With no ids, takes every `scraped` item the
        owner has. Ids that are not in `scraped` are ignored.
        """
        entitlement = self.entitlements.for_owner(owner_id)
        if not entitlement.ai_processing_enabled:
            raise EntitlementDenied(f"AI processing is not available on the {entitlement.tier} tier")

        if item_ids is None:
            candidates = self.store.query_by_owner_and_state(owner_id, ProcessingState.SCRAPED)
        else:
            candidates = self.store.get_many(owner_id, item_ids)

        items = [
            i for i in candidates
            if i.processing_state == ProcessingState.SCRAPED
            and i.status != ItemStatus.ARCHIVED
            and not i.is_grouped
        ]
        summary = ProcessingSummary(item_count=len(items))
        if not items:
            return summary

        now = datetime.utcnow()
        for batch in self.classifier.group(items, entitlement.batch_limit):
            if batch.is_group:
                group_id = f"group-{uuid4()}"
                self.store.create_group(
                    ProcessingGroup(
                        group_id=group_id,
                        owner_id=owner_id,
                        category=batch.category,
                        item_ids=batch.item_ids,
                        strategy=strategy,
                        status=GroupStatus.PROCESSING,
                        synthesis=None,
                        created_at=now,
                    )
                )
                for item in batch.items:
                    self._start_processing(item, batch.category, group_id, now)

                if strategy == GroupStrategy.DIRECT:
                    self._dispatch(SUMMARIZE_GROUP_DIRECT, {"owner_id": owner_id, "group_id": group_id})
                else:
                    for item in batch.items:
                        self._dispatch(
                            SUMMARIZE_ITEM,
                            {"owner_id": owner_id, "item_id": item.item_id, "group_id": group_id},
                        )

                self._trace(
                    owner_id, group_id, "REQUESTED", "Group queued for processing",
                    meta={"item_ids": batch.item_ids, "category": batch.category, "cohesion": batch.cohesion},
                )
                summary.group_count += 1
                summary.group_ids.append(group_id)
            else:
                item = batch.items[0]
                self._start_processing(item, batch.category, None, now)
                self._dispatch(SUMMARIZE_ITEM, {"owner_id": owner_id, "item_id": item.item_id, "group_id": None})
                self._trace(owner_id, item.item_id, "REQUESTED", "Item queued for processing")
                summary.singleton_count += 1

        logger.info(
            "Processing requested",
            extra={
                "owner_id": owner_id,
                "step": "request_processing",
                "groups": summary.group_count,
                "singletons": summary.singleton_count,
                "items": summary.item_count,
            },
        )
        return summary

    def _start_processing(
        self,
        item: ContentItem,
        category: str,
        group_id: str | None,
        now: datetime,
    ) -> None:
        check_transition(item.item_id, item.processing_state, ProcessingState.PROCESSING)
        self.store.update_fields(
            item.owner_id,
            item.item_id,
            {
                "processing_state": ProcessingState.PROCESSING,
                "processing_started_at": now,
                "group_id": group_id,
                "category": item.category or category,
            },
        )

    # -- work units --------------------------------------------------------

    def process_item(self, owner_id: str, item_id: str, group_id: str | None = None) -> None:
        """Summarize one item. Redelivery on a `ready` item only re-runs the join check."""
        item = self.store.get(owner_id, item_id)
        if item is None:
            logger.warning(
                "Item vanished before processing",
                extra={"owner_id": owner_id, "item_id": item_id, "step": "process_item"},
            )
            return

        group_id = group_id or item.group_id
        if item.processing_state == ProcessingState.READY:
            logger.info(
                "Item already ready; skipping AI call",
                extra={"owner_id": owner_id, "item_id": item_id, "step": "process_item"},
            )
            if group_id:
                self._check_group_completion(owner_id, group_id)
            return

        if item.processing_state != ProcessingState.PROCESSING:
            # Reset after dispatch; only a new explicit request may spend on it
            logger.info(
                "Item is not in processing; ignoring work unit",
                extra={"owner_id": owner_id, "item_id": item_id, "step": "process_item"},
            )
            return

        digest = self.summarizer.summarize_item(
            ArticleInput(
                url=item.source_url,
                title=item.raw_title,
                text=item.raw_body or item.raw_description,
            )
        )
        self._mark_ready(item, digest)

        if group_id:
            self._check_group_completion(owner_id, group_id)

    def _mark_ready(self, item: ContentItem, digest: Digest) -> None:
        check_transition(item.item_id, item.processing_state, ProcessingState.READY)
        self.store.update_fields(
            item.owner_id,
            item.item_id,
            {
                "title": digest.title,
                "summary": digest.summary,
                "key_points": digest.key_points,
                "question": digest.question,
                "used_fallback": digest.used_fallback,
                "processing_state": ProcessingState.READY,
            },
        )
        self._trace(
            item.owner_id, item.item_id, "SUMMARIZED", "Item summary stored",
            meta={"used_fallback": digest.used_fallback},
        )
        logger.info(
            "Item ready",
            extra={
                "owner_id": item.owner_id,
                "item_id": item.item_id,
                "group_id": item.group_id,
                "step": "item_ready",
            },
        )

    def _check_group_completion(self, owner_id: str, group_id: str) -> bool:
        group = self.store.get_group(owner_id, group_id)
        if group is None or group.status == GroupStatus.COMPLETED:
            return False

        members = self.store.get_many(owner_id, group.item_ids)
        ready = sum(1 for m in members if m.processing_state == ProcessingState.READY)
        self._trace(owner_id, group_id, "JOIN", f"{ready}/{len(members)} members ready")
        if not members or ready < len(members):
            return False

        self._dispatch(SYNTHESIZE_GROUP, {"owner_id": owner_id, "group_id": group_id})
        return True

    def synthesize_group(self, owner_id: str, group_id: str) -> Optional[ContentItem]:
        group = self.store.get_group(owner_id, group_id)
        if group is None:
            logger.warning(
                "Group not found for synthesis",
                extra={"owner_id": owner_id, "group_id": group_id, "step": "synthesize_group"},
            )
            return None

        members = self.store.get_many(owner_id, group.item_ids)
        if group.status == GroupStatus.COMPLETED:
            return self.store.get(owner_id, group_id)
        if not members or any(m.processing_state != ProcessingState.READY for m in members):
            logger.info(
                "Synthesis requested before all members are ready",
                extra={"owner_id": owner_id, "group_id": group_id, "step": "synthesize_group"},
            )
            return None

        fallback_ids = [m.item_id for m in members if m.used_fallback]
        if fallback_ids:
            partial = GroupPartiallyFailed(group_id, fallback_ids)
            logger.info(str(partial), extra={"owner_id": owner_id, "group_id": group_id, "step": "synthesize_group"})

        synthesis = self.cache.get_or_compute(group_id, lambda: self._compute_synthesis(members))
        return self._finalize_group(group, members, synthesis)

    def _compute_synthesis(self, members: Sequence[ContentItem]) -> Dict[str, Any]:
        articles = [
            ArticleInput(url=m.source_url, title=m.title or m.raw_title or "Untitled", text=m.summary or "")
            for m in members
        ]
        digest = self.summarizer.summarize_group(articles)
        if digest.used_fallback:
            # Members already carry their own summaries; aggregate those instead
            titles = [m.title or m.raw_title for m in members if (m.title or m.raw_title)]
            digest = Digest(
                title=digest.title,
                summary=f"Analyzed {len(members)} articles. Key topics covered: {', '.join(titles)}",
                key_points=[p for m in members for p in (m.key_points or [])][:MAX_FALLBACK_KEY_POINTS],
                question=DEFAULT_GROUP_QUESTION,
                used_fallback=True,
            )
        value = digest.to_dict()
        value["question"] = value["question"] or DEFAULT_GROUP_QUESTION
        return value

    def summarize_group_direct(self, owner_id: str, group_id: str) -> Optional[ContentItem]:
        """Legacy strategy: one AI call over the members' raw content, no per-item summaries."""
        group = self.store.get_group(owner_id, group_id)
        if group is None:
            return None
        if group.status == GroupStatus.COMPLETED:
            return self.store.get(owner_id, group_id)

        members = self.store.get_many(owner_id, group.item_ids)
        if not members:
            return None

        def compute() -> Dict[str, Any]:
            digest = self.summarizer.summarize_group(
                [
                    ArticleInput(url=m.source_url, title=m.raw_title, text=m.raw_body or m.raw_description)
                    for m in members
                ]
            )
            return digest.to_dict()

        synthesis = self.cache.get_or_compute(group_id, compute)

        for m in members:
            if m.processing_state == ProcessingState.PROCESSING:
                check_transition(m.item_id, m.processing_state, ProcessingState.READY)
                self.store.update_fields(
                    owner_id,
                    m.item_id,
                    {
                        "title": m.raw_title,
                        "summary": m.raw_description,
                        "key_points": [],
                        "processing_state": ProcessingState.READY,
                    },
                )
        members = self.store.get_many(owner_id, group.item_ids)
        return self._finalize_group(group, members, synthesis)

    def _finalize_group(
        self,
        group: ProcessingGroup,
        members: Sequence[ContentItem],
        synthesis: Dict[str, Any],
    ) -> ContentItem:
        """
        Write the grouped item, then archive its sources, then close the group.
        Each step is idempotent so a redelivered unit can resume after a crash.
        """
        owner_id = group.owner_id
        now = datetime.utcnow()
        display_title = group_display_title(members)

        grouped = ContentItem(
            owner_id=owner_id,
            item_id=group.group_id,
            source_url="",
            source_kind=SourceKind.OTHER,
            raw_title=display_title,
            category=self.classifier.majority_category(members),
            status=ItemStatus.INBOX,
            processing_state=ProcessingState.READY,
            title=synthesis.get("title") or display_title,
            summary=synthesis.get("summary"),
            key_points=list(synthesis.get("key_points") or []),
            question=synthesis.get("question") or DEFAULT_GROUP_QUESTION,
            used_fallback=False,
            priority_score=max(
                compute_priority_score(m.created_at, m.times_reviewed or 0, now=now) for m in members
            ),
            created_at=now,
            times_reviewed=0,
            is_grouped=True,
            source_item_ids=[m.item_id for m in members],
            source_urls=[m.source_url for m in members],
            individual_summaries=[_individual_summary(m) for m in members],
        )
        if self.store.insert_if_absent(grouped):
            self._trace(owner_id, group.group_id, "SYNTHESIZED", "Grouped item created")

        for m in members:
            if m.status != ItemStatus.ARCHIVED:
                self.store.update_fields(owner_id, m.item_id, {"status": ItemStatus.ARCHIVED})
        self._trace(
            owner_id, group.group_id, "ARCHIVED", f"{len(members)} source items archived",
            meta={"item_ids": [m.item_id for m in members]},
        )

        self.store.update_group(group.group_id, {"status": GroupStatus.COMPLETED, "completed_at": now})
        logger.info(
            "Group completed",
            extra={"owner_id": owner_id, "group_id": group.group_id, "step": "group_completed"},
        )
        return self.store.get(owner_id, group.group_id)

    # -- reads -------------------------------------------------------------

    def get_status(self, owner_id: str, ref_id: str) -> StatusView:
        """
        Poll an item or group. For a group whose members are all ready this
        triggers synthesis inline (served from the cache when already done);
        otherwise it returns a placeholder view without waiting.
        """
        group = self.store.get_group(owner_id, ref_id)
        if group is None:
            item = self.store.get(owner_id, ref_id)
            if item is None:
                raise ItemNotFound(f"no item or group {ref_id}")
            ready = item.processing_state == ProcessingState.READY
            return StatusView(
                ref_id=ref_id,
                ready=ready,
                is_group=bool(item.is_grouped),
                processed_count=1 if ready else 0,
                total_count=1,
                result=item_to_dict(item),
            )

        members = self.store.get_many(owner_id, group.item_ids)
        processed = sum(1 for m in members if m.processing_state == ProcessingState.READY)
        total = len(members)

        grouped: ContentItem | None = None
        if group.status == GroupStatus.COMPLETED:
            grouped = self.store.get(owner_id, ref_id)
        elif total and processed == total:
            if group.strategy == GroupStrategy.DIRECT:
                grouped = self.summarize_group_direct(owner_id, ref_id)
            else:
                grouped = self.synthesize_group(owner_id, ref_id)

        if grouped is not None:
            return StatusView(
                ref_id=ref_id,
                ready=True,
                is_group=True,
                processed_count=total,
                total_count=total,
                result=item_to_dict(grouped),
            )

        return StatusView(
            ref_id=ref_id,
            ready=False,
            is_group=True,
            processed_count=processed,
            total_count=total,
            result={
                "item_id": ref_id,
                "title": group_display_title(members),
                "category": group.category,
                "summary": f"Processing {processed}/{total} articles...",
                "key_points": [],
                "question": PENDING_QUESTION,
                "is_grouped": True,
                "source_urls": [m.source_url for m in members],
                "individual_summaries": [
                    {
                        **_individual_summary(m),
                        "summary": m.summary if m.processing_state == ProcessingState.READY else PENDING_SUMMARY,
                    }
                    for m in members
                ],
            },
        )

    def list_items(
        self,
        owner_id: str,
        status: ItemStatus = ItemStatus.INBOX,
        category: str | None = None,
        limit: int = 50,
    ) -> List[ContentItem]:
        return self.store.query_by_owner_and_status(owner_id, status, category=category, limit=limit)

    def get_streak(self, owner_id: str, today=None) -> StreakResult:
        return calculate_streak(self.store.activity_timestamps(owner_id), today=today)

    # -- user actions ------------------------------------------------------

    def mark_reviewed(self, owner_id: str, item_id: str) -> float:
        item = self.store.get(owner_id, item_id)
        if item is None:
            raise ItemNotFound(f"no item {item_id}")

        now = datetime.utcnow()
        times_reviewed = (item.times_reviewed or 0) + 1
        score = compute_priority_score(item.created_at, times_reviewed, now=now)
        self.store.update_fields(
            owner_id,
            item_id,
            {"times_reviewed": times_reviewed, "last_reviewed_at": now, "priority_score": score},
        )
        logger.info(
            "Item reviewed",
            extra={"owner_id": owner_id, "item_id": item_id, "step": "review"},
        )
        return score

    def patch_item(
        self,
        owner_id: str,
        item_id: str,
        status: ItemStatus | None = None,
        category: str | None = None,
    ) -> ContentItem:
        patch: Dict[str, Any] = {}
        if status is not None:
            patch["status"] = ItemStatus(status)
        if category is not None:
            patch["category"] = category
        if not patch:
            item = self.store.get(owner_id, item_id)
        else:
            item = self.store.update_fields(owner_id, item_id, patch)
        if item is None:
            raise ItemNotFound(f"no item {item_id}")
        return item

    def reset_stale_item(self, owner_id: str, item_id: str, now: datetime | None = None) -> ContentItem:
        """Send a stuck singleton back to `scraped` so it can be requested again."""
        item = self.store.get(owner_id, item_id)
        if item is None:
            raise ItemNotFound(f"no item {item_id}")

        now = now or datetime.utcnow()
        cutoff = now - timedelta(seconds=self.settings.PROCESSING_TIMEOUT_SECONDS)
        stale = item.processing_started_at is not None and item.processing_started_at < cutoff
        if item.group_id or not stale:
            # Group members are retried by requeue_stale so the join stays intact
            raise InvalidTransition(item_id, ProcessingState(item.processing_state).value, ProcessingState.SCRAPED.value)

        check_transition(item_id, item.processing_state, ProcessingState.SCRAPED, reset=True)
        return self.store.update_fields(
            owner_id,
            item_id,
            {"processing_state": ProcessingState.SCRAPED, "processing_started_at": None},
        )

    # -- scheduled triggers ------------------------------------------------

    def requeue_stale(self, now: datetime | None = None) -> int:
        """
        Re-dispatch work for items stuck in `processing` past the timeout, and
        synthesis for open groups whose members are all ready.
        """
        now = now or datetime.utcnow()
        cutoff = now - timedelta(seconds=self.settings.PROCESSING_TIMEOUT_SECONDS)
        stale = self.store.find_stale_processing(cutoff)

        direct_groups_sent: set[str] = set()
        requeued = 0
        for item in stale:
            self.store.update_fields(item.owner_id, item.item_id, {"processing_started_at": now})
            group = self.store.get_group(item.owner_id, item.group_id) if item.group_id else None
            if group is not None and group.strategy == GroupStrategy.DIRECT:
                if group.group_id in direct_groups_sent:
                    continue
                direct_groups_sent.add(group.group_id)
                sent = self._dispatch(
                    SUMMARIZE_GROUP_DIRECT, {"owner_id": item.owner_id, "group_id": group.group_id}
                )
            else:
                sent = self._dispatch(
                    SUMMARIZE_ITEM,
                    {"owner_id": item.owner_id, "item_id": item.item_id, "group_id": item.group_id},
                )
            requeued += int(sent)

        # Members can all be ready while the synthesis unit was lost
        for group in self.store.find_stale_groups(cutoff):
            if group.strategy == GroupStrategy.DIRECT:
                if group.group_id in direct_groups_sent:
                    continue
                direct_groups_sent.add(group.group_id)
                sent = self._dispatch(
                    SUMMARIZE_GROUP_DIRECT, {"owner_id": group.owner_id, "group_id": group.group_id}
                )
            else:
                members = self.store.get_many(group.owner_id, group.item_ids)
                if not members or any(m.processing_state != ProcessingState.READY for m in members):
                    continue
                sent = self._dispatch(
                    SYNTHESIZE_GROUP, {"owner_id": group.owner_id, "group_id": group.group_id}
                )
            requeued += int(sent)

        if requeued:
            logger.info("Requeued stale work units", extra={"step": "requeue_stale", "count": requeued})
        return requeued

    def auto_process_owner(self, owner_id: str) -> Optional[ProcessingSummary]:
        """Scheduled trigger: only tiers with auto-processing spend AI without a user request."""
        entitlement = self.entitlements.for_owner(owner_id)
        if not (entitlement.auto_process_enabled and entitlement.ai_processing_enabled):
            logger.info(
                "Auto-processing not enabled for tier",
                extra={"owner_id": owner_id, "step": "auto_process", "tier": entitlement.tier},
            )
            return None
        return self.request_processing(owner_id)

    def auto_process_all(self) -> int:
        processed = 0
        for owner_id in self.store.list_owners_with_state(ProcessingState.SCRAPED):
            if self.auto_process_owner(owner_id) is not None:
                processed += 1
        return processed


@lru_cache(maxsize=1)
def get_pipeline() -> NuggetPipeline:
    """Process-wide pipeline wired to the database, Celery and the LLM provider."""
    from .dispatch import CeleryDispatcher
    from .entitlements import StaticEntitlementSource
    from .grouping import get_classifier
    from .llm import OpenAITextGenerator

    store = ItemStore()
    classifier = get_classifier()
    return NuggetPipeline(
        store=store,
        ledger=DedupLedger(store),
        cache=DigestSynthesisCache(store),
        summarizer=Summarizer(OpenAITextGenerator()),
        dispatcher=CeleryDispatcher(),
        entitlements=StaticEntitlementSource(),
        classifier=classifier,
        scraper=ScrapeNormalizer(classifier=classifier),
        feed_fetcher=FeedFetcher(),
    )
