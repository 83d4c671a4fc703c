"""
Category classification and batch grouping for AI processing.

Classification is keyword scoring over an injected, immutable keyword table
(first-declared category wins ties). Grouping is an O(n) partition by exact
category, chunked by the owner's batch limit; the pairwise similarity score only
orders partitions and reports cohesion, it never decides membership.
"""
from __future__ import annotations

import json
import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from functools import lru_cache
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Sequence
from urllib.parse import urlparse

from ..core.config import get_settings

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "other"

# Declaration order is the tie-break order.
DEFAULT_CATEGORY_KEYWORDS: Dict[str, List[str]] = {
    "technology": [
        "tech", "software", "ai", "artificial intelligence", "code", "programming",
        "developer", "app", "startup", "saas", "cloud", "web", "mobile", "computer",
        "digital", "cyber", "data",
    ],
    "business": [
        "business", "entrepreneur", "company", "market", "revenue", "profit", "sales",
        "strategy", "management", "ceo", "startup", "venture", "investment", "corporate",
    ],
    "finance": [
        "finance", "money", "stock", "investment", "bank", "economy", "trading", "market",
        "crypto", "bitcoin", "portfolio", "fund", "financial", "investor",
    ],
    "science": [
        "science", "research", "study", "discovery", "experiment", "scientist", "physics",
        "chemistry", "biology", "medical", "clinical", "academic",
    ],
    "health": [
        "health", "fitness", "wellness", "medical", "diet", "nutrition", "exercise",
        "mental health", "therapy", "doctor", "hospital", "medicine", "disease",
    ],
    "sport": [
        "sport", "football", "basketball", "soccer", "tennis", "athlete", "team", "game",
        "championship", "fitness", "training", "coach",
    ],
    "career": [
        "career", "job", "work", "employment", "hiring", "interview", "resume",
        "professional", "workplace", "leadership", "skills",
    ],
    "culture": [
        "culture", "art", "music", "film", "movie", "book", "entertainment", "celebrity",
        "fashion", "design", "creative",
    ],
    "politics": [
        "politics", "government", "election", "policy", "law", "congress", "senate",
        "president", "political", "vote", "legislation",
    ],
    "education": [
        "education", "learning", "school", "university", "student", "teacher", "course",
        "study", "academic", "training", "degree",
    ],
}

CATEGORY_MATCH_WEIGHT = 40
DOMAIN_MATCH_WEIGHT = 30
TITLE_OVERLAP_WEIGHT = 30
MIN_TITLE_WORD_LEN = 4  # words of 3 characters or fewer are ignored
SINGLE_PARTITION_COHESION = 50.0


def _compile_keyword(keyword: str) -> re.Pattern[str]:
    # Whole-word match so "ai" does not fire on "said"
    return re.compile(r"(?<![a-z0-9])" + re.escape(keyword.lower()) + r"(?![a-z0-9])")


def _source_domain(url: str | None) -> str | None:
    if not url:
        return None
    try:
        netloc = urlparse(url).netloc.lower()
    except ValueError:
        return None
    if netloc.startswith("www."):
        netloc = netloc[4:]
    return netloc or None


def _title_words(item: Any) -> set[str]:
    title = getattr(item, "title", None) or getattr(item, "raw_title", None) or ""
    return {w for w in title.lower().split() if len(w) >= MIN_TITLE_WORD_LEN}


@dataclass
class ItemBatch:
    """A unit of AI work: a group (2+ items) or a singleton."""
    category: str
    items: List[Any]
    cohesion: float = SINGLE_PARTITION_COHESION

    @property
    def is_group(self) -> bool:
        return len(self.items) >= 2

    @property
    def item_ids(self) -> List[str]:
        return [i.item_id for i in self.items]


@dataclass
class _Partition:
    category: str
    items: List[Any] = field(default_factory=list)
    cohesion: float = SINGLE_PARTITION_COHESION


class CategoryClassifier:
    """
    Classifies and groups content items.

    The keyword table is frozen at construction; build one per process via
    get_classifier().
    """

    def __init__(self, category_keywords: Mapping[str, Sequence[str]] | None = None) -> None:
        table = category_keywords if category_keywords is not None else DEFAULT_CATEGORY_KEYWORDS
        self.category_keywords: Mapping[str, tuple[str, ...]] = MappingProxyType(
            {cat: tuple(kws) for cat, kws in table.items()}
        )
        self._patterns = {
            cat: [_compile_keyword(k) for k in kws]
            for cat, kws in self.category_keywords.items()
        }

    @property
    def categories(self) -> List[str]:
        return list(self.category_keywords)

    def score_text(self, text: str) -> Dict[str, int]:
        lowered = text.lower()
        return {
            cat: sum(1 for p in patterns if p.search(lowered))
            for cat, patterns in self._patterns.items()
        }

    def classify(self, item: Any) -> str:
        """
        Explicit category wins; otherwise the top keyword-scoring category over
        title, summary, description and key points, or `other` on no hits.
        """
        if getattr(item, "category", None):
            return item.category

        parts = [
            getattr(item, "title", None) or "",
            getattr(item, "raw_title", None) or "",
            getattr(item, "summary", None) or "",
            getattr(item, "raw_description", None) or "",
            *(getattr(item, "key_points", None) or []),
        ]
        scores = self.score_text(" ".join(parts))

        best_category, best_score = DEFAULT_CATEGORY, 0
        for category, score in scores.items():
            # strict > keeps the first-declared category on ties
            if score > best_score:
                best_category, best_score = category, score
        return best_category

    def similarity(self, a: Any, b: Any) -> int:
        """Cohesion score in [0, 100]: category 40, source domain 30, title overlap up to 30."""
        score = 0

        if self.classify(a) == self.classify(b):
            score += CATEGORY_MATCH_WEIGHT

        domain_a = _source_domain(getattr(a, "source_url", None))
        domain_b = _source_domain(getattr(b, "source_url", None))
        if domain_a and domain_a == domain_b:
            score += DOMAIN_MATCH_WEIGHT

        words_a, words_b = _title_words(a), _title_words(b)
        union = words_a | words_b
        if union:
            score += round(len(words_a & words_b) / len(union) * TITLE_OVERLAP_WEIGHT)

        return score

    def _average_similarity(self, items: Sequence[Any]) -> float:
        total, comparisons = 0, 0
        for i in range(len(items)):
            for j in range(i + 1, len(items)):
                total += self.similarity(items[i], items[j])
                comparisons += 1
        return total / comparisons if comparisons else SINGLE_PARTITION_COHESION

    def partition(self, items: Iterable[Any]) -> List[_Partition]:
        by_category: Dict[str, _Partition] = {}
        for item in items:
            category = self.classify(item)
            by_category.setdefault(category, _Partition(category=category)).items.append(item)

        partitions = list(by_category.values())
        for p in partitions:
            p.cohesion = self._average_similarity(p.items)

        # Processing-order hint only: largest first, then most cohesive. sort() is
        # stable, so equal partitions keep first-seen order.
        partitions.sort(key=lambda p: (-len(p.items), -p.cohesion))
        return partitions

    def group(self, items: Sequence[Any], batch_limit: int) -> List[ItemBatch]:
        """
        Partition by classified category and chunk each partition to at most
        `batch_limit` items. A chunk of one is a singleton, processed on its own.
        """
        if batch_limit < 1:
            raise ValueError("batch_limit must be at least 1")

        batches: List[ItemBatch] = []
        for p in self.partition(items):
            for start in range(0, len(p.items), batch_limit):
                chunk = p.items[start:start + batch_limit]
                cohesion = p.cohesion if len(chunk) == len(p.items) else self._average_similarity(chunk)
                batches.append(ItemBatch(category=p.category, items=chunk, cohesion=cohesion))

        logger.debug(
            "Grouped %d items into %d batches",
            len(items),
            len(batches),
            extra={"step": "group"},
        )
        return batches

    def majority_category(self, items: Sequence[Any]) -> str:
        """Most common classified category; ties go to the first seen."""
        if not items:
            return DEFAULT_CATEGORY
        counts = Counter(self.classify(i) for i in items)
        # Counter preserves insertion order and most_common is stable on ties
        return counts.most_common(1)[0][0]


def _load_keyword_table(raw: str | None) -> Mapping[str, Sequence[str]] | None:
    if not raw:
        return None
    try:
        table = json.loads(raw)
    except json.JSONDecodeError:
        logger.error("CATEGORY_KEYWORDS_JSON is not valid JSON; using built-in table")
        return None
    if not isinstance(table, dict) or not all(isinstance(v, list) for v in table.values()):
        logger.error("CATEGORY_KEYWORDS_JSON must map category -> list of keywords; using built-in table")
        return None
    return table


@lru_cache(maxsize=1)
def get_classifier() -> CategoryClassifier:
    """Process-wide classifier; the keyword table is loaded once and never changes."""
    settings = get_settings()
    return CategoryClassifier(_load_keyword_table(settings.CATEGORY_KEYWORDS_JSON))
