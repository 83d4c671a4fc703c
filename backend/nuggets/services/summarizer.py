"""
Prompt construction and strict parsing for AI summaries.

The text generator is treated as a best-effort oracle: any failure, either in
the call (AIUnavailable) or in the shape of its reply (AIMalformedResponse),
is turned into a deterministic fallback digest so an item never stays unprocessed.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import List, Sequence

from pydantic import ValidationError

from ..core.config import get_settings
from ..schemas.nuggets import DigestResult
from .errors import AIMalformedResponse, AIUnavailable
from .llm import TextGenerator

logger = logging.getLogger(__name__)

ITEM_FALLBACK_TEXT = "Content saved for later review"
ITEM_FALLBACK_POINTS = ["Review this content when you have time"]
ITEM_FALLBACK_QUESTION = "What can you learn from this?"

GROUP_FALLBACK_TITLE = "Grouped content for review"
GROUP_FALLBACK_POINTS = ["Review these articles when you have time"]
GROUP_FALLBACK_QUESTION = "What can you learn from these articles?"

_FENCE_OPEN_RE = re.compile(r"^```(?:json)?\s*\n?", re.IGNORECASE)
_FENCE_CLOSE_RE = re.compile(r"\n?```\s*$")

ITEM_PROMPT = """Analyze this content and extract key learning points.

Content:
{content}

Respond ONLY with valid JSON in exactly this format (no other text):
{{
  "title": "Clear, concise title (max 80 chars)",
  "summary": "2-3 sentence summary of main idea",
  "keyPoints": ["Key point 1", "Key point 2", "Key point 3"],
  "question": "Thoughtful reflection question?"
}}"""

GROUP_PROMPT = """Analyze these {count} related articles and extract key learning points. Synthesize the information from all articles into a cohesive summary.

{content}

Respond ONLY with valid JSON in exactly this format (no other text):
{{
  "title": "Clear, concise title covering all articles (max 80 chars)",
  "summary": "2-3 sentence summary synthesizing the main ideas from all articles",
  "keyPoints": ["Key point 1", "Key point 2", "Key point 3", "Key point 4", "Key point 5"],
  "question": "Thoughtful reflection question based on all articles?"
}}"""


@dataclass
class ArticleInput:
    url: str
    title: str | None = None
    text: str | None = None


@dataclass
class Digest:
    title: str
    summary: str
    key_points: List[str] = field(default_factory=list)
    question: str = ""
    used_fallback: bool = False

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "summary": self.summary,
            "key_points": list(self.key_points),
            "question": self.question,
        }


def strip_code_fence(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        text = _FENCE_OPEN_RE.sub("", text)
        text = _FENCE_CLOSE_RE.sub("", text).strip()
    return text


def parse_digest(raw_text: str) -> Digest:
    """Strict JSON contract: title, summary, keyPoints[], question. Raises AIMalformedResponse."""
    cleaned = strip_code_fence(raw_text or "")
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise AIMalformedResponse(f"response is not JSON: {e.msg}", raw_text=raw_text) from e

    if not isinstance(payload, dict):
        raise AIMalformedResponse("response JSON is not an object", raw_text=raw_text)

    try:
        result = DigestResult.model_validate(payload)
    except ValidationError as e:
        raise AIMalformedResponse(
            f"response failed validation: {e.error_count()} error(s)", raw_text=raw_text
        ) from e

    return Digest(
        title=result.title,
        summary=result.summary,
        key_points=result.key_points,
        question=result.question,
    )


def build_item_prompt(article: ArticleInput) -> str:
    parts = [
        f"Title: {article.title}" if article.title else "",
        f"Content: {article.text}" if article.text else "",
        f"URL: {article.url}",
    ]
    return ITEM_PROMPT.format(content="\n\n".join(p for p in parts if p))


def build_group_prompt(articles: Sequence[ArticleInput]) -> str:
    """Articles appear in input order."""
    blocks = []
    for index, article in enumerate(articles, start=1):
        parts = [
            f"\n--- Article {index} ---",
            f"Title: {article.title}" if article.title else "",
            f"Content: {article.text}" if article.text else "",
            f"URL: {article.url}",
        ]
        blocks.append("\n".join(p for p in parts if p))
    return GROUP_PROMPT.format(count=len(articles), content="\n\n".join(blocks))


def item_fallback(article: ArticleInput) -> Digest:
    return Digest(
        title=article.title or ITEM_FALLBACK_TEXT,
        summary=ITEM_FALLBACK_TEXT,
        key_points=list(ITEM_FALLBACK_POINTS),
        question=ITEM_FALLBACK_QUESTION,
        used_fallback=True,
    )


def group_fallback(articles: Sequence[ArticleInput]) -> Digest:
    first_title = articles[0].title if articles else None
    return Digest(
        title=first_title or GROUP_FALLBACK_TITLE,
        summary=f"{len(articles)} articles saved for review",
        key_points=list(GROUP_FALLBACK_POINTS),
        question=GROUP_FALLBACK_QUESTION,
        used_fallback=True,
    )


class Summarizer:
    def __init__(self, generator: TextGenerator) -> None:
        settings = get_settings()
        self.generator = generator
        self.item_max_tokens = settings.LLM_MAX_TOKENS
        self.group_max_tokens = settings.LLM_GROUP_MAX_TOKENS

    def _generate(self, prompt: str, max_tokens: int) -> Digest:
        raw = self.generator.generate(prompt, max_tokens=max_tokens)
        return parse_digest(raw)

    def summarize_item(self, article: ArticleInput) -> Digest:
        try:
            return self._generate(build_item_prompt(article), self.item_max_tokens)
        except (AIUnavailable, AIMalformedResponse) as e:
            logger.warning(
                "Item summary fell back to canned digest",
                extra={"step": "summarize_item", "url": article.url, "error": str(e)},
            )
            return item_fallback(article)

    def summarize_group(self, articles: Sequence[ArticleInput]) -> Digest:
        if not articles:
            raise ValueError("summarize_group needs at least one article")
        try:
            return self._generate(build_group_prompt(articles), self.group_max_tokens)
        except (AIUnavailable, AIMalformedResponse) as e:
            logger.warning(
                "Group synthesis fell back to canned digest",
                extra={"step": "summarize_group", "count": len(articles), "error": str(e)},
            )
            return group_fallback(articles)
