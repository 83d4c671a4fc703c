from __future__ import annotations

import html
import logging
from dataclasses import dataclass
from typing import List, Optional

import feedparser
import httpx
from bs4 import BeautifulSoup
from tenacity import retry, wait_exponential, stop_after_attempt, retry_if_exception_type

from ..core.config import get_settings

logger = logging.getLogger(__name__)


class FeedFetchError(Exception):
    """The feed could not be fetched or parsed at all."""


@dataclass
class FeedEntry:
    guid: Optional[str]
    link: str
    title: str
    snippet: str


def clean_text(value: str | None) -> str:
    if not value:
        return ""
    return html.unescape(value).strip()


def clean_url(value: str | None) -> str:
    if not value:
        return ""
    return value.replace("&amp;", "&").replace("&#38;", "&").strip()


def _snippet(entry) -> str:
    raw = entry.get("summary") or entry.get("description") or ""
    if not raw and entry.get("content"):
        raw = entry["content"][0].get("value", "")
    return clean_text(BeautifulSoup(raw, "html.parser").get_text(" ", strip=True))


class FeedFetcher:
    def __init__(self, client: httpx.Client | None = None, max_items: int | None = None) -> None:
        self.settings = get_settings()
        self._client = client
        self.max_items = max_items or self.settings.FEED_MAX_ITEMS

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                timeout=self.settings.SCRAPE_TIMEOUT_SECONDS,
                follow_redirects=True,
                headers={"User-Agent": self.settings.FEED_USER_AGENT},
            )
        return self._client

    @retry(
        wait=wait_exponential(multiplier=1, min=1, max=10),
        stop=stop_after_attempt(3),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    def _get(self, feed_url: str) -> bytes:
        resp = self.client.get(feed_url, headers={"User-Agent": self.settings.FEED_USER_AGENT})
        resp.raise_for_status()
        return resp.content

    def latest_entries(self, feed_url: str) -> List[FeedEntry]:
        """Newest entries first, as published by the feed, capped at max_items."""
        try:
            body = self._get(feed_url)
        except httpx.HTTPError as e:
            raise FeedFetchError(f"failed to fetch feed {feed_url}: {e}") from e

        parsed = feedparser.parse(body)
        if parsed.bozo and not parsed.entries:
            raise FeedFetchError(f"failed to parse feed {feed_url}: {parsed.get('bozo_exception')}")

        entries: List[FeedEntry] = []
        for entry in parsed.entries[: self.max_items]:
            link = clean_url(entry.get("link"))
            guid = (entry.get("id") or "").strip() or None
            if not link and not guid:
                continue
            entries.append(
                FeedEntry(
                    guid=guid,
                    link=link,
                    title=clean_text(entry.get("title")) or "Untitled",
                    snippet=_snippet(entry),
                )
            )

        logger.info(
            "Fetched feed entries",
            extra={"step": "feed_fetch", "feed_url": feed_url, "count": len(entries)},
        )
        return entries
