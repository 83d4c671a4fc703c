"""
Scrape normalizer: URL -> {title, description, content, suggested_category}.

This runs at capture time, so it is free and synchronous: no AI calls, and
expected failures (404s, blocked platforms, transport errors) come back as a
ScrapeFailure value instead of raising. Two platform families get their own
heuristics because their pages carry almost no standard markup.
"""
from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import asdict, dataclass
from typing import Callable, Dict, Optional, Union
from urllib.parse import urlparse

import httpx
from bs4 import BeautifulSoup
from tenacity import retry, wait_exponential, stop_after_attempt, retry_if_exception_type

from ..core.config import get_settings
from .caching import cached_get
from .grouping import CategoryClassifier, get_classifier

logger = logging.getLogger(__name__)

MAX_TITLE_CHARS = 200
MAX_DESCRIPTION_CHARS = 300
MIN_PARAGRAPH_CHARS = 50

# Status codes the microblogging platform answers with for logged-out visitors
TWITTER_SOFT_FAIL_STATUSES = {400, 401, 403, 500}
EMPTY_HTML = "<!DOCTYPE html><html><head></head><body></body></html>"

LINKEDIN_AUTH_PLACEHOLDER = (
    "LinkedIn content requires authentication to access. Please copy the text manually."
)

DOMAIN_CATEGORIES: Dict[str, str] = {
    "techcrunch.com": "technology",
    "wired.com": "technology",
    "theverge.com": "technology",
    "arstechnica.com": "technology",
    "bloomberg.com": "finance",
    "wsj.com": "finance",
    "ft.com": "finance",
    "espn.com": "sport",
    "bbc.com/sport": "sport",
    "linkedin.com": "career",
    "nature.com": "science",
    "sciencedaily.com": "science",
    "healthline.com": "health",
    "webmd.com": "health",
}

_TWEET_URL_RE = re.compile(r"(?:twitter\.com|x\.com)/(\w+)/status/(\d+)", re.IGNORECASE)
_AUTHOR_RE = re.compile(r"@(\w+)")


@dataclass
class ScrapedContent:
    title: str
    description: str
    content: str
    suggested_category: Optional[str] = None


@dataclass
class ScrapeFailure:
    """Expected, non-fatal scrape failure; the caller creates the item from user fields."""
    url: str
    reason: str
    status_code: Optional[int] = None


ScrapeResult = Union[ScrapedContent, ScrapeFailure]


class _HTTPStatusFailure(Exception):
    def __init__(self, status_code: int, reason: str) -> None:
        super().__init__(f"{status_code} {reason}")
        self.status_code = status_code
        self.reason = reason


TWITTER_HOSTS = {"twitter.com", "x.com"}
LINKEDIN_HOSTS = {"linkedin.com"}
LINKEDIN_POST_PATHS = ("/posts/", "/pulse/", "/feed/")


def _platform_host(url: str) -> str:
    host = (urlparse(url).hostname or "").lower()
    for prefix in ("www.", "mobile."):
        if host.startswith(prefix):
            return host[len(prefix):]
    return host


def detect_url_type(url: str) -> str:
    host = _platform_host(url)
    if host in LINKEDIN_HOSTS and urlparse(url).path.lower().startswith(LINKEDIN_POST_PATHS):
        return "linkedin"
    if host in TWITTER_HOSTS:
        return "twitter"
    return "general"


def _meta(soup: BeautifulSoup, name: str, attribute: str = "property") -> str:
    tag = soup.find("meta", attrs={attribute: name})
    if tag is None:
        return ""
    return (tag.get("content") or "").strip()


def _limit_words(text: str, max_words: int) -> str:
    words = text.split()
    if len(words) > max_words:
        return " ".join(words[:max_words]) + "..."
    return text


class ScrapeNormalizer:
    """
    Fetches and normalizes a URL.

    `client` is an injectable httpx.Client (tests pass one backed by
    httpx.MockTransport). `cache` follows the cached_get(key, set_value, ttl)
    shape; pass None to disable caching.
    """

    def __init__(
        self,
        client: httpx.Client | None = None,
        classifier: CategoryClassifier | None = None,
        cache: Callable[..., object] | None = cached_get,
    ) -> None:
        self.settings = get_settings()
        self._client = client
        self.classifier = classifier or get_classifier()
        self.cache = cache

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                timeout=self.settings.SCRAPE_TIMEOUT_SECONDS,
                follow_redirects=True,
                headers={"User-Agent": self.settings.SCRAPE_USER_AGENT},
            )
        return self._client

    @retry(
        wait=wait_exponential(multiplier=1, min=1, max=10),
        stop=stop_after_attempt(3),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    def _fetch_html(self, url: str, url_type: str) -> str:
        resp = self.client.get(url, headers={"User-Agent": self.settings.SCRAPE_USER_AGENT})
        if resp.status_code != 200:
            if url_type == "twitter" and resp.status_code in TWITTER_SOFT_FAIL_STATUSES:
                return EMPTY_HTML
            raise _HTTPStatusFailure(resp.status_code, resp.reason_phrase or "")
        return resp.text

    def scrape(self, url: str) -> ScrapeResult:
        cache_key = "scrape:" + hashlib.sha256(url.encode("utf-8")).hexdigest()
        if self.cache is not None:
            cached = self.cache(cache_key)
            if isinstance(cached, dict):
                return ScrapedContent(**cached)

        url_type = detect_url_type(url)
        try:
            html = self._fetch_html(url, url_type)
        except _HTTPStatusFailure as e:
            logger.warning(
                "Scrape failed with HTTP status",
                extra={"step": "scrape", "url": url, "status_code": e.status_code},
            )
            return ScrapeFailure(url=url, reason=f"HTTP {e.status_code} {e.reason}".strip(), status_code=e.status_code)
        except httpx.HTTPError as e:
            logger.warning(
                "Scrape failed with transport error",
                extra={"step": "scrape", "url": url, "error": str(e)},
            )
            return ScrapeFailure(url=url, reason=str(e) or e.__class__.__name__)

        soup = BeautifulSoup(html, "html.parser")
        if url_type == "linkedin":
            result = self._scrape_linkedin(soup)
        elif url_type == "twitter":
            result = self._scrape_twitter(url, soup)
        else:
            result = self._scrape_general(url, soup)

        if self.cache is not None:
            self.cache(cache_key, set_value=asdict(result), ttl=self.settings.SCRAPE_CACHE_TTL_SECONDS)
        return result

    def _scrape_linkedin(self, soup: BeautifulSoup) -> ScrapedContent:
        title = _meta(soup, "og:title") or "LinkedIn Post"
        description = _meta(soup, "og:description")

        content = description
        body = soup.find("div", class_=lambda c: bool(c) and "feed-shared-text" in c)
        if body is not None:
            content = body.get_text(" ", strip=True)
        if not content or len(content) < MIN_PARAGRAPH_CHARS:
            content = description

        author = _meta(soup, "article:author") or _meta(soup, "og:article:author")
        if author:
            content = f"Author: {author}\n\n{content}"

        return ScrapedContent(
            title=title[:MAX_TITLE_CHARS],
            description=description[:MAX_DESCRIPTION_CHARS],
            content=content or LINKEDIN_AUTH_PLACEHOLDER,
            suggested_category="career",
        )

    def _scrape_twitter(self, url: str, soup: BeautifulSoup) -> ScrapedContent:
        title = _meta(soup, "og:title") or _meta(soup, "twitter:title", "name")
        description = _meta(soup, "og:description") or _meta(soup, "twitter:description", "name")

        if title or description:
            match = _AUTHOR_RE.search(title)
            author = match.group(1) if match else ""
            content = description or title
            if author and f"@{author}" not in content:
                content = f"@{author}: {content}"
            return ScrapedContent(
                title=f"Tweet by @{author}" if author else (title or "Tweet"),
                description=description[:MAX_DESCRIPTION_CHARS],
                content=content,
                suggested_category=self._category_from_text(content),
            )

        # Nothing usable in the markup: ask the user to paste the text
        match = _TWEET_URL_RE.search(url)
        username = match.group(1) if match else "unknown"
        tweet_id = match.group(2) if match else ""
        placeholder = (
            f"Tweet from @{username}\n\n"
            "[Please paste the tweet text here]\n\n"
            "Note: Twitter/X no longer allows automatic content extraction. "
            "Please copy the tweet text from your browser and update this nugget."
        )
        return ScrapedContent(
            title=f"Tweet by @{username}",
            description=f"Tweet ID: {tweet_id}",
            content=placeholder,
            suggested_category=None,
        )

    def _scrape_general(self, url: str, soup: BeautifulSoup) -> ScrapedContent:
        title = _meta(soup, "og:title") or _meta(soup, "twitter:title", "name")
        if not title and soup.title is not None:
            title = soup.title.get_text(strip=True)
        title = (title or "Untitled").strip()[:MAX_TITLE_CHARS]

        description = (
            _meta(soup, "og:description")
            or _meta(soup, "twitter:description", "name")
            or _meta(soup, "description", "name")
        )

        paragraphs = []
        for p in soup.find_all("p"):
            text = p.get_text(" ", strip=True)
            if len(text) > MIN_PARAGRAPH_CHARS:
                paragraphs.append(text)
        content = _limit_words("\n\n".join(paragraphs), self.settings.SCRAPE_MAX_WORDS)

        return ScrapedContent(
            title=title,
            description=description[:MAX_DESCRIPTION_CHARS],
            content=content,
            suggested_category=self.suggest_category(url, title, description),
        )

    def _category_from_text(self, text: str) -> Optional[str]:
        scores = self.classifier.score_text(text)
        best, best_score = None, 0
        for category, score in scores.items():
            if score > best_score:
                best, best_score = category, score
        return best

    def suggest_category(self, url: str, title: str, description: str) -> Optional[str]:
        """Domain lookup first, then keyword scoring over title and description."""
        lowered = url.lower()
        for domain, category in DOMAIN_CATEGORIES.items():
            if domain in lowered:
                return category
        return self._category_from_text(f"{title} {description}")
