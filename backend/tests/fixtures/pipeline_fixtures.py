"""
Shared test doubles for pipeline tests.

Contains a scripted text generator, a recording work dispatcher, a lock-guarded
in-memory synthesis backend and sample HTML / feed documents.
"""
import json
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from nuggets.services.errors import AIUnavailable


# ---------------------------------------------------------------------------
# Text generation
# ---------------------------------------------------------------------------

def digest_json(title: str = "A digest", summary: str = "Two sentences. About things.",
                key_points: Optional[List[str]] = None, question: str = "What next?") -> str:
    return json.dumps(
        {
            "title": title,
            "summary": summary,
            "keyPoints": key_points if key_points is not None else ["one", "two", "three"],
            "question": question,
        }
    )


class FakeTextGenerator:
    """
    Scripted TextGenerator.

    `item_reply` / `group_reply` are either a string or a callable(prompt) -> str;
    set one to AIUnavailable to simulate a provider failure.
    """

    def __init__(self, item_reply: Any = None, group_reply: Any = None) -> None:
        self.item_reply = item_reply if item_reply is not None else (
            lambda prompt: digest_json(title="Item digest", summary="Item summary.")
        )
        self.group_reply = group_reply if group_reply is not None else (
            lambda prompt: digest_json(title="Group digest", summary="Group summary.",
                                       key_points=["g1", "g2"], question="Group question?")
        )
        self.prompts: List[str] = []
        self.item_calls = 0
        self.group_calls = 0
        self._lock = threading.Lock()

    @staticmethod
    def is_group_prompt(prompt: str) -> bool:
        return "related articles" in prompt

    def generate(self, prompt: str, *, max_tokens: Optional[int] = None) -> str:
        with self._lock:
            self.prompts.append(prompt)
            if self.is_group_prompt(prompt):
                self.group_calls += 1
                reply = self.group_reply
            else:
                self.item_calls += 1
                reply = self.item_reply

        if reply is AIUnavailable:
            raise AIUnavailable("provider down")
        if callable(reply):
            return reply(prompt)
        return reply


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

class RecordingDispatcher:
    """Queues work units instead of sending them; `drain` runs them in FIFO order."""

    def __init__(self) -> None:
        self.sent: List[Tuple[str, Dict[str, Any]]] = []
        self.queue: List[Tuple[str, Dict[str, Any]]] = []

    def dispatch(self, unit: str, payload: Dict[str, Any]) -> None:
        self.sent.append((unit, dict(payload)))
        self.queue.append((unit, dict(payload)))

    def units(self, name: str) -> List[Dict[str, Any]]:
        return [p for u, p in self.sent if u == name]

    def drain(self, pipeline, max_steps: int = 1000) -> int:
        steps = 0
        while self.queue:
            unit, payload = self.queue.pop(0)
            pipeline.run_work_unit(unit, payload)
            steps += 1
            if steps >= max_steps:
                raise RuntimeError("work queue did not settle")
        return steps


class FailingDispatcher(RecordingDispatcher):
    def dispatch(self, unit: str, payload: Dict[str, Any]) -> None:
        raise ConnectionError("broker unreachable")


# ---------------------------------------------------------------------------
# Synthesis cache backend
# ---------------------------------------------------------------------------

class LockedMemoryBackend:
    """Thread-safe in-memory stand-in for the group synthesis column."""

    def __init__(self) -> None:
        self.values: Dict[str, Dict[str, Any]] = {}
        self.writes = 0
        self._lock = threading.Lock()

    def read_synthesis(self, group_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self.values.get(group_id)

    def write_synthesis_once(self, group_id: str, value: Dict[str, Any]) -> bool:
        with self._lock:
            self.writes += 1
            if group_id in self.values:
                return False
            self.values[group_id] = value
            return True


# ---------------------------------------------------------------------------
# Items for classifier tests
# ---------------------------------------------------------------------------

@dataclass
class SimpleItem:
    item_id: str
    title: Optional[str] = None
    raw_title: Optional[str] = None
    summary: Optional[str] = None
    raw_description: Optional[str] = None
    key_points: List[str] = field(default_factory=list)
    category: Optional[str] = None
    source_url: str = ""


# ---------------------------------------------------------------------------
# HTML / feed samples
# ---------------------------------------------------------------------------

LONG_PARAGRAPH = (
    "Software teams are adopting new developer tooling at a remarkable pace, "
    "and the results are visible across the industry."
)

GENERAL_ARTICLE_HTML = f"""
<html>
  <head>
    <title>Fallback title</title>
    <meta property="og:title" content="New software tooling for developers">
    <meta property="og:description" content="How programming teams ship faster">
  </head>
  <body>
    <p>Short.</p>
    <p>{LONG_PARAGRAPH}</p>
    <p>{LONG_PARAGRAPH}</p>
  </body>
</html>
"""

TITLE_ONLY_HTML = "<html><head><title>  Plain page  </title></head><body><p>tiny</p></body></html>"

LINKEDIN_HTML = """
<html>
  <head>
    <meta property="og:title" content="Leadership lessons from a decade of hiring">
    <meta property="og:description" content="What I learned building teams.">
    <meta property="article:author" content="Jane Doe">
  </head>
  <body>
    <div class="update-components feed-shared-text relative">
      Hiring well is the single most important thing a manager does, and here is why it matters.
    </div>
  </body>
</html>
"""

TWEET_META_HTML = """
<html>
  <head>
    <meta property="og:title" content="Ada (@ada_dev) on X">
    <meta property="og:description" content="Shipping a new software release today">
  </head>
</html>
"""

RSS_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Example feed</title>
    <link>https://feed.example.com</link>
    <description>Example</description>
    <item>
      <title>First &amp; foremost</title>
      <link>https://news.example.com/a?x=1&amp;y=2</link>
      <guid>guid-a</guid>
      <description>&lt;p&gt;Snippet about software&lt;/p&gt;</description>
    </item>
    <item>
      <title>Second story</title>
      <link>https://news.example.com/b</link>
      <guid>guid-b</guid>
      <description>Another snippet</description>
    </item>
  </channel>
</rss>
"""


def html_handler(routes: Dict[str, Tuple[int, str]]) -> Callable:
    """httpx.MockTransport handler serving `routes[url] -> (status, body)`; 404 otherwise."""
    import httpx

    def handler(request: "httpx.Request") -> "httpx.Response":
        status, body = routes.get(str(request.url), (404, "not found"))
        return httpx.Response(status, text=body)

    return handler
