from __future__ import annotations

import logging
from functools import lru_cache
from contextlib import contextmanager
from threading import BoundedSemaphore
from typing import Protocol

import openai
from openai import OpenAI

from ..core.config import get_settings
from .errors import AIUnavailable

logger = logging.getLogger(__name__)

_llm_semaphore: BoundedSemaphore | None = None


def _get_semaphore() -> BoundedSemaphore:
    """
    Lazy-initialised global semaphore for limiting concurrent LLM calls.
    """
    global _llm_semaphore
    if _llm_semaphore is None:
        settings = get_settings()
        _llm_semaphore = BoundedSemaphore(settings.LLM_MAX_CONCURRENCY)
    return _llm_semaphore


@contextmanager
def limit_llm_concurrency():
    """
    Bound concurrent calls to the LLM provider.

        with limit_llm_concurrency():
            client.chat.completions.create(...)

    Use inside the thread that actually performs the HTTP request.
    """
    sem = _get_semaphore()
    sem.acquire()
    try:
        yield
    finally:
        sem.release()


@lru_cache(maxsize=1)
def get_llm_client() -> OpenAI:
    """
    Centralised factory for the OpenAI-compatible client.

    - If OPENROUTER_API_KEY is set, route requests via OpenRouter.
    - Otherwise, fall back to the standard OpenAI API using OPENAI_API_KEY.

    Cached so all callers in a process share a single client instance.
    """
    settings = get_settings()

    if settings.OPENROUTER_API_KEY:
        return OpenAI(
            base_url="https://openrouter.ai/api/v1",
            api_key=settings.OPENROUTER_API_KEY.strip(),
            timeout=settings.LLM_TIMEOUT_SECONDS,
            default_headers={
                "HTTP-Referer": settings.FRONTEND_ORIGIN or "http://localhost:3000",
                "X-Title": "Nuggets",
            },
        )

    if settings.OPENAI_API_KEY:
        return OpenAI(
            api_key=settings.OPENAI_API_KEY.strip(),
            timeout=settings.LLM_TIMEOUT_SECONDS,
        )

    raise RuntimeError(
        "No LLM API key configured. Set either OPENAI_API_KEY or OPENROUTER_API_KEY."
    )


class TextGenerator(Protocol):
    """Unstructured text generation: prompt in, raw text out."""

    def generate(self, prompt: str, *, max_tokens: int | None = None) -> str: ...


class OpenAITextGenerator:
    """TextGenerator over the shared OpenAI-compatible client."""

    def __init__(self, client: OpenAI | None = None, model: str | None = None) -> None:
        settings = get_settings()
        self._client = client
        self.model = model or settings.LLM_MODEL
        self.default_max_tokens = settings.LLM_MAX_TOKENS

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = get_llm_client()
        return self._client

    def generate(self, prompt: str, *, max_tokens: int | None = None) -> str:
        try:
            with limit_llm_concurrency():
                resp = self.client.chat.completions.create(
                    model=self.model,
                    messages=[{"role": "user", "content": prompt}],
                    max_tokens=max_tokens or self.default_max_tokens,
                    temperature=0.7,
                )
        except (openai.OpenAIError, RuntimeError) as e:
            logger.warning(
                "LLM call failed",
                extra={"step": "llm_generate", "model": self.model, "error": str(e)},
            )
            raise AIUnavailable(str(e)) from e

        if not resp.choices:
            raise AIUnavailable("LLM returned no choices")
        return resp.choices[0].message.content or ""
