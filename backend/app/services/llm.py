from __future__ import annotations

import logging
from functools import lru_cache
from contextlib import contextmanager
from threading import BoundedSemaphore
from typing import Any, Dict, Optional

from openai import OpenAI

from ..core.config import get_settings
from .llm_usage import record_llm_usage

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

    Use inside the thread that actually performs the HTTP request; async
    routes reach this through `asyncio.to_thread`.
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
    Centralised factory for the OpenAI-compatible client used across the app.

    - If OPENROUTER_API_KEY is set, route requests via OpenRouter.
    - Otherwise, fall back to the standard OpenAI API using OPENAI_API_KEY.
    """
    settings = get_settings()

    if settings.OPENROUTER_API_KEY:
        return OpenAI(
            base_url="https://openrouter.ai/api/v1",
            api_key=settings.OPENROUTER_API_KEY.strip(),
            default_headers={
                "HTTP-Referer": settings.FRONTEND_ORIGIN or "http://localhost:3000",
                "X-Title": "Canvas Personalization",
            },
            max_retries=0,
        )

    if settings.OPENAI_API_KEY:
        # Retries are owned by llm_retry, not the SDK.
        return OpenAI(api_key=settings.OPENAI_API_KEY.strip(), max_retries=0)

    raise RuntimeError(
        "No LLM API key configured. Set either OPENAI_API_KEY or OPENROUTER_API_KEY."
    )


def complete_chat(
    system: str,
    prompt: str,
    *,
    max_tokens: Optional[int] = None,
    temperature: Optional[float] = None,
    timeout_s: Optional[float] = None,
    json_mode: bool = False,
) -> Any:
    """
    Single chat completion call. Returns the raw provider response.

    Token usage is recorded for every successful call.
    """
    settings = get_settings()
    client = get_llm_client()

    kwargs: Dict[str, Any] = {
        "model": settings.LLM_MODEL,
        "messages": [
            {"role": "system", "content": system},
            {"role": "user", "content": prompt},
        ],
        "temperature": settings.LLM_TEMPERATURE if temperature is None else temperature,
        "top_p": settings.LLM_TOP_P,
        "max_tokens": max_tokens or settings.LLM_MAX_TOKENS,
    }
    if timeout_s is not None:
        kwargs["timeout"] = timeout_s
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}

    with limit_llm_concurrency():
        response = client.chat.completions.create(**kwargs)

    record_llm_usage(getattr(response, "usage", None), settings.LLM_MODEL)
    return response
