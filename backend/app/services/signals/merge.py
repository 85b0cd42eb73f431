from __future__ import annotations

import asyncio
import dataclasses
import logging
import math
from typing import Any, Optional

from ...core.config import get_settings
from .keywords import extract_signals_from_keywords
from .llm_parser import PROMPT_TIMEOUT_MS, fetch_signals_from_llm
from .types import (
    MAX_NOTES_LENGTH,
    PromptSignal,
    PromptSignals,
    PromptSignalsPartial,
    SignalMetadata,
    clamp_confidence,
    create_default_signals,
)

logger = logging.getLogger(__name__)

DEFAULT_LLM_CONFIDENCE_THRESHOLD = 0.75


def values_equal(a: Any, b: Any) -> bool:
    """Deep structural equality; NaN compares equal to itself."""
    if isinstance(a, float) and isinstance(b, float) and math.isnan(a) and math.isnan(b):
        return True
    if isinstance(a, (list, tuple)) and isinstance(b, (list, tuple)):
        return len(a) == len(b) and all(values_equal(x, y) for x, y in zip(a, b))
    if isinstance(a, dict) and isinstance(b, dict):
        if len(a) != len(b):
            return False
        return all(k in b and values_equal(v, b[k]) for k, v in a.items())
    if dataclasses.is_dataclass(a) and dataclasses.is_dataclass(b) and not isinstance(a, type):
        if type(a) is not type(b):
            return False
        return values_equal(dataclasses.asdict(a), dataclasses.asdict(b))
    return a == b


def append_notes(*parts: Optional[str]) -> Optional[str]:
    filtered = [p.strip() for p in parts if p and p.strip()]
    if not filtered:
        return None
    return " | ".join(filtered)[:MAX_NOTES_LENGTH]


def resolve_signal(
    base: PromptSignal,
    keyword: Optional[PromptSignal],
    llm: Optional[PromptSignal],
    threshold: float,
) -> PromptSignal:
    if keyword is None and llm is None:
        return base

    if llm is None:
        return keyword.with_metadata(source="keyword")

    if keyword is None:
        return PromptSignal(
            value=llm.value,
            metadata=SignalMetadata(source="llm", confidence=llm.confidence, notes=llm.metadata.notes),
        )

    if values_equal(keyword.value, llm.value):
        return PromptSignal(
            value=keyword.value,
            metadata=SignalMetadata(
                source="merge",
                confidence=max(keyword.confidence, llm.confidence),
                notes=append_notes("Keyword and LLM agreement", keyword.metadata.notes, llm.metadata.notes),
            ),
        )

    if llm.confidence >= threshold:
        return PromptSignal(
            value=llm.value,
            metadata=SignalMetadata(
                source="llm",
                confidence=llm.confidence,
                notes=append_notes("LLM override of keyword value", llm.metadata.notes, keyword.metadata.notes),
            ),
        )

    return PromptSignal(
        value=keyword.value,
        metadata=SignalMetadata(
            source="keyword",
            confidence=keyword.confidence,
            notes=append_notes(
                "Keyword preferred over lower-confidence LLM", keyword.metadata.notes, llm.metadata.notes
            ),
        ),
    )


def merge_signals(
    keyword_signals: PromptSignalsPartial,
    llm_signals: PromptSignalsPartial,
    threshold: float = DEFAULT_LLM_CONFIDENCE_THRESHOLD,
) -> PromptSignals:
    """
    Combine keyword and LLM partials into a complete PromptSignals.

    Agreement becomes source `merge` with the higher confidence; on
    disagreement the LLM wins only at or above `threshold`.
    """
    threshold = clamp_confidence(threshold, DEFAULT_LLM_CONFIDENCE_THRESHOLD)
    defaults = create_default_signals()
    resolved = {
        name: resolve_signal(base, keyword_signals.get(name), llm_signals.get(name), threshold)
        for name, base in defaults.items()
    }
    return PromptSignals(**resolved)


async def build_prompt_signals(
    prompt: str,
    *,
    llm_confidence_threshold: Optional[float] = None,
    timeout_ms: Optional[int] = None,
) -> PromptSignals:
    """
    Extract keyword and LLM signals concurrently and merge them.

    Returns defaults when prompt intelligence is disabled or the prompt is
    blank. An LLM failure degrades to keyword-only signals.
    """
    settings = get_settings()
    if not settings.ENABLE_PROMPT_INTEL:
        return create_default_signals()

    normalized = (prompt or "").strip()
    if not normalized:
        logger.debug("build_prompt_signals received empty prompt")
        return create_default_signals()

    threshold = clamp_confidence(
        settings.PROMPT_INTEL_LLM_THRESHOLD if llm_confidence_threshold is None else llm_confidence_threshold,
        DEFAULT_LLM_CONFIDENCE_THRESHOLD,
    )

    keyword_result, llm_result = await asyncio.gather(
        asyncio.to_thread(extract_signals_from_keywords, normalized),
        asyncio.to_thread(fetch_signals_from_llm, normalized, timeout_ms or PROMPT_TIMEOUT_MS),
        return_exceptions=True,
    )

    if isinstance(keyword_result, BaseException):
        raise keyword_result

    llm_signals: PromptSignalsPartial = {}
    if isinstance(llm_result, BaseException):
        logger.warning("LLM signal parser raised; continuing with keyword results: %s", llm_result)
    else:
        llm_signals = llm_result

    merged = merge_signals(keyword_result, llm_signals, threshold)
    logger.info(
        "Prompt signals merged (keyword=%d, llm=%d)",
        len(keyword_result),
        len(llm_signals),
        extra={"step": "prompt_intel"},
    )
    return merged
