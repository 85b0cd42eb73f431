from __future__ import annotations

import json
import threading
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ..core.config import get_settings


@dataclass(frozen=True)
class ModelRate:
    input_per_mtok: float
    output_per_mtok: float
    cached_input_per_mtok: Optional[float] = None


def _build_default_pricebook() -> Dict[str, ModelRate]:
    # USD per 1M tokens.
    return {
        "gpt-4o-mini": ModelRate(
            input_per_mtok=0.150,
            output_per_mtok=0.600,
            cached_input_per_mtok=0.075,
        ),
        "gpt-4o": ModelRate(
            input_per_mtok=2.500,
            output_per_mtok=10.000,
            cached_input_per_mtok=1.250,
        ),
        "gpt-5-mini": ModelRate(
            input_per_mtok=0.250,
            output_per_mtok=2.000,
            cached_input_per_mtok=0.025,
        ),
    }


def _load_pricebook() -> Dict[str, ModelRate]:
    pricebook = _build_default_pricebook()
    override_raw = get_settings().LLM_PRICEBOOK_JSON
    if not override_raw:
        return pricebook

    try:
        override = json.loads(override_raw)
    except json.JSONDecodeError:
        return pricebook

    if not isinstance(override, dict):
        return pricebook

    for key, value in override.items():
        if not isinstance(value, dict):
            continue
        try:
            pricebook[key.strip().lower()] = ModelRate(
                input_per_mtok=float(value["input_per_mtok"]),
                output_per_mtok=float(value["output_per_mtok"]),
                cached_input_per_mtok=float(value["cached_input_per_mtok"])
                if value.get("cached_input_per_mtok") is not None
                else None,
            )
        except (KeyError, ValueError, TypeError):
            continue
    return pricebook


def normalize_model_name(model: str | None) -> str:
    m = (model or "").strip().lower()
    if "/" in m:
        m = m.split("/")[-1]
    if ":" in m:
        m = m.split(":")[0]
    return m


def cost_for_tokens(
    model: str | None,
    input_tokens: int,
    output_tokens: int,
    cached_input_tokens: int = 0,
) -> float:
    rate = _load_pricebook().get(normalize_model_name(model))
    if not rate:
        return 0.0

    cached_input = max(0, int(cached_input_tokens))
    paid_input = max(0, int(input_tokens) - cached_input)
    output = max(0, int(output_tokens))

    total = (paid_input / 1_000_000) * rate.input_per_mtok
    total += (output / 1_000_000) * rate.output_per_mtok
    if cached_input:
        cached_rate = rate.cached_input_per_mtok or rate.input_per_mtok
        total += (cached_input / 1_000_000) * cached_rate
    return total


@dataclass
class LLMUsageTotals:
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_tokens: int = 0
    total_reasoning_tokens: int = 0
    total_cached_input_tokens: int = 0
    total_cost_usd: float = 0.0
    call_count: int = 0
    last_call_at: Optional[datetime] = None


def _usage_value(usage: Any, *path: str) -> int:
    current = usage
    for key in path:
        if current is None:
            return 0
        current = current.get(key) if isinstance(current, dict) else getattr(current, key, None)
    try:
        return int(current or 0)
    except (TypeError, ValueError):
        return 0


class LLMUsageTracker:
    """Process-wide token accounting for every provider call."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._totals = LLMUsageTotals()

    def record(self, usage: Any, model: str | None = None) -> None:
        """
        Accumulate an OpenAI `usage` object (or equivalent dict).

        Calls without usage information are ignored.
        """
        if usage is None:
            return

        input_tokens = _usage_value(usage, "prompt_tokens")
        output_tokens = _usage_value(usage, "completion_tokens")
        reasoning_tokens = _usage_value(usage, "completion_tokens_details", "reasoning_tokens")
        cached_tokens = _usage_value(usage, "prompt_tokens_details", "cached_tokens")
        total_tokens = _usage_value(usage, "total_tokens") or input_tokens + output_tokens + reasoning_tokens
        cost = cost_for_tokens(model, input_tokens, output_tokens, cached_tokens)

        with self._lock:
            self._totals.total_input_tokens += input_tokens
            self._totals.total_output_tokens += output_tokens
            self._totals.total_tokens += total_tokens
            self._totals.total_reasoning_tokens += reasoning_tokens
            self._totals.total_cached_input_tokens += cached_tokens
            self._totals.total_cost_usd += cost
            self._totals.call_count += 1
            self._totals.last_call_at = datetime.now(timezone.utc)

    def snapshot(self) -> LLMUsageTotals:
        with self._lock:
            return LLMUsageTotals(**asdict(self._totals))

    def reset(self) -> None:
        with self._lock:
            self._totals = LLMUsageTotals()


_tracker = LLMUsageTracker()


def record_llm_usage(usage: Any, model: str | None = None) -> None:
    _tracker.record(usage, model)


def get_llm_usage_totals() -> LLMUsageTotals:
    return _tracker.snapshot()


def reset_llm_usage_totals() -> None:
    _tracker.reset()
