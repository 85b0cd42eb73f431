"""
Tests for process-wide LLM token accounting and pricing.
"""
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from app.services.llm_usage import (
    LLMUsageTracker,
    cost_for_tokens,
    get_llm_usage_totals,
    normalize_model_name,
    record_llm_usage,
    reset_llm_usage_totals,
)


def _settings(pricebook=None):
    return SimpleNamespace(LLM_PRICEBOOK_JSON=pricebook)


class TestPricing:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("openai/gpt-4o-mini", "gpt-4o-mini"),
            ("GPT-4o:free", "gpt-4o"),
            (None, ""),
        ],
        ids=["provider_prefix", "variant_suffix", "missing"],
    )
    def test_normalize_model_name(self, raw, expected):
        assert normalize_model_name(raw) == expected

    def test_cached_tokens_use_cached_rate(self):
        with patch("app.services.llm_usage.get_settings", return_value=_settings()):
            cost = cost_for_tokens("gpt-4o-mini", 1_000_000, 1_000_000, cached_input_tokens=500_000)
        assert cost == pytest.approx(0.5 * 0.150 + 0.600 + 0.5 * 0.075)

    def test_unknown_model_is_free(self):
        with patch("app.services.llm_usage.get_settings", return_value=_settings()):
            assert cost_for_tokens("mystery-model", 1000, 1000) == 0.0

    def test_pricebook_override(self):
        override = '{"house-model": {"input_per_mtok": 1, "output_per_mtok": 2}, "broken": {"input_per_mtok": 1}}'
        with patch("app.services.llm_usage.get_settings", return_value=_settings(override)):
            assert cost_for_tokens("house-model", 1_000_000, 1_000_000) == pytest.approx(3.0)
            assert cost_for_tokens("broken", 1_000_000, 0) == 0.0

    def test_invalid_override_keeps_defaults(self):
        with patch("app.services.llm_usage.get_settings", return_value=_settings("not json")):
            assert cost_for_tokens("gpt-4o", 1_000_000, 0) == pytest.approx(2.5)


class TestUsageTracker:
    """Tests for token accumulation."""

    def test_record_accumulates_object_and_dict_usage(self):
        tracker = LLMUsageTracker()
        usage = SimpleNamespace(
            prompt_tokens=100,
            completion_tokens=20,
            total_tokens=120,
            completion_tokens_details=SimpleNamespace(reasoning_tokens=5),
            prompt_tokens_details=SimpleNamespace(cached_tokens=40),
        )

        with patch("app.services.llm_usage.get_settings", return_value=_settings()):
            tracker.record(usage, "unpriced")
            tracker.record({"prompt_tokens": 10, "completion_tokens": 2}, "unpriced")

        totals = tracker.snapshot()
        assert totals.call_count == 2
        assert totals.total_input_tokens == 110
        assert totals.total_output_tokens == 22
        assert totals.total_tokens == 132
        assert totals.total_reasoning_tokens == 5
        assert totals.total_cached_input_tokens == 40
        assert totals.last_call_at is not None

    def test_missing_usage_is_ignored(self):
        tracker = LLMUsageTracker()
        tracker.record(None)
        assert tracker.snapshot().call_count == 0

    def test_module_helpers(self):
        reset_llm_usage_totals()
        with patch("app.services.llm_usage.get_settings", return_value=_settings()):
            record_llm_usage({"prompt_tokens": 3, "completion_tokens": 4})

        assert get_llm_usage_totals().total_tokens == 7
        reset_llm_usage_totals()
        assert get_llm_usage_totals().call_count == 0
