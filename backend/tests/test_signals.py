"""
Tests for prompt signal extraction and merging.

Covers keyword extraction, LLM payload parsing, the keyword/LLM merge policy
and the async build_prompt_signals entry point.
"""
import asyncio
from unittest.mock import patch

import pytest

from app.services.signals import (
    ConstraintSignal,
    build_prompt_signals,
    create_default_signals,
    extract_signals_from_keywords,
    format_signal_value,
    merge_signals,
    normalize_tool_name,
    parse_signal_payload,
    summarize_prompt_signals,
    values_equal,
)
from app.services.signals.keywords import bracket_for_headcount

from tests.fixtures.canvas_fixtures import KEYWORD_CASES, KeywordCase, primary_makers, sig


# ---------------------------------------------------------------------------
# Keyword extraction
# ---------------------------------------------------------------------------

class TestKeywordExtraction:
    """Tests for the deterministic keyword path."""

    @pytest.mark.parametrize("case", KEYWORD_CASES, ids=[c.id for c in KEYWORD_CASES])
    def test_keyword_cases(self, case: KeywordCase):
        """Each prompt yields exactly the expected keyword signals."""
        partial = extract_signals_from_keywords(case.prompt)

        if case.team_size is None:
            assert "team_size_bracket" not in partial
        else:
            assert partial["team_size_bracket"].value == case.team_size
        assert (partial["tools"].value if "tools" in partial else None) == case.tools
        assert (partial["compliance_tags"].value if "compliance_tags" in partial else None) == case.compliance
        assert (partial["copy_tone"].value if "copy_tone" in partial else None) == case.tone

    def test_keyword_signals_are_fully_trusted(self):
        """Keyword matches carry confidence 1.0, source keyword and notes."""
        partial = extract_signals_from_keywords("Plan a workspace for my team of 10 with Slack + Jira.")
        for signal in partial.values():
            assert signal.confidence == 1.0
            assert signal.source == "keyword"
            assert signal.metadata.notes

    @pytest.mark.parametrize("prompt", ["", "   ", "\n"], ids=["empty", "spaces", "newline"])
    def test_blank_prompt_yields_nothing(self, prompt):
        assert extract_signals_from_keywords(prompt) == {}

    @pytest.mark.parametrize(
        "value, expected",
        [(0, None), (1, "solo"), (9, "1-9"), (10, "10-24"), (24, "10-24"), (25, "25+")],
        ids=["zero", "one", "nine", "ten", "twenty_four", "twenty_five"],
    )
    def test_headcount_brackets(self, value, expected):
        assert bracket_for_headcount(value) == expected

    @pytest.mark.parametrize(
        "name, expected",
        [("slack", "Slack"), ("  G Drive ", "Google Drive"), ("ms teams", "Microsoft Teams"), ("Whatever", "Other")],
        ids=["exact", "alias_spacing", "alias", "unknown"],
    )
    def test_tool_normalization(self, name, expected):
        assert normalize_tool_name(name) == expected


# ---------------------------------------------------------------------------
# LLM payload parsing
# ---------------------------------------------------------------------------

class TestSignalPayloadParsing:
    """Tests for validating decoded LLM signal payloads."""

    def test_known_keys_are_parsed(self):
        partial = parse_signal_payload(
            {
                "teamSizeBracket": {"value": "10-24", "confidence": 0.9},
                "tools": {"value": ["slack", "Jira", "slack"], "confidence": 0.8},
                "unknownKey": {"value": "x"},
            }
        )
        assert partial["team_size_bracket"].value == "10-24"
        assert partial["team_size_bracket"].source == "llm"
        assert partial["tools"].value == ("Slack", "Jira")
        assert "unknownKey" not in partial

    def test_non_object_payload_raises(self):
        with pytest.raises(ValueError):
            parse_signal_payload(["not", "an", "object"])


# ---------------------------------------------------------------------------
# Merge policy
# ---------------------------------------------------------------------------

class TestMergeSignals:
    """Tests for the keyword/LLM merge policy."""

    def test_no_inputs_returns_defaults(self):
        merged = merge_signals({}, {})
        assert merged == create_default_signals()

    def test_agreement_becomes_merge_with_max_confidence(self):
        merged = merge_signals(
            {"team_size_bracket": sig("10-24", 1.0)},
            {"team_size_bracket": sig("10-24", 0.6, source="llm")},
        )
        assert merged.team_size_bracket.source == "merge"
        assert merged.team_size_bracket.confidence == 1.0
        assert "agreement" in merged.team_size_bracket.metadata.notes

    def test_confident_llm_overrides_keyword(self):
        merged = merge_signals(
            {"copy_tone": sig("fast-paced", 1.0)},
            {"copy_tone": sig("meticulous", 0.8, source="llm")},
        )
        assert merged.copy_tone.value == "meticulous"
        assert merged.copy_tone.source == "llm"

    def test_weak_llm_keeps_keyword(self):
        merged = merge_signals(
            {"copy_tone": sig("fast-paced", 1.0)},
            {"copy_tone": sig("meticulous", 0.5, source="llm")},
        )
        assert merged.copy_tone.value == "fast-paced"
        assert merged.copy_tone.source == "keyword"

    @pytest.mark.parametrize(
        "threshold, expected",
        [(0.9, "fast-paced"), (0.7, "meticulous")],
        ids=["raised_threshold_keeps_keyword", "lowered_threshold_lets_llm_win"],
    )
    def test_threshold_override(self, threshold, expected):
        merged = merge_signals(
            {"copy_tone": sig("fast-paced", 1.0)},
            {"copy_tone": sig("meticulous", 0.8, source="llm")},
            threshold=threshold,
        )
        assert merged.copy_tone.value == expected

    def test_keyword_only_signal_is_labelled_keyword(self):
        merged = merge_signals({"industry": sig("fintech", 0.9, source="merge", notes="kw")}, {})
        assert merged.industry.value == "fintech"
        assert merged.industry.source == "keyword"
        assert merged.industry.confidence == 0.9
        assert merged.industry.metadata.notes == "kw"

    def test_llm_only_signal_is_adopted(self):
        merged = merge_signals({}, {"industry": sig("fintech", 0.3, source="llm")})
        assert merged.industry.value == "fintech"
        assert merged.industry.source == "llm"

    def test_values_equal_is_structural(self):
        assert values_equal(("Slack", "Jira"), ["Slack", "Jira"])
        assert values_equal(float("nan"), float("nan"))
        assert not values_equal(("Slack",), ("Jira",))

    def test_summary_lists_every_category(self):
        rows = summarize_prompt_signals(create_default_signals())
        assert len(rows) == 11
        assert rows[0]["key"] == "teamSizeBracket"
        assert rows[0]["display"] == "unknown"

    @pytest.mark.parametrize(
        "value, expected",
        [
            ((), "Not set"),
            (("Slack", "Jira"), "Slack, Jira"),
            (primary_makers(2), "2 entries"),
            (ConstraintSignal(timeline="rush", notes="Board demo"), "rush • Board demo"),
            (ConstraintSignal(), "No constraints"),
            ("", "Not set"),
            ("10-24", "10-24"),
        ],
        ids=["empty_list", "tools", "decision_makers", "constraints", "no_constraints", "blank", "scalar"],
    )
    def test_format_signal_value(self, value, expected):
        assert format_signal_value(sig(value)) == expected


class TestBuildPromptSignals:
    """Tests for the concurrent keyword + LLM extraction entry point."""

    def test_keyword_only_when_llm_returns_nothing(self):
        with patch("app.services.signals.merge.fetch_signals_from_llm", return_value={}):
            merged = asyncio.run(build_prompt_signals("Plan a workspace for my team of 10 with Slack + Jira."))

        assert merged.team_size_bracket.value == "10-24"
        assert merged.tools.value == ("Slack", "Jira")
        assert merged.copy_tone.value == "neutral"

    def test_llm_exception_degrades_to_keywords(self):
        with patch("app.services.signals.merge.fetch_signals_from_llm", side_effect=RuntimeError("boom")):
            merged = asyncio.run(build_prompt_signals("HIPAA workspace"))

        assert merged.compliance_tags.value == ("HIPAA",)

    def test_blank_prompt_returns_defaults(self):
        assert asyncio.run(build_prompt_signals("   ")) == create_default_signals()
