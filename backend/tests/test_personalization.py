"""
Tests for recipe knob scoring.

Covers the per-knob cascades, the conflict and aggregate-confidence
guardrails, threshold variation and number knob clamping.
"""
import pytest

from app.services.personalization import (
    CONFLICT_GOVERNANCE_VS_FAST,
    CONFLICT_SOLO_VS_TEAM,
    INSUFFICIENT_CONFIDENCE,
    ScoringThresholds,
    compliance_evidence,
    personalization_disabled_result,
    score_recipe_knobs,
    should_use,
)
from app.services.recipes import RECIPE_IDS, clamp_number_knob, get_recipe
from app.services.signals import extract_signals_from_keywords, merge_signals

from tests.fixtures.canvas_fixtures import FLEXIBLE, RUSH, make_signals, primary_makers, sig


def _signals_for(prompt: str):
    return merge_signals(extract_signals_from_keywords(prompt), {})


def _values(result):
    return {knob_id: o.value for knob_id, o in result.overrides.items()}


# ---------------------------------------------------------------------------
# Shape guarantees
# ---------------------------------------------------------------------------

class TestOverrideShape:
    """Every scoring result covers every knob with an in-domain value."""

    @pytest.mark.parametrize("recipe_id", RECIPE_IDS, ids=list(RECIPE_IDS))
    @pytest.mark.parametrize(
        "prompt",
        [
            "",
            "Plan a workspace for my team of 10 with Slack + Jira.",
            "HIPAA workspace for 40 people",
            "Just me, keep it quick and punchy",
        ],
        ids=["blank", "team_tools", "compliance", "solo_fast"],
    )
    def test_one_override_per_knob_within_domain(self, recipe_id, prompt):
        recipe = get_recipe(recipe_id)
        result = score_recipe_knobs(recipe_id, _signals_for(prompt))

        assert set(result.overrides) == set(recipe.knobs)
        for knob_id, override in result.overrides.items():
            knob = recipe.knob(knob_id)
            if knob.type == "enum":
                assert knob.allows(override.value)
            else:
                assert knob.min <= override.value <= knob.max
            assert override.changed_from_default == (override.value != knob.default_value)
            assert override.rationale

    def test_wire_shape(self):
        result = score_recipe_knobs("R1", make_signals())
        wire = result.to_dict()

        assert set(wire) == {"overrides", "fallback"}
        assert set(wire["overrides"]["copyTone"]) == {"value", "rationale", "changedFromDefault"}
        assert wire["fallback"] == {
            "applied": False,
            "reasons": [],
            "details": [],
            "aggregateConfidence": 0.0,
        }


# ---------------------------------------------------------------------------
# Cascades
# ---------------------------------------------------------------------------

class TestCascades:
    """Tests for the individual knob rule cascades."""

    def test_team_of_ten_with_slack_and_jira_on_team_recipe(self):
        """Strong team evidence confirms the R2 defaults and registers confidence."""
        result = score_recipe_knobs("R2", _signals_for("Plan a workspace for my team of 10 with Slack + Jira."))

        assert _values(result) == {
            "approvalChainLength": 1,
            "integrationMode": "multi_tool",
            "copyTone": "collaborative",
            "inviteStrategy": "immediate",
            "notificationCadence": "daily",
        }
        assert not any(o.changed_from_default for o in result.overrides.values())
        assert "Slack and Jira" in result.overrides["integrationMode"].rationale
        assert result.fallback.applied is False
        assert result.fallback.aggregate_confidence == 1.0

    def test_compliance_tags_drive_governed_defaults(self):
        signals = make_signals(compliance_tags=sig(("HIPAA",), 0.9))
        result = score_recipe_knobs("R1", signals)

        assert _values(result) == {
            "approvalChainLength": 2,
            "integrationMode": "governed",
            "copyTone": "compliance",
            "inviteStrategy": "staged",
            "notificationCadence": "real_time",
        }
        assert all(o.changed_from_default for o in result.overrides.values())
        assert result.fallback.aggregate_confidence == pytest.approx(0.9)

    def test_compliance_keeps_higher_approval_depth(self):
        signals = make_signals(
            compliance_tags=sig(("SOC2",), 0.9),
            approval_chain_depth=sig("multi", 0.9),
        )
        result = score_recipe_knobs("R4", signals)
        assert result.overrides["approvalChainLength"].value == 2

    def test_decision_makers_ensure_one_approver(self):
        signals = make_signals(decision_makers=sig(primary_makers(2), 0.7))
        result = score_recipe_knobs("R1", signals)

        assert result.overrides["approvalChainLength"].value == 1
        assert result.overrides["inviteStrategy"].value == "staged"

    @pytest.mark.parametrize(
        "tone, recipe_id, expected",
        [
            ("fast-paced", "R2", "friendly"),
            ("meticulous", "R1", "compliance"),
            ("trusted-advisor", "R2", "client_ready"),
        ],
        ids=["fast", "meticulous", "advisor"],
    )
    def test_tone_mapping(self, tone, recipe_id, expected):
        result = score_recipe_knobs(recipe_id, make_signals(copy_tone=sig(tone, 0.8)))
        override = result.overrides["copyTone"]
        assert override.value == expected
        assert override.changed_from_default is True

    def test_low_confidence_tone_keeps_default(self):
        result = score_recipe_knobs("R2", make_signals(copy_tone=sig("meticulous", 0.3)))
        override = result.overrides["copyTone"]

        assert override.value == "collaborative"
        assert "Kept default" in override.rationale
        assert result.fallback.applied is False

    def test_client_recipe_prefers_portal_and_stakeholders(self):
        result = score_recipe_knobs("R3", make_signals(team_size_bracket=sig("10-24", 0.9)))

        assert result.overrides["integrationMode"].value == "client_portal"
        # team size fires first and locks the invite knob
        assert result.overrides["inviteStrategy"].value == "immediate"
        assert result.overrides["notificationCadence"].value == "daily"

    @pytest.mark.parametrize(
        "constraint, expected",
        [(RUSH, "real_time"), (FLEXIBLE, "weekly")],
        ids=["rush", "flexible"],
    )
    def test_timeline_sets_cadence(self, constraint, expected):
        result = score_recipe_knobs("R2", make_signals(constraints=sig(constraint, 0.8)))
        assert result.overrides["notificationCadence"].value == expected

    @pytest.mark.parametrize(
        "bracket, expected",
        [("solo", "none"), ("1-9", "weekly"), ("10-24", "daily"), ("25+", "real_time")],
        ids=["solo", "small", "mid", "large"],
    )
    def test_team_size_cadence_tiers(self, bracket, expected):
        result = score_recipe_knobs("R3", make_signals(team_size_bracket=sig(bracket, 0.9)))
        assert result.overrides["notificationCadence"].value == expected


# ---------------------------------------------------------------------------
# Guardrails
# ---------------------------------------------------------------------------

class TestFallbackGuardrails:
    """Tests for conflict detection and the aggregate-confidence check."""

    def test_governance_vs_fast_tone_conflict(self):
        """HIPAA with a punchy tone request keeps every default."""
        result = score_recipe_knobs("R4", _signals_for("We need HIPAA coverage and a fast, punchy rollout"))
        recipe = get_recipe("R4")

        assert result.fallback.applied is True
        assert result.fallback.reasons == (CONFLICT_GOVERNANCE_VS_FAST,)
        assert result.fallback.aggregate_confidence == 1.0
        for knob_id, override in result.overrides.items():
            assert override.value == recipe.knob(knob_id).default_value
            assert override.changed_from_default is False
            assert override.rationale.startswith("Fallback guardrail")

    def test_solo_vs_multiple_deciders_conflict(self):
        signals = make_signals(
            team_size_bracket=sig("solo", 0.9),
            decision_makers=sig(primary_makers(2), 0.7),
        )
        result = score_recipe_knobs("R1", signals)

        assert result.fallback.applied is True
        assert result.fallback.reasons == (CONFLICT_SOLO_VS_TEAM,)
        assert result.fallback.aggregate_confidence == pytest.approx(0.8)

    def test_weak_conflict_is_ignored(self):
        signals = make_signals(
            compliance_tags=sig(("GDPR",), 0.9),
            copy_tone=sig("fast-paced", 0.3),
        )
        result = score_recipe_knobs("R1", signals)
        assert CONFLICT_GOVERNANCE_VS_FAST not in result.fallback.reasons

    def test_insufficient_aggregate_confidence(self):
        result = score_recipe_knobs("R2", make_signals(copy_tone=sig("fast-paced", 0.45)))

        assert result.fallback.applied is True
        assert result.fallback.reasons == (INSUFFICIENT_CONFIDENCE,)
        assert result.fallback.aggregate_confidence == pytest.approx(0.45)
        assert result.overrides["copyTone"].value == "collaborative"

    def test_no_registered_confidence_is_not_a_fallback(self):
        result = score_recipe_knobs("R2", make_signals())
        assert result.fallback.applied is False
        assert result.fallback.aggregate_confidence == 0.0

    def test_disabled_result_keeps_defaults(self):
        result = personalization_disabled_result("R3")

        assert result.fallback.applied is False
        assert result.fallback.details == ("Personalization disabled",)
        assert all(not o.changed_from_default for o in result.overrides.values())


class TestThresholds:
    """Tests for threshold configuration."""

    @pytest.mark.parametrize(
        "confidence, supported, expected",
        [(0.4, False, True), (0.3, True, True), (0.3, False, False), (0.2, True, False)],
        ids=["high", "supported", "unsupported", "below_supporting"],
    )
    def test_should_use(self, confidence, supported, expected):
        assert should_use(confidence, supported) is expected

    def test_default_thresholds_ignore_weak_team_size(self):
        result = score_recipe_knobs("R1", make_signals(team_size_bracket=sig("10-24", 0.3)))

        assert result.overrides["inviteStrategy"].value == "self_serve"
        assert result.overrides["notificationCadence"].value == "none"
        assert result.fallback.applied is False

    def test_lowered_thresholds_accept_weak_team_size(self):
        thresholds = ScoringThresholds(high=0.3, supporting=0.2, fallback=0.2)
        result = score_recipe_knobs("R1", make_signals(team_size_bracket=sig("10-24", 0.3)), thresholds)

        assert result.overrides["inviteStrategy"].value == "immediate"
        assert result.overrides["notificationCadence"].value == "daily"
        assert result.fallback.applied is False

    def test_lowered_high_threshold_still_checks_aggregate(self):
        thresholds = ScoringThresholds(high=0.3)
        result = score_recipe_knobs("R1", make_signals(team_size_bracket=sig("10-24", 0.3)), thresholds)

        assert result.fallback.applied is True
        assert result.fallback.reasons == (INSUFFICIENT_CONFIDENCE,)

    def test_compliance_confidence_is_strongest_contributor(self):
        signals = make_signals(
            compliance_tags=sig(("HIPAA",), 0.5),
            primary_objective=sig("compliance", 0.9),
        )
        assert compliance_evidence(signals) == (True, 0.9)

    def test_objective_without_tags_needs_high_confidence(self):
        signals = make_signals(primary_objective=sig("compliance", 0.3))
        assert compliance_evidence(signals) == (False, 0.0)


class TestClampNumberKnob:
    """Tests for number knob clamping."""

    @pytest.mark.parametrize(
        "value, expected",
        [(-3, 0), (2.4, 2), (2.6, 3), (9, 5), (4, 4)],
        ids=["below_min", "round_down", "round_up", "above_max", "in_range"],
    )
    def test_clamp(self, value, expected):
        knob = get_recipe("R4").knob("approvalChainLength")
        assert clamp_number_knob(knob, value) == expected

    @pytest.mark.parametrize("value", [-1, 0.49, 1.5, 7, 3], ids=["neg", "frac", "half", "high", "exact"])
    def test_clamp_is_idempotent(self, value):
        knob = get_recipe("R2").knob("approvalChainLength")
        once = clamp_number_knob(knob, value)
        assert clamp_number_knob(knob, once) == once
