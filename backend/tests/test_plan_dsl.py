"""
Tests for the strict LLM step schema and its conversion into form plans.
"""
import copy

import pytest

from app.services.plan_dsl import build_stepper, parse_llm_decision
from app.services.response_repair import LLMResponseValidationError
from app.services.session_store import SessionStore

from tests.fixtures.canvas_fixtures import VALID_PLAN_PAYLOAD


@pytest.fixture
def session():
    return SessionStore().create_session()


def _payload(**step_overrides):
    payload = copy.deepcopy(VALID_PLAN_PAYLOAD)
    payload["stepConfig"].update(step_overrides)
    return payload


class TestParseLLMDecision:
    """Tests for validating and converting LLM step payloads."""

    def test_valid_payload_renders_step(self, session):
        parsed = parse_llm_decision(VALID_PLAN_PAYLOAD, session)

        assert parsed.metadata.confidence == 0.82
        assert parsed.metadata.persona == "team"
        plan = parsed.plan
        assert plan.kind == "render_step"
        assert plan.step.step_id == "workspace"
        assert plan.step.primary_cta.action == "submit_step"

        name, size = plan.step.fields
        assert name.required is True
        assert size.value == "6-20"
        assert size.required is False

        wire = plan.to_wire()
        assert wire["step"]["stepId"] == "workspace"
        assert wire["step"]["fields"][1]["options"][0] == {"value": "6-20", "label": "6-20 people"}

    def test_team_stepper_includes_preferences(self, session):
        plan = parse_llm_decision(VALID_PLAN_PAYLOAD, session).plan
        assert [s.id for s in plan.stepper] == ["basics", "workspace", "preferences", "review"]
        assert [s.active for s in plan.stepper] == [False, True, False, False]

    def test_skip_to_review_builds_summary(self, session):
        parsed = parse_llm_decision(_payload(skipToReview=True), session)

        assert parsed.plan.kind == "review"
        assert [(r.label, r.value) for r in parsed.plan.summary] == [("Team size", "6-20")]

    @pytest.mark.parametrize(
        "mutate",
        [
            lambda p: p["stepConfig"]["fields"][0].update(id="favourite_colour"),
            lambda p: p["stepConfig"].update(stepId="checkout"),
            lambda p: p["stepConfig"].update(fields=[]),
            lambda p: p["stepConfig"].update(fields=[p["stepConfig"]["fields"][0]] * 7),
            lambda p: p["metadata"].update(confidence=1.5),
            lambda p: p["stepConfig"].update(title="x" * 61),
            lambda p: p.update(extra="nope"),
            lambda p: p["stepConfig"]["primaryCta"].update(action="launch"),
        ],
        ids=[
            "unknown_field_id",
            "unknown_step_id",
            "no_fields",
            "too_many_fields",
            "confidence_out_of_range",
            "title_too_long",
            "extra_top_level_key",
            "unknown_cta_action",
        ],
    )
    def test_invalid_payloads_raise(self, session, mutate):
        payload = copy.deepcopy(VALID_PLAN_PAYLOAD)
        mutate(payload)
        with pytest.raises(LLMResponseValidationError) as exc_info:
            parse_llm_decision(payload, session)
        assert exc_info.value.details

    def test_invite_emails_are_validated(self, session):
        invite = {"kind": "teammate_invite", "id": "team_invites", "label": "Invite", "values": ["not-an-email"]}
        with pytest.raises(LLMResponseValidationError):
            parse_llm_decision(_payload(fields=[invite]), session)

    def test_checkbox_defaults_become_values(self, session):
        checkbox = {
            "kind": "checkbox",
            "id": "features",
            "label": "Features",
            "options": [{"value": "ai_assist", "label": "AI assist"}],
            "defaultValues": ["ai_assist"],
        }
        field = parse_llm_decision(_payload(fields=[checkbox]), session).plan.step.fields[0]

        assert field.values == ["ai_assist"]
        assert field.orientation == "vertical"


class TestBuildStepper:
    """Tests for stepper construction."""

    def test_explorer_hides_preferences_until_reached(self, session):
        assert [s.id for s in build_stepper(session, "basics")] == ["basics", "workspace", "review"]
        assert "preferences" in [s.id for s in build_stepper(session, "preferences")]

    def test_completed_preferences_stay_visible(self, session):
        session.completed_steps = ["basics", "preferences"]
        stepper = build_stepper(session, "review")

        assert [s.id for s in stepper] == ["basics", "workspace", "preferences", "review"]
        assert [s.completed for s in stepper] == [True, False, True, False]
