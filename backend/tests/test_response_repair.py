"""
Tests for recovering plan payloads from loosely-formatted LLM output.

Covers text extraction across provider response shapes, JS-ish JSON
normalization and schema repair of parsed plans.
"""
import json
from types import SimpleNamespace

import pytest

from app.services.plan_dsl import parse_llm_decision
from app.services.response_repair import (
    DEFAULT_INTEGRATION_OPTIONS,
    DEFAULT_PRIMARY_CTA,
    DEFAULT_REASONING,
    LLMResponseValidationError,
    extract_response_text,
    normalize_json_text,
    parse_json_payload,
    repair_plan_payload,
)
from app.services.session_store import SessionStore

from tests.fixtures.canvas_fixtures import (
    APOSTROPHE_JSON,
    INVITE_VALUE_PAYLOADS,
    MALFORMED_PLAN_TEXT,
    UNUSABLE_FIELD_PAYLOADS,
    VALID_PLAN_PAYLOAD,
    WRAPPED_PLAN_TEXT,
    plan_with_step_config,
)

PAYLOAD_TEXT = '{"metadata": {"reasoning": "ok", "confidence": 0.9}}'


# ---------------------------------------------------------------------------
# Text extraction
# ---------------------------------------------------------------------------

class TestExtractResponseText:
    """Each supported provider shape yields the same payload text."""

    @pytest.mark.parametrize(
        "response",
        [
            PAYLOAD_TEXT,
            "```json\n" + PAYLOAD_TEXT + "\n```",
            {"choices": [{"message": {"content": PAYLOAD_TEXT}}]},
            SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=PAYLOAD_TEXT))]),
            {"output_text": PAYLOAD_TEXT},
            {"choices": [{"message": {"content": None, "parsed": json.loads(PAYLOAD_TEXT)}}]},
            {"content": [{"type": "text", "text": PAYLOAD_TEXT[:20]}, {"type": "text", "text": PAYLOAD_TEXT[20:]}]},
            {"choices": [{"message": {"content": None, "tool_calls": [{"function": {"arguments": PAYLOAD_TEXT}}]}}]},
            {"output": [{"content": [{"type": "reasoning"}, {"type": "output_text", "text": PAYLOAD_TEXT}]}]},
        ],
        ids=[
            "plain_string",
            "fenced_string",
            "chat_dict",
            "chat_object",
            "output_text",
            "parsed",
            "content_segments",
            "tool_call",
            "responses_output",
        ],
    )
    def test_shapes(self, response):
        text = extract_response_text(response)
        assert json.loads(text) == json.loads(PAYLOAD_TEXT)

    @pytest.mark.parametrize(
        "response",
        [None, {}, {"choices": []}, {"choices": [{"message": {"content": "   "}}]}, "  "],
        ids=["none", "empty_dict", "no_choices", "blank_content", "blank_string"],
    )
    def test_nothing_extractable(self, response):
        assert extract_response_text(response) is None


# ---------------------------------------------------------------------------
# JSON normalization
# ---------------------------------------------------------------------------

class TestParseJsonPayload:
    """Tests for strict-then-normalized JSON parsing."""

    def test_valid_json_with_apostrophes_is_untouched(self):
        assert normalize_json_text(APOSTROPHE_JSON) == APOSTROPHE_JSON
        payload = parse_json_payload(APOSTROPHE_JSON)
        assert payload["metadata"]["reasoning"] == "The user's team isn't ready"

    def test_function_wrapper_is_stripped(self):
        payload = parse_json_payload(WRAPPED_PLAN_TEXT)
        assert payload["metadata"] == {"reasoning": "ok", "confidence": 0.9}
        assert payload["stepConfig"] == {}

    def test_js_object_literal(self):
        payload = parse_json_payload(MALFORMED_PLAN_TEXT)
        assert payload["metadata"]["persona"] == "Solo"
        assert payload["stepConfig"]["fields"][0]["options"] == ["ai_assist", "automation"]

    def test_single_quoted_strings_escape_double_quotes(self):
        payload = parse_json_payload("{label: 'Say \"hi\"', note: 'it\\'s fine'}")
        assert payload == {"label": 'Say "hi"', "note": "it's fine"}

    def test_values_that_look_like_keys_stay_literals(self):
        payload = parse_json_payload("{flag: true, missing: null, count: 3,}")
        assert payload == {"flag": True, "missing": None, "count": 3}

    @pytest.mark.parametrize(
        "text",
        ["", "   ", "not json at all {", "[1, 2, 3]", '"just a string"'],
        ids=["empty", "blank", "garbage", "array", "string"],
    )
    def test_rejected_payloads(self, text):
        with pytest.raises(LLMResponseValidationError):
            parse_json_payload(text)


# ---------------------------------------------------------------------------
# Plan repair
# ---------------------------------------------------------------------------

class TestRepairPlanPayload:
    """Tests for coercing parsed payloads into the strict plan schema."""

    def test_malformed_text_repairs_into_a_valid_decision(self):
        repaired = repair_plan_payload(parse_json_payload(MALFORMED_PLAN_TEXT))

        assert repaired["metadata"] == {"reasoning": "Keep it light", "confidence": 0.7, "persona": "explorer"}
        field = repaired["stepConfig"]["fields"][0]
        assert field["kind"] == "checkbox"
        assert field["options"] == [
            {"value": "ai_assist", "label": "ai_assist"},
            {"value": "automation", "label": "automation"},
        ]
        assert repaired["stepConfig"]["primaryCta"] == DEFAULT_PRIMARY_CTA

        parsed = parse_llm_decision(repaired, SessionStore().create_session())
        assert parsed.plan.kind == "render_step"
        assert parsed.plan.step.step_id == "preferences"
        assert parsed.metadata.persona == "explorer"

    def test_valid_payload_survives_unchanged_in_meaning(self):
        repaired = repair_plan_payload(VALID_PLAN_PAYLOAD)

        assert repaired["stepConfig"]["stepId"] == "workspace"
        assert [f["id"] for f in repaired["stepConfig"]["fields"]] == ["workspace_name", "team_size"]
        assert repaired["metadata"]["confidence"] == 0.82

    def test_input_is_not_mutated(self):
        payload = {"stepConfig": {"step_id": "basics", "fields": [{"id": "name", "kind": "input"}]}}
        snapshot = json.loads(json.dumps(payload))
        repair_plan_payload(payload)
        assert payload == snapshot

    def test_only_metadata_and_step_config_survive(self):
        repaired = repair_plan_payload({"plan": "x", "reasoning": "top level", "confidence": 2, "step": {}})

        assert set(repaired) == {"metadata", "stepConfig"}
        assert repaired["metadata"]["reasoning"] == "top level"
        assert repaired["metadata"]["confidence"] == 1.0

    def test_missing_metadata_is_backfilled(self):
        repaired = repair_plan_payload({})

        assert repaired["metadata"] == {"reasoning": DEFAULT_REASONING, "confidence": 0.5}
        assert repaired["stepConfig"]["stepId"] == "workspace"
        assert repaired["stepConfig"]["title"] == "Workspace"
        assert repaired["stepConfig"]["fields"] == []

    @pytest.mark.parametrize(
        "raw, expected_id",
        [
            ({"id": "Email Address", "kind": "email"}, "email"),
            ({"fieldId": "tools", "kind": "integrations"}, "preferred_integrations"),
            ({"id": "workspace", "type": "dropdown", "options": ["a"]}, "workspace_name"),
        ],
        ids=["email_alias", "tools_alias", "type_as_kind"],
    )
    def test_field_aliases(self, raw, expected_id):
        repaired = repair_plan_payload({"stepConfig": {"stepId": "basics", "fields": [raw]}})
        assert repaired["stepConfig"]["fields"][0]["id"] == expected_id

    def test_unknown_and_unsalvageable_fields_are_dropped(self):
        fields = [
            {"id": "favourite_colour", "kind": "text"},
            {"id": "team_size", "kind": "select"},
            {"id": "guided_checklist", "kind": "checklist", "items": []},
            {"id": "company", "kind": "text"},
        ]
        repaired = repair_plan_payload({"stepConfig": {"stepId": "basics", "fields": fields}})
        assert [f["id"] for f in repaired["stepConfig"]["fields"]] == ["company"]

    def test_fields_are_capped(self):
        ids = ["full_name", "email", "company", "role", "workspace_name", "industry", "comments", "theme"]
        fields = [{"id": i, "kind": "text"} for i in ids]
        repaired = repair_plan_payload({"stepConfig": {"stepId": "basics", "fields": fields}})
        assert len(repaired["stepConfig"]["fields"]) == 6

    def test_integration_picker_gets_default_options(self):
        repaired = repair_plan_payload(
            {"stepConfig": {"stepId": "workspace", "fields": [{"id": "preferred_integrations", "kind": "integration_picker"}]}}
        )
        options = repaired["stepConfig"]["fields"][0]["options"]
        assert [o["value"] for o in options] == list(DEFAULT_INTEGRATION_OPTIONS)

    def test_invites_keep_only_emails(self):
        field = {"id": "team_invites", "kind": "invite", "invites": [{"email": "a@example.com"}, "nope", "b@example.com"]}
        repaired = repair_plan_payload({"stepConfig": {"stepId": "workspace", "fields": [field]}})

        repaired_field = repaired["stepConfig"]["fields"][0]
        assert repaired_field["kind"] == "teammate_invite"
        assert repaired_field["values"] == ["a@example.com", "b@example.com"]

    def test_invalid_cta_falls_back_to_default(self):
        repaired = repair_plan_payload(
            {"stepConfig": {"primary_cta": {"label": "Go", "action": "launch"}, "secondaryCta": {"label": "Back", "action": "back"}}}
        )
        assert repaired["stepConfig"]["primaryCta"] == DEFAULT_PRIMARY_CTA
        assert repaired["stepConfig"]["secondaryCta"] == {"label": "Back", "action": "back"}

    @pytest.mark.parametrize(
        "step_config",
        [payload for _, payload in UNUSABLE_FIELD_PAYLOADS],
        ids=[name for name, _ in UNUSABLE_FIELD_PAYLOADS],
    )
    def test_wrong_typed_lists_leave_no_fields(self, step_config):
        repaired = repair_plan_payload(plan_with_step_config(step_config))

        assert repaired["stepConfig"]["stepId"] == "basics"
        assert repaired["stepConfig"]["fields"] == []
        with pytest.raises(LLMResponseValidationError):
            parse_llm_decision(repaired, SessionStore().create_session())

    @pytest.mark.parametrize(
        "field",
        [payload for _, payload in INVITE_VALUE_PAYLOADS],
        ids=[name for name, _ in INVITE_VALUE_PAYLOADS],
    )
    def test_wrong_typed_invites_are_dropped(self, field):
        repaired = repair_plan_payload(plan_with_step_config({"stepId": "workspace", "fields": [field]}))

        (repaired_field,) = repaired["stepConfig"]["fields"]
        assert repaired_field["kind"] == "teammate_invite"
        assert "values" not in repaired_field
        assert "invites" not in repaired_field
