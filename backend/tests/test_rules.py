"""
Tests for the deterministic onboarding rules engine.
"""
from datetime import datetime, timezone

import pytest

from app.services.rules import detect_persona, get_next_step_plan, should_skip_step
from app.services.session_store import SessionState

NOW = datetime(2024, 11, 1, 12, 0, tzinfo=timezone.utc)

TEAM_VALUES = {
    "full_name": "Jane Doe",
    "email": "jane@example.com",
    "role": "eng",
    "primary_use": "team",
    "workspace_name": "Acme HQ",
    "team_size": "6-20",
    "features": ["ai_assist", "custom"],
}


def _session(completed=(), values=None, current_step="basics"):
    return SessionState(
        id="s-1",
        created_at=NOW,
        last_activity_at=NOW,
        current_step=current_step,
        completed_steps=list(completed),
        values=dict(values or {}),
    )


class TestPersona:
    @pytest.mark.parametrize(
        "primary_use, expected",
        [("team", "team"), ("client", "team"), ("enterprise", "team"), ("personal", "explorer"), (None, "explorer")],
        ids=["team", "client", "enterprise", "personal", "missing"],
    )
    def test_detect_persona(self, primary_use, expected):
        assert detect_persona({"primary_use": primary_use}) == expected

    def test_only_explorers_skip_preferences(self):
        assert should_skip_step("preferences", "explorer")
        assert not should_skip_step("preferences", "team")
        assert not should_skip_step("workspace", "explorer")


class TestNextStep:
    """Tests for walking the step order."""

    def test_new_session_starts_with_basics(self):
        plan = get_next_step_plan(_session())

        assert plan.kind == "render_step"
        assert plan.step.step_id == "basics"
        assert [f.id for f in plan.step.fields] == ["full_name", "email", "role", "primary_use"]
        assert plan.stepper[0].active is True

    def test_basics_prefills_values(self):
        plan = get_next_step_plan(_session(values={"full_name": "Jane Doe", "role": ""}))
        fields = {f.id: f for f in plan.step.fields}

        assert fields["full_name"].value == "Jane Doe"
        assert fields["role"].value is None

    def test_team_workspace(self):
        plan = get_next_step_plan(_session(["basics"], {"primary_use": "team"}))

        assert plan.step.step_id == "workspace"
        assert plan.step.title == "Set up your team workspace"
        assert [f.id for f in plan.step.fields] == ["workspace_name", "company", "team_size", "project_type"]
        assert plan.step.secondary_cta.action == "back"

    def test_explorer_workspace(self):
        plan = get_next_step_plan(_session(["basics"], {"primary_use": "personal"}))

        assert plan.step.title == "Name your workspace"
        assert [f.id for f in plan.step.fields] == ["workspace_name"]

    def test_team_gets_preferences(self):
        plan = get_next_step_plan(_session(["basics", "workspace"], {"primary_use": "team"}))

        assert plan.step.step_id == "preferences"
        theme = next(f for f in plan.step.fields if f.id == "theme")
        assert theme.value == "auto"

    def test_explorer_skips_to_review(self):
        plan = get_next_step_plan(_session(["basics", "workspace"], {"primary_use": "personal"}))

        assert plan.kind == "review"
        assert "preferences" not in [s.id for s in plan.stepper]

    def test_review_summary_uses_option_labels(self):
        plan = get_next_step_plan(_session(["basics", "workspace", "preferences"], TEAM_VALUES))
        summary = [(row.label, row.value) for row in plan.summary]

        assert ("Role", "Engineer") in summary
        assert ("Primary Use", "Team Collaboration") in summary
        assert ("Team Size", "6-20 people") in summary
        assert summary[-1] == ("Features", "AI Assistant, custom")

    @pytest.mark.parametrize(
        "values, expected",
        [
            ({"full_name": "Jane Doe", "primary_use": "team"}, "Welcome aboard, Jane! Your team workspace is ready."),
            ({"full_name": "Jane Doe"}, "You're all set, Jane! Start exploring your workspace."),
            ({}, "You're all set, there! Start exploring your workspace."),
        ],
        ids=["team", "explorer", "anonymous"],
    )
    def test_success_after_review(self, values, expected):
        plan = get_next_step_plan(_session(["basics", "workspace", "review"], values))

        assert plan.kind == "success"
        assert plan.message == expected

    def test_unknown_step_yields_no_plan(self):
        assert get_next_step_plan(_session(["checkout"])) is None

    def test_stepper_tracks_current_step(self):
        plan = get_next_step_plan(_session(["basics"], {"primary_use": "team"}, current_step="workspace"))

        assert [(s.id, s.active, s.completed) for s in plan.stepper] == [
            ("basics", False, True),
            ("workspace", True, False),
            ("preferences", False, False),
            ("review", False, False),
        ]
