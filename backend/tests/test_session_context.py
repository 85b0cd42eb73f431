"""
Tests for the session snapshot handed to the LLM planner.
"""
import json
from datetime import datetime, timezone

import pytest

from app.schemas.events import EventBatch
from app.services.session_context import (
    MAX_LIST_ITEMS,
    MAX_STRING_LENGTH,
    MAX_VALUES,
    build_llm_user_context,
    calculate_engagement,
    detect_behavior_signals,
    format_llm_user_context,
    sanitize_session_values,
    summarize_recent_events,
)
from app.services.session_store import SessionStore

from tests.fixtures.canvas_fixtures import blur, change, step_back, step_submit, validation_error


def _events(*raw):
    return EventBatch.model_validate({"sessionId": "s", "events": list(raw)}).events


@pytest.fixture
def session():
    return SessionStore().create_session()


class TestSanitizeValues:
    """Tests for bounding session values."""

    def test_long_strings_are_truncated(self):
        sanitized = sanitize_session_values({"comments": "x" * 500})
        assert len(sanitized["comments"]) == MAX_STRING_LENGTH
        assert sanitized["comments"].endswith("...")

    def test_value_count_and_lists_are_capped(self):
        values = {f"k{i}": i for i in range(30)}
        values["k0"] = list(range(25))
        sanitized = sanitize_session_values(values)

        assert len(sanitized) == MAX_VALUES
        assert sanitized["k0"] == list(range(MAX_LIST_ITEMS))

    def test_scalars_are_json_safe(self):
        moment = datetime(2024, 11, 1, 12, 0, tzinfo=timezone.utc)
        sanitized = sanitize_session_values(
            {"when": moment, "flag": True, "nested": {"at": moment}, "other": object(), "empty": None}
        )

        assert sanitized["when"] == "2024-11-01T12:00:00.000Z"
        assert sanitized["flag"] is True
        assert sanitized["nested"] == {"at": "2024-11-01 12:00:00+00:00"}
        assert isinstance(sanitized["other"], str)
        assert sanitized["empty"] is None
        json.dumps(sanitized)


class TestBehaviorSignals:
    """Tests for condensing events into behaviour signals."""

    def test_signals(self):
        events = _events(
            blur("email", 6000),
            blur("role", 4000),
            change("company", 3),
            change("company", 2),
            change("role", 1),
            step_back("workspace", "basics"),
            validation_error("email"),
            {"type": "step_skip", "stepId": "preferences", "timestamp": "2024-11-01T12:03:00Z"},
        )
        signals = detect_behavior_signals(events)

        assert signals.hesitant_fields == [{"fieldId": "email", "timeSpentMs": 6000}]
        assert signals.corrected_fields == [{"fieldId": "company", "changeCount": 3}]
        assert signals.back_navigation_count == 1
        assert signals.validation_error_count == 1
        assert signals.skip_count == 1


class TestEngagement:
    """Tests for the engagement score."""

    def test_neutral_session(self, session):
        summary = calculate_engagement(session, detect_behavior_signals([]))
        assert summary.score == 0.5
        assert summary.level == "medium"

    def test_progress_and_friction(self, session):
        session.completed_steps = ["basics", "workspace"]
        session.events = _events(
            step_submit("basics"),
            blur("email", 6000),
            change("company", 3),
            step_back("workspace", "basics"),
            validation_error("email"),
        )
        summary = calculate_engagement(session, detect_behavior_signals(session.events))

        assert summary.score == pytest.approx(0.58)
        assert summary.level == "medium"
        assert summary.breakdown["progress"] == pytest.approx(0.2)
        assert summary.breakdown["submissions"] == 0.1

    def test_high_engagement(self, session):
        session.completed_steps = ["basics", "workspace", "preferences", "review"]
        session.events = _events(step_submit("review"))
        assert calculate_engagement(session, detect_behavior_signals(session.events)).level == "high"

    def test_low_engagement_is_floored(self, session):
        session.events = _events(*[step_back("workspace", "basics") for _ in range(20)])
        summary = calculate_engagement(session, detect_behavior_signals(session.events))

        assert summary.score == 0.0
        assert summary.level == "low"


class TestUserContext:
    """Tests for the assembled planner context."""

    def test_recent_events_are_summarized(self):
        summaries = summarize_recent_events(_events(change("company", 2), step_back("workspace", "basics")))

        assert summaries[0] == {
            "type": "field_change",
            "timestamp": "2024-11-01T12:00:00.000Z",
            "fieldId": "company",
            "stepId": "basics",
            "changeCount": 2,
        }
        assert summaries[1]["stepId"] == "workspace"

    def test_context_shape(self, session):
        session.values = {"full_name": "Jane"}
        session.events = _events(blur("email", 1000))

        context = build_llm_user_context(session)

        assert context["session"]["persona"] == "unknown"
        assert context["session"]["values"] == {"full_name": "Jane"}
        assert context["totals"] == {"eventCount": 1, "completedStepRatio": 0.0}
        assert set(context["engagement"]) == {"score", "level", "breakdown"}
        assert json.loads(format_llm_user_context(context)) == context
