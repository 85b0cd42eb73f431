"""
Session snapshot handed to the LLM planner.

Values are sanitized (bounded count, truncated strings, ISO datetimes) and the
event buffer is condensed into behaviour signals and an engagement score.
"""
from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List

from ..schemas.events import to_iso
from ..schemas.form import DEFAULT_STEP_ORDER
from .session_store import SessionState

MAX_VALUES = 20
MAX_LIST_ITEMS = 10
MAX_STRING_LENGTH = 180
MAX_RECENT_EVENTS = 12
HESITATION_THRESHOLD_MS = 5000
CORRECTION_THRESHOLD = 2

TRACKED_STEPS = [s for s in DEFAULT_STEP_ORDER if s != "success"]


@dataclass
class BehaviorSignals:
    hesitant_fields: List[Dict[str, Any]] = field(default_factory=list)
    corrected_fields: List[Dict[str, Any]] = field(default_factory=list)
    back_navigation_count: int = 0
    validation_error_count: int = 0
    skip_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hesitantFields": self.hesitant_fields,
            "correctedFields": self.corrected_fields,
            "backNavigationCount": self.back_navigation_count,
            "validationErrorCount": self.validation_error_count,
            "skipCount": self.skip_count,
        }


@dataclass
class EngagementSummary:
    score: float
    level: str
    breakdown: Dict[str, float]


def _truncate(value: str) -> str:
    if len(value) > MAX_STRING_LENGTH:
        return value[: MAX_STRING_LENGTH - 3] + "..."
    return value


def _sanitize_scalar(value: Any) -> Any:
    if isinstance(value, datetime):
        return to_iso(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str):
        return _truncate(value)
    if value is None or isinstance(value, (bool, int, float)):
        return value
    return str(value)


def sanitize_session_values(values: Dict[str, Any]) -> Dict[str, Any]:
    sanitized: Dict[str, Any] = {}
    for key, value in list((values or {}).items())[:MAX_VALUES]:
        if isinstance(value, (list, tuple)):
            sanitized[key] = [_sanitize_scalar(item) for item in list(value)[:MAX_LIST_ITEMS]]
        elif isinstance(value, dict):
            sanitized[key] = json.loads(json.dumps(value, default=str))
        else:
            sanitized[key] = _sanitize_scalar(value)
    return sanitized


def detect_behavior_signals(events: List[Any]) -> BehaviorSignals:
    signals = BehaviorSignals()
    corrections: Dict[str, int] = {}

    for event in events:
        if event.type == "field_blur" and event.time_spent_ms is not None:
            if event.time_spent_ms >= HESITATION_THRESHOLD_MS:
                signals.hesitant_fields.append({"fieldId": event.field_id, "timeSpentMs": event.time_spent_ms})
        elif event.type == "field_change" and event.change_count >= CORRECTION_THRESHOLD:
            corrections[event.field_id] = max(corrections.get(event.field_id, 0), event.change_count)
        elif event.type == "step_back":
            signals.back_navigation_count += 1
        elif event.type == "validation_error":
            signals.validation_error_count += 1
        elif event.type == "step_skip":
            signals.skip_count += 1

    signals.corrected_fields = [{"fieldId": f, "changeCount": c} for f, c in corrections.items()]
    return signals


def _completed_ratio(session: SessionState) -> float:
    return max(0.0, min(1.0, len(session.completed_steps) / len(TRACKED_STEPS)))


def calculate_engagement(session: SessionState, signals: BehaviorSignals) -> EngagementSummary:
    submitted = any(event.type == "step_submit" for event in session.events)
    breakdown = {
        "progress": _completed_ratio(session) * 0.4,
        "submissions": 0.1 if submitted else 0.0,
        "hesitations": len(signals.hesitant_fields) * -0.08,
        "corrections": len(signals.corrected_fields) * -0.05,
        "backNavigation": signals.back_navigation_count * -0.04,
        "skips": signals.skip_count * -0.03,
        "validation": -0.05 if signals.validation_error_count else 0.0,
    }
    score = max(0.0, min(1.0, round(0.5 + sum(breakdown.values()), 3)))
    if score < 0.33:
        level = "low"
    elif score < 0.66:
        level = "medium"
    else:
        level = "high"
    return EngagementSummary(score=score, level=level, breakdown=breakdown)


def summarize_recent_events(events: List[Any]) -> List[Dict[str, Any]]:
    summaries = []
    for event in list(events)[-MAX_RECENT_EVENTS:]:
        summary: Dict[str, Any] = {"type": event.type, "timestamp": event.timestamp}
        if isinstance(getattr(event, "field_id", None), str):
            summary["fieldId"] = event.field_id
        if isinstance(getattr(event, "step_id", None), str):
            summary["stepId"] = event.step_id
        if event.type == "field_change":
            summary["changeCount"] = event.change_count
        if event.type == "field_blur" and event.time_spent_ms is not None:
            summary["timeSpentMs"] = event.time_spent_ms
        if event.type == "step_back":
            summary["stepId"] = event.from_step_id
        summaries.append(summary)
    return summaries


def build_llm_user_context(session: SessionState) -> Dict[str, Any]:
    signals = detect_behavior_signals(session.events)
    return {
        "session": {
            "id": session.id,
            "persona": session.persona or "unknown",
            "currentStep": session.current_step,
            "completedSteps": list(session.completed_steps),
            "values": sanitize_session_values(session.values),
            "metadata": session.metadata,
        },
        "behaviorSignals": signals.to_dict(),
        "engagement": asdict(calculate_engagement(session, signals)),
        "recentEvents": summarize_recent_events(session.events),
        "totals": {
            "eventCount": len(session.events),
            "completedStepRatio": _completed_ratio(session),
        },
    }


def format_llm_user_context(context: Dict[str, Any]) -> str:
    return json.dumps(context, indent=2, default=str)
