"""
UX telemetry events recorded against an onboarding session.

Every event carries a `type` discriminator and an ISO-8601 UTC timestamp.
Clients may send timestamps as ISO strings, epoch milliseconds or datetimes;
they are normalized on the way in.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import Field, field_validator

from .form import CamelModel

EVENT_TYPES = (
    "field_focus",
    "field_blur",
    "field_change",
    "step_submit",
    "step_back",
    "step_skip",
    "validation_error",
    "flow_complete",
    "flow_abandon",
    "error",
)

MAX_EVENTS_PER_BATCH = 50
HESITATION_THRESHOLD_MS = 3000
MAX_RECENT_STEPS = 5


def utc_now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))


def to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def normalize_timestamp(value: Any) -> str:
    """Coerce a client timestamp to ISO; unparseable strings become "now"."""
    if isinstance(value, datetime):
        return to_iso(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return to_iso(datetime.fromtimestamp(value / 1000, tz=timezone.utc))
    if isinstance(value, str):
        try:
            return to_iso(datetime.fromisoformat(value.strip()))
        except ValueError:
            return utc_now_iso()
    raise ValueError("timestamp must be a string, number or datetime")


class BaseEvent(CamelModel):
    timestamp: str = Field(default_factory=utc_now_iso)
    session_id: Optional[str] = None

    @field_validator("timestamp", mode="before")
    @classmethod
    def _normalize_timestamp(cls, value: Any) -> str:
        return normalize_timestamp(value)


class FieldFocusEvent(BaseEvent):
    type: Literal["field_focus"] = "field_focus"
    field_id: str
    step_id: str


class FieldBlurEvent(BaseEvent):
    type: Literal["field_blur"] = "field_blur"
    field_id: str
    step_id: str
    had_value: bool
    time_spent_ms: Optional[float] = None


class FieldChangeEvent(BaseEvent):
    type: Literal["field_change"] = "field_change"
    field_id: str
    step_id: str
    previous_value: Any = None
    new_value: Any = None
    change_count: int = Field(ge=0)


class StepSubmitEvent(BaseEvent):
    type: Literal["step_submit"] = "step_submit"
    step_id: str
    is_valid: bool
    field_count: int = Field(ge=0)
    filled_field_count: int = Field(ge=0)
    time_spent_ms: int = Field(ge=0)


class StepBackEvent(BaseEvent):
    type: Literal["step_back"] = "step_back"
    from_step_id: str
    to_step_id: str


class StepSkipEvent(BaseEvent):
    type: Literal["step_skip"] = "step_skip"
    step_id: str
    reason: Optional[Literal["user_action", "ai_recommendation", "rule_based"]] = None


class ValidationErrorEvent(BaseEvent):
    type: Literal["validation_error"] = "validation_error"
    field_id: str
    step_id: str
    error_type: Literal["required", "format", "length", "custom"]
    error_message: str
    attempt_count: int = Field(ge=0)


class FlowCompleteEvent(BaseEvent):
    type: Literal["flow_complete"] = "flow_complete"
    total_time_ms: int = Field(ge=0)
    completed_steps: List[str]
    skipped_steps: List[str]
    decision_source: Literal["rules", "llm", "fallback"]


class FlowAbandonEvent(BaseEvent):
    type: Literal["flow_abandon"] = "flow_abandon"
    last_step_id: str
    completed_steps: List[str]
    reason: Literal["timeout", "navigation", "error", "unknown"]


class ErrorEvent(BaseEvent):
    type: Literal["error"] = "error"
    error_code: str
    error_message: str
    context: Optional[Dict[str, Any]] = None


class CanvasPlanRenderedEvent(BaseEvent):
    type: Literal["canvas_plan_rendered"] = "canvas_plan_rendered"
    recipe_id: Literal["R1", "R2", "R3", "R4"]
    persona: Literal["explorer", "team", "power"]
    component_count: int = Field(ge=0)
    decision_source: Literal["llm", "heuristics"]
    intent_tags: List[str] = Field(default_factory=list, max_length=10)
    confidence: float = Field(ge=0, le=1)


class PromptSignalsExtractedEvent(BaseEvent):
    """Server-side only; emitted by the canvas plan endpoint."""

    type: Literal["prompt_signals_extracted"] = "prompt_signals_extracted"
    signals: List[Dict[str, Any]]


ClientEvent = Annotated[
    Union[
        FieldFocusEvent,
        FieldBlurEvent,
        FieldChangeEvent,
        StepSubmitEvent,
        StepBackEvent,
        StepSkipEvent,
        ValidationErrorEvent,
        FlowCompleteEvent,
        FlowAbandonEvent,
        ErrorEvent,
        CanvasPlanRenderedEvent,
    ],
    Field(discriminator="type"),
]

UXEvent = Union[
    FieldFocusEvent,
    FieldBlurEvent,
    FieldChangeEvent,
    StepSubmitEvent,
    StepBackEvent,
    StepSkipEvent,
    ValidationErrorEvent,
    FlowCompleteEvent,
    FlowAbandonEvent,
    ErrorEvent,
    CanvasPlanRenderedEvent,
    PromptSignalsExtractedEvent,
]


class EventBatch(CamelModel):
    session_id: Annotated[str, Field(min_length=1)]
    events: List[ClientEvent] = Field(min_length=1)

    @field_validator("session_id", mode="before")
    @classmethod
    def _strip_session_id(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value


class StepActivity(CamelModel):
    step_id: str
    last_event: str
    timestamp: str


class EventInsights(CamelModel):
    total_events: int
    type_counts: Dict[str, int]
    fields_with_hesitation: List[str]
    validation_error_count: int
    recent_step_activity: List[StepActivity]


def _touched_steps(event: Any) -> List[str]:
    if isinstance(event, StepBackEvent):
        return [event.from_step_id, event.to_step_id]
    if isinstance(event, FlowCompleteEvent):
        return list(event.completed_steps)
    if isinstance(event, FlowAbandonEvent):
        return [event.last_step_id]
    step_id = getattr(event, "step_id", None)
    return [step_id] if isinstance(step_id, str) else []


def analyze_events(events: List[Any]) -> EventInsights:
    """Summarize a session's event buffer for the events endpoint."""
    type_counts = {event_type: 0 for event_type in EVENT_TYPES}
    hesitation: Dict[str, None] = {}
    recent: Dict[str, StepActivity] = {}

    for event in events:
        if event.type in type_counts:
            type_counts[event.type] += 1

        if isinstance(event, FieldBlurEvent):
            if event.time_spent_ms is not None and event.time_spent_ms >= HESITATION_THRESHOLD_MS:
                hesitation[event.field_id] = None

        for step_id in _touched_steps(event):
            recent[step_id] = StepActivity(step_id=step_id, last_event=event.type, timestamp=event.timestamp)

    activity = sorted(recent.values(), key=lambda item: item.timestamp, reverse=True)
    return EventInsights(
        total_events=len(events),
        type_counts=type_counts,
        fields_with_hesitation=list(hesitation),
        validation_error_count=type_counts["validation_error"],
        recent_step_activity=activity[:MAX_RECENT_STEPS],
    )
