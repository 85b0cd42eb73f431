"""
Deterministic onboarding rules engine.

Walks DEFAULT_STEP_ORDER after the last completed step, skipping steps the
persona does not need. It has no external dependencies and is the fallback
source of truth for the plan endpoint.
"""
from __future__ import annotations

import logging
import time
from typing import Any, List, Optional, Sequence

from ..schemas.form import (
    DEFAULT_STEP_ORDER,
    STEP_LABELS,
    ButtonAction,
    FieldOption,
    FormField,
    FormStep,
    RenderStepPlan,
    ReviewPlan,
    StepperItem,
    SuccessPlan,
    SummaryRow,
)
from ..schemas.options import (
    FEATURE_OPTIONS,
    NOTIFICATION_OPTIONS,
    PROJECT_TYPE_OPTIONS,
    ROLE_OPTIONS,
    TEAM_SIZE_OPTIONS,
    THEME_OPTIONS,
    USE_CASE_OPTIONS,
    option_label,
)
from .session_store import SessionState

logger = logging.getLogger(__name__)

SLOW_PLAN_MS = 100
TEAM_USES = ("team", "client", "enterprise")

CONTINUE = ButtonAction(label="Continue", action="submit_step")
BACK = ButtonAction(label="Back", action="back")


def detect_persona(values: dict) -> str:
    """`primary_use` decides: team/client/enterprise is team, anything else explorer."""
    return "team" if values.get("primary_use") in TEAM_USES else "explorer"


def should_skip_step(step_id: str, persona: str) -> bool:
    return persona == "explorer" and step_id == "preferences"


def _str_value(values: dict, key: str) -> Optional[str]:
    value = values.get(key)
    if value is None or value == "":
        return None
    return str(value)


def _list_value(values: dict, key: str) -> List[str]:
    value = values.get(key)
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    return []


def build_stepper_items(session: SessionState) -> List[StepperItem]:
    persona = detect_persona(session.values)
    return [
        StepperItem(
            id=step_id,
            label=STEP_LABELS.get(step_id, step_id),
            active=step_id == session.current_step,
            completed=step_id in session.completed_steps,
        )
        for step_id in DEFAULT_STEP_ORDER
        if step_id != "success" and not should_skip_step(step_id, persona)
    ]


def _choice(kind: str, field_id: str, label: str, options: Sequence[FieldOption], **extra: Any) -> FormField:
    return FormField(kind=kind, id=field_id, label=label, options=list(options), **extra)


def create_basics_step(session: SessionState) -> RenderStepPlan:
    values = session.values
    fields = [
        FormField(
            kind="text",
            id="full_name",
            label="Full Name",
            required=True,
            placeholder="John Doe",
            value=_str_value(values, "full_name"),
            type="text",
        ),
        FormField(
            kind="text",
            id="email",
            label="Email",
            required=True,
            type="email",
            placeholder="john@example.com",
            value=_str_value(values, "email"),
        ),
        _choice(
            "select", "role", "Role", ROLE_OPTIONS,
            required=True, placeholder="Select your role", value=_str_value(values, "role"),
        ),
        _choice(
            "radio", "primary_use", "Primary Use Case", USE_CASE_OPTIONS,
            required=True, value=_str_value(values, "primary_use"), orientation="vertical",
        ),
    ]
    return RenderStepPlan(
        step=FormStep(
            step_id="basics",
            title="Welcome! Let's get started",
            description="Tell us a bit about yourself",
            fields=fields,
            primary_cta=CONTINUE,
        ),
        stepper=build_stepper_items(session),
    )


def create_workspace_step(session: SessionState, persona: str) -> RenderStepPlan:
    values = session.values
    fields = [
        FormField(
            kind="text",
            id="workspace_name",
            label="Workspace Name",
            required=True,
            placeholder="My Workspace",
            value=_str_value(values, "workspace_name"),
        )
    ]
    if persona == "team":
        fields += [
            FormField(
                kind="text",
                id="company",
                label="Company",
                required=False,
                placeholder="Acme Inc.",
                value=_str_value(values, "company"),
            ),
            _choice(
                "select", "team_size", "Team Size", TEAM_SIZE_OPTIONS,
                required=True, placeholder="Select team size", value=_str_value(values, "team_size"),
            ),
            _choice(
                "select", "project_type", "Project Type", PROJECT_TYPE_OPTIONS,
                required=False, placeholder="Select project type", value=_str_value(values, "project_type"),
            ),
        ]

    team = persona == "team"
    return RenderStepPlan(
        step=FormStep(
            step_id="workspace",
            title="Set up your team workspace" if team else "Name your workspace",
            description=(
                "Configure your collaborative environment" if team else "Choose a name for your personal workspace"
            ),
            fields=fields,
            primary_cta=CONTINUE,
            secondary_cta=BACK,
        ),
        stepper=build_stepper_items(session),
    )


def create_preferences_step(session: SessionState) -> RenderStepPlan:
    values = session.values
    fields = [
        _choice(
            "checkbox", "features", "Enable Features", FEATURE_OPTIONS,
            values=_list_value(values, "features"), orientation="vertical",
        ),
        _choice(
            "radio", "theme", "Interface Theme", THEME_OPTIONS,
            value=_str_value(values, "theme") or "auto", orientation="horizontal",
        ),
        _choice(
            "checkbox", "notifications", "Notification Preferences", NOTIFICATION_OPTIONS,
            values=_list_value(values, "notifications"), orientation="vertical",
        ),
    ]
    return RenderStepPlan(
        step=FormStep(
            step_id="preferences",
            title="Customize your experience",
            description="Choose your preferred settings",
            fields=fields,
            primary_cta=CONTINUE,
            secondary_cta=BACK,
        ),
        stepper=build_stepper_items(session),
    )


# (field id, summary label, option catalog for display labels)
REVIEW_ROWS = (
    ("full_name", "Name", None),
    ("email", "Email", None),
    ("role", "Role", ROLE_OPTIONS),
    ("primary_use", "Primary Use", USE_CASE_OPTIONS),
    ("workspace_name", "Workspace", None),
    ("company", "Company", None),
    ("team_size", "Team Size", TEAM_SIZE_OPTIONS),
    ("project_type", "Project Type", PROJECT_TYPE_OPTIONS),
    ("theme", "Theme", THEME_OPTIONS),
)


def create_review_step(session: SessionState) -> ReviewPlan:
    values = session.values
    summary: List[SummaryRow] = []
    for field_id, label, options in REVIEW_ROWS:
        value = _str_value(values, field_id)
        if value is None:
            continue
        display = option_label(options, value) if options else None
        summary.append(SummaryRow(label=label, value=display or value))

    features = _list_value(values, "features")
    if features:
        summary.append(
            SummaryRow(
                label="Features",
                value=", ".join(option_label(FEATURE_OPTIONS, f) or f for f in features),
            )
        )
    return ReviewPlan(summary=summary, stepper=build_stepper_items(session))


def create_success_step(session: SessionState) -> SuccessPlan:
    name = _str_value(session.values, "full_name") or "there"
    first_name = name.split(" ")[0]
    if detect_persona(session.values) == "team":
        message = f"Welcome aboard, {first_name}! Your team workspace is ready."
    else:
        message = f"You're all set, {first_name}! Start exploring your workspace."
    return SuccessPlan(message=message)


def _next_step(session: SessionState, completed: List[str]):
    if not completed:
        return create_basics_step(session)

    last_completed = completed[-1]
    if last_completed not in DEFAULT_STEP_ORDER:
        logger.debug("Unknown step: %s", last_completed, extra={"session_id": session.id})
        return None

    index = DEFAULT_STEP_ORDER.index(last_completed)
    if last_completed == "review" or index >= len(DEFAULT_STEP_ORDER) - 1:
        return create_success_step(session)

    next_step_id = DEFAULT_STEP_ORDER[index + 1]
    persona = detect_persona(session.values)
    if should_skip_step(next_step_id, persona):
        return _next_step(session, completed + [next_step_id])

    if next_step_id == "basics":
        return create_basics_step(session)
    if next_step_id == "workspace":
        return create_workspace_step(session, persona)
    if next_step_id == "preferences":
        return create_preferences_step(session)
    if next_step_id == "review":
        return create_review_step(session)
    return create_success_step(session)


def get_next_step_plan(session: SessionState):
    """Next FormPlan for the session, or None when its last completed step is unknown."""
    start = time.perf_counter()
    plan = _next_step(session, list(session.completed_steps))
    duration_ms = (time.perf_counter() - start) * 1000

    if duration_ms > SLOW_PLAN_MS:
        logger.warning("Rules engine slow response: %.2fms", duration_ms, extra={"session_id": session.id})
    logger.debug(
        "Generated rules plan in %.2fms",
        duration_ms,
        extra={"session_id": session.id, "decision_source": "rules"},
    )
    return plan
