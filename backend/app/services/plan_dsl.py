"""
Strict schema for LLM-proposed onboarding steps.

The LLM answers with `{metadata, stepConfig}`. This module validates that
payload against bounded pydantic models (whitelisted ids, length caps, list
bounds) and converts it into a renderable FormPlan for the session.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, StringConstraints, ValidationError
from pydantic.alias_generators import to_camel

from ..schemas.form import (
    FIELD_ID_SET,
    STEP_IDS,
    STEP_LABELS,
    ButtonAction,
    FormField,
    FormStep,
    RenderStepPlan,
    ReviewPlan,
    StepperItem,
    SummaryRow,
)
from .response_repair import LLMResponseValidationError
from .session_store import SessionState

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


def _known_field_id(value: str) -> str:
    if value not in FIELD_ID_SET:
        raise ValueError("Invalid field ID")
    return value


def _known_step_id(value: str) -> str:
    if value not in STEP_IDS:
        raise ValueError("Invalid step ID")
    return value


Text40 = Annotated[str, StringConstraints(min_length=1, max_length=40)]
Text60 = Annotated[str, StringConstraints(min_length=1, max_length=60)]
Text80 = Annotated[str, StringConstraints(min_length=1, max_length=80)]
Text100 = Annotated[str, StringConstraints(min_length=1, max_length=100)]
Text120 = Annotated[str, StringConstraints(min_length=1, max_length=120)]
Text160 = Annotated[str, StringConstraints(min_length=1, max_length=160)]
Text200 = Annotated[str, StringConstraints(min_length=1, max_length=200)]
Text280 = Annotated[str, StringConstraints(min_length=1, max_length=280)]
Short80 = Annotated[str, StringConstraints(max_length=80)]
Value200 = Annotated[str, StringConstraints(max_length=200)]

FieldId = Annotated[str, AfterValidator(_known_field_id)]
StepId = Annotated[str, AfterValidator(_known_step_id)]
Email = Annotated[str, StringConstraints(pattern=EMAIL_PATTERN)]
Orientation = Literal["horizontal", "vertical"]


class _Dsl(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DslOption(_Dsl):
    value: Text100
    label: Text100
    helper_text: Optional[Text160] = None
    disabled: Optional[bool] = None
    icon: Optional[Text40] = None


class _DslField(_Dsl):
    id: FieldId
    label: Text60
    helper_text: Optional[Text160] = None
    required: Optional[bool] = None
    disabled: Optional[bool] = None
    placeholder: Optional[Text80] = None


class DslTextField(_DslField):
    kind: Literal["text"]
    default_value: Optional[Value200] = None
    pattern: Optional[Value200] = None
    min_length: Optional[Annotated[int, Field(ge=0, le=500)]] = None
    max_length: Optional[Annotated[int, Field(ge=1, le=500)]] = None
    autocomplete: Optional[Short80] = None
    type: Optional[Literal["text", "email", "password", "tel", "url"]] = None


class DslSelectField(_DslField):
    kind: Literal["select"]
    options: List[DslOption] = Field(min_length=1, max_length=20)
    default_value: Optional[Value200] = None
    multiple: Optional[bool] = None


class DslRadioField(_DslField):
    kind: Literal["radio"]
    options: List[DslOption] = Field(min_length=1, max_length=12)
    default_value: Optional[Value200] = None
    orientation: Optional[Orientation] = None


class DslCheckboxField(_DslField):
    kind: Literal["checkbox"]
    options: List[DslOption] = Field(min_length=1, max_length=12)
    default_values: Optional[List[Value200]] = Field(default=None, min_length=1, max_length=12)
    orientation: Optional[Orientation] = None


class DslIntegrationPickerField(_DslField):
    kind: Literal["integration_picker"]
    options: List[DslOption] = Field(min_length=1, max_length=12)
    values: Optional[List[Value200]] = Field(default=None, min_length=1, max_length=12)
    max_selections: Optional[Annotated[int, Field(ge=1, le=12)]] = None
    category_label: Optional[Text60] = None


class DslAdminToggleField(_DslField):
    kind: Literal["admin_toggle"]
    options: List[DslOption] = Field(min_length=2, max_length=5)
    default_value: Optional[Value200] = None


class DslTeammateInviteField(_DslField):
    kind: Literal["teammate_invite"]
    values: Optional[List[Email]] = Field(default=None, min_length=1, max_length=20)
    role_options: Optional[List[DslOption]] = Field(default=None, min_length=1, max_length=10)
    max_invites: Optional[Annotated[int, Field(ge=1, le=20)]] = None
    placeholder: Optional[Text120] = None


class DslCalloutCta(_Dsl):
    label: Text40
    href: Optional[Annotated[str, StringConstraints(pattern=r"^https?://\S+$")]] = None


class DslCalloutField(_DslField):
    kind: Literal["callout"]
    body: Text280
    variant: Optional[Literal["info", "success", "warning"]] = None
    icon: Optional[Text40] = None
    cta: Optional[DslCalloutCta] = None


class DslChecklistItem(_Dsl):
    id: Text60
    label: Text160
    helper_text: Optional[Text160] = None


class DslChecklistField(_DslField):
    kind: Literal["checklist"]
    items: List[DslChecklistItem] = Field(min_length=1, max_length=6)


class DslInfoBadgeField(_DslField):
    kind: Literal["info_badge"]
    variant: Optional[Literal["info", "success", "warning", "danger"]] = None
    icon: Optional[Text40] = None


class DslAIHintField(_DslField):
    kind: Literal["ai_hint"]
    body: Text200
    target_field_id: Optional[FieldId] = None


DslField = Annotated[
    Union[
        DslTextField,
        DslSelectField,
        DslRadioField,
        DslCheckboxField,
        DslIntegrationPickerField,
        DslAdminToggleField,
        DslTeammateInviteField,
        DslCalloutField,
        DslChecklistField,
        DslInfoBadgeField,
        DslAIHintField,
    ],
    Field(discriminator="kind"),
]


class DslCta(_Dsl):
    label: Text40
    action: Literal["submit_step", "back", "skip", "complete"]


class LLMDecisionMetadata(_Dsl):
    reasoning: Text280
    confidence: float = Field(ge=0, le=1)
    persona: Optional[Literal["explorer", "team"]] = None
    decision: Optional[Literal["progress", "review", "fallback"]] = None


class StepConfig(_Dsl):
    step_id: StepId
    title: Text60
    description: Optional[Text160] = None
    fields: List[DslField] = Field(min_length=1, max_length=6)
    primary_cta: DslCta
    secondary_cta: Optional[DslCta] = None
    skip_to_review: Optional[bool] = None


class LLMDecision(_Dsl):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    metadata: LLMDecisionMetadata
    step_config: StepConfig


@dataclass
class ParsedLLMDecision:
    metadata: LLMDecisionMetadata
    raw: StepConfig
    plan: Union[RenderStepPlan, ReviewPlan]


# ---------------------------------------------------------------------------
# Conversion
# ---------------------------------------------------------------------------

_INPUT_KINDS = ("text", "select", "radio", "checkbox", "integration_picker", "admin_toggle", "teammate_invite")


def convert_field(field: Any) -> FormField:
    data: Dict[str, Any] = field.model_dump(exclude_none=True)
    default_value = data.pop("default_value", None)
    default_values = data.pop("default_values", None)

    if field.kind in _INPUT_KINDS:
        data.setdefault("required", False)
    if field.kind in ("radio", "checkbox"):
        data.setdefault("orientation", "vertical")
    if default_value is not None:
        data["value"] = default_value
    if field.kind == "checkbox":
        data["values"] = default_values or []

    return FormField.model_validate(data)


def build_stepper(session: SessionState, active_step_id: str, persona_hint: Optional[str] = None) -> List[StepperItem]:
    """Stepper excluding `success`; explorers only see preferences once active or completed."""
    persona = persona_hint or session.persona or "explorer"
    items: List[StepperItem] = []
    for step_id in STEP_IDS:
        if step_id == "success":
            continue
        if persona == "explorer" and step_id == "preferences" and step_id != active_step_id:
            if step_id not in session.completed_steps:
                continue
        items.append(
            StepperItem(
                id=step_id,
                label=STEP_LABELS.get(step_id, step_id),
                active=step_id == active_step_id,
                completed=step_id in session.completed_steps,
            )
        )
    return items


def build_review_summary(fields: List[FormField]) -> List[SummaryRow]:
    rows: List[SummaryRow] = []
    for field in fields:
        if field.kind in ("checkbox", "integration_picker", "teammate_invite"):
            if field.values:
                rows.append(SummaryRow(label=field.label, value=", ".join(field.values)))
        elif field.kind in ("radio", "select", "text", "admin_toggle"):
            if field.value:
                rows.append(SummaryRow(label=field.label, value=field.value))
    return rows


def convert_to_plan(
    step_config: StepConfig,
    session: SessionState,
    metadata: LLMDecisionMetadata,
) -> Union[RenderStepPlan, ReviewPlan]:
    fields = [convert_field(f) for f in step_config.fields]

    if step_config.skip_to_review or step_config.step_id == "review":
        return ReviewPlan(
            summary=build_review_summary(fields),
            stepper=build_stepper(session, "review", metadata.persona),
        )

    secondary = step_config.secondary_cta
    return RenderStepPlan(
        step=FormStep(
            step_id=step_config.step_id,
            title=step_config.title,
            description=step_config.description,
            fields=fields,
            primary_cta=ButtonAction(**step_config.primary_cta.model_dump()),
            secondary_cta=ButtonAction(**secondary.model_dump()) if secondary else None,
        ),
        stepper=build_stepper(session, step_config.step_id, metadata.persona),
    )


def parse_llm_decision(raw: Any, session: SessionState) -> ParsedLLMDecision:
    try:
        decision = LLMDecision.model_validate(raw)
    except ValidationError as e:
        raise LLMResponseValidationError(
            "LLM response failed validation",
            e.errors(include_url=False, include_context=False),
        ) from e

    plan = convert_to_plan(decision.step_config, session, decision.metadata)
    return ParsedLLMDecision(metadata=decision.metadata, raw=decision.step_config, plan=plan)
