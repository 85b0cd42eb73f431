from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

FieldKind = Literal[
    "text",
    "select",
    "radio",
    "checkbox",
    "integration_picker",
    "admin_toggle",
    "teammate_invite",
    "callout",
    "checklist",
    "info_badge",
    "ai_hint",
]

CtaAction = Literal["submit_step", "back", "skip", "complete"]


class CamelModel(BaseModel):
    """Snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class FieldOption(CamelModel):
    value: str
    label: str
    disabled: Optional[bool] = None
    helper_text: Optional[str] = None
    icon: Optional[str] = None


class ChecklistItem(CamelModel):
    id: str
    label: str
    helper_text: Optional[str] = None


class CalloutCta(CamelModel):
    label: str
    href: Optional[str] = None


class FormField(CamelModel):
    """
    A single renderable field. `kind` selects which optional attributes apply:
    options/value for choice fields, values for multi-select fields, body for
    callouts and hints, items for checklists.
    """

    kind: FieldKind
    id: str
    label: str
    required: Optional[bool] = None
    disabled: Optional[bool] = None
    helper_text: Optional[str] = None
    placeholder: Optional[str] = None

    # choice fields
    options: Optional[List[FieldOption]] = None
    value: Optional[str] = None
    values: Optional[List[str]] = None
    multiple: Optional[bool] = None
    orientation: Optional[Literal["horizontal", "vertical"]] = None

    # text
    pattern: Optional[str] = None
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    autocomplete: Optional[str] = None
    type: Optional[Literal["text", "email", "password", "tel", "url"]] = None

    # integration_picker / teammate_invite
    max_selections: Optional[int] = None
    category_label: Optional[str] = None
    max_invites: Optional[int] = None
    role_options: Optional[List[FieldOption]] = None

    # callout / ai_hint / info_badge / checklist
    body: Optional[str] = None
    variant: Optional[Literal["info", "success", "warning", "danger"]] = None
    icon: Optional[str] = None
    cta: Optional[CalloutCta] = None
    target_field_id: Optional[str] = None
    items: Optional[List[ChecklistItem]] = None


class ButtonAction(CamelModel):
    label: str
    action: CtaAction


class FormStep(CamelModel):
    step_id: str
    title: str
    description: Optional[str] = None
    fields: List[FormField]
    primary_cta: ButtonAction
    secondary_cta: Optional[ButtonAction] = None


class StepperItem(CamelModel):
    id: str
    label: str
    active: bool
    completed: bool


class SummaryRow(CamelModel):
    label: str
    value: str


class RenderStepPlan(CamelModel):
    kind: Literal["render_step"] = "render_step"
    step: FormStep
    stepper: List[StepperItem]


class ReviewPlan(CamelModel):
    kind: Literal["review"] = "review"
    summary: List[SummaryRow]
    stepper: List[StepperItem]


class SuccessPlan(CamelModel):
    kind: Literal["success"] = "success"
    message: str


class ErrorPlan(CamelModel):
    kind: Literal["error"] = "error"
    message: str


FormPlan = Annotated[
    Union[RenderStepPlan, ReviewPlan, SuccessPlan, ErrorPlan],
    Field(discriminator="kind"),
]


# Whitelisted field identifiers; anything else is rejected at the plan boundary.
BASE_FIELD_IDS = (
    "full_name",
    "email",
    "company",
    "role",
    "workspace_name",
    "team_size",
    "primary_use",
    "project_type",
    "industry",
    "notifications",
    "features",
    "template",
    "theme",
    "language",
    "timezone",
    "referral_source",
    "marketing_consent",
    "terms_accepted",
    "comments",
)
CANVAS_FIELD_IDS = (
    "guided_callout",
    "ai_hint",
    "guided_checklist",
    "persona_info_badge",
    "preferred_integrations",
    "team_invites",
    "admin_controls",
    "audit_logging",
    "access_level",
)
FIELD_IDS = BASE_FIELD_IDS + CANVAS_FIELD_IDS
FIELD_ID_SET = frozenset(FIELD_IDS)

STEP_IDS = ("basics", "workspace", "preferences", "review", "success")
DEFAULT_STEP_ORDER = STEP_IDS
STEP_LABELS = {
    "basics": "Basics",
    "workspace": "Workspace",
    "preferences": "Preferences",
    "review": "Review",
    "success": "Done",
}

UserPersona = Literal["explorer", "team"]
