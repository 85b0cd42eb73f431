"""
Canvas recipe registry.

A recipe is the default canvas for a persona: the prebuilt fields plus five
tunable knobs (approval depth, integration mode, copy tone, invite strategy,
notification cadence) that personalization may override.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, List, Literal, Mapping, Optional, Tuple, Union

from ..schemas.form import ChecklistItem, FieldOption, FormField

RecipeId = Literal["R1", "R2", "R3", "R4"]
CanvasPersona = Literal["explorer", "team", "client", "power"]

RECIPE_IDS: Tuple[str, ...] = ("R1", "R2", "R3", "R4")
DEFAULT_RECIPE_ID = "R1"

KNOB_IDS: Tuple[str, ...] = (
    "approvalChainLength",
    "integrationMode",
    "copyTone",
    "inviteStrategy",
    "notificationCadence",
)


@dataclass(frozen=True)
class EnumOption:
    value: str
    label: str
    description: Optional[str] = None


@dataclass(frozen=True)
class NumberKnob:
    id: str
    label: str
    description: str
    default_value: float
    min: Optional[float] = None
    max: Optional[float] = None
    step: Optional[float] = None
    type: str = "number"


@dataclass(frozen=True)
class EnumKnob:
    id: str
    label: str
    description: str
    default_value: str
    options: Tuple[EnumOption, ...] = ()
    type: str = "enum"

    def allows(self, value: str) -> bool:
        return any(o.value == value for o in self.options)


RecipeKnob = Union[NumberKnob, EnumKnob]


@dataclass(frozen=True)
class CanvasRecipe:
    id: str
    persona: CanvasPersona
    reasoning: str
    fields: Tuple[FormField, ...]
    knobs: Mapping[str, RecipeKnob]
    recommended_cta: Optional[str] = None

    def knob(self, knob_id: str) -> RecipeKnob:
        return self.knobs[knob_id]

    def field_dicts(self) -> List[dict]:
        return [f.to_wire() for f in self.fields]


def _options(*pairs: Tuple[str, str]) -> List[FieldOption]:
    return [FieldOption(value=v, label=l) for v, l in pairs]


TEAM_SIZE_OPTIONS = _options(
    ("1", "Just me"),
    ("2-5", "2-5 people"),
    ("6-20", "6-20 people"),
    ("21-50", "21-50 people"),
    ("51-100", "51-100 people"),
    ("101-500", "101-500 people"),
    ("500+", "More than 500"),
)

INTEGRATION_MODE_OPTIONS = (
    EnumOption("lightweight", "Lightweight", "Keeps integrations optional and hidden until the user opts in."),
    EnumOption("multi_tool", "Multi-tool workspace", "Surfaces Slack, Jira, and other collaboration integrations by default."),
    EnumOption("client_portal", "Client portal", "Highlights shared folders and external collaboration links up front."),
    EnumOption("governed", "Governed", "Locks integrations to vetted systems and flags compliance controls first."),
)
COPY_TONE_OPTIONS = (
    EnumOption("friendly", "Friendly", "Keeps helper text casual and encouraging for exploratory users."),
    EnumOption("collaborative", "Collaborative", "Focuses copy on teamwork, shared ownership, and next actions."),
    EnumOption("client_ready", "Client-ready", "Uses polished, reassuring language aimed at external stakeholders."),
    EnumOption("compliance", "Compliance", "Leans formal with governance cues and risk reminders."),
)
INVITE_STRATEGY_OPTIONS = (
    EnumOption("self_serve", "Self-serve", "Defers invites so solo users can explore before sharing."),
    EnumOption("immediate", "Immediate", "Encourages adding teammates during the initial canvas setup."),
    EnumOption("stakeholder_first", "Stakeholder first", "Prioritises inviting client stakeholders after the plan is drafted."),
    EnumOption("staged", "Staged", "Rolls invites out after approvals to keep governance in control."),
)
NOTIFICATION_CADENCE_OPTIONS = (
    EnumOption("none", "No notifications", "Suppresses automated reminders for a distraction-free setup."),
    EnumOption("weekly", "Weekly digest", "Sends a weekly summary with outstanding tasks and decisions."),
    EnumOption("daily", "Daily summary", "Keeps the team aligned with day-by-day progress nudges."),
    EnumOption("real_time", "Real-time alerts", "Notifies stakeholders immediately when key fields change."),
)


def _knobs(
    *,
    approval: Tuple[int, str],
    integration: Tuple[str, str],
    tone: Tuple[str, str],
    invite: Tuple[str, str],
    cadence: Tuple[str, str],
) -> Mapping[str, RecipeKnob]:
    knobs: Dict[str, RecipeKnob] = {
        "approvalChainLength": NumberKnob(
            id="approvalChainLength",
            label="Approval chain length",
            description=approval[1],
            default_value=approval[0],
            min=0,
            max=5,
            step=1,
        ),
        "integrationMode": EnumKnob(
            id="integrationMode",
            label="Integration mode",
            description=integration[1],
            default_value=integration[0],
            options=INTEGRATION_MODE_OPTIONS,
        ),
        "copyTone": EnumKnob(
            id="copyTone",
            label="Copy tone",
            description=tone[1],
            default_value=tone[0],
            options=COPY_TONE_OPTIONS,
        ),
        "inviteStrategy": EnumKnob(
            id="inviteStrategy",
            label="Invite strategy",
            description=invite[1],
            default_value=invite[0],
            options=INVITE_STRATEGY_OPTIONS,
        ),
        "notificationCadence": EnumKnob(
            id="notificationCadence",
            label="Notification cadence",
            description=cadence[1],
            default_value=cadence[0],
            options=NOTIFICATION_CADENCE_OPTIONS,
        ),
    }
    return MappingProxyType(knobs)


# Explorer quick start that keeps friction low for solo users.
R1_RECIPE = CanvasRecipe(
    id="R1",
    persona="explorer",
    reasoning="Recommended a lightweight start so you can add details later.",
    fields=(
        FormField(
            kind="callout",
            id="guided_callout",
            label="Explorer intro",
            variant="info",
            body="We'll start simple. You can add more later.",
            icon="sparkles",
        ),
        FormField(
            kind="text",
            id="workspace_name",
            label="Workspace name",
            placeholder="Name this workspace (optional)",
            helper_text="Skip if you're just exploring.",
        ),
        FormField(
            kind="ai_hint",
            id="ai_hint",
            label="Need inspiration?",
            body="Keep it broad for now. You can rename once the plan comes together.",
            target_field_id="workspace_name",
        ),
        FormField(
            kind="checklist",
            id="guided_checklist",
            label="What's next",
            items=[
                ChecklistItem(id="start-notes", label="Capture a few starter notes"),
                ChecklistItem(id="add-structure", label="Add sections for planning later"),
                ChecklistItem(id="share-later", label="Share when you're ready"),
            ],
        ),
    ),
    knobs=_knobs(
        approval=(0, "Number of approvers required before publishing workspace updates."),
        integration=("lightweight", "Controls how prominently we surface integrations during setup."),
        tone=("friendly", "Sets the voice used in callouts, helper text, and CTAs."),
        invite=("self_serve", "Determines when we suggest inviting collaborators."),
        cadence=("none", "Sets the frequency of reminder emails and in-app nudges."),
    ),
    recommended_cta="Continue",
)

# Team workspace prioritising invites and integrations.
R2_RECIPE = CanvasRecipe(
    id="R2",
    persona="team",
    reasoning="Mentioned a multi-person workspace with Slack and Jira integrations.",
    fields=(
        FormField(
            kind="info_badge",
            id="persona_info_badge",
            label="Team workspace with invites and integrations.",
            variant="info",
            icon="users",
        ),
        FormField(
            kind="text",
            id="workspace_name",
            label="Workspace name",
            placeholder="E.g. Product launch hub",
            required=True,
        ),
        FormField(
            kind="select",
            id="team_size",
            label="Team size",
            options=TEAM_SIZE_OPTIONS,
            value="6-20",
            required=True,
        ),
        FormField(
            kind="integration_picker",
            id="preferred_integrations",
            label="Connect integrations",
            helper_text="Recommended based on your prompt.",
            options=_options(("slack", "Slack"), ("jira", "Jira"), ("notion", "Notion"), ("asana", "Asana")),
            values=["slack", "jira"],
            max_selections=3,
        ),
        FormField(
            kind="teammate_invite",
            id="team_invites",
            label="Invite teammates",
            helper_text="Share with collaborators now or add later.",
            placeholder="teammate@example.com",
            max_invites=5,
        ),
        FormField(
            kind="admin_toggle",
            id="admin_controls",
            label="Approvals",
            options=[
                FieldOption(value="disabled", label="Disabled", helper_text="Changes go live instantly."),
                FieldOption(
                    value="required",
                    label="Require approvals",
                    helper_text="Managers review updates before publishing.",
                ),
            ],
            value="required",
        ),
    ),
    knobs=_knobs(
        approval=(1, "Sets how many managers must approve workspace changes."),
        integration=("multi_tool", "Controls which integrations we recommend during setup."),
        tone=("collaborative", "Tunes helper text to emphasise collaboration or compliance."),
        invite=("immediate", "Determines when we prompt users to add collaborators."),
        cadence=("daily", "Controls how frequently we send reminders and task summaries."),
    ),
    recommended_cta="Start setup",
)

# Client project focused on sharing safely with external stakeholders.
R3_RECIPE = CanvasRecipe(
    id="R3",
    persona="client",
    reasoning="Flagged a client project; surfacing sharing guardrails and kickoff tasks.",
    fields=(
        FormField(
            kind="text",
            id="workspace_name",
            label="Client project name",
            placeholder="E.g. ACME rollout plan",
            required=True,
        ),
        FormField(
            kind="select",
            id="project_type",
            label="Project focus",
            options=_options(("client", "Client delivery"), ("internal", "Internal project"), ("retainer", "Retainer support")),
            value="client",
            required=True,
        ),
        FormField(
            kind="integration_picker",
            id="preferred_integrations",
            label="Partner tools",
            helper_text="Connect workspaces your client already uses.",
            options=_options(("gdrive", "Google Drive"), ("slack", "Slack"), ("asana", "Asana"), ("figma", "Figma")),
            values=["gdrive", "slack"],
            max_selections=3,
        ),
        FormField(
            kind="ai_hint",
            id="ai_hint",
            label="Sharing tip",
            body="Keep sensitive folders in Google Drive and link to them here for quick access.",
            target_field_id="preferred_integrations",
        ),
        FormField(
            kind="checklist",
            id="guided_checklist",
            label="Kickoff checklist",
            items=[
                ChecklistItem(id="kickoff", label="Schedule the kickoff call"),
                ChecklistItem(id="files", label="Organize shared files"),
                ChecklistItem(id="access", label="Confirm client access rules"),
            ],
        ),
    ),
    knobs=_knobs(
        approval=(0, "Dictates how many internal reviewers must approve before clients see changes."),
        integration=("client_portal", "Adjusts which partner tools we prioritise for client collaboration."),
        tone=("client_ready", "Controls how formal or casual the helper text reads for clients."),
        invite=("stakeholder_first", "Decides when to prompt inviting clients versus internal teammates."),
        cadence=("weekly", "Chooses how often clients and leads receive project updates."),
    ),
    recommended_cta="Review plan",
)

# Power/compliance recipe emphasising governance controls.
R4_RECIPE = CanvasRecipe(
    id="R4",
    persona="power",
    reasoning="Highlighted approvals and audit needs, so governance controls are on by default.",
    fields=(
        FormField(
            kind="text",
            id="workspace_name",
            label="Workspace name",
            placeholder="E.g. Compliance control center",
            required=True,
        ),
        FormField(
            kind="admin_toggle",
            id="admin_controls",
            label="Change approvals",
            options=[
                FieldOption(value="disabled", label="Disabled"),
                FieldOption(value="required", label="Require approvals", helper_text="Admins must approve major updates."),
            ],
            value="required",
        ),
        FormField(
            kind="checkbox",
            id="audit_logging",
            label="Audit logging",
            options=_options(("enabled", "Capture admin actions")),
            values=["enabled"],
            helper_text="Recommended for regulated teams.",
        ),
        FormField(
            kind="select",
            id="access_level",
            label="Default access level",
            options=_options(
                ("restricted", "Restricted (least privilege)"),
                ("standard", "Standard collaborators"),
                ("broad", "Broad access"),
            ),
            value="restricted",
            required=True,
        ),
        FormField(
            kind="integration_picker",
            id="preferred_integrations",
            label="Security integrations",
            helper_text="Connect identity and ticketing systems.",
            options=_options(("okta", "Okta"), ("jira", "Jira"), ("onelogin", "OneLogin"), ("servicenow", "ServiceNow")),
            values=["okta", "jira"],
            max_selections=3,
        ),
    ),
    knobs=_knobs(
        approval=(2, "Sets the depth of the approval ladder required for compliance teams."),
        integration=("governed", "Controls whether we surface only pre-approved governance integrations."),
        tone=("compliance", "Determines how strict or formal the compliance messaging sounds."),
        invite=("staged", "Specifies when governance teams invite broader collaborators."),
        cadence=("real_time", "Sets how urgently we notify approvers about canvas changes."),
    ),
    recommended_cta="Enable controls",
)

RECIPES: Mapping[str, CanvasRecipe] = MappingProxyType(
    {"R1": R1_RECIPE, "R2": R2_RECIPE, "R3": R3_RECIPE, "R4": R4_RECIPE}
)


def get_recipe(recipe_id: str) -> CanvasRecipe:
    try:
        return RECIPES[recipe_id]
    except KeyError:
        raise ValueError(f"Unknown recipe id: {recipe_id!r}") from None


def clamp_number_knob(definition: NumberKnob, value: float, step: Optional[float] = ...) -> float:
    """
    Bound `value` to the knob's [min, max] and snap it to its step.

    Idempotent: clamping an already clamped value returns it unchanged.
    """
    step = definition.step if step is ... else step
    lower = definition.min if definition.min is not None else -math.inf
    upper = definition.max if definition.max is not None else math.inf
    clamped = min(upper, max(lower, value))

    if step is not None and step > 0:
        snapped = math.floor(clamped / step + 0.5) * step
        return clamp_number_knob(definition, snapped, None)

    if isinstance(clamped, float) and clamped.is_integer():
        return int(clamped)
    return clamped
