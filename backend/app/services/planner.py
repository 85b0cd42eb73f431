# backend/app/services/planner.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..core.config import get_settings, llm_api_key_configured
from ..schemas.form import FIELD_ID_SET, FormField, RenderStepPlan
from .decision_log import log_llm_decision
from .llm import complete_chat
from .llm_retry import (
    backoff_settings_from_config,
    invoke_with_timeout,
    map_to_service_error,
    retry_with_exponential_backoff,
    should_retry_on_error,
)
from .plan_dsl import LLMDecisionMetadata, parse_llm_decision
from .response_repair import (
    LLMResponseValidationError,
    extract_response_text,
    parse_json_payload,
    repair_plan_payload,
)
from .session_context import BehaviorSignals, build_llm_user_context, detect_behavior_signals, format_llm_user_context
from .session_store import SessionState

logger = logging.getLogger(__name__)


FORM_ORCHESTRATOR_PROMPT = """You direct a multi-step onboarding form. Reply with a single JSON object
(you may wrap it as propose_next_step({...})) shaped as:

{
  "metadata": {"reasoning": str (<=280 chars), "confidence": 0..1,
               "persona": "explorer" | "team", "decision": "progress" | "review" | "fallback"},
  "stepConfig": {"stepId": "basics" | "workspace" | "preferences" | "review",
                 "title": str (<=60), "description": str (<=160, optional),
                 "fields": [ {"kind", "id", "label", ...} ] (1 to 6 items),
                 "primaryCta": {"label", "action": "submit_step" | "back" | "skip" | "complete"},
                 "secondaryCta": optional, "skipToReview": optional bool}
}

Rules:
- Do not repeat completed steps. Default order: basics, workspace, preferences, review.
- Explorers (individual, few fields, skips) get short flows with optional fields.
- Teams (team_size >= 5, company given, integrations) get workspace configuration.
- Long hesitation or repeated corrections on a field: simplify it or add helper text.
- Several back actions: reduce fields and consider skipToReview once essentials are known.
- Only use field ids from the approved whitelist. Single-select inputs use defaultValue,
  multi-select inputs use defaultValues.
- Use decision "fallback" when you cannot make a confident recommendation.
"""

REQUIRED_FIELD_IDS = frozenset({"full_name", "email", "role"})
REQUIRED_FOR_TEAM = frozenset({"workspace_name", "team_size"})

PLACEHOLDERS: Dict[str, Dict[str, str]] = {
    "explorer": {
        "workspace_name": "e.g. Design Lab",
        "company": "Optional, add later if needed",
        "primary_use": "What brings you here?",
    },
    "team": {
        "workspace_name": "e.g. Acme Growth Team",
        "company": "Company or organization name",
        "primary_use": "Select the main team goal",
    },
}

PERSONA_OPTION_FILTERS: Dict[str, Dict[str, List[str]]] = {
    "explorer": {
        "template": ["blank", "kanban", "content"],
        "features": ["ai_assist", "automation", "integrations"],
        "notifications": ["email_updates", "push_mobile"],
    },
    "team": {
        "template": ["kanban", "scrum", "okr", "crm"],
        "features": ["integrations", "analytics", "api", "custom_fields", "time_tracking"],
        "notifications": ["email_updates", "email_mentions", "push_desktop", "push_mobile"],
    },
}

HESITATION_HINT = "We noticed this field takes time, so feel free to keep it simple."
CORRECTION_HINT = "Preview your answer before continuing to avoid rework."


@dataclass
class PlanResult:
    plan: Any
    metadata: LLMDecisionMetadata
    raw_text: str


# ---------------------------------------------------------------------------
# Field enhancement
# ---------------------------------------------------------------------------

def apply_session_defaults(field: FormField, session: SessionState) -> FormField:
    if field.id not in session.values:
        return field
    value = session.values[field.id]

    if field.kind == "checkbox":
        if isinstance(value, (list, tuple)):
            values = [v for v in value if isinstance(v, str)]
        elif isinstance(value, str):
            values = [value]
        else:
            values = []
        return field.model_copy(update={"values": values})

    if isinstance(value, (str, int, float)) and not isinstance(value, bool):
        if field.kind in ("text", "select", "radio"):
            return field.model_copy(update={"value": str(value)})
    return field


def _apply_placeholder(field: FormField, persona: str) -> FormField:
    placeholder = PLACEHOLDERS.get(persona, {}).get(field.id)
    if placeholder and field.kind in ("text", "select") and not field.placeholder:
        return field.model_copy(update={"placeholder": placeholder})
    return field


def _adjust_required(field: FormField, persona: str) -> FormField:
    if persona == "explorer" and field.id not in REQUIRED_FIELD_IDS:
        return field.model_copy(update={"required": False})
    if persona == "team" and field.id in REQUIRED_FOR_TEAM:
        return field.model_copy(update={"required": True})
    return field


def _filter_options(field: FormField, persona: str) -> FormField:
    allowed = PERSONA_OPTION_FILTERS.get(persona, {}).get(field.id)
    if not allowed or not field.options:
        return field
    options = [o for o in field.options if o.value in allowed]
    if not options:
        return field

    if field.kind == "checkbox":
        return field.model_copy(
            update={"options": options, "values": [v for v in field.values or [] if v in allowed]}
        )
    if field.kind in ("select", "radio"):
        value = field.value if field.value in allowed else None
        return field.model_copy(update={"options": options, "value": value})
    return field


def _add_behavior_hints(field: FormField, signals: BehaviorSignals) -> FormField:
    hints = []
    if any(s["fieldId"] == field.id for s in signals.hesitant_fields):
        hints.append(HESITATION_HINT)
    if any(s["fieldId"] == field.id for s in signals.corrected_fields):
        hints.append(CORRECTION_HINT)
    if not hints:
        return field
    helper_text = " ".join(part for part in [field.helper_text, " ".join(hints)] if part)
    return field.model_copy(update={"helper_text": helper_text})


def enhance_field(field: FormField, session: SessionState, persona: str, signals: BehaviorSignals) -> FormField:
    if field.id not in FIELD_ID_SET:
        return field
    field = apply_session_defaults(field, session)
    field = _apply_placeholder(field, persona)
    field = _adjust_required(field, persona)
    field = _filter_options(field, persona)
    return _add_behavior_hints(field, signals)


def enhance_plan_with_context(plan: Any, session: SessionState, metadata_persona: Optional[str] = None) -> Any:
    """Merge known session values and behaviour hints into a render_step plan."""
    if not isinstance(plan, RenderStepPlan):
        return plan
    persona = metadata_persona or session.persona or "explorer"
    signals = detect_behavior_signals(session.events)
    fields = [enhance_field(f, session, persona, signals) for f in plan.step.fields]
    return plan.model_copy(update={"step": plan.step.model_copy(update={"fields": fields})})


# ---------------------------------------------------------------------------
# LLM plan generation
# ---------------------------------------------------------------------------

def build_plan_prompt(session: SessionState) -> str:
    context = format_llm_user_context(build_llm_user_context(session))
    return (
        "You are orchestrating an adaptive onboarding form.\n\n"
        f"Session snapshot:\n{context}\n\n"
        "Produce a JSON object describing the recommended next step and fields."
    )


def generate_plan_with_llm(session: SessionState) -> Optional[PlanResult]:
    """
    Ask the LLM for the next step. Returns None on any failure so callers can
    fall back to the rules engine.
    """
    if not llm_api_key_configured():
        logger.debug("Skipping LLM plan generation: no API key configured", extra={"session_id": session.id})
        return None

    settings = get_settings()
    backoff = backoff_settings_from_config()
    prompt = build_plan_prompt(session)

    def _call(attempt: int) -> Any:
        response = invoke_with_timeout(
            settings.LLM_TIMEOUT_MS,
            lambda timeout_s: complete_chat(FORM_ORCHESTRATOR_PROMPT, prompt, timeout_s=timeout_s),
        )
        logger.debug("LLM plan call succeeded on attempt %d", attempt, extra={"session_id": session.id})
        return response

    def _on_retry(error: BaseException, attempt: int, delay_ms: int) -> None:
        mapped = map_to_service_error(error)
        logger.warning(
            "Retrying LLM plan call (attempt %d of %d) in %dms",
            attempt,
            backoff.max_attempts,
            delay_ms,
            extra={"session_id": session.id, "code": mapped.code, "step": "plan"},
        )

    try:
        response = retry_with_exponential_backoff(
            _call,
            backoff,
            should_retry=lambda error, attempt: should_retry_on_error(error),
            on_retry=_on_retry,
        )
    except Exception as e:
        mapped = map_to_service_error(e)
        logger.warning(
            "LLM plan generation failed: %s",
            mapped.message,
            extra={"session_id": session.id, "code": mapped.code, "step": "plan"},
        )
        return None

    raw_text = extract_response_text(response)
    if not raw_text:
        logger.warning("LLM plan response contained no text", extra={"session_id": session.id})
        return None

    try:
        payload = repair_plan_payload(parse_json_payload(raw_text))
        parsed = parse_llm_decision(payload, session)
    except LLMResponseValidationError as e:
        logger.warning(
            "LLM plan response rejected: %s",
            e.message,
            extra={"session_id": session.id, "step": "plan"},
        )
        return None
    except Exception:
        logger.exception(
            "LLM plan response could not be processed",
            extra={"session_id": session.id, "step": "plan"},
        )
        return None

    plan = enhance_plan_with_context(parsed.plan, session, parsed.metadata.persona)
    log_llm_decision(
        session,
        plan=plan.to_wire(),
        metadata=parsed.metadata.model_dump(exclude_none=True),
        raw_response=raw_text,
    )
    logger.info(
        "LLM plan accepted (confidence %.2f)",
        parsed.metadata.confidence,
        extra={"session_id": session.id, "decision_source": "llm"},
    )
    return PlanResult(plan=plan, metadata=parsed.metadata, raw_text=raw_text)
