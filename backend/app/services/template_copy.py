# backend/app/services/template_copy.py
from __future__ import annotations

import json
import logging
from typing import Mapping, Optional

from pydantic import BaseModel, ValidationError

from ..core.config import llm_api_key_configured
from ..schemas.canvas import CopyCallout, SlotIssue, TemplateCopy
from .llm import complete_chat
from .llm_retry import (
    BackoffSettings,
    invoke_with_timeout,
    map_to_service_error,
    retry_with_exponential_backoff,
    should_retry_on_error,
)
from .personalization import KnobOverride
from .response_repair import LLMResponseValidationError, extract_response_text, parse_json_payload
from .signals import PromptSignals, summarize_prompt_signals

logger = logging.getLogger(__name__)

PLAN_COPY_SYSTEM_PROMPT = (
    "You are the UI copywriter for a product setup flow. "
    "Respond ONLY with a JSON object containing concise strings."
)
PLAN_COPY_TIMEOUT_MS = 25_000
PLAN_COPY_BACKOFF = BackoffSettings(max_attempts=2, initial_delay_ms=150, max_delay_ms=300)


class _CopyPayload(BaseModel):
    stepTitle: str
    helperText: str
    primaryCta: str
    calloutHeading: str
    calloutBody: str
    badgeCaption: str


def default_copy() -> TemplateCopy:
    return TemplateCopy(
        step_title="Workspace setup",
        helper_text="Keep it lightweight so you can dive in immediately.",
        primary_cta="Continue",
        callout=CopyCallout(
            heading="A quick heads-up",
            body="We'll start simple. You can add more later.",
        ),
        badge_caption="AI recommended",
        issues=[],
    )


def build_copy_prompt(
    message: str,
    recipe_id: str,
    persona: str,
    signals: PromptSignals,
    overrides: Mapping[str, KnobOverride],
) -> str:
    summary = {
        "message": message,
        "recipeId": recipe_id,
        "persona": persona,
        "signals": summarize_prompt_signals(signals),
        "overrides": {knob_id: o.to_dict() for knob_id, o in overrides.items()},
    }
    return (
        f"Context: {json.dumps(summary, indent=2, default=str)}\n\n"
        "Return JSON with these keys:\n"
        '{\n  "stepTitle": string,\n  "helperText": string,\n  "primaryCta": string,\n'
        '  "calloutHeading": string,\n  "calloutBody": string,\n  "badgeCaption": string\n}\n'
        "Each value must be under 160 characters and actionable. Do not add commentary or extra fields."
    )


def _merge_with_defaults(payload: _CopyPayload, defaults: TemplateCopy) -> TemplateCopy:
    def pick(value: str, fallback: Optional[str]) -> Optional[str]:
        return value.strip() or fallback

    return TemplateCopy(
        step_title=pick(payload.stepTitle, defaults.step_title),
        helper_text=pick(payload.helperText, defaults.helper_text),
        primary_cta=pick(payload.primaryCta, defaults.primary_cta),
        callout=CopyCallout(
            heading=pick(payload.calloutHeading, defaults.callout.heading),
            body=pick(payload.calloutBody, defaults.callout.body),
        ),
        badge_caption=pick(payload.badgeCaption, defaults.badge_caption),
        issues=[],
    )


def generate_plan_copy(
    *,
    message: str,
    recipe_id: str,
    persona: str,
    signals: PromptSignals,
    overrides: Mapping[str, KnobOverride],
) -> TemplateCopy:
    """
    Short UI copy for the rendered canvas.

    Never raises: without an API key the defaults are returned, and any
    failure returns the defaults with a `copy_generation_failed` issue.
    """
    defaults = default_copy()
    if not llm_api_key_configured():
        return defaults

    prompt = build_copy_prompt(message, recipe_id, persona, signals, overrides)

    try:
        response = retry_with_exponential_backoff(
            lambda attempt: invoke_with_timeout(
                PLAN_COPY_TIMEOUT_MS,
                lambda timeout_s: complete_chat(
                    PLAN_COPY_SYSTEM_PROMPT, prompt, timeout_s=timeout_s, json_mode=True
                ),
            ),
            PLAN_COPY_BACKOFF,
            should_retry=lambda error, attempt: should_retry_on_error(error),
        )
        text = extract_response_text(response)
        if not text:
            raise LLMResponseValidationError("Copy response contained no text")
        payload = _CopyPayload.model_validate(parse_json_payload(text))
        return _merge_with_defaults(payload, defaults)
    except (LLMResponseValidationError, ValidationError) as e:
        logger.warning("Plan copy response rejected: %s", e, extra={"recipe_id": recipe_id, "step": "copy"})
    except Exception as e:
        mapped = map_to_service_error(e)
        logger.warning(
            "Plan copy generation failed: %s",
            mapped.message,
            extra={"recipe_id": recipe_id, "code": mapped.code, "step": "copy"},
        )

    return defaults.model_copy(
        update={"issues": [SlotIssue(slot_id="*", reason="copy_generation_failed", severity="warning")]}
    )
