# backend/app/services/classifier.py

"""
Canvas intent classifier.

A free-text onboarding message is routed to one of the four recipes. The
keyword heuristics always run; the LLM classifier may override them when it is
configured and confident enough.
"""
from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ValidationError, field_validator

from ..core.config import llm_api_key_configured
from .llm import complete_chat
from .llm_retry import (
    BackoffSettings,
    invoke_with_timeout,
    map_to_service_error,
    retry_with_exponential_backoff,
    should_retry_on_error,
)
from .recipes import RECIPE_IDS
from .response_repair import LLMResponseValidationError, extract_response_text, parse_json_payload

logger = logging.getLogger(__name__)

GOVERNANCE_KEYWORDS = ("policy", "approval", "audit", "security", "compliance")
TEAM_KEYWORDS = ("team", "invite", "collaborate")
CLIENT_KEYWORDS = ("client", "stakeholder", "agency", "contract")

MATCHED_CONFIDENCE = 0.8
DEFAULT_CONFIDENCE = 0.5
MAX_HEURISTIC_REASONING = 120
MAX_REASONING = 160
MAX_INTENT_TAGS = 3

LLM_CONFIDENCE_THRESHOLD = 0.6
CLASSIFIER_TIMEOUT_MS = 30_000
CLASSIFIER_MAX_TOKENS = 4000
CLASSIFIER_BACKOFF = BackoffSettings(
    max_attempts=2,
    initial_delay_ms=150,
    max_delay_ms=300,
    multiplier=2.0,
    jitter_ratio=0.2,
)

FALLBACK_REASONING = "Classified by heuristics"

PERSONA_SYNONYMS: Dict[str, str] = {
    "explorer": "explorer",
    "team": "team",
    "power": "power",
    "personal": "explorer",
    "solo": "explorer",
    "individual": "explorer",
    "client": "team",
}

CANVAS_CLASSIFIER_PROMPT = """You classify onboarding intents into one of four deterministic recipes.
Recipes:
- R1 Explorer Quick Start: lightweight callout, optional workspace name, ai_hint and checklist. For solo or vague prompts.
- R2 Team Workspace: workspace name, team size, integrations, teammate invites, admin toggle. For team or collaboration intents (Slack, Jira, invites, team size >= 3).
- R3 Client Project: workspace name, client project type, integrations (GDrive/Slack/Asana), ai_hint for sharing, kickoff checklist. For client, agency or stakeholder language.
- R4 Power/Compliance: workspace name, admin toggle, audit logging checkbox, access level select, security integrations (Okta/Jira). For governance, security, audit or policy needs.

Always respond with valid minified JSON:
{"persona": "explorer|team|power", "recipe_id": "R1|R2|R3|R4", "intent_tags": ["tag"],
 "confidence": number between 0 and 1, "reasoning": "<=120 chars explaining the match"}

Rules:
- Use persona "power" only when approvals, audit, security or compliance are explicit.
- Use persona "team" for team or client collaboration including invites, stakeholders and agencies.
- Use persona "explorer" as the safe default for solo or unclear prompts.
- Keep intent_tags lowercase snake_case (e.g. "integrations", "invites", "governance", "client", "solo"). Include at most 3 tags.
- If unsure, set confidence <= 0.5 and prefer R1.
"""

_TOKEN_RE = re.compile(r"[a-z0-9]+")
_NUMBER_RE = re.compile(r"\b\d+\b")


def _ellipsize(value: str, limit: int) -> str:
    return value if len(value) <= limit else value[: limit - 1] + "…"


def clamp_confidence(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        return 0.0
    return min(1.0, max(0.0, float(value)))


def sanitize_reasoning(value: Optional[str]) -> str:
    trimmed = (value or "").strip()
    if not trimmed:
        return FALLBACK_REASONING
    return _ellipsize(trimmed, MAX_REASONING)


# ---------------------------------------------------------------------------
# Heuristics
# ---------------------------------------------------------------------------

@dataclass
class HeuristicClassification:
    recipe_id: str
    persona: str
    intent_tags: List[str]
    confidence: float
    reasoning: str


def extract_keywords(message: str) -> List[str]:
    """Unique lower-cased alphanumeric tokens, in first-seen order."""
    return list(dict.fromkeys(_TOKEN_RE.findall((message or "").lower())))


def _numbers_at_least_three(message: str) -> List[str]:
    return [token for token in _NUMBER_RE.findall(message) if int(token) >= 3]


def _format_reasoning(prefix: str, signals: List[str]) -> str:
    detail = ", ".join(list(dict.fromkeys(signals))[:3])
    base = f"{prefix}: {detail}" if detail else prefix
    return _ellipsize(base, MAX_HEURISTIC_REASONING)


def _matched(recipe_id: str, persona: str, tags: List[str], prefix: str, signals: List[str]) -> HeuristicClassification:
    return HeuristicClassification(
        recipe_id=recipe_id,
        persona=persona,
        intent_tags=list(tags),
        confidence=MATCHED_CONFIDENCE,
        reasoning=_format_reasoning(prefix, signals),
    )


def classify_by_heuristics(message: str) -> HeuristicClassification:
    """
    Governance wins over team, team over client; anything else is the explorer
    default. Governance keywords match as substrings, the rest as whole tokens.
    """
    raw = message or ""
    lowered = raw.lower()
    tokens = extract_keywords(raw)

    governance = [k for k in GOVERNANCE_KEYWORDS if k in lowered]
    if governance:
        return _matched("R4", "power", ["governance"], "Governance keywords detected", governance)

    team = [k for k in TEAM_KEYWORDS if k in tokens]
    team += [f"{n} people" for n in _numbers_at_least_three(raw)]
    if team:
        return _matched("R2", "team", ["integrations", "invites"], "Team signals detected", team)

    client = [k for k in CLIENT_KEYWORDS if k in tokens]
    if client:
        return _matched("R3", "team", ["client"], "Client signals detected", client)

    return HeuristicClassification(
        recipe_id="R1",
        persona="explorer",
        intent_tags=["solo"],
        confidence=DEFAULT_CONFIDENCE,
        reasoning="Defaulted to explorer path",
    )


# ---------------------------------------------------------------------------
# LLM classifier
# ---------------------------------------------------------------------------

class ClassifierDecision(BaseModel):
    persona: str
    recipe_id: str
    intent_tags: List[str] = []
    confidence: Optional[float] = None
    reasoning: str

    @field_validator("persona", mode="before")
    @classmethod
    def _persona(cls, v: Any) -> str:
        if not isinstance(v, str):
            raise ValueError("Unsupported persona")
        key = v.strip().lower()
        if key not in PERSONA_SYNONYMS:
            raise ValueError("Unsupported persona")
        return PERSONA_SYNONYMS[key]

    @field_validator("recipe_id", mode="before")
    @classmethod
    def _recipe_id(cls, v: Any) -> str:
        if not isinstance(v, str) or v.strip().upper() not in RECIPE_IDS:
            raise ValueError("Unsupported recipe id")
        return v.strip().upper()

    @field_validator("intent_tags", mode="before")
    @classmethod
    def _intent_tags(cls, v: Any) -> List[str]:
        if v is None:
            return []
        if not isinstance(v, list):
            raise ValueError("intent_tags must be a list")
        cleaned: Dict[str, None] = {}
        for tag in v:
            if not isinstance(tag, str):
                raise ValueError("intent_tags must contain strings")
            normalized = re.sub(r"\s+", "_", tag.strip().lower())
            if normalized:
                cleaned[normalized] = None
        return list(cleaned)[:MAX_INTENT_TAGS]

    @field_validator("reasoning", mode="before")
    @classmethod
    def _reasoning(cls, v: Any) -> str:
        if not isinstance(v, str) or not v.strip():
            raise ValueError("Reasoning is required")
        return _ellipsize(v.strip(), MAX_REASONING)


@dataclass
class ClassifierResult:
    decision: ClassifierDecision
    raw_text: str


@dataclass
class CanvasDecision:
    recipe_id: str
    persona: str
    intent_tags: List[str]
    confidence: float
    reasoning: str
    decision_source: str
    llm_confidence: Optional[float] = None
    llm_raw_response: Optional[str] = None
    raw_decision: Optional[Dict[str, Any]] = field(default=None, repr=False)


def _context_value(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (bool, int, float)):
        return str(value).lower() if isinstance(value, bool) else str(value)
    return json.dumps(value, default=str)


def build_classifier_prompt(message: str, context: Optional[Dict[str, Any]] = None) -> str:
    context = context or {}
    lines = []
    if context.get("domain_email"):
        lines.append(f"Domain email: {_context_value(context['domain_email'])}")
    if context.get("team_size"):
        lines.append(f"Team size: {_context_value(context['team_size'])}")
    if context.get("metadata"):
        lines.append(f"Metadata: {_context_value(context['metadata'])}")

    block = "\nContext:\n- " + "\n- ".join(lines) if lines else ""
    return (
        "Classify the following Canvas Chat request into a recipe.\n\n"
        f'User message:\n"""{message.strip()}"""{block}\n\n'
        "Return only the JSON object described in the system instructions."
    )


def classify_with_llm(message: str, context: Optional[Dict[str, Any]] = None) -> Optional[ClassifierResult]:
    """
    Classify with the LLM. Returns None when no key is configured or the
    response is empty, unparseable or fails validation. Provider errors that
    survive the retries propagate.
    """
    if not llm_api_key_configured():
        return None

    prompt = build_classifier_prompt(message, context)

    def _call(attempt: int) -> Any:
        response = invoke_with_timeout(
            CLASSIFIER_TIMEOUT_MS,
            lambda timeout_s: complete_chat(
                CANVAS_CLASSIFIER_PROMPT,
                prompt,
                max_tokens=CLASSIFIER_MAX_TOKENS,
                timeout_s=timeout_s,
            ),
        )
        logger.debug("Canvas classifier succeeded (attempt %d)", attempt)
        return response

    def _on_retry(error: BaseException, attempt: int, delay_ms: int) -> None:
        logger.warning(
            "Canvas classifier attempt %d failed; retrying in %dms",
            attempt,
            delay_ms,
            extra={"code": map_to_service_error(error).code, "step": "classify"},
        )

    response = retry_with_exponential_backoff(
        _call,
        CLASSIFIER_BACKOFF,
        should_retry=lambda error, attempt: should_retry_on_error(error),
        on_retry=_on_retry,
    )

    text = extract_response_text(response)
    if not text:
        logger.warning("Canvas classifier returned no text")
        return None

    try:
        payload = parse_json_payload(text)
    except LLMResponseValidationError as e:
        logger.warning("Canvas classifier returned invalid JSON: %s", e.message)
        return None

    try:
        decision = ClassifierDecision.model_validate(payload)
    except ValidationError as e:
        logger.warning("Canvas classifier response failed schema validation: %s", e.error_count())
        return None

    return ClassifierResult(decision=decision, raw_text=text)


def decide_canvas(
    message: str,
    context: Optional[Dict[str, Any]] = None,
    threshold: float = LLM_CONFIDENCE_THRESHOLD,
) -> CanvasDecision:
    """
    Heuristic decision, replaced by the LLM decision when its confidence is at
    least `threshold`. LLM failures are logged and never raised.
    """
    heuristics = classify_by_heuristics(message)
    decision = CanvasDecision(
        recipe_id=heuristics.recipe_id,
        persona=heuristics.persona,
        intent_tags=list(heuristics.intent_tags),
        confidence=clamp_confidence(heuristics.confidence),
        reasoning=sanitize_reasoning(heuristics.reasoning),
        decision_source="heuristics",
    )

    try:
        result = classify_with_llm(message, context)
    except Exception as e:
        mapped = map_to_service_error(e)
        logger.warning(
            "Canvas classifier LLM failure: %s",
            mapped.message,
            extra={"code": mapped.code, "decision_source": "heuristics"},
        )
        result = None

    if result is None:
        return decision

    llm_confidence = clamp_confidence(result.decision.confidence or 0)
    decision.llm_confidence = llm_confidence
    decision.llm_raw_response = result.raw_text
    decision.raw_decision = result.decision.model_dump()

    if llm_confidence < threshold:
        logger.info(
            "Canvas classifier confidence %.2f below threshold; using heuristics",
            llm_confidence,
            extra={"recipe_id": result.decision.recipe_id, "decision_source": "heuristics"},
        )
        return decision

    decision.recipe_id = result.decision.recipe_id
    decision.persona = result.decision.persona
    decision.intent_tags = list(result.decision.intent_tags)
    decision.confidence = llm_confidence
    decision.reasoning = sanitize_reasoning(result.decision.reasoning)
    decision.decision_source = "llm"
    return decision
